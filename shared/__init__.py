"""Shared configuration, models and store access for Candle Feed services"""
