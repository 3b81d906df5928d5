"""Candle Feed services"""
