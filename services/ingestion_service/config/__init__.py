"""Configuration for ingestion service"""
