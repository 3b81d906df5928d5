"""Utility modules for ingestion service"""
from .types import KlineData, KlineField, decode_kline

__all__ = ['KlineData', 'KlineField', 'decode_kline']
