"""Database repository module for ingestion service"""
from .repository import (
    get_last_open_time,
    merge_candle_values,
    upsert_candle,
    save_candles,
)

__all__ = [
    'get_last_open_time',
    'merge_candle_values',
    'upsert_candle',
    'save_candles',
]
