"""
Repository layer for data access
"""
from .base_repository import BaseRepository
from .candle_repository import CandleRepository

__all__ = [
    "BaseRepository",
    "CandleRepository",
]
