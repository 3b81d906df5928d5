"""
Service layer for business logic
"""
from .candle_service import CandleService, RESOLUTIONS

__all__ = [
    "CandleService",
    "RESOLUTIONS",
]
