"""Service modules for ingestion service"""
from .binance_service import BinanceIngestionService

__all__ = [
    'BinanceIngestionService',
]
