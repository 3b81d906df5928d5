"""
Ingestion Service Package

Scheduled gap-fill ingestion of 1-minute klines from Binance.
"""

__version__ = "1.0.0"
