"""
API Service Package

Read API serving recent candles at 1m, 15m and 1h resolution.
"""

__version__ = "1.0.0"
