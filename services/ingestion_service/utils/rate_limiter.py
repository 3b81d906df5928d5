"""Rate limiting utilities for Binance API calls"""
from aiolimiter import AsyncLimiter

# Binance spot REST: 6000 request weight per minute per IP, klines with
# limit > 100 weigh 2 (5 and 10 for larger pages). Stay well under it.
BINANCE_RATE_LIMIT = AsyncLimiter(max_rate=10, time_period=1)  # 10 requests per second
BINANCE_BURST_LIMIT = AsyncLimiter(max_rate=100, time_period=60)  # 100 requests per minute
