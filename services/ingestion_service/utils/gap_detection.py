"""Gap detection and backfill of recent 1m candles"""
import math
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog

from shared.query_executor import QueryExecutor
from ..config.settings import BOOTSTRAP_DAYS
from ..database.repository import as_utc, get_last_open_time, save_candles

logger = structlog.get_logger(__name__)

MINUTE = timedelta(minutes=1)


def calculate_lookback_minutes(
    last_open_time: Optional[datetime],
    now: Optional[datetime] = None,
    bootstrap_days: int = BOOTSTRAP_DAYS
) -> int:
    """Number of most recent minutes to request from upstream

    An empty store bootstraps with the whole window ``now - bootstrap_days``.
    Otherwise the window reaches back to the last stored minute so it is
    fetched again; the result is never below 1, which also covers a last
    record stamped in the future.
    """
    now = as_utc(now) or datetime.now(timezone.utc)
    if last_open_time is None:
        return math.floor(timedelta(days=bootstrap_days) / MINUTE)

    elapsed = math.floor((now - as_utc(last_open_time)) / MINUTE)
    return max(1, elapsed)


async def backfill_recent_candles(
    binance_service,
    executor: QueryExecutor,
    symbol: str,
    now: Optional[datetime] = None
) -> int:
    """Fill the gap between the last stored candle and now

    1. Look up the latest stored open_time for the symbol
    2. Compute the lookback window
    3. Fetch that many 1m klines from Binance and decode them
    4. Upsert them one by one

    Errors propagate untouched; the next scheduled run catches up.

    Returns:
        Number of candles written
    """
    symbol = symbol.upper()

    last_open_time = executor.execute(lambda db: get_last_open_time(db, symbol))
    limit = calculate_lookback_minutes(last_open_time, now)

    logger.info(
        "backfill_recent_candles_starting",
        symbol=symbol,
        last_open_time=last_open_time.isoformat() if last_open_time else None,
        limit=limit
    )

    klines = await binance_service.fetch_klines(symbol, limit, now=now)
    if not klines:
        logger.warning("backfill_no_klines", symbol=symbol, limit=limit)
        return 0

    candles = binance_service.parse_klines(klines, symbol)
    saved = save_candles(executor, candles)

    logger.info("backfill_recent_candles_completed", symbol=symbol, fetched=len(klines), saved=saved)
    return saved
