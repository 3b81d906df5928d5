"""
Service for candle business logic: resolution routing and shaping
"""
from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, List, NamedTuple, Optional
from zoneinfo import ZoneInfo

from ..repositories.candle_repository import CandleRepository
from ..exceptions import InvalidLimitError, InvalidResolutionError, NotFoundError
from shared.config import (
    CANDLE_LIMIT_DEFAULT,
    CANDLE_LIMIT_MAX,
    DEFAULT_SYMBOL,
    DISPLAY_TIMEZONE,
    LATEST_CANDLES_LIMIT,
)


class Relation(NamedTuple):
    table: str
    time_column: str


RESOLUTIONS: Dict[str, Relation] = {
    "1m": Relation("ohlc_1m", "open_time"),
    "15m": Relation("ohlc_15m", "bucket"),
    "1h": Relation("ohlc_1h", "bucket"),
}


def parse_limit(limit: Any) -> int:
    """Parse and bound-check a requested row limit"""
    if limit is None:
        return CANDLE_LIMIT_DEFAULT
    if isinstance(limit, bool):
        raise InvalidLimitError(f"Invalid limit '{limit}'")
    try:
        value = int(str(limit).strip())
    except ValueError:
        raise InvalidLimitError(f"Invalid limit '{limit}': must be an integer")
    if value < 1 or value > CANDLE_LIMIT_MAX:
        raise InvalidLimitError(f"Invalid limit {value}: must be between 1 and {CANDLE_LIMIT_MAX}")
    return value


def format_time_label(value: datetime, tz: Optional[tzinfo] = None) -> str:
    """Render a stored timestamp as "HH:MM" in the display timezone

    Naive timestamps are taken as UTC; ``tz=None`` means the server's local zone.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(tz).strftime("%H:%M")


class CandleService:
    """Service for candle operations"""

    def __init__(self, candle_repo: CandleRepository, display_tz: Optional[tzinfo] = None):
        self.candle_repo = candle_repo
        if display_tz is None and DISPLAY_TIMEZONE:
            display_tz = ZoneInfo(DISPLAY_TIMEZONE)
        self.display_tz = display_tz

    def get_candles(
        self,
        symbol: str,
        resolution: str = "1m",
        limit: Any = CANDLE_LIMIT_DEFAULT
    ) -> List[Dict]:
        """Get candles for symbol at resolution, newest first"""
        relation = RESOLUTIONS.get(resolution)
        if relation is None:
            raise InvalidResolutionError(resolution, RESOLUTIONS.keys())
        limit = parse_limit(limit)

        rows = self.candle_repo.find_latest(
            relation=relation.table,
            time_column=relation.time_column,
            symbol=symbol,
            limit=limit
        )
        if not rows:
            raise NotFoundError(f"No {resolution} candles found for {symbol}")
        return [self._to_candlestick(row) for row in rows]

    def get_latest(self, symbol: Optional[str] = None) -> List[Dict]:
        """Get the last day of 1m candles"""
        return self.get_candles(symbol or DEFAULT_SYMBOL, "1m", LATEST_CANDLES_LIMIT)

    def _to_candlestick(self, row: Dict) -> Dict:
        return {
            "time": format_time_label(row["time"], self.display_tz),
            "open": float(row["open"]),
            "high": float(row["high"]),
            "low": float(row["low"]),
            "close": float(row["close"]),
            "volume": float(row["volume"]),
        }
