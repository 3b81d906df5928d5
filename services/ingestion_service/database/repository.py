"""Database repository functions for ingestion service: last-record lookup and candle upsert"""
from datetime import datetime, timezone
from typing import Dict, List, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shared.models import Candle
from shared.query_executor import QueryExecutor
from ..utils.types import KlineData

logger = structlog.get_logger(__name__)

ohlc_1m = Candle.__table__

# Columns rewritten when a minute is ingested again; everything else keeps
# the first stored value.
MERGED_COLUMNS = ("close_price", "high_price", "low_price", "base_volume")

# Compare-and-swap attempts for dialects without ON CONFLICT support
MAX_MERGE_ATTEMPTS = 5


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps (SQLite drops the offset)"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def get_last_open_time(db: Session, symbol: str) -> Optional[datetime]:
    """Most recent open_time stored for a symbol, or None when empty"""
    result = db.execute(
        select(ohlc_1m.c.open_time)
        .where(ohlc_1m.c.symbol == symbol)
        .order_by(ohlc_1m.c.open_time.desc())
        .limit(1)
    ).scalar()
    return as_utc(result)


def merge_candle_values(existing: Dict, incoming: Dict) -> Dict:
    """Merge rule for a minute that is already stored

    High/low only ever widen; close and volume take the incoming value
    (each upstream minute is a complete snapshot, so volume is replaced).
    """
    return {
        "close_price": incoming["close_price"],
        "high_price": max(existing["high_price"], incoming["high_price"]),
        "low_price": min(existing["low_price"], incoming["low_price"]),
        "base_volume": incoming["base_volume"],
    }


def build_upsert_statement(dialect_name: str, candle: KlineData):
    """Single-statement INSERT .. ON CONFLICT DO UPDATE for dialects that have it"""
    if dialect_name == "postgresql":
        stmt = postgresql.insert(ohlc_1m).values(**candle)
        greatest, least = func.greatest, func.least
    elif dialect_name == "sqlite":
        stmt = sqlite.insert(ohlc_1m).values(**candle)
        greatest, least = func.max, func.min
    else:
        return None

    return stmt.on_conflict_do_update(
        index_elements=[ohlc_1m.c.symbol, ohlc_1m.c.open_time],
        set_={
            "close_price": stmt.excluded.close_price,
            "high_price": greatest(ohlc_1m.c.high_price, stmt.excluded.high_price),
            "low_price": least(ohlc_1m.c.low_price, stmt.excluded.low_price),
            "base_volume": stmt.excluded.base_volume,
            "updated_at": func.now(),
        }
    )


def _merge_read_modify_write(db: Session, candle: KlineData):
    """Upsert for stores without a native conflict clause

    The primary key guards the insert; losing an insert race re-reads the
    winner's row and merges into it, updating only if the row is unchanged
    since it was read.
    """
    key = (ohlc_1m.c.symbol == candle["symbol"]) & (ohlc_1m.c.open_time == candle["open_time"])

    for attempt in range(MAX_MERGE_ATTEMPTS):
        existing = db.execute(
            select(*(ohlc_1m.c[name] for name in MERGED_COLUMNS)).where(key)
        ).mappings().first()

        if existing is None:
            try:
                with db.begin_nested():
                    db.execute(ohlc_1m.insert().values(**candle))
                return
            except IntegrityError:
                logger.debug("candle_insert_conflict", symbol=candle["symbol"],
                             open_time=candle["open_time"].isoformat(), attempt=attempt + 1)
                continue

        merged = merge_candle_values(existing, candle)
        unchanged = [ohlc_1m.c[name] == existing[name] for name in MERGED_COLUMNS]
        result = db.execute(
            ohlc_1m.update()
            .where(key, *unchanged)
            .values(**merged, updated_at=func.now())
        )
        if result.rowcount == 1:
            return

    raise RuntimeError(
        f"Could not merge candle {candle['symbol']} {candle['open_time'].isoformat()} "
        f"after {MAX_MERGE_ATTEMPTS} attempts"
    )


def upsert_candle(db: Session, candle: KlineData):
    """Insert a candle or merge it into the stored one (no commit)"""
    stmt = build_upsert_statement(db.get_bind().dialect.name, candle)
    if stmt is None:
        _merge_read_modify_write(db, candle)
    else:
        db.execute(stmt)


def save_candles(executor: QueryExecutor, candles: List[KlineData]) -> int:
    """Upsert candles one at a time, in order, each in its own transaction

    A failure part way leaves earlier candles committed; the merge is
    idempotent so the next run simply covers the same minutes again.
    """
    saved = 0
    for candle in candles:
        executor.execute(lambda db, candle=candle: upsert_candle(db, candle))
        saved += 1
        logger.debug("candle_upserted", symbol=candle["symbol"], open_time=candle["open_time"].isoformat())

    if candles:
        logger.info(
            "candles_saved",
            symbol=candles[0]["symbol"],
            count=saved,
            first_open_time=candles[0]["open_time"].isoformat(),
            last_open_time=candles[-1]["open_time"].isoformat()
        )
    return saved
