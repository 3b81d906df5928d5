from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import Select, Update, select

from conftest import T0, make_kline
from shared.models import Candle
from services.ingestion_service.database.repository import (
    MAX_MERGE_ATTEMPTS,
    _merge_read_modify_write,
    build_upsert_statement,
    get_last_open_time,
    merge_candle_values,
    save_candles,
    upsert_candle,
)
from services.ingestion_service.utils.types import decode_kline


def candle(minute, **prices):
    return decode_kline(make_kline(minute, **prices), "BTCUSDT")


def stored_rows(engine):
    with engine.connect() as conn:
        return conn.execute(
            select(Candle.__table__).order_by(Candle.__table__.c.open_time)
        ).mappings().all()


def test_first_write_inserts_all_fields(engine, executor):
    assert save_candles(executor, [candle(0, high="101.5", low="99.25")]) == 1

    [row] = stored_rows(engine)
    assert row["symbol"] == "BTCUSDT"
    assert float(row["open_price"]) == 100.0
    assert float(row["high_price"]) == 101.5
    assert float(row["low_price"]) == 99.25
    assert float(row["close_price"]) == 100.5
    assert float(row["base_volume"]) == 1.5
    assert float(row["quote_asset_volume"]) == 150.75
    assert row["num_trades"] == 42
    assert row["updated_at"] is not None


@pytest.mark.parametrize("first, second", [
    (("101.0", "99.0"), ("102.5", "98.5")),  # wider on both sides
    (("103.0", "97.0"), ("101.5", "99.5")),  # narrower: range must not shrink
    (("101.0", "97.0"), ("104.0", "99.0")),  # mixed
])
def test_overlap_widens_high_low_and_replaces_close(engine, executor, first, second):
    save_candles(executor, [candle(0, high=first[0], low=first[1], close="100.5", volume="3.0")])
    save_candles(executor, [candle(0, high=second[0], low=second[1], close="100.25", volume="1.25")])

    [row] = stored_rows(engine)
    assert float(row["high_price"]) == max(float(first[0]), float(second[0]))
    assert float(row["low_price"]) == min(float(first[1]), float(second[1]))
    assert float(row["close_price"]) == 100.25
    # volume is replaced by the newer snapshot, not summed
    assert float(row["base_volume"]) == 1.25
    assert float(row["open_price"]) == 100.0


def test_reingesting_same_batch_is_idempotent(engine, executor):
    batch = [candle(0), candle(1, high="102.0", low="98.0", close="101.0")]
    save_candles(executor, batch)
    before = [(r["high_price"], r["low_price"], r["close_price"], r["base_volume"]) for r in stored_rows(engine)]

    save_candles(executor, batch)
    after = [(r["high_price"], r["low_price"], r["close_price"], r["base_volume"]) for r in stored_rows(engine)]

    assert after == before
    assert len(after) == 2


def test_failure_part_way_keeps_earlier_candles(engine, executor):
    broken = dict(candle(2))
    broken["open_price"] = None  # violates NOT NULL

    with pytest.raises(Exception):
        save_candles(executor, [candle(0), candle(1), broken, candle(3)])

    assert [r["open_time"].replace(tzinfo=None) for r in stored_rows(engine)] == [
        (T0 + timedelta(minutes=m)).replace(tzinfo=None) for m in (0, 1)
    ]


def test_get_last_open_time(store, executor):
    assert executor.execute(lambda db: get_last_open_time(db, "BTCUSDT")) is None

    save_candles(executor, [candle(0), candle(5), candle(2)])

    assert executor.execute(lambda db: get_last_open_time(db, "BTCUSDT")) == T0 + timedelta(minutes=5)
    assert executor.execute(lambda db: get_last_open_time(db, "ETHUSDT")) is None


def test_merge_rule():
    existing = {
        "high_price": Decimal("105"), "low_price": Decimal("95"),
        "close_price": Decimal("100"), "base_volume": Decimal("7"),
    }
    incoming = {
        "high_price": Decimal("103"), "low_price": Decimal("94"),
        "close_price": Decimal("96"), "base_volume": Decimal("2"),
    }

    assert merge_candle_values(existing, incoming) == {
        "close_price": Decimal("96"),
        "high_price": Decimal("105"),
        "low_price": Decimal("94"),
        "base_volume": Decimal("2"),
    }


def test_dialects_without_conflict_clause_use_read_modify_write():
    assert build_upsert_statement("mssql", candle(0)) is None
    assert build_upsert_statement("postgresql", candle(0)) is not None
    assert build_upsert_statement("sqlite", candle(0)) is not None


def test_read_modify_write_merges_into_existing_row(engine, store):
    with store.session() as db:
        upsert_candle(db, candle(0, high="101.0", low="99.0"))
        db.commit()

    with store.session() as db:
        _merge_read_modify_write(db, candle(0, high="102.0", low="99.5", close="101.5", volume="4.0"))
        db.commit()

    [row] = stored_rows(engine)
    assert float(row["high_price"]) == 102.0
    assert float(row["low_price"]) == 99.0
    assert float(row["close_price"]) == 101.5
    assert float(row["base_volume"]) == 4.0


class EmptyResult:
    def mappings(self):
        return self

    def first(self):
        return None


class RacingSession:
    """Session wrapper that plays a concurrent writer against the merge

    ``stale_reads`` SELECTs report no row; ``before_update`` runs on the real
    session ahead of each compare-and-swap UPDATE.
    """

    def __init__(self, db, stale_reads=0, before_update=None):
        self.db = db
        self.stale_reads = stale_reads
        self.before_update = before_update
        self.updates = 0

    def execute(self, statement, *args, **kwargs):
        if isinstance(statement, Select) and self.stale_reads:
            self.stale_reads -= 1
            return EmptyResult()
        if isinstance(statement, Update):
            self.updates += 1
            if self.before_update is not None:
                self.before_update(self.db)
        return self.db.execute(statement, *args, **kwargs)

    def begin_nested(self):
        return self.db.begin_nested()


def seed(store, **prices):
    with store.session() as db:
        upsert_candle(db, candle(0, **prices))
        db.commit()


def test_read_modify_write_merges_after_losing_insert_race(engine, store):
    seed(store, high="101.0", low="99.0")

    with store.session() as db:
        racing = RacingSession(db, stale_reads=1)
        _merge_read_modify_write(racing, candle(0, high="103.0", low="98.0", close="102.0"))
        db.commit()

    [row] = stored_rows(engine)
    assert (float(row["high_price"]), float(row["low_price"]), float(row["close_price"])) == (103.0, 98.0, 102.0)
    assert racing.updates == 1


def test_read_modify_write_retries_when_row_changes_before_update(engine, store):
    seed(store, high="101.0", low="99.0")
    table = Candle.__table__
    writes = []

    def concurrent_write(db):
        if not writes:
            writes.append(1)
            db.execute(table.update().values(high_price=Decimal("105.0")))

    with store.session() as db:
        racing = RacingSession(db, before_update=concurrent_write)
        _merge_read_modify_write(racing, candle(0, high="102.0", low="98.5", close="101.0"))
        db.commit()

    [row] = stored_rows(engine)
    assert float(row["high_price"]) == 105.0
    assert float(row["low_price"]) == 98.5
    assert float(row["close_price"]) == 101.0
    assert racing.updates == 2


def test_read_modify_write_gives_up_after_max_attempts(engine, store):
    seed(store)
    table = Candle.__table__

    def always_concurrent_write(db):
        db.execute(table.update().values(base_volume=table.c.base_volume + 1))

    with store.session() as db:
        racing = RacingSession(db, before_update=always_concurrent_write)
        with pytest.raises(RuntimeError, match="after 5 attempts"):
            _merge_read_modify_write(racing, candle(0, high="102.0"))

    assert racing.updates == MAX_MERGE_ATTEMPTS
