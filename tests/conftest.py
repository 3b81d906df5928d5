from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from shared.database import Store
from shared.models import Base, aggregate_metadata
from shared.query_executor import QueryExecutor

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
T0_MS = int(T0.timestamp() * 1000)
MINUTE_MS = 60_000


def make_kline(minute, open_="100.0", high="101.0", low="99.0", close="100.5", volume="1.5"):
    """Raw Binance kline for minute ``minute`` after T0"""
    open_ms = T0_MS + minute * MINUTE_MS
    return [
        open_ms, open_, high, low, close, volume,
        open_ms + MINUTE_MS - 1, "150.75", 42, "0.75", "75.25", "0",
    ]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    aggregate_metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    store = Store(engine)
    assert store.probe()
    return store


@pytest.fixture
def unreachable_store(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'missing' / 'candles.db'}")
    yield Store(engine)
    engine.dispose()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def executor(store, sleeps):
    return QueryExecutor(store, sleep=sleeps.append)
