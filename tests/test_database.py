from sqlalchemy.pool import QueuePool

import shared.database as database
from shared.config import DB_POOL_MAX, DB_POOL_MIN, DB_STATEMENT_TIMEOUT_MS
from shared.database import create_store


def test_pool_is_bounded_by_configured_min_and_max(tmp_path):
    store = create_store(f"sqlite:///{tmp_path / 'candles.db'}")
    try:
        assert isinstance(store.engine.pool, QueuePool)
        assert store.engine.pool.size() == DB_POOL_MIN
        assert store.engine.pool._max_overflow == DB_POOL_MAX - DB_POOL_MIN
        assert not store.is_ready
    finally:
        store.dispose()


def test_postgres_connections_carry_statement_timeout(monkeypatch):
    captured = {}

    def fake_create_engine(url, **kwargs):
        captured["url"] = url
        captured.update(kwargs)
        return object()

    monkeypatch.setattr(database, "create_engine", fake_create_engine)

    create_store("postgresql://candles@db/candles")

    assert captured["url"] == "postgresql://candles@db/candles"
    assert captured["connect_args"]["options"] == f"-c statement_timeout={DB_STATEMENT_TIMEOUT_MS}"
    assert "connect_timeout" in captured["connect_args"]
    assert captured["pool_size"] == DB_POOL_MIN
    assert captured["max_overflow"] == DB_POOL_MAX - DB_POOL_MIN


def test_other_backends_get_no_driver_options(monkeypatch):
    captured = {}
    monkeypatch.setattr(database, "create_engine", lambda url, **kwargs: captured.update(kwargs) or object())

    create_store("sqlite://")

    assert captured["connect_args"] == {}
