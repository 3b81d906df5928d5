"""
SQLAlchemy models for Candle Feed
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, MetaData, Table
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class Candle(Base):
    """1-minute candle, identified by (symbol, open_time)"""
    __tablename__ = "ohlc_1m"

    symbol = Column(String(20), primary_key=True)
    open_time = Column(DateTime(timezone=True), primary_key=True)
    open_price = Column(Numeric(20, 8), nullable=False)
    high_price = Column(Numeric(20, 8), nullable=False)
    low_price = Column(Numeric(20, 8), nullable=False)
    close_price = Column(Numeric(20, 8), nullable=False)
    base_volume = Column(Numeric(30, 8), nullable=False)
    close_time = Column(DateTime(timezone=True), nullable=False)
    quote_asset_volume = Column(Numeric(30, 8), nullable=False)
    num_trades = Column(Integer, nullable=False)
    taker_buy_base_volume = Column(Numeric(30, 8), nullable=False)
    taker_buy_quote_volume = Column(Numeric(30, 8), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# Aggregates are maintained outside the application (materialized views in
# PostgreSQL, see sql/schema.sql), so they live on their own MetaData and are
# never created by Base.metadata.create_all.
aggregate_metadata = MetaData()


def _aggregate_table(name: str) -> Table:
    return Table(
        name,
        aggregate_metadata,
        Column("symbol", String(20), primary_key=True),
        Column("bucket", DateTime(timezone=True), primary_key=True),
        Column("open_price", Numeric(20, 8)),
        Column("high_price", Numeric(20, 8)),
        Column("low_price", Numeric(20, 8)),
        Column("close_price", Numeric(20, 8)),
        Column("base_volume", Numeric(30, 8)),
    )


Candle15m = _aggregate_table("ohlc_15m")
Candle1h = _aggregate_table("ohlc_1h")
