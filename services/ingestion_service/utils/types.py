"""Type definitions and decoding for Binance klines"""
import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import IntEnum
from typing import Any, TypedDict

from shared.exceptions import MalformedUpstreamDataError

MINUTE_MS = 60_000
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class KlineField(IntEnum):
    """Positions in a raw Binance kline array"""
    OPEN_TIME = 0
    OPEN = 1
    HIGH = 2
    LOW = 3
    CLOSE = 4
    VOLUME = 5
    CLOSE_TIME = 6
    QUOTE_ASSET_VOLUME = 7
    NUM_TRADES = 8
    TAKER_BUY_BASE_VOLUME = 9
    TAKER_BUY_QUOTE_VOLUME = 10
    IGNORE = 11


KLINE_ARITY = len(KlineField)


class KlineData(TypedDict):
    """Decoded 1m kline, keyed like the ohlc_1m columns"""
    symbol: str
    open_time: datetime
    open_price: Decimal
    high_price: Decimal
    low_price: Decimal
    close_price: Decimal
    base_volume: Decimal
    close_time: datetime
    quote_asset_volume: Decimal
    num_trades: int
    taker_buy_base_volume: Decimal
    taker_buy_quote_volume: Decimal


def _decimal(raw: list, field: KlineField) -> Decimal:
    value = raw[field]
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise MalformedUpstreamDataError(f"{field.name.lower()}: unexpected type {type(value).__name__}")
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise MalformedUpstreamDataError(f"{field.name.lower()}: not a number: {value!r}")
    if not result.is_finite():
        raise MalformedUpstreamDataError(f"{field.name.lower()}: not finite: {value!r}")
    return result


def _integer(raw: list, field: KlineField) -> int:
    value = raw[field]
    if isinstance(value, bool):
        raise MalformedUpstreamDataError(f"{field.name.lower()}: unexpected type bool")
    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            raise MalformedUpstreamDataError(f"{field.name.lower()}: not an integer: {value!r}")
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise MalformedUpstreamDataError(f"{field.name.lower()}: not an integer: {value!r}")


def _timestamp(raw: list, field: KlineField) -> datetime:
    ms = _integer(raw, field)
    try:
        return EPOCH + timedelta(milliseconds=ms)
    except OverflowError:
        raise MalformedUpstreamDataError(f"{field.name.lower()}: timestamp out of range: {ms}")


def decode_kline(raw: Any, symbol: str) -> KlineData:
    """Decode one raw kline array, failing closed on anything unexpected"""
    if not isinstance(raw, (list, tuple)):
        raise MalformedUpstreamDataError(f"Kline is not an array: {type(raw).__name__}")
    if len(raw) != KLINE_ARITY:
        raise MalformedUpstreamDataError(f"Kline has {len(raw)} fields, expected {KLINE_ARITY}")

    open_ms = _integer(raw, KlineField.OPEN_TIME)
    if open_ms % MINUTE_MS:
        raise MalformedUpstreamDataError(f"open_time {open_ms} is not minute aligned")

    kline = KlineData(
        symbol=symbol,
        open_time=_timestamp(raw, KlineField.OPEN_TIME),
        open_price=_decimal(raw, KlineField.OPEN),
        high_price=_decimal(raw, KlineField.HIGH),
        low_price=_decimal(raw, KlineField.LOW),
        close_price=_decimal(raw, KlineField.CLOSE),
        base_volume=_decimal(raw, KlineField.VOLUME),
        close_time=_timestamp(raw, KlineField.CLOSE_TIME),
        quote_asset_volume=_decimal(raw, KlineField.QUOTE_ASSET_VOLUME),
        num_trades=_integer(raw, KlineField.NUM_TRADES),
        taker_buy_base_volume=_decimal(raw, KlineField.TAKER_BUY_BASE_VOLUME),
        taker_buy_quote_volume=_decimal(raw, KlineField.TAKER_BUY_QUOTE_VOLUME),
    )

    body_high = max(kline["open_price"], kline["close_price"])
    body_low = min(kline["open_price"], kline["close_price"])
    if kline["high_price"] < body_high or kline["low_price"] > body_low:
        raise MalformedUpstreamDataError(
            f"Inconsistent range at {kline['open_time'].isoformat()}: "
            f"high={kline['high_price']} low={kline['low_price']}"
        )
    return kline
