"""
Binance ingestion service for fetching 1-minute klines from the Binance spot API
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, List, Optional

import aiohttp
import structlog

from shared.exceptions import MalformedUpstreamDataError, UpstreamUnavailableError
from ..config.settings import BINANCE_API_URL, BINANCE_REQUEST_TIMEOUT, KLINES_PAGE_LIMIT
from ..utils.rate_limiter import BINANCE_RATE_LIMIT, BINANCE_BURST_LIMIT
from ..utils.types import KlineData, KlineField, MINUTE_MS, decode_kline

logger = structlog.get_logger(__name__)

KLINE_INTERVAL = "1m"


def _open_time_ms(kline: Any) -> int:
    """Open time of a raw kline, used to stitch pages together"""
    if not isinstance(kline, (list, tuple)) or not kline:
        raise MalformedUpstreamDataError(f"Kline is not an array: {kline!r}")
    value = kline[KlineField.OPEN_TIME]
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedUpstreamDataError(f"open_time is not an integer: {value!r}")
    return value


class BinanceIngestionService:
    """Client for the Binance spot klines endpoint (api/v3/klines)"""

    def __init__(
        self,
        base_url: str = BINANCE_API_URL,
        page_limit: int = KLINES_PAGE_LIMIT,
        timeout: float = BINANCE_REQUEST_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.page_limit = page_limit
        self.timeout = timeout
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self):
        if self.session is None:
            self.session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None

    async def _fetch_page(
        self,
        symbol: str,
        limit: int,
        start_time_ms: Optional[int] = None
    ) -> List[list]:
        """Fetch one page of klines with rate limiting

        Args:
            symbol: Trading symbol
            limit: Number of klines (at most ``page_limit``)
            start_time_ms: Optional open time of the first kline, in milliseconds
        """
        url = f"{self.base_url}/api/v3/klines"
        params = {
            "symbol": symbol,
            "interval": KLINE_INTERVAL,
            "limit": limit
        }
        if start_time_ms is not None:
            params["startTime"] = start_time_ms

        try:
            async with BINANCE_RATE_LIMIT:
                async with BINANCE_BURST_LIMIT:
                    async with self.session.get(
                        url, params=params, timeout=aiohttp.ClientTimeout(total=self.timeout)
                    ) as response:
                        if response.status != 200:
                            body = await response.text()
                            logger.error(
                                "klines_fetch_failed",
                                symbol=symbol,
                                status_code=response.status,
                                body=body[:200]
                            )
                            raise UpstreamUnavailableError(
                                f"Binance klines request failed with status {response.status}",
                                status=response.status
                            )
                        data = await response.json()
        except aiohttp.ContentTypeError as e:
            raise MalformedUpstreamDataError(f"Klines response is not JSON: {e.message}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("klines_fetch_error", symbol=symbol, error=str(e) or type(e).__name__)
            raise UpstreamUnavailableError(f"Binance klines request failed: {e!r}") from e
        except ValueError as e:
            raise MalformedUpstreamDataError(f"Klines response is not valid JSON: {e}") from e

        if not isinstance(data, list):
            raise MalformedUpstreamDataError(f"Klines response is not an array: {type(data).__name__}")

        logger.info(
            "klines_fetched",
            symbol=symbol,
            interval=KLINE_INTERVAL,
            count=len(data),
            limit=limit,
            start_time=start_time_ms
        )
        return data

    async def fetch_klines(
        self,
        symbol: str,
        limit: int,
        now: Optional[datetime] = None
    ) -> List[list]:
        """Fetch the most recent ``limit`` 1m klines, oldest first

        Windows larger than one page are fetched forward from
        ``current minute - (limit - 1)`` in consecutive pages. The call is
        not retried; failures propagate to the ingestion run.
        """
        symbol = symbol.upper()
        if limit <= self.page_limit:
            return await self._fetch_page(symbol, limit)

        now = now or datetime.now(timezone.utc)
        now_ms = int(now.timestamp() * 1000)
        start_ms = now_ms - now_ms % MINUTE_MS - (limit - 1) * MINUTE_MS

        klines: List[list] = []
        last_open_ms: Optional[int] = None
        remaining = limit
        while remaining > 0:
            page_size = min(remaining, self.page_limit)
            page = await self._fetch_page(symbol, page_size, start_time_ms=start_ms)
            fresh = [k for k in page if last_open_ms is None or _open_time_ms(k) > last_open_ms]
            klines.extend(fresh)
            if not fresh or len(page) < page_size:
                break
            last_open_ms = _open_time_ms(fresh[-1])
            remaining -= len(fresh)
            start_ms = last_open_ms + MINUTE_MS

        logger.debug("klines_window_fetched", symbol=symbol, requested=limit, count=len(klines))
        return klines

    def parse_klines(self, klines: List[list], symbol: str) -> List[KlineData]:
        """Parse raw klines; a single malformed element fails the whole batch"""
        candles = []
        for index, kline in enumerate(klines):
            try:
                candles.append(decode_kline(kline, symbol))
            except MalformedUpstreamDataError as e:
                logger.error("kline_parse_error", symbol=symbol, index=index, error=e.message)
                raise
        return candles
