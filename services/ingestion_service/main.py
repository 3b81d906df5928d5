"""
Ingestion Service - Main entry point
Keeps the 1m candle table of one symbol up to date from the Binance klines API
"""
import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime
from typing import Optional

import structlog

from shared.database import Store, create_store
from shared.exceptions import NotReadyError
from shared.query_executor import QueryExecutor
from .config.settings import DATABASE_URL, INGESTION_INTERVAL_SECONDS, INGESTION_SYMBOL, LOG_LEVEL
from .services.binance_service import BinanceIngestionService
from .utils.gap_detection import backfill_recent_candles

logger = structlog.get_logger(__name__)

# Global shutdown flag
shutdown_event = asyncio.Event()


def configure_logging(level: str = LOG_LEVEL):
    """Route structlog through stdlib logging and render JSON lines"""
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(message)s',
        stream=sys.stdout,
        force=True
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def setup_signal_handlers():
    """Setup signal handlers for graceful shutdown"""
    def signal_handler(signum, frame):
        logger.info("shutdown_signal_received", signal=signum)
        shutdown_event.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)


async def run_once(
    store: Store,
    symbol: str = INGESTION_SYMBOL,
    binance_service: Optional[BinanceIngestionService] = None,
    now: Optional[datetime] = None
) -> int:
    """Single ingestion run: probe the store, then gap-fill the symbol

    Raises whatever the run hits; nothing is retried at this level.
    """
    if not store.is_ready and not await asyncio.to_thread(store.probe):
        raise NotReadyError("Database connection not established")

    executor = QueryExecutor(store)
    started = datetime.now()

    if binance_service is None:
        async with BinanceIngestionService() as service:
            saved = await backfill_recent_candles(service, executor, symbol, now=now)
    else:
        saved = await backfill_recent_candles(binance_service, executor, symbol, now=now)

    logger.info(
        "ingestion_completed",
        symbol=symbol,
        candles_saved=saved,
        duration_seconds=(datetime.now() - started).total_seconds()
    )
    return saved


async def run_scheduled(store: Store, symbol: str, interval: int):
    """Run one ingestion per interval until shutdown

    A failed run is logged and the next tick catches up through the gap
    calculation.
    """
    logger.info("ingestion_scheduler_started", symbol=symbol, interval_seconds=interval)
    while not shutdown_event.is_set():
        try:
            await run_once(store, symbol)
        except asyncio.CancelledError:
            logger.info("ingestion_scheduler_cancelled")
            break
        except Exception as e:
            logger.error("ingestion_failed", symbol=symbol, error=str(e), exc_info=True)

        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass
    logger.info("ingestion_scheduler_stopped")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest recent 1m candles from Binance")
    parser.add_argument("--symbol", default=INGESTION_SYMBOL, help="symbol to ingest (default: %(default)s)")
    parser.add_argument(
        "--once",
        action="store_true",
        help="run a single ingestion and exit (non-zero on failure)"
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=INGESTION_INTERVAL_SECONDS,
        help="seconds between runs when scheduling (default: %(default)s)"
    )
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging()
    store = create_store(DATABASE_URL)
    symbol = args.symbol.upper()

    try:
        if args.once:
            try:
                await run_once(store, symbol)
            except Exception as e:
                logger.error("ingestion_failed", symbol=symbol, error=str(e), exc_info=True)
                return 1
            return 0

        setup_signal_handlers()
        await run_scheduled(store, symbol, args.interval)
        return 0
    finally:
        store.dispose()


def run():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
