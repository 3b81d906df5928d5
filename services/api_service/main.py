"""
API Service - read path for candle data
Repository pattern + service layer, with the store readiness flag guarding every query
"""
import asyncio
from typing import List, Optional

from fastapi import FastAPI, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from shared.config import DB_PROBE_INTERVAL_SECONDS, DEFAULT_SYMBOL
from shared.database import Store, create_store
from shared.logger import setup_logger
from . import __version__
from .dependencies import get_candle_service, get_store
from .exceptions import DomainException
from .services import CandleService

logger = setup_logger(__name__)


# ============================================================================
# Pydantic Models
# ============================================================================

class Candlestick(BaseModel):
    time: str  # "HH:MM" in the display timezone
    open: float
    high: float
    low: float
    close: float
    volume: float


class HealthResponse(BaseModel):
    status: str
    database: str


# ============================================================================
# Application
# ============================================================================

async def wait_until_ready(store: Store, interval: float = DB_PROBE_INTERVAL_SECONDS):
    """Re-probe the store until the first successful round trip"""
    while not store.is_ready:
        await asyncio.sleep(interval)
        if await asyncio.to_thread(store.probe):
            logger.info("API service ready")


def create_app(store: Optional[Store] = None) -> FastAPI:
    app = FastAPI(
        title="Candle Feed API",
        description="Recent OHLC candles at 1m, 15m and 1h resolution",
        version=__version__
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.store = store
    app.state.owns_store = store is None
    app.state.probe_task = None

    @app.on_event("startup")
    async def startup_event():
        """Initialize on startup"""
        if app.state.store is None:
            app.state.store = create_store()

        if await asyncio.to_thread(app.state.store.probe):
            logger.info("API service started")
        else:
            logger.error("Database initialization failed, serving 503 until it is reachable")
            app.state.probe_task = asyncio.create_task(wait_until_ready(app.state.store))

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup on shutdown"""
        task = app.state.probe_task
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if app.state.owns_store and app.state.store is not None:
            app.state.store.dispose()

    # ========================================================================
    # Error Handlers
    # ========================================================================

    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.error_code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # ========================================================================
    # Health & Root Endpoints
    # ========================================================================

    @app.get("/")
    async def root():
        return {"message": "Candle Feed API", "version": __version__}

    @app.get("/health", response_model=HealthResponse)
    def health_check(store: Store = Depends(get_store)):
        if store.is_ready and store.probe():
            return {"status": "healthy", "database": "connected"}
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "disconnected"}
        )

    # ========================================================================
    # Candle Endpoints
    # ========================================================================

    # Sync handlers run in the threadpool, so retry backoff only blocks the
    # request that hit it.
    @app.get("/candles/{symbol}", response_model=List[Candlestick])
    def get_candles(
        symbol: str,
        resolution: str = Query("1m"),
        limit: Optional[str] = Query(None),
        candle_service: CandleService = Depends(get_candle_service)
    ):
        """Get the last ``limit`` candles for a symbol, newest first"""
        return candle_service.get_candles(symbol=symbol, resolution=resolution, limit=limit)

    @app.get("/api/latest", response_model=List[Candlestick])
    def get_latest(
        symbol: str = Query(DEFAULT_SYMBOL),
        candle_service: CandleService = Depends(get_candle_service)
    ):
        """Get the last day of 1m candles"""
        return candle_service.get_latest(symbol)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
