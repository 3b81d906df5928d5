"""
FastAPI dependencies for dependency injection
"""
from fastapi import Depends, Request

from shared.database import Store
from shared.query_executor import QueryExecutor
from .repositories import CandleRepository
from .services import CandleService


def get_store(request: Request) -> Store:
    """Store handle owned by the application"""
    return request.app.state.store


def get_query_executor(store: Store = Depends(get_store)) -> QueryExecutor:
    return QueryExecutor(store)


def get_candle_service(executor: QueryExecutor = Depends(get_query_executor)) -> CandleService:
    """Get candle service backed by the resilient executor"""
    return CandleService(CandleRepository(executor))
