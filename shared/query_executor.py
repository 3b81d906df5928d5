"""
Resilient query execution: bounded retry with exponential backoff
"""
import logging
import time
from typing import Callable, NamedTuple, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session

from shared.config import DB_RETRY_ATTEMPTS, DB_RETRY_BASE_DELAY
from shared.database import Store
from shared.exceptions import NotReadyError, QueryFailedError

logger = logging.getLogger(__name__)

T = TypeVar('T')

# SQLSTATE codes for lost or missing connections
TRANSIENT_PGCODES = {
    "08000",  # connection_exception
    "08001",  # sqlclient_unable_to_establish_sqlconnection
    "08003",  # connection_does_not_exist
    "08006",  # connection_failure
    "57P01",  # admin_shutdown (connection terminated)
    "57P03",  # cannot_connect_now
}

TRANSIENT_MESSAGES = (
    "connection refused",
    "connection does not exist",
    "connection already closed",
    "timeout expired",
    "timed out",
    "server closed the connection unexpectedly",
    "terminating connection",
    "connection terminated",
    "could not connect to server",
    "no route to host",
    "host is unreachable",
    "network is unreachable",
)


class RetryDecision(NamedTuple):
    retry: bool
    delay: float


def _driver_error(exc: BaseException) -> BaseException:
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        return exc.orig
    return exc


def error_code(exc: BaseException) -> Optional[str]:
    """SQLSTATE of the driver error when the driver exposes one"""
    orig = _driver_error(exc)
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def classify_error(exc: BaseException) -> bool:
    """Return True when ``exc`` is a transient connectivity failure"""
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True

    orig = _driver_error(exc)
    if isinstance(orig, (ConnectionError, TimeoutError)):
        return True

    code = error_code(exc)
    if code in TRANSIENT_PGCODES:
        return True

    message = str(orig).lower()
    return any(fragment in message for fragment in TRANSIENT_MESSAGES)


def retry_decision(
    attempt: int,
    max_attempts: int,
    transient: bool,
    base_delay: float = DB_RETRY_BASE_DELAY
) -> RetryDecision:
    """Decide whether attempt ``attempt`` (0-based) should be retried

    Transient failures wait ``base_delay * 2**attempt`` before the next try;
    anything else, or the last attempt, stops immediately.
    """
    if not transient or attempt + 1 >= max_attempts:
        return RetryDecision(False, 0.0)
    return RetryDecision(True, base_delay * (2 ** attempt))


class QueryExecutor:
    """Runs store operations with retry on transient failures

    Each attempt gets its own session; the operation's work is committed when
    it returns. Backoff sleeps block only the calling thread.
    """

    def __init__(
        self,
        store: Store,
        max_attempts: int = DB_RETRY_ATTEMPTS,
        base_delay: float = DB_RETRY_BASE_DELAY,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.store = store
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self._sleep = sleep

    def execute(self, operation: Callable[[Session], T]) -> T:
        if not self.store.is_ready:
            raise NotReadyError("Database connection not established")

        attempt = 0
        while True:
            try:
                with self.store.session() as session:
                    result = operation(session)
                    session.commit()
                    return result
            except SQLAlchemyError as e:
                transient = classify_error(e)
                decision = retry_decision(attempt, self.max_attempts, transient, self.base_delay)
                if not decision.retry:
                    logger.error(
                        f"Query failed after {attempt + 1} attempt(s) "
                        f"(transient={transient}): {_driver_error(e)}"
                    )
                    raise QueryFailedError(
                        str(_driver_error(e)).strip(),
                        code=error_code(e),
                        attempts=attempt + 1
                    ) from e

                logger.warning(
                    f"Transient database error on attempt {attempt + 1}/{self.max_attempts}, "
                    f"retrying in {decision.delay:.1f}s: {_driver_error(e)}"
                )
                self._sleep(decision.delay)
                attempt += 1
