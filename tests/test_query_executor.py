import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, ProgrammingError

from shared.exceptions import NotReadyError, QueryFailedError
from shared.query_executor import QueryExecutor, classify_error, retry_decision


class FakePgError(Exception):
    def __init__(self, message, pgcode=None):
        super().__init__(message)
        self.pgcode = pgcode


def operational(message, pgcode=None):
    return OperationalError("SELECT 1", {}, FakePgError(message, pgcode))


class FlakyOperation:
    """Raises the queued errors in order, then returns ``result``"""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    def __call__(self, session):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.mark.parametrize("error", [
    operational("could not connect to server: Connection refused"),
    operational("connection does not exist", pgcode="08003"),
    operational("timeout expired"),
    operational("terminating connection due to administrator command", pgcode="57P01"),
    operational("server closed the connection unexpectedly"),
    operational("could not translate host name: No route to host"),
    OperationalError("SELECT 1", {}, ConnectionRefusedError("refused")),
])
def test_connectivity_errors_are_transient(error):
    assert classify_error(error) is True


def test_invalidated_connection_is_transient():
    error = DBAPIError("SELECT 1", {}, FakePgError("boom"), connection_invalidated=True)
    assert classify_error(error) is True


@pytest.mark.parametrize("error", [
    ProgrammingError("SELEC 1", {}, FakePgError("syntax error at or near \"SELEC\"", pgcode="42601")),
    IntegrityError("INSERT", {}, FakePgError("duplicate key value", pgcode="23505")),
    OperationalError("SELECT 1", {}, FakePgError("division by zero", pgcode="22012")),
])
def test_other_errors_are_not_transient(error):
    assert classify_error(error) is False


def test_retry_policy_backs_off_exponentially():
    assert retry_decision(0, 3, True, base_delay=1.0) == (True, 1.0)
    assert retry_decision(1, 3, True, base_delay=1.0) == (True, 2.0)
    assert retry_decision(2, 3, True, base_delay=1.0) == (False, 0.0)


def test_retry_policy_stops_on_non_transient():
    assert retry_decision(0, 3, False) == (False, 0.0)


def test_retry_policy_single_attempt_never_retries():
    assert retry_decision(0, 1, True).retry is False


def test_transient_failure_is_retried_then_succeeds(executor, sleeps):
    operation = FlakyOperation([operational("Connection refused")], result=42)

    assert executor.execute(operation) == 42
    assert operation.calls == 2
    assert sleeps == [1.0]


def test_transient_failures_exhaust_retries(executor, sleeps):
    operation = FlakyOperation([operational("timeout expired")] * 3)

    with pytest.raises(QueryFailedError) as exc_info:
        executor.execute(operation)

    assert operation.calls == 3
    assert sleeps == [1.0, 2.0]
    assert exc_info.value.attempts == 3
    assert "timeout expired" in exc_info.value.message


def test_non_transient_failure_propagates_immediately(executor, sleeps):
    operation = FlakyOperation([
        ProgrammingError("SELEC 1", {}, FakePgError("syntax error", pgcode="42601")),
    ])

    with pytest.raises(QueryFailedError) as exc_info:
        executor.execute(operation)

    assert operation.calls == 1
    assert sleeps == []
    assert exc_info.value.code == "42601"
    assert exc_info.value.to_dict()["error"] == "QueryFailed"


def test_not_ready_fails_fast(unreachable_store):
    operation = FlakyOperation([])
    executor = QueryExecutor(unreachable_store, sleep=lambda _: pytest.fail("must not sleep"))

    with pytest.raises(NotReadyError):
        executor.execute(operation)
    assert operation.calls == 0


def test_readiness_is_set_by_first_successful_probe(engine):
    from shared.database import Store

    store = Store(engine)
    assert not store.is_ready
    assert store.probe()
    assert store.is_ready


def test_unreachable_store_stays_not_ready(unreachable_store):
    assert unreachable_store.probe() is False
    assert unreachable_store.is_ready is False
