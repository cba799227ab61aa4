import random
from unittest.mock import MagicMock

import pytest
from django.db import IntegrityError, OperationalError

from shared.infrastructure.metrics import TransactionMetrics
from shared.infrastructure.transactions import (
    DEADLOCK,
    LOCK_TIMEOUT,
    OTHER,
    SERIALIZABLE,
    SERIALIZATION_FAILURE,
    STORAGE_BUSY,
    TransactionFailed,
    TransactionRetryEngine,
    classify_error,
    compute_delay_ms,
    transactional,
)


class DriverError(Exception):
    """Stand-in for a psycopg error carrying a SQLSTATE."""

    def __init__(self, message, pgcode=None):
        super().__init__(message)
        self.pgcode = pgcode


def db_error(message, pgcode=None):
    error = OperationalError(message)
    if pgcode:
        error.__cause__ = DriverError(message, pgcode)
    return error


class Flaky:
    """Raises the queued errors one per call, then returns `result`."""

    def __init__(self, *errors, result="done"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def metrics():
    return MagicMock(spec=TransactionMetrics)


@pytest.fixture
def engine(sleeps, metrics):
    return TransactionRetryEngine(metrics=metrics, sleep=sleeps.append, rng=random.Random(7))


class TestClassifyError:
    def test_sqlstate_codes_on_the_wrapped_driver_error(self):
        assert classify_error(db_error("boom", "40P01")) == DEADLOCK
        assert classify_error(db_error("boom", "40001")) == SERIALIZATION_FAILURE
        assert classify_error(db_error("boom", "55P03")) == LOCK_TIMEOUT

    def test_mysql_error_numbers(self):
        assert classify_error(OperationalError(1213, "Deadlock found when trying to get lock")) == DEADLOCK
        assert classify_error(OperationalError(1205, "Lock wait timeout exceeded")) == LOCK_TIMEOUT

    def test_message_fallbacks(self):
        assert classify_error(OperationalError("deadlock detected")) == DEADLOCK
        assert classify_error(OperationalError("could not serialize access due to concurrent update")) == SERIALIZATION_FAILURE
        assert classify_error(OperationalError("canceling statement due to lock timeout")) == LOCK_TIMEOUT
        assert classify_error(OperationalError("database is locked")) == STORAGE_BUSY

    def test_everything_else_is_other(self):
        assert classify_error(IntegrityError("UNIQUE constraint failed: rooms_room.name")) == OTHER
        assert classify_error(db_error("syntax error", "42601")) == OTHER


class TestComputeDelay:
    def test_deadlock_uses_short_random_pause(self):
        rng = random.Random(1)
        for attempt in range(1, 5):
            assert 10 <= compute_delay_ms(DEADLOCK, attempt, 100, rng) <= 50

    def test_serialization_failure_backs_off_exponentially(self):
        rng = random.Random(1)
        assert 100 <= compute_delay_ms(SERIALIZATION_FAILURE, 1, 100, rng) <= 200
        assert 400 <= compute_delay_ms(SERIALIZATION_FAILURE, 3, 100, rng) <= 500

    def test_lock_timeout_backs_off_harder(self):
        rng = random.Random(1)
        assert 200 <= compute_delay_ms(LOCK_TIMEOUT, 1, 100, rng) <= 400
        assert 400 <= compute_delay_ms(LOCK_TIMEOUT, 2, 100, rng) <= 600

    def test_storage_busy(self):
        assert 50 <= compute_delay_ms(STORAGE_BUSY, 4, 100, random.Random(1)) <= 150


@pytest.mark.django_db
class TestTransactionRetryEngine:
    def test_returns_result_of_unit_of_work(self, engine, metrics):
        assert engine.run(lambda: 42, operation_name="answer") == 42
        metrics.record_success.assert_called_once()
        assert metrics.record_success.call_args.args[0] == "answer"

    def test_retries_transient_errors_until_success(self, engine, sleeps, metrics):
        work = Flaky(db_error("deadlock detected", "40P01"), db_error("busy", "40001"))

        assert engine.run(work, max_retries=3, operation_name="create_booking") == "done"
        assert work.calls == 3
        assert len(sleeps) == 2
        assert metrics.record_retry.call_count == 2
        metrics.record_deadlock.assert_called_once_with("create_booking")
        metrics.record_serialization_failure.assert_called_once_with("create_booking")

    def test_gives_up_after_max_retries(self, engine, sleeps, metrics):
        last = db_error("could not serialize access", "40001")
        work = Flaky(db_error("x", "40001"), db_error("y", "40001"), last)

        with pytest.raises(TransactionFailed) as excinfo:
            engine.run(work, max_retries=3, operation_name="cancel_booking")

        assert excinfo.value.attempts == 3
        assert excinfo.value.operation == "cancel_booking"
        assert excinfo.value.last_error is last
        assert excinfo.value.__cause__ is last
        assert work.calls == 3
        assert len(sleeps) == 2
        metrics.record_failure.assert_called_once_with("cancel_booking", SERIALIZATION_FAILURE, 3)

    def test_transaction_failed_has_generic_public_message(self):
        error = TransactionFailed("create_booking", 3, OperationalError("deadlock on relation bookings_booking"))
        assert "bookings_booking" not in error.public_message
        assert error.retryable is True

    def test_non_transient_database_errors_are_not_retried(self, engine, sleeps):
        work = Flaky(IntegrityError("UNIQUE constraint failed"))

        with pytest.raises(IntegrityError):
            engine.run(work, max_retries=5)

        assert work.calls == 1
        assert sleeps == []

    def test_business_errors_propagate_without_retry(self, engine, sleeps):
        work = Flaky(ValueError("room is closed"))

        with pytest.raises(ValueError):
            engine.run(work, max_retries=5)

        assert work.calls == 1
        assert sleeps == []

    def test_single_attempt_when_max_retries_is_one(self, engine):
        work = Flaky(db_error("database is locked"))

        with pytest.raises(TransactionFailed) as excinfo:
            engine.run(work, max_retries=1)

        assert excinfo.value.attempts == 1

    def test_rejects_unknown_isolation_level(self, engine):
        with pytest.raises(ValueError):
            engine.run(lambda: None, "READ UNCOMMITTED")

    def test_serializable_helper_runs_work(self, engine):
        work = Flaky(db_error("x", "40001"))
        assert engine.serializable(work, operation_name="transfer") == "done"
        assert work.calls == 2


@pytest.mark.django_db
def test_transactional_decorator_names_operation_after_function(monkeypatch):
    recorded = []
    monkeypatch.setattr(
        "shared.infrastructure.transactions.transaction_engine.metrics.record_success",
        lambda operation, duration_ms, attempts: recorded.append(operation),
    )

    @transactional(SERIALIZABLE)
    def rebuild_index(value):
        return value * 2

    assert rebuild_index(21) == 42
    assert recorded == ["rebuild_index"]
