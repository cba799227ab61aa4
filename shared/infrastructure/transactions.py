"""
Transaction Retry Engine

Runs a unit of work inside a database transaction at a chosen isolation
level and retries it when the database reports a transient concurrency
failure (deadlock, serialization failure, lock timeout, busy storage).

Everything else propagates untouched: constraint violations and other
database errors are re-raised on the first attempt, and exceptions that are
not database errors at all (business rule violations) never enter the retry
loop.

Usage:
    booking = transaction_engine.run(
        lambda: create_row(...),
        READ_COMMITTED,
        operation_name="create_booking",
    )

    @transactional(SERIALIZABLE, operation_name="transfer")
    def transfer(...):
        ...
"""

import functools
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TypeVar

import structlog
from django.db import DatabaseError, connections, transaction

from shared.conf import booking_settings
from shared.domain.exceptions import TransientError
from shared.infrastructure.metrics import TransactionMetrics, transaction_metrics

logger = structlog.get_logger(__name__)

T = TypeVar("T")

READ_COMMITTED = "READ COMMITTED"
REPEATABLE_READ = "REPEATABLE READ"
SERIALIZABLE = "SERIALIZABLE"

ISOLATION_LEVELS = (READ_COMMITTED, REPEATABLE_READ, SERIALIZABLE)

# Error classes
DEADLOCK = "deadlock"
SERIALIZATION_FAILURE = "serialization_failure"
LOCK_TIMEOUT = "lock_timeout"
STORAGE_BUSY = "storage_busy"
OTHER = "other"

RETRYABLE_ERRORS = frozenset({DEADLOCK, SERIALIZATION_FAILURE, LOCK_TIMEOUT, STORAGE_BUSY})

# SQLSTATE codes (PostgreSQL) and server error numbers (MySQL)
_SQLSTATE_CLASSES = {
    "40P01": DEADLOCK,
    "40001": SERIALIZATION_FAILURE,
    "55P03": LOCK_TIMEOUT,
}
_MYSQL_ERRNO_CLASSES = {
    1213: DEADLOCK,
    1205: LOCK_TIMEOUT,
}
_MESSAGE_CLASSES = (
    ("deadlock", DEADLOCK),
    ("could not serialize access", SERIALIZATION_FAILURE),
    ("lock wait timeout", LOCK_TIMEOUT),
    ("lock timeout", LOCK_TIMEOUT),
    ("database is locked", STORAGE_BUSY),
    ("database table is locked", STORAGE_BUSY),
)

# Backends that understand SET TRANSACTION ISOLATION LEVEL inside atomic()
_ISOLATION_VENDORS = ("postgresql", "mysql")


class TransactionFailed(TransientError):
    """All retry attempts were used up on transient database errors."""

    code = "transaction_failed"
    http_status = 503
    default_message = "The operation could not be completed, please retry."

    def __init__(self, operation: str, attempts: int, last_error: Optional[BaseException]):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(operation=operation, attempts=attempts)

    def __str__(self) -> str:
        return (
            f"Transaction '{self.operation}' failed after {self.attempts} attempts: "
            f"{self.last_error!r}"
        )


@dataclass
class RetryContext:
    """State of one engine invocation."""

    operation: str
    attempt: int = 0
    started_at: float = field(default_factory=time.monotonic)
    last_error_type: Optional[str] = None
    last_error: Optional[BaseException] = None

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started_at) * 1000


def _error_codes(exc: BaseException):
    """Yield the exception and the driver errors Django wrapped inside it."""

    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__


def classify_error(exc: BaseException) -> str:
    """Map a database exception onto one of the error classes above."""

    for candidate in _error_codes(exc):
        code = getattr(candidate, "pgcode", None) or getattr(candidate, "sqlstate", None)
        if code in _SQLSTATE_CLASSES:
            return _SQLSTATE_CLASSES[code]
        args = getattr(candidate, "args", ())
        if args and isinstance(args[0], int) and args[0] in _MYSQL_ERRNO_CLASSES:
            return _MYSQL_ERRNO_CLASSES[args[0]]

    message = str(exc).lower()
    for needle, error_type in _MESSAGE_CLASSES:
        if needle in message:
            return error_type
    return OTHER


def compute_delay_ms(
    error_type: str,
    attempt: int,
    base_delay_ms: int,
    rng: Optional[random.Random] = None,
) -> float:
    """Backoff before the next attempt, in milliseconds."""

    rng = rng or random
    if error_type == DEADLOCK:
        # The other transaction already lost its locks, a short pause is enough.
        return rng.randint(10, 50)
    if error_type == SERIALIZATION_FAILURE:
        return base_delay_ms * 2 ** (attempt - 1) + rng.randint(0, base_delay_ms)
    if error_type == LOCK_TIMEOUT:
        return base_delay_ms * 2 ** attempt + rng.randint(0, 2 * base_delay_ms)
    if error_type == STORAGE_BUSY:
        return rng.randint(50, 150)
    return base_delay_ms


class TransactionRetryEngine:
    """Runs callables in a transaction and retries transient failures."""

    def __init__(
        self,
        metrics: Optional[TransactionMetrics] = None,
        sleep: Optional[Callable[[float], None]] = None,
        rng: Optional[random.Random] = None,
        using: Optional[str] = None,
    ):
        self.metrics = metrics or transaction_metrics
        self._sleep = sleep
        self._rng = rng
        self.using = using

    def run(
        self,
        unit_of_work: Callable[[], T],
        isolation_level: str = READ_COMMITTED,
        *,
        max_retries: Optional[int] = None,
        base_delay_ms: Optional[int] = None,
        timeout: Optional[float] = None,
        operation_name: str = "unknown_operation",
        using: Optional[str] = None,
    ) -> T:
        if isolation_level not in ISOLATION_LEVELS:
            raise ValueError(f"Unsupported isolation level: {isolation_level}")

        config = booking_settings("TRANSACTIONS")
        max_retries = max_retries if max_retries is not None else int(config["MAX_RETRIES"])
        base_delay_ms = base_delay_ms if base_delay_ms is not None else int(config["BASE_DELAY_MS"])
        timeout = timeout if timeout is not None else float(config["TIMEOUT_SECONDS"])
        alias = using or self.using or "default"
        max_retries = max(1, max_retries)

        ctx = RetryContext(operation=operation_name)
        while True:
            ctx.attempt += 1
            try:
                result = self._attempt(unit_of_work, isolation_level, timeout, alias)
            except DatabaseError as exc:
                error_type = classify_error(exc)
                ctx.last_error = exc
                ctx.last_error_type = error_type

                if error_type == OTHER:
                    self.metrics.record_failure(operation_name, error_type, ctx.attempt)
                    raise
                if error_type == DEADLOCK:
                    self.metrics.record_deadlock(operation_name)
                elif error_type == SERIALIZATION_FAILURE:
                    self.metrics.record_serialization_failure(operation_name)

                if ctx.attempt >= max_retries:
                    self.metrics.record_failure(operation_name, error_type, ctx.attempt)
                    raise TransactionFailed(operation_name, ctx.attempt, exc) from exc

                delay_ms = compute_delay_ms(error_type, ctx.attempt, base_delay_ms, self._rng)
                self.metrics.record_retry(operation_name, error_type, ctx.attempt, delay_ms)
                (self._sleep or time.sleep)(delay_ms / 1000.0)
                continue

            self.metrics.record_success(operation_name, ctx.elapsed_ms, ctx.attempt)
            return result

    def _attempt(self, unit_of_work: Callable[[], T], isolation_level: str, timeout: float, alias: str) -> T:
        connection = connections[alias]
        outermost = not connection.in_atomic_block
        with transaction.atomic(using=alias):
            if outermost:
                self._configure(connection, isolation_level, timeout)
            elif isolation_level != READ_COMMITTED:
                logger.warning(
                    "transaction.isolation_ignored",
                    reason="nested",
                    isolation_level=isolation_level,
                )
            return unit_of_work()

    @staticmethod
    def _configure(connection, isolation_level: str, timeout: float) -> None:
        vendor = connection.vendor
        if vendor not in _ISOLATION_VENDORS:
            if isolation_level != READ_COMMITTED:
                logger.warning(
                    "transaction.isolation_unsupported",
                    vendor=vendor,
                    isolation_level=isolation_level,
                )
            return

        with connection.cursor() as cursor:
            cursor.execute(f"SET TRANSACTION ISOLATION LEVEL {isolation_level}")
            if vendor == "postgresql" and timeout:
                cursor.execute(
                    "SELECT set_config('statement_timeout', %s, true)",
                    [str(int(timeout * 1000))],
                )

    # --- Convenience wrappers ----------------------------------------------

    def serializable(self, unit_of_work: Callable[[], T], operation_name: str = "serializable_operation") -> T:
        return self.run(
            unit_of_work,
            SERIALIZABLE,
            max_retries=5,
            base_delay_ms=50,
            operation_name=operation_name,
        )

    def repeatable_read(self, unit_of_work: Callable[[], T], operation_name: str = "repeatable_read_operation") -> T:
        return self.run(unit_of_work, REPEATABLE_READ, operation_name=operation_name)

    def with_pessimistic_lock(self, unit_of_work: Callable[[], T], operation_name: str = "locked_operation") -> T:
        return self.run(unit_of_work, READ_COMMITTED, max_retries=3, operation_name=operation_name)


transaction_engine = TransactionRetryEngine()


def transactional(isolation_level: str = READ_COMMITTED, *, operation_name: Optional[str] = None, **options: Any):
    """Decorator form of TransactionRetryEngine.run()."""

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            return transaction_engine.run(
                lambda: func(*args, **kwargs),
                isolation_level,
                operation_name=name,
                **options,
            )

        return wrapper

    return decorator
