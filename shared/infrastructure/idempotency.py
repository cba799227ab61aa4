"""
Idempotency Guard

Makes an operation run at most once per idempotency key. The first caller
takes a short-lived lock, runs the operation and stores its result; callers
arriving later get the stored result back. Callers arriving while the first
one is still running poll until the result appears, the lock frees up, or
the lock TTL elapses.

Storage layout (Django cache):
    idempotency:<key>       {"result", "completed_at", "duration_ms"}
    idempotency_lock:<key>  owner token of the running execution

Usage:
    guard = IdempotencyGuard()
    outcome = guard.execute(
        guard.generate_key("cancel_booking", booking.id),
        lambda: cancel(booking),
        operation_name="cancel_booking",
    )
    outcome.result, outcome.was_executed
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog
from django.utils import timezone

from shared.conf import booking_settings
from shared.domain.exceptions import TransientError
from shared.infrastructure.cache_store import CacheStore, build_cache_store
from shared.infrastructure.transactions import READ_COMMITTED, transaction_engine

logger = structlog.get_logger(__name__)

RESULT_PREFIX = "idempotency:"
LOCK_PREFIX = "idempotency_lock:"

INITIAL_POLL_SECONDS = 0.1
MAX_POLL_SECONDS = 1.0
POLL_BACKOFF = 1.5


class IdempotencyTimeout(TransientError):
    """Another execution with the same key is still running."""

    code = "idempotency_in_progress"
    http_status = 409
    default_message = "A request with this idempotency key is already in progress, retry later."

    def __init__(self, key: str, waited_seconds: float):
        self.key = key
        self.waited_seconds = waited_seconds
        super().__init__(key=key, waited_seconds=round(waited_seconds, 3))


@dataclass(frozen=True)
class IdempotentResult:
    result: Any
    was_executed: bool


class IdempotencyGuard:
    def __init__(
        self,
        store: Optional[CacheStore] = None,
        *,
        lock_ttl: Optional[int] = None,
        result_ttl: Optional[int] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        config = booking_settings("IDEMPOTENCY")
        self.store = store or build_cache_store()
        self.lock_ttl = int(lock_ttl if lock_ttl is not None else config["LOCK_TTL"])
        self.result_ttl = int(result_ttl if result_ttl is not None else config["RESULT_TTL"])
        self._sleep = sleep
        self._clock = clock

    @staticmethod
    def generate_key(operation: str, *identifiers: Any) -> str:
        return ":".join([operation, *(str(identifier) for identifier in identifiers)])

    def execute(
        self,
        key: str,
        operation: Callable[[], Any],
        *,
        lock_ttl: Optional[int] = None,
        result_ttl: Optional[int] = None,
        operation_name: str = "unknown",
    ) -> IdempotentResult:
        """
        Run `operation` unless a result for `key` is already stored.

        Raises IdempotencyTimeout if another execution holds the lock for
        longer than `lock_ttl`. Exceptions raised by `operation` propagate;
        nothing is stored for them, so the next caller runs it again.
        """
        lock_ttl = lock_ttl if lock_ttl is not None else self.lock_ttl
        result_ttl = result_ttl if result_ttl is not None else self.result_ttl
        result_key = RESULT_PREFIX + key
        lock_key = LOCK_PREFIX + key

        stored = self.store.get(result_key)
        if stored is not None:
            logger.info("idempotency.hit", key=key, operation=operation_name)
            return IdempotentResult(stored["result"], was_executed=False)

        token = self.store.acquire(lock_key, lock_ttl)
        if token is None:
            token, stored = self._wait_for_lock(key, lock_ttl, operation_name)
            if stored is not None:
                return IdempotentResult(stored["result"], was_executed=False)

        try:
            # The previous holder may have finished between our lookup and acquire.
            stored = self.store.get(result_key)
            if stored is not None:
                logger.info("idempotency.hit_after_lock", key=key, operation=operation_name)
                return IdempotentResult(stored["result"], was_executed=False)

            started = self._clock()
            result = operation()
            duration_ms = (self._clock() - started) * 1000
            self.store.put(
                result_key,
                {
                    "result": result,
                    "completed_at": timezone.now().isoformat(),
                    "duration_ms": round(duration_ms, 2),
                },
                result_ttl,
            )
            logger.info(
                "idempotency.executed",
                key=key,
                operation=operation_name,
                duration_ms=round(duration_ms, 2),
            )
            return IdempotentResult(result, was_executed=True)
        finally:
            self.store.release(lock_key, token)

    def _wait_for_lock(self, key: str, lock_ttl: int, operation_name: str):
        """Poll until a stored result shows up or the lock can be taken."""

        result_key = RESULT_PREFIX + key
        lock_key = LOCK_PREFIX + key
        started = self._clock()
        delay = INITIAL_POLL_SECONDS
        logger.info("idempotency.waiting", key=key, operation=operation_name)

        while True:
            waited = self._clock() - started
            if waited >= lock_ttl:
                logger.warning("idempotency.timeout", key=key, operation=operation_name, waited=waited)
                raise IdempotencyTimeout(key, waited)

            (self._sleep or time.sleep)(delay)
            delay = min(delay * POLL_BACKOFF, MAX_POLL_SECONDS)

            stored = self.store.get(result_key)
            if stored is not None:
                return None, stored
            token = self.store.acquire(lock_key, lock_ttl)
            if token is not None:
                return token, None

    def execute_with_transaction(
        self,
        key: str,
        operation: Callable[[], Any],
        isolation_level: str = READ_COMMITTED,
        operation_name: str = "unknown",
    ) -> IdempotentResult:
        return self.execute(
            key,
            lambda: transaction_engine.run(operation, isolation_level, operation_name=operation_name),
            operation_name=operation_name,
        )

    def was_completed(self, key: str) -> bool:
        return self.store.get(RESULT_PREFIX + key) is not None

    def get_result(self, key: str) -> Any:
        stored = self.store.get(RESULT_PREFIX + key)
        return stored["result"] if stored is not None else None

    def clear(self, key: str) -> None:
        """Forget a stored result. Only meant for manual recovery."""

        logger.warning("idempotency.cleared", key=key)
        self.store.delete(RESULT_PREFIX + key)
