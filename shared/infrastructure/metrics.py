"""
Transaction Metrics

Prometheus collectors for the transaction retry engine. django-prometheus
exposes the default registry at /metrics, so the collectors below show up
there next to the request and database metrics it already exports.

Every recorder also writes a structured log entry, which keeps the numbers
visible in environments where nobody scrapes Prometheus.
"""

import structlog
from prometheus_client import Counter, Histogram

logger = structlog.get_logger(__name__)

# Lock waits shorter than this are not worth a log line.
SLOW_LOCK_WAIT_MS = 100

TRANSACTION_SUCCESS = Counter(
    "transaction_success_total",
    "Transactions committed by the retry engine",
    ["operation"],
)
TRANSACTION_FAILURE = Counter(
    "transaction_failure_total",
    "Transactions abandoned by the retry engine",
    ["operation", "error_type"],
)
TRANSACTION_RETRY = Counter(
    "transaction_retry_total",
    "Transaction attempts that were rolled back and retried",
    ["operation", "error_type"],
)
TRANSACTION_DURATION = Histogram(
    "transaction_duration_seconds",
    "Wall time of a transaction including all retries",
    ["operation"],
)
TRANSACTION_LOCK_WAIT = Histogram(
    "transaction_lock_wait_seconds",
    "Time spent waiting for row locks",
    ["operation"],
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
SERIALIZATION_FAILURES = Counter(
    "transaction_serialization_failure_total",
    "Serialization failures reported by the database",
    ["operation"],
)
DEADLOCKS = Counter(
    "transaction_deadlock_total",
    "Deadlocks reported by the database",
    ["operation"],
)


class TransactionMetrics:
    """Thin facade over the collectors, one method per observable event."""

    def record_success(self, operation: str, duration_ms: float, attempts: int) -> None:
        TRANSACTION_SUCCESS.labels(operation=operation).inc()
        TRANSACTION_DURATION.labels(operation=operation).observe(duration_ms / 1000.0)
        logger.debug(
            "transaction.success",
            operation=operation,
            duration_ms=round(duration_ms, 2),
            attempts=attempts,
        )

    def record_failure(self, operation: str, error_type: str, attempts: int) -> None:
        TRANSACTION_FAILURE.labels(operation=operation, error_type=error_type).inc()
        logger.error(
            "transaction.failure",
            operation=operation,
            error_type=error_type,
            attempts=attempts,
        )

    def record_retry(self, operation: str, error_type: str, attempt: int, delay_ms: float) -> None:
        TRANSACTION_RETRY.labels(operation=operation, error_type=error_type).inc()
        logger.warning(
            "transaction.retry",
            operation=operation,
            error_type=error_type,
            attempt=attempt,
            delay_ms=round(delay_ms, 2),
        )

    def record_lock_wait(self, operation: str, wait_ms: float) -> None:
        TRANSACTION_LOCK_WAIT.labels(operation=operation).observe(wait_ms / 1000.0)
        if wait_ms > SLOW_LOCK_WAIT_MS:
            logger.info("transaction.lock_wait", operation=operation, wait_ms=round(wait_ms, 2))

    def record_serialization_failure(self, operation: str) -> None:
        SERIALIZATION_FAILURES.labels(operation=operation).inc()

    def record_deadlock(self, operation: str) -> None:
        DEADLOCKS.labels(operation=operation).inc()


transaction_metrics = TransactionMetrics()
