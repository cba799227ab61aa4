"""Access to the BOOKING settings dict with defaults filled in."""

from __future__ import annotations

from typing import Any

from django.conf import settings  # type: ignore

DEFAULTS: dict[str, dict[str, Any]] = {
    "CANCELLATION": {
        "FULL_REFUND_HOURS": 48,
        "PARTIAL_REFUND_HOURS": 24,
        "PARTIAL_REFUND_PCT": 50,
        "ALLOW_FEE": False,
        "FEE_PCT": 0,
        "ALLOW_AFTER_CHECKIN": False,
    },
    "RECONCILIATION": {
        "STALE_THRESHOLD_MINUTES": 5,
        "RETRY_DELAY_MINUTES": 15,
        "BATCH_SIZE": 50,
        "MAX_ATTEMPTS": 5,
    },
    "TRANSACTIONS": {
        "MAX_RETRIES": 3,
        "BASE_DELAY_MS": 100,
        "TIMEOUT_SECONDS": 30,
    },
    "IDEMPOTENCY": {
        "LOCK_TTL": 60,
        "RESULT_TTL": 86400,
        "CACHE_ALIAS": "default",
        "ATOMIC_RELEASE": False,
    },
}


def booking_settings(section: str) -> dict[str, Any]:
    """Return one section of settings.BOOKING merged over the defaults."""

    configured = getattr(settings, "BOOKING", {}).get(section, {})
    merged = dict(DEFAULTS.get(section, {}))
    merged.update(configured)
    return merged


def retention_days() -> int:
    return int(getattr(settings, "BOOKING", {}).get("RETENTION_DAYS", 2555))
