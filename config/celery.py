import os

from celery import Celery
from celery.schedules import crontab  # type: ignore

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.dev")

app = Celery("booking_backend")

app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()


# ============================================================================
# CELERY BEAT SCHEDULE (Periodic Tasks)
# ============================================================================

app.conf.beat_schedule = {
    # Settle refund_pending bookings and retry failed refunds - every 5 minutes
    "reconcile-refunds": {
        "task": "bookings.reconcile_refunds",
        "schedule": crontab(minute="*/5"),
        "options": {"expires": 240},
    },
}
