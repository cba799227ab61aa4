"""Celery tasks for the booking domain."""

from __future__ import annotations

import logging

from celery import shared_task  # type: ignore
from django.conf import settings  # type: ignore
from django.core.mail import send_mail  # type: ignore

from .models import Booking

logger = logging.getLogger(__name__)


# ============================================================================
# PERIODIC TASKS (run by Celery Beat)
# ============================================================================

@shared_task(name="bookings.reconcile_refunds")
def reconcile_refunds() -> dict[str, int]:
    """
    Settle refunds left in refund_pending and retry refund_failed bookings.

    Runs every 5 minutes through Celery Beat.

    Returns:
        dict: counters of the run (finalized, retried, ...)
    """
    from .reconciliation import RefundReconciler

    summary = RefundReconciler().run()
    if summary["finalized"] or summary["retried"]:
        logger.info(f"Refund reconciliation: {summary}")
    return summary


# ============================================================================
# NOTIFICATIONS
# ============================================================================

@shared_task(name="bookings.notify_booking_cancelled")
def notify_booking_cancelled(booking_id: int) -> bool:
    """Email the guest that the booking was cancelled."""

    try:
        booking = Booking.all_objects.select_related("room").get(pk=booking_id)
    except Booking.DoesNotExist:
        logger.warning(f"Booking {booking_id} not found for cancellation notice")
        return False

    if booking.refund_amount:
        refund_line = f"A refund of {booking.refund_amount / 100:.2f} {booking.currency} is on its way."
    else:
        refund_line = "No refund applies to this cancellation."

    send_mail(
        subject=f"Booking #{booking.pk} cancelled",
        message=(
            f"Hello {booking.guest_name},\n\n"
            f"your booking of {booking.room.name} from {booking.check_in} to {booking.check_out} "
            f"has been cancelled.\n{refund_line}\n"
        ),
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[booking.guest_email],
        fail_silently=False,
    )
    logger.info(f"Cancellation notice sent for booking {booking.pk}")
    return True
