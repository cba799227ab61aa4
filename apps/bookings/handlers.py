"""Message bus handlers for booking events."""

from __future__ import annotations

import logging

from shared.application.message_bus import message_bus

from .events import BookingCancelled

logger = logging.getLogger(__name__)


def enqueue_cancellation_notice(event: BookingCancelled) -> None:
    from .tasks import notify_booking_cancelled

    notify_booking_cancelled.delay(event.booking_id)
    logger.info(f"Queued cancellation notice for booking {event.booking_id}")


def register_handlers() -> None:
    message_bus.register_event_handler(BookingCancelled, enqueue_cancellation_notice)
