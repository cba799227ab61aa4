"""Domain services for booking workflows.

Creating or moving a booking runs as one READ COMMITTED transaction through
the retry engine:

1. lock the room row, which serializes writers of the same room;
2. lock every active booking of the room whose stay overlaps the requested
   half-open range [check_in, check_out);
3. refuse with RoomUnavailable if any such booking exists, otherwise write.

Cancelled and soft-deleted bookings never block a room. Back-to-back stays
(one ends on the day the next begins) do not overlap.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional

import structlog
from django.db import transaction  # type: ignore
from django.db.utils import NotSupportedError  # type: ignore
from django.utils import timezone  # type: ignore

from apps.rooms.exceptions import RoomNotFound
from apps.rooms.models import Room
from shared.infrastructure.metrics import TransactionMetrics, transaction_metrics
from shared.infrastructure.transactions import READ_COMMITTED, TransactionRetryEngine, transaction_engine

from .exceptions import BookingNotFound, BookingNotModifiable, InvalidDateRange, RoomUnavailable
from .models import Booking, BookingStatus

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class GuestInfo:
    name: str
    email: str


def _lock_queryset_if_possible(queryset):
    """Apply select_for_update when inside transaction.atomic()."""

    if not transaction.get_connection().in_atomic_block:
        return queryset

    try:
        return queryset.select_for_update()
    except NotSupportedError:
        return queryset


def parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError as exc:
            raise InvalidDateRange(f"Invalid date: {value!r}") from exc
    raise InvalidDateRange(f"Invalid date: {value!r}")


def validate_stay(check_in: Any, check_out: Any, *, today: Optional[date] = None) -> tuple[date, date]:
    """Parse both dates and enforce check_in < check_out, check_in not in the past."""

    check_in = parse_date(check_in)
    check_out = parse_date(check_out)
    if check_in >= check_out:
        raise InvalidDateRange("Check-out must be after check-in.")
    if check_in < (today or timezone.localdate()):
        raise InvalidDateRange("Check-in cannot be in the past.")
    return check_in, check_out


class BookingCreator:
    """Overlap-safe creation and rescheduling of bookings."""

    def __init__(
        self,
        engine: Optional[TransactionRetryEngine] = None,
        metrics: Optional[TransactionMetrics] = None,
    ):
        self.engine = engine or transaction_engine
        self.metrics = metrics or transaction_metrics

    def create(
        self,
        room_id,
        check_in: Any,
        check_out: Any,
        guest: GuestInfo,
        owner=None,
        *,
        amount: int = 0,
        currency: str = "USD",
        payment_reference: Optional[str] = None,
    ) -> Booking:
        check_in, check_out = validate_stay(check_in, check_out)

        def unit_of_work() -> Booking:
            self._lock_room(room_id, "create_booking")
            self._ensure_available(room_id, check_in, check_out, operation="create_booking")
            return Booking.objects.create(
                room_id=room_id,
                user=owner,
                guest_name=guest.name,
                guest_email=guest.email,
                check_in=check_in,
                check_out=check_out,
                status=BookingStatus.PENDING,
                amount=amount,
                currency=currency,
                payment_reference=payment_reference,
            )

        booking = self.engine.run(unit_of_work, READ_COMMITTED, operation_name="create_booking")
        logger.info(
            "booking.created",
            booking_id=booking.pk,
            room_id=room_id,
            check_in=str(check_in),
            check_out=str(check_out),
        )
        return booking

    def update(self, booking: Booking, check_in: Any, check_out: Any) -> Booking:
        """Move an active booking to new dates, excluding itself from the overlap scan."""

        check_in, check_out = validate_stay(check_in, check_out)

        def unit_of_work() -> Booking:
            locked = _lock_queryset_if_possible(Booking.objects.filter(pk=booking.pk)).first()
            if locked is None:
                raise BookingNotFound(booking_id=booking.pk)
            if not locked.status_enum.is_active():
                raise BookingNotModifiable(locked.pk, locked.status)

            self._lock_room(locked.room_id, "update_booking")
            self._ensure_available(
                locked.room_id,
                check_in,
                check_out,
                exclude_booking_id=locked.pk,
                operation="update_booking",
            )
            locked.check_in = check_in
            locked.check_out = check_out
            locked.save(update_fields=["check_in", "check_out", "updated_at"])
            return locked

        updated = self.engine.run(unit_of_work, READ_COMMITTED, operation_name="update_booking")
        logger.info(
            "booking.rescheduled",
            booking_id=updated.pk,
            check_in=str(check_in),
            check_out=str(check_out),
        )
        return updated

    def _lock_room(self, room_id, operation: str) -> Room:
        started = time.monotonic()
        room = _lock_queryset_if_possible(Room.objects.filter(pk=room_id)).first()
        self.metrics.record_lock_wait(operation, (time.monotonic() - started) * 1000)
        if room is None:
            raise RoomNotFound(room_id)
        return room

    def _ensure_available(
        self,
        room_id,
        check_in: date,
        check_out: date,
        *,
        exclude_booking_id=None,
        operation: str,
    ) -> None:
        bookings_qs = Booking.objects.filter(room_id=room_id).active().overlapping(check_in, check_out)
        if exclude_booking_id is not None:
            bookings_qs = bookings_qs.exclude(pk=exclude_booking_id)

        started = time.monotonic()
        conflicting = list(_lock_queryset_if_possible(bookings_qs).values_list("pk", flat=True))
        self.metrics.record_lock_wait(operation, (time.monotonic() - started) * 1000)

        if conflicting:
            logger.info(
                "booking.conflict",
                room_id=room_id,
                check_in=str(check_in),
                check_out=str(check_out),
                conflicting=conflicting,
            )
            raise RoomUnavailable(room_id, check_in, check_out)


def confirm_booking(
    booking: Booking,
    payment_reference: str,
    amount: Optional[int] = None,
    *,
    engine: Optional[TransactionRetryEngine] = None,
) -> Booking:
    """Record the captured payment and move a pending booking to confirmed."""

    def unit_of_work() -> Booking:
        locked = _lock_queryset_if_possible(Booking.objects.filter(pk=booking.pk)).first()
        if locked is None:
            raise BookingNotFound(booking_id=booking.pk)
        if locked.status == BookingStatus.CONFIRMED and locked.payment_reference == payment_reference:
            return locked
        locked.transition_to(BookingStatus.CONFIRMED)
        locked.payment_reference = payment_reference
        if amount is not None:
            locked.amount = amount
        locked.save(update_fields=["status", "payment_reference", "amount", "updated_at"])
        return locked

    confirmed = (engine or transaction_engine).run(unit_of_work, READ_COMMITTED, operation_name="confirm_booking")
    logger.info("booking.confirmed", booking_id=confirmed.pk, payment_reference=payment_reference)
    return confirmed


def soft_delete_booking(booking: Booking, actor=None) -> Booking:
    """Hide a booking from normal queries; the purge command removes it later."""

    booking.soft_delete(actor)
    logger.info("booking.soft_deleted", booking_id=booking.pk, actor_id=getattr(actor, "pk", None))
    return booking


booking_creator = BookingCreator()
