"""Errors raised by the booking services."""

from __future__ import annotations

from datetime import date
from typing import Optional

from shared.domain.exceptions import BusinessError, ExternalDependencyError


class InvalidDateRange(BusinessError):
    code = "invalid_date_range"
    default_message = "Check-out must be after check-in and check-in cannot be in the past."


class RoomUnavailable(BusinessError):
    """Another active booking overlaps the requested stay."""

    code = "room_unavailable"
    http_status = 409
    default_message = "The room is not available for the selected dates."

    def __init__(self, room_id, check_in: date, check_out: date):
        self.room_id = room_id
        self.check_in = check_in
        self.check_out = check_out
        super().__init__(room_id=room_id, check_in=check_in.isoformat(), check_out=check_out.isoformat())


class BookingNotFound(BusinessError):
    code = "booking_not_found"
    http_status = 404
    default_message = "Booking not found."


class InvalidStatusTransition(BusinessError):
    code = "invalid_status_transition"
    http_status = 409
    default_message = "The booking cannot move to the requested status."

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(
            f"Booking cannot move from {current} to {target}.",
            current=current,
            target=target,
        )


class BookingNotCancellable(BusinessError):
    """Raised with code `not_cancellable` or `already_started`."""

    code = "not_cancellable"
    http_status = 422
    default_message = "This booking cannot be cancelled."

    NOT_CANCELLABLE = "not_cancellable"
    ALREADY_STARTED = "already_started"

    def __init__(self, booking_id, reason: str = NOT_CANCELLABLE, message: Optional[str] = None):
        self.booking_id = booking_id
        self.reason = reason
        if message is None and reason == self.ALREADY_STARTED:
            message = "The stay has already started and can no longer be cancelled."
        super().__init__(message, code=reason, booking_id=booking_id)


class RefundFailed(ExternalDependencyError):
    """The gateway refused the refund. The booking was moved to refund_failed."""

    code = "refund_failed"
    http_status = 502
    default_message = "The booking was cancelled but the refund could not be processed. It will be retried."

    def __init__(self, booking_id, payment_reference: Optional[str], gateway_code: Optional[str], reason: str = ""):
        self.booking_id = booking_id
        self.payment_reference = payment_reference
        self.gateway_code = gateway_code
        self.reason = reason
        super().__init__(booking_id=booking_id, gateway_code=gateway_code)

    def __str__(self) -> str:
        return f"Refund for booking {self.booking_id} failed: {self.reason}"


class BookingNotModifiable(BusinessError):
    code = "booking_not_modifiable"
    http_status = 409
    default_message = "Only pending or confirmed bookings can be changed."

    def __init__(self, booking_id, status: str):
        self.booking_id = booking_id
        self.status = status
        super().__init__(booking_id=booking_id, status=status)
