"""
Booking Domain Events

Events that represent things that have happened in the booking domain.
These are published after successful transaction commits.
"""

from dataclasses import dataclass
from typing import Optional

from shared.domain.base import DomainEvent


@dataclass(kw_only=True)
class BookingCancelled(DomainEvent):
    """
    Event: A booking reached the cancelled status

    Triggers:
    - Send the cancellation email to the guest
    """
    booking_id: int
    refund_amount: Optional[int] = None
    forced: bool = False

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload.update(
            {
                'booking_id': self.booking_id,
                'refund_amount': self.refund_amount,
                'forced': self.forced,
            }
        )
        return payload

    @classmethod
    def for_booking(cls, booking, *, forced: bool = False) -> "BookingCancelled":
        return cls(
            aggregate_id=booking.pk,
            booking_id=booking.pk,
            refund_amount=booking.refund_amount,
            forced=forced,
        )
