"""Refund policy: how much of the paid amount goes back on cancellation.

    >= FULL_REFUND_HOURS before check-in     100 %
    >= PARTIAL_REFUND_HOURS before check-in  PARTIAL_REFUND_PCT %
    later, or once the stay has started      0 %

With ALLOW_FEE enabled FEE_PCT percentage points are taken off any non-zero
percentage. Check-in is the start of the check-in day in the project time
zone.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional

from django.utils import timezone  # type: ignore

from shared.conf import booking_settings


def check_in_moment(check_in: date) -> datetime:
    return timezone.make_aware(datetime.combine(check_in, time.min), timezone.get_current_timezone())


def stay_started(check_in: date, now: Optional[datetime] = None) -> bool:
    return (now or timezone.now()) >= check_in_moment(check_in)


@dataclass(frozen=True)
class RefundPolicy:
    full_refund_hours: int = 48
    partial_refund_hours: int = 24
    partial_refund_pct: int = 50
    allow_fee: bool = False
    fee_pct: int = 0

    @classmethod
    def from_settings(cls) -> "RefundPolicy":
        config = booking_settings("CANCELLATION")
        return cls(
            full_refund_hours=int(config["FULL_REFUND_HOURS"]),
            partial_refund_hours=int(config["PARTIAL_REFUND_HOURS"]),
            partial_refund_pct=int(config["PARTIAL_REFUND_PCT"]),
            allow_fee=bool(config["ALLOW_FEE"]),
            fee_pct=int(config["FEE_PCT"]),
        )

    def refund_percentage(self, check_in: date, now: Optional[datetime] = None) -> int:
        now = now or timezone.now()
        hours_left = (check_in_moment(check_in) - now).total_seconds() / 3600

        if hours_left < 0:
            return 0
        if hours_left >= self.full_refund_hours:
            percentage = 100
        elif hours_left >= self.partial_refund_hours:
            percentage = self.partial_refund_pct
        else:
            percentage = 0

        if self.allow_fee and percentage > 0:
            percentage = max(0, percentage - self.fee_pct)
        return percentage

    def refund_amount(self, booking, now: Optional[datetime] = None) -> int:
        """Refund in minor units, rounded down."""

        if not booking.amount:
            return 0
        percentage = self.refund_percentage(booking.check_in, now)
        return booking.amount * percentage // 100
