"""Booking domain models."""

from __future__ import annotations

import re

from django.conf import settings  # type: ignore
from django.core.exceptions import ValidationError  # type: ignore
from django.db import models  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from .exceptions import InvalidStatusTransition

ATTEMPT_PATTERN = re.compile(r"\[Attempt (\d+)\]")


class BookingStatus(models.TextChoices):
    PENDING = "pending", _("Pending")
    CONFIRMED = "confirmed", _("Confirmed")
    REFUND_PENDING = "refund_pending", _("Refund pending")
    CANCELLED = "cancelled", _("Cancelled")
    REFUND_FAILED = "refund_failed", _("Refund failed")

    def can_transition_to(self, target) -> bool:
        return BookingStatus(target) in TRANSITIONS[self]

    def is_active(self) -> bool:
        """Active bookings hold their room for the booked nights."""
        return self in (BookingStatus.PENDING, BookingStatus.CONFIRMED)

    def is_cancellable(self) -> bool:
        return self in (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.REFUND_FAILED)

    def is_refund_in_progress(self) -> bool:
        return self == BookingStatus.REFUND_PENDING

    def is_terminal(self) -> bool:
        return not TRANSITIONS[self]


TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset(
        {BookingStatus.CONFIRMED, BookingStatus.REFUND_PENDING, BookingStatus.CANCELLED}
    ),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.REFUND_PENDING, BookingStatus.CANCELLED}),
    BookingStatus.REFUND_PENDING: frozenset({BookingStatus.CANCELLED, BookingStatus.REFUND_FAILED}),
    BookingStatus.REFUND_FAILED: frozenset({BookingStatus.REFUND_PENDING, BookingStatus.CANCELLED}),
    BookingStatus.CANCELLED: frozenset(),
}

ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class BookingQuerySet(models.QuerySet):
    def active(self):
        return self.filter(status__in=ACTIVE_STATUSES)

    def overlapping(self, check_in, check_out):
        """Half-open [check_in, check_out): back-to-back stays do not overlap."""
        return self.filter(check_in__lt=check_out, check_out__gt=check_in)


class BookingManager(models.Manager.from_queryset(BookingQuerySet)):  # type: ignore
    """Hides soft-deleted bookings."""

    def get_queryset(self):  # type: ignore
        return super().get_queryset().filter(deleted_at__isnull=True)


class Booking(models.Model):
    """A half-open reservation [check_in, check_out) of one room."""

    Status = BookingStatus

    class RefundStatus(models.TextChoices):
        PENDING = "pending", _("Pending")
        SUCCEEDED = "succeeded", _("Succeeded")
        FAILED = "failed", _("Failed")

    room = models.ForeignKey(
        "rooms.Room",
        on_delete=models.PROTECT,
        related_name="bookings",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="bookings",
    )
    guest_name = models.CharField(max_length=255)
    guest_email = models.EmailField()
    check_in = models.DateField()
    check_out = models.DateField()
    status = models.CharField(
        max_length=32,
        choices=BookingStatus.choices,
        default=BookingStatus.PENDING,
    )
    amount = models.PositiveIntegerField(
        default=0,
        help_text=_("Amount paid, in minor currency units."),
    )
    currency = models.CharField(max_length=3, default="USD")
    payment_reference = models.CharField(max_length=255, null=True, blank=True)
    refund_reference = models.CharField(max_length=255, null=True, blank=True)
    refund_status = models.CharField(
        max_length=20,
        choices=RefundStatus.choices,
        null=True,
        blank=True,
    )
    refund_amount = models.PositiveIntegerField(null=True, blank=True)
    refund_error = models.TextField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    deleted_at = models.DateTimeField(null=True, blank=True)
    deleted_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = BookingManager()
    all_objects = BookingQuerySet.as_manager()

    class Meta:
        verbose_name = _("Booking")
        verbose_name_plural = _("Bookings")
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(check_out__gt=models.F("check_in")),
                name="booking_valid_dates",
            ),
        ]
        indexes = [
            models.Index(fields=["room", "check_in", "check_out"], name="booking_room_dates_idx"),
            models.Index(fields=["status"], name="booking_status_idx"),
        ]

    def __str__(self) -> str:
        return f"Booking #{self.pk} for room {self.room_id} ({self.check_in} - {self.check_out})"

    def clean(self) -> None:
        if self.check_in and self.check_out and self.check_in >= self.check_out:
            raise ValidationError(_("Check-out must be after check-in."))

    def save(self, *args, **kwargs):  # type: ignore
        self.clean()
        super().save(*args, **kwargs)

    @property
    def status_enum(self) -> BookingStatus:
        return BookingStatus(self.status)

    @property
    def nights(self) -> int:
        return (self.check_out - self.check_in).days

    def is_refundable(self) -> bool:
        """A payment was captured and nothing has been refunded yet."""
        return bool(self.payment_reference) and not self.refund_reference

    def transition_to(self, target) -> None:
        """Change status in memory, enforcing the transition table."""

        target = BookingStatus(target)
        current = self.status_enum
        if not current.can_transition_to(target):
            raise InvalidStatusTransition(current.value, target.value)
        if self.refund_reference and target != BookingStatus.CANCELLED:
            raise InvalidStatusTransition(current.value, target.value)
        self.status = target

    def refund_attempts(self) -> int:
        """Refund attempts recorded in refund_error as "[Attempt N] ..."."""

        if not self.refund_error:
            return 0
        match = ATTEMPT_PATTERN.search(self.refund_error)
        return int(match.group(1)) if match else 0

    def soft_delete(self, actor=None) -> None:
        self.deleted_at = timezone.now()
        self.deleted_by = actor
        self.save(update_fields=["deleted_at", "deleted_by", "updated_at"])

    def restore(self) -> None:
        self.deleted_at = None
        self.deleted_by = None
        self.save(update_fields=["deleted_at", "deleted_by", "updated_at"])

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
