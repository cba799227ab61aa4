"""
Cancellation and refund state machine.

A cancellation with a captured payment runs in three steps:

1. transaction: lock the booking, re-check it, move it to refund_pending
   (or straight to cancelled when there is nothing to refund);
2. no transaction: ask the payment gateway for the refund;
3. transaction: record the outcome, cancelled or refund_failed.

The gateway call never runs while a database lock is held. If the process
dies between steps 2 and 3 the booking stays in refund_pending and the
reconciliation sweeper (apps.bookings.reconciliation) settles it from the
gateway's own records.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

import structlog
from django.core.exceptions import PermissionDenied  # type: ignore
from django.utils import timezone  # type: ignore

from apps.payments.gateway import FAILED, PaymentGatewayError, get_payment_gateway
from apps.users.authorization import CANCEL_AFTER_CHECKIN, FORCE_CANCEL, authorize
from shared.application.message_bus import MessageBus, message_bus
from shared.conf import booking_settings
from shared.infrastructure.idempotency import IdempotencyGuard
from shared.infrastructure.transactions import READ_COMMITTED, TransactionRetryEngine, transaction_engine

from .events import BookingCancelled
from .exceptions import BookingNotCancellable, BookingNotFound, RefundFailed
from .models import Booking, BookingStatus
from .refund_policy import RefundPolicy, stay_started
from .services import _lock_queryset_if_possible

logger = structlog.get_logger(__name__)

MAX_ERROR_LENGTH = 1000


def _in_flight(attempt: int) -> str:
    return f"[Attempt {attempt}] Refund in progress"


def _actor_id(actor) -> Optional[int]:
    if actor is None or not getattr(actor, "is_authenticated", False):
        return None
    return actor.pk


class CancellationService:
    def __init__(
        self,
        gateway=None,
        policy: Optional[RefundPolicy] = None,
        *,
        engine: Optional[TransactionRetryEngine] = None,
        guard: Optional[IdempotencyGuard] = None,
        bus: Optional[MessageBus] = None,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self._gateway = gateway
        self.policy = policy or RefundPolicy.from_settings()
        self.engine = engine or transaction_engine
        self._guard = guard
        self.bus = bus or message_bus
        self.clock = clock

    @property
    def gateway(self):
        if self._gateway is None:
            self._gateway = get_payment_gateway()
        return self._gateway

    @property
    def guard(self) -> IdempotencyGuard:
        if self._guard is None:
            self._guard = IdempotencyGuard()
        return self._guard

    # --- Public API --------------------------------------------------------

    def cancel(
        self,
        booking: Booking,
        actor,
        *,
        allow_after_checkin: bool = False,
        idempotency_key: Optional[str] = None,
    ) -> Booking:
        """
        Cancel a booking, refunding the payment according to the policy.

        Raises BookingNotCancellable when the status or the check-in date
        forbid it, and RefundFailed when the gateway refuses the refund (the
        booking is then stored as refund_failed and can be retried).
        """
        if idempotency_key is None:
            return self._cancel(booking, actor, allow_after_checkin)

        key = self.guard.generate_key("cancel_booking", booking.pk, idempotency_key)
        outcome = self.guard.execute(
            key,
            lambda: self._cancel_result(booking, actor, allow_after_checkin),
            operation_name="cancel_booking",
        )
        return Booking.all_objects.get(pk=outcome.result["booking_id"])

    def force_cancel(self, booking: Booking, actor, reason: str) -> Booking:
        """Cancel without any refund. Administrative override."""

        if not authorize(actor, booking, FORCE_CANCEL):
            raise PermissionDenied("Only administrators can force-cancel bookings.")

        forced = False

        def unit_of_work() -> Booking:
            nonlocal forced
            locked = self._lock(booking)
            if locked.status == BookingStatus.CANCELLED:
                return locked
            locked.transition_to(BookingStatus.CANCELLED)
            locked.cancelled_at = self.clock()
            locked.cancelled_by_id = _actor_id(actor)
            locked.refund_error = f"Force cancelled: {reason}"[:MAX_ERROR_LENGTH]
            locked.save(update_fields=["status", "cancelled_at", "cancelled_by", "refund_error", "updated_at"])
            self.bus.publish_on_commit(BookingCancelled.for_booking(locked, forced=True))
            forced = True
            return locked

        result = self.engine.run(unit_of_work, READ_COMMITTED, operation_name="force_cancel_booking")
        if forced:
            logger.warning(
                "booking.force_cancelled",
                booking_id=result.pk,
                actor_id=_actor_id(actor),
                reason=reason,
            )
        return result

    def retry_refund(self, booking: Booking, *, attempt: Optional[int] = None) -> Booking:
        """
        Re-run the refund of a refund_failed booking.

        The attempt number defaults to the recorded count plus one. A renewed
        failure is stored as "[Attempt N] <error>" so the sweeper can stop
        after its maximum. Raises RefundFailed.
        """

        def unit_of_work() -> Booking:
            locked = self._lock(booking)
            if locked.status != BookingStatus.REFUND_FAILED or not locked.is_refundable():
                raise BookingNotCancellable(locked.pk, message="Only refund_failed bookings with a payment can be retried.")
            locked.transition_to(BookingStatus.REFUND_PENDING)
            locked.refund_status = Booking.RefundStatus.PENDING
            locked.refund_error = _in_flight(attempt or locked.refund_attempts() + 1)
            locked.save(update_fields=["status", "refund_status", "refund_error", "updated_at"])
            return locked

        pending = self.engine.run(unit_of_work, READ_COMMITTED, operation_name="retry_refund_begin")
        return self._process_refund(pending, attempt=pending.refund_attempts())

    def finalize(self, booking: Booking, refund_id: Optional[str], refund_amount: int) -> Booking:
        """Record a settled refund (or a zero refund) and emit BookingCancelled."""

        def unit_of_work() -> Booking:
            locked = self._lock(booking)
            if locked.status == BookingStatus.CANCELLED:
                return locked
            locked.transition_to(BookingStatus.CANCELLED)
            locked.refund_reference = refund_id
            locked.refund_status = Booking.RefundStatus.SUCCEEDED if refund_id else None
            locked.refund_amount = refund_amount or None
            locked.refund_error = None
            locked.save(
                update_fields=[
                    "status",
                    "refund_reference",
                    "refund_status",
                    "refund_amount",
                    "refund_error",
                    "updated_at",
                ]
            )
            self.bus.publish_on_commit(BookingCancelled.for_booking(locked))
            return locked

        return self.engine.run(unit_of_work, READ_COMMITTED, operation_name="finalize_cancellation")

    def mark_refund_failed(self, booking: Booking, message: str, *, attempt: Optional[int] = None) -> Booking:
        """
        Store a failed refund; the booking stays retryable.

        Without `attempt` the number of the attempt in flight is kept, so the
        sweeper's attempt count survives a refund settled from gateway records.
        """

        def unit_of_work() -> Booking:
            locked = self._lock(booking)
            if locked.status != BookingStatus.REFUND_PENDING:
                return locked
            number = attempt or locked.refund_attempts()
            prefix = f"[Attempt {number}] " if number else ""
            locked.transition_to(BookingStatus.REFUND_FAILED)
            locked.refund_status = Booking.RefundStatus.FAILED
            locked.refund_error = (prefix + message)[:MAX_ERROR_LENGTH]
            locked.save(update_fields=["status", "refund_status", "refund_error", "updated_at"])
            return locked

        return self.engine.run(unit_of_work, READ_COMMITTED, operation_name="record_refund_failure")

    # --- Steps -------------------------------------------------------------

    def _cancel_result(self, booking: Booking, actor, allow_after_checkin: bool) -> dict:
        cancelled = self._cancel(booking, actor, allow_after_checkin)
        return {"booking_id": cancelled.pk, "status": cancelled.status}

    def _cancel(self, booking: Booking, actor, allow_after_checkin: bool) -> Booking:
        current = Booking.objects.filter(pk=booking.pk).first()
        if current is None:
            raise BookingNotFound(booking_id=booking.pk)

        if current.status == BookingStatus.CANCELLED:
            logger.info("booking.cancel_skipped", booking_id=current.pk, reason="already_cancelled")
            return current

        self._validate(current, actor, allow_after_checkin)
        current = self._begin(current, actor)

        if current.status == BookingStatus.REFUND_PENDING:
            current = self._process_refund(current, attempt=current.refund_attempts() or None)

        logger.info(
            "booking.cancelled",
            booking_id=current.pk,
            actor_id=_actor_id(actor),
            refund_amount=current.refund_amount,
            refund_status=current.refund_status,
        )
        return current

    def _validate(self, booking: Booking, actor, allow_after_checkin: bool) -> None:
        if not booking.status_enum.is_cancellable():
            raise BookingNotCancellable(booking.pk)

        if not stay_started(booking.check_in, self.clock()):
            return
        if allow_after_checkin or booking_settings("CANCELLATION")["ALLOW_AFTER_CHECKIN"]:
            return
        if authorize(actor, booking, CANCEL_AFTER_CHECKIN):
            return
        raise BookingNotCancellable(booking.pk, BookingNotCancellable.ALREADY_STARTED)

    def _begin(self, booking: Booking, actor) -> Booking:
        def unit_of_work() -> Booking:
            locked = self._lock(booking)
            # Another request may have finished the cancellation meanwhile.
            if locked.status == BookingStatus.CANCELLED:
                return locked
            if not locked.status_enum.is_cancellable():
                raise BookingNotCancellable(locked.pk)

            refundable = locked.is_refundable()
            retrying = locked.status == BookingStatus.REFUND_FAILED
            locked.transition_to(BookingStatus.REFUND_PENDING if refundable else BookingStatus.CANCELLED)
            # A re-cancel keeps the original time, which prices the refund.
            if locked.cancelled_at is None:
                locked.cancelled_at = self.clock()
            locked.cancelled_by_id = _actor_id(actor)
            update_fields = ["status", "cancelled_at", "cancelled_by", "updated_at"]
            if refundable:
                locked.refund_status = Booking.RefundStatus.PENDING
                update_fields.append("refund_status")
                if retrying:
                    locked.refund_error = _in_flight(locked.refund_attempts() + 1)
                    update_fields.append("refund_error")
            locked.save(update_fields=update_fields)

            if not refundable:
                self.bus.publish_on_commit(BookingCancelled.for_booking(locked))
            return locked

        return self.engine.run(unit_of_work, READ_COMMITTED, operation_name="cancel_booking")

    def _process_refund(self, booking: Booking, *, attempt: Optional[int] = None) -> Booking:
        # Priced at the moment of cancellation, retries included.
        amount = self.policy.refund_amount(booking, booking.cancelled_at or self.clock())
        if amount == 0:
            return self.finalize(booking, None, 0)

        try:
            refund = self.gateway.refund(
                booking.payment_reference,
                amount,
                idempotency_key=f"booking-{booking.pk}-refund-{attempt or 0}",
            )
        except PaymentGatewayError as exc:
            logger.error(
                "booking.refund_failed",
                booking_id=booking.pk,
                payment_reference=booking.payment_reference,
                error=exc.message,
                gateway_code=exc.gateway_code,
                attempt=attempt,
            )
            self.mark_refund_failed(booking, exc.message, attempt=attempt)
            raise RefundFailed(booking.pk, booking.payment_reference, exc.gateway_code, exc.message) from exc

        if refund.status == FAILED:
            reason = refund.failure_reason or "Refund was declined"
            logger.error("booking.refund_declined", booking_id=booking.pk, refund_id=refund.id, reason=reason)
            self.mark_refund_failed(booking, reason, attempt=attempt)
            raise RefundFailed(booking.pk, booking.payment_reference, "refund_declined", reason)

        if not refund.succeeded:
            # Settled later by the sweeper from the payment's refund list.
            logger.info("booking.refund_in_flight", booking_id=booking.pk, refund_id=refund.id, status=refund.status)
            return Booking.objects.get(pk=booking.pk)

        return self.finalize(booking, refund.id, refund.amount or amount)

    @staticmethod
    def _lock(booking: Booking) -> Booking:
        locked = _lock_queryset_if_possible(Booking.all_objects.filter(pk=booking.pk)).first()
        if locked is None:
            raise BookingNotFound(booking_id=booking.pk)
        return locked
