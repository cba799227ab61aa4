"""
Refund reconciliation.

Settles bookings that the cancellation flow left half-way:

- refund_pending for longer than STALE_THRESHOLD_MINUTES: the process died
  between the gateway call and recording its outcome, or the gateway answered
  "pending". The gateway's records decide: a succeeded refund finalizes the
  booking, a failed one moves it to refund_failed, anything else waits for
  the next run. No new refund is issued for these bookings.
- refund_failed for longer than RETRY_DELAY_MINUTES with fewer than
  MAX_ATTEMPTS recorded attempts: the refund is issued again.

Bookings are processed in primary-key batches of BATCH_SIZE. A failure on one
booking is logged and does not stop the run.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterator, Optional

import structlog
from django.db.models import QuerySet  # type: ignore
from django.utils import timezone  # type: ignore

from apps.payments.gateway import FAILED, PaymentGatewayError, get_payment_gateway
from shared.conf import booking_settings

from .cancellation import CancellationService
from .exceptions import RefundFailed
from .models import Booking, BookingStatus

logger = structlog.get_logger(__name__)


@dataclass
class ReconciliationReport:
    checked: int = 0
    finalized: int = 0
    marked_failed: int = 0
    still_pending: int = 0
    retried: int = 0
    retry_succeeded: int = 0
    retry_failed: int = 0
    skipped_max_attempts: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def iterate_in_batches(queryset: QuerySet, batch_size: int) -> Iterator[Booking]:
    """Yield rows batch by batch, keyed on the primary key."""

    last_pk = None
    while True:
        batch_qs = queryset.order_by("pk")
        if last_pk is not None:
            batch_qs = batch_qs.filter(pk__gt=last_pk)
        batch = list(batch_qs[:batch_size])
        if not batch:
            return
        yield from batch
        last_pk = batch[-1].pk


class RefundReconciler:
    def __init__(
        self,
        gateway=None,
        service: Optional[CancellationService] = None,
        *,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self._gateway = gateway
        self.clock = clock
        self.service = service or CancellationService(gateway=gateway, clock=clock)
        config = booking_settings("RECONCILIATION")
        self.stale_threshold = timedelta(minutes=int(config["STALE_THRESHOLD_MINUTES"]))
        self.retry_delay = timedelta(minutes=int(config["RETRY_DELAY_MINUTES"]))
        self.batch_size = int(config["BATCH_SIZE"])
        self.max_attempts = int(config["MAX_ATTEMPTS"])

    @property
    def gateway(self):
        if self._gateway is None:
            self._gateway = get_payment_gateway()
        return self._gateway

    def run(self) -> dict[str, int]:
        report = ReconciliationReport()
        self.reconcile_pending(report)
        self.retry_failed(report)
        logger.info("reconciliation.finished", **report.as_dict())
        return report.as_dict()

    # --- refund_pending ----------------------------------------------------

    def stale_pending(self) -> QuerySet:
        return Booking.objects.filter(
            status=BookingStatus.REFUND_PENDING,
            payment_reference__isnull=False,
            updated_at__lt=self.clock() - self.stale_threshold,
        )

    def reconcile_pending(self, report: ReconciliationReport) -> None:
        for booking in iterate_in_batches(self.stale_pending(), self.batch_size):
            report.checked += 1
            try:
                self.reconcile_booking(booking, report)
            except PaymentGatewayError as exc:
                report.errors += 1
                logger.warning(
                    "reconciliation.gateway_error",
                    booking_id=booking.pk,
                    error=exc.message,
                    gateway_code=exc.gateway_code,
                )
            except Exception:
                report.errors += 1
                logger.exception("reconciliation.booking_error", booking_id=booking.pk)

    def reconcile_booking(self, booking: Booking, report: ReconciliationReport) -> None:
        if booking.refund_reference:
            refund = self.gateway.retrieve_refund(booking.refund_reference)
        else:
            payment = self.gateway.retrieve_payment(booking.payment_reference)
            refund = payment.latest_refund()
            if refund is None:
                report.still_pending += 1
                logger.warning(
                    "reconciliation.no_refund_found",
                    booking_id=booking.pk,
                    payment_reference=booking.payment_reference,
                )
                return

        if refund.succeeded:
            self.service.finalize(booking, refund.id, refund.amount)
            report.finalized += 1
            logger.info("reconciliation.finalized", booking_id=booking.pk, refund_id=refund.id)
        elif refund.status == FAILED:
            self.service.mark_refund_failed(booking, refund.failure_reason or "Refund failed at the gateway")
            report.marked_failed += 1
            logger.warning("reconciliation.refund_failed", booking_id=booking.pk, refund_id=refund.id)
        else:
            report.still_pending += 1
            logger.info("reconciliation.still_pending", booking_id=booking.pk, refund_id=refund.id)

    # --- refund_failed -----------------------------------------------------

    def retryable_failed(self) -> QuerySet:
        return Booking.objects.filter(
            status=BookingStatus.REFUND_FAILED,
            payment_reference__isnull=False,
            refund_reference__isnull=True,
            updated_at__lt=self.clock() - self.retry_delay,
        )

    def retry_failed(self, report: ReconciliationReport) -> None:
        for booking in iterate_in_batches(self.retryable_failed(), self.batch_size):
            attempts = booking.refund_attempts()
            if attempts >= self.max_attempts:
                report.skipped_max_attempts += 1
                logger.warning("reconciliation.max_attempts", booking_id=booking.pk, attempts=attempts)
                continue

            report.retried += 1
            try:
                self.service.retry_refund(booking, attempt=attempts + 1)
            except RefundFailed as exc:
                report.retry_failed += 1
                logger.warning(
                    "reconciliation.retry_failed",
                    booking_id=booking.pk,
                    attempt=attempts + 1,
                    error=exc.reason,
                )
            except Exception:
                report.errors += 1
                logger.exception("reconciliation.retry_error", booking_id=booking.pk)
            else:
                report.retry_succeeded += 1
