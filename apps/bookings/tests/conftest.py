"""Fixtures shared by the booking tests."""

from datetime import date, datetime, timezone as dt_timezone

import pytest
from django.core.cache import cache

from apps.bookings.events import BookingCancelled
from apps.bookings.models import Booking, BookingStatus
from apps.bookings.cancellation import CancellationService
from apps.payments.gateway import FAILED, SUCCEEDED, PaymentGatewayError, PaymentInfo, RefundResult
from apps.rooms.models import Room
from apps.users.models import User
from shared.application.message_bus import MessageBus
from shared.infrastructure.cache_store import CacheStore
from shared.infrastructure.idempotency import IdempotencyGuard

# Fixed "now" for cancellation and reconciliation tests: 2030-01-10 12:00 UTC.
NOW = datetime(2030, 1, 10, 12, 0, tzinfo=dt_timezone.utc)


class FakeGateway:
    """In-memory payment provider that records every refund request."""

    def __init__(self, refund_status=SUCCEEDED, error=None):
        self.refund_status = refund_status
        self.error = error
        self.lookup_error = None
        self.refund_calls = []
        self.refunds = {}
        self.payments = {}

    def refund(self, payment_reference, amount, *, idempotency_key=None):
        self.refund_calls.append(
            {"payment": payment_reference, "amount": amount, "idempotency_key": idempotency_key}
        )
        if self.error is not None:
            raise self.error
        refund = RefundResult(
            id=f"re_{len(self.refund_calls)}",
            status=self.refund_status,
            amount=amount,
            failure_reason="insufficient_funds" if self.refund_status == FAILED else None,
            created=len(self.refund_calls),
        )
        self.add_refund(payment_reference, refund)
        return refund

    def add_refund(self, payment_reference, refund):
        self.refunds[refund.id] = refund
        self.payments.setdefault(payment_reference, PaymentInfo(payment_reference, SUCCEEDED)).refunds.append(refund)

    def retrieve_refund(self, refund_id):
        if self.lookup_error is not None:
            raise self.lookup_error
        if refund_id not in self.refunds:
            raise PaymentGatewayError("No such refund", "resource_missing")
        return self.refunds[refund_id]

    def retrieve_payment(self, payment_reference):
        if self.lookup_error is not None:
            raise self.lookup_error
        return self.payments.get(payment_reference) or PaymentInfo(payment_reference, SUCCEEDED)


@pytest.fixture(autouse=True)
def clear_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def room(db):
    return Room.objects.create(name="Harbour room", max_guests=2)


@pytest.fixture
def guest(db):
    return User.objects.create_user(email="ann@example.com", password="GuestPass123", first_name="Ann")


@pytest.fixture
def other_guest(db):
    return User.objects.create_user(email="bob@example.com", password="GuestPass123")


@pytest.fixture
def admin(db):
    return User.objects.create_user(
        email="admin@example.com",
        password="AdminPass123",
        role=User.RoleChoices.ADMIN,
    )


@pytest.fixture
def make_booking(room, guest):
    def factory(**overrides):
        values = {
            "room": room,
            "user": guest,
            "guest_name": "Ann Guest",
            "guest_email": "ann@example.com",
            "check_in": date(2030, 1, 15),
            "check_out": date(2030, 1, 18),
            "status": BookingStatus.CONFIRMED,
            "amount": 30000,
            "payment_reference": "pay_123",
        }
        values.update(overrides)
        return Booking.objects.create(**values)

    return factory


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def published():
    return []


@pytest.fixture
def bus(published):
    bus = MessageBus()
    bus.register_event_handler(BookingCancelled, published.append)
    return bus


@pytest.fixture
def service(gateway, bus):
    return CancellationService(
        gateway=gateway,
        guard=IdempotencyGuard(CacheStore(cache)),
        bus=bus,
        clock=lambda: NOW,
    )


@pytest.fixture
def now():
    return NOW
