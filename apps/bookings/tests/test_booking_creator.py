from datetime import date, timedelta

import pytest
from django.utils import timezone

from apps.bookings.exceptions import (
    BookingNotModifiable,
    InvalidDateRange,
    InvalidStatusTransition,
    RoomUnavailable,
)
from apps.bookings.models import Booking, BookingStatus
from apps.bookings.services import GuestInfo, booking_creator, confirm_booking, soft_delete_booking, validate_stay
from apps.rooms.exceptions import RoomNotFound
from apps.rooms.models import Room

pytestmark = pytest.mark.django_db

GUEST = GuestInfo(name="Ann Guest", email="ann@example.com")


@pytest.fixture
def start():
    return timezone.localdate() + timedelta(days=10)


def book(room, check_in, nights=3, **kwargs):
    return booking_creator.create(room.pk, check_in, check_in + timedelta(days=nights), GUEST, **kwargs)


def test_creates_pending_booking(room, guest, start):
    booking = book(room, start, owner=guest, amount=45000, payment_reference="pay_1")

    assert booking.status == BookingStatus.PENDING
    assert booking.user == guest
    assert booking.guest_email == "ann@example.com"
    assert booking.amount == 45000
    assert booking.nights == 3


def test_overlapping_stay_is_rejected(room, start):
    book(room, start)

    with pytest.raises(RoomUnavailable) as excinfo:
        book(room, start + timedelta(days=2))

    assert excinfo.value.room_id == room.pk
    assert Booking.objects.count() == 1


def test_stay_enclosing_an_existing_booking_is_rejected(room, start):
    book(room, start + timedelta(days=1), nights=1)

    with pytest.raises(RoomUnavailable):
        book(room, start, nights=5)


def test_back_to_back_stays_do_not_overlap(room, start):
    book(room, start, nights=3)
    book(room, start + timedelta(days=3), nights=2)
    book(room, start - timedelta(days=2), nights=2)

    assert Booking.objects.count() == 3


def test_other_rooms_are_independent(room, start):
    other = Room.objects.create(name="Garden room")
    book(room, start)
    book(other, start)

    assert Booking.objects.count() == 2


def test_cancelled_bookings_do_not_block_the_room(room, start):
    booking = book(room, start)
    Booking.objects.filter(pk=booking.pk).update(status=BookingStatus.CANCELLED)

    assert book(room, start).pk != booking.pk


@pytest.mark.parametrize("status", [BookingStatus.REFUND_PENDING, BookingStatus.REFUND_FAILED])
def test_bookings_being_refunded_do_not_block_the_room(room, start, status):
    booking = book(room, start)
    Booking.objects.filter(pk=booking.pk).update(status=status)

    book(room, start)


def test_soft_deleted_bookings_do_not_block_the_room(room, start, admin):
    booking = book(room, start)
    soft_delete_booking(booking, admin)

    book(room, start)
    assert Booking.all_objects.count() == 2
    assert Booking.objects.count() == 1


def test_check_out_must_follow_check_in(room, start):
    with pytest.raises(InvalidDateRange):
        booking_creator.create(room.pk, start, start, GUEST)


def test_check_in_cannot_be_in_the_past(room):
    yesterday = timezone.localdate() - timedelta(days=1)

    with pytest.raises(InvalidDateRange):
        booking_creator.create(room.pk, yesterday, yesterday + timedelta(days=2), GUEST)


def test_dates_may_be_iso_strings(room, start):
    booking = booking_creator.create(room.pk, start.isoformat(), (start + timedelta(days=1)).isoformat(), GUEST)
    assert booking.check_in == start


def test_malformed_dates_are_rejected(room):
    with pytest.raises(InvalidDateRange):
        booking_creator.create(room.pk, "2030-13-01", "2030-13-05", GUEST)


def test_unknown_room(start):
    with pytest.raises(RoomNotFound):
        booking_creator.create(999999, start, start + timedelta(days=1), GUEST)


def test_validate_stay_uses_given_today():
    assert validate_stay("2030-01-02", "2030-01-04", today=date(2030, 1, 1)) == (date(2030, 1, 2), date(2030, 1, 4))


def test_update_excludes_the_booking_itself(room, start):
    booking = book(room, start, nights=3)

    moved = booking_creator.update(booking, start + timedelta(days=1), start + timedelta(days=4))

    assert moved.check_in == start + timedelta(days=1)
    assert Booking.objects.get(pk=booking.pk).check_out == start + timedelta(days=4)


def test_update_into_another_booking_is_rejected(room, start):
    first = book(room, start, nights=2)
    book(room, start + timedelta(days=5), nights=2)

    with pytest.raises(RoomUnavailable):
        booking_creator.update(first, start + timedelta(days=4), start + timedelta(days=6))

    first.refresh_from_db()
    assert first.check_in == start


def test_only_active_bookings_can_be_moved(room, start):
    booking = book(room, start)
    Booking.objects.filter(pk=booking.pk).update(status=BookingStatus.CANCELLED)

    with pytest.raises(BookingNotModifiable):
        booking_creator.update(booking, start + timedelta(days=1), start + timedelta(days=2))


def test_confirm_booking_records_payment(room, start):
    booking = book(room, start)

    confirmed = confirm_booking(booking, "pay_abc", amount=27000)

    assert confirmed.status == BookingStatus.CONFIRMED
    assert confirmed.payment_reference == "pay_abc"
    assert confirmed.amount == 27000
    assert confirm_booking(confirmed, "pay_abc").status == BookingStatus.CONFIRMED


def test_cancelled_booking_cannot_be_confirmed(room, start):
    booking = book(room, start)
    Booking.objects.filter(pk=booking.pk).update(status=BookingStatus.CANCELLED)

    with pytest.raises(InvalidStatusTransition):
        confirm_booking(booking, "pay_late")
