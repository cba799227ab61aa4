"""Integration tests for booking API endpoints."""

from __future__ import annotations

from datetime import timedelta

from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from apps.bookings.models import Booking, BookingStatus
from apps.rooms.models import Room
from apps.users.models import User


class BookingAPITests(APITestCase):
    """Covers creation, conflicts, rescheduling and cancellation."""

    def setUp(self) -> None:
        self.guest = User.objects.create_user(
            email="guest@example.com",
            password="GuestPass123",
            first_name="Ann",
            last_name="Guest",
        )
        self.stranger = User.objects.create_user(email="stranger@example.com", password="GuestPass123")
        self.admin = User.objects.create_user(
            email="admin@example.com",
            password="AdminPass123",
            role=User.RoleChoices.ADMIN,
        )
        self.room = Room.objects.create(name="Corner room", max_guests=2)
        self.client.force_authenticate(self.guest)
        self.list_url = reverse("booking-list")
        self.start = timezone.localdate() + timedelta(days=10)

    def _payload(self, offset: int = 0, nights: int = 2) -> dict[str, str]:
        check_in = self.start + timedelta(days=offset)
        return {
            "room": self.room.pk,
            "check_in": str(check_in),
            "check_out": str(check_in + timedelta(days=nights)),
        }

    def _create(self, offset: int = 0, nights: int = 2) -> Booking:
        response = self.client.post(self.list_url, self._payload(offset, nights), format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        return Booking.objects.get(pk=response.data["id"])

    def test_guest_can_create_booking(self) -> None:
        response = self.client.post(self.list_url, self._payload(), format="json")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertEqual(response.data["status"], BookingStatus.PENDING)
        self.assertEqual(response.data["user_id"], self.guest.pk)
        self.assertEqual(response.data["guest_email"], "guest@example.com")
        self.assertEqual(response.data["guest_name"], "Ann Guest")

    def test_prevent_double_booking_on_overlap(self) -> None:
        self._create()

        response = self.client.post(self.list_url, self._payload(offset=1), format="json")

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT, response.data)
        self.assertEqual(response.data["code"], "room_unavailable")
        self.assertEqual(Booking.objects.count(), 1)

    def test_back_to_back_booking_is_allowed(self) -> None:
        self._create(nights=2)
        self._create(offset=2, nights=2)

        self.assertEqual(Booking.objects.count(), 2)

    def test_invalid_date_range_is_rejected(self) -> None:
        payload = self._payload()
        payload["check_out"] = payload["check_in"]

        response = self.client.post(self.list_url, payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_422_UNPROCESSABLE_ENTITY, response.data)
        self.assertEqual(response.data["code"], "invalid_date_range")

    def test_room_out_of_service_cannot_be_booked(self) -> None:
        Room.objects.filter(pk=self.room.pk).update(status=Room.Status.MAINTENANCE)

        response = self.client.post(self.list_url, self._payload(), format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_anonymous_users_cannot_book(self) -> None:
        self.client.force_authenticate(None)

        response = self.client.post(self.list_url, self._payload(), format="json")

        self.assertIn(response.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))

    def test_guests_only_see_their_own_bookings(self) -> None:
        own = self._create()
        self.client.force_authenticate(self.stranger)
        self._create(offset=5)

        response = self.client.get(self.list_url)
        self.assertEqual(len(response.data), 1)

        detail = self.client.get(reverse("booking-detail", args=[own.pk]))
        self.assertEqual(detail.status_code, status.HTTP_404_NOT_FOUND)

    def test_admin_sees_all_bookings(self) -> None:
        self._create()
        self.client.force_authenticate(self.admin)

        response = self.client.get(self.list_url)

        self.assertEqual(len(response.data), 1)

    def test_reschedule_booking(self) -> None:
        booking = self._create()
        url = reverse("booking-detail", args=[booking.pk])

        response = self.client.put(url, self._payload(offset=1), format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        booking.refresh_from_db()
        self.assertEqual(booking.check_in, self.start + timedelta(days=1))

    def test_reschedule_into_conflict(self) -> None:
        booking = self._create()
        self._create(offset=4)

        response = self.client.put(
            reverse("booking-detail", args=[booking.pk]),
            self._payload(offset=3),
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT, response.data)

    def test_guest_cancels_unpaid_booking(self) -> None:
        booking = self._create()

        response = self.client.post(
            reverse("booking-cancel", args=[booking.pk]),
            HTTP_IDEMPOTENCY_KEY="cancel-1",
        )
        repeat = self.client.post(
            reverse("booking-cancel", args=[booking.pk]),
            HTTP_IDEMPOTENCY_KEY="cancel-1",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data["status"], BookingStatus.CANCELLED)
        self.assertEqual(repeat.status_code, status.HTTP_200_OK)
        self.assertEqual(repeat.data["status"], BookingStatus.CANCELLED)

    def test_cancelled_booking_frees_the_room(self) -> None:
        booking = self._create()
        self.client.post(reverse("booking-cancel", args=[booking.pk]))

        self._create()

    def test_guest_cannot_force_cancel(self) -> None:
        booking = self._create()

        response = self.client.post(
            reverse("booking-force-cancel", args=[booking.pk]),
            {"reason": "fraud"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_force_cancels(self) -> None:
        booking = self._create()
        self.client.force_authenticate(self.admin)

        response = self.client.post(
            reverse("booking-force-cancel", args=[booking.pk]),
            {"reason": "fraud"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        booking.refresh_from_db()
        self.assertEqual(booking.status, BookingStatus.CANCELLED)
        self.assertEqual(booking.refund_error, "Force cancelled: fraud")
