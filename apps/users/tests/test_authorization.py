"""Tests for the authorization rule chain."""

from __future__ import annotations

from datetime import date

from django.contrib.auth.models import AnonymousUser
from django.test import TestCase

from apps.bookings.models import Booking
from apps.rooms.models import Room
from apps.users.authorization import (
    CANCEL,
    CANCEL_AFTER_CHECKIN,
    FORCE_CANCEL,
    MANAGE,
    VIEW,
    authorize,
)
from apps.users.models import User


class AuthorizationTests(TestCase):
    def setUp(self) -> None:
        self.guest = User.objects.create_user(email="guest@example.com", password="GuestPass123")
        self.stranger = User.objects.create_user(email="stranger@example.com", password="GuestPass123")
        self.admin = User.objects.create_user(
            email="admin@example.com",
            password="AdminPass123",
            role=User.RoleChoices.ADMIN,
        )
        room = Room.objects.create(name="Garden suite")
        self.booking = Booking.objects.create(
            room=room,
            user=self.guest,
            guest_name="Guest",
            guest_email="guest@example.com",
            check_in=date(2030, 1, 10),
            check_out=date(2030, 1, 12),
        )

    def test_owner_may_view_and_cancel_own_booking(self) -> None:
        self.assertTrue(authorize(self.guest, self.booking, VIEW))
        self.assertTrue(authorize(self.guest, self.booking, CANCEL))

    def test_owner_may_not_cancel_after_checkin_or_force_cancel(self) -> None:
        self.assertFalse(authorize(self.guest, self.booking, CANCEL_AFTER_CHECKIN))
        self.assertFalse(authorize(self.guest, self.booking, FORCE_CANCEL))

    def test_other_guests_are_denied(self) -> None:
        self.assertFalse(authorize(self.stranger, self.booking, VIEW))
        self.assertFalse(authorize(self.stranger, self.booking, CANCEL))

    def test_anonymous_users_are_denied(self) -> None:
        self.assertFalse(authorize(AnonymousUser(), self.booking, VIEW))
        self.assertFalse(authorize(None, self.booking, VIEW))

    def test_admin_bypass_covers_every_action(self) -> None:
        for action in (VIEW, CANCEL, CANCEL_AFTER_CHECKIN, FORCE_CANCEL, MANAGE):
            self.assertTrue(authorize(self.admin, self.booking, action), action)

    def test_superuser_counts_as_admin(self) -> None:
        root = User.objects.create_superuser(email="root@example.com", password="RootPass123")
        self.assertTrue(root.is_admin())
        self.assertTrue(authorize(root, None, MANAGE))

    def test_first_decisive_rule_wins(self) -> None:
        rules = (
            lambda user, resource, action: None,
            lambda user, resource, action: False,
            lambda user, resource, action: True,
        )
        self.assertFalse(authorize(self.admin, self.booking, VIEW, rules=rules))

    def test_nobody_allowing_means_denied(self) -> None:
        self.assertFalse(authorize(self.guest, None, MANAGE))


class CustomUserManagerTests(TestCase):
    def test_create_user_normalizes_email_and_defaults_to_guest(self) -> None:
        user = User.objects.create_user(email="Guest@EXAMPLE.com", password="GuestPass123")

        self.assertEqual(user.email, "Guest@example.com")
        self.assertEqual(user.role, User.RoleChoices.GUEST)
        self.assertFalse(user.is_admin())
        self.assertTrue(user.check_password("GuestPass123"))

    def test_email_is_required(self) -> None:
        with self.assertRaises(ValueError):
            User.objects.create_user(email="", password="x")
