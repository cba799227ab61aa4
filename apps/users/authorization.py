"""
Authorization rules.

`authorize(user, resource, action)` walks an ordered list of rules. Each rule
answers True (allow), False (deny) or None (no opinion); the first decisive
answer wins and a request nobody allows is denied. The admin bypass sits at
the head of the chain, so it is evaluated before any ownership rule.
"""

from __future__ import annotations

from typing import Any, Callable, Optional, Sequence

Rule = Callable[[Any, Any, str], Optional[bool]]

VIEW = "view"
UPDATE = "update"
CANCEL = "cancel"
CANCEL_AFTER_CHECKIN = "cancel_after_checkin"
FORCE_CANCEL = "force_cancel"
MANAGE = "manage"


def admin_bypass(user, resource, action: str) -> Optional[bool]:
    if getattr(user, "is_superuser", False):
        return True
    is_admin = getattr(user, "is_admin", None)
    if callable(is_admin) and is_admin():
        return True
    return None


def anonymous_denied(user, resource, action: str) -> Optional[bool]:
    if user is None or not getattr(user, "is_authenticated", False):
        return False
    return None


def booking_owner(user, resource, action: str) -> Optional[bool]:
    """Guests may view, update and cancel their own bookings."""

    from apps.bookings.models import Booking

    if not isinstance(resource, Booking):
        return None
    if action in (VIEW, UPDATE, CANCEL) and resource.user_id == user.pk:
        return True
    return None


DEFAULT_RULES: tuple[Rule, ...] = (admin_bypass, anonymous_denied, booking_owner)


def authorize(user, resource, action: str, rules: Sequence[Rule] = DEFAULT_RULES) -> bool:
    for rule in rules:
        decision = rule(user, resource, action)
        if decision is not None:
            return decision
    return False
