"""Room writes with optimistic concurrency control.

A write names the version the caller read. The UPDATE only matches the row
while that version is still current and bumps it in the same statement, so
of two writers holding the same version exactly one succeeds; the other gets
VersionConflict with the version it has to reload.
"""

from __future__ import annotations

from typing import Any, Mapping

import structlog
from django.db.models import F, ProtectedError  # type: ignore
from django.utils import timezone  # type: ignore

from .exceptions import RoomInUse, VersionConflict
from .models import Room

logger = structlog.get_logger(__name__)

EDITABLE_FIELDS = frozenset({"name", "description", "price", "max_guests", "status"})


def _room_id(room) -> Any:
    return room.pk if isinstance(room, Room) else room


def _validate_version(expected_version) -> int:
    if isinstance(expected_version, bool) or not isinstance(expected_version, int) or expected_version < 1:
        raise ValueError("expected_version must be a positive integer.")
    return expected_version


class RoomEditor:
    """Compare-and-swap updates and deletes for rooms."""

    def update(self, room, data: Mapping[str, Any], expected_version: int) -> Room:
        room_id = _room_id(room)
        expected_version = _validate_version(expected_version)

        unknown = set(data) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        updated = Room.objects.filter(pk=room_id, version=expected_version).update(
            **dict(data),
            version=F("version") + 1,
            updated_at=timezone.now(),
        )
        if updated == 0:
            raise self._conflict(room_id, expected_version)

        fresh = Room.objects.get(pk=room_id)
        logger.info("room.updated", room_id=room_id, version=fresh.version, fields=sorted(data))
        return fresh

    def delete(self, room, expected_version: int) -> bool:
        room_id = _room_id(room)
        expected_version = _validate_version(expected_version)

        try:
            deleted, _ = Room.objects.filter(pk=room_id, version=expected_version).delete()
        except ProtectedError as exc:
            # Booking history, soft-deleted rows included, pins the room.
            logger.info("room.delete_refused", room_id=room_id, bookings=len(exc.protected_objects))
            raise RoomInUse(room_id, len(exc.protected_objects)) from exc
        if deleted == 0:
            raise self._conflict(room_id, expected_version)

        logger.info("room.deleted", room_id=room_id, version=expected_version)
        return True

    @staticmethod
    def _conflict(room_id, expected_version: int) -> VersionConflict:
        actual = Room.objects.filter(pk=room_id).values_list("version", flat=True).first()
        logger.info(
            "room.version_conflict",
            room_id=room_id,
            expected_version=expected_version,
            actual_version=actual,
        )
        return VersionConflict(room_id, expected_version, actual)


room_editor = RoomEditor()
