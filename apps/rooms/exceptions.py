"""Errors raised by room services."""

from __future__ import annotations

from typing import Optional

from shared.domain.exceptions import BusinessError


class RoomNotFound(BusinessError):
    code = "room_not_found"
    http_status = 404
    default_message = "Room not found."

    def __init__(self, room_id):
        self.room_id = room_id
        super().__init__(room_id=room_id)


class VersionConflict(BusinessError):
    """The room changed since the caller read it."""

    code = "version_conflict"
    http_status = 409
    default_message = "The room was modified by someone else. Reload it and try again."

    def __init__(self, room_id, expected_version: int, actual_version: Optional[int]):
        self.room_id = room_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            room_id=room_id,
            expected_version=expected_version,
            actual_version=actual_version,
        )


class RoomInUse(BusinessError):
    """The room still has bookings on record and cannot be deleted."""

    code = "room_in_use"
    http_status = 409
    default_message = "The room has bookings on record. Take it out of service instead."

    def __init__(self, room_id, booking_count: int):
        self.room_id = room_id
        self.booking_count = booking_count
        super().__init__(room_id=room_id, booking_count=booking_count)
