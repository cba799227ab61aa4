"""Rooms app package.

Rooms are the bookable units. Every write to a room goes through
``apps.rooms.services.RoomEditor``, which applies optimistic concurrency
control on the ``version`` column so that two admins editing the same room
cannot silently overwrite each other.
"""
