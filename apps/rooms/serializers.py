"""Serializers for rooms."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from .models import Room


class RoomSerializer(serializers.ModelSerializer):
    class Meta:
        model = Room
        fields = (
            "id",
            "name",
            "description",
            "price",
            "max_guests",
            "status",
            "version",
            "created_at",
            "updated_at",
        )
        read_only_fields = ("id", "version", "created_at", "updated_at")


class RoomUpdateSerializer(serializers.ModelSerializer):
    """Partial update payload; `version` is the version the client read."""

    version = serializers.IntegerField(min_value=1)

    class Meta:
        model = Room
        fields = ("name", "description", "price", "max_guests", "status", "version")
        extra_kwargs = {
            "name": {"required": False},
            "description": {"required": False},
            "price": {"required": False},
            "max_guests": {"required": False},
            "status": {"required": False},
        }


class RoomVersionSerializer(serializers.Serializer):
    version = serializers.IntegerField(min_value=1)
