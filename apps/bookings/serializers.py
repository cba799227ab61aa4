"""Serializers for the booking domain."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from apps.rooms.models import Room

from .models import Booking
from .services import GuestInfo, booking_creator


class BookingCreateSerializer(serializers.Serializer):
    """Booking request made by a guest."""

    room = serializers.PrimaryKeyRelatedField(queryset=Room.objects.all())
    check_in = serializers.DateField()
    check_out = serializers.DateField()
    guest_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    guest_email = serializers.EmailField(required=False)

    def validate(self, attrs):  # type: ignore
        room: Room = attrs["room"]
        if room.status != Room.Status.ACTIVE:
            raise serializers.ValidationError("The room cannot be booked at the moment.")
        return attrs

    def create(self, validated_data):  # type: ignore
        request = self.context["request"]
        user = request.user if request.user.is_authenticated else None
        guest = GuestInfo(
            name=validated_data.get("guest_name") or (user.get_full_name() or user.email if user else ""),
            email=validated_data.get("guest_email") or (user.email if user else ""),
        )
        if not guest.email:
            raise serializers.ValidationError({"guest_email": ["This field is required."]})

        return booking_creator.create(
            validated_data["room"].pk,
            validated_data["check_in"],
            validated_data["check_out"],
            guest,
            owner=user,
        )


class BookingDatesSerializer(serializers.Serializer):
    check_in = serializers.DateField()
    check_out = serializers.DateField()


class ForceCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500)


class BookingSerializer(serializers.ModelSerializer):
    """Booking details."""

    room_id = serializers.ReadOnlyField(source="room.id")
    user_id = serializers.ReadOnlyField(source="user.id")

    class Meta:
        model = Booking
        fields = (
            "id",
            "room_id",
            "user_id",
            "guest_name",
            "guest_email",
            "check_in",
            "check_out",
            "status",
            "amount",
            "currency",
            "refund_status",
            "refund_amount",
            "cancelled_at",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields
