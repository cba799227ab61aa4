"""API views for the booking domain."""

from __future__ import annotations

from rest_framework import mixins, permissions, status, viewsets  # type: ignore
from rest_framework.decorators import action  # type: ignore
from rest_framework.response import Response  # type: ignore

from apps.users.authorization import CANCEL, FORCE_CANCEL, MANAGE, UPDATE, VIEW, authorize

from .cancellation import CancellationService
from .models import Booking
from .serializers import (
    BookingCreateSerializer,
    BookingDatesSerializer,
    BookingSerializer,
    ForceCancelSerializer,
)
from .services import booking_creator

ACTION_MAP = {
    "retrieve": VIEW,
    "update": UPDATE,
    "partial_update": UPDATE,
    "cancel": CANCEL,
    "force_cancel": FORCE_CANCEL,
}


class IsBookingStakeholder(permissions.BasePermission):
    """Owners reach their own bookings, admins reach all of them."""

    def has_object_permission(self, request, view, obj: Booking):  # type: ignore
        return authorize(request.user, obj, ACTION_MAP.get(view.action, VIEW))


class BookingViewSet(
    mixins.CreateModelMixin,
    mixins.RetrieveModelMixin,
    mixins.ListModelMixin,
    mixins.UpdateModelMixin,
    viewsets.GenericViewSet,
):
    queryset = Booking.objects.select_related("room", "user").all()
    permission_classes = [permissions.IsAuthenticated, IsBookingStakeholder]

    def get_serializer_class(self):  # type: ignore
        if self.action == "create":
            return BookingCreateSerializer
        return BookingSerializer

    def get_queryset(self):  # type: ignore
        user = self.request.user
        qs = super().get_queryset()
        if authorize(user, None, MANAGE):
            return qs
        return qs.filter(user=user)

    def create(self, request, *args, **kwargs):  # type: ignore
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = serializer.save()
        read_serializer = BookingSerializer(booking, context=self.get_serializer_context())
        return Response(read_serializer.data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):  # type: ignore
        booking: Booking = self.get_object()  # type: ignore
        serializer = BookingDatesSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        booking = booking_creator.update(
            booking,
            serializer.validated_data["check_in"],
            serializer.validated_data["check_out"],
        )
        return Response(BookingSerializer(booking).data)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):  # type: ignore
        booking: Booking = self.get_object()  # type: ignore
        booking = CancellationService().cancel(
            booking,
            request.user,
            idempotency_key=request.headers.get("Idempotency-Key"),
        )
        return Response(BookingSerializer(booking).data, status=status.HTTP_200_OK)

    @action(detail=True, methods=["post"], url_path="force-cancel")
    def force_cancel(self, request, pk=None):  # type: ignore
        booking: Booking = self.get_object()  # type: ignore
        serializer = ForceCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        booking = CancellationService().force_cancel(booking, request.user, serializer.validated_data["reason"])
        return Response(BookingSerializer(booking).data, status=status.HTTP_200_OK)
