"""Admin registration for bookings."""

from __future__ import annotations

from django.contrib import admin

from .models import Booking


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "room",
        "guest_email",
        "status",
        "check_in",
        "check_out",
        "amount",
        "refund_status",
        "created_at",
    )
    list_filter = ("status", "refund_status", "check_in", "check_out")
    search_fields = ("guest_email", "guest_name", "payment_reference", "refund_reference")
    readonly_fields = (
        "status",
        "payment_reference",
        "refund_reference",
        "refund_status",
        "refund_amount",
        "refund_error",
        "cancelled_at",
        "cancelled_by",
        "deleted_at",
        "deleted_by",
        "created_at",
        "updated_at",
    )

    def get_queryset(self, request):  # type: ignore
        return Booking.all_objects.select_related("room")
