"""Admin registration for bookings."""

from __future__ import annotations

from django.contrib import admin

from .models import Booking


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = (
        "booking_code",
        "property",
        "guest",
        "status",
        "payment_status",
        "check_in",
        "check_out",
        "total_amount",
        "created_at",
    )
    list_filter = ("status", "payment_status", "check_in", "check_out")
    search_fields = ("booking_code", "property__title", "guest__email", "external_payment_ref")
    readonly_fields = (
        "booking_code",
        "created_at",
        "updated_at",
        "total_amount",
        "nightly_rate",
        "external_payment_ref",
        "external_sync_ref",
        "confirmed_at",
        "cancelled_at",
    )
