"""Admin registrations for properties domain."""

from __future__ import annotations

from django.contrib import admin

from .models import Property


@admin.register(Property)
class PropertyAdmin(admin.ModelAdmin):
    list_display = (
        "title",
        "city",
        "price_per_night",
        "currency",
        "max_guests",
        "is_active",
        "owner",
        "created_at",
    )
    list_filter = ("is_active", "city", "currency")
    search_fields = ("title", "city", "address_line", "owner__email", "external_listing_id")
    readonly_fields = ("created_at", "updated_at")
