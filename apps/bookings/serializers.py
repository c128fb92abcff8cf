"""Serializers for the booking domain."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from .models import Booking
from .services import MAX_PAGE_SIZE


class BookingCreateSerializer(serializers.Serializer):
    """Input for creating a booking. Business rules are checked by the ledger."""

    property = serializers.IntegerField(min_value=1)
    check_in = serializers.DateField()
    check_out = serializers.DateField()
    guests = serializers.IntegerField(min_value=1, default=1)


class BookingCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class BookingListQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Booking.Status.choices, required=False)
    page = serializers.IntegerField(min_value=1, required=False, default=1)
    page_size = serializers.IntegerField(min_value=1, max_value=MAX_PAGE_SIZE, required=False, default=10)


class AvailabilityQuerySerializer(serializers.Serializer):
    check_in = serializers.DateField()
    check_out = serializers.DateField()

    def validate(self, attrs):  # type: ignore
        if attrs["check_out"] <= attrs["check_in"]:
            raise serializers.ValidationError({"check_out": "Check-out date must be after check-in date."})
        return attrs


class PaymentHandleSerializer(serializers.Serializer):
    """Payment authorization handle returned to the client."""

    ref = serializers.CharField()
    client_secret = serializers.CharField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    currency = serializers.CharField()


class BookingSerializer(serializers.ModelSerializer):
    """Booking details as returned by the API."""

    guest_id = serializers.ReadOnlyField(source="guest.id")
    property_id = serializers.ReadOnlyField(source="property.id")
    property_title = serializers.ReadOnlyField(source="property.title")
    nights = serializers.ReadOnlyField()

    class Meta:
        model = Booking
        fields = [
            "id",
            "booking_code",
            "guest_id",
            "property_id",
            "property_title",
            "check_in",
            "check_out",
            "nights",
            "guests",
            "status",
            "payment_status",
            "nightly_rate",
            "total_amount",
            "currency",
            "external_sync_ref",
            "confirmed_at",
            "cancelled_at",
            "cancellation_reason",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields
