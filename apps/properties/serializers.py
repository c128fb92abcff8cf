"""Serializers for the properties domain."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from .models import Property


class PropertySerializer(serializers.ModelSerializer):
    owner_id = serializers.ReadOnlyField(source="owner.id")

    class Meta:
        model = Property
        fields = [
            "id",
            "owner_id",
            "title",
            "description",
            "address_line",
            "city",
            "price_per_night",
            "currency",
            "max_guests",
            "is_active",
            "created_at",
        ]
        read_only_fields = fields


class AvailabilitySerializer(serializers.Serializer):
    property_id = serializers.IntegerField()
    check_in = serializers.DateField()
    check_out = serializers.DateField()
    nights = serializers.IntegerField()
    available = serializers.BooleanField()
