"""Serializers for notifications."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from .models import Notification


class NotificationSerializer(serializers.ModelSerializer):
    """Serializer for notifications."""

    booking_id = serializers.ReadOnlyField(source='booking.id')

    class Meta:
        model = Notification
        fields = ['id', 'kind', 'booking_id', 'title', 'message', 'metadata', 'is_read', 'created_at']
        read_only_fields = fields
