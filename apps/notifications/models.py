"""Notification model.

Defines the in-app notification delivered to users about their bookings.
Notifications are created by the dispatcher after booking events and
consumed by recipients. Each notification can be marked as read.
"""

from __future__ import annotations

from django.db import models  # type: ignore


class Notification(models.Model):
    """A message sent to a user about some event."""

    class Kind(models.TextChoices):
        BOOKING_CONFIRMED = 'booking_confirmed', 'Booking confirmed'
        BOOKING_CANCELLED = 'booking_cancelled', 'Booking cancelled'

    user = models.ForeignKey(
        'users.CustomUser', on_delete=models.CASCADE, related_name='notifications'
    )
    booking = models.ForeignKey(
        'bookings.Booking',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='notifications',
    )
    kind = models.CharField(max_length=32, choices=Kind.choices)
    title = models.CharField(max_length=255)
    message = models.TextField()
    metadata = models.JSONField(default=dict, blank=True)
    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['user', 'is_read'], name='notification_user_unread_idx'),
        ]

    def __str__(self) -> str:
        return f"Notification to {self.user_id}: {self.title}"
