"""Celery tasks for notifications."""

from __future__ import annotations

import logging

from celery import shared_task  # type: ignore

from .dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)


@shared_task(name="notifications.dispatch_booking_event")
def dispatch_booking_event(event_kind: str, booking_id: int) -> bool:
    """Deliver a booking lifecycle notification to the guest on every channel."""
    from apps.bookings.models import Booking

    try:
        booking = Booking.objects.select_related("guest", "property").get(pk=booking_id)
    except Booking.DoesNotExist:
        logger.error(f"Booking {booking_id} not found for {event_kind} notification")
        return False

    result = NotificationDispatcher().dispatch(event_kind, booking)
    if result.errors:
        logger.warning(
            f"[NOTIFICATION] {event_kind} for booking {booking.booking_code} "
            f"partially delivered: {sorted(result.errors)}"
        )
        return False

    logger.info(f"[NOTIFICATION] {event_kind} delivered for booking {booking.booking_code}")
    return True
