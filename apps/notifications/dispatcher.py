"""
Notification Dispatcher

Fans one booking event out to the in-app, email and realtime channels.
Each channel fails on its own: an SMTP outage still leaves the in-app
record, and nothing here can undo the booking change that caused it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from .models import Notification
from .realtime import ConnectionRegistry, connection_registry
from .services import build_booking_message, send_booking_email

if TYPE_CHECKING:  # pragma: no cover
    from apps.bookings.models import Booking

logger = logging.getLogger(__name__)

REALTIME_EVENT = "notification"


@dataclass
class DispatchResult:
    notification: Optional[Notification] = None
    emailed: bool = False
    pushed: int = 0
    errors: dict = field(default_factory=dict)


class NotificationDispatcher:
    def __init__(self, registry: ConnectionRegistry | None = None):
        self.registry = registry or connection_registry

    def dispatch(self, event_kind: str, booking: "Booking") -> DispatchResult:
        content = build_booking_message(event_kind, booking)
        result = DispatchResult()

        try:
            result.notification = Notification.objects.create(
                user_id=booking.guest_id,
                booking=booking,
                kind=content.kind,
                title=content.title,
                message=content.message,
                metadata=content.metadata,
            )
            logger.info(f"In-app notification {content.kind} created for booking {booking.booking_code}")
        except Exception as e:
            logger.error(f"Failed to create in-app notification for booking {booking.booking_code}: {e}", exc_info=True)
            result.errors["in_app"] = str(e)

        try:
            send_booking_email(booking, content)
            result.emailed = True
        except Exception as e:
            logger.error(f"Failed to email {content.kind} for booking {booking.booking_code}: {e}", exc_info=True)
            result.errors["email"] = str(e)

        payload = {
            "id": result.notification.pk if result.notification else None,
            "kind": content.kind,
            "title": content.title,
            "message": content.message,
            "metadata": content.metadata,
        }
        try:
            result.pushed = self.registry.send_to_user(booking.guest_id, REALTIME_EVENT, payload)
        except Exception as e:
            logger.error(f"Realtime push failed for booking {booking.booking_code}: {e}", exc_info=True)
            result.errors["realtime"] = str(e)

        return result
