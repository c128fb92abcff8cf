"""Notification services: message texts and email delivery."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from django.conf import settings  # type: ignore
from django.core.mail import send_mail  # type: ignore
from django.utils.html import strip_tags  # type: ignore

from .models import Notification

if TYPE_CHECKING:  # pragma: no cover
    from apps.bookings.models import Booking

logger = logging.getLogger(__name__)


def format_date(value) -> str:
    if not value:
        return "Not specified"
    return value.strftime("%B %d, %Y").replace(" 0", " ")


@dataclass(frozen=True)
class BookingMessage:
    kind: str
    title: str
    message: str
    metadata: dict = field(default_factory=dict)


def build_booking_message(kind: str, booking: "Booking") -> BookingMessage:
    """Title, body and metadata for a booking lifecycle notification."""
    property_title = booking.property.title
    check_in = format_date(booking.check_in)
    check_out = format_date(booking.check_out)

    if kind == Notification.Kind.BOOKING_CONFIRMED:
        title = "Booking Confirmed!"
        message = f'Your booking for "{property_title}" from {check_in} to {check_out} has been confirmed.'
    elif kind == Notification.Kind.BOOKING_CANCELLED:
        title = "Booking Cancelled"
        message = f'Your booking for "{property_title}" from {check_in} to {check_out} has been cancelled.'
    else:
        raise ValueError(f"Unknown notification kind {kind!r}")

    return BookingMessage(
        kind=kind,
        title=title,
        message=message,
        metadata={
            "booking_id": booking.pk,
            "booking_code": booking.booking_code,
            "property_title": property_title,
            "check_in": booking.check_in.isoformat(),
            "check_out": booking.check_out.isoformat(),
            "guests": booking.guests,
            "total_amount": str(booking.total_amount),
            "currency": booking.currency,
        },
    )


# ============================================================================
# EMAIL NOTIFICATIONS
# ============================================================================

def send_email_notification(
    recipient_email: str,
    subject: str,
    message: str,
    *,
    html_message: str | None = None,
) -> None:
    """
    Send one email through Django's mail backend.

    Raises whatever the backend raises; callers decide whether a failed
    email matters.
    """
    text_message = strip_tags(html_message) if html_message else message
    send_mail(
        subject=subject,
        message=text_message,
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[recipient_email],
        html_message=html_message,
        fail_silently=False,
    )
    logger.info(f"Email sent successfully to {recipient_email}: {subject}")


def send_booking_email(booking: "Booking", content: BookingMessage) -> None:
    guest = booking.guest
    meta = content.metadata
    html_message = f"""
    <html>
    <body>
        <h2>Hello, {guest.display_name}!</h2>
        <p>{content.message}</p>

        <h3>Booking details:</h3>
        <ul>
            <li><strong>Booking code:</strong> {meta['booking_code']}</li>
            <li><strong>Property:</strong> {meta['property_title']}</li>
            <li><strong>Check-in:</strong> {format_date(booking.check_in)}</li>
            <li><strong>Check-out:</strong> {format_date(booking.check_out)}</li>
            <li><strong>Guests:</strong> {meta['guests']}</li>
            <li><strong>Total:</strong> {meta['total_amount']} {meta['currency']}</li>
        </ul>
    </body>
    </html>
    """
    send_email_notification(
        recipient_email=guest.email,
        subject=f"{content.title} #{booking.booking_code}",
        message=content.message,
        html_message=html_message,
    )
