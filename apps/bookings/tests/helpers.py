"""Shared fixtures for booking tests."""

from __future__ import annotations

from datetime import date, datetime, timezone as dt_timezone
from decimal import Decimal

from apps.bookings.models import Booking
from apps.properties.models import Property
from apps.users.models import User

# Fixed "now" for deterministic date rules: well before the June 2025 stays
FROZEN_NOW = datetime(2025, 5, 1, 12, 0, tzinfo=dt_timezone.utc)


def frozen_clock(now: datetime = FROZEN_NOW):
    return lambda: now


def make_user(email: str, name: str = "") -> User:
    return User.objects.create_user(email=email, password="StrongPass123", username=name)


def make_property(owner: User, **overrides) -> Property:
    fields = {
        "title": "Sea view apartment",
        "city": "Almaty",
        "price_per_night": Decimal("100.00"),
        "currency": "USD",
        "max_guests": 4,
    }
    fields.update(overrides)
    return Property.objects.create(owner=owner, **fields)


def make_booking(guest: User, property_obj: Property, check_in: date, check_out: date, **overrides) -> Booking:
    """Insert a booking row directly, bypassing the ledger rules."""
    nights = (check_out - check_in).days
    status = overrides.pop("status", Booking.Status.PENDING)
    fields = {
        "guests": 1,
        "nightly_rate": property_obj.price_per_night,
        "total_amount": property_obj.price_per_night * nights,
        "currency": property_obj.currency,
        "status": status,
        "payment_status": (
            Booking.PaymentStatus.PAID if status in (Booking.Status.CONFIRMED, Booking.Status.COMPLETED)
            else Booking.PaymentStatus.PENDING
        ),
    }
    fields.update(overrides)
    return Booking.objects.create(
        guest=guest,
        property=property_obj,
        check_in=check_in,
        check_out=check_out,
        **fields,
    )
