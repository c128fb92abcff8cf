"""
Booking Domain Events

Events that represent things that have happened in the booking domain.
These are published after successful transaction commits.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from shared.domain.base import DomainEvent


@dataclass
class BookingCreated(DomainEvent):
    """
    Event: A provisional booking was created and payment authorized

    Triggers:
    - Audit log line (log_booking_created)
    """
    booking_id: int = None
    property_id: int = None
    guest_id: int = None
    check_in: date = None
    check_out: date = None
    total_amount: Decimal = None


@dataclass
class BookingConfirmed(DomainEvent):
    """
    Event: Booking payment verified (PENDING -> CONFIRMED)

    Triggers:
    - Mirror booking to the property-management system
    - Send booking confirmation to guest
    """
    booking_id: int = None
    property_id: int = None
    guest_id: int = None


@dataclass
class BookingCancelled(DomainEvent):
    """
    Event: Booking was cancelled by its guest

    Triggers:
    - Update mirrored booking status in the property-management system
    - Notify guest
    """
    booking_id: int = None
    property_id: int = None
    guest_id: int = None
    old_status: str = ''
    reason: str = ''
