"""
Booking Policies

Rules that vary by deployment rather than by booking:
- ConfirmationPolicy: which payment provider statuses count as "funds committed"
- CancellationWindow: how close to check-in a confirmed booking may be cancelled
"""

from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum

from django.utils import timezone  # type: ignore


class ProviderStatus(str, Enum):
    """Payment provider statuses, normalised across vendors"""
    SUCCEEDED = 'succeeded'
    PROCESSING = 'processing'
    REQUIRES_CAPTURE = 'requires_capture'
    REQUIRES_PAYMENT = 'requires_payment'
    FAILED = 'failed'
    EXPIRED = 'expired'
    CANCELLED = 'cancelled'


class ConfirmationPolicy(Enum):
    """
    Confirmation policy passed explicitly to the orchestrator

    STRICT is the production policy: only money that is actually
    committed confirms a booking. RELAXED is meant for sandboxes and
    local development, where test cards often stop at "processing" or
    "requires_capture".
    """
    STRICT = 'strict'
    RELAXED = 'relaxed'

    @property
    def accepted_states(self) -> frozenset:
        if self is ConfirmationPolicy.RELAXED:
            return frozenset({
                ProviderStatus.SUCCEEDED,
                ProviderStatus.PROCESSING,
                ProviderStatus.REQUIRES_CAPTURE,
            })
        return frozenset({ProviderStatus.SUCCEEDED})

    def accepts(self, state: "ProviderStatus | str") -> bool:
        return state in self.accepted_states

    @classmethod
    def from_setting(cls, value: str | None) -> 'ConfirmationPolicy':
        if not value:
            return cls.STRICT
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown BOOKING_CONFIRMATION_POLICY {value!r}, "
                f"expected one of {[p.value for p in cls]}"
            )


@dataclass(frozen=True)
class CancellationWindow:
    """
    Confirmed bookings can only be cancelled when check-in is at least
    ``hours`` away. Check-in is taken as midnight of the check-in date in
    the active time zone; partial hours are truncated.
    """
    hours: int = 24

    def hours_until(self, check_in: date, now: datetime | None = None) -> int:
        now = now or timezone.now()
        starts_at = timezone.make_aware(datetime.combine(check_in, time.min))
        return int((starts_at - now).total_seconds() // 3600)

    def allows(self, check_in: date, now: datetime | None = None) -> bool:
        return self.hours_until(check_in, now) >= self.hours
