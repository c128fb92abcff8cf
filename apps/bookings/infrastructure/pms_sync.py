"""
External Sync Gateway

Mirrors confirmed bookings into the property-management system (PMS).
Mirroring is best-effort: a booking is fully valid without a sync
reference, and the PMS availability answer is advisory only.
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date

import requests
from django.conf import settings  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.module_loading import import_string  # type: ignore

from apps.bookings.domain.exceptions import ExternalSyncFailed

logger = logging.getLogger(__name__)


class ExternalSyncGateway(ABC):
    """PMS capability consumed by the background sync tasks"""

    @abstractmethod
    def mirror_booking(self, booking) -> str:
        """Create the booking in the PMS and return its reference."""

    @abstractmethod
    def check_availability(self, listing_id: str, check_in: date, check_out: date) -> bool:
        """Whether the PMS considers the listing free; advisory only."""

    @abstractmethod
    def update_booking_status(self, ref: str, status: str) -> None:
        """Propagate a local status change to a mirrored booking."""


class GuestySyncGateway(ExternalSyncGateway):
    """Guesty open API over HTTP"""

    def __init__(self, api_token=None, base_url=None, timeout=None, session=None):
        self.api_token = api_token if api_token is not None else settings.GUESTY_API_TOKEN
        self.base_url = (base_url or settings.GUESTY_API_BASE_URL).rstrip("/") + "/"
        self.timeout = timeout or getattr(settings, "GUESTY_TIMEOUT_SECONDS", 15)
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, **kwargs) -> dict:
        headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Accept": "application/json",
        }
        try:
            response = self.session.request(
                method,
                f"{self.base_url}{path}",
                headers=headers,
                timeout=self.timeout,
                **kwargs,
            )
            response.raise_for_status()
            return response.json() if response.content else {}
        except requests.exceptions.RequestException as e:
            raise ExternalSyncFailed(f"Guesty {method} {path} failed: {e}") from e
        except ValueError as e:
            raise ExternalSyncFailed(f"Guesty returned a malformed response: {e}") from e

    def mirror_booking(self, booking):
        guest = booking.guest
        payload = {
            "listingId": booking.property.listing_ref,
            "checkInDateLocalized": booking.check_in.isoformat(),
            "checkOutDateLocalized": booking.check_out.isoformat(),
            "status": "confirmed",
            "guestsCount": booking.guests,
            "money": {
                "fareAccommodation": str(booking.total_amount),
                "currency": booking.currency,
            },
            "guest": {
                "fullName": guest.display_name,
                "email": guest.email,
            },
            "source": "direct",
            "externalId": booking.booking_code,
        }
        result = self._request("POST", "reservations", json=payload)
        ref = result.get("_id") or result.get("id")
        if not ref:
            raise ExternalSyncFailed(f"Guesty did not return a reservation id for {booking.booking_code}")
        return ref

    def check_availability(self, listing_id, check_in, check_out):
        result = self._request(
            "GET",
            f"availability-pricing/api/calendar/listings/{listing_id}",
            params={"startDate": check_in.isoformat(), "endDate": check_out.isoformat()},
        )
        days = (result.get("data") or {}).get("days") or []
        # The calendar returns one entry per night, check-out day excluded
        return all(day.get("status") == "available" for day in days if day.get("date") != check_out.isoformat())

    def update_booking_status(self, ref, status):
        self._request("PUT", f"reservations/{ref}", json={"status": status})


@dataclass
class MirroredBooking:
    ref: str
    listing_id: str
    booking_code: str
    check_in: date
    check_out: date
    status: str
    updated_at: object = None


class InMemorySyncGateway(ExternalSyncGateway):
    """
    Process-local PMS double.

    Keeps mirrored bookings in a dict keyed by reference. ``fail_mirror``
    makes ``mirror_booking`` raise, ``blocked`` marks listings the PMS
    reports as unavailable.
    """

    def __init__(self):
        self.fail_mirror = False
        self.blocked = set()
        self._bookings = {}
        self._lock = threading.Lock()

    def mirror_booking(self, booking):
        if self.fail_mirror:
            raise ExternalSyncFailed(f"PMS rejected booking {booking.booking_code}")

        ref = f"pms_{uuid.uuid4().hex[:12]}"
        with self._lock:
            self._bookings[ref] = MirroredBooking(
                ref=ref,
                listing_id=booking.property.listing_ref,
                booking_code=booking.booking_code,
                check_in=booking.check_in,
                check_out=booking.check_out,
                status="confirmed",
                updated_at=timezone.now(),
            )
        return ref

    def check_availability(self, listing_id, check_in, check_out):
        if listing_id in self.blocked:
            return False
        with self._lock:
            return not any(
                mirrored.listing_id == listing_id
                and mirrored.status == "confirmed"
                and mirrored.check_in < check_out
                and mirrored.check_out > check_in
                for mirrored in self._bookings.values()
            )

    def update_booking_status(self, ref, status):
        with self._lock:
            mirrored = self._bookings.get(ref)
            if mirrored is None:
                raise ExternalSyncFailed(f"PMS booking {ref} not found")
            mirrored.status = status
            mirrored.updated_at = timezone.now()

    def get(self, ref: str):
        with self._lock:
            return self._bookings.get(ref)

    def reset(self) -> None:
        with self._lock:
            self._bookings.clear()
        self.blocked.clear()
        self.fail_mirror = False


SYNC_BACKENDS = {
    "guesty": "apps.bookings.infrastructure.pms_sync.GuestySyncGateway",
    "memory": "apps.bookings.infrastructure.pms_sync.InMemorySyncGateway",
}

_gateway = None
_gateway_lock = threading.Lock()


def get_sync_gateway() -> ExternalSyncGateway:
    """Process-wide gateway selected by the PMS_SYNC_BACKEND setting."""
    global _gateway
    with _gateway_lock:
        if _gateway is None:
            backend = getattr(settings, "PMS_SYNC_BACKEND", "guesty")
            _gateway = import_string(SYNC_BACKENDS.get(backend, backend))()
        return _gateway


def reset_sync_gateway() -> None:
    global _gateway
    with _gateway_lock:
        _gateway = None
