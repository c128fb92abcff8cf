"""Domain services for booking workflows."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Callable, List, Optional

from django.conf import settings  # type: ignore
from django.db import DatabaseError, transaction  # type: ignore
from django.db.models import Q  # type: ignore
from django.db.utils import NotSupportedError  # type: ignore
from django.utils import timezone  # type: ignore

from apps.bookings.domain.exceptions import (
    AvailabilityConflict,
    BookingForbidden,
    BookingNotFound,
    BookingValidationError,
    CancellationWindowViolation,
    InvalidTransition,
    StorageFailure,
)
from apps.bookings.domain.policies import CancellationWindow
from apps.bookings.models import Booking
from apps.properties.models import Property
from shared.domain.value_objects import Money, StayPeriod

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _lock_queryset_if_possible(queryset):
    """Apply select_for_update when inside transaction.atomic()."""

    if not transaction.get_connection().in_atomic_block:
        return queryset

    try:
        return queryset.select_for_update()
    except NotSupportedError:
        return queryset


def lock_property(property_id: int) -> Optional[Property]:
    """
    Take the per-property write lock.

    Every check-then-write on a property's calendar runs after this call
    inside the same transaction, so concurrent creations and confirmations
    for one property are serialized. Returns None when the property row
    does not exist.
    """
    return _lock_queryset_if_possible(Property.objects.filter(pk=property_id)).first()


class AvailabilityOracle:
    """Answers whether a half-open date interval is free on a property."""

    def conflicting(self, property_id: int, check_in: date, check_out: date, exclude_booking_id=None):
        """Active bookings of the property overlapping [check_in, check_out)."""
        qs = Booking.objects.filter(
            property_id=property_id,
            status__in=Booking.ACTIVE_STATUSES,
        ).filter(Q(check_in__lt=check_out) & Q(check_out__gt=check_in))

        if exclude_booking_id is not None:
            qs = qs.exclude(pk=exclude_booking_id)
        return qs

    def is_available(self, property_id: int, check_in: date, check_out: date, exclude_booking_id=None) -> bool:
        return not self.conflicting(
            property_id, check_in, check_out, exclude_booking_id=exclude_booking_id
        ).exists()

    def ensure_available(self, property_id: int, check_in: date, check_out: date, exclude_booking_id=None) -> None:
        overlapping = list(
            self.conflicting(property_id, check_in, check_out, exclude_booking_id)
            .values_list("booking_code", flat=True)[:5]
        )
        if overlapping:
            raise AvailabilityConflict(
                property_id=property_id,
                check_in=check_in,
                check_out=check_out,
                overlapping=",".join(overlapping),
            )


@dataclass
class BookingPage:
    items: List[Booking] = field(default_factory=list)
    page: int = 1
    total_pages: int = 0
    total: int = 0


class BookingLedger:
    """
    Persistence and state machine for bookings.

    pending   -> confirmed  (transition_to_confirmed)
    pending   -> [deleted]  (delete, payment authorization failed)
    pending   -> cancelled  (transition_to_cancelled)
    confirmed -> cancelled  (transition_to_cancelled, outside the window)
    confirmed -> completed  (transition_to_completed)
    """

    def __init__(
        self,
        oracle: AvailabilityOracle | None = None,
        clock: Callable[[], "timezone.datetime"] | None = None,
        cancellation_window: CancellationWindow | None = None,
    ):
        self.oracle = oracle or AvailabilityOracle()
        self.clock = clock or timezone.now
        self.cancellation_window = cancellation_window or CancellationWindow(
            hours=getattr(settings, "BOOKING_CANCELLATION_WINDOW_HOURS", 24)
        )

    # ----- reads -----

    def get(self, booking_id: int, *, lock: bool = False) -> Booking:
        qs = Booking.objects.select_related("property", "guest")
        if lock:
            qs = _lock_queryset_if_possible(Booking.objects.all())
        try:
            return qs.get(pk=booking_id)
        except Booking.DoesNotExist:
            raise BookingNotFound(booking_id=booking_id)
        except DatabaseError as exc:
            raise StorageFailure(f"Could not load booking {booking_id}") from exc

    def list_by_user(self, user_id: int, status: str | None = None, page: int = 1, page_size: int = 10) -> BookingPage:
        if page < 1:
            raise BookingValidationError("Page must be a positive integer", field="page")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise BookingValidationError(
                f"Page size must be between 1 and {MAX_PAGE_SIZE}", field="page_size"
            )
        if status and status not in Booking.Status.values:
            raise BookingValidationError(f"Unknown booking status {status!r}", field="status")

        qs = Booking.objects.filter(guest_id=user_id).select_related("property")
        if status:
            qs = qs.filter(status=status)
        qs = qs.order_by("-created_at", "-id")

        try:
            total = qs.count()
            offset = (page - 1) * page_size
            items = list(qs[offset:offset + page_size])
        except DatabaseError as exc:
            raise StorageFailure(f"Could not list bookings for user {user_id}") from exc

        return BookingPage(
            items=items,
            page=page,
            total_pages=math.ceil(total / page_size) if total else 0,
            total=total,
        )

    # ----- writes -----

    def create(
        self,
        property_id: int,
        user_id: int,
        check_in: date,
        check_out: date,
        guests: int,
        price_per_night: Decimal,
        max_guests: int,
        currency: str | None = None,
    ) -> Booking:
        """
        Validate and persist a pending booking.

        Checks run in order and stop at the first failure: date order,
        check-in not in the past, guest count, availability. The pending
        row itself reserves the interval for other creations.
        """
        if check_in is None or check_out is None:
            raise BookingValidationError("Check-in and check-out dates are required")
        if check_out <= check_in:
            raise BookingValidationError("Check-out date must be after check-in date", field="check_out")

        today = timezone.localdate(self.clock())
        if check_in < today:
            raise BookingValidationError("Check-in date cannot be in the past", field="check_in")

        if guests < 1:
            raise BookingValidationError("At least one guest is required", field="guests")
        if guests > max_guests:
            raise BookingValidationError(
                f"Guests count ({guests}) exceeds property capacity ({max_guests})",
                field="guests",
            )

        period = StayPeriod(check_in, check_out)
        nightly = Money(price_per_night, currency or settings.BOOKING_DEFAULT_CURRENCY)
        total = nightly * period.nights

        try:
            with transaction.atomic():
                lock_property(property_id)
                self.oracle.ensure_available(property_id, check_in, check_out)

                booking = Booking.objects.create(
                    property_id=property_id,
                    guest_id=user_id,
                    check_in=check_in,
                    check_out=check_out,
                    guests=guests,
                    nightly_rate=nightly.amount,
                    total_amount=total.amount,
                    currency=total.currency,
                    status=Booking.Status.PENDING,
                    payment_status=Booking.PaymentStatus.PENDING,
                )
        except DatabaseError as exc:
            raise StorageFailure(f"Could not create booking for property {property_id}") from exc

        logger.info(
            f"Booking {booking.booking_code} created for property {property_id}, "
            f"{period} ({period.nights} nights, {total})"
        )
        return booking

    def delete(self, booking_id: int) -> None:
        try:
            deleted, _ = Booking.objects.filter(pk=booking_id).delete()
        except DatabaseError as exc:
            raise StorageFailure(f"Could not delete booking {booking_id}") from exc
        if deleted:
            logger.info(f"Booking {booking_id} deleted")

    def attach_payment_reference(self, booking_id: int, ref: str) -> Booking:
        try:
            updated = Booking.objects.filter(pk=booking_id).update(
                external_payment_ref=ref,
                updated_at=timezone.now(),
            )
        except DatabaseError as exc:
            raise StorageFailure(f"Could not store payment reference for booking {booking_id}") from exc
        if not updated:
            raise BookingNotFound(booking_id=booking_id)
        return self.get(booking_id)

    def record_sync_reference(self, booking_id: int, ref: str) -> None:
        try:
            updated = Booking.objects.filter(pk=booking_id).update(external_sync_ref=ref)
        except DatabaseError as exc:
            raise StorageFailure(f"Could not store sync reference for booking {booking_id}") from exc
        if not updated:
            raise BookingNotFound(booking_id=booking_id)

    def mark_payment_failed(self, booking_id: int) -> None:
        """Update the cached payment projection after the provider reported a failure."""
        try:
            Booking.objects.filter(
                pk=booking_id, status=Booking.Status.PENDING
            ).update(payment_status=Booking.PaymentStatus.FAILED)
        except DatabaseError as exc:
            raise StorageFailure(f"Could not update payment status for booking {booking_id}") from exc

    def transition_to_confirmed(self, booking_id: int) -> Booking:
        with transaction.atomic():
            booking = self.get(booking_id, lock=True)

            if booking.status == Booking.Status.CONFIRMED:
                return booking
            if booking.status != Booking.Status.PENDING:
                raise InvalidTransition(
                    f"Cannot confirm a {booking.status} booking",
                    booking_id=booking_id,
                )

            booking.status = Booking.Status.CONFIRMED
            booking.payment_status = Booking.PaymentStatus.PAID
            booking.confirmed_at = self.clock()
            self._save(booking, ["status", "payment_status", "confirmed_at", "updated_at"])

        logger.info(f"Booking {booking.booking_code} confirmed")
        return booking

    def transition_to_cancelled(self, booking_id: int, acting_user_id: int, reason: str = "") -> Booking:
        with transaction.atomic():
            booking = self.get(booking_id, lock=True)

            if booking.guest_id != acting_user_id:
                raise BookingForbidden(booking_id=booking_id)
            if booking.is_terminal:
                raise InvalidTransition(
                    f"Cannot cancel a {booking.status} booking",
                    booking_id=booking_id,
                )

            if booking.status == Booking.Status.CONFIRMED:
                now = self.clock()
                if not self.cancellation_window.allows(booking.check_in, now):
                    raise CancellationWindowViolation(
                        f"Cancellation not allowed within {self.cancellation_window.hours} hours of check-in",
                        hours_until_check_in=self.cancellation_window.hours_until(booking.check_in, now),
                    )

            booking.status = Booking.Status.CANCELLED
            booking.cancelled_at = self.clock()
            booking.cancellation_reason = (reason or "")[:255]
            self._save(booking, ["status", "cancelled_at", "cancellation_reason", "updated_at"])

        logger.info(f"Booking {booking.booking_code} cancelled by user {acting_user_id}")
        return booking

    def transition_to_completed(self, booking_id: int) -> Booking:
        with transaction.atomic():
            booking = self.get(booking_id, lock=True)
            if booking.status == Booking.Status.COMPLETED:
                return booking
            if booking.status != Booking.Status.CONFIRMED:
                raise InvalidTransition(
                    f"Cannot complete a {booking.status} booking",
                    booking_id=booking_id,
                )
            booking.status = Booking.Status.COMPLETED
            self._save(booking, ["status", "updated_at"])

        logger.info(f"Booking {booking.booking_code} completed")
        return booking

    @staticmethod
    def _save(booking: Booking, update_fields) -> None:
        try:
            booking.save(update_fields=update_fields)
        except DatabaseError as exc:
            raise StorageFailure(f"Could not save booking {booking.pk}") from exc
