"""
Booking Command Handlers

These are the use cases for the booking domain.
They orchestrate the ledger, the payment coordinator and event
publication.

Commands:
- CreateBookingCommand: Reserve dates and authorize payment
- ConfirmBookingCommand: Verify payment and confirm (idempotent)
- CancelBookingCommand: Cancel a booking on behalf of its guest
- RefreshPaymentCommand: Hand out a usable payment handle for a pending booking

Every handler returns a BookingOutcome. Validation, conflict, ownership and
payment failures come back in ``outcome.failure``; StorageFailure is raised.
"""

from dataclasses import dataclass
from datetime import date
from typing import Optional
import logging

from django.conf import settings  # type: ignore

from shared.application.uow import DjangoUnitOfWork
from apps.bookings.domain.events import BookingCancelled, BookingConfirmed, BookingCreated
from apps.bookings.domain.exceptions import (
    AvailabilityLost,
    BookingError,
    BookingForbidden,
    BookingNotFound,
    InvalidTransition,
    PaymentAuthorizationFailed,
    PaymentNotVerified,
    StorageFailure,
)
from apps.bookings.domain.policies import ConfirmationPolicy, ProviderStatus
from apps.bookings.infrastructure.payments import (
    PaymentAuthorization,
    PaymentCoordinator,
    PaymentGatewayError,
    get_payment_coordinator,
)
from apps.bookings.models import Booking
from apps.bookings.services import AvailabilityOracle, BookingLedger, lock_property

logger = logging.getLogger(__name__)


# ===== Commands =====

@dataclass
class CreateBookingCommand:
    """Command to create a new booking"""
    property_id: int
    user_id: int
    check_in: date
    check_out: date
    guests: int = 1


@dataclass
class ConfirmBookingCommand:
    """Command to confirm a booking after payment"""
    booking_id: int
    user_id: int


@dataclass
class CancelBookingCommand:
    """Command to cancel a booking"""
    booking_id: int
    user_id: int
    reason: str = ''


@dataclass
class RefreshPaymentCommand:
    """Command to fetch (or re-create) the payment handle of a pending booking"""
    booking_id: int
    user_id: int


# ===== Outcome =====

@dataclass
class BookingOutcome:
    """Result of a booking command"""
    booking: Optional[Booking] = None
    failure: Optional[BookingError] = None
    payment: Optional[PaymentAuthorization] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def failed(cls, failure: BookingError) -> 'BookingOutcome':
        return cls(failure=failure)


# ===== Command Handlers =====

class BookingCommandHandler:
    """
    Shared wiring for booking handlers

    Collaborators default to the configured ones; tests pass their own.
    """

    def __init__(
        self,
        ledger: Optional[BookingLedger] = None,
        payments: Optional[PaymentCoordinator] = None,
        policy: Optional[ConfirmationPolicy] = None,
        oracle: Optional[AvailabilityOracle] = None,
    ):
        self.oracle = oracle or (ledger.oracle if ledger else AvailabilityOracle())
        self.ledger = ledger or BookingLedger(oracle=self.oracle)
        self.payments = payments or get_payment_coordinator()
        self.policy = policy or ConfirmationPolicy.from_setting(
            getattr(settings, 'BOOKING_CONFIRMATION_POLICY', None)
        )

    def handle(self, command) -> BookingOutcome:
        try:
            return self._handle(command)
        except StorageFailure:
            logger.exception(f"Storage failure while handling {type(command).__name__}")
            raise
        except BookingError as e:
            logger.info(f"{type(command).__name__} rejected: {e.code} ({e.message})")
            return BookingOutcome.failed(e)

    def _handle(self, command) -> BookingOutcome:
        raise NotImplementedError

    def _load_owned(self, booking_id: int, user_id: int) -> Booking:
        booking = self.ledger.get(booking_id)
        if booking.guest_id != user_id:
            raise BookingForbidden(booking_id=booking_id)
        return booking

    def _store_payment_reference(self, booking: Booking, authorization: PaymentAuthorization) -> Booking:
        """
        Attach the authorization to the booking.

        A reference the provider already issued must never be lost: when
        the write fails it is handed to the background attach task.
        """
        try:
            return self.ledger.attach_payment_reference(booking.pk, authorization.ref)
        except StorageFailure:
            logger.error(
                f"Could not store payment reference {authorization.ref} for booking "
                f"{booking.pk}; scheduling background attach",
                exc_info=True,
            )
            from apps.bookings.tasks import attach_payment_reference

            attach_payment_reference.delay(booking.pk, authorization.ref)
            booking.external_payment_ref = authorization.ref
            return booking


class CreateBookingHandler(BookingCommandHandler):
    """
    Handler for CreateBooking command

    1. Property snapshot must exist and be active
    2. Ledger.create validates and reserves the interval (pending row)
    3. Authorize payment for the total amount
    4. On authorization failure delete the provisional booking
    5. Attach the payment reference
    6. Publish BookingCreated after commit
    """

    def _handle(self, command: CreateBookingCommand) -> BookingOutcome:
        from apps.properties.models import Property

        logger.info(
            f"Creating booking for property {command.property_id}, "
            f"guest {command.user_id}, dates {command.check_in} - {command.check_out}"
        )

        property_obj = Property.objects.filter(pk=command.property_id, is_active=True).first()
        if property_obj is None:
            raise BookingNotFound(
                f"Property {command.property_id} not found or not active",
                property_id=command.property_id,
            )

        booking = self.ledger.create(
            property_id=property_obj.pk,
            user_id=command.user_id,
            check_in=command.check_in,
            check_out=command.check_out,
            guests=command.guests,
            price_per_night=property_obj.price_per_night,
            max_guests=property_obj.max_guests,
            currency=property_obj.currency,
        )

        try:
            authorization = self.payments.authorize(
                booking.total_amount,
                booking.currency,
                {
                    'booking_id': booking.pk,
                    'property_id': property_obj.pk,
                    'user_id': command.user_id,
                },
            )
        except Exception as e:
            # The pending row must not outlive a failed authorization
            if isinstance(e, PaymentGatewayError):
                logger.warning(f"Payment authorization failed for booking {booking.booking_code}: {e}")
            else:
                logger.exception(f"Unexpected error authorizing payment for booking {booking.booking_code}")
            self.ledger.delete(booking.pk)
            raise PaymentAuthorizationFailed(booking_code=booking.booking_code) from e

        booking = self._store_payment_reference(booking, authorization)

        with DjangoUnitOfWork() as uow:
            uow.record(BookingCreated(
                aggregate_id=booking.pk,
                booking_id=booking.pk,
                property_id=booking.property_id,
                guest_id=booking.guest_id,
                check_in=booking.check_in,
                check_out=booking.check_out,
                total_amount=booking.total_amount,
            ))

        logger.info(f"Booking created successfully: {booking.booking_code} (ID: {booking.pk})")
        return BookingOutcome(booking=booking, payment=authorization)


class ConfirmBookingHandler(BookingCommandHandler):
    """
    Handler for confirming a booking

    Safe to call repeatedly: an already confirmed booking is returned as is.
    Payment truth always comes from the payment coordinator, never from
    the cached ``payment_status``.
    """

    def _handle(self, command: ConfirmBookingCommand) -> BookingOutcome:
        booking = self._load_owned(command.booking_id, command.user_id)

        if booking.status == Booking.Status.CONFIRMED:
            self._reverify_confirmed(booking)
            return BookingOutcome(booking=booking)

        if booking.is_terminal:
            raise InvalidTransition(
                f"Cannot confirm a {booking.status} booking",
                booking_id=booking.pk,
            )

        self._verify_payment(booking)

        with DjangoUnitOfWork() as uow:
            lock_property(booking.property_id)

            current = self.ledger.get(booking.pk)
            if current.status == Booking.Status.CONFIRMED:
                # Lost a race against a concurrent confirm of the same booking
                return BookingOutcome(booking=current)

            if not self.oracle.is_available(
                booking.property_id, booking.check_in, booking.check_out,
                exclude_booking_id=booking.pk,
            ):
                raise AvailabilityLost(booking_id=booking.pk)

            booking = self.ledger.transition_to_confirmed(booking.pk)
            uow.record(BookingConfirmed(
                aggregate_id=booking.pk,
                booking_id=booking.pk,
                property_id=booking.property_id,
                guest_id=booking.guest_id,
            ))

        return BookingOutcome(booking=booking)

    def _reverify_confirmed(self, booking: Booking) -> None:
        if not self.oracle.is_available(
            booking.property_id, booking.check_in, booking.check_out,
            exclude_booking_id=booking.pk,
        ):
            overlapping = list(
                self.oracle.conflicting(
                    booking.property_id, booking.check_in, booking.check_out,
                    exclude_booking_id=booking.pk,
                ).values_list('pk', flat=True)
            )
            logger.error(
                f"Confirmed booking {booking.booking_code} overlaps active bookings {overlapping}"
            )

    def _verify_payment(self, booking: Booking) -> None:
        if not booking.external_payment_ref:
            raise PaymentNotVerified("Booking has no payment authorization", booking_id=booking.pk)

        try:
            state = self.payments.retrieve_status(booking.external_payment_ref)
        except PaymentGatewayError as e:
            logger.warning(f"Payment lookup failed for booking {booking.booking_code}: {e}")
            raise PaymentNotVerified("Could not verify payment", booking_id=booking.pk) from e

        if not self.policy.accepts(state.status):
            if state.status == ProviderStatus.FAILED:
                self.ledger.mark_payment_failed(booking.pk)
            raise PaymentNotVerified(
                booking_id=booking.pk,
                payment_status=ProviderStatus(state.status).value,
            )


class CancelBookingHandler(BookingCommandHandler):
    """Handler for cancelling a booking. No refund is triggered here."""

    def _handle(self, command: CancelBookingCommand) -> BookingOutcome:
        logger.info(f"Cancelling booking {command.booking_id}, reason: {command.reason}")

        with DjangoUnitOfWork() as uow:
            old_status = self.ledger.get(command.booking_id).status
            booking = self.ledger.transition_to_cancelled(
                command.booking_id, command.user_id, command.reason,
            )
            uow.record(BookingCancelled(
                aggregate_id=booking.pk,
                booking_id=booking.pk,
                property_id=booking.property_id,
                guest_id=booking.guest_id,
                old_status=old_status,
                reason=booking.cancellation_reason,
            ))

        return BookingOutcome(booking=booking)


class RefreshPaymentHandler(BookingCommandHandler):
    """
    Handler returning a payment handle the client can still complete

    The current authorization is reused while the provider keeps it open;
    a missing, expired, cancelled or failed one is replaced by a new
    authorization for the stored total.
    """

    def _handle(self, command: RefreshPaymentCommand) -> BookingOutcome:
        booking = self._load_owned(command.booking_id, command.user_id)

        if booking.status != Booking.Status.PENDING:
            raise InvalidTransition(
                f"Payment can only be refreshed for pending bookings, not {booking.status}",
                booking_id=booking.pk,
            )

        if booking.external_payment_ref:
            try:
                state = self.payments.retrieve_status(booking.external_payment_ref)
            except PaymentGatewayError as e:
                raise PaymentAuthorizationFailed(
                    "Could not retrieve the current payment", booking_id=booking.pk,
                ) from e

            if state.is_reusable:
                return BookingOutcome(
                    booking=booking,
                    payment=PaymentAuthorization(
                        ref=state.ref,
                        client_secret=state.client_secret,
                        amount=booking.total_amount,
                        currency=booking.currency,
                    ),
                )
            logger.info(
                f"Payment {booking.external_payment_ref} for booking {booking.booking_code} "
                f"is {ProviderStatus(state.status).value}; authorizing again"
            )

        try:
            authorization = self.payments.authorize(
                booking.total_amount,
                booking.currency,
                {
                    'booking_id': booking.pk,
                    'property_id': booking.property_id,
                    'user_id': booking.guest_id,
                },
            )
        except PaymentGatewayError as e:
            raise PaymentAuthorizationFailed(booking_id=booking.pk) from e

        booking = self._store_payment_reference(booking, authorization)
        return BookingOutcome(booking=booking, payment=authorization)
