"""Tests for the booking lifecycle command handlers."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from unittest import mock

from django.core import mail
from django.test import TestCase

from apps.bookings.application.command_handlers import (
    CancelBookingCommand,
    CancelBookingHandler,
    ConfirmBookingCommand,
    ConfirmBookingHandler,
    CreateBookingCommand,
    CreateBookingHandler,
    RefreshPaymentCommand,
    RefreshPaymentHandler,
)
from apps.bookings.domain.exceptions import (
    AvailabilityConflict,
    AvailabilityLost,
    BookingForbidden,
    BookingNotFound,
    BookingValidationError,
    InvalidTransition,
    PaymentAuthorizationFailed,
    PaymentNotVerified,
    StorageFailure,
)
from apps.bookings.domain.events import BookingCreated
from apps.bookings.domain.policies import ConfirmationPolicy, ProviderStatus
from apps.bookings.infrastructure.payments import (
    KaspiPaymentCoordinator,
    get_payment_coordinator,
    reset_payment_coordinator,
)
from apps.bookings.infrastructure.pms_sync import get_sync_gateway, reset_sync_gateway
from apps.bookings.models import Booking
from apps.bookings.services import BookingLedger, lock_property
from apps.notifications.models import Notification
from shared.application.message_bus import message_bus

from .helpers import frozen_clock, make_booking, make_property, make_user


class OrchestratorTestCase(TestCase):
    def setUp(self) -> None:
        reset_payment_coordinator()
        reset_sync_gateway()
        self.payments = get_payment_coordinator()
        self.pms = get_sync_gateway()

        self.owner = make_user("owner-orchestrator@example.com")
        self.guest = make_user("guest-orchestrator@example.com", "Aigerim")
        self.stranger = make_user("stranger-orchestrator@example.com")
        self.property = make_property(self.owner)
        self.ledger = BookingLedger(clock=frozen_clock())

    def handler(self, cls, **kwargs):
        kwargs.setdefault("ledger", self.ledger)
        return cls(**kwargs)

    def create_booking(self, check_in=date(2025, 6, 1), check_out=date(2025, 6, 4), guests=2, user=None):
        outcome = self.handler(CreateBookingHandler).handle(
            CreateBookingCommand(
                property_id=self.property.pk,
                user_id=(user or self.guest).pk,
                check_in=check_in,
                check_out=check_out,
                guests=guests,
            )
        )
        return outcome

    def confirm(self, booking, user=None, **kwargs):
        return self.handler(ConfirmBookingHandler, **kwargs).handle(
            ConfirmBookingCommand(booking_id=booking.pk, user_id=(user or self.guest).pk)
        )


class CreateBookingTests(OrchestratorTestCase):
    def test_create_authorizes_and_attaches_reference(self) -> None:
        outcome = self.create_booking()

        self.assertTrue(outcome.ok)
        booking = Booking.objects.get(pk=outcome.booking.pk)
        self.assertEqual(booking.status, Booking.Status.PENDING)
        self.assertEqual(booking.total_amount, Decimal("300.00"))
        self.assertEqual(booking.external_payment_ref, outcome.payment.ref)
        self.assertEqual(outcome.payment.amount, Decimal("300.00"))
        self.assertTrue(outcome.payment.client_secret)

    def test_authorization_failure_removes_booking(self) -> None:
        self.payments.fail_authorize = True

        outcome = self.create_booking()

        self.assertFalse(outcome.ok)
        self.assertIsInstance(outcome.failure, PaymentAuthorizationFailed)
        self.assertEqual(outcome.failure.http_status, 502)
        self.assertFalse(Booking.objects.exists())

        # Dates are free again
        self.payments.fail_authorize = False
        self.assertTrue(self.create_booking().ok)

    def test_validation_failure_comes_back_as_outcome(self) -> None:
        outcome = self.create_booking(guests=10)

        self.assertIsInstance(outcome.failure, BookingValidationError)
        self.assertEqual(outcome.failure.field, "guests")
        self.assertEqual(self.payments.authorizations(), [])

    def test_conflict_does_not_authorize(self) -> None:
        make_booking(
            self.guest, self.property, date(2025, 6, 3), date(2025, 6, 6),
            status=Booking.Status.CONFIRMED,
        )

        outcome = self.create_booking()

        self.assertIsInstance(outcome.failure, AvailabilityConflict)
        self.assertEqual(self.payments.authorizations(), [])

    def test_inactive_property_is_not_found(self) -> None:
        self.property.is_active = False
        self.property.save()

        outcome = self.create_booking()
        self.assertIsInstance(outcome.failure, BookingNotFound)

    def test_storage_failure_on_attach_schedules_background_attach(self) -> None:
        failing = mock.patch.object(
            self.ledger, "attach_payment_reference", side_effect=StorageFailure("db down")
        )
        with failing, mock.patch("apps.bookings.tasks.attach_payment_reference.delay") as delay:
            outcome = self.create_booking()

        self.assertTrue(outcome.ok)
        delay.assert_called_once_with(outcome.booking.pk, outcome.payment.ref)
        self.assertEqual(outcome.booking.external_payment_ref, outcome.payment.ref)

    def test_storage_failure_on_create_is_raised(self) -> None:
        with mock.patch.object(self.ledger, "create", side_effect=StorageFailure("db down")):
            with self.assertRaises(StorageFailure):
                self.create_booking()

    def test_kaspi_success_without_payment_id_removes_booking(self) -> None:
        session = mock.Mock()
        session.post.return_value.json.return_value = {"success": True}
        session.post.return_value.raise_for_status.return_value = None
        kaspi = KaspiPaymentCoordinator(
            api_key="key", merchant_id="merchant-1", secret_key="s3cret",
            base_url="https://kaspi.test/v2", timeout=5, session=session,
        )

        outcome = self.handler(CreateBookingHandler, payments=kaspi).handle(
            CreateBookingCommand(
                property_id=self.property.pk,
                user_id=self.guest.pk,
                check_in=date(2025, 6, 1),
                check_out=date(2025, 6, 4),
                guests=2,
            )
        )

        self.assertIsInstance(outcome.failure, PaymentAuthorizationFailed)
        self.assertFalse(Booking.objects.exists())

    def test_unexpected_authorization_error_removes_booking(self) -> None:
        with mock.patch.object(self.payments, "authorize", side_effect=KeyError("payment_id")):
            outcome = self.create_booking()

        self.assertIsInstance(outcome.failure, PaymentAuthorizationFailed)
        self.assertFalse(Booking.objects.exists())
        self.assertTrue(self.create_booking().ok)

    def test_property_is_locked_before_overlap_check(self) -> None:
        order = mock.Mock()
        oracle = self.ledger.oracle
        with mock.patch("apps.bookings.services.lock_property", wraps=lock_property) as lock, \
                mock.patch.object(oracle, "ensure_available", wraps=oracle.ensure_available) as check:
            order.attach_mock(lock, "lock")
            order.attach_mock(check, "check")
            outcome = self.create_booking()

        self.assertTrue(outcome.ok)
        lock.assert_called_once_with(self.property.pk)
        self.assertEqual([name for name, _, _ in order.mock_calls], ["lock", "check"])

    def test_created_event_is_logged_after_commit(self) -> None:
        self.assertTrue(message_bus.handlers_for(BookingCreated))

        with self.assertLogs("apps.bookings.application.event_handlers", "INFO") as logs:
            with self.captureOnCommitCallbacks(execute=True):
                outcome = self.create_booking()

        self.assertTrue(outcome.ok)
        self.assertIn(f"Booking {outcome.booking.pk} reserved property {self.property.pk}", logs.output[0])


class ConfirmBookingTests(OrchestratorTestCase):
    def setUp(self) -> None:
        super().setUp()
        created = self.create_booking()
        self.booking = created.booking
        self.payment_ref = created.payment.ref

    def test_confirm_after_successful_payment(self) -> None:
        self.payments.set_status(self.payment_ref, ProviderStatus.SUCCEEDED)

        outcome = self.confirm(self.booking)

        self.assertTrue(outcome.ok)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.Status.CONFIRMED)
        self.assertEqual(self.booking.payment_status, Booking.PaymentStatus.PAID)

    def test_confirm_twice_is_idempotent(self) -> None:
        self.payments.set_status(self.payment_ref, ProviderStatus.SUCCEEDED)
        first = self.confirm(self.booking)
        confirmed_at = Booking.objects.get(pk=self.booking.pk).confirmed_at

        second = self.confirm(self.booking)

        self.assertTrue(first.ok)
        self.assertTrue(second.ok)
        self.assertEqual(second.booking.status, Booking.Status.CONFIRMED)
        self.assertEqual(Booking.objects.get(pk=self.booking.pk).confirmed_at, confirmed_at)

    def test_unpaid_booking_is_not_confirmed(self) -> None:
        outcome = self.confirm(self.booking)

        self.assertIsInstance(outcome.failure, PaymentNotVerified)
        self.assertEqual(outcome.failure.http_status, 402)
        self.assertEqual(Booking.objects.get(pk=self.booking.pk).status, Booking.Status.PENDING)

    def test_strict_policy_rejects_processing_payment(self) -> None:
        self.payments.set_status(self.payment_ref, ProviderStatus.PROCESSING)

        outcome = self.confirm(self.booking, policy=ConfirmationPolicy.STRICT)

        self.assertIsInstance(outcome.failure, PaymentNotVerified)
        self.assertEqual(outcome.failure.details["payment_status"], "processing")

    def test_relaxed_policy_accepts_processing_payment(self) -> None:
        self.payments.set_status(self.payment_ref, ProviderStatus.PROCESSING)

        outcome = self.confirm(self.booking, policy=ConfirmationPolicy.RELAXED)

        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.booking.status, Booking.Status.CONFIRMED)

    def test_failed_payment_updates_cached_status(self) -> None:
        self.payments.set_status(self.payment_ref, ProviderStatus.FAILED)

        outcome = self.confirm(self.booking)

        self.assertIsInstance(outcome.failure, PaymentNotVerified)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.Status.PENDING)
        self.assertEqual(self.booking.payment_status, Booking.PaymentStatus.FAILED)

    def test_cached_paid_status_is_not_trusted(self) -> None:
        Booking.objects.filter(pk=self.booking.pk).update(payment_status=Booking.PaymentStatus.PAID)

        outcome = self.confirm(self.booking)
        self.assertIsInstance(outcome.failure, PaymentNotVerified)

    def test_provider_outage_is_not_verified(self) -> None:
        self.payments.fail_retrieve = True

        outcome = self.confirm(self.booking)
        self.assertIsInstance(outcome.failure, PaymentNotVerified)

    def test_booking_without_payment_reference(self) -> None:
        Booking.objects.filter(pk=self.booking.pk).update(external_payment_ref="")

        outcome = self.confirm(self.booking)
        self.assertIsInstance(outcome.failure, PaymentNotVerified)

    def test_only_owner_can_confirm(self) -> None:
        self.payments.set_status(self.payment_ref, ProviderStatus.SUCCEEDED)

        outcome = self.confirm(self.booking, user=self.stranger)

        self.assertIsInstance(outcome.failure, BookingForbidden)
        self.assertEqual(Booking.objects.get(pk=self.booking.pk).status, Booking.Status.PENDING)

    def test_availability_lost_leaves_booking_pending(self) -> None:
        self.payments.set_status(self.payment_ref, ProviderStatus.SUCCEEDED)
        # A row that slipped in around the reservation (e.g. an admin import)
        make_booking(
            self.stranger, self.property, date(2025, 6, 2), date(2025, 6, 3),
            status=Booking.Status.CONFIRMED,
        )

        outcome = self.confirm(self.booking)

        self.assertIsInstance(outcome.failure, AvailabilityLost)
        self.assertEqual(outcome.failure.http_status, 409)
        self.assertEqual(Booking.objects.get(pk=self.booking.pk).status, Booking.Status.PENDING)

    def test_property_is_locked_before_overlap_check(self) -> None:
        self.payments.set_status(self.payment_ref, ProviderStatus.SUCCEEDED)
        order = mock.Mock()
        oracle = self.ledger.oracle
        with mock.patch(
            "apps.bookings.application.command_handlers.lock_property", wraps=lock_property,
        ) as lock, mock.patch.object(oracle, "is_available", wraps=oracle.is_available) as check:
            order.attach_mock(lock, "lock")
            order.attach_mock(check, "check")
            outcome = self.confirm(self.booking)

        self.assertTrue(outcome.ok)
        lock.assert_called_once_with(self.property.pk)
        self.assertEqual([name for name, _, _ in order.mock_calls], ["lock", "check"])

    def test_cancelled_booking_cannot_be_confirmed(self) -> None:
        Booking.objects.filter(pk=self.booking.pk).update(status=Booking.Status.CANCELLED)
        self.payments.set_status(self.payment_ref, ProviderStatus.SUCCEEDED)

        outcome = self.confirm(self.booking)
        self.assertIsInstance(outcome.failure, InvalidTransition)

    def test_confirmation_mirrors_and_notifies_after_commit(self) -> None:
        self.payments.set_status(self.payment_ref, ProviderStatus.SUCCEEDED)

        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            outcome = self.confirm(self.booking)

        self.assertTrue(outcome.ok)
        self.assertEqual(len(callbacks), 1)

        self.booking.refresh_from_db()
        self.assertTrue(self.booking.external_sync_ref)
        self.assertEqual(self.pms.get(self.booking.external_sync_ref).status, "confirmed")

        notification = Notification.objects.get(user=self.guest)
        self.assertEqual(notification.kind, Notification.Kind.BOOKING_CONFIRMED)
        self.assertEqual(notification.booking_id, self.booking.pk)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, [self.guest.email])

    def test_mirror_failure_keeps_confirmation(self) -> None:
        self.payments.set_status(self.payment_ref, ProviderStatus.SUCCEEDED)
        self.pms.fail_mirror = True

        with self.captureOnCommitCallbacks(execute=True):
            outcome = self.confirm(self.booking)

        self.assertTrue(outcome.ok)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.Status.CONFIRMED)
        self.assertEqual(self.booking.external_sync_ref, "")

    def test_rejected_confirmation_publishes_nothing(self) -> None:
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            self.confirm(self.booking)

        self.assertEqual(callbacks, [])
        self.assertFalse(Notification.objects.exists())


class CancelBookingTests(OrchestratorTestCase):
    def cancel(self, booking, user=None, reason=""):
        return self.handler(CancelBookingHandler).handle(
            CancelBookingCommand(booking_id=booking.pk, user_id=(user or self.guest).pk, reason=reason)
        )

    def test_cancel_pending_booking(self) -> None:
        booking = self.create_booking().booking

        outcome = self.cancel(booking, reason="Changed plans")

        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.booking.status, Booking.Status.CANCELLED)
        self.assertEqual(outcome.booking.cancellation_reason, "Changed plans")

    def test_cancelled_dates_can_be_booked_again(self) -> None:
        booking = self.create_booking().booking
        self.cancel(booking)

        self.assertTrue(self.create_booking(user=self.stranger).ok)

    def test_stranger_cannot_cancel(self) -> None:
        booking = self.create_booking().booking

        outcome = self.cancel(booking, user=self.stranger)

        self.assertIsInstance(outcome.failure, BookingForbidden)
        self.assertEqual(Booking.objects.get(pk=booking.pk).status, Booking.Status.PENDING)

    def test_cancel_twice_is_invalid(self) -> None:
        booking = self.create_booking().booking
        self.cancel(booking)

        self.assertIsInstance(self.cancel(booking).failure, InvalidTransition)

    def test_cancel_unknown_booking(self) -> None:
        outcome = self.handler(CancelBookingHandler).handle(
            CancelBookingCommand(booking_id=4242, user_id=self.guest.pk)
        )
        self.assertIsInstance(outcome.failure, BookingNotFound)

    def test_cancellation_updates_pms_and_notifies(self) -> None:
        booking = make_booking(
            self.guest, self.property, date(2025, 6, 10), date(2025, 6, 12),
            status=Booking.Status.CONFIRMED,
        )
        ref = self.pms.mirror_booking(booking)
        Booking.objects.filter(pk=booking.pk).update(external_sync_ref=ref)

        with self.captureOnCommitCallbacks(execute=True):
            outcome = self.cancel(booking, reason="Flight cancelled")

        self.assertTrue(outcome.ok)
        self.assertEqual(self.pms.get(ref).status, "cancelled")
        notification = Notification.objects.get(user=self.guest)
        self.assertEqual(notification.kind, Notification.Kind.BOOKING_CANCELLED)
        self.assertEqual(len(mail.outbox), 1)


class RefreshPaymentTests(OrchestratorTestCase):
    def refresh(self, booking, user=None):
        return self.handler(RefreshPaymentHandler).handle(
            RefreshPaymentCommand(booking_id=booking.pk, user_id=(user or self.guest).pk)
        )

    def test_open_authorization_is_reused(self) -> None:
        created = self.create_booking()

        outcome = self.refresh(created.booking)

        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.payment.ref, created.payment.ref)
        self.assertEqual(len(self.payments.authorizations()), 1)

    def test_expired_authorization_is_replaced(self) -> None:
        created = self.create_booking()
        self.payments.set_status(created.payment.ref, ProviderStatus.EXPIRED)

        outcome = self.refresh(created.booking)

        self.assertTrue(outcome.ok)
        self.assertNotEqual(outcome.payment.ref, created.payment.ref)
        self.assertEqual(outcome.payment.amount, Decimal("300.00"))
        self.assertEqual(Booking.objects.get(pk=created.booking.pk).external_payment_ref, outcome.payment.ref)

    def test_missing_reference_authorizes(self) -> None:
        booking = make_booking(self.guest, self.property, date(2025, 6, 1), date(2025, 6, 3))

        outcome = self.refresh(booking)

        self.assertTrue(outcome.ok)
        self.assertEqual(Booking.objects.get(pk=booking.pk).external_payment_ref, outcome.payment.ref)

    def test_provider_outage_does_not_authorize_again(self) -> None:
        created = self.create_booking()
        self.payments.fail_retrieve = True

        outcome = self.refresh(created.booking)

        self.assertIsInstance(outcome.failure, PaymentAuthorizationFailed)
        self.assertEqual(len(self.payments.authorizations()), 1)

    def test_only_pending_bookings(self) -> None:
        booking = make_booking(
            self.guest, self.property, date(2025, 6, 1), date(2025, 6, 3),
            status=Booking.Status.CONFIRMED,
        )
        self.assertIsInstance(self.refresh(booking).failure, InvalidTransition)

    def test_only_owner(self) -> None:
        created = self.create_booking()
        self.assertIsInstance(self.refresh(created.booking, user=self.stranger).failure, BookingForbidden)
