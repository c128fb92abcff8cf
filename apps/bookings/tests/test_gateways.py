"""Tests for the Kaspi payment and Guesty PMS HTTP gateways."""

from __future__ import annotations

import hashlib
from datetime import date
from decimal import Decimal
from unittest import mock

import requests
from django.test import SimpleTestCase, TestCase

from apps.bookings.domain.exceptions import ExternalSyncFailed
from apps.bookings.domain.policies import ProviderStatus
from apps.bookings.infrastructure.payments import (
    InMemoryPaymentCoordinator,
    KaspiPaymentCoordinator,
    PaymentGatewayError,
    get_payment_coordinator,
    reset_payment_coordinator,
)
from apps.bookings.infrastructure.pms_sync import GuestySyncGateway, InMemorySyncGateway
from apps.bookings.models import Booking

from .helpers import make_booking, make_property, make_user


def fake_response(payload=None, status_code=200):
    response = mock.Mock()
    response.status_code = status_code
    response.content = b"{}" if payload is not None else b""
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code} error")
    else:
        response.raise_for_status.return_value = None
    return response


class KaspiPaymentCoordinatorTests(SimpleTestCase):
    def setUp(self) -> None:
        self.session = mock.Mock()
        self.kaspi = KaspiPaymentCoordinator(
            api_key="key",
            merchant_id="merchant-1",
            secret_key="s3cret",
            base_url="https://kaspi.test/v2",
            timeout=5,
            session=self.session,
        )

    def test_signature_is_sha256_of_sorted_pairs_and_secret(self) -> None:
        expected = hashlib.sha256(b"a=1&b=2&s3cret").hexdigest()
        self.assertEqual(self.kaspi.generate_signature({"b": 2, "a": 1}), expected)

    def test_authorize_sends_minor_units(self) -> None:
        self.session.post.return_value = fake_response(
            {"success": True, "payment_id": "kaspi-77", "payment_url": "https://pay.kaspi.test/77"}
        )

        authorization = self.kaspi.authorize(Decimal("300.00"), "KZT", {"booking_id": 12})

        self.assertEqual(authorization.ref, "kaspi-77")
        self.assertEqual(authorization.client_secret, "https://pay.kaspi.test/77")
        self.assertEqual(authorization.amount, Decimal("300.00"))

        url = self.session.post.call_args.args[0]
        payload = self.session.post.call_args.kwargs["json"]
        self.assertEqual(url, "https://kaspi.test/v2/payments/create")
        self.assertEqual(payload["amount"], 30000)
        self.assertEqual(payload["order_id"], "12")
        self.assertEqual(payload["merchant_id"], "merchant-1")
        unsigned = {k: v for k, v in payload.items() if k != "signature"}
        self.assertEqual(payload["signature"], self.kaspi.generate_signature(unsigned))

    def test_authorize_provider_error(self) -> None:
        self.session.post.return_value = fake_response({"success": False, "error": {"message": "Limit"}})

        with self.assertRaisesMessage(PaymentGatewayError, "Limit"):
            self.kaspi.authorize(Decimal("10"), "KZT", {"booking_id": 1})

    def test_authorize_connection_error(self) -> None:
        self.session.post.side_effect = requests.exceptions.ConnectionError("refused")

        with self.assertRaises(PaymentGatewayError):
            self.kaspi.authorize(Decimal("10"), "KZT", {"booking_id": 1})

    def test_authorize_success_without_payment_id(self) -> None:
        self.session.post.return_value = fake_response({"success": True, "payment_url": "https://pay.kaspi.test/x"})

        with self.assertRaisesMessage(PaymentGatewayError, "missing payment_id"):
            self.kaspi.authorize(Decimal("10"), "KZT", {"booking_id": 1})

    def test_authorize_non_object_body(self) -> None:
        for body in (["success"], "ok", None):
            with self.subTest(body=body):
                self.session.post.return_value = fake_response(body)
                with self.assertRaises(PaymentGatewayError):
                    self.kaspi.authorize(Decimal("10"), "KZT", {"booking_id": 1})

    def test_retrieve_status_non_object_body(self) -> None:
        self.session.get.return_value = fake_response(["PAID"])

        with self.assertRaises(PaymentGatewayError):
            self.kaspi.retrieve_status("kaspi-77")

    def test_retrieve_status_maps_vendor_vocabulary(self) -> None:
        cases = {
            "SUCCESS": ProviderStatus.SUCCEEDED,
            "processing": ProviderStatus.PROCESSING,
            "AUTHORIZED": ProviderStatus.REQUIRES_CAPTURE,
            "DECLINED": ProviderStatus.FAILED,
            "EXPIRED": ProviderStatus.EXPIRED,
        }
        for raw, expected in cases.items():
            with self.subTest(raw=raw):
                self.session.get.return_value = fake_response({"status": raw})
                self.assertEqual(self.kaspi.retrieve_status("kaspi-77").status, expected)

        self.assertEqual(self.session.get.call_args.args[0], "https://kaspi.test/v2/payments/kaspi-77/status")

    def test_unknown_status_is_an_error(self) -> None:
        self.session.get.return_value = fake_response({"status": "MYSTERY"})

        with self.assertRaises(PaymentGatewayError):
            self.kaspi.retrieve_status("kaspi-77")

    def test_http_error_on_status(self) -> None:
        self.session.get.return_value = fake_response({}, status_code=503)

        with self.assertRaises(PaymentGatewayError):
            self.kaspi.retrieve_status("kaspi-77")


class InMemoryPaymentCoordinatorTests(SimpleTestCase):
    def test_authorizations_start_open(self) -> None:
        payments = InMemoryPaymentCoordinator()
        authorization = payments.authorize(Decimal("50"), "USD", {})

        state = payments.retrieve_status(authorization.ref)
        self.assertEqual(state.status, ProviderStatus.REQUIRES_PAYMENT)
        self.assertTrue(state.is_reusable)

        payments.set_status(authorization.ref, "expired")
        self.assertFalse(payments.retrieve_status(authorization.ref).is_reusable)

    def test_unknown_reference(self) -> None:
        with self.assertRaises(PaymentGatewayError):
            InMemoryPaymentCoordinator().retrieve_status("pay_missing")

    def test_singleton_follows_setting(self) -> None:
        reset_payment_coordinator()
        with self.settings(PAYMENT_COORDINATOR="memory"):
            first = get_payment_coordinator()
            self.assertIsInstance(first, InMemoryPaymentCoordinator)
            self.assertIs(get_payment_coordinator(), first)
        reset_payment_coordinator()


class GuestySyncGatewayTests(TestCase):
    def setUp(self) -> None:
        self.session = mock.Mock()
        self.guesty = GuestySyncGateway(
            api_token="token", base_url="https://guesty.test/v1/", timeout=5, session=self.session,
        )
        owner = make_user("owner-guesty@example.com")
        guest = make_user("guest-guesty@example.com", "Dana")
        self.property = make_property(owner, external_listing_id="listing-9")
        self.booking = make_booking(
            guest, self.property, date(2025, 6, 1), date(2025, 6, 4),
            status=Booking.Status.CONFIRMED, guests=2,
        )

    def test_mirror_booking_posts_reservation(self) -> None:
        self.session.request.return_value = fake_response({"_id": "res-1"})

        self.assertEqual(self.guesty.mirror_booking(self.booking), "res-1")

        method, url = self.session.request.call_args.args
        payload = self.session.request.call_args.kwargs["json"]
        self.assertEqual((method, url), ("POST", "https://guesty.test/v1/reservations"))
        self.assertEqual(payload["listingId"], "listing-9")
        self.assertEqual(payload["checkInDateLocalized"], "2025-06-01")
        self.assertEqual(payload["checkOutDateLocalized"], "2025-06-04")
        self.assertEqual(payload["guestsCount"], 2)
        self.assertEqual(payload["guest"]["fullName"], "Dana")
        self.assertEqual(payload["externalId"], self.booking.booking_code)

    def test_mirror_without_reservation_id_fails(self) -> None:
        self.session.request.return_value = fake_response({})

        with self.assertRaises(ExternalSyncFailed):
            self.guesty.mirror_booking(self.booking)

    def test_http_error_becomes_sync_failure(self) -> None:
        self.session.request.return_value = fake_response({}, status_code=500)

        with self.assertRaises(ExternalSyncFailed):
            self.guesty.mirror_booking(self.booking)

    def test_check_availability_ignores_check_out_day(self) -> None:
        self.session.request.return_value = fake_response({
            "data": {"days": [
                {"date": "2025-06-01", "status": "available"},
                {"date": "2025-06-02", "status": "available"},
                {"date": "2025-06-03", "status": "available"},
                {"date": "2025-06-04", "status": "booked"},
            ]}
        })

        self.assertTrue(self.guesty.check_availability("listing-9", date(2025, 6, 1), date(2025, 6, 4)))
        self.assertEqual(
            self.session.request.call_args.kwargs["params"],
            {"startDate": "2025-06-01", "endDate": "2025-06-04"},
        )

    def test_check_availability_reports_booked_night(self) -> None:
        self.session.request.return_value = fake_response({
            "data": {"days": [
                {"date": "2025-06-01", "status": "available"},
                {"date": "2025-06-02", "status": "booked"},
            ]}
        })

        self.assertFalse(self.guesty.check_availability("listing-9", date(2025, 6, 1), date(2025, 6, 4)))

    def test_update_booking_status(self) -> None:
        self.session.request.return_value = fake_response(None)

        self.guesty.update_booking_status("res-1", "cancelled")

        method, url = self.session.request.call_args.args
        self.assertEqual((method, url), ("PUT", "https://guesty.test/v1/reservations/res-1"))
        self.assertEqual(self.session.request.call_args.kwargs["json"], {"status": "cancelled"})


class InMemorySyncGatewayTests(TestCase):
    def test_mirrored_booking_blocks_listing(self) -> None:
        owner = make_user("owner-memory-pms@example.com")
        guest = make_user("guest-memory-pms@example.com")
        property_obj = make_property(owner)
        booking = make_booking(
            guest, property_obj, date(2025, 6, 1), date(2025, 6, 4), status=Booking.Status.CONFIRMED,
        )
        pms = InMemorySyncGateway()

        ref = pms.mirror_booking(booking)

        listing = property_obj.listing_ref
        self.assertFalse(pms.check_availability(listing, date(2025, 6, 3), date(2025, 6, 5)))
        self.assertTrue(pms.check_availability(listing, date(2025, 6, 4), date(2025, 6, 5)))

        pms.update_booking_status(ref, "cancelled")
        self.assertTrue(pms.check_availability(listing, date(2025, 6, 3), date(2025, 6, 5)))
