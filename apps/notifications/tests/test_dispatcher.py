"""Tests for the notification dispatcher and the realtime registry."""

from __future__ import annotations

from datetime import date
from unittest import mock

from django.core import mail
from django.test import SimpleTestCase, TestCase

from apps.bookings.models import Booking
from apps.bookings.tests.helpers import make_booking, make_property, make_user
from apps.notifications.dispatcher import NotificationDispatcher
from apps.notifications.models import Notification
from apps.notifications.realtime import ConnectionRegistry
from apps.notifications.services import build_booking_message
from apps.notifications.tasks import dispatch_booking_event


class RecordingPeer:
    def __init__(self):
        self.received = []

    def send(self, event, data):
        self.received.append((event, data))


class BrokenPeer:
    def send(self, event, data):
        raise ConnectionResetError("socket closed")


class ConnectionRegistryTests(SimpleTestCase):
    def test_send_reaches_every_peer_of_the_user(self) -> None:
        registry = ConnectionRegistry()
        laptop, phone, stranger = RecordingPeer(), RecordingPeer(), RecordingPeer()
        registry.connect(1, laptop)
        registry.connect(1, phone)
        registry.connect(2, stranger)

        delivered = registry.send_to_user(1, "notification", {"title": "Hi"})

        self.assertEqual(delivered, 2)
        self.assertEqual(laptop.received, [("notification", {"title": "Hi"})])
        self.assertEqual(phone.received, [("notification", {"title": "Hi"})])
        self.assertEqual(stranger.received, [])

    def test_disconnect(self) -> None:
        registry = ConnectionRegistry()
        peer = RecordingPeer()
        registry.connect(1, peer)
        registry.disconnect(peer)

        self.assertFalse(registry.is_connected(1))
        self.assertEqual(registry.send_to_user(1, "notification", {}), 0)

    def test_reconnecting_peer_moves_to_new_user(self) -> None:
        registry = ConnectionRegistry()
        peer = RecordingPeer()
        registry.connect(1, peer)
        registry.connect(2, peer)

        self.assertFalse(registry.is_connected(1))
        self.assertEqual(registry.peers_for(2), [peer])

    def test_failing_peer_is_dropped(self) -> None:
        registry = ConnectionRegistry()
        good, broken = RecordingPeer(), BrokenPeer()
        registry.connect(1, good)
        registry.connect(1, broken)

        self.assertEqual(registry.send_to_user(1, "notification", {}), 1)
        self.assertEqual(registry.peers_for(1), [good])

    def test_broadcast(self) -> None:
        registry = ConnectionRegistry()
        first, second = RecordingPeer(), RecordingPeer()
        registry.connect(1, first)
        registry.connect(2, second)

        self.assertEqual(registry.broadcast("maintenance", {"at": "02:00"}), 2)
        registry.clear()
        self.assertEqual(registry.broadcast("maintenance", {}), 0)


class NotificationDispatcherTests(TestCase):
    def setUp(self) -> None:
        owner = make_user("owner-notify@example.com")
        self.guest = make_user("guest-notify@example.com", "Aruzhan")
        self.property = make_property(owner, title="Mountain chalet")
        self.booking = make_booking(
            self.guest, self.property, date(2025, 6, 1), date(2025, 6, 4),
            status=Booking.Status.CONFIRMED,
        )
        self.registry = ConnectionRegistry()
        self.dispatcher = NotificationDispatcher(registry=self.registry)

    def test_confirmation_reaches_every_channel(self) -> None:
        peer = RecordingPeer()
        self.registry.connect(self.guest.pk, peer)

        result = self.dispatcher.dispatch(Notification.Kind.BOOKING_CONFIRMED, self.booking)

        self.assertEqual(result.errors, {})
        self.assertTrue(result.emailed)
        self.assertEqual(result.pushed, 1)

        notification = result.notification
        self.assertEqual(notification.user, self.guest)
        self.assertEqual(notification.title, "Booking Confirmed!")
        self.assertIn("Mountain chalet", notification.message)
        self.assertEqual(notification.metadata["booking_code"], self.booking.booking_code)

        self.assertEqual(len(mail.outbox), 1)
        self.assertIn(self.booking.booking_code, mail.outbox[0].subject)

        event, payload = peer.received[0]
        self.assertEqual(event, "notification")
        self.assertEqual(payload["id"], notification.pk)

    def test_email_failure_keeps_in_app_notification(self) -> None:
        with mock.patch(
            "apps.notifications.services.send_mail", side_effect=OSError("SMTP down")
        ):
            result = self.dispatcher.dispatch(Notification.Kind.BOOKING_CANCELLED, self.booking)

        self.assertFalse(result.emailed)
        self.assertIn("email", result.errors)
        self.assertTrue(Notification.objects.filter(pk=result.notification.pk).exists())

    def test_offline_user_still_gets_stored_notification(self) -> None:
        result = self.dispatcher.dispatch(Notification.Kind.BOOKING_CANCELLED, self.booking)

        self.assertEqual(result.pushed, 0)
        self.assertEqual(result.notification.kind, Notification.Kind.BOOKING_CANCELLED)
        self.assertEqual(result.notification.title, "Booking Cancelled")

    def test_unknown_kind_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            build_booking_message("booking_teleported", self.booking)

    def test_task_reports_partial_delivery(self) -> None:
        self.assertTrue(dispatch_booking_event(Notification.Kind.BOOKING_CONFIRMED, self.booking.pk))

        with mock.patch("apps.notifications.services.send_mail", side_effect=OSError("SMTP down")):
            self.assertFalse(dispatch_booking_event(Notification.Kind.BOOKING_CONFIRMED, self.booking.pk))

        self.assertEqual(Notification.objects.filter(user=self.guest).count(), 2)

    def test_task_with_missing_booking(self) -> None:
        self.assertFalse(dispatch_booking_event(Notification.Kind.BOOKING_CONFIRMED, 987654))
