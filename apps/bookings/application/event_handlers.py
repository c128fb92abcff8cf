"""
Booking Event Handlers

Subscribers run after the producing transaction committed. They only
enqueue Celery tasks, so a slow PMS or mail server never delays the
request that confirmed or cancelled the booking.
"""

import logging

from shared.application.message_bus import MessageBus, message_bus
from apps.bookings.domain.events import BookingCancelled, BookingConfirmed, BookingCreated

logger = logging.getLogger(__name__)


def log_booking_created(event: BookingCreated):
    logger.info(
        f"Booking {event.booking_id} reserved property {event.property_id} "
        f"for guest {event.guest_id}, {event.check_in} - {event.check_out}, total {event.total_amount}"
    )


def enqueue_pms_mirror(event: BookingConfirmed):
    from apps.bookings.tasks import mirror_booking_to_pms

    mirror_booking_to_pms.delay(event.booking_id)


def enqueue_confirmation_notice(event: BookingConfirmed):
    from apps.notifications.tasks import dispatch_booking_event

    dispatch_booking_event.delay('booking_confirmed', event.booking_id)


def enqueue_pms_status_update(event: BookingCancelled):
    from apps.bookings.tasks import update_pms_booking_status

    update_pms_booking_status.delay(event.booking_id, 'cancelled')


def enqueue_cancellation_notice(event: BookingCancelled):
    from apps.notifications.tasks import dispatch_booking_event

    dispatch_booking_event.delay('booking_cancelled', event.booking_id)


def register_handlers(bus: MessageBus = message_bus):
    """Subscribe booking side effects to the message bus"""
    bus.register_event_handler(BookingCreated, log_booking_created)
    bus.register_event_handler(BookingConfirmed, enqueue_pms_mirror)
    bus.register_event_handler(BookingConfirmed, enqueue_confirmation_notice)
    bus.register_event_handler(BookingCancelled, enqueue_pms_status_update)
    bus.register_event_handler(BookingCancelled, enqueue_cancellation_notice)
    logger.debug("Booking event handlers registered")
