"""Celery tasks for the booking domain."""

from __future__ import annotations

import logging

from celery import shared_task  # type: ignore
from django.utils import timezone  # type: ignore

from .domain.exceptions import BookingError, BookingNotFound, ExternalSyncFailed, StorageFailure
from .infrastructure.pms_sync import get_sync_gateway
from .models import Booking
from .services import BookingLedger

logger = logging.getLogger(__name__)


# ============================================================================
# PMS SYNC (best-effort, enqueued after commit)
# ============================================================================

@shared_task(name="bookings.mirror_booking_to_pms")
def mirror_booking_to_pms(booking_id: int) -> str | None:
    """
    Mirror a confirmed booking into the property-management system.

    Failures are logged and swallowed: a booking is valid without a sync
    reference. The PMS availability answer is logged, never acted on.
    """
    try:
        booking = Booking.objects.select_related("guest", "property").get(pk=booking_id)
    except Booking.DoesNotExist:
        logger.error(f"Booking {booking_id} not found for PMS mirroring")
        return None

    if booking.status != Booking.Status.CONFIRMED:
        logger.info(f"Skipping PMS mirror for booking {booking.booking_code}: status is {booking.status}")
        return None
    if booking.external_sync_ref:
        return booking.external_sync_ref

    gateway = get_sync_gateway()
    listing_id = booking.property.listing_ref

    try:
        if not gateway.check_availability(listing_id, booking.check_in, booking.check_out):
            logger.warning(
                f"PMS reports listing {listing_id} unavailable for booking {booking.booking_code}; "
                f"local confirmation stands"
            )
    except ExternalSyncFailed as e:
        logger.warning(f"PMS availability check failed for booking {booking.booking_code}: {e}")

    try:
        ref = gateway.mirror_booking(booking)
    except ExternalSyncFailed as e:
        logger.error(f"PMS mirror failed for booking {booking.booking_code}: {e}")
        return None

    BookingLedger().record_sync_reference(booking.pk, ref)
    logger.info(f"Booking {booking.booking_code} mirrored to PMS as {ref}")
    return ref


@shared_task(name="bookings.update_pms_booking_status")
def update_pms_booking_status(booking_id: int, status: str) -> bool:
    """Propagate a local status change to the mirrored PMS booking, if any."""
    booking = Booking.objects.filter(pk=booking_id).only("external_sync_ref", "booking_code").first()
    if booking is None:
        logger.error(f"Booking {booking_id} not found for PMS status update")
        return False
    if not booking.external_sync_ref:
        return False

    try:
        get_sync_gateway().update_booking_status(booking.external_sync_ref, status)
    except ExternalSyncFailed as e:
        logger.error(f"PMS status update to {status} failed for booking {booking.booking_code}: {e}")
        return False

    logger.info(f"PMS booking {booking.external_sync_ref} marked {status}")
    return True


# ============================================================================
# PAYMENT RECONCILIATION
# ============================================================================

@shared_task(
    name="bookings.attach_payment_reference",
    autoretry_for=(StorageFailure,),
    retry_backoff=True,
    retry_backoff_max=600,
    max_retries=10,
)
def attach_payment_reference(booking_id: int, ref: str) -> bool:
    """
    Store a payment reference the provider issued but the request could
    not persist. Retries with exponential backoff while storage is failing.
    """
    try:
        BookingLedger().attach_payment_reference(booking_id, ref)
    except BookingNotFound:
        logger.critical(f"Payment {ref} has no booking: booking {booking_id} no longer exists")
        return False

    logger.info(f"Payment reference {ref} attached to booking {booking_id}")
    return True


# ============================================================================
# PERIODIC TASKS (run by Celery Beat)
# ============================================================================

@shared_task(name="bookings.complete_finished_bookings")
def complete_finished_bookings() -> dict[str, int]:
    """
    Move confirmed bookings whose check-out date has passed to COMPLETED.

    Returns:
        dict: {"completed": number of bookings completed}
    """
    today = timezone.localdate()
    completed_count = 0
    ledger = BookingLedger()

    booking_ids = Booking.objects.filter(
        status=Booking.Status.CONFIRMED,
        check_out__lte=today,
    ).values_list("pk", flat=True)

    for booking_id in list(booking_ids):
        try:
            ledger.transition_to_completed(booking_id)
        except (BookingError, StorageFailure) as e:
            logger.error(f"Error completing booking {booking_id}: {e}", exc_info=True)
            continue
        completed_count += 1

    if completed_count > 0:
        logger.info(f"Completed {completed_count} bookings")

    return {"completed": completed_count}
