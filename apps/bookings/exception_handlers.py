"""DRF exception handler for booking domain errors."""

from __future__ import annotations

import logging

from rest_framework.response import Response  # type: ignore
from rest_framework.views import exception_handler  # type: ignore

from .domain.exceptions import BookingError

logger = logging.getLogger(__name__)


def booking_exception_handler(exc, context):
    """Render BookingError with its own status; defer everything else to DRF."""
    if isinstance(exc, BookingError):
        if exc.http_status >= 500:
            logger.exception(f"Booking error: {exc.message}")
        else:
            logger.info(f"Booking error: {exc.code} ({exc.message})")
        return Response(exc.to_dict(), status=exc.http_status)
    return exception_handler(exc, context)
