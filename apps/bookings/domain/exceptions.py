"""
Booking Domain Errors

Every failure the booking core can report has its own type and a stable
``code``. The orchestrator turns these into structured outcomes; the API
layer maps ``http_status`` onto responses.

Hierarchy:
- BookingError
  - BookingValidationError        bad input shape or range (400)
  - BookingNotFound               (404)
  - BookingForbidden              ownership violation (403)
  - Conflict                      (409)
    - AvailabilityConflict        dates taken at creation
      - AvailabilityLost          dates taken between creation and confirmation
    - InvalidTransition           state machine forbids the move
  - CancellationWindowViolation   too close to check-in (400)
  - PaymentAuthorizationFailed    provider refused to authorize (502)
  - PaymentNotVerified            funds are not committed yet (402)
  - ExternalSyncFailed            PMS mirror failed; logged only
  - StorageFailure                database failed mid-operation (500)
"""


class BookingError(Exception):
    """Base class for booking failures."""

    code = "booking_error"
    http_status = 400

    def __init__(self, message: str = "", **details):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code).strip()
        self.details = details

    def to_dict(self) -> dict:
        payload = {"code": self.code, "detail": self.message}
        if self.details:
            payload["context"] = {key: str(value) for key, value in self.details.items()}
        return payload


class BookingValidationError(BookingError):
    """Booking request is invalid."""

    code = "validation_error"
    http_status = 400

    def __init__(self, message: str = "", *, field: str | None = None, **details):
        super().__init__(message, **details)
        self.field = field

    def to_dict(self) -> dict:
        payload = super().to_dict()
        if self.field:
            payload["field"] = self.field
        return payload


class BookingNotFound(BookingError):
    """Booking not found."""

    code = "not_found"
    http_status = 404


class BookingForbidden(BookingError):
    """Access denied. You can only manage your own bookings."""

    code = "forbidden"
    http_status = 403


class Conflict(BookingError):
    """Booking state conflicts with the request."""

    code = "conflict"
    http_status = 409


class AvailabilityConflict(Conflict):
    """Property not available for selected dates."""

    code = "availability_conflict"


class AvailabilityLost(AvailabilityConflict):
    """Property is no longer available for the selected dates."""

    code = "availability_lost"


class InvalidTransition(Conflict):
    """Booking cannot move to the requested status."""

    code = "invalid_transition"


class CancellationWindowViolation(BookingError):
    """Cancellation not allowed within the cancellation window before check-in."""

    code = "cancellation_window_violation"
    http_status = 400


class PaymentAuthorizationFailed(BookingError):
    """Failed to create payment authorization."""

    code = "payment_authorization_failed"
    http_status = 502


class PaymentNotVerified(BookingError):
    """Payment not completed."""

    code = "payment_not_verified"
    http_status = 402


class ExternalSyncFailed(BookingError):
    """Mirroring the booking to the property-management system failed."""

    code = "external_sync_failed"
    http_status = 502


class StorageFailure(BookingError):
    """Storage layer failed while processing the booking."""

    code = "storage_failure"
    http_status = 500
