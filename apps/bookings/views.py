"""API views for the booking domain."""

from __future__ import annotations

from rest_framework import permissions, status, viewsets  # type: ignore
from rest_framework.decorators import action  # type: ignore
from rest_framework.response import Response  # type: ignore

from .application.command_handlers import (
    BookingOutcome,
    CancelBookingCommand,
    CancelBookingHandler,
    ConfirmBookingCommand,
    ConfirmBookingHandler,
    CreateBookingCommand,
    CreateBookingHandler,
    RefreshPaymentCommand,
    RefreshPaymentHandler,
)
from .domain.exceptions import BookingError, BookingForbidden
from .serializers import (
    BookingCancelSerializer,
    BookingCreateSerializer,
    BookingListQuerySerializer,
    BookingSerializer,
    PaymentHandleSerializer,
)
from .services import BookingLedger


def failure_response(failure: BookingError) -> Response:
    return Response(failure.to_dict(), status=failure.http_status)


class BookingViewSet(viewsets.ViewSet):
    """Guest-facing booking endpoints."""

    permission_classes = [permissions.IsAuthenticated]
    lookup_value_regex = r"\d+"

    def _outcome_response(self, outcome: BookingOutcome, success_status=status.HTTP_200_OK) -> Response:
        if not outcome.ok:
            return failure_response(outcome.failure)
        payload = {"booking": BookingSerializer(outcome.booking).data}
        if outcome.payment is not None:
            payload["payment"] = PaymentHandleSerializer(outcome.payment.to_dict()).data
        return Response(payload, status=success_status)

    def list(self, request):  # type: ignore
        query = BookingListQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        page = BookingLedger().list_by_user(
            request.user.id,
            status=query.validated_data.get("status"),
            page=query.validated_data["page"],
            page_size=query.validated_data["page_size"],
        )
        return Response(
            {
                "results": BookingSerializer(page.items, many=True).data,
                "page": page.page,
                "total_pages": page.total_pages,
                "count": page.total,
            }
        )

    def retrieve(self, request, pk=None):  # type: ignore
        booking = BookingLedger().get(int(pk))
        if booking.guest_id != request.user.id:
            raise BookingForbidden(booking_id=booking.pk)
        return Response(BookingSerializer(booking).data)

    def create(self, request):  # type: ignore
        serializer = BookingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        outcome = CreateBookingHandler().handle(
            CreateBookingCommand(
                property_id=data["property"],
                user_id=request.user.id,
                check_in=data["check_in"],
                check_out=data["check_out"],
                guests=data["guests"],
            )
        )
        return self._outcome_response(outcome, success_status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"])
    def confirm(self, request, pk=None):  # type: ignore
        outcome = ConfirmBookingHandler().handle(
            ConfirmBookingCommand(booking_id=int(pk), user_id=request.user.id)
        )
        return self._outcome_response(outcome)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):  # type: ignore
        serializer = BookingCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        outcome = CancelBookingHandler().handle(
            CancelBookingCommand(
                booking_id=int(pk),
                user_id=request.user.id,
                reason=serializer.validated_data["reason"],
            )
        )
        return self._outcome_response(outcome)

    @action(detail=True, methods=["post"])
    def payment(self, request, pk=None):  # type: ignore
        outcome = RefreshPaymentHandler().handle(
            RefreshPaymentCommand(booking_id=int(pk), user_id=request.user.id)
        )
        return self._outcome_response(outcome)
