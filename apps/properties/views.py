"""API views for the properties domain."""

from __future__ import annotations

from rest_framework import permissions, viewsets  # type: ignore
from rest_framework.decorators import action  # type: ignore
from rest_framework.response import Response  # type: ignore

from apps.bookings.serializers import AvailabilityQuerySerializer
from apps.bookings.services import AvailabilityOracle

from .models import Property
from .serializers import AvailabilitySerializer, PropertySerializer


class PropertyViewSet(viewsets.ReadOnlyModelViewSet):
    """Read access to active properties and their availability."""

    queryset = Property.objects.filter(is_active=True).select_related("owner")
    serializer_class = PropertySerializer
    permission_classes = [permissions.AllowAny]

    @action(detail=True, methods=["get"])
    def availability(self, request, pk=None):  # type: ignore
        property_obj: Property = self.get_object()  # type: ignore
        query = AvailabilityQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        check_in = query.validated_data["check_in"]
        check_out = query.validated_data["check_out"]

        available = AvailabilityOracle().is_available(property_obj.pk, check_in, check_out)
        return Response(
            AvailabilitySerializer(
                {
                    "property_id": property_obj.pk,
                    "check_in": check_in,
                    "check_out": check_out,
                    "nights": (check_out - check_in).days,
                    "available": available,
                }
            ).data
        )
