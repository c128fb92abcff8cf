"""FilterSet definitions for the notification list."""

from __future__ import annotations

import django_filters  # type: ignore

from .models import Notification


class NotificationFilterSet(django_filters.FilterSet):
    unread_only = django_filters.BooleanFilter(method="filter_unread_only")
    kind = django_filters.ChoiceFilter(choices=Notification.Kind.choices)

    class Meta:
        model = Notification
        fields = ["kind", "is_read"]

    def filter_unread_only(self, queryset, name, value):  # type: ignore
        if value:
            return queryset.filter(is_read=False)
        return queryset
