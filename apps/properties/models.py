"""Property domain models.

Listings are owned and edited outside of the booking core. The core only
reads a snapshot of each property at booking time: nightly price, guest
capacity, whether it accepts bookings and the listing handle in the
external property-management system. The property row is also the lock
scope for the check-then-reserve sequence in the booking ledger.
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings  # type: ignore
from django.core.validators import MinValueValidator  # type: ignore
from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class Property(models.Model):
    """A property offered for nightly rental."""

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="properties",
    )
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    address_line = models.CharField(max_length=255, blank=True)
    city = models.CharField(max_length=100, blank=True)
    price_per_night = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.00"))],
    )
    currency = models.CharField(max_length=3, default="USD")
    max_guests = models.PositiveSmallIntegerField(default=1, validators=[MinValueValidator(1)])
    is_active = models.BooleanField(default=True)
    external_listing_id = models.CharField(
        max_length=100,
        blank=True,
        help_text=_("Listing identifier in the external property-management system."),
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Property")
        verbose_name_plural = _("Properties")
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return self.title

    @property
    def listing_ref(self) -> str:
        """Handle used when mirroring bookings to the PMS."""
        return self.external_listing_id or f"local-{self.pk}"
