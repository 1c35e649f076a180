"""Booking persistence models for the reservation engine."""

from __future__ import annotations

from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class ParkingSpace(models.Model):
    """Reservable parking space with its owner-set rate schedule."""

    id = models.UUIDField(primary_key=True, editable=False)
    owner_id = models.CharField(max_length=64, db_index=True)
    name = models.CharField(max_length=255, blank=True)
    currency = models.CharField(max_length=3, default="USD")
    hourly_rate = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    daily_rate = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    weekly_rate = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    monthly_rate = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    is_active = models.BooleanField(default=True)
    version = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField()
    updated_at = models.DateTimeField()

    class Meta:
        verbose_name = _("Parking space")
        verbose_name_plural = _("Parking spaces")
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return self.name or str(self.id)


class Booking(models.Model):
    """Reservation of a parking space for a half-open time interval."""

    class Status(models.TextChoices):
        PENDING = "pending", _("Pending")
        CONFIRMED = "confirmed", _("Confirmed")
        CANCELLED = "cancelled", _("Cancelled")
        COMPLETED = "completed", _("Completed")

    id = models.UUIDField(primary_key=True, editable=False)
    space = models.ForeignKey(
        ParkingSpace,
        on_delete=models.PROTECT,
        related_name="bookings",
    )
    requester_id = models.CharField(max_length=64, db_index=True)
    owner_id = models.CharField(max_length=64)
    start_time = models.DateTimeField()
    end_time = models.DateTimeField()
    vehicle_type = models.CharField(max_length=32)
    total_price = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default="USD")
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.PENDING,
    )
    escrow_id = models.UUIDField(null=True, blank=True)
    payment_reference = models.CharField(max_length=128, blank=True)
    cancellation_reason = models.CharField(max_length=255, blank=True)
    cancelled_by = models.CharField(max_length=64, blank=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    version = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField()
    updated_at = models.DateTimeField()

    class Meta:
        verbose_name = _("Booking")
        verbose_name_plural = _("Bookings")
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(end_time__gt=models.F("start_time")),
                name="booking_valid_interval",
            ),
            models.CheckConstraint(
                condition=~models.Q(status="confirmed") | models.Q(escrow_id__isnull=False),
                name="booking_confirmed_has_escrow",
            ),
        ]
        indexes = [
            models.Index(fields=["space", "status", "start_time", "end_time"]),
            models.Index(fields=["status", "end_time"]),
        ]

    def __str__(self) -> str:
        return f"Booking {self.id} ({self.status})"
