"""Escrow ledger persistence models."""

from __future__ import annotations

from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class EscrowRecord(models.Model):
    """Per-booking fund hold."""

    class Status(models.TextChoices):
        HELD = "held", _("Held")
        RELEASED = "released", _("Released")
        REFUNDED = "refunded", _("Refunded")
        PARTIALLY_REFUNDED = "partially_refunded", _("Partially refunded")

    id = models.UUIDField(primary_key=True, editable=False)
    booking = models.OneToOneField(
        "bookings.Booking",
        on_delete=models.CASCADE,
        related_name="escrow",
    )
    payment_reference = models.CharField(max_length=128)
    amount_held = models.DecimalField(max_digits=12, decimal_places=2)
    amount_released = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    currency = models.CharField(max_length=3, default="USD")
    status = models.CharField(
        max_length=24,
        choices=Status.choices,
        default=Status.HELD,
    )
    pending_refund_key = models.CharField(max_length=128, blank=True)
    pending_refund_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    pending_refund_requested_at = models.DateTimeField(null=True, blank=True)
    release_due_at = models.DateTimeField(null=True, blank=True)
    released_at = models.DateTimeField(null=True, blank=True)
    version = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField()
    updated_at = models.DateTimeField()

    class Meta:
        verbose_name = _("Escrow record")
        verbose_name_plural = _("Escrow records")
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_held__gt=0),
                name="escrow_positive_hold",
            ),
            models.CheckConstraint(
                condition=models.Q(amount_released__lte=models.F("amount_held")),
                name="escrow_release_within_hold",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "release_due_at"]),
        ]

    def __str__(self) -> str:
        return f"Escrow {self.id} ({self.status})"


class EscrowRefund(models.Model):
    """Refund confirmed by the payment processor."""

    escrow = models.ForeignKey(EscrowRecord, on_delete=models.CASCADE, related_name="refunds")
    refund_id = models.CharField(max_length=128)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    idempotency_key = models.CharField(max_length=128, unique=True)
    refunded_at = models.DateTimeField()

    class Meta:
        ordering = ["refunded_at", "id"]

    def __str__(self) -> str:
        return f"Refund {self.refund_id} of {self.amount}"


class EscrowAuditEntry(models.Model):
    """Append-only audit line of an escrow record."""

    escrow = models.ForeignKey(EscrowRecord, on_delete=models.CASCADE, related_name="audit_entries")
    position = models.PositiveIntegerField()
    action = models.CharField(max_length=32)
    timestamp = models.DateTimeField()
    actor = models.CharField(max_length=64)
    detail = models.TextField(blank=True)

    class Meta:
        ordering = ["escrow", "position"]
        constraints = [
            models.UniqueConstraint(fields=["escrow", "position"], name="escrow_audit_position_unique"),
        ]

    def __str__(self) -> str:
        return f"{self.action} by {self.actor} at {self.timestamp:%Y-%m-%d %H:%M:%S}"
