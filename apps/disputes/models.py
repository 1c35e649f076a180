"""Dispute persistence models.

Disputes reference bookings and escrow records by id only, so deleting a
booking leaves the dispute history intact.
"""

from __future__ import annotations

from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class Dispute(models.Model):
    class Status(models.TextChoices):
        OPEN = "open", _("Open")
        RESOLVED = "resolved", _("Resolved")

    class Decision(models.TextChoices):
        APPROVE = "approve", _("Approve")
        REFUND = "refund", _("Refund")
        PARTIAL_REFUND = "partial_refund", _("Partial refund")

    id = models.UUIDField(primary_key=True, editable=False)
    booking_id = models.UUIDField(db_index=True)
    escrow_id = models.UUIDField(db_index=True)
    raised_by = models.CharField(max_length=64)
    amount_in_question = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default="USD")
    details = models.TextField(blank=True)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.OPEN)
    decision = models.CharField(max_length=16, choices=Decision.choices, blank=True)
    refund_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    resolution_notes = models.TextField(blank=True)
    resolved_by = models.CharField(max_length=64, blank=True)
    resolved_at = models.DateTimeField(null=True, blank=True)
    refund_id = models.CharField(max_length=128, blank=True)
    resolution_attempts = models.PositiveSmallIntegerField(default=1)
    version = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField()
    updated_at = models.DateTimeField()

    class Meta:
        verbose_name = _("Dispute")
        verbose_name_plural = _("Disputes")
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["escrow_id"],
                condition=models.Q(status="open"),
                name="one_open_dispute_per_escrow",
            ),
            models.CheckConstraint(
                condition=models.Q(refund_amount__isnull=True)
                | models.Q(refund_amount__lte=models.F("amount_in_question")),
                name="dispute_refund_within_amount",
            ),
        ]

    def __str__(self) -> str:
        return f"Dispute {self.id} ({self.status})"


class DisputeTimelineEntry(models.Model):
    dispute = models.ForeignKey(Dispute, on_delete=models.PROTECT, related_name="timeline_entries")
    position = models.PositiveIntegerField()
    status = models.CharField(max_length=16, choices=Dispute.Status.choices)
    timestamp = models.DateTimeField()
    detail = models.TextField(blank=True)

    class Meta:
        ordering = ["dispute", "position"]
        constraints = [
            models.UniqueConstraint(fields=["dispute", "position"], name="dispute_timeline_position_unique"),
        ]


class AdminAction(models.Model):
    """Administrator audit trail."""

    id = models.UUIDField(primary_key=True, editable=False)
    type = models.CharField(max_length=32)
    dispute_id = models.UUIDField(db_index=True)
    admin_id = models.CharField(max_length=64)
    action = models.CharField(max_length=64)
    details = models.TextField(blank=True)
    timestamp = models.DateTimeField()

    class Meta:
        ordering = ["timestamp"]

    def __str__(self) -> str:
        return f"{self.action} by {self.admin_id}"
