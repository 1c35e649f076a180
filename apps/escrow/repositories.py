"""
Escrow Repositories

The audit log and refund list are append-only: save() inserts the entries
the database does not have yet and never updates or deletes existing ones.
"""

from datetime import datetime
from typing import List
from uuid import UUID

from shared.domain.value_objects import Money
from shared.infrastructure.versioning import lock_queryset_if_possible, save_versioned

from apps.escrow.domain.entities import (
    AuditEntry,
    EscrowRecord,
    EscrowStatus,
    PendingRefund,
    RefundEntry,
)


class DjangoEscrowRepository:

    def __init__(self, uow):
        self.uow = uow

    def get(self, escrow_id: UUID, lock: bool = False) -> EscrowRecord | None:
        from apps.escrow.models import EscrowRecord as EscrowModel

        queryset = EscrowModel.objects.filter(id=escrow_id)
        if lock:
            queryset = lock_queryset_if_possible(queryset)
        model = queryset.first()
        return self._to_domain(model) if model else None

    def get_by_booking(self, booking_id: UUID) -> EscrowRecord | None:
        from apps.escrow.models import EscrowRecord as EscrowModel

        model = EscrowModel.objects.filter(booking_id=booking_id).first()
        return self._to_domain(model) if model else None

    def list_due_for_release(self, now: datetime) -> List[UUID]:
        from apps.escrow.models import EscrowRecord as EscrowModel

        return list(
            EscrowModel.objects.filter(
                status__in=[EscrowModel.Status.HELD, EscrowModel.Status.PARTIALLY_REFUNDED],
                release_due_at__isnull=False,
                release_due_at__lte=now,
            ).order_by('release_due_at').values_list('id', flat=True)
        )

    def save(self, escrow: EscrowRecord):
        from apps.escrow.models import EscrowAuditEntry, EscrowRecord as EscrowModel, EscrowRefund

        pending = escrow.pending_refund
        save_versioned(EscrowModel, escrow, {
            'booking_id': escrow.booking_id,
            'payment_reference': escrow.payment_reference,
            'amount_held': escrow.amount_held.amount,
            'amount_released': escrow.amount_released.amount,
            'currency': escrow.currency,
            'status': escrow.status.value,
            'pending_refund_key': pending.idempotency_key if pending else '',
            'pending_refund_amount': pending.amount.amount if pending else None,
            'pending_refund_requested_at': pending.requested_at if pending else None,
            'release_due_at': escrow.release_due_at,
            'released_at': escrow.released_at,
            'created_at': escrow.created_at,
            'updated_at': escrow.updated_at,
        })

        stored_refunds = EscrowRefund.objects.filter(escrow_id=escrow.id).count()
        EscrowRefund.objects.bulk_create([
            EscrowRefund(
                escrow_id=escrow.id,
                refund_id=refund.refund_id,
                amount=refund.amount.amount,
                idempotency_key=refund.idempotency_key,
                refunded_at=refund.refunded_at,
            )
            for refund in escrow.refunds[stored_refunds:]
        ])

        stored_entries = EscrowAuditEntry.objects.filter(escrow_id=escrow.id).count()
        EscrowAuditEntry.objects.bulk_create([
            EscrowAuditEntry(
                escrow_id=escrow.id,
                position=position,
                action=entry.action,
                timestamp=entry.timestamp,
                actor=entry.actor,
                detail=entry.detail,
            )
            for position, entry in enumerate(escrow.audit_log[stored_entries:], start=stored_entries)
        ])

    @staticmethod
    def _to_domain(model) -> EscrowRecord:
        currency = model.currency
        pending = None
        if model.pending_refund_key:
            pending = PendingRefund(
                idempotency_key=model.pending_refund_key,
                amount=Money(model.pending_refund_amount, currency),
                requested_at=model.pending_refund_requested_at,
            )
        return EscrowRecord(
            id=model.id,
            booking_id=model.booking_id,
            payment_reference=model.payment_reference,
            amount_held=Money(model.amount_held, currency),
            amount_released=Money(model.amount_released, currency),
            status=EscrowStatus(model.status),
            refunds=[
                RefundEntry(
                    refund_id=refund.refund_id,
                    amount=Money(refund.amount, currency),
                    idempotency_key=refund.idempotency_key,
                    refunded_at=refund.refunded_at,
                )
                for refund in model.refunds.order_by('refunded_at', 'id')
            ],
            pending_refund=pending,
            release_due_at=model.release_due_at,
            released_at=model.released_at,
            audit_log=[
                AuditEntry(
                    action=entry.action,
                    timestamp=entry.timestamp,
                    actor=entry.actor,
                    detail=entry.detail,
                )
                for entry in model.audit_entries.order_by('position')
            ],
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


class InMemoryEscrowRepository:
    collection = 'escrows'

    def __init__(self, uow):
        self.uow = uow

    def get(self, escrow_id: UUID, lock: bool = False) -> EscrowRecord | None:
        if lock:
            self.uow.lock((self.collection, escrow_id))
        return self.uow.get(self.collection, escrow_id)

    def get_by_booking(self, booking_id: UUID) -> EscrowRecord | None:
        for escrow in self.uow.scan(self.collection):
            if escrow.booking_id == booking_id:
                return escrow
        return None

    def list_due_for_release(self, now: datetime) -> List[UUID]:
        due = [
            escrow for escrow in self.uow.scan(self.collection)
            if escrow.status in (EscrowStatus.HELD, EscrowStatus.PARTIALLY_REFUNDED)
            and escrow.release_due_at is not None
            and escrow.release_due_at <= now
        ]
        return [e.id for e in sorted(due, key=lambda e: e.release_due_at)]

    def save(self, escrow: EscrowRecord):
        self.uow.stage(self.collection, escrow.id, escrow)
