"""
Dispute Repositories

Timeline entries and admin actions are insert-only.
"""

from typing import List
from uuid import UUID

from shared.domain.value_objects import Money
from shared.infrastructure.versioning import lock_queryset_if_possible, save_versioned

from apps.disputes.domain.entities import (
    AdminAction,
    Decision,
    Dispute,
    DisputeStatus,
    Resolution,
    TimelineEntry,
)


class DjangoDisputeRepository:

    def __init__(self, uow):
        self.uow = uow

    def get(self, dispute_id: UUID, lock: bool = False) -> Dispute | None:
        from apps.disputes.models import Dispute as DisputeModel

        queryset = DisputeModel.objects.filter(id=dispute_id)
        if lock:
            queryset = lock_queryset_if_possible(queryset)
        model = queryset.first()
        return self._to_domain(model) if model else None

    def get_open_for_escrow(self, escrow_id: UUID) -> Dispute | None:
        from apps.disputes.models import Dispute as DisputeModel

        model = DisputeModel.objects.filter(escrow_id=escrow_id, status=DisputeModel.Status.OPEN).first()
        return self._to_domain(model) if model else None

    def save(self, dispute: Dispute):
        from apps.disputes.models import Dispute as DisputeModel, DisputeTimelineEntry

        resolution = dispute.resolution
        save_versioned(DisputeModel, dispute, {
            'booking_id': dispute.booking_id,
            'escrow_id': dispute.escrow_id,
            'raised_by': dispute.raised_by,
            'amount_in_question': dispute.amount_in_question.amount,
            'currency': dispute.amount_in_question.currency,
            'details': dispute.details,
            'status': dispute.status.value,
            'decision': resolution.decision.value if resolution else '',
            'refund_amount': resolution.refund_amount.amount if resolution else None,
            'resolution_notes': resolution.notes if resolution else '',
            'resolved_by': resolution.resolved_by if resolution else '',
            'resolved_at': resolution.resolved_at if resolution else None,
            'refund_id': resolution.refund_id if resolution else '',
            'resolution_attempts': dispute.resolution_attempts,
            'created_at': dispute.created_at,
            'updated_at': dispute.updated_at,
        })

        stored = DisputeTimelineEntry.objects.filter(dispute_id=dispute.id).count()
        DisputeTimelineEntry.objects.bulk_create([
            DisputeTimelineEntry(
                dispute_id=dispute.id,
                position=position,
                status=entry.status.value,
                timestamp=entry.timestamp,
                detail=entry.detail,
            )
            for position, entry in enumerate(dispute.timeline[stored:], start=stored)
        ])

    def add_admin_action(self, action: AdminAction):
        from apps.disputes.models import AdminAction as AdminActionModel

        AdminActionModel.objects.create(
            id=action.id,
            type=action.type,
            dispute_id=action.dispute_id,
            admin_id=action.admin_id,
            action=action.action,
            details=action.details,
            timestamp=action.timestamp,
        )

    def list_admin_actions(self, dispute_id: UUID) -> List[AdminAction]:
        from apps.disputes.models import AdminAction as AdminActionModel

        return [
            AdminAction(
                id=model.id,
                type=model.type,
                dispute_id=model.dispute_id,
                admin_id=model.admin_id,
                action=model.action,
                details=model.details,
                timestamp=model.timestamp,
            )
            for model in AdminActionModel.objects.filter(dispute_id=dispute_id).order_by('timestamp')
        ]

    @staticmethod
    def _to_domain(model) -> Dispute:
        currency = model.currency
        resolution = None
        if model.status == DisputeStatus.RESOLVED.value:
            resolution = Resolution(
                decision=Decision(model.decision),
                refund_amount=Money(model.refund_amount or 0, currency),
                notes=model.resolution_notes,
                resolved_by=model.resolved_by,
                resolved_at=model.resolved_at,
                refund_id=model.refund_id,
            )
        return Dispute(
            id=model.id,
            booking_id=model.booking_id,
            escrow_id=model.escrow_id,
            raised_by=model.raised_by,
            amount_in_question=Money(model.amount_in_question, currency),
            details=model.details,
            status=DisputeStatus(model.status),
            resolution=resolution,
            resolution_attempts=model.resolution_attempts,
            timeline=[
                TimelineEntry(
                    status=DisputeStatus(entry.status),
                    timestamp=entry.timestamp,
                    detail=entry.detail,
                )
                for entry in model.timeline_entries.order_by('position')
            ],
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


class InMemoryDisputeRepository:
    collection = 'disputes'
    actions_collection = 'admin_actions'

    def __init__(self, uow):
        self.uow = uow

    def get(self, dispute_id: UUID, lock: bool = False) -> Dispute | None:
        if lock:
            self.uow.lock((self.collection, dispute_id))
        return self.uow.get(self.collection, dispute_id)

    def get_open_for_escrow(self, escrow_id: UUID) -> Dispute | None:
        for dispute in self.uow.scan(self.collection):
            if dispute.escrow_id == escrow_id and dispute.status == DisputeStatus.OPEN:
                return dispute
        return None

    def save(self, dispute: Dispute):
        self.uow.stage(self.collection, dispute.id, dispute)

    def add_admin_action(self, action: AdminAction):
        self.uow.stage(self.actions_collection, action.id, action)

    def list_admin_actions(self, dispute_id: UUID) -> List[AdminAction]:
        actions = [a for a in self.uow.scan(self.actions_collection) if a.dispute_id == dispute_id]
        return sorted(actions, key=lambda a: a.timestamp)
