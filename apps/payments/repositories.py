"""Refund record repositories, keyed by idempotency key."""

from shared.domain.value_objects import Money
from shared.infrastructure.versioning import lock_queryset_if_possible, save_versioned

from apps.payments.domain.entities import RefundRecord, RefundStatus


class DjangoRefundRepository:

    def __init__(self, uow):
        self.uow = uow

    def get(self, idempotency_key: str, lock: bool = False) -> RefundRecord | None:
        from apps.payments.models import RefundRecord as RefundModel

        queryset = RefundModel.objects.filter(idempotency_key=idempotency_key)
        if lock:
            queryset = lock_queryset_if_possible(queryset)
        model = queryset.first()
        if model is None:
            return None
        return RefundRecord(
            id=model.id,
            idempotency_key=model.idempotency_key,
            payment_reference=model.payment_reference,
            amount=Money(model.amount, model.currency),
            status=RefundStatus(model.status),
            refund_id=model.refund_id,
            external_status=model.external_status,
            attempts=model.attempts,
            last_error=model.last_error,
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def save(self, record: RefundRecord):
        from apps.payments.models import RefundRecord as RefundModel

        save_versioned(RefundModel, record, {
            'idempotency_key': record.idempotency_key,
            'payment_reference': record.payment_reference,
            'amount': record.amount.amount,
            'currency': record.amount.currency,
            'status': record.status.value,
            'refund_id': record.refund_id,
            'external_status': record.external_status,
            'attempts': record.attempts,
            'last_error': record.last_error,
            'created_at': record.created_at,
            'updated_at': record.updated_at,
        })


class InMemoryRefundRepository:
    collection = 'refunds'

    def __init__(self, uow):
        self.uow = uow

    def get(self, idempotency_key: str, lock: bool = False) -> RefundRecord | None:
        if lock:
            self.uow.lock((self.collection, idempotency_key))
        return self.uow.get(self.collection, idempotency_key)

    def save(self, record: RefundRecord):
        self.uow.stage(self.collection, record.idempotency_key, record)
