"""Dispute workflow against the Django ORM unit of work."""

from decimal import Decimal
from uuid import uuid4

import pytest
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.disputes.domain.entities import Decision, DisputeStatus
from apps.disputes.models import AdminAction as AdminActionModel, Dispute as DisputeModel
from apps.escrow.domain.entities import EscrowStatus
from apps.payments.gateway import SandboxPaymentGateway
from config.bootstrap import bootstrap
from conftest import at
from shared.domain.exceptions import InvalidStateError

pytestmark = pytest.mark.django_db(transaction=True)


@pytest.fixture
def django_engine(sleeps):
    return bootstrap(gateway=SandboxPaymentGateway(), sleep=sleeps.append)


@pytest.fixture
def db_booking(django_engine):
    space = django_engine.register_space("owner-1", hourly=10, daily=30)
    booking = django_engine.request_booking(space.id, at(10, days=1), at(14, days=1), "driver-1", "car")
    return django_engine.confirm_booking(booking.id)


def test_partial_refund_resolution(django_engine, db_booking):
    dispute = django_engine.open_dispute(db_booking.id, "driver-1", Decimal("30"), details="Blocked in")

    django_engine.resolve_dispute(
        dispute.id, Decision.PARTIAL_REFUND, "admin-1", notes="Partial", refund_amount=Decimal("10"),
    )

    stored = django_engine.get_dispute(dispute.id)
    assert stored.status == DisputeStatus.RESOLVED
    assert stored.resolution.refund_amount.amount == Decimal("10.00")
    assert [entry.status for entry in stored.timeline] == [DisputeStatus.OPEN, DisputeStatus.RESOLVED]

    escrow = django_engine.get_escrow(db_booking.escrow_id)
    assert escrow.status == EscrowStatus.PARTIALLY_REFUNDED
    assert escrow.remaining.amount == Decimal("20.00")

    assert list(AdminActionModel.objects.filter(dispute_id=dispute.id).values_list("action", flat=True)) == [
        "dispute_resolved",
    ]


def test_resolved_dispute_cannot_be_resolved_again(django_engine, db_booking):
    dispute = django_engine.open_dispute(db_booking.id, "driver-1", Decimal("30"))
    django_engine.resolve_dispute(dispute.id, Decision.APPROVE, "admin-1")

    with pytest.raises(InvalidStateError):
        django_engine.resolve_dispute(dispute.id, Decision.REFUND, "admin-2")

    assert django_engine.get_escrow(db_booking.escrow_id).refunds == []


def test_database_allows_one_open_dispute_per_escrow(django_engine, db_booking):
    dispute = django_engine.open_dispute(db_booking.id, "driver-1", Decimal("10"))
    row = DisputeModel.objects.get(id=dispute.id)
    now = timezone.now()

    with pytest.raises(IntegrityError):
        with transaction.atomic():
            DisputeModel.objects.create(
                id=uuid4(),
                booking_id=row.booking_id,
                escrow_id=row.escrow_id,
                raised_by="owner-1",
                amount_in_question=Decimal("5"),
                created_at=now,
                updated_at=now,
            )


def test_resolved_dispute_frees_the_escrow_for_a_new_one(django_engine, db_booking):
    first = django_engine.open_dispute(db_booking.id, "driver-1", Decimal("10"))
    django_engine.resolve_dispute(first.id, Decision.APPROVE, "admin-1")

    second = django_engine.open_dispute(db_booking.id, "owner-1", Decimal("5"))

    assert second.id != first.id
    assert DisputeModel.objects.filter(escrow_id=db_booking.escrow_id).count() == 2
