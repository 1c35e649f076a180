import random
import threading
from datetime import timedelta
from decimal import Decimal

import pytest

from apps.bookings.application.command_handlers import CancellationPolicy
from apps.bookings.domain.entities import BookingStatus
from apps.bookings.domain.events import BookingConfirmed
from apps.escrow.domain.entities import AuditAction, EscrowStatus
from apps.escrow.domain.events import EscrowHeld
from apps.payments.gateway import SandboxPaymentGateway
from config.bootstrap import bootstrap
from conftest import FlakyGateway, at
from shared.domain.exceptions import (
    AlreadyProcessedError,
    ConflictError,
    InvalidRequest,
    InvalidStateError,
    NotFoundError,
    RefundPendingRetry,
    ValidationError,
)
from shared.domain.value_objects import Money


def request(engine, space, start_hour, end_hour, requester="driver-1"):
    return engine.request_booking(space.id, at(start_hour, days=1), at(end_hour, days=1), requester, "car")


def escrow_of(engine, booking):
    return engine.get_escrow(engine.get_booking(booking.id).escrow_id)


# ===== requestBooking =====

def test_request_prices_the_interval_and_stays_pending(engine, space):
    booking = request(engine, space, 10, 14)

    assert booking.status == BookingStatus.PENDING
    assert booking.total_price == Money(Decimal("30.00"), "USD")
    assert booking.owner_id == "owner-1"
    assert booking.escrow_id is None


def test_request_unknown_space(engine):
    from uuid import uuid4

    with pytest.raises(NotFoundError):
        engine.request_booking(uuid4(), at(10), at(12), "driver-1", "car")


def test_request_inactive_space(engine, space):
    with engine.uow_factory() as uow:
        stored = uow.spaces.get(space.id)
        stored.is_active = False
        uow.spaces.save(stored)

    with pytest.raises(ValidationError):
        request(engine, space, 10, 12)


def test_request_rejects_bad_interval(engine, space):
    with pytest.raises(ValidationError):
        request(engine, space, 14, 10)


def test_pending_bookings_do_not_block_each_other(engine, space):
    first = request(engine, space, 10, 14, "driver-1")
    second = request(engine, space, 12, 16, "driver-2")

    assert first.status == second.status == BookingStatus.PENDING


def test_request_over_a_confirmed_booking_conflicts(engine, space, confirmed_booking):
    with pytest.raises(ConflictError) as exc_info:
        request(engine, space, 12, 16, "driver-2")

    assert exc_info.value.conflicting_ids == (confirmed_booking.id,)


# ===== confirmBooking =====

def test_confirm_holds_escrow(engine, space, gateway):
    booking = request(engine, space, 10, 14)

    confirmed = engine.confirm_booking(booking.id, now=at(0))

    assert confirmed.status == BookingStatus.CONFIRMED
    escrow = engine.get_escrow(confirmed.escrow_id)
    assert escrow.booking_id == booking.id
    assert escrow.status == EscrowStatus.HELD
    assert escrow.amount_held == Money(Decimal("30.00"))
    assert escrow.payment_reference == confirmed.payment_reference
    assert [entry.action for entry in escrow.audit_log] == [AuditAction.HELD]
    assert ("authorize", f"booking:{booking.id}:authorize") in gateway.calls
    published = [type(event) for event in engine.published]
    assert BookingConfirmed in published
    assert EscrowHeld in published


def test_confirm_twice_is_already_processed(engine, confirmed_booking):
    with pytest.raises(AlreadyProcessedError):
        engine.confirm_booking(confirmed_booking.id)


def test_confirm_cancelled_booking_creates_no_escrow(engine, space):
    booking = request(engine, space, 10, 14)
    engine.cancel_booking(booking.id, "changed plans", "driver-1", now=at(0))

    with pytest.raises(InvalidStateError):
        engine.confirm_booking(booking.id)

    with engine.uow_factory() as uow:
        assert uow.escrows.get_by_booking(booking.id) is None


def test_confirm_loses_to_an_overlapping_confirmation(engine, space):
    first = request(engine, space, 10, 14, "driver-1")
    second = request(engine, space, 13, 15, "driver-2")
    engine.confirm_booking(first.id)

    with pytest.raises(ConflictError):
        engine.confirm_booking(second.id)

    assert engine.get_booking(second.id).status == BookingStatus.PENDING
    with engine.uow_factory() as uow:
        assert uow.escrows.get_by_booking(second.id) is None


def test_adjacent_bookings_can_both_be_confirmed(engine, space):
    first = request(engine, space, 10, 14)
    second = request(engine, space, 14, 18, "driver-2")

    engine.confirm_booking(first.id)
    engine.confirm_booking(second.id)

    assert engine.get_booking(second.id).status == BookingStatus.CONFIRMED


def test_failed_authorization_leaves_booking_pending(store, space):
    class DecliningGateway(SandboxPaymentGateway):
        def authorize(self, amount, payer_reference, *, idempotency_key):
            raise InvalidRequest("card declined")

    engine = bootstrap(store=store, gateway=DecliningGateway())
    booking = request(engine, space, 10, 14)

    with pytest.raises(InvalidRequest):
        engine.confirm_booking(booking.id)

    assert engine.get_booking(booking.id).status == BookingStatus.PENDING
    with engine.uow_factory() as uow:
        assert uow.escrows.get_by_booking(booking.id) is None


def test_simultaneous_confirmations_exactly_one_wins(engine, space):
    first = request(engine, space, 10, 14, "driver-1")
    second = request(engine, space, 12, 16, "driver-2")
    barrier = threading.Barrier(2)
    outcomes = {}

    def confirm(booking):
        barrier.wait()
        try:
            engine.confirm_booking(booking.id)
            outcomes[booking.id] = "confirmed"
        except ConflictError:
            outcomes[booking.id] = "conflict"

    threads = [threading.Thread(target=confirm, args=(b,)) for b in (first, second)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert sorted(outcomes.values()) == ["confirmed", "conflict"]


def test_concurrent_random_confirmations_never_overlap(engine, space):
    rng = random.Random(42)
    bookings = []
    for n in range(12):
        start = rng.randrange(0, 40)
        length = rng.randrange(1, 8)
        bookings.append(engine.request_booking(
            space.id, at(start), at(start + length), f"driver-{n}", "car",
        ))

    def confirm(booking):
        try:
            engine.confirm_booking(booking.id)
        except ConflictError:
            pass

    threads = [threading.Thread(target=confirm, args=(b,)) for b in bookings]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    confirmed = [
        b for b in (engine.get_booking(b.id) for b in bookings)
        if b.status == BookingStatus.CONFIRMED
    ]
    assert confirmed
    for i, a in enumerate(confirmed):
        for b in confirmed[i + 1:]:
            assert not a.interval.overlaps_with(b.interval)


# ===== cancelBooking =====

def test_cancel_before_start_refunds_in_full(engine, gateway, confirmed_booking):
    cancelled = engine.cancel_booking(confirmed_booking.id, "plans changed", "driver-1", now=at(1))

    assert cancelled.status == BookingStatus.CANCELLED
    escrow = escrow_of(engine, confirmed_booking)
    assert escrow.status == EscrowStatus.REFUNDED
    assert escrow.amount_refunded == Money(Decimal("30.00"))
    assert escrow.remaining.is_zero
    assert gateway.refunded_total(escrow.payment_reference) == Decimal("30.00")


def test_cancel_after_start_releases_to_owner(engine, gateway, confirmed_booking):
    cancelled = engine.cancel_booking(confirmed_booking.id, "left early", "driver-1", now=at(11, days=1))

    assert cancelled.status == BookingStatus.CANCELLED
    escrow = escrow_of(engine, confirmed_booking)
    assert escrow.status == EscrowStatus.RELEASED
    assert escrow.amount_released == Money(Decimal("30.00"))
    assert escrow.refunds == []


def test_cancellation_policy_splits_refund_and_release(store, gateway, space):
    engine = bootstrap(
        store=store, gateway=gateway,
        policy=CancellationPolicy(refund_before_start=Decimal("1"), refund_after_start=Decimal("0.5")),
    )
    booking = engine.confirm_booking(request(engine, space, 10, 14).id)

    engine.cancel_booking(booking.id, "left early", "driver-1", now=at(12, days=1))

    escrow = escrow_of(engine, booking)
    assert escrow.amount_refunded == Money(Decimal("15.00"))
    assert escrow.amount_released == Money(Decimal("15.00"))
    assert escrow.status == EscrowStatus.RELEASED


def test_cancellation_policy_rejects_out_of_range_share():
    with pytest.raises(ValidationError):
        CancellationPolicy(refund_before_start=Decimal("1.5"))


def test_cancel_after_end_is_rejected(engine, confirmed_booking):
    with pytest.raises(InvalidStateError):
        engine.cancel_booking(confirmed_booking.id, "too late", "driver-1", now=at(15, days=1))


def test_cancel_with_open_dispute_is_rejected(engine, confirmed_booking):
    engine.open_dispute(confirmed_booking.id, "driver-1", Decimal("30"), "spot was blocked")

    with pytest.raises(InvalidStateError):
        engine.cancel_booking(confirmed_booking.id, "give up", "driver-1", now=at(1))


def test_dispute_opened_during_cancellation_keeps_funds_held(engine, gateway, confirmed_booking, monkeypatch):
    refund = engine.ledger.refund
    opened = []

    def refund_after_dispute_opens(*args, **kwargs):
        opened.append(engine.open_dispute(confirmed_booking.id, "owner-1", Decimal("30")))
        return refund(*args, **kwargs)

    monkeypatch.setattr(engine.ledger, "refund", refund_after_dispute_opens)

    with pytest.raises(InvalidStateError):
        engine.cancel_booking(confirmed_booking.id, "plans changed", "driver-1", now=at(0))

    escrow = engine.get_escrow(confirmed_booking.escrow_id)
    assert escrow.status == EscrowStatus.HELD
    assert escrow.pending_refund is None
    assert not [call for call in gateway.calls if call[0] == "refund"]
    assert engine.get_booking(confirmed_booking.id).status == BookingStatus.CONFIRMED

    monkeypatch.undo()
    engine.resolve_dispute(opened[0].id, "refund", "admin-1")

    assert engine.get_escrow(confirmed_booking.escrow_id).status == EscrowStatus.REFUNDED


def test_cancel_pending_retry_keeps_booking_confirmed(flaky_engine, sleeps):
    space = flaky_engine.register_space("owner-1", hourly=10, daily=30)
    booking = flaky_engine.confirm_booking(request(flaky_engine, space, 10, 14).id)
    flaky_engine.gateway.failures = 3

    with pytest.raises(RefundPendingRetry):
        flaky_engine.cancel_booking(booking.id, "plans changed", "driver-1", now=at(1))

    assert sleeps == [0.5, 1.0]
    assert flaky_engine.get_booking(booking.id).status == BookingStatus.CONFIRMED
    escrow = escrow_of(flaky_engine, booking)
    assert escrow.pending_refund.idempotency_key == f"booking:{booking.id}:cancel"
    assert escrow.audit_log[-1].action == AuditAction.REFUND_FAILED

    cancelled = flaky_engine.cancel_booking(booking.id, "plans changed", "driver-1", now=at(2))

    assert cancelled.status == BookingStatus.CANCELLED
    escrow = escrow_of(flaky_engine, booking)
    assert escrow.status == EscrowStatus.REFUNDED
    assert len(escrow.refunds) == 1


# ===== completeBooking =====

def test_complete_releases_escrow(engine, confirmed_booking):
    completed = engine.complete_booking(confirmed_booking.id, now=at(14, days=1))

    assert completed.status == BookingStatus.COMPLETED
    escrow = escrow_of(engine, confirmed_booking)
    assert escrow.status == EscrowStatus.RELEASED
    assert escrow.amount_released == Money(Decimal("30.00"))


def test_complete_before_end_is_rejected(engine, confirmed_booking):
    with pytest.raises(InvalidStateError):
        engine.complete_booking(confirmed_booking.id, now=at(13, days=1))


def test_complete_with_open_dispute_is_rejected(engine, confirmed_booking):
    engine.open_dispute(confirmed_booking.id, "driver-1", Decimal("10"))

    with pytest.raises(InvalidStateError):
        engine.complete_booking(confirmed_booking.id, now=at(15, days=1))

    assert engine.get_booking(confirmed_booking.id).status == BookingStatus.CONFIRMED


def test_release_hold_window(store, gateway, space):
    engine = bootstrap(store=store, gateway=gateway, release_hold_days=2)
    booking = engine.confirm_booking(request(engine, space, 10, 14).id)
    end = at(14, days=1)

    engine.complete_booking(booking.id, now=end)

    escrow = escrow_of(engine, booking)
    assert escrow.status == EscrowStatus.HELD
    assert escrow.release_due_at == end + timedelta(days=2)

    assert engine.release_due_escrows(now=end + timedelta(days=1)) == []
    assert engine.release_due_escrows(now=end + timedelta(days=2)) == [escrow.id]
    assert escrow_of(engine, booking).status == EscrowStatus.RELEASED


def test_complete_finished_bookings_skips_disputed(engine, space):
    plain = engine.confirm_booking(request(engine, space, 10, 12).id)
    disputed = engine.confirm_booking(request(engine, space, 12, 14, "driver-2").id)
    later = engine.confirm_booking(request(engine, space, 20, 22, "driver-3").id)
    engine.open_dispute(disputed.id, "driver-2", Decimal("5"))

    completed = engine.complete_finished_bookings(now=at(15, days=1))

    assert completed == [plain.id]
    assert engine.get_booking(disputed.id).status == BookingStatus.CONFIRMED
    assert engine.get_booking(later.id).status == BookingStatus.CONFIRMED
