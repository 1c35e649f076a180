from decimal import Decimal

import pytest

from apps.payments.domain.entities import RefundStatus
from apps.payments.gateway import SandboxPaymentGateway
from apps.payments.refunds import RefundExecutor
from apps.payments.repositories import InMemoryRefundRepository
from conftest import FlakyGateway
from shared.application.message_bus import MessageBus
from shared.application.uow import InMemoryStore, InMemoryUnitOfWork
from shared.domain.exceptions import InvalidRequest, InvariantViolation, RefundPendingRetry
from shared.domain.value_objects import Money

AMOUNT = Money(Decimal("10"))


@pytest.fixture
def uow_factory():
    store = InMemoryStore()
    bus = MessageBus()
    return lambda: InMemoryUnitOfWork(store, {'refunds': InMemoryRefundRepository}, bus)


@pytest.fixture
def flaky():
    gateway = FlakyGateway()
    gateway.reference = gateway.authorize(Money(Decimal("30")), "driver-1", idempotency_key="auth")
    return gateway


def make_executor(uow_factory, gateway, sleeps, max_attempts=3):
    return RefundExecutor(uow_factory, gateway, max_attempts=max_attempts, backoff_seconds=0.25, sleep=sleeps.append)


def stored(uow_factory, key):
    with uow_factory() as uow:
        return uow.refunds.get(key)


def test_success_stores_refund_id(uow_factory, flaky):
    executor = make_executor(uow_factory, flaky, [])

    result = executor.execute_refund(flaky.reference, AMOUNT, "k1")

    record = stored(uow_factory, "k1")
    assert record.status == RefundStatus.SUCCEEDED
    assert record.refund_id == result.id
    assert record.attempts == 1


def test_repeat_returns_stored_result_without_calling_out(uow_factory, flaky):
    executor = make_executor(uow_factory, flaky, [])
    first = executor.execute_refund(flaky.reference, AMOUNT, "k1")
    calls = len(flaky.calls)

    second = executor.execute_refund(flaky.reference, AMOUNT, "k1")

    assert second == first
    assert len(flaky.calls) == calls


def test_transient_failures_back_off_exponentially(uow_factory, flaky):
    sleeps = []
    flaky.failures = 2
    executor = make_executor(uow_factory, flaky, sleeps, max_attempts=4)

    executor.execute_refund(flaky.reference, AMOUNT, "k1")

    assert sleeps == [0.25, 0.5]
    assert stored(uow_factory, "k1").attempts == 3
    assert flaky.refunded_total(flaky.reference) == Decimal("10")


def test_exhausted_retries_leave_record_requested(uow_factory, flaky):
    sleeps = []
    flaky.failures = 5
    executor = make_executor(uow_factory, flaky, sleeps)

    with pytest.raises(RefundPendingRetry) as exc_info:
        executor.execute_refund(flaky.reference, AMOUNT, "k1")

    assert exc_info.value.idempotency_key == "k1"
    assert exc_info.value.attempts == 3
    record = stored(uow_factory, "k1")
    assert record.status == RefundStatus.REQUESTED
    assert record.last_error == "processor timeout"

    flaky.failures = 0
    executor.execute_refund(flaky.reference, AMOUNT, "k1")
    assert stored(uow_factory, "k1").status == RefundStatus.SUCCEEDED


def test_rejection_is_final(uow_factory, flaky):
    sleeps = []
    flaky.failures = 1
    flaky.error = InvalidRequest("charge was disputed")
    executor = make_executor(uow_factory, flaky, sleeps)

    with pytest.raises(InvalidRequest):
        executor.execute_refund(flaky.reference, AMOUNT, "k1")
    assert sleeps == []
    assert stored(uow_factory, "k1").status == RefundStatus.FAILED

    with pytest.raises(InvalidRequest):
        executor.execute_refund(flaky.reference, AMOUNT, "k1")
    assert [call for call in flaky.calls if call[0] == "refund"] == []


def test_key_reused_for_different_refund(uow_factory, flaky):
    executor = make_executor(uow_factory, flaky, [])
    executor.execute_refund(flaky.reference, AMOUNT, "k1")

    with pytest.raises(InvariantViolation):
        executor.execute_refund(flaky.reference, Money(Decimal("11")), "k1")


def test_max_attempts_must_be_positive(uow_factory):
    with pytest.raises(ValueError):
        RefundExecutor(uow_factory, SandboxPaymentGateway(), max_attempts=0)
