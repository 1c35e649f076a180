from datetime import datetime, timedelta, timezone

import pytest

from apps.payments.gateway import SandboxPaymentGateway
from config.bootstrap import bootstrap
from shared.application.uow import InMemoryStore
from shared.domain.exceptions import PaymentProcessorError

T0 = datetime(2030, 1, 7, 0, 0, tzinfo=timezone.utc)


def at(hours: float = 0, days: float = 0) -> datetime:
    """Timestamp relative to the fixed test epoch"""
    return T0 + timedelta(days=days, hours=hours)


@pytest.fixture
def gateway():
    return SandboxPaymentGateway()


@pytest.fixture
def store():
    return InMemoryStore(lock_timeout=5.0)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def engine(store, gateway, sleeps):
    return bootstrap(store=store, gateway=gateway, sleep=sleeps.append, backoff_seconds=0.5)


@pytest.fixture
def space(engine):
    return engine.register_space("owner-1", name="Lot A", hourly=10, daily=30, weekly=150, monthly=500)


@pytest.fixture
def confirmed_booking(engine, space):
    """Confirmed 10:00-14:00 booking on day 1, priced at 30.00"""
    booking = engine.request_booking(space.id, at(10, days=1), at(14, days=1), "driver-1", "car")
    return engine.confirm_booking(booking.id, now=at(0))


class FlakyGateway(SandboxPaymentGateway):
    """Sandbox gateway whose next `failures` refunds fail with `error`"""

    def __init__(self, failures: int = 0, error: Exception | None = None):
        super().__init__()
        self.failures = failures
        self.error = error

    def create_refund(self, payment_reference, amount, *, idempotency_key):
        if self.failures:
            self.failures -= 1
            self.calls.append(("refund_failed", idempotency_key))
            raise self.error or PaymentProcessorError("processor timeout")
        return super().create_refund(payment_reference, amount, idempotency_key=idempotency_key)


@pytest.fixture
def flaky_engine(store, sleeps):
    gateway = FlakyGateway()
    return bootstrap(store=store, gateway=gateway, sleep=sleeps.append, backoff_seconds=0.5)
