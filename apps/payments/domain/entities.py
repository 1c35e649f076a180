"""
Payment Domain Entities

- RefundResult: What the payment processor answered for a refund
- RefundRecord: Local record of one refund, keyed by its idempotency key

The record is written (status REQUESTED) before the first external call
and updated with the processor's refund id once it succeeds, so a retry
with the same key never issues a second refund.
"""

from dataclasses import dataclass
from enum import Enum

from shared.domain.base import Aggregate
from shared.domain.exceptions import InvariantViolation
from shared.domain.value_objects import Money


class RefundStatus(Enum):
    REQUESTED = 'requested'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'


@dataclass(frozen=True)
class RefundResult:
    id: str
    status: str


@dataclass(eq=False, kw_only=True)
class RefundRecord(Aggregate):
    idempotency_key: str
    payment_reference: str
    amount: Money
    status: RefundStatus = RefundStatus.REQUESTED
    refund_id: str = ''
    external_status: str = ''
    attempts: int = 0
    last_error: str = ''

    def ensure_matches(self, payment_reference: str, amount: Money):
        """The same key must always describe the same refund"""
        if self.payment_reference != payment_reference or self.amount != amount:
            raise InvariantViolation(
                f"Idempotency key {self.idempotency_key} was used for "
                f"{self.amount} on {self.payment_reference}, not {amount} on {payment_reference}"
            )

    def record_attempt_failure(self, error: str):
        self.attempts += 1
        self.last_error = error
        self.touch()

    def mark_succeeded(self, result: RefundResult):
        self.attempts += 1
        self.status = RefundStatus.SUCCEEDED
        self.refund_id = result.id
        self.external_status = result.status
        self.last_error = ''
        self.touch()

    def mark_failed(self, error: str):
        self.attempts += 1
        self.status = RefundStatus.FAILED
        self.last_error = error
        self.touch()

    @property
    def result(self) -> RefundResult | None:
        if self.status != RefundStatus.SUCCEEDED:
            return None
        return RefundResult(id=self.refund_id, status=self.external_status)
