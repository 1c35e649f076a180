"""
Dispute Domain Entities

- Dispute: Aggregate root for a claim against a booking's escrow
- DisputeStatus: Open -> Resolved (terminal, no reopen)
- Resolution: Outcome, set only when Resolved
- TimelineEntry: Append-only history of the dispute
- AdminAction: Audit record of an administrator's action
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List
from uuid import UUID, uuid4

from shared.domain.base import Aggregate, utcnow
from shared.domain.exceptions import InvalidStateError, InvariantViolation, ValidationError
from shared.domain.value_objects import Money


class DisputeStatus(Enum):
    OPEN = 'open'
    RESOLVED = 'resolved'


class Decision(Enum):
    APPROVE = 'approve'
    REFUND = 'refund'
    PARTIAL_REFUND = 'partial_refund'

    @property
    def moves_funds(self) -> bool:
        return self != Decision.APPROVE


@dataclass(frozen=True)
class Resolution:
    decision: Decision
    refund_amount: Money
    notes: str
    resolved_by: str
    resolved_at: datetime
    refund_id: str = ''


@dataclass(frozen=True)
class TimelineEntry:
    status: DisputeStatus
    timestamp: datetime
    detail: str = ''


@dataclass(frozen=True)
class AdminAction:
    """Immutable admin audit record, stored apart from the dispute"""
    dispute_id: UUID
    admin_id: str
    action: str
    details: str = ''
    type: str = 'dispute_resolution'
    timestamp: datetime = field(default_factory=utcnow)
    id: UUID = field(default_factory=uuid4)


@dataclass(eq=False, kw_only=True)
class Dispute(Aggregate):
    """
    Dispute Aggregate Root

    References its booking and escrow by id only; the dispute history
    outlives both.

    Invariants:
    - 0 < amount_in_question <= escrow amount held at creation
    - resolution.refund_amount <= amount_in_question
    - resolution is set exactly when status is RESOLVED
    - a Resolved dispute is never reopened or resolved again
    """

    booking_id: UUID
    escrow_id: UUID
    raised_by: str
    amount_in_question: Money
    details: str = ''
    status: DisputeStatus = DisputeStatus.OPEN
    resolution: Resolution | None = None
    resolution_attempts: int = 1
    timeline: List[TimelineEntry] = field(default_factory=list)

    @classmethod
    def open(
        cls,
        booking_id: UUID,
        escrow_id: UUID,
        raised_by: str,
        amount_in_question: Money,
        amount_held: Money,
        details: str = '',
        now: datetime | None = None,
    ) -> 'Dispute':
        """
        Open a dispute against a Held escrow

        Events: DisputeOpened
        """
        if not raised_by:
            raise ValidationError("raised_by is required")
        if amount_in_question.is_zero:
            raise ValidationError("Amount in question must be positive")
        if amount_in_question.currency != amount_held.currency:
            raise ValidationError(
                f"Dispute currency {amount_in_question.currency} does not match "
                f"escrow currency {amount_held.currency}"
            )
        if amount_in_question > amount_held:
            raise InvariantViolation(
                f"Amount in question {amount_in_question} exceeds held amount {amount_held}"
            )

        from apps.disputes.domain.events import DisputeOpened

        dispute = cls(
            booking_id=booking_id,
            escrow_id=escrow_id,
            raised_by=raised_by,
            amount_in_question=amount_in_question,
            details=details,
        )
        detail = f"Dispute opened by {raised_by} for {amount_in_question}"
        if details:
            detail += f": {details}"
        dispute.timeline.append(TimelineEntry(
            status=DisputeStatus.OPEN,
            timestamp=now or utcnow(),
            detail=detail,
        ))
        dispute.add_event(DisputeOpened(
            aggregate_id=dispute.id,
            dispute_id=dispute.id,
            booking_id=booking_id,
            escrow_id=escrow_id,
            raised_by=raised_by,
            amount_in_question=amount_in_question,
        ))
        return dispute

    @property
    def is_open(self) -> bool:
        return self.status == DisputeStatus.OPEN

    def ensure_open(self):
        if not self.is_open:
            raise InvalidStateError(
                f"Dispute {self.id} is already {self.status.value}"
            )

    def refund_amount_for(self, decision: Decision, refund_amount=None) -> Money:
        """
        Amount a decision moves back to the payer

        APPROVE: nothing; REFUND: the whole amount in question;
        PARTIAL_REFUND: 0 < refund_amount < amount_in_question.
        """
        currency = self.amount_in_question.currency
        if decision == Decision.APPROVE:
            return Money.zero(currency)
        if decision == Decision.REFUND:
            return self.amount_in_question

        if refund_amount is None:
            raise ValidationError("Partial refund requires a refund amount")
        if not isinstance(refund_amount, Money):
            refund_amount = Money(Decimal(str(refund_amount)), currency)
        if refund_amount.currency != currency:
            raise ValidationError(
                f"Refund currency {refund_amount.currency} does not match dispute currency {currency}"
            )
        if refund_amount.is_zero:
            raise ValidationError("Partial refund amount must be positive")
        if refund_amount > self.amount_in_question:
            raise InvariantViolation(
                f"Refund {refund_amount} exceeds amount in question {self.amount_in_question}"
            )
        if refund_amount == self.amount_in_question:
            raise ValidationError("Partial refund must be less than the amount in question; use REFUND")
        return refund_amount

    @property
    def refund_idempotency_key(self) -> str:
        """Stable across transient retries; advances only after a rejected attempt"""
        return f"{self._refund_key_prefix}{self.resolution_attempts}"

    def owns_refund_key(self, idempotency_key: str) -> bool:
        """True for the key of any resolution attempt of this dispute"""
        return idempotency_key.startswith(self._refund_key_prefix)

    @property
    def _refund_key_prefix(self) -> str:
        return f"dispute:{self.id}:resolution:"

    def resolve(
        self,
        decision: Decision,
        refund_amount: Money,
        notes: str,
        resolved_by: str,
        refund_id: str = '',
        now: datetime | None = None,
    ):
        """
        Resolve dispute (OPEN -> RESOLVED)

        Called only after any refund succeeded.
        Events: DisputeResolved
        """
        self.ensure_open()
        if not resolved_by:
            raise ValidationError("resolved_by is required")

        from apps.disputes.domain.events import DisputeResolved

        moment = now or utcnow()
        self.resolution = Resolution(
            decision=decision,
            refund_amount=refund_amount,
            notes=notes,
            resolved_by=resolved_by,
            resolved_at=moment,
            refund_id=refund_id,
        )
        self.status = DisputeStatus.RESOLVED
        detail = f"Resolved by {resolved_by}: {decision.value}"
        if not refund_amount.is_zero:
            detail += f", refunded {refund_amount}"
        self.timeline.append(TimelineEntry(status=self.status, timestamp=moment, detail=detail))
        self.touch()

        self.add_event(DisputeResolved(
            aggregate_id=self.id,
            dispute_id=self.id,
            booking_id=self.booking_id,
            escrow_id=self.escrow_id,
            decision=decision.value,
            refund_amount=refund_amount,
            resolved_by=resolved_by,
        ))

    def record_failed_attempt(self, error: Exception, retryable: bool, now: datetime | None = None):
        """Keep the dispute Open and note the failed resolution attempt"""
        self.ensure_open()
        detail = f"Resolution attempt {self.resolution_attempts} failed: {error}"
        if retryable:
            detail += " (pending retry)"
        else:
            self.resolution_attempts += 1
        self.timeline.append(TimelineEntry(
            status=DisputeStatus.OPEN,
            timestamp=now or utcnow(),
            detail=detail,
        ))
        self.touch()

    def __str__(self):
        return f"Dispute {self.id} ({self.status.value})"
