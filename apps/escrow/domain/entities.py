"""
Escrow Domain Entities

- EscrowRecord: Per-booking fund hold, 1:1 with a Confirmed booking
- EscrowStatus: Held -> Released | Refunded | PartiallyRefunded
- AuditEntry: Append-only audit log line

Ledger invariant:
    amount_held - sum(refunds) - amount_released >= 0 at all times
Released and Refunded are mutually exclusive terminal states.
PartiallyRefunded may move on to Refunded (or Released for the rest) but
never back to Held.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List
from uuid import UUID

from shared.domain.base import Aggregate, utcnow
from shared.domain.exceptions import InvalidStateError, InvariantViolation, ValidationError
from shared.domain.value_objects import Money


class EscrowStatus(Enum):
    HELD = 'held'
    RELEASED = 'released'
    REFUNDED = 'refunded'
    PARTIALLY_REFUNDED = 'partially_refunded'

    @property
    def is_terminal(self) -> bool:
        return self in (EscrowStatus.RELEASED, EscrowStatus.REFUNDED)


class AuditAction:
    HELD = 'held'
    RELEASED = 'released'
    RELEASE_SCHEDULED = 'release_scheduled'
    REFUND_REQUESTED = 'refund_requested'
    REFUND_SUCCEEDED = 'refund_succeeded'
    REFUND_FAILED = 'refund_failed'
    DISPUTE_OPENED = 'dispute_opened'
    DISPUTE_RESOLVED = 'dispute_resolved'


@dataclass(frozen=True)
class AuditEntry:
    action: str
    timestamp: datetime
    actor: str
    detail: str = ''


@dataclass(frozen=True)
class RefundEntry:
    """A refund the payment processor confirmed"""
    refund_id: str
    amount: Money
    idempotency_key: str
    refunded_at: datetime


@dataclass(frozen=True)
class PendingRefund:
    """Durable refund intent, written before the external call"""
    idempotency_key: str
    amount: Money
    requested_at: datetime


@dataclass(eq=False, kw_only=True)
class EscrowRecord(Aggregate):
    """
    Escrow Aggregate Root

    Owned exclusively by its booking. Every state change appends an audit
    entry; entries are never edited or removed.
    """

    booking_id: UUID
    payment_reference: str
    amount_held: Money
    amount_released: Money | None = None
    status: EscrowStatus = EscrowStatus.HELD
    refunds: List[RefundEntry] = field(default_factory=list)
    pending_refund: PendingRefund | None = None
    release_due_at: datetime | None = None
    released_at: datetime | None = None
    audit_log: List[AuditEntry] = field(default_factory=list)

    def __post_init__(self):
        super().__post_init__()
        if self.amount_held.is_zero:
            raise ValidationError("Escrow amount must be positive")
        if self.amount_released is None:
            self.amount_released = Money.zero(self.currency)

    @classmethod
    def hold(
        cls,
        booking_id: UUID,
        amount: Money,
        payment_reference: str,
        actor: str = 'system',
        now: datetime | None = None,
    ) -> 'EscrowRecord':
        """Create a Held record for a booking that is being confirmed"""
        from apps.escrow.domain.events import EscrowHeld

        record = cls(booking_id=booking_id, payment_reference=payment_reference, amount_held=amount)
        record.append_audit(AuditAction.HELD, actor, f"Held {amount} for booking {booking_id}", now)
        record.add_event(EscrowHeld(
            aggregate_id=record.id,
            escrow_id=record.id,
            booking_id=booking_id,
            amount=amount,
        ))
        return record

    # ===== Balances =====

    @property
    def currency(self) -> str:
        return self.amount_held.currency

    @property
    def amount_refunded(self) -> Money:
        total = Money.zero(self.currency)
        for refund in self.refunds:
            total = total + refund.amount
        return total

    @property
    def remaining(self) -> Money:
        """Funds still held; raises if the ledger invariant is broken"""
        left = self.amount_held.amount - self.amount_refunded.amount - self.amount_released.amount
        if left < 0:
            raise InvariantViolation(
                f"Escrow {self.id} paid out more than it held "
                f"(held {self.amount_held}, refunded {self.amount_refunded}, "
                f"released {self.amount_released})"
            )
        return Money(left, self.currency)

    # ===== Audit =====

    def append_audit(self, action: str, actor: str, detail: str = '', now: datetime | None = None):
        self.audit_log.append(AuditEntry(
            action=action,
            timestamp=now or utcnow(),
            actor=actor,
            detail=detail,
        ))
        self.touch()

    # ===== Release =====

    def ensure_releasable(self):
        if self.status not in (EscrowStatus.HELD, EscrowStatus.PARTIALLY_REFUNDED):
            raise InvalidStateError(
                f"Cannot release escrow {self.id} with status {self.status.value}"
            )
        if self.pending_refund is not None:
            raise InvalidStateError(
                f"Cannot release escrow {self.id} while refund "
                f"{self.pending_refund.idempotency_key} is in flight"
            )

    def release(self, actor: str = 'system', now: datetime | None = None) -> Money:
        """
        Pay the remaining funds out to the owner (-> RELEASED)

        The caller checks that no Open dispute references this escrow.
        Events: EscrowReleased
        """
        self.ensure_releasable()
        amount = self.remaining

        from apps.escrow.domain.events import EscrowReleased

        self.amount_released = self.amount_released + amount
        self.status = EscrowStatus.RELEASED
        self.released_at = now or utcnow()
        self.release_due_at = None
        self.append_audit(AuditAction.RELEASED, actor, f"Released {amount}", now)

        self.add_event(EscrowReleased(
            aggregate_id=self.id,
            escrow_id=self.id,
            booking_id=self.booking_id,
            amount=amount,
        ))
        return amount

    def schedule_release(self, due_at: datetime, actor: str = 'system', now: datetime | None = None):
        self.ensure_releasable()
        self.release_due_at = due_at
        self.append_audit(AuditAction.RELEASE_SCHEDULED, actor, f"Release due at {due_at.isoformat()}", now)

    # ===== Refund =====

    def has_refund(self, idempotency_key: str) -> bool:
        return any(r.idempotency_key == idempotency_key for r in self.refunds)

    def request_refund(self, amount: Money, idempotency_key: str, actor: str,
                       now: datetime | None = None):
        """
        Record the refund intent before the external payment call

        Allowed from HELD or PARTIALLY_REFUNDED. A second intent with a
        different key while one is in flight is rejected; the same key
        resumes the in-flight refund.
        """
        if amount.is_zero:
            raise ValidationError("Refund amount must be positive")
        if amount.currency != self.currency:
            raise ValidationError(
                f"Refund currency {amount.currency} does not match escrow currency {self.currency}"
            )
        if self.status not in (EscrowStatus.HELD, EscrowStatus.PARTIALLY_REFUNDED):
            raise InvalidStateError(
                f"Cannot refund escrow {self.id} with status {self.status.value}"
            )

        pending = self.pending_refund
        if pending is not None:
            if pending.idempotency_key != idempotency_key:
                raise InvalidStateError(
                    f"Refund {pending.idempotency_key} is already in flight for escrow {self.id}"
                )
            if pending.amount != amount:
                raise InvalidStateError(
                    f"Refund {idempotency_key} was requested for {pending.amount}, not {amount}"
                )
        elif amount > self.remaining:
            raise InvariantViolation(
                f"Refund {amount} exceeds remaining held amount {self.remaining} on escrow {self.id}"
            )
        else:
            self.pending_refund = PendingRefund(
                idempotency_key=idempotency_key,
                amount=amount,
                requested_at=now or utcnow(),
            )

        self.append_audit(
            AuditAction.REFUND_REQUESTED, actor,
            f"Refund of {amount} requested (key {idempotency_key})", now,
        )

    def apply_refund(self, idempotency_key: str, refund_id: str, actor: str,
                     now: datetime | None = None) -> bool:
        """
        Apply a refund the processor confirmed

        Returns False when the refund was already applied.
        Events: EscrowRefunded
        """
        if self.has_refund(idempotency_key):
            return False
        pending = self.pending_refund
        if pending is None or pending.idempotency_key != idempotency_key:
            raise InvalidStateError(
                f"No refund intent {idempotency_key} recorded on escrow {self.id}"
            )
        if pending.amount > self.remaining:
            raise InvariantViolation(
                f"Refund {pending.amount} exceeds remaining held amount {self.remaining}"
            )

        from apps.escrow.domain.events import EscrowRefunded

        self.refunds.append(RefundEntry(
            refund_id=refund_id,
            amount=pending.amount,
            idempotency_key=idempotency_key,
            refunded_at=now or utcnow(),
        ))
        self.pending_refund = None
        fully_refunded = self.remaining.is_zero
        self.status = EscrowStatus.REFUNDED if fully_refunded else EscrowStatus.PARTIALLY_REFUNDED
        self.append_audit(
            AuditAction.REFUND_SUCCEEDED, actor,
            f"Refunded {pending.amount} (refund {refund_id})", now,
        )

        self.add_event(EscrowRefunded(
            aggregate_id=self.id,
            escrow_id=self.id,
            booking_id=self.booking_id,
            amount=pending.amount,
            refund_id=refund_id,
            fully_refunded=fully_refunded,
        ))
        return True

    def fail_refund(self, idempotency_key: str, actor: str, error: str, retryable: bool,
                    now: datetime | None = None):
        """
        Record a failed refund

        A retryable failure keeps the intent so the next call resumes it;
        a rejected request drops it.
        """
        if not retryable and self.pending_refund and self.pending_refund.idempotency_key == idempotency_key:
            self.pending_refund = None
        detail = f"Refund {idempotency_key} failed: {error}"
        if retryable:
            detail += " (pending retry)"
        self.append_audit(AuditAction.REFUND_FAILED, actor, detail, now)

    def __str__(self):
        return f"Escrow {self.id} ({self.status.value}, remaining {self.remaining})"
