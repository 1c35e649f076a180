"""
Dispute Command Handlers

Commands:
- OpenDisputeCommand: Raise a dispute against a booking's escrow
- ResolveDisputeCommand: Approve, refund or partially refund
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable
from uuid import UUID
import logging

from shared.domain.exceptions import (
    BookingEngineError,
    InvalidRequest,
    InvalidStateError,
    NotFoundError,
)
from shared.domain.value_objects import Money

from apps.bookings.domain.entities import BookingStatus
from apps.disputes.domain.entities import AdminAction, Decision, Dispute
from apps.escrow.application.ledger import EscrowLedger
from apps.escrow.domain.entities import AuditAction, EscrowStatus

logger = logging.getLogger(__name__)

DISPUTE_REFUND_REASON = 'dispute_refund'


# ===== Commands =====

@dataclass
class OpenDisputeCommand:
    booking_id: UUID
    raised_by: str
    amount_in_question: Money | Decimal
    details: str = ''
    now: datetime | None = None


@dataclass
class ResolveDisputeCommand:
    """
    Command to resolve an Open dispute

    refund_amount is required for PARTIAL_REFUND only.
    """
    dispute_id: UUID
    decision: Decision
    resolved_by: str
    notes: str = ''
    refund_amount: Money | Decimal | None = None
    now: datetime | None = None


# ===== Command Handlers =====

class OpenDisputeHandler:
    """
    Handler for OpenDispute command

    Requires a Confirmed or Completed booking whose escrow is still Held.
    The escrow row lock makes "at most one Open dispute per escrow" hold
    under concurrent calls.
    """

    def __init__(self, uow_factory: Callable):
        self.uow_factory = uow_factory

    def handle(self, command: OpenDisputeCommand) -> Dispute:
        logger.info(f"Opening dispute on booking {command.booking_id} by {command.raised_by}")

        with self.uow_factory() as uow:
            booking = uow.bookings.get(command.booking_id, lock=True)
            if booking is None:
                raise NotFoundError(f"Booking {command.booking_id} not found")
            if booking.status not in (BookingStatus.CONFIRMED, BookingStatus.COMPLETED):
                raise InvalidStateError(
                    f"Cannot dispute booking {booking.id} with status {booking.status.value}"
                )

            escrow = uow.escrows.get(booking.escrow_id, lock=True)
            if escrow is None:
                raise NotFoundError(f"Escrow for booking {booking.id} not found")
            if escrow.status != EscrowStatus.HELD or escrow.pending_refund is not None:
                raise InvalidStateError(
                    f"Cannot dispute escrow {escrow.id} with status {escrow.status.value}"
                )

            existing = uow.disputes.get_open_for_escrow(escrow.id)
            if existing is not None:
                raise InvalidStateError(
                    f"Dispute {existing.id} is already open for booking {booking.id}"
                )

            amount = command.amount_in_question
            if not isinstance(amount, Money):
                amount = Money(amount, escrow.currency)

            dispute = Dispute.open(
                booking_id=booking.id,
                escrow_id=escrow.id,
                raised_by=command.raised_by,
                amount_in_question=amount,
                amount_held=escrow.amount_held,
                details=command.details,
                now=command.now,
            )
            escrow.append_audit(
                AuditAction.DISPUTE_OPENED, command.raised_by,
                f"Dispute {dispute.id} opened for {amount}", command.now,
            )

            uow.collect_events(dispute)
            uow.disputes.save(dispute)
            uow.escrows.save(escrow)

        logger.info(f"Dispute {dispute.id} opened for {amount} on escrow {escrow.id}")
        return dispute


class ResolveDisputeHandler:
    """
    Handler for ResolveDispute command

    Flow:
    1. Validate: dispute Open, refund amount fits the decision
    2. Refund through the escrow ledger (Refund / PartialRefund) with key
       dispute:<id>:resolution:<attempt>
    3. In one transaction: mark Resolved, append timeline entry, escrow
       audit entry and admin action; release (Approve on a Completed
       booking) or cancel the booking (full refund on a Confirmed one)

    If step 2 fails the dispute stays Open, the failed attempt is recorded
    and the error is raised to the caller.
    """

    def __init__(self, uow_factory: Callable, ledger: EscrowLedger):
        self.uow_factory = uow_factory
        self.ledger = ledger

    def handle(self, command: ResolveDisputeCommand) -> Dispute:
        decision = Decision(command.decision)
        logger.info(
            f"Resolving dispute {command.dispute_id} as {decision.value} by {command.resolved_by}"
        )

        with self.uow_factory() as uow:
            dispute = uow.disputes.get(command.dispute_id)
            if dispute is None:
                raise NotFoundError(f"Dispute {command.dispute_id} not found")
            dispute.ensure_open()
            refund_amount = dispute.refund_amount_for(decision, command.refund_amount)
            idempotency_key = dispute.refund_idempotency_key

            escrow = uow.escrows.get(dispute.escrow_id, lock=True)
            if escrow is not None:
                self._ensure_matches_pending_refund(
                    dispute, escrow, decision, refund_amount, idempotency_key,
                )

        refund_id = ''
        if decision.moves_funds:
            try:
                entry = self.ledger.refund(
                    dispute.escrow_id, refund_amount, idempotency_key,
                    actor=command.resolved_by, now=command.now,
                )
                if entry.amount != refund_amount:
                    raise InvalidStateError(
                        f"Refund {idempotency_key} was already applied for {entry.amount}, "
                        f"not {refund_amount}"
                    )
            except BookingEngineError as e:
                self._record_failure(dispute.id, e, command)
                raise
            refund_id = entry.refund_id

        with self.uow_factory() as uow:
            booking = uow.bookings.get(dispute.booking_id, lock=True)
            escrow = uow.escrows.get(dispute.escrow_id, lock=True)
            dispute = uow.disputes.get(command.dispute_id, lock=True)
            dispute.ensure_open()

            dispute.resolve(
                decision, refund_amount, command.notes, command.resolved_by,
                refund_id=refund_id, now=command.now,
            )
            uow.collect_events(dispute)
            uow.disputes.save(dispute)
            uow.disputes.add_admin_action(AdminAction(
                dispute_id=dispute.id,
                admin_id=command.resolved_by,
                action='dispute_resolved',
                details=self._describe(decision, refund_amount, command.notes),
            ))

            if escrow is not None:
                escrow.append_audit(
                    AuditAction.DISPUTE_RESOLVED, command.resolved_by,
                    f"Dispute {dispute.id} resolved: {self._describe(decision, refund_amount, '')}",
                    command.now,
                )
                uow.escrows.save(escrow)

            if booking is not None and escrow is not None:
                self._settle(uow, booking, escrow, decision, refund_amount, command)

        logger.info(f"Dispute {dispute.id} resolved as {decision.value}")
        return dispute

    @staticmethod
    def _ensure_matches_pending_refund(dispute, escrow, decision, refund_amount, idempotency_key):
        """
        A refund of this dispute that is pending retry must be resumed
        with the same key and amount before any other decision is taken
        """
        pending = escrow.pending_refund
        if pending is None or not dispute.owns_refund_key(pending.idempotency_key):
            return
        if (
            not decision.moves_funds
            or pending.idempotency_key != idempotency_key
            or pending.amount != refund_amount
        ):
            raise InvalidStateError(
                f"Refund {pending.idempotency_key} of {pending.amount} for dispute {dispute.id} "
                f"is pending retry; resume it first"
            )

    def _settle(self, uow, booking, escrow, decision, refund_amount, command):
        """Follow-up on the booking and escrow once the dispute is Resolved"""
        if decision == Decision.APPROVE:
            if booking.status == BookingStatus.COMPLETED and escrow.status in (
                EscrowStatus.HELD, EscrowStatus.PARTIALLY_REFUNDED,
            ):
                self.ledger.release(escrow.id, command.resolved_by, command.now, uow=uow)
            return

        if escrow.status == EscrowStatus.REFUNDED and booking.status == BookingStatus.CONFIRMED:
            booking.cancel(
                DISPUTE_REFUND_REASON, command.resolved_by,
                refund_amount=refund_amount, now=command.now,
            )
            uow.collect_events(booking)
            uow.bookings.save(booking)
            logger.info(f"Booking {booking.id} cancelled after full dispute refund")

    def _record_failure(self, dispute_id: UUID, error: Exception, command: ResolveDisputeCommand):
        retryable = not isinstance(error, InvalidRequest)
        with self.uow_factory() as uow:
            dispute = uow.disputes.get(dispute_id, lock=True)
            if dispute is None or not dispute.is_open:
                return
            dispute.record_failed_attempt(error, retryable, command.now)
            uow.disputes.save(dispute)
            uow.disputes.add_admin_action(AdminAction(
                dispute_id=dispute.id,
                admin_id=command.resolved_by,
                action='dispute_resolution_failed',
                details=f"{error.__class__.__name__}: {error}",
            ))
        logger.warning(f"Resolution of dispute {dispute_id} failed: {error}")

    @staticmethod
    def _describe(decision: Decision, refund_amount: Money, notes: str) -> str:
        text = decision.value
        if not refund_amount.is_zero:
            text += f" ({refund_amount})"
        if notes:
            text += f": {notes}"
        return text
