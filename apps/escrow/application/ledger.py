"""
Escrow Ledger

Application service that owns fund movements on EscrowRecord:

- hold(): joins the caller's unit of work, since the record must be
  created in the same transaction that confirms the booking
- release(): pays the remainder out to the space owner
- refund(): three steps, each in its own short transaction
    1. lock the escrow, record the refund intent + audit entry
    2. call the Refund Executor (outside any lock)
    3. lock the escrow, apply the refund + audit entry (or record failure)

Refund and release on one escrow are serialized by the escrow row lock.
The intent written in step 1 survives a crash in step 2, and the same
idempotency key resumes it.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List
from uuid import UUID
import logging

from shared.domain.base import utcnow
from shared.domain.exceptions import (
    InvalidStateError,
    NotFoundError,
    PaymentError,
    PaymentProcessorError,
)
from shared.domain.value_objects import Money

from apps.escrow.domain.entities import EscrowRecord, RefundEntry

logger = logging.getLogger(__name__)


@dataclass
class ReleaseDueEscrowsCommand:
    """Command to release every escrow whose hold window has passed"""
    now: datetime | None = None


class EscrowLedger:

    def __init__(self, uow_factory: Callable, refund_executor):
        self.uow_factory = uow_factory
        self.refund_executor = refund_executor

    # ===== Hold =====

    def hold(
        self,
        uow,
        booking_id: UUID,
        amount: Money,
        payment_reference: str,
        actor: str = 'system',
        now: datetime | None = None,
    ) -> EscrowRecord:
        """Create a Held record inside the caller's unit of work"""
        if uow.escrows.get_by_booking(booking_id) is not None:
            raise InvalidStateError(f"Booking {booking_id} already has an escrow record")

        escrow = EscrowRecord.hold(booking_id, amount, payment_reference, actor=actor, now=now)
        uow.collect_events(escrow)
        uow.escrows.save(escrow)

        logger.info(f"Escrow {escrow.id} holds {amount} for booking {booking_id}")
        return escrow

    # ===== Release =====

    def release(self, escrow_id: UUID, actor: str = 'system', now: datetime | None = None, uow=None) -> Money:
        """
        Release the remaining funds to the owner

        Runs in the given unit of work, or in a new one.

        Raises:
            NotFoundError: unknown escrow
            InvalidStateError: open dispute, in-flight refund, or terminal status
        """
        if uow is not None:
            return self._release(uow, escrow_id, actor, now)
        with self.uow_factory() as own_uow:
            return self._release(own_uow, escrow_id, actor, now)

    def _release(self, uow, escrow_id: UUID, actor: str, now: datetime | None) -> Money:
        escrow = self._get_locked(uow, escrow_id)

        dispute = uow.disputes.get_open_for_escrow(escrow_id)
        if dispute is not None:
            raise InvalidStateError(
                f"Cannot release escrow {escrow_id}: dispute {dispute.id} is open"
            )

        amount = escrow.release(actor, now)
        uow.collect_events(escrow)
        uow.escrows.save(escrow)

        logger.info(f"Released {amount} from escrow {escrow_id} (actor {actor})")
        return amount

    def release_due(self, now: datetime | None = None) -> List[UUID]:
        """Release escrows whose hold window ended; skips disputed ones"""
        moment = now or utcnow()
        with self.uow_factory() as uow:
            due = uow.escrows.list_due_for_release(moment)

        released = []
        for escrow_id in due:
            try:
                self.release(escrow_id, 'system', moment)
            except InvalidStateError as e:
                logger.info(f"Skipping release of escrow {escrow_id}: {e}")
                continue
            released.append(escrow_id)

        logger.info(f"Released {len(released)} of {len(due)} due escrows")
        return released

    # ===== Refund =====

    def refund(
        self,
        escrow_id: UUID,
        amount: Money,
        idempotency_key: str,
        actor: str = 'system',
        now: datetime | None = None,
    ) -> RefundEntry:
        """
        Refund `amount` from the escrow to the payer

        Returns the applied RefundEntry. Calling again with the same key
        after success returns the same entry without a second refund.

        Raises:
            ValidationError: non-positive amount or wrong currency
            InvariantViolation: amount exceeds the remaining held funds
            InvalidStateError: escrow not refundable, another refund in flight,
                or an open dispute the key does not belong to
            InvalidRequest: processor rejected the refund
            RefundPendingRetry: transient failures exhausted the retries
        """
        # Step 1: durable intent
        with self.uow_factory() as uow:
            escrow = self._get_locked(uow, escrow_id)
            applied = self._applied_refund(escrow, idempotency_key)
            if applied is not None:
                logger.info(f"Refund {idempotency_key} already applied to escrow {escrow_id}")
                return applied
            dispute = uow.disputes.get_open_for_escrow(escrow_id)
            if dispute is not None and not dispute.owns_refund_key(idempotency_key):
                raise InvalidStateError(
                    f"Cannot refund escrow {escrow_id} under key {idempotency_key}: "
                    f"dispute {dispute.id} is open"
                )
            escrow.request_refund(amount, idempotency_key, actor, now)
            uow.escrows.save(escrow)
            payment_reference = escrow.payment_reference

        logger.info(f"Refund {idempotency_key} of {amount} requested on escrow {escrow_id}")

        # Step 2: external call
        try:
            result = self.refund_executor.execute_refund(payment_reference, amount, idempotency_key)
        except PaymentError as e:
            retryable = isinstance(e, PaymentProcessorError)
            with self.uow_factory() as uow:
                escrow = self._get_locked(uow, escrow_id)
                escrow.fail_refund(idempotency_key, actor, str(e), retryable, now)
                uow.escrows.save(escrow)
            logger.warning(
                f"Refund {idempotency_key} on escrow {escrow_id} failed "
                f"({'pending retry' if retryable else 'rejected'}): {e}"
            )
            raise

        # Step 3: apply
        with self.uow_factory() as uow:
            escrow = self._get_locked(uow, escrow_id)
            escrow.apply_refund(idempotency_key, result.id, actor, now)
            uow.collect_events(escrow)
            uow.escrows.save(escrow)

        logger.info(f"Refund {idempotency_key} applied to escrow {escrow_id} as {result.id}")
        return self._applied_refund(escrow, idempotency_key)

    @staticmethod
    def _applied_refund(escrow: EscrowRecord, idempotency_key: str) -> RefundEntry | None:
        for refund in escrow.refunds:
            if refund.idempotency_key == idempotency_key:
                return refund
        return None

    @staticmethod
    def _get_locked(uow, escrow_id: UUID) -> EscrowRecord:
        escrow = uow.escrows.get(escrow_id, lock=True)
        if escrow is None:
            raise NotFoundError(f"Escrow {escrow_id} not found")
        return escrow


class ReleaseDueEscrowsHandler:
    """Handler for ReleaseDueEscrows command"""

    def __init__(self, ledger: EscrowLedger):
        self.ledger = ledger

    def handle(self, command: ReleaseDueEscrowsCommand) -> List[UUID]:
        return self.ledger.release_due(command.now)
