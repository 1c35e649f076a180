"""
Booking Command Handlers

These are the use cases for the booking domain.
They orchestrate domain operations within transactions.

Commands:
- RequestBookingCommand: Create a Pending booking with its price
- ConfirmBookingCommand: Re-check availability, authorize payment, hold escrow
- CancelBookingCommand: Cancel, refunding per cancellation policy
- CompleteBookingCommand: Complete a finished stay and release escrow
- CompleteFinishedBookingsCommand: Complete every finished stay (periodic)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, List
from uuid import UUID
import logging

from shared.domain.base import utcnow
from shared.domain.exceptions import (
    AlreadyProcessedError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from shared.domain.value_objects import Money, TimeInterval

from apps.bookings.domain.availability import check_availability
from apps.bookings.domain.entities import Booking, BookingStatus
from apps.bookings.domain.pricing import price
from apps.escrow.application.ledger import EscrowLedger
from apps.escrow.domain.entities import EscrowStatus
from apps.payments.gateway import PaymentGateway

logger = logging.getLogger(__name__)


# ===== Commands =====

@dataclass
class RequestBookingCommand:
    """
    Command to request a booking

    This is the primary entry point for creating bookings.
    """
    resource_id: UUID
    start: datetime
    end: datetime
    requester_id: str
    vehicle_type: str


@dataclass
class ConfirmBookingCommand:
    """Command to confirm a Pending booking"""
    booking_id: UUID
    actor: str = 'system'
    now: datetime | None = None


@dataclass
class CancelBookingCommand:
    """Command to cancel a booking"""
    booking_id: UUID
    reason: str
    cancelled_by: str  # requester, owner or admin id
    now: datetime | None = None


@dataclass
class CompleteBookingCommand:
    """Command to complete a booking once its interval has ended"""
    booking_id: UUID
    now: datetime | None = None


@dataclass
class CompleteFinishedBookingsCommand:
    now: datetime | None = None


# ===== Cancellation policy =====

@dataclass(frozen=True)
class CancellationPolicy:
    """
    Share of the remaining escrow refunded on cancellation

    Configured by CANCELLATION_REFUND_BEFORE_START and
    CANCELLATION_REFUND_AFTER_START.
    """
    refund_before_start: Decimal = Decimal('1')
    refund_after_start: Decimal = Decimal('0')

    def __post_init__(self):
        for name in ('refund_before_start', 'refund_after_start'):
            value = Decimal(str(getattr(self, name)))
            if not Decimal('0') <= value <= Decimal('1'):
                raise ValidationError(f"{name} must be between 0 and 1, got {value}")
            object.__setattr__(self, name, value)

    def refund_fraction(self, booking: Booking, now: datetime) -> Decimal:
        if booking.has_started(now):
            return self.refund_after_start
        return self.refund_before_start

    def refund_amount(self, booking: Booking, remaining: Money, now: datetime) -> Money:
        return remaining * self.refund_fraction(booking, now)


# ===== Command Handlers =====

class RequestBookingHandler:
    """
    Handler for RequestBooking command

    Prices the interval and creates a Pending booking. Funds are not
    held and the space is not blocked until confirmation. A space that
    is already taken for the interval is rejected early with ConflictError.
    """

    def __init__(self, uow_factory: Callable):
        self.uow_factory = uow_factory

    def handle(self, command: RequestBookingCommand) -> Booking:
        """
        Returns: Created Booking aggregate

        Raises:
            ValidationError: bad interval, inactive space or unusable rates
            NotFoundError: unknown space
            ConflictError: space already booked for the interval
        """
        logger.info(
            f"Requesting booking of space {command.resource_id} by {command.requester_id}, "
            f"{command.start} - {command.end}"
        )

        interval = TimeInterval(command.start, command.end)

        with self.uow_factory() as uow:
            space = uow.spaces.get(command.resource_id)
            if space is None:
                raise NotFoundError(f"Parking space {command.resource_id} not found")
            if not space.is_active:
                raise ValidationError(f"Parking space {space.id} is not accepting bookings")

            total_price = price(interval, space.rates)

            availability = check_availability(uow.bookings, space.id, interval)
            if not availability:
                raise ConflictError(
                    f"Space {space.id} is not available for {interval}",
                    availability.conflicting_booking_ids,
                )

            booking = Booking.request(
                space, interval, command.requester_id, command.vehicle_type, total_price,
            )
            uow.collect_events(booking)
            uow.bookings.save(booking)

        logger.info(f"Booking {booking.id} requested at {total_price}")
        return booking


class ConfirmBookingHandler:
    """
    Handler for ConfirmBooking command

    This implements the critical section that prevents double bookings.

    Strategy:
    1. Start transaction
    2. Lock the parking space row (per-resource mutual exclusion)
    3. Lock and re-read the booking; it must still be Pending
    4. Re-run the availability check, excluding this booking
    5. Authorize payment (idempotency key booking:<id>:authorize)
    6. Create the Held escrow record
    7. Flip the booking to Confirmed
    8. Commit (compare-and-swap on versions), then publish events

    Any failure rolls back steps 6-7: no escrow without a Confirmed
    booking and no Confirmed booking without escrow.
    """

    def __init__(self, uow_factory: Callable, ledger: EscrowLedger, gateway: PaymentGateway):
        self.uow_factory = uow_factory
        self.ledger = ledger
        self.gateway = gateway

    def handle(self, command: ConfirmBookingCommand) -> Booking:
        logger.info(f"Confirming booking {command.booking_id}")

        with self.uow_factory() as uow:
            booking = uow.bookings.get(command.booking_id)
            if booking is None:
                raise NotFoundError(f"Booking {command.booking_id} not found")

            space = uow.spaces.get(booking.resource_id, lock=True)
            if space is None:
                raise NotFoundError(f"Parking space {booking.resource_id} not found")

            booking = uow.bookings.get(command.booking_id, lock=True)
            if booking.status != BookingStatus.PENDING:
                raise AlreadyProcessedError(
                    f"Booking {booking.id} is {booking.status.value}, not pending"
                )

            availability = check_availability(
                uow.bookings, booking.resource_id, booking.interval, exclude_booking_id=booking.id,
            )
            if not availability:
                logger.warning(
                    f"Booking {booking.id} lost its slot to "
                    f"{[str(i) for i in availability.conflicting_booking_ids]}"
                )
                raise ConflictError(
                    "Spot no longer available", availability.conflicting_booking_ids,
                )

            payment_reference = self.gateway.authorize(
                booking.total_price,
                booking.requester_id,
                idempotency_key=f"booking:{booking.id}:authorize",
            )

            escrow = self.ledger.hold(
                uow, booking.id, booking.total_price, payment_reference,
                actor=command.actor, now=command.now,
            )
            booking.confirm(escrow.id, payment_reference, command.now)

            uow.collect_events(booking)
            uow.bookings.save(booking)

        logger.info(f"Booking {booking.id} confirmed with escrow {escrow.id}")
        return booking


class CancelBookingHandler:
    """
    Handler for CancelBooking command

    Pending: cancelled, no fund movement.
    Confirmed: the policy share of the remaining escrow is refunded
    (key booking:<id>:cancel), the rest is released to the owner, then the
    booking is Cancelled. If the refund is pending retry the booking stays
    Confirmed and calling again resumes the same refund.
    """

    def __init__(self, uow_factory: Callable, ledger: EscrowLedger, policy: CancellationPolicy | None = None):
        self.uow_factory = uow_factory
        self.ledger = ledger
        self.policy = policy or CancellationPolicy()

    def handle(self, command: CancelBookingCommand) -> Booking:
        logger.info(f"Cancelling booking {command.booking_id}, reason: {command.reason}")
        now = command.now or utcnow()
        refund_key = f"booking:{command.booking_id}:cancel"

        with self.uow_factory() as uow:
            booking = self._get(uow, command.booking_id)
            booking.ensure_cancellable(now)

            if booking.status == BookingStatus.PENDING:
                booking.cancel(command.reason, command.cancelled_by, now=now)
                uow.collect_events(booking)
                uow.bookings.save(booking)
                logger.info(f"Pending booking {booking.id} cancelled")
                return booking

            escrow = uow.escrows.get(booking.escrow_id)
            if escrow is None:
                raise NotFoundError(f"Escrow for booking {booking.id} not found")
            dispute = uow.disputes.get_open_for_escrow(escrow.id)
            if dispute is not None:
                raise InvalidStateError(
                    f"Cannot cancel booking {booking.id} while dispute {dispute.id} is open"
                )
            refund_amount = self._refund_amount(booking, escrow, refund_key, now)

        if not refund_amount.is_zero:
            self.ledger.refund(escrow.id, refund_amount, refund_key, actor=command.cancelled_by, now=now)

        with self.uow_factory() as uow:
            booking = self._get(uow, command.booking_id, lock=True)
            escrow = uow.escrows.get(booking.escrow_id, lock=True)

            booking.cancel(command.reason, command.cancelled_by, refund_amount=refund_amount, now=now)
            uow.collect_events(booking)
            uow.bookings.save(booking)

            if escrow.status in (EscrowStatus.HELD, EscrowStatus.PARTIALLY_REFUNDED):
                self.ledger.release(escrow.id, command.cancelled_by, now, uow=uow)

        logger.info(f"Booking {booking.id} cancelled, refunded {refund_amount}")
        return booking

    def _refund_amount(self, booking: Booking, escrow, refund_key: str, now: datetime) -> Money:
        """Policy amount, or the amount of a cancellation refund already under way"""
        for refund in escrow.refunds:
            if refund.idempotency_key == refund_key:
                return refund.amount
        pending = escrow.pending_refund
        if pending is not None and pending.idempotency_key == refund_key:
            return pending.amount
        if escrow.status not in (EscrowStatus.HELD, EscrowStatus.PARTIALLY_REFUNDED):
            return Money.zero(escrow.currency)
        return self.policy.refund_amount(booking, escrow.remaining, now)

    @staticmethod
    def _get(uow, booking_id: UUID, lock: bool = False) -> Booking:
        booking = uow.bookings.get(booking_id, lock=lock)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking


class CompleteBookingHandler:
    """
    Handler for CompleteBooking command (system-driven)

    Requires the interval to have ended, no Open dispute and a Held or
    PartiallyRefunded escrow. With a zero hold window the escrow is
    released in the same transaction; otherwise its release is scheduled.
    """

    def __init__(self, uow_factory: Callable, ledger: EscrowLedger, release_hold: timedelta = timedelta(0)):
        self.uow_factory = uow_factory
        self.ledger = ledger
        self.release_hold = release_hold

    def handle(self, command: CompleteBookingCommand) -> Booking:
        logger.info(f"Completing booking {command.booking_id}")
        now = command.now or utcnow()

        with self.uow_factory() as uow:
            booking = uow.bookings.get(command.booking_id, lock=True)
            if booking is None:
                raise NotFoundError(f"Booking {command.booking_id} not found")

            escrow = uow.escrows.get(booking.escrow_id, lock=True) if booking.escrow_id else None
            if booking.status == BookingStatus.CONFIRMED and escrow is None:
                raise NotFoundError(f"Escrow for booking {booking.id} not found")

            booking.complete(now)

            dispute = uow.disputes.get_open_for_escrow(escrow.id)
            if dispute is not None:
                raise InvalidStateError(
                    f"Cannot complete booking {booking.id} while dispute {dispute.id} is open"
                )
            escrow.ensure_releasable()

            uow.collect_events(booking)
            uow.bookings.save(booking)

            if self.release_hold:
                escrow.schedule_release(now + self.release_hold, now=now)
                uow.escrows.save(escrow)
            else:
                self.ledger.release(escrow.id, 'system', now, uow=uow)

        logger.info(f"Booking {booking.id} completed")
        return booking


class CompleteFinishedBookingsHandler:
    """Completes every Confirmed booking whose interval has ended"""

    def __init__(self, uow_factory: Callable, complete_handler: CompleteBookingHandler):
        self.uow_factory = uow_factory
        self.complete_handler = complete_handler

    def handle(self, command: CompleteFinishedBookingsCommand) -> List[UUID]:
        now = command.now or utcnow()
        with self.uow_factory() as uow:
            finished = uow.bookings.list_confirmed_ended(now)

        completed = []
        for booking_id in finished:
            try:
                self.complete_handler.handle(CompleteBookingCommand(booking_id, now))
            except InvalidStateError as e:
                logger.info(f"Skipping completion of booking {booking_id}: {e}")
                continue
            completed.append(booking_id)

        logger.info(f"Completed {len(completed)} of {len(finished)} finished bookings")
        return completed
