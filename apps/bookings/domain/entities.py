"""
Booking Domain Entities

Core business entities for the booking domain:
- ParkingSpace: Reservable resource with its owner-set rate schedule
- Booking: Main aggregate representing a reservation
- BookingStatus: FSM states for booking lifecycle
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID

from shared.domain.base import Aggregate, utcnow
from shared.domain.exceptions import AlreadyProcessedError, InvalidStateError, ValidationError
from shared.domain.value_objects import Money, TimeInterval

from apps.bookings.domain.pricing import RateSchedule


class BookingStatus(Enum):
    """
    Booking Status Finite State Machine

    State transitions:
    - PENDING -> CONFIRMED (availability re-checked, payment authorized, escrow held)
    - PENDING -> CANCELLED (requester or owner cancelled before confirmation)
    - CONFIRMED -> CANCELLED (cancellation policy or dispute outcome)
    - CONFIRMED -> COMPLETED (interval end passed, no open dispute)
    """
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    CANCELLED = 'cancelled'
    COMPLETED = 'completed'

    @property
    def is_terminal(self) -> bool:
        return self in (BookingStatus.CANCELLED, BookingStatus.COMPLETED)


@dataclass(eq=False, kw_only=True)
class ParkingSpace(Aggregate):
    """
    Parking space aggregate

    The space row doubles as the per-resource mutual exclusion key:
    confirmations lock it before re-checking availability.
    """
    owner_id: str
    rates: RateSchedule = field(default_factory=RateSchedule)
    name: str = ''
    is_active: bool = True

    @property
    def currency(self) -> str:
        return self.rates.currency

    def __str__(self):
        return f"ParkingSpace {self.name or self.id}"


@dataclass(eq=False, kw_only=True)
class Booking(Aggregate):
    """
    Booking Aggregate Root

    Represents a requester's reservation of a parking space for a
    half-open time interval.

    Key invariants:
    - interval.start < interval.end
    - total_price is computed at request time and never changes after
      confirmation
    - escrow_id is set exactly when the booking becomes Confirmed
    - only Confirmed bookings block the space
    """

    # References
    resource_id: UUID
    requester_id: str
    owner_id: str

    interval: TimeInterval
    vehicle_type: str
    total_price: Money

    status: BookingStatus = BookingStatus.PENDING
    escrow_id: UUID | None = None
    payment_reference: str | None = None

    # Cancellation details
    cancellation_reason: str = ''
    cancelled_by: str = ''

    # Timestamps
    confirmed_at: datetime | None = None
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None

    def __post_init__(self):
        super().__post_init__()
        if not self.requester_id:
            raise ValidationError("Requester is required")
        if not self.vehicle_type:
            raise ValidationError("Vehicle type is required")

    @classmethod
    def request(
        cls,
        space: ParkingSpace,
        interval: TimeInterval,
        requester_id: str,
        vehicle_type: str,
        total_price: Money,
    ) -> 'Booking':
        """Create a Pending booking. Funds are not held yet."""
        from apps.bookings.domain.events import BookingRequested

        booking = cls(
            resource_id=space.id,
            requester_id=requester_id,
            owner_id=space.owner_id,
            interval=interval,
            vehicle_type=vehicle_type,
            total_price=total_price,
        )
        booking.add_event(BookingRequested(
            aggregate_id=booking.id,
            booking_id=booking.id,
            resource_id=booking.resource_id,
            requester_id=requester_id,
            interval=interval,
            total_price=total_price,
        ))
        return booking

    def confirm(self, escrow_id: UUID, payment_reference: str, now: datetime | None = None):
        """
        Confirm booking (PENDING -> CONFIRMED)

        Must run inside the same unit of work that re-checked availability
        and created the escrow record.
        Events: BookingConfirmed
        """
        if self.status != BookingStatus.PENDING:
            raise AlreadyProcessedError(
                f"Cannot confirm booking {self.id} from status {self.status.value}. "
                f"Booking must be PENDING."
            )

        from apps.bookings.domain.events import BookingConfirmed

        self.status = BookingStatus.CONFIRMED
        self.escrow_id = escrow_id
        self.payment_reference = payment_reference
        self.confirmed_at = now or utcnow()
        self.touch()

        self.add_event(BookingConfirmed(
            aggregate_id=self.id,
            booking_id=self.id,
            resource_id=self.resource_id,
            requester_id=self.requester_id,
            owner_id=self.owner_id,
            escrow_id=escrow_id,
            interval=self.interval,
        ))

    def ensure_cancellable(self, now: datetime | None = None):
        """Pending, or Confirmed with the stay not yet over"""
        if self.status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
            raise InvalidStateError(
                f"Cannot cancel booking {self.id} with status {self.status.value}"
            )
        moment = now or utcnow()
        if self.status == BookingStatus.CONFIRMED and moment >= self.interval.end:
            raise InvalidStateError(
                f"Cannot cancel booking {self.id}: the stay ended at {self.interval.end}"
            )

    def cancel(self, reason: str, cancelled_by: str, refund_amount: Money | None = None,
               now: datetime | None = None):
        """
        Cancel booking

        Can be called from PENDING or CONFIRMED. The time window is checked
        by the caller (ensure_cancellable) before any refund is issued.
        Events: BookingCancelled
        """
        if self.status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
            raise InvalidStateError(
                f"Cannot cancel booking {self.id} with status {self.status.value}"
            )

        from apps.bookings.domain.events import BookingCancelled

        old_status = self.status
        self.status = BookingStatus.CANCELLED
        self.cancellation_reason = reason
        self.cancelled_by = cancelled_by
        self.cancelled_at = now or utcnow()
        self.touch()

        self.add_event(BookingCancelled(
            aggregate_id=self.id,
            booking_id=self.id,
            resource_id=self.resource_id,
            reason=reason,
            cancelled_by=cancelled_by,
            old_status=old_status.value,
            refund_amount=refund_amount,
        ))

    def complete(self, now: datetime | None = None):
        """
        Complete booking (CONFIRMED -> COMPLETED)

        System-driven once the interval end has passed.
        Events: BookingCompleted
        """
        if self.status != BookingStatus.CONFIRMED:
            raise InvalidStateError(
                f"Cannot complete booking {self.id} from status {self.status.value}. "
                f"Booking must be CONFIRMED."
            )
        moment = now or utcnow()
        if moment < self.interval.end:
            raise InvalidStateError(
                f"Cannot complete booking {self.id} before its end ({self.interval.end})"
            )

        from apps.bookings.domain.events import BookingCompleted

        self.status = BookingStatus.COMPLETED
        self.completed_at = moment
        self.touch()

        self.add_event(BookingCompleted(
            aggregate_id=self.id,
            booking_id=self.id,
            resource_id=self.resource_id,
            owner_id=self.owner_id,
        ))

    def has_started(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.interval.start

    @property
    def is_active(self) -> bool:
        return not self.status.is_terminal

    def __str__(self):
        return f"Booking {self.id} ({self.status.value})"

    def __repr__(self):
        return (
            f"Booking(id={self.id}, resource_id={self.resource_id}, "
            f"status={self.status.value}, interval={self.interval!r})"
        )
