"""
Booking Domain Events

Events that represent things that have happened in the booking domain.
These are published after successful transaction commits.
"""

from dataclasses import dataclass
from uuid import UUID

from shared.domain.base import DomainEvent
from shared.domain.value_objects import Money, TimeInterval


@dataclass(kw_only=True)
class BookingRequested(DomainEvent):
    """
    Event: A new Pending booking was created

    Triggers:
    - Notify the space owner of the request
    """
    booking_id: UUID
    resource_id: UUID
    requester_id: str
    interval: TimeInterval
    total_price: Money


@dataclass(kw_only=True)
class BookingConfirmed(DomainEvent):
    """
    Event: Booking confirmed, payment authorized and escrow held

    Triggers:
    - Send booking confirmation to the requester
    - Notify the space owner of the confirmed booking
    """
    booking_id: UUID
    resource_id: UUID
    requester_id: str
    owner_id: str
    escrow_id: UUID
    interval: TimeInterval


@dataclass(kw_only=True)
class BookingCancelled(DomainEvent):
    """
    Event: Booking was cancelled

    Triggers:
    - Notify requester and owner
    - Free up the space for the interval
    """
    booking_id: UUID
    resource_id: UUID
    reason: str
    cancelled_by: str
    old_status: str
    refund_amount: Money | None = None


@dataclass(kw_only=True)
class BookingCompleted(DomainEvent):
    """
    Event: Stay is over (interval end passed with no open dispute)

    Triggers:
    - Request review from requester
    - Payout to the space owner once escrow is released
    """
    booking_id: UUID
    resource_id: UUID
    owner_id: str
