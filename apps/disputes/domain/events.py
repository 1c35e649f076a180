"""
Dispute Domain Events
"""

from dataclasses import dataclass
from uuid import UUID

from shared.domain.base import DomainEvent
from shared.domain.value_objects import Money


@dataclass(kw_only=True)
class DisputeOpened(DomainEvent):
    """
    Event: A dispute was raised against a booking's escrow

    Triggers:
    - Notify administrators
    - Escrow release is blocked until resolution
    """
    dispute_id: UUID
    booking_id: UUID
    escrow_id: UUID
    raised_by: str
    amount_in_question: Money


@dataclass(kw_only=True)
class DisputeResolved(DomainEvent):
    """Event: A dispute reached its terminal state"""
    dispute_id: UUID
    booking_id: UUID
    escrow_id: UUID
    decision: str
    refund_amount: Money
    resolved_by: str
