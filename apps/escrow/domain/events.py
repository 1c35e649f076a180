"""
Escrow Domain Events

Published after commit whenever funds change hands.
"""

from dataclasses import dataclass
from uuid import UUID

from shared.domain.base import DomainEvent
from shared.domain.value_objects import Money


@dataclass(kw_only=True)
class EscrowHeld(DomainEvent):
    """Event: Funds held against a confirmed booking"""
    escrow_id: UUID
    booking_id: UUID
    amount: Money


@dataclass(kw_only=True)
class EscrowReleased(DomainEvent):
    """
    Event: Remaining funds released to the space owner

    Triggers:
    - Notify the owner of the payout
    """
    escrow_id: UUID
    booking_id: UUID
    amount: Money


@dataclass(kw_only=True)
class EscrowRefunded(DomainEvent):
    """Event: Part or all of the held funds refunded to the payer"""
    escrow_id: UUID
    booking_id: UUID
    amount: Money
    refund_id: str
    fully_refunded: bool
