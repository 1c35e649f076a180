"""
Base Domain Classes

Building blocks shared by the booking, escrow, dispute and payment contexts:
- Entity: identity plus created/updated timestamps
- ValueObject: immutable, compared by value
- Aggregate: consistency boundary; carries a version for compare-and-swap
  writes and buffers domain events until its unit of work commits
- DomainEvent: something that happened, published after commit

All timestamps are timezone-aware UTC.
"""

from abc import ABC
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List
from uuid import UUID, uuid4


def utcnow() -> datetime:
    """Timezone-aware current time used for every domain timestamp"""
    return datetime.now(timezone.utc)


@dataclass(eq=False, kw_only=True)
class Entity(ABC):
    """Mutable object identified by its id alone"""
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        pass

    def __eq__(self, other):
        if not isinstance(other, self.__class__):
            return False
        return self.id == other.id

    def __hash__(self):
        return hash(self.id)

    def touch(self):
        self.updated_at = utcnow()


@dataclass(frozen=True)
class ValueObject(ABC):
    pass


@dataclass(eq=False, kw_only=True)
class Aggregate(Entity):
    """
    Aggregate root

    version is the value the row had when it was loaded (0 = never
    stored); repositories write only if it is still current and bump it.
    Events stay buffered on the aggregate until the unit of work pulls
    them, so a rolled-back change never announces anything.
    """
    version: int = 0
    _events: List['DomainEvent'] = field(default_factory=list, repr=False, init=False)

    def add_event(self, event: 'DomainEvent'):
        self._events.append(event)

    def pull_events(self) -> List['DomainEvent']:
        """Hand the buffered events over and forget them"""
        events, self._events = self._events, []
        return events

    @property
    def events(self) -> List['DomainEvent']:
        """Buffered events not yet pulled (copy)"""
        return self._events.copy()


@dataclass(kw_only=True)
class DomainEvent:
    """
    Base class for domain events

    Subscribers register on the message bus, either for one event type
    or for DomainEvent itself to receive all of them.
    """
    event_id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=utcnow)
    aggregate_id: UUID | None = None

    def to_dict(self) -> dict:
        """Envelope fields for logs and outbound notifications"""
        return {
            'event_id': str(self.event_id),
            'event_type': self.__class__.__name__,
            'occurred_at': self.occurred_at.isoformat(),
            'aggregate_id': str(self.aggregate_id) if self.aggregate_id else None,
        }
