"""
Unit of Work Pattern

Manages database transactions and ensures that domain events
are published only after successful transaction commit.

Two implementations share the same contract:
- DjangoUnitOfWork: transaction.atomic() + select_for_update row locks
- InMemoryUnitOfWork: staged writes against an InMemoryStore with
  per-key locks and version checks at commit

Repositories are attached as attributes (uow.bookings, uow.escrows, ...)
from the factories passed in at construction.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Callable, Dict, Hashable, List, Mapping
import copy
import logging
import threading

from django.db import transaction

from shared.domain.base import DomainEvent
from shared.domain.exceptions import ConcurrencyError

logger = logging.getLogger(__name__)

RepositoryFactories = Mapping[str, Callable[['AbstractUnitOfWork'], object]]


class AbstractUnitOfWork(ABC):
    """Abstract Unit of Work pattern"""

    def __init__(self, repositories: RepositoryFactories | None = None, bus=None):
        self._repository_factories = dict(repositories or {})
        self._bus = bus
        self._events: List[DomainEvent] = []

    def __enter__(self):
        self._events = []
        for name, factory in self._repository_factories.items():
            setattr(self, name, factory(self))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.commit()
        else:
            self.rollback()

    @abstractmethod
    def commit(self):
        """Commit the transaction"""
        pass

    @abstractmethod
    def rollback(self):
        """Rollback the transaction"""
        pass

    def collect_events(self, aggregate):
        """Take over the aggregate's buffered events; published after commit"""
        new_events = aggregate.pull_events()
        if new_events:
            self._events.extend(new_events)
            logger.debug(
                f"Collected {len(new_events)} events from "
                f"{aggregate.__class__.__name__} (ID: {aggregate.id})"
            )

    def _take_events(self) -> List[DomainEvent]:
        events = self._events.copy()
        self._events.clear()
        return events

    def _publish_events(self, events: List[DomainEvent]):
        """
        Publish collected events to message bus

        Called after successful transaction commit.
        """
        if self._bus is None:
            logger.debug(f"No message bus attached, dropping {len(events)} events")
            return

        logger.info(f"Publishing {len(events)} domain events after commit")

        try:
            self._bus.publish_events(events)
        except Exception as e:
            logger.error(f"Error publishing events: {e}", exc_info=True)
            # State is already committed; publishing failures are
            # handled by monitoring


class DjangoUnitOfWork(AbstractUnitOfWork):
    """
    Django implementation of Unit of Work

    Manages Django database transactions and ensures domain events
    are published after successful commit.

    Usage:
        with uow_factory() as uow:
            # Lock the parking space row (SELECT FOR UPDATE)
            space = uow.spaces.get(resource_id, lock=True)

            # Execute domain logic
            booking.confirm(...)

            # Collect events
            uow.collect_events(booking)

            # Save changes (compare-and-swap on version)
            uow.bookings.save(booking)

            # Transaction commits here
        # Events are published after commit
    """

    def __init__(self, repositories: RepositoryFactories | None = None, bus=None, using: str | None = None):
        super().__init__(repositories, bus)
        self._using = using
        self._transaction = None

    def __enter__(self):
        """Start database transaction"""
        self._transaction = transaction.atomic(using=self._using)
        self._transaction.__enter__()
        return super().__enter__()

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Complete or rollback transaction"""
        try:
            if exc_type is None:
                self.commit()
            else:
                self.rollback()
        finally:
            if self._transaction:
                self._transaction.__exit__(exc_type, exc_val, exc_tb)
                self._transaction = None

    def commit(self):
        """
        Commit changes and publish events

        Events are published using Django's transaction.on_commit()
        to ensure they're only sent after database commit succeeds.
        """
        events = self._take_events()
        logger.debug(f"Committing transaction with {len(events)} events")

        if events:
            transaction.on_commit(lambda: self._publish_events(events), using=self._using)

    def rollback(self):
        """Rollback changes and discard events"""
        logger.warning(f"Rolling back transaction, discarding {len(self._events)} events")
        self._events.clear()


class InMemoryStore:
    """
    Process-local backing store for InMemoryUnitOfWork

    Holds committed records per collection, a lock per key and a commit
    lock that makes version checks and writes a single atomic step.
    """

    def __init__(self, lock_timeout: float = 10.0):
        self.collections: Dict[str, Dict[Hashable, object]] = defaultdict(dict)
        self.lock_timeout = lock_timeout
        self._locks: Dict[Hashable, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self.commit_lock = threading.Lock()

    def lock_for(self, key: Hashable) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    def read(self, collection: str, key: Hashable):
        with self.commit_lock:
            record = self.collections[collection].get(key)
            return copy.deepcopy(record)

    def scan(self, collection: str) -> list:
        with self.commit_lock:
            return copy.deepcopy(list(self.collections[collection].values()))


class InMemoryUnitOfWork(AbstractUnitOfWork):
    """
    In-memory implementation of Unit of Work

    Reads return deep copies, writes are staged and become visible only on
    commit. lock(key) holds a per-key lock until the unit of work exits,
    which gives the same mutual exclusion as SELECT FOR UPDATE.
    """

    def __init__(self, store: InMemoryStore, repositories: RepositoryFactories | None = None, bus=None):
        super().__init__(repositories, bus)
        self.store = store
        self._staged: Dict[str, Dict[Hashable, object]] = defaultdict(dict)
        self._held_locks: list = []

    def __enter__(self):
        self._staged = defaultdict(dict)
        self._held_locks = []
        return super().__enter__()

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            super().__exit__(exc_type, exc_val, exc_tb)
        finally:
            self._release_locks()

    def lock(self, key: Hashable):
        """Acquire the per-key lock for the rest of this unit of work"""
        lock = self.store.lock_for(key)
        if not lock.acquire(timeout=self.store.lock_timeout):
            raise ConcurrencyError(f"Timed out waiting for lock on {key!r}")
        self._held_locks.append(lock)

    def _release_locks(self):
        while self._held_locks:
            self._held_locks.pop().release()

    def get(self, collection: str, key: Hashable):
        staged = self._staged[collection]
        if key in staged:
            return staged[key]
        return self.store.read(collection, key)

    def scan(self, collection: str) -> list:
        records = {getattr(r, 'id', i): r for i, r in enumerate(self.store.scan(collection))}
        for key, record in self._staged[collection].items():
            records[key] = record
        return list(records.values())

    def stage(self, collection: str, key: Hashable, record):
        self._staged[collection][key] = record

    def commit(self):
        """Apply staged writes atomically, checking versions first"""
        with self.store.commit_lock:
            for collection, records in self._staged.items():
                committed = self.store.collections[collection]
                for key, record in records.items():
                    expected = getattr(record, 'version', None)
                    current = committed.get(key)
                    current_version = getattr(current, 'version', 0) if current is not None else 0
                    if expected is not None and expected != current_version:
                        raise ConcurrencyError(
                            f"{collection} {key} was modified concurrently "
                            f"(expected version {expected}, found {current_version})"
                        )
            for collection, records in self._staged.items():
                for key, record in records.items():
                    if hasattr(record, 'version'):
                        record.version += 1
                    self.store.collections[collection][key] = copy.deepcopy(record)
        self._staged.clear()

        events = self._take_events()
        if events:
            self._publish_events(events)

    def rollback(self):
        """Discard staged writes and events"""
        if self._staged or self._events:
            logger.warning(f"Rolling back unit of work, discarding {len(self._events)} events")
        self._staged.clear()
        self._events.clear()
