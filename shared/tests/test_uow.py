import threading
from dataclasses import dataclass

import pytest

from shared.application.message_bus import MessageBus
from shared.application.uow import InMemoryStore, InMemoryUnitOfWork
from shared.domain.base import Aggregate, DomainEvent
from shared.domain.exceptions import ConcurrencyError


@dataclass(kw_only=True)
class CounterIncremented(DomainEvent):
    value: int


@dataclass(eq=False, kw_only=True)
class Counter(Aggregate):
    value: int = 0

    def increment(self):
        self.value += 1
        self.add_event(CounterIncremented(aggregate_id=self.id, value=self.value))


class CounterRepository:
    collection = 'counters'

    def __init__(self, uow):
        self.uow = uow

    def get(self, counter_id, lock=False):
        if lock:
            self.uow.lock((self.collection, counter_id))
        return self.uow.get(self.collection, counter_id)

    def save(self, counter):
        self.uow.stage(self.collection, counter.id, counter)


@pytest.fixture
def bus():
    return MessageBus()


@pytest.fixture
def uow_factory(bus):
    store = InMemoryStore(lock_timeout=0.2)
    return lambda: InMemoryUnitOfWork(store, {'counters': CounterRepository}, bus)


@pytest.fixture
def counter(uow_factory):
    counter = Counter()
    with uow_factory() as uow:
        uow.counters.save(counter)
    return counter


def test_commit_bumps_version(uow_factory, counter):
    assert counter.version == 1

    with uow_factory() as uow:
        loaded = uow.counters.get(counter.id)
        loaded.increment()
        uow.counters.save(loaded)

    with uow_factory() as uow:
        stored = uow.counters.get(counter.id)
    assert stored.value == 1
    assert stored.version == 2


def test_reads_are_isolated_copies(uow_factory, counter):
    with uow_factory() as uow:
        loaded = uow.counters.get(counter.id)
        loaded.value = 99

    with uow_factory() as uow:
        assert uow.counters.get(counter.id).value == 0


def test_stale_write_is_rejected(uow_factory, counter):
    with uow_factory() as first:
        stale = first.counters.get(counter.id)

    with uow_factory() as second:
        fresh = second.counters.get(counter.id)
        fresh.increment()
        second.counters.save(fresh)

    with pytest.raises(ConcurrencyError):
        with uow_factory() as uow:
            stale.increment()
            uow.counters.save(stale)

    with uow_factory() as uow:
        assert uow.counters.get(counter.id).value == 1


def test_events_published_only_after_commit(bus, uow_factory, counter):
    seen = []
    bus.register_event_handler(CounterIncremented, seen.append)

    with pytest.raises(RuntimeError):
        with uow_factory() as uow:
            loaded = uow.counters.get(counter.id)
            loaded.increment()
            uow.collect_events(loaded)
            uow.counters.save(loaded)
            raise RuntimeError("abort")
    assert seen == []

    with uow_factory() as uow:
        loaded = uow.counters.get(counter.id)
        loaded.increment()
        uow.collect_events(loaded)
        uow.counters.save(loaded)
    assert [event.value for event in seen] == [1]


def test_lock_timeout_raises_concurrency_error(uow_factory, counter):
    locked = threading.Event()
    done = threading.Event()

    def hold_lock():
        with uow_factory() as uow:
            uow.counters.get(counter.id, lock=True)
            locked.set()
            done.wait(timeout=5)

    holder = threading.Thread(target=hold_lock)
    holder.start()
    locked.wait(timeout=5)
    try:
        with pytest.raises(ConcurrencyError):
            with uow_factory() as uow:
                uow.counters.get(counter.id, lock=True)
    finally:
        done.set()
        holder.join()


def test_lock_is_reentrant_within_a_unit_of_work(uow_factory, counter):
    with uow_factory() as uow:
        uow.counters.get(counter.id, lock=True)
        loaded = uow.counters.get(counter.id, lock=True)
        loaded.increment()
        uow.counters.save(loaded)

    with uow_factory() as uow:
        assert uow.counters.get(counter.id).value == 1
