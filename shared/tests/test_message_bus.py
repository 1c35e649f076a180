from dataclasses import dataclass

import pytest

from shared.application.message_bus import MessageBus
from shared.domain.base import DomainEvent
from shared.domain.exceptions import ValidationError


@dataclass(kw_only=True)
class SpotFreed(DomainEvent):
    spot: str


@dataclass
class FreeSpot:
    spot: str


def test_one_handler_per_command():
    bus = MessageBus()
    bus.register_command_handler(FreeSpot, lambda command: command.spot.upper())

    assert bus.handle_command(FreeSpot("a1")) == "A1"
    with pytest.raises(ValueError):
        bus.register_command_handler(FreeSpot, lambda command: None)


def test_unknown_command():
    with pytest.raises(ValueError):
        MessageBus().handle_command(FreeSpot("a1"))


def test_domain_errors_propagate():
    bus = MessageBus()

    def reject(command):
        raise ValidationError("no such spot")

    bus.register_command_handler(FreeSpot, reject)

    with pytest.raises(ValidationError):
        bus.handle_command(FreeSpot("a1"))


def test_base_class_subscribers_receive_every_event():
    bus = MessageBus()
    specific, everything = [], []
    bus.register_event_handler(SpotFreed, specific.append)
    bus.register_event_handler(DomainEvent, everything.append)

    event = SpotFreed(spot="a1")
    bus.publish_events([event])

    assert specific == [event]
    assert everything == [event]


def test_failing_subscriber_does_not_stop_others():
    bus = MessageBus()
    seen = []

    def broken(event):
        raise RuntimeError("notification service down")

    bus.register_event_handler(SpotFreed, broken)
    bus.register_event_handler(SpotFreed, seen.append)

    bus.publish_events([SpotFreed(spot="a1")])

    assert len(seen) == 1
