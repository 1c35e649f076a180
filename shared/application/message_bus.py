"""
Message Bus

Routes commands to their single handler and domain events to every
subscriber. Caller-facing operations (request/confirm/cancel booking,
open/resolve dispute, release due escrows) are commands; state changes
(booking confirmed, escrow refunded, dispute resolved) are events.

Event subscriptions follow the class hierarchy: a handler registered for
DomainEvent receives every event.
"""

from typing import Any, Callable, Dict, List, Type
import logging

from shared.domain.base import DomainEvent
from shared.domain.exceptions import BookingEngineError

logger = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], None]


class MessageBus:
    """
    Commands: exactly one handler per command type, result returned
    Events: any number of subscribers, errors logged and contained
    """

    def __init__(self):
        self._command_handlers: Dict[Type, Callable[[Any], Any]] = {}
        self._event_handlers: Dict[Type[DomainEvent], List[EventHandler]] = {}

    # ===== Commands =====

    def register_command_handler(self, command_type: Type, handler: Callable[[Any], Any]):
        if command_type in self._command_handlers:
            raise ValueError(f"Handler for {command_type.__name__} is already registered")
        self._command_handlers[command_type] = handler
        logger.debug(f"Registered command handler for {command_type.__name__}")

    def handle_command(self, command: Any) -> Any:
        """
        Dispatch a command to its handler and return the handler's result

        Domain errors are logged at WARNING and re-raised unchanged;
        anything else is logged with a traceback and re-raised.
        """
        name = type(command).__name__
        handler = self._command_handlers.get(type(command))
        if handler is None:
            raise ValueError(f"No handler registered for command {name}")

        logger.info(f"Handling command: {name}")
        try:
            result = handler(command)
        except BookingEngineError as e:
            logger.warning(f"Command {name} rejected: {e.__class__.__name__}: {e}")
            raise
        except Exception as e:
            logger.error(f"Error handling command {name}: {e}", exc_info=True)
            raise
        logger.debug(f"Command {name} handled")
        return result

    # ===== Events =====

    def register_event_handler(self, event_type: Type[DomainEvent], handler: EventHandler):
        self._event_handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Subscribed {_name_of(handler)} to {event_type.__name__}")

    def handlers_for(self, event_type: Type[DomainEvent]) -> List[EventHandler]:
        """Subscribers of event_type and of its base classes, most specific first"""
        handlers = []
        for klass in event_type.__mro__:
            handlers.extend(self._event_handlers.get(klass, ()))
        return handlers

    def publish_events(self, events: List[DomainEvent]):
        """Deliver events in order; a failing subscriber never stops the others"""
        for event in events:
            name = type(event).__name__
            handlers = self.handlers_for(type(event))
            if not handlers:
                logger.debug(f"No subscribers for {name}")
                continue

            logger.info(f"Publishing event: {name} (ID: {event.event_id})")
            for handler in handlers:
                try:
                    handler(event)
                except Exception as e:
                    logger.error(
                        f"Subscriber {_name_of(handler)} failed on {name}: {e}",
                        exc_info=True,
                    )


def _name_of(handler) -> str:
    return getattr(handler, '__qualname__', None) or repr(handler)
