"""
Message Bus

Routes domain events to the handlers registered for them. Apps register
their handlers in AppConfig.ready(); services publish through
`publish_on_commit()` so that nobody is notified about work that was rolled
back.
"""

from typing import Callable, Dict, List, Type
import logging

from django.db import transaction

from shared.domain.base import DomainEvent

logger = logging.getLogger(__name__)


class MessageBus:
    """
    Message bus for domain events

    Events: Multiple handlers per event (1:N)
    """

    def __init__(self):
        self._event_handlers: Dict[Type[DomainEvent], List[Callable]] = {}

    def register_event_handler(
        self,
        event_type: Type[DomainEvent],
        handler: Callable[[DomainEvent], None]
    ):
        """
        Register an event handler

        Multiple handlers can be registered for the same event type.
        Registering the same handler twice is a no-op.
        """
        handlers = self._event_handlers.setdefault(event_type, [])
        if handler in handlers:
            return
        handlers.append(handler)
        logger.debug(f"Registered event handler for {event_type.__name__}")

    def unregister_event_handler(self, event_type: Type[DomainEvent], handler: Callable):
        handlers = self._event_handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish_events(self, events: List[DomainEvent]):
        """
        Publish domain events

        All registered handlers for each event type will be called.
        Errors in handlers are logged but don't stop other handlers.
        """
        for event in events:
            event_type = type(event)
            handlers = list(self._event_handlers.get(event_type, []))

            if not handlers:
                logger.warning(f"No handlers registered for event {event_type.__name__}")
                continue

            logger.info(f"Publishing event: {event_type.__name__} (ID: {event.event_id})")

            for handler in handlers:
                handler_name = getattr(handler, "__name__", repr(handler))
                try:
                    handler(event)
                    logger.debug(f"Event {event_type.__name__} handled by {handler_name}")
                except Exception as e:
                    logger.error(
                        f"Error in event handler {handler_name} "
                        f"for event {event_type.__name__}: {e}",
                        exc_info=True
                    )
                    # Don't raise - other handlers should still run

    def publish_on_commit(self, *events: DomainEvent, using=None):
        """
        Publish events once the current transaction commits

        Outside of a transaction Django runs the callback immediately.
        """
        if events:
            transaction.on_commit(lambda: self.publish_events(list(events)), using=using)


# Global message bus instance
message_bus = MessageBus()
