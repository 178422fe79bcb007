"""
Event system for marketplace state transitions.

Events are the only channel through which external observers (the off-chain
relay, dashboards) learn about state changes. Calls buffer their events in
the transaction state; the marketplace publishes them here only after the
call commits, so subscribers never see events of a rolled-back call.
"""
from typing import Dict, List, Callable, Any, Optional
import logging

logger = logging.getLogger(__name__)

# Subscribing to this pseudo-type receives every event, with event_type in data
ALL_EVENTS = "*"


class EventBus:
    """
    Synchronous pub/sub for committed marketplace events.

    Callback failures are logged and never propagate into the call that
    produced the event (it has already committed).
    """

    def __init__(self):
        self.listeners: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """
        Subscribe to an event type.

        Args:
            event_type: Event name (e.g., 'JobCreated') or ALL_EVENTS
            callback: Function called with the event data as keyword arguments
        """
        self.listeners.setdefault(event_type, []).append(callback)
        logger.debug(f"Subscribed to event: {event_type}")

    def unsubscribe(self, event_type: str, callback: Callable) -> None:
        if event_type in self.listeners:
            try:
                self.listeners[event_type].remove(callback)
                logger.debug(f"Unsubscribed from event: {event_type}")
            except ValueError:
                logger.warning(f"Callback not found for event: {event_type}")

    def emit(self, event_type: str, **data: Any) -> None:
        """
        Emit an event to all subscribers.

        Args:
            event_type: Event name
            **data: Event data as keyword arguments
        """
        listeners = list(self.listeners.get(event_type, []))
        wildcard = list(self.listeners.get(ALL_EVENTS, []))

        if not listeners and not wildcard:
            logger.debug(f"No listeners for event: {event_type}")
            return

        for callback in listeners:
            self._deliver(event_type, callback, data)
        for callback in wildcard:
            self._deliver(event_type, callback, dict(data, event_type=event_type))

    def _deliver(self, event_type: str, callback: Callable, data: Dict[str, Any]) -> None:
        try:
            callback(**data)
        except Exception as e:
            logger.error(f"Error in event callback for {event_type}: {e}", exc_info=True)

    def clear(self, event_type: Optional[str] = None) -> None:
        """Clear listeners for an event type, or all listeners if no type specified."""
        if event_type:
            self.listeners.pop(event_type, None)
            logger.debug(f"Cleared listeners for event: {event_type}")
        else:
            self.listeners.clear()
            logger.debug("Cleared all event listeners")
