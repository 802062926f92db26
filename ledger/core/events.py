"""
In-process notifications for ledger activity.

The engine publishes three events; listeners receive keyword arguments:
- action_applied:  action, result
- action_rejected: action, error (LedgerError, or ValueError from custody)
- settlement:      instruction, sequence
"""
from typing import Any, Callable, Dict, List, Optional
import logging
import threading

logger = logging.getLogger(__name__)

ACTION_APPLIED = 'action_applied'
ACTION_REJECTED = 'action_rejected'
SETTLEMENT = 'settlement'

Listener = Callable[..., None]


class EventBus:
    """
    Synchronous publish/subscribe hub.

    Listeners run in the publishing thread, after the action has committed.
    A listener that raises is logged and skipped; it can never undo or fail
    the action that produced the event.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}
        self._lock = threading.Lock()

    @property
    def listeners(self) -> Dict[str, List[Listener]]:
        with self._lock:
            return {name: list(fns) for name, fns in self._listeners.items()}

    def subscribe(self, event: str, listener: Listener) -> None:
        with self._lock:
            self._listeners.setdefault(event, []).append(listener)
        logger.debug(f"Listener added for {event}")

    def unsubscribe(self, event: str, listener: Listener) -> None:
        with self._lock:
            registered = self._listeners.get(event, [])
            if listener not in registered:
                logger.warning(f"Listener was not subscribed to {event}")
                return
            registered.remove(listener)
        logger.debug(f"Listener removed from {event}")

    def emit(self, event: str, **payload: Any) -> None:
        """
        Deliver `payload` to every listener of `event`.

        Args:
            event: One of ACTION_APPLIED, ACTION_REJECTED, SETTLEMENT
            **payload: Passed to each listener as keyword arguments
        """
        with self._lock:
            targets = list(self._listeners.get(event, ()))

        for listener in targets:
            try:
                listener(**payload)
            except Exception as e:
                logger.error(f"Listener for {event} failed: {e}", exc_info=True)

    def clear(self, event: Optional[str] = None) -> None:
        """Drops the listeners of one event, or of every event when `event` is None."""
        with self._lock:
            if event is None:
                self._listeners = {}
            else:
                self._listeners.pop(event, None)


# Shared by the engine unless a dedicated bus is injected
event_bus = EventBus()
