"""Minimal publish/subscribe event fan-out."""

from collections.abc import Callable
from typing import Any

from chat_replay.logging import get_logger

logger = get_logger("events")

Callback = Callable[..., Any]


class EventEmitter:
    """Maps event names to ordered lists of subscriber callbacks.

    Subscriber exceptions propagate to the caller of publish() unless the
    emitter was created with ``isolate_errors=True``, in which case they are
    logged and the remaining subscribers still run.
    """

    def __init__(self, isolate_errors: bool = False) -> None:
        self._subscribers: dict[str, list[Callback]] = {}
        self.isolate_errors = isolate_errors

    def subscribe(self, event: str, callback: Callback) -> None:
        """Register a callback for an event."""
        self._subscribers.setdefault(event, []).append(callback)

    def unsubscribe(self, event: str, callback: Callback) -> None:
        """Remove a previously registered callback.

        Unknown callbacks are ignored.
        """
        callbacks = self._subscribers.get(event)
        if callbacks and callback in callbacks:
            callbacks.remove(callback)

    def publish(self, event: str, *args: Any) -> None:
        """Invoke every subscriber of an event in subscription order."""
        # Copy so callbacks may (un)subscribe while we iterate
        for callback in list(self._subscribers.get(event, ())):
            if not self.isolate_errors:
                callback(*args)
                continue
            try:
                callback(*args)
            except Exception:
                logger.exception("Subscriber failed: event=%s callback=%r", event, callback)

    def subscriber_count(self, event: str) -> int:
        return len(self._subscribers.get(event, ()))

    def clear(self) -> None:
        """Drop every subscription."""
        self._subscribers.clear()
