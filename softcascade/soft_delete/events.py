"""
Lifecycle events fired around soft deletes and undeletes.

Listeners are plain callables invoked as ``fn(target, transition)``.

Usage:
    notifier = LifecycleNotifier()

    @notifier.listens_for(SoftDeleteEvent.PRE_SOFT_DELETE)
    def archive(target, transition):
        archive_snapshot(target, deleted_at=transition.new_value)
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, List

from .models import Transition

logger = logging.getLogger(__name__)

Listener = Callable[[Any, Transition], None]


class SoftDeleteEvent(str, Enum):
    """Signals emitted by the cascade engine."""

    PRE_SOFT_DELETE = "pre_soft_delete"
    POST_SOFT_DELETE = "post_soft_delete"
    PRE_SOFT_UNDELETE = "pre_soft_undelete"
    POST_SOFT_UNDELETE = "post_soft_undelete"


class LifecycleNotifier:
    """Registry of lifecycle listeners keyed by event."""

    def __init__(self) -> None:
        self._listeners: Dict[SoftDeleteEvent, List[Listener]] = {
            event: [] for event in SoftDeleteEvent
        }

    def listen(self, event: SoftDeleteEvent, fn: Listener) -> None:
        """Register a listener for an event."""
        event = SoftDeleteEvent(event)
        if fn not in self._listeners[event]:
            self._listeners[event].append(fn)

    def remove(self, event: SoftDeleteEvent, fn: Listener) -> None:
        """Unregister a listener; unknown listeners are ignored."""
        event = SoftDeleteEvent(event)
        if fn in self._listeners[event]:
            self._listeners[event].remove(fn)

    def listens_for(self, event: SoftDeleteEvent) -> Callable[[Listener], Listener]:
        """Decorator form of listen()."""

        def decorator(fn: Listener) -> Listener:
            self.listen(event, fn)
            return fn

        return decorator

    def has_listeners(self, event: SoftDeleteEvent) -> bool:
        return bool(self._listeners[SoftDeleteEvent(event)])

    def emit(self, event: SoftDeleteEvent, target: Any, transition: Transition) -> None:
        """
        Call every listener of an event in registration order.

        Exceptions raised by a listener propagate and abort the flush.
        """
        event = SoftDeleteEvent(event)
        for fn in list(self._listeners[event]):
            logger.debug(
                f"Dispatching {event.value} for {target.__class__.__name__} "
                f"to {getattr(fn, '__name__', fn)}"
            )
            fn(target, transition)
