"""Transition bus — publish/subscribe channel of TransitionEvents.

Consumers subscribe per ``(user_id, project_id)`` or to every project,
and unsubscribe when their session ends.  Every event is fanned out to
all matching subscribers in publication order; a failing handler is
logged and does not prevent delivery to the remaining ones.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable

from pipewarden.models.events import TransitionEvent

logger = logging.getLogger(__name__)

TransitionHandler = Callable[[TransitionEvent], None]

_ALL = ("*", "*")


class TransitionBus:
    """Routes transition events to subscribed handlers.

    Usage
    -----
    >>> bus = TransitionBus()
    >>> token = bus.subscribe("alice", "p-1", handler)
    >>> bus.publish(event)
    >>> bus.unsubscribe(token)
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[tuple[str, str], dict[str, TransitionHandler]] = {}

    # ------------------------------------------------------------------
    # Subscription management
    # ------------------------------------------------------------------

    def subscribe(
        self, user_id: str, project_id: str, handler: TransitionHandler
    ) -> str:
        """Register *handler* for one project's events.  Returns a token."""
        return self._add((user_id, project_id), handler)

    def subscribe_all(self, handler: TransitionHandler) -> str:
        """Register *handler* for every project's events.  Returns a token."""
        return self._add(_ALL, handler)

    def unsubscribe(self, token: str) -> None:
        """Remove a subscription.  Unknown tokens are ignored."""
        with self._lock:
            for key, handlers in list(self._handlers.items()):
                if handlers.pop(token, None) is not None:
                    if not handlers:
                        del self._handlers[key]
                    return

    def subscriber_count(self, user_id: str | None = None, project_id: str | None = None) -> int:
        with self._lock:
            if user_id is None or project_id is None:
                return sum(len(h) for h in self._handlers.values())
            return len(self._handlers.get((user_id, project_id), {}))

    def _add(self, key: tuple[str, str], handler: TransitionHandler) -> str:
        token = uuid.uuid4().hex
        with self._lock:
            self._handlers.setdefault(key, {})[token] = handler
        return token

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    def publish(self, event: TransitionEvent) -> int:
        """Deliver *event* to every matching handler.

        Returns the number of handlers that accepted the event.
        """
        with self._lock:
            targets = list(self._handlers.get((event.user_id, event.project_id), {}).values())
            targets += list(self._handlers.get(_ALL, {}).values())

        logger.debug(
            "Transition %s/%s: %s -> %s (%d subscribers)",
            event.user_id,
            event.project_id,
            event.previous_state.value,
            event.new_state.value,
            len(targets),
        )

        delivered = 0
        for handler in targets:
            try:
                handler(event)
                delivered += 1
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "Transition handler %r failed for %s/%s: %s",
                    handler, event.user_id, event.project_id, exc,
                )
        return delivered
