"""In-process bus for entity mutation events.

Every entity-level operation publishes one
:class:`~reportsync.models.MutationEvent` here once its request settles.
The :class:`~reportsync.router.InvalidationRouter` is the main subscriber.

Delivery is synchronous and strictly ordered: each event reaches every
handler, in subscription order, before the next event is delivered. An
event published from inside a handler is queued behind the one currently
being delivered rather than delivered re-entrantly.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable

from reportsync.models import MutationEvent
from reportsync.output import debug

EventHandler = Callable[[MutationEvent], None]


class EntityMutationChannel:
    """Publish/subscribe channel with ordered delivery.

    Example::

        channel = EntityMutationChannel()
        unsubscribe = channel.subscribe(print)
        channel.publish(MutationEvent(entity_type="task", entity_id="t1", kind="deleted"))
        unsubscribe()
    """

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []
        self._queue: deque[MutationEvent] = deque()
        self._delivering = False
        self._published = 0

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register *handler* and return a function that removes it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, event: MutationEvent) -> None:
        """Deliver *event* to every handler.

        Handler exceptions propagate to the publisher. Events still queued
        at that point are delivered by the next :meth:`publish`.
        """
        self._published += 1
        debug(
            f"Publishing {event.kind.value} for {event.entity_type.value} {event.entity_id}"
        )
        self._queue.append(event)
        if self._delivering:
            return

        self._delivering = True
        try:
            while self._queue:
                current = self._queue.popleft()
                for handler in list(self._handlers):
                    handler(current)
        finally:
            self._delivering = False

    def reset(self) -> None:
        """Drop all handlers and any undelivered events."""
        self._handlers.clear()
        self._queue.clear()
        self._published = 0

    @property
    def published(self) -> int:
        """Number of events published since creation or the last :meth:`reset`."""
        return self._published

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)
