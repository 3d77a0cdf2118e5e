"""Invalidation router: applies mutation events to live page chains.

The router subscribes to the
:class:`~reportsync.channel.EntityMutationChannel` and keeps an index of
open :class:`~reportsync.views.PageChain` objects by entity type, so an
event for a type a chain does not track costs nothing for that chain. For
the remaining chains it evaluates the chain's :class:`MembershipPredicate`
through :meth:`PageChain.apply`.

Membership rules for an entity in a report query:

* the entity belongs to the query's project (when it says which project);
* it is done and not archived;
* week queries: its completion time (or due date, if it has no completion
  time) lies in the current week ``[week start, week start + 7 days)``;
* delay queries: it was completed strictly after its due date.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

from reportsync.channel import EntityMutationChannel
from reportsync.models import Entity, EntityType, MutationEvent, QueryDescriptor, QueryType
from reportsync.output import debug

if TYPE_CHECKING:
    from reportsync.views import PageChain

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def week_window(now: datetime, week_starts_on: int = 0) -> tuple[datetime, datetime]:
    """Return ``(start, end)`` of the week containing *now*.

    Args:
        now: Reference time. The window is computed in its timezone.
        week_starts_on: First weekday of the week, ``0`` = Monday.
    """
    offset = (now.weekday() - week_starts_on) % 7
    start = (now - timedelta(days=offset)).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=7)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # naive timestamps from the server are UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class MembershipPredicate:
    """Decides whether an entity belongs in a report query's result."""

    project_id: str
    query_type: QueryType
    is_week_search: bool
    clock: Clock = utcnow
    week_starts_on: int = 0

    @classmethod
    def for_descriptor(
        cls,
        descriptor: QueryDescriptor,
        clock: Clock = utcnow,
        week_starts_on: int = 0,
    ) -> MembershipPredicate:
        return cls(
            project_id=descriptor.project_id,
            query_type=descriptor.query_type,
            is_week_search=descriptor.is_week_search,
            clock=clock,
            week_starts_on=week_starts_on,
        )

    def __call__(self, entity: Entity) -> bool:
        if entity.project_id is not None and entity.project_id != self.project_id:
            return False
        if not entity.is_done or entity.is_archived:
            return False

        completed = _aware(entity.accomplished)
        due = _aware(entity.due_date)

        if self.is_week_search:
            moment = completed or due
            if moment is None:
                return False
            start, end = week_window(self.clock(), self.week_starts_on)
            if not start <= moment < end:
                return False

        if self.query_type is QueryType.DELAY:
            if completed is None or due is None or completed <= due:
                return False

        return True


class InvalidationRouter:
    """Routes every published :class:`~reportsync.models.MutationEvent` to the
    page chains that track its entity type, in registration order.

    Args:
        channel: The channel to listen on.
        clock: Source of "now" for week windows.
        week_starts_on: First weekday of the report week, ``0`` = Monday.
    """

    def __init__(
        self,
        channel: EntityMutationChannel,
        *,
        clock: Clock = utcnow,
        week_starts_on: int = 0,
    ) -> None:
        self._clock = clock
        self._week_starts_on = week_starts_on
        self._by_type: dict[EntityType, list[PageChain]] = {t: [] for t in EntityType}
        self._predicates: dict[int, MembershipPredicate] = {}
        self._unsubscribe = channel.subscribe(self.route)

    def register(self, chain: PageChain) -> None:
        """Start applying events to *chain*."""
        chains = self._by_type[chain.entity_type]
        if chain in chains:
            return
        chains.append(chain)
        self._predicates[id(chain)] = MembershipPredicate.for_descriptor(
            chain.descriptor, self._clock, self._week_starts_on
        )

    def unregister(self, chain: PageChain) -> None:
        chains = self._by_type[chain.entity_type]
        if chain in chains:
            chains.remove(chain)
            del self._predicates[id(chain)]

    def route(self, event: MutationEvent) -> None:
        """Apply *event* to each registered chain of the event's entity type."""
        chains = list(self._by_type[event.entity_type])
        changed = 0
        for chain in chains:
            if chain.apply(event, self._predicates[id(chain)]):
                changed += 1
        debug(
            f"Routed {event.kind.value} {event.entity_id}: "
            f"{changed}/{len(chains)} {event.entity_type.value} views changed"
        )

    def close(self) -> None:
        """Stop listening and forget every chain."""
        self._unsubscribe()
        for chains in self._by_type.values():
            chains.clear()
        self._predicates.clear()

    @property
    def chain_count(self) -> int:
        return sum(len(chains) for chains in self._by_type.values())
