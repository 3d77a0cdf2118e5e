"""Collection views, page chains and the live results handed to callers.

A :class:`CollectionView` is one report query (one
:class:`~reportsync.models.QueryDescriptor`, including its page). Views that
differ only in ``page`` belong to the same :class:`PageChain`, which owns
the merged result:

    surfaced entities (newest first)
    + page 1 entities (server order)
    + page 2 entities ...

Only pages whose fetch has resolved take part, always in ascending page
order, so a page that resolves late is spliced into its place rather than
appended. Entities are de-duplicated by id, first occurrence wins.

Whenever the merged sequence changes (a page resolves, or a mutation event
is accepted) the chain publishes the full new snapshot, an immutable tuple,
to the subscribers of every loaded view in the chain. Subscribers of a view
whose page is still loading get their first snapshot once that page
resolves; subscribers of a failed view get its error.

:class:`LiveResult` is the caller-facing handle: callback subscriptions,
``async for`` iteration, and :meth:`LiveResult.first`.
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import AsyncIterator, Callable, Iterable
from dataclasses import dataclass
from typing import Optional, Union

from reportsync.models import (
    Entity,
    EntityType,
    MutationEvent,
    MutationKind,
    QueryDescriptor,
)
from reportsync.output import debug, warning

Snapshot = tuple[Entity, ...]
NextHandler = Callable[[Snapshot], None]
ErrorHandler = Callable[[BaseException], None]


class ViewState(str, enum.Enum):
    PENDING = "pending"
    LOADED = "loaded"
    FAILED = "failed"


@dataclass
class _Sink:
    on_next: NextHandler
    on_error: Optional[ErrorHandler] = None


class Subscription:
    """Handle returned by :meth:`CollectionView.subscribe`."""

    def __init__(self, view: CollectionView, key: int) -> None:
        self._view = view
        self._key = key
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def unsubscribe(self) -> None:
        """Stop receiving snapshots. The shared fetch keeps running for others."""
        if not self._closed:
            self._closed = True
            self._view._detach(self._key)


class CollectionView:
    """One page of one report query and its subscribers."""

    def __init__(self, descriptor: QueryDescriptor, chain: PageChain) -> None:
        self.descriptor = descriptor
        self.chain = chain
        self.entities: list[Entity] = []
        self.state = ViewState.PENDING
        self.error: Optional[BaseException] = None
        self._sinks: dict[int, _Sink] = {}
        self._next_key = 0

    @property
    def page(self) -> int:
        return self.descriptor.page_number

    @property
    def subscriber_count(self) -> int:
        return len(self._sinks)

    def subscribe(
        self,
        on_next: NextHandler,
        on_error: Optional[ErrorHandler] = None,
    ) -> Subscription:
        """Attach a subscriber.

        If the view is loaded, *on_next* receives the current snapshot
        before this method returns. If the view failed, *on_error* receives
        the error and the returned subscription is already closed.
        """
        key = self._next_key
        self._next_key += 1
        subscription = Subscription(self, key)

        if self.state is ViewState.FAILED:
            assert self.error is not None
            subscription._closed = True
            _deliver_error(_Sink(on_next, on_error), self.error, self.descriptor)
            return subscription

        self._sinks[key] = _Sink(on_next, on_error)
        if self.state is ViewState.LOADED and self.chain.snapshot is not None:
            on_next(self.chain.snapshot)
        return subscription

    def resolve(self, entities: Iterable[Entity]) -> None:
        """Store this page's entities and let the chain re-emit."""
        first_load = self.state is not ViewState.LOADED
        self.entities = list(_unique(entities))
        self.state = ViewState.LOADED
        self.error = None
        debug(f"Page {self.page} loaded with {len(self.entities)} entities")
        self.chain.refresh(loaded=self if first_load else None)

    def fail(self, error: BaseException) -> None:
        """Mark the fetch as failed and deliver *error* to every subscriber.

        Subscribers are detached afterwards; snapshots they already
        received stay valid. Sibling pages are unaffected.
        """
        self.state = ViewState.FAILED
        self.error = error
        sinks = list(self._sinks.values())
        self._sinks.clear()
        for sink in sinks:
            _deliver_error(sink, error, self.descriptor)

    def reopen(self) -> None:
        """Allow a failed view to be fetched again."""
        if self.state is ViewState.FAILED:
            self.state = ViewState.PENDING
            self.error = None

    def _publish(self, snapshot: Snapshot) -> None:
        for sink in list(self._sinks.values()):
            try:
                sink.on_next(snapshot)
            except Exception as exc:
                warning(f"Subscriber failed for {self.descriptor.to_path()}: {exc}")

    def _detach(self, key: int) -> None:
        self._sinks.pop(key, None)


class PageChain:
    """The views of one query that differ only by page, plus their merged result."""

    def __init__(self, descriptor: QueryDescriptor) -> None:
        self.descriptor = descriptor
        self.key = descriptor.chain_key
        self.views: dict[int, CollectionView] = {}
        self.surfaced: list[Entity] = []
        self.removed: set[str] = set()
        self.snapshot: Optional[Snapshot] = None

    @property
    def entity_type(self) -> EntityType:
        return self.descriptor.entity_type

    def add(self, view: CollectionView) -> None:
        self.views[view.page] = view

    def refresh(self, loaded: Optional[CollectionView] = None) -> None:
        """Recompute the merged snapshot and publish it if it changed.

        Args:
            loaded: A view that just resolved. It receives the snapshot even
                when the merged sequence is unchanged, since its subscribers
                have not had a first snapshot yet.
        """
        snapshot = self._merge()
        if snapshot == self.snapshot:
            if loaded is not None:
                loaded._publish(snapshot)
            return

        self.snapshot = snapshot
        debug(f"Emitting {len(snapshot)} entities for {self.descriptor.to_path()}")
        for page in sorted(self.views):
            view = self.views[page]
            if view.state is ViewState.LOADED:
                view._publish(snapshot)

    def apply(self, event: MutationEvent, accepts: Callable[[Entity], bool]) -> bool:
        """Apply one mutation event. Returns ``True`` if the result changed.

        * ``deleted`` / ``archived``: remove the entity.
        * ``status_changed``: merge the returned fields into the known
          entity; keep it if it still satisfies *accepts*, else remove it.
          Unknown entities are ignored.
        * ``fetched``: as ``status_changed`` for a known entity; an unknown
          entity that satisfies *accepts* is prepended.

        Ids removed here stay hidden until :meth:`forget_removed`, so a fetch
        that settles after a delete cannot bring the entity back.
        """
        if event.kind in (MutationKind.DELETED, MutationKind.ARCHIVED):
            self.removed.add(event.entity_id)
            changed = self._remove(event.entity_id)
        elif event.entity_id in self.removed:
            changed = False
        else:
            changed = self._update(
                event, accepts, insert=event.kind is MutationKind.FETCHED
            )
        if changed:
            self.refresh()
        return changed

    def forget_removed(self) -> None:
        """Let previously deleted or archived ids be surfaced again."""
        self.removed.clear()

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _lists(self) -> list[list[Entity]]:
        lists = [self.surfaced]
        for page in sorted(self.views):
            view = self.views[page]
            if view.state is ViewState.LOADED:
                lists.append(view.entities)
        return lists

    def _merge(self) -> Snapshot:
        return tuple(
            _unique(
                e for entities in self._lists() for e in entities if e.id not in self.removed
            )
        )

    def _find(self, entity_id: str) -> Optional[Entity]:
        for entities in self._lists():
            for entity in entities:
                if entity.id == entity_id:
                    return entity
        return None

    def _update(
        self,
        event: MutationEvent,
        accepts: Callable[[Entity], bool],
        insert: bool,
    ) -> bool:
        current = self._find(event.entity_id)
        if current is None:
            if not insert or event.entity is None or not accepts(event.entity):
                return False
            self.surfaced.insert(0, event.entity)
            return True

        merged = current.merged(event.entity) if event.entity is not None else current
        if not accepts(merged):
            return self._remove(event.entity_id)
        if merged == current:
            return False
        for entities in self._lists():
            for i, entity in enumerate(entities):
                if entity.id == merged.id:
                    entities[i] = merged
        return True

    def _remove(self, entity_id: str) -> bool:
        removed = False
        for entities in self._lists():
            kept = [e for e in entities if e.id != entity_id]
            if len(kept) != len(entities):
                entities[:] = kept
                removed = True
        return removed


@dataclass(frozen=True)
class _Failure:
    error: BaseException


class LiveResult:
    """A live, never-ending sequence of snapshots for one report query.

    Example::

        live = reports.get_accomplished("p1", "task", is_week_search=True)

        first = await live.first()

        async for snapshot in live:      # runs until the loop is left
            render(snapshot)

        sub = live.subscribe(render, on_error=log)
        ...
        sub.unsubscribe()
    """

    def __init__(self, view: CollectionView) -> None:
        self._view = view

    @property
    def descriptor(self) -> QueryDescriptor:
        return self._view.descriptor

    @property
    def state(self) -> ViewState:
        return self._view.state

    @property
    def snapshot(self) -> Optional[Snapshot]:
        """The latest snapshot, or ``None`` while this page is loading or failed."""
        if self._view.state is ViewState.LOADED:
            return self._view.chain.snapshot
        return None

    def subscribe(
        self,
        on_next: NextHandler,
        on_error: Optional[ErrorHandler] = None,
    ) -> Subscription:
        return self._view.subscribe(on_next, on_error)

    def __aiter__(self) -> AsyncIterator[Snapshot]:
        return self._iterate()

    async def first(self) -> Snapshot:
        """Wait for and return the next available snapshot, then unsubscribe."""
        iterator = self._iterate()
        try:
            return await iterator.__anext__()
        finally:
            await iterator.aclose()

    async def _iterate(self) -> AsyncIterator[Snapshot]:
        queue: asyncio.Queue[Union[Snapshot, _Failure]] = asyncio.Queue()
        subscription = self._view.subscribe(
            queue.put_nowait, lambda exc: queue.put_nowait(_Failure(exc))
        )
        try:
            while True:
                item = await queue.get()
                if isinstance(item, _Failure):
                    raise item.error
                yield item
        finally:
            subscription.unsubscribe()

    def __repr__(self) -> str:
        return f"LiveResult({self._view.descriptor.to_path()!r}, state={self.state.value})"


def _unique(entities: Iterable[Entity]) -> Iterable[Entity]:
    seen: set[str] = set()
    for entity in entities:
        if entity.id not in seen:
            seen.add(entity.id)
            yield entity


def _deliver_error(sink: _Sink, error: BaseException, descriptor: QueryDescriptor) -> None:
    if sink.on_error is not None:
        sink.on_error(error)
    else:
        warning(f"Unhandled error for {descriptor.to_path()}: {error}")
