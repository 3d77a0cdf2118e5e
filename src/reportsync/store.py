"""The coordinating object that owns every piece of cache state.

A :class:`SyncStore` wires together one
:class:`~reportsync.cache.SingleFlightCache`, one
:class:`~reportsync.channel.EntityMutationChannel`, one
:class:`~reportsync.router.InvalidationRouter` and the table of open
collection views. The APIs in :mod:`reportsync.api` are thin facades over
it. Nothing here is module-global: two stores never share state, and
:meth:`SyncStore.reset` returns a store to its freshly created condition.
"""

from __future__ import annotations

from collections.abc import Hashable
from typing import Any, Optional
from urllib.parse import quote

from reportsync.cache import SingleFlightCache
from reportsync.channel import EntityMutationChannel
from reportsync.exceptions import ServerError
from reportsync.fingerprint import canonical_request, fingerprint
from reportsync.models import (
    ENTITY_MODELS,
    Entity,
    EntityType,
    MutationEvent,
    MutationKind,
    QueryDescriptor,
    SyncConfig,
)
from reportsync.output import debug
from reportsync.router import Clock, InvalidationRouter, utcnow
from reportsync.scheduler import AsyncioScheduler, Scheduler
from reportsync.transport.base import Transport
from reportsync.views import CollectionView, LiveResult, PageChain


class SyncStore:
    """Query cache, mutation channel and live views for one remote store.

    Args:
        transport: Sends requests to the remote store.
        scheduler: Runs background fetches. Defaults to an
            :class:`~reportsync.scheduler.AsyncioScheduler`.
        clock: Source of "now" for week-window membership checks.
        config: Sync settings (page size, first day of the week).

    Example::

        store = SyncStore(transport)
        live = store.open(descriptor)
        snapshot = await live.first()
    """

    def __init__(
        self,
        transport: Transport,
        *,
        scheduler: Optional[Scheduler] = None,
        clock: Clock = utcnow,
        config: Optional[SyncConfig] = None,
    ) -> None:
        self.transport = transport
        self.config = config or SyncConfig()
        self.scheduler = scheduler or AsyncioScheduler()
        self.clock = clock
        self.cache = SingleFlightCache(self.scheduler)
        self.channel = EntityMutationChannel()
        self.router = self._new_router()
        self._views: dict[QueryDescriptor, CollectionView] = {}
        self._chains: dict[Hashable, PageChain] = {}

    # ------------------------------------------------------------------ #
    # Collection views
    # ------------------------------------------------------------------ #

    def open(self, descriptor: QueryDescriptor) -> LiveResult:
        """Return the live result for *descriptor*, fetching it on first use.

        Equal descriptors share one view and one fetch. Must be called
        from a running event loop.
        """
        view = self._views.get(descriptor)
        if view is not None:
            debug(f"Reusing view for {descriptor.to_path()}")
            return LiveResult(view)

        chain = self._chains.get(descriptor.chain_key)
        if chain is None:
            chain = PageChain(descriptor)
            self._chains[descriptor.chain_key] = chain
            self.router.register(chain)

        view = CollectionView(descriptor, chain)
        chain.add(view)
        self._views[descriptor] = view
        self.scheduler.spawn(self._load(view))
        return LiveResult(view)

    def invalidate(self, descriptor: QueryDescriptor) -> None:
        """Drop the cached fetch for *descriptor* and load it again.

        Entities surfaced by mutation events are kept, and ids removed by
        earlier events may be surfaced again. Subscribers receive the
        reloaded result if it differs from what they last saw.
        """
        self.cache.invalidate(fingerprint("GET", descriptor.to_path()))
        view = self._views.get(descriptor)
        if view is not None:
            view.chain.forget_removed()
            view.reopen()
            self.scheduler.spawn(self._load(view))

    async def _load(self, view: CollectionView) -> None:
        path = view.descriptor.to_path()
        model = ENTITY_MODELS[view.descriptor.entity_type]

        async def execute() -> tuple[Entity, ...]:
            response = await self.transport.send("GET", path)
            if not isinstance(response.body, list):
                raise ServerError(
                    response.status,
                    response.body,
                    f"Expected a list of entities from {path}",
                )
            return tuple(model.model_validate(item) for item in response.body)

        try:
            entities = await self.cache.acquire(
                fingerprint("GET", path),
                execute,
                identity=canonical_request("GET", path),
            )
        except Exception as exc:
            view.fail(exc)
            return
        view.resolve(entities)

    # ------------------------------------------------------------------ #
    # Entity operations
    # ------------------------------------------------------------------ #

    async def run_mutation(
        self,
        entity_type: EntityType,
        kind: MutationKind,
        method: str,
        path: str,
        entity_id: str,
        body: Optional[Any] = None,
    ) -> Optional[Entity]:
        """Run one entity-level operation through the cache.

        The request is single-flight on its own fingerprint. When it
        succeeds, exactly one :class:`~reportsync.models.MutationEvent` is
        published carrying whatever entity state the server returned.
        Non-GET operations are not kept in the cache after they settle, and
        they drop the cached ``GET`` of the same entity.

        Returns:
            The returned entity (possibly partial), or ``None`` when the
            server returned no entity fields.

        Raises:
            TransportFailure: The request failed; nothing is published.
        """
        method = method.upper()
        model = ENTITY_MODELS[entity_type]

        async def execute() -> Optional[Entity]:
            response = await self.transport.send(method, path, body)
            return _entity_from(model, entity_id, response.body)

        def publish(entity: Optional[Entity]) -> None:
            if method != "GET":
                self.cache.invalidate(fingerprint("GET", entity_path(entity_type, entity_id)))
            self.channel.publish(
                MutationEvent(
                    entity_type=entity_type,
                    entity_id=entity_id,
                    kind=kind,
                    entity=entity,
                )
            )

        return await self.cache.acquire(
            fingerprint(method, path, body),
            execute,
            identity=canonical_request(method, path, body),
            on_resolved=publish,
            retain=method == "GET",
        )

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def reset(self) -> None:
        """Forget every cache entry, view and subscription."""
        self.cache.clear()
        self.router.close()
        self.channel.reset()
        self._views.clear()
        self._chains.clear()
        self.router = self._new_router()
        debug("Store reset")

    def stats(self) -> dict[str, Any]:
        """Cache statistics plus the number of open views, chains and published events."""
        return {
            **self.cache.stats(),
            "views": len(self._views),
            "chains": self.router.chain_count,
            "events": self.channel.published,
        }

    def _new_router(self) -> InvalidationRouter:
        return InvalidationRouter(
            self.channel,
            clock=self.clock,
            week_starts_on=self.config.week_starts_on,
        )


def entity_path(entity_type: EntityType, entity_id: str) -> str:
    """``/tasks/{id}`` or ``/subtasks/{id}``, with the id percent-encoded."""
    return f"/{entity_type.resource}/{quote(entity_id, safe='')}"


def _entity_from(model: type[Entity], entity_id: str, data: Any) -> Optional[Entity]:
    if not isinstance(data, dict) or not data:
        return None
    return model.model_validate({"_id": entity_id, **data})
