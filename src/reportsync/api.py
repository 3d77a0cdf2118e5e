"""Caller-facing APIs: the report facade and the per-entity operations.

Every API is a thin, stateless facade over a shared
:class:`~reportsync.store.SyncStore`; create as many as you like.

Example::

    store = SyncStore(transport)
    reports = ReportAPI(store)
    tasks = TaskAPI(store)

    live = reports.get_accomplished("p1", "task", is_week_search=True)
    await live.first()
    await tasks.archive("t1")      # t1 disappears from ``live``
"""

from __future__ import annotations

from typing import ClassVar, Optional, Union

from pydantic import ValidationError

from reportsync.exceptions import InvalidUsageError
from reportsync.models import (
    Entity,
    EntityType,
    MutationKind,
    QueryDescriptor,
    QueryType,
)
from reportsync.store import SyncStore, entity_path
from reportsync.views import LiveResult


class EntityAPI:
    """Operations on one entity kind. Subclasses set :attr:`entity_type`."""

    entity_type: ClassVar[EntityType]

    def __init__(self, store: SyncStore) -> None:
        self._store = store

    async def get(self, entity_id: str) -> Optional[Entity]:
        """``GET /{resource}/{id}``. Publishes a ``fetched`` event.

        The result stays cached until a mutation of the same entity settles.
        """
        return await self._run(MutationKind.FETCHED, "GET", entity_path(self.entity_type, entity_id), entity_id)

    async def delete(self, entity_id: str) -> None:
        """``DELETE /{resource}/{id}``. Publishes a ``deleted`` event."""
        await self._run(MutationKind.DELETED, "DELETE", entity_path(self.entity_type, entity_id), entity_id)

    async def archive(self, entity_id: str) -> Optional[Entity]:
        """``POST /{resource}/{id}/archive``. Publishes an ``archived`` event."""
        path = f"{entity_path(self.entity_type, entity_id)}/archive"
        return await self._run(MutationKind.ARCHIVED, "POST", path, entity_id)

    async def update_status(self, entity_id: str, is_done: bool) -> Optional[Entity]:
        """``PUT /{resource}/{id}/isDone``. Publishes a ``status_changed`` event."""
        path = f"{entity_path(self.entity_type, entity_id)}/isDone"
        return await self._run(
            MutationKind.STATUS_CHANGED, "PUT", path, entity_id, body={"isDone": is_done}
        )

    async def _run(
        self,
        kind: MutationKind,
        method: str,
        path: str,
        entity_id: str,
        body: Optional[dict] = None,
    ) -> Optional[Entity]:
        if not entity_id:
            raise InvalidUsageError(f"{self.entity_type.value} id must not be empty")
        return await self._store.run_mutation(self.entity_type, kind, method, path, entity_id, body)


class TaskAPI(EntityAPI):
    entity_type = EntityType.TASK


class SubtaskAPI(EntityAPI):
    entity_type = EntityType.SUBTASK


class ReportAPI:
    """Report queries over a project's accomplished tasks and subtasks."""

    def __init__(self, store: SyncStore) -> None:
        self._store = store

    def get_accomplished(
        self,
        project_id: str,
        entity_type: Union[EntityType, str],
        *,
        query_type: Union[QueryType, str] = QueryType.ALL,
        is_week_search: bool = False,
        page: Optional[int] = None,
        count: Optional[int] = None,
    ) -> LiveResult:
        """Open the live result of an accomplished-items report.

        Issues ``GET /projects/{project_id}/report-accomplished`` with
        ``queryType``, ``isWeekSearch``, optional ``page`` / ``count`` and
        ``taskType``. Equal arguments share one fetch and one view; pages of
        the same query are merged into one sequence.

        Args:
            project_id: Project whose report to read.
            entity_type: ``"task"`` or ``"subtask"``.
            query_type: ``"all"`` or ``"delay"`` (completed after the due date).
            is_week_search: Restrict to items completed in the current week.
            page: 1-based page number. Requires *count*.
            count: Page size. Requires *page*.

        Raises:
            InvalidUsageError: For an unknown entity or query type, a
                non-positive page or count, or only one of them given.
        """
        try:
            descriptor = QueryDescriptor(
                project_id=project_id,
                entity_type=entity_type,
                query_type=query_type,
                is_week_search=is_week_search,
                page=page,
                count=count,
            )
        except ValidationError as exc:
            raise InvalidUsageError(_describe_validation(exc)) from exc
        return self._store.open(descriptor)


def _describe_validation(exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"])
        problems.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "Invalid report query: " + "; ".join(problems)
