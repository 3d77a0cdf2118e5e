"""reportsync -- a reactive query cache for project report APIs.

This package keeps derived query results (for example "tasks accomplished
this week in project P") consistent with the remote store without
re-fetching them after every change. Identical concurrent requests are
collapsed into one network call, paginated results are merged into one
ordered sequence, and entity mutations (fetch, delete, archive, status
change) are re-projected into every live result that contains the entity.

Typical usage::

    async with HttpTransport(profile) as transport:
        store = SyncStore(transport)
        reports = ReportAPI(store)
        live = reports.get_accomplished("p1", "task", query_type="all", is_week_search=True)
        async for snapshot in live:
            ...

Modules:
    api: Report facade and per-entity mutation APIs.
    store: The coordinating :class:`~reportsync.store.SyncStore`.
    cache: Single-flight request cache.
    views: Collection views, page chains and live results.
    channel: Entity mutation channel.
    router: Invalidation router and membership predicates.
    transport: Transport protocol and the httpx-backed implementation.
    models: Pydantic models for configuration and domain entities.
    exceptions: Exception hierarchy with exit-code mapping.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"

from reportsync.api import ReportAPI, SubtaskAPI, TaskAPI
from reportsync.store import SyncStore
from reportsync.transport import HttpTransport, Transport, TransportResponse

__all__ = [
    "HttpTransport",
    "ReportAPI",
    "SubtaskAPI",
    "SyncStore",
    "TaskAPI",
    "Transport",
    "TransportResponse",
    "__version__",
]
