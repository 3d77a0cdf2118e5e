"""Canonical Pydantic models shared across all reportsync modules.

This is the single source of truth for data shapes in the project. The
models fall into two groups:

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`RequestConfig`, :class:`SyncConfig`, :class:`OutputConfig`,
    :class:`GlobalConfig`, and :class:`Profile`.

**Domain models** -- entities received from the remote store and the values
that describe queries over them and changes to them:
    :class:`EntityType`, :class:`QueryType`, :class:`MutationKind`,
    :class:`Entity`, :class:`Task`, :class:`Subtask`,
    :class:`QueryDescriptor`, and :class:`MutationEvent`.

Entities keep the server's wire field names (``_id``, ``_projectId``,
``isDone`` ...) as aliases and preserve any field they do not declare in
``model_extra``, so a cached entity compares equal to the record the server
sent.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Optional
from urllib.parse import quote, urlencode

from pydantic import BaseModel, ConfigDict, Field, model_validator


# --- Configuration ---


class RequestConfig(BaseModel):
    """Default HTTP request settings applied to every call made through a profile."""

    timeout: int = Field(default=30, description="Request timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    max_retries: int = Field(default=3, description="Max retry attempts")
    cache_bust: bool = Field(
        default=False,
        description="Append a '_' timestamp query parameter to GET requests",
    )


class SyncConfig(BaseModel):
    """Query cache settings stored in :class:`GlobalConfig`."""

    default_page_size: int = Field(
        default=20, ge=1, description="Page size used when only --page is given"
    )
    week_starts_on: int = Field(
        default=0,
        ge=0,
        le=6,
        description="First day of the report week (0 = Monday ... 6 = Sunday)",
    )


class OutputConfig(BaseModel):
    """Default output format preferences stored in :class:`GlobalConfig`."""

    format: str = Field(
        default="auto", description="Output format: auto, json, plain, rich"
    )


class GlobalConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/reportsync/config.json``.

    Loaded and saved by :func:`~reportsync.config.load_global_config` and
    :func:`~reportsync.config.save_global_config`. See
    :func:`~reportsync.config.resolve_config` for the precedence chain.
    """

    default_profile: Optional[str] = None
    auto_select_single_profile: bool = True
    output: OutputConfig = Field(default_factory=OutputConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)


class Profile(BaseModel):
    """Connection settings for one remote store.

    Stored as JSON under the ``profiles/`` config directory. The access
    token itself is never written to disk; ``token_env`` names the
    environment variable that holds it.
    """

    model_config = ConfigDict(extra="allow")

    name: str
    base_url: str = Field(description="API root, e.g. https://api.example.com/v2")
    token_env: Optional[str] = Field(
        default=None, description="Environment variable holding a bearer token"
    )
    request: RequestConfig = Field(default_factory=RequestConfig)


# --- Domain ---


class EntityType(str, enum.Enum):
    """Entity kinds tracked by the cache. The value is the ``taskType`` query value."""

    TASK = "task"
    SUBTASK = "subtask"

    @property
    def resource(self) -> str:
        """URL collection segment (``tasks`` / ``subtasks``)."""
        return f"{self.value}s"


class QueryType(str, enum.Enum):
    """Report query kinds: every accomplished item, or only the late ones."""

    ALL = "all"
    DELAY = "delay"


class MutationKind(str, enum.Enum):
    """Operation that produced a :class:`MutationEvent`."""

    FETCHED = "fetched"
    DELETED = "deleted"
    ARCHIVED = "archived"
    STATUS_CHANGED = "status_changed"


class Entity(BaseModel):
    """A record owned by a project.

    Only ``id`` is required so that partial server responses such as
    ``{"_id": "t1", "isDone": false}`` validate; :meth:`merged` folds such a
    partial into a complete record.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(alias="_id")
    project_id: Optional[str] = Field(default=None, alias="_projectId")
    content: Optional[str] = None
    is_done: Optional[bool] = Field(default=None, alias="isDone")
    is_archived: Optional[bool] = Field(default=None, alias="isArchived")
    due_date: Optional[datetime] = Field(default=None, alias="dueDate")
    accomplished: Optional[datetime] = None

    def merged(self, changes: Entity) -> Entity:
        """Return a copy of this entity with every field set on *changes* applied."""
        return self.model_copy(update=changes.model_dump(exclude_unset=True))

    def to_wire(self) -> dict[str, Any]:
        """Serialise back to the server's JSON shape."""
        return self.model_dump(by_alias=True, mode="json", exclude_unset=True)


class Task(Entity):
    """A project task."""

    executor_id: Optional[str] = Field(default=None, alias="_executorId")


class Subtask(Entity):
    """A checklist item belonging to a task."""

    task_id: Optional[str] = Field(default=None, alias="_taskId")


ENTITY_MODELS: dict[EntityType, type[Entity]] = {
    EntityType.TASK: Task,
    EntityType.SUBTASK: Subtask,
}


class QueryDescriptor(BaseModel):
    """Immutable description of one report query.

    Two descriptors with equal fields share one cache entry and one
    collection view. ``page`` and ``count`` must be given together.

    Example::

        QueryDescriptor(
            project_id="p1",
            entity_type=EntityType.TASK,
            query_type=QueryType.ALL,
            is_week_search=False,
            page=1,
            count=20,
        )
    """

    model_config = ConfigDict(frozen=True)

    project_id: str = Field(min_length=1)
    entity_type: EntityType
    query_type: QueryType = QueryType.ALL
    is_week_search: bool = False
    page: Optional[int] = Field(default=None, ge=1)
    count: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _check_pagination(self) -> QueryDescriptor:
        if (self.page is None) != (self.count is None):
            raise ValueError("page and count must be given together")
        return self

    @property
    def page_number(self) -> int:
        """Position of this query in its page chain (unpaginated queries are page 1)."""
        return self.page or 1

    @property
    def chain_key(self) -> tuple[str, EntityType, QueryType, bool, Optional[int]]:
        """Every field except ``page``; descriptors sharing it form one page chain."""
        return (
            self.project_id,
            self.entity_type,
            self.query_type,
            self.is_week_search,
            self.count,
        )

    def to_query(self) -> dict[str, str]:
        """Query parameters in wire order."""
        params = {
            "queryType": self.query_type.value,
            "isWeekSearch": "true" if self.is_week_search else "false",
        }
        if self.page is not None:
            params["page"] = str(self.page)
            params["count"] = str(self.count)
        params["taskType"] = self.entity_type.value
        return params

    def to_path(self) -> str:
        """The GET path (with query string) that serves this descriptor."""
        project = quote(self.project_id, safe="")
        return f"/projects/{project}/report-accomplished?{urlencode(self.to_query())}"


class MutationEvent(BaseModel):
    """Broadcast after an entity-level operation completes.

    ``entity`` is whatever the server returned for the operation. It may be
    partial (only ``_id`` and the changed flag) or absent (delete).
    """

    model_config = ConfigDict(frozen=True)

    entity_type: EntityType
    entity_id: str
    kind: MutationKind
    entity: Optional[Entity] = None
