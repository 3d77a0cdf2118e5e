"""Tests for week windows, membership predicates and the invalidation router."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from reportsync.channel import EntityMutationChannel
from reportsync.models import (
    EntityType,
    MutationEvent,
    MutationKind,
    QueryDescriptor,
    QueryType,
    Subtask,
    Task,
)
from reportsync.router import InvalidationRouter, MembershipPredicate, week_window
from reportsync.views import CollectionView, PageChain

from report_data import NOW, PROJECT_ID, WEEK_START, fixed_clock, iso, task


def _predicate(query_type: QueryType = QueryType.ALL, week: bool = False) -> MembershipPredicate:
    return MembershipPredicate(
        project_id=PROJECT_ID,
        query_type=query_type,
        is_week_search=week,
        clock=fixed_clock,
    )


def _task(**overrides: Any) -> Task:
    return Task.model_validate({**task("t1", WEEK_START + timedelta(hours=9)), **overrides})


# ------------------------------------------------------------------ #
# Week window
# ------------------------------------------------------------------ #


class TestWeekWindow:
    def test_week_starts_on_monday(self) -> None:
        start, end = week_window(NOW)
        assert start == datetime(2026, 10, 19, tzinfo=timezone.utc)
        assert end == datetime(2026, 10, 26, tzinfo=timezone.utc)

    def test_monday_midnight_is_its_own_week(self) -> None:
        start, _ = week_window(datetime(2026, 10, 19, tzinfo=timezone.utc))
        assert start == datetime(2026, 10, 19, tzinfo=timezone.utc)

    def test_sunday_belongs_to_previous_monday(self) -> None:
        start, _ = week_window(datetime(2026, 10, 25, 23, 59, tzinfo=timezone.utc))
        assert start == datetime(2026, 10, 19, tzinfo=timezone.utc)

    def test_custom_first_day(self) -> None:
        start, end = week_window(NOW, week_starts_on=6)
        assert start == datetime(2026, 10, 18, tzinfo=timezone.utc)
        assert end - start == timedelta(days=7)


# ------------------------------------------------------------------ #
# Membership predicate
# ------------------------------------------------------------------ #


class TestMembershipPredicate:
    def test_done_task_in_project_matches(self) -> None:
        assert _predicate()(_task())

    def test_other_project_rejected(self) -> None:
        assert not _predicate()(_task(_projectId="other"))

    def test_missing_project_is_accepted(self) -> None:
        assert _predicate()(Task.model_validate({"_id": "t1", "isDone": True}))

    def test_not_done_rejected(self) -> None:
        assert not _predicate()(_task(isDone=False))

    def test_archived_rejected(self) -> None:
        assert not _predicate()(_task(isArchived=True))

    @pytest.mark.parametrize(
        ("accomplished", "expected"),
        [
            (WEEK_START, True),
            (WEEK_START - timedelta(seconds=1), False),
            (WEEK_START + timedelta(days=7) - timedelta(seconds=1), True),
            (WEEK_START + timedelta(days=7), False),
        ],
    )
    def test_week_window_bounds(self, accomplished: datetime, expected: bool) -> None:
        assert _predicate(week=True)(_task(accomplished=iso(accomplished))) is expected

    def test_week_falls_back_to_due_date(self) -> None:
        entity = _task(accomplished=None, dueDate=iso(WEEK_START + timedelta(days=1)))
        assert _predicate(week=True)(entity)

    def test_week_without_any_date_rejected(self) -> None:
        assert not _predicate(week=True)(_task(accomplished=None, dueDate=None))

    def test_naive_timestamps_are_utc(self) -> None:
        entity = Task.model_validate(
            {"_id": "t1", "isDone": True, "accomplished": "2026-10-19T00:00:00"}
        )
        assert _predicate(week=True)(entity)

    def test_non_week_query_has_no_date_constraint(self) -> None:
        assert _predicate()(_task(accomplished=iso(datetime(2020, 1, 1, tzinfo=timezone.utc))))

    def test_delay_requires_completion_after_due(self) -> None:
        due = WEEK_START
        late = _task(dueDate=iso(due), accomplished=iso(due + timedelta(hours=1)))
        on_time = _task(dueDate=iso(due), accomplished=iso(due))
        no_due = _task(dueDate=None)
        predicate = _predicate(QueryType.DELAY)
        assert predicate(late)
        assert not predicate(on_time)
        assert not predicate(no_due)


# ------------------------------------------------------------------ #
# Router
# ------------------------------------------------------------------ #


def _open_chain(entity_type: EntityType, entities: list[Any]) -> PageChain:
    descriptor = QueryDescriptor(project_id=PROJECT_ID, entity_type=entity_type)
    chain = PageChain(descriptor)
    view = CollectionView(descriptor, chain)
    chain.add(view)
    view.resolve(entities)
    return chain


class TestInvalidationRouter:
    def test_event_applied_to_chains_of_matching_type_only(self) -> None:
        channel = EntityMutationChannel()
        router = InvalidationRouter(channel, clock=fixed_clock)
        tasks = _open_chain(EntityType.TASK, [_task()])
        subtasks = _open_chain(
            EntityType.SUBTASK, [Subtask.model_validate({"_id": "t1", "isDone": True})]
        )
        router.register(tasks)
        router.register(subtasks)

        channel.publish(
            MutationEvent(entity_type=EntityType.TASK, entity_id="t1", kind=MutationKind.DELETED)
        )

        assert tasks.snapshot == ()
        assert len(subtasks.snapshot) == 1

    def test_register_is_idempotent_and_unregister_stops_updates(self) -> None:
        channel = EntityMutationChannel()
        router = InvalidationRouter(channel, clock=fixed_clock)
        chain = _open_chain(EntityType.TASK, [_task()])
        router.register(chain)
        router.register(chain)
        assert router.chain_count == 1

        router.unregister(chain)
        channel.publish(
            MutationEvent(entity_type=EntityType.TASK, entity_id="t1", kind=MutationKind.DELETED)
        )
        assert len(chain.snapshot) == 1
        assert router.chain_count == 0

    def test_close_unsubscribes_from_channel(self) -> None:
        channel = EntityMutationChannel()
        router = InvalidationRouter(channel)
        router.register(_open_chain(EntityType.TASK, []))
        router.close()

        assert channel.subscriber_count == 0
        assert router.chain_count == 0

    def test_events_applied_in_order(self) -> None:
        channel = EntityMutationChannel()
        router = InvalidationRouter(channel, clock=fixed_clock)
        chain = _open_chain(EntityType.TASK, [])
        router.register(chain)
        seen: list = []
        chain.views[1].subscribe(seen.append)

        fetched = _task()
        channel.publish(
            MutationEvent(entity_type=EntityType.TASK, entity_id="t1", kind=MutationKind.FETCHED, entity=fetched)
        )
        channel.publish(
            MutationEvent(entity_type=EntityType.TASK, entity_id="t1", kind=MutationKind.ARCHIVED)
        )

        assert [len(s) for s in seen] == [0, 1, 0]
