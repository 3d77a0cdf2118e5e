"""Tests for the entity mutation channel."""

from __future__ import annotations

import pytest

from reportsync.channel import EntityMutationChannel
from reportsync.models import EntityType, MutationEvent, MutationKind


def _event(entity_id: str, kind: MutationKind = MutationKind.DELETED) -> MutationEvent:
    return MutationEvent(entity_type=EntityType.TASK, entity_id=entity_id, kind=kind)


class TestDelivery:
    def test_handlers_called_in_subscription_order(self) -> None:
        channel = EntityMutationChannel()
        calls: list[str] = []
        channel.subscribe(lambda e: calls.append(f"a:{e.entity_id}"))
        channel.subscribe(lambda e: calls.append(f"b:{e.entity_id}"))

        channel.publish(_event("t1"))
        channel.publish(_event("t2"))

        assert calls == ["a:t1", "b:t1", "a:t2", "b:t2"]
        assert channel.published == 2

    def test_event_published_from_handler_is_queued(self) -> None:
        channel = EntityMutationChannel()
        calls: list[str] = []

        def first(event: MutationEvent) -> None:
            calls.append(f"first:{event.entity_id}")
            if event.entity_id == "t1":
                channel.publish(_event("t2"))

        channel.subscribe(first)
        channel.subscribe(lambda e: calls.append(f"second:{e.entity_id}"))
        channel.publish(_event("t1"))

        assert calls == ["first:t1", "second:t1", "first:t2", "second:t2"]

    def test_unsubscribe_stops_delivery(self) -> None:
        channel = EntityMutationChannel()
        calls: list[MutationEvent] = []
        unsubscribe = channel.subscribe(calls.append)
        unsubscribe()
        unsubscribe()

        channel.publish(_event("t1"))
        assert calls == []
        assert channel.subscriber_count == 0

    def test_handler_error_propagates_and_channel_recovers(self) -> None:
        channel = EntityMutationChannel()
        calls: list[str] = []

        def explode(event: MutationEvent) -> None:
            if event.entity_id == "bad":
                raise RuntimeError("handler failed")
            calls.append(event.entity_id)

        channel.subscribe(explode)
        with pytest.raises(RuntimeError):
            channel.publish(_event("bad"))
        channel.publish(_event("good"))

        assert calls == ["good"]

    def test_reset_drops_handlers_and_counter(self) -> None:
        channel = EntityMutationChannel()
        channel.subscribe(lambda e: None)
        channel.publish(_event("t1"))
        channel.reset()

        assert channel.subscriber_count == 0
        assert channel.published == 0
