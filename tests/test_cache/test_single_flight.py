"""Tests for the single-flight request cache."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from reportsync.cache import EntryState, SingleFlightCache
from reportsync.exceptions import FingerprintCollisionError, ServerError
from reportsync.testing import ManualScheduler


class Fetcher:
    """Executor that counts calls and finishes when the test says so."""

    def __init__(self, result: Any = "payload") -> None:
        self.result = result
        self.calls = 0
        self.release = asyncio.Event()

    async def __call__(self) -> Any:
        self.calls += 1
        await self.release.wait()
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result


def run(coro):
    return asyncio.run(coro)


# ------------------------------------------------------------------ #
# Single-flight behaviour
# ------------------------------------------------------------------ #


class TestSingleFlight:
    def test_concurrent_acquires_run_executor_once(self) -> None:
        async def scenario():
            cache = SingleFlightCache()
            fetch = Fetcher()
            pending = [asyncio.ensure_future(cache.acquire("k", fetch)) for _ in range(5)]
            await asyncio.sleep(0)
            fetch.release.set()
            results = await asyncio.gather(*pending)
            return results, fetch.calls, cache.stats()

        results, calls, stats = run(scenario())
        assert results == ["payload"] * 5
        assert calls == 1
        assert stats["executions"] == 1
        assert stats["joins"] == 4

    def test_waiters_attached_while_pending_skip_their_executor(self) -> None:
        async def scenario():
            cache = SingleFlightCache()
            first, second = Fetcher("first"), Fetcher("second")
            a = asyncio.ensure_future(cache.acquire("k", first))
            await asyncio.sleep(0)
            b = asyncio.ensure_future(cache.acquire("k", second))
            await asyncio.sleep(0)
            first.release.set()
            return await a, await b, second.calls

        a, b, second_calls = run(scenario())
        assert a == b == "first"
        assert second_calls == 0

    def test_waiters_resolve_in_attachment_order(self) -> None:
        async def scenario():
            cache = SingleFlightCache()
            fetch = Fetcher()
            order: list[int] = []

            async def caller(n: int) -> None:
                await cache.acquire("k", fetch)
                order.append(n)

            pending = [asyncio.ensure_future(caller(n)) for n in range(4)]
            await asyncio.sleep(0)
            fetch.release.set()
            await asyncio.gather(*pending)
            return order

        assert run(scenario()) == [0, 1, 2, 3]

    def test_resolved_entry_is_served_without_fetch(self) -> None:
        async def scenario():
            cache = SingleFlightCache()
            fetch = Fetcher()
            fetch.release.set()
            await cache.acquire("k", fetch)
            again = await cache.acquire("k", fetch)
            return again, fetch.calls, cache.state("k"), cache.stats()

        again, calls, state, stats = run(scenario())
        assert again == "payload"
        assert calls == 1
        assert state is EntryState.RESOLVED
        assert stats["hits"] == 1

    def test_distinct_fingerprints_fetch_independently(self) -> None:
        async def scenario():
            cache = SingleFlightCache()
            a, b = Fetcher("a"), Fetcher("b")
            a.release.set()
            b.release.set()
            return await cache.acquire("a", a), await cache.acquire("b", b), len(cache)

        assert run(scenario()) == ("a", "b", 2)


# ------------------------------------------------------------------ #
# Failures
# ------------------------------------------------------------------ #


class TestFailures:
    def test_every_waiter_gets_the_same_error(self) -> None:
        async def scenario():
            cache = SingleFlightCache()
            error = ServerError(500, None)
            fetch = Fetcher(error)
            pending = [asyncio.ensure_future(cache.acquire("k", fetch)) for _ in range(3)]
            await asyncio.sleep(0)
            fetch.release.set()
            results = await asyncio.gather(*pending, return_exceptions=True)
            return error, results, fetch.calls

        error, results, calls = run(scenario())
        assert all(r is error for r in results)
        assert calls == 1

    def test_failed_entry_is_not_retried(self) -> None:
        async def scenario():
            cache = SingleFlightCache()
            fetch = Fetcher(ServerError(502, None))
            fetch.release.set()
            with pytest.raises(ServerError):
                await cache.acquire("k", fetch)
            with pytest.raises(ServerError):
                await cache.acquire("k", fetch)
            return fetch.calls, cache.state("k")

        calls, state = run(scenario())
        assert calls == 1
        assert state is EntryState.FAILED

    def test_invalidate_allows_a_fresh_fetch(self) -> None:
        async def scenario():
            cache = SingleFlightCache()
            failing = Fetcher(ServerError(500, None))
            failing.release.set()
            with pytest.raises(ServerError):
                await cache.acquire("k", failing)
            cache.invalidate("k")
            working = Fetcher("ok")
            working.release.set()
            return await cache.acquire("k", working), "k" in cache

        assert run(scenario()) == ("ok", True)

    def test_identity_mismatch_raises_collision(self) -> None:
        async def scenario():
            cache = SingleFlightCache()
            fetch = Fetcher()
            fetch.release.set()
            await cache.acquire("k", fetch, identity="GET /a")
            await cache.acquire("k", fetch, identity="GET /b")

        with pytest.raises(FingerprintCollisionError, match="GET /a"):
            run(scenario())


# ------------------------------------------------------------------ #
# Callbacks, retention and scheduling
# ------------------------------------------------------------------ #


class TestLifecycle:
    def test_on_resolved_runs_once_for_the_creator(self) -> None:
        async def scenario():
            cache = SingleFlightCache()
            fetch = Fetcher()
            calls: list[str] = []
            first = asyncio.ensure_future(
                cache.acquire("k", fetch, on_resolved=lambda r: calls.append(f"creator:{r}"))
            )
            await asyncio.sleep(0)
            second = asyncio.ensure_future(
                cache.acquire("k", fetch, on_resolved=lambda r: calls.append("joiner"))
            )
            await asyncio.sleep(0)
            fetch.release.set()
            await asyncio.gather(first, second)
            await cache.acquire("k", fetch, on_resolved=lambda r: calls.append("hit"))
            return calls

        assert run(scenario()) == ["creator:payload"]

    def test_on_resolved_not_called_on_failure(self) -> None:
        async def scenario():
            cache = SingleFlightCache()
            fetch = Fetcher(ServerError(500, None))
            fetch.release.set()
            calls: list[Any] = []
            with pytest.raises(ServerError):
                await cache.acquire("k", fetch, on_resolved=calls.append)
            return calls

        assert run(scenario()) == []

    def test_unretained_entry_is_dropped_after_settling(self) -> None:
        async def scenario():
            cache = SingleFlightCache()
            fetch = Fetcher()
            fetch.release.set()
            await cache.acquire("k", fetch, retain=False)
            await cache.acquire("k", fetch, retain=False)
            return fetch.calls, "k" in cache

        assert run(scenario()) == (2, False)

    def test_invalidate_keeps_attached_waiters(self) -> None:
        async def scenario():
            cache = SingleFlightCache()
            fetch = Fetcher()
            waiter = asyncio.ensure_future(cache.acquire("k", fetch))
            await asyncio.sleep(0)
            cache.invalidate("k")
            fetch.release.set()
            return await waiter, "k" in cache

        assert run(scenario()) == ("payload", False)

    def test_executor_runs_through_the_scheduler(self) -> None:
        async def scenario():
            scheduler = ManualScheduler()
            cache = SingleFlightCache(scheduler)
            fetch = Fetcher()
            fetch.release.set()
            waiter = asyncio.ensure_future(cache.acquire("k", fetch))
            await asyncio.sleep(0)
            queued = scheduler.pending, fetch.calls, cache.state("k")
            await scheduler.run_until_idle()
            return queued, await waiter

        queued, result = run(scenario())
        assert queued == (1, 0, EntryState.PENDING)
        assert result == "payload"

    def test_clear_resets_entries_and_counters(self) -> None:
        async def scenario():
            cache = SingleFlightCache()
            fetch = Fetcher()
            fetch.release.set()
            await cache.acquire("k", fetch)
            cache.clear()
            return cache.stats()

        assert run(scenario()) == {"size": 0, "executions": 0, "hits": 0, "joins": 0}
