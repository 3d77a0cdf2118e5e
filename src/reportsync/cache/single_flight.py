"""Single-flight cache for request results.

Each fingerprint owns one :class:`CacheEntry` for its lifetime:

* the first :meth:`SingleFlightCache.acquire` creates a ``pending`` entry and
  schedules the executor (the actual transport call);
* later acquires while the entry is ``pending`` attach as waiters and never
  call their own executor;
* once the executor finishes the entry becomes ``resolved`` or ``failed``
  and the waiters are released in the order they attached;
* acquires after that get the stored result (or stored error) directly.

Entries stay until :meth:`~SingleFlightCache.invalidate` or
:meth:`~SingleFlightCache.clear`. A failed entry is never retried on its own.
Entries acquired with ``retain=False`` (used for mutations) are dropped as
soon as they settle, so only concurrent callers share them.
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Optional

from reportsync.exceptions import FingerprintCollisionError
from reportsync.output import debug
from reportsync.scheduler import AsyncioScheduler, Scheduler


class EntryState(str, enum.Enum):
    """Lifecycle of a :class:`CacheEntry`."""

    PENDING = "pending"
    RESOLVED = "resolved"
    FAILED = "failed"


@dataclass
class CacheEntry:
    """One fingerprint's fetch and everyone waiting on it."""

    fingerprint: str
    identity: Optional[str] = None
    state: EntryState = EntryState.PENDING
    waiters: list[asyncio.Future[Any]] = field(default_factory=list)
    result: Any = None
    error: Optional[BaseException] = None


class SingleFlightCache:
    """Collapses concurrent identical requests into one executor call.

    Args:
        scheduler: Where executors run. Defaults to an
            :class:`~reportsync.scheduler.AsyncioScheduler`.

    Example::

        cache = SingleFlightCache()
        a, b = await asyncio.gather(
            cache.acquire(key, fetch_users),
            cache.acquire(key, fetch_users),
        )
        assert cache.stats()["executions"] == 1
    """

    def __init__(self, scheduler: Optional[Scheduler] = None) -> None:
        self._scheduler = scheduler or AsyncioScheduler()
        self._entries: dict[str, CacheEntry] = {}
        self._executions = 0
        self._hits = 0
        self._joins = 0

    async def acquire(
        self,
        fingerprint: str,
        executor: Callable[[], Awaitable[Any]],
        *,
        identity: Optional[str] = None,
        on_resolved: Optional[Callable[[Any], None]] = None,
        retain: bool = True,
    ) -> Any:
        """Return the result for *fingerprint*, running *executor* only on a miss.

        Args:
            fingerprint: Cache key from :func:`~reportsync.fingerprint.fingerprint`.
            executor: Zero-argument coroutine function performing the fetch.
            identity: Canonical request string. When given, it must match
                the identity stored on an existing entry.
            on_resolved: Called once with the result after a successful
                fetch, and only by the acquire that started that fetch.
            retain: Keep the entry after it settles. ``False`` drops it so
                the next acquire fetches again.

        Returns:
            The executor's result.

        Raises:
            FingerprintCollisionError: If *identity* differs from the
                identity of the existing entry.
            Exception: Whatever the executor raised, re-raised to every
                attached caller.
        """
        entry = self._entries.get(fingerprint)
        if entry is not None:
            self._check_identity(entry, identity)
            if entry.state is EntryState.RESOLVED:
                self._hits += 1
                debug(f"Cache hit: {_short(fingerprint)}")
                return entry.result
            if entry.state is EntryState.FAILED:
                assert entry.error is not None
                raise entry.error
            self._joins += 1
            debug(f"Joining in-flight request: {_short(fingerprint)}")
            return await self._attach(entry)

        entry = CacheEntry(fingerprint=fingerprint, identity=identity)
        self._entries[fingerprint] = entry
        waiter = self._attach(entry)
        debug(f"Cache miss: {_short(fingerprint)}")
        self._scheduler.spawn(self._execute(entry, executor, on_resolved, retain))
        return await waiter

    def invalidate(self, fingerprint: str) -> None:
        """Remove the entry for *fingerprint*; the next acquire fetches again.

        Callers already attached to a pending entry still receive its result.
        """
        if self._entries.pop(fingerprint, None) is not None:
            debug(f"Cache invalidated: {_short(fingerprint)}")

    def clear(self) -> None:
        """Remove all entries and reset the counters."""
        self._entries.clear()
        self._executions = 0
        self._hits = 0
        self._joins = 0

    def state(self, fingerprint: str) -> Optional[EntryState]:
        """Return the state of the entry for *fingerprint*, or ``None``."""
        entry = self._entries.get(fingerprint)
        return entry.state if entry is not None else None

    def __contains__(self, fingerprint: object) -> bool:
        return fingerprint in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, Any]:
        """Return cache statistics.

        Returns:
            A ``dict`` with ``size`` (entries held), ``executions``
            (executor calls), ``hits`` (served from a settled entry) and
            ``joins`` (attached to a pending entry).
        """
        return {
            "size": len(self._entries),
            "executions": self._executions,
            "hits": self._hits,
            "joins": self._joins,
        }

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _attach(self, entry: CacheEntry) -> asyncio.Future[Any]:
        waiter: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        entry.waiters.append(waiter)
        return waiter

    async def _execute(
        self,
        entry: CacheEntry,
        executor: Callable[[], Awaitable[Any]],
        on_resolved: Optional[Callable[[Any], None]],
        retain: bool,
    ) -> None:
        self._executions += 1
        try:
            result = await executor()
        except asyncio.CancelledError:
            entry.state = EntryState.FAILED
            self._drop(entry)
            for waiter in self._drain(entry):
                waiter.cancel()
            raise
        except Exception as exc:
            entry.state = EntryState.FAILED
            entry.error = exc
            debug(f"Request failed: {_short(entry.fingerprint)}: {exc}")
            if not retain:
                self._drop(entry)
            for waiter in self._drain(entry):
                waiter.set_exception(exc)
            return

        entry.state = EntryState.RESOLVED
        entry.result = result
        if not retain:
            self._drop(entry)
        for waiter in self._drain(entry):
            waiter.set_result(result)
        if on_resolved is not None:
            on_resolved(result)

    def _drain(self, entry: CacheEntry) -> list[asyncio.Future[Any]]:
        waiters, entry.waiters = entry.waiters, []
        return [w for w in waiters if not w.done()]

    def _drop(self, entry: CacheEntry) -> None:
        if self._entries.get(entry.fingerprint) is entry:
            del self._entries[entry.fingerprint]

    def _check_identity(self, entry: CacheEntry, identity: Optional[str]) -> None:
        if identity is None or entry.identity is None or identity == entry.identity:
            return
        raise FingerprintCollisionError(
            f"Fingerprint {_short(entry.fingerprint)} is shared by "
            f"'{entry.identity}' and '{identity}'"
        )


def _short(fingerprint: str) -> str:
    return fingerprint[:12]
