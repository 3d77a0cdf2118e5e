"""Background work scheduling.

The cache and the store never call :func:`asyncio.create_task` directly;
they hand coroutines to a :class:`Scheduler`. Production code uses
:class:`AsyncioScheduler`. Tests can swap in
:class:`~reportsync.testing.ManualScheduler` to decide exactly when each
fetch starts.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any, Protocol


class Scheduler(Protocol):
    """Runs coroutines after the current call stack unwinds."""

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        """Schedule *coro* to run on the event loop."""
        ...


class AsyncioScheduler:
    """Schedules coroutines as tasks on the running event loop.

    Holds a strong reference to every task until it finishes, since the
    event loop itself only keeps weak ones.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @property
    def pending(self) -> int:
        """Number of spawned tasks that have not finished."""
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every spawned task (including ones spawned meanwhile) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
