"""Test doubles: an in-memory HTTP backend and a step-by-step scheduler.

:class:`MockBackend` answers requests from a table of canned responses and
holds successful ones back until :meth:`MockBackend.flush`, so a test can
set up several subscriptions before any data arrives::

    backend = MockBackend()
    backend.when_get("/tasks/t1").respond({"_id": "t1", "isDone": True})
    backend.when_put("/tasks/t1/isDone", {"isDone": False}).respond({"_id": "t1", "isDone": False})

    async with HttpTransport(profile, transport=backend.transport()) as transport:
        ...
        backend.flush()

A request with no matching route raises :class:`NoHandlerFailure`, which
lists every route that is defined.
"""

from __future__ import annotations

import asyncio
import json
from collections import deque
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from reportsync.exceptions import NoHandlerFailure
from reportsync.fingerprint import CACHE_BUST_PARAM


@dataclass
class MockResponse:
    data: Any
    status: int = 200


@dataclass(frozen=True)
class RecordedCall:
    method: str
    url: str
    body: Any = None


class RouteBuilder:
    """Returned by ``MockBackend.when_*``; call :meth:`respond` to set the response."""

    def __init__(self, backend: MockBackend, key: str) -> None:
        self._backend = backend
        self._key = key

    def respond(self, data: Any = None, status: int = 200) -> MockBackend:
        """Answer the route with *data* (a JSON value or a pre-encoded string)."""
        self._backend._routes[self._key] = MockResponse(data=data, status=status)
        return self._backend


class MockBackend:
    """Canned-response HTTP backend for :class:`httpx.MockTransport`.

    Routes are keyed by the lower-cased absolute URL, the method and the
    request body serialised with sorted keys. GET requests ignore the
    cache-busting ``_`` parameter.

    Successful responses wait until :meth:`flush`; once flushed, later
    requests resolve immediately. Error statuses are returned at once.

    Args:
        base_url: Prefix applied to routes given as a path.
    """

    def __init__(self, base_url: str = "http://api.test") -> None:
        self.base_url = base_url.rstrip("/")
        self._routes: dict[str, MockResponse] = {}
        self._held: list[asyncio.Future[None]] = []
        self._flushed = False
        self.calls: list[RecordedCall] = []

    # ------------------------------------------------------------------ #
    # Route definition
    # ------------------------------------------------------------------ #

    def when_get(self, url: str) -> RouteBuilder:
        return self._when("GET", url)

    def when_post(self, url: str, body: Any = None) -> RouteBuilder:
        return self._when("POST", url, body)

    def when_put(self, url: str, body: Any = None) -> RouteBuilder:
        return self._when("PUT", url, body)

    def when_delete(self, url: str, body: Any = None) -> RouteBuilder:
        return self._when("DELETE", url, body)

    def _when(self, method: str, url: str, body: Any = None) -> RouteBuilder:
        if url.startswith("/"):
            url = f"{self.base_url}{url}"
        return RouteBuilder(self, _route_key(method, httpx.URL(url), body))

    # ------------------------------------------------------------------ #
    # Control
    # ------------------------------------------------------------------ #

    def flush(self) -> None:
        """Release every held response; later responses are not held."""
        self._flushed = True
        held, self._held = self._held, []
        for future in held:
            if not future.done():
                future.set_result(None)

    def reset(self) -> None:
        """Forget routes and recorded calls and start holding responses again."""
        self._routes.clear()
        self._held.clear()
        self._flushed = False
        self.calls.clear()

    def call_count(self, method: Optional[str] = None, path: Optional[str] = None) -> int:
        """Count recorded calls, optionally filtered by method and URL path."""
        return sum(
            1
            for call in self.calls
            if (method is None or call.method == method.upper())
            and (path is None or httpx.URL(call.url).path == path)
        )

    @property
    def routes(self) -> list[str]:
        return list(self._routes)

    def transport(self) -> httpx.MockTransport:
        """An httpx transport that serves requests from this backend."""
        return httpx.MockTransport(self.handle)

    # ------------------------------------------------------------------ #
    # Request handling
    # ------------------------------------------------------------------ #

    async def handle(self, request: httpx.Request) -> httpx.Response:
        body = _decode(request.content)
        url = request.url
        if request.method == "GET":
            url = url.copy_remove_param(CACHE_BUST_PARAM)
        self.calls.append(RecordedCall(request.method, str(url), body))

        key = _route_key(request.method, url, body)
        response = self._routes.get(key)
        if response is None:
            raise NoHandlerFailure(
                f"No response defined for {request.method} {request.url}\n"
                f"  route key: {key}\n"
                f"  defined routes:\n    " + "\n    ".join(self._routes or ["(none)"])
            )

        if 200 <= response.status < 300 and not self._flushed:
            future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
            self._held.append(future)
            await future

        return _to_httpx(response)


class ManualScheduler:
    """Scheduler that queues coroutines until the test lets them run.

    Example::

        scheduler = ManualScheduler()
        store = SyncStore(transport, scheduler=scheduler)
        live = reports.get_accomplished(...)
        assert scheduler.pending == 1       # fetch queued, not started
        await scheduler.advance()           # start it
    """

    def __init__(self) -> None:
        self._queue: deque[Coroutine[Any, Any, Any]] = deque()
        self._tasks: set[asyncio.Task[Any]] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        self._queue.append(coro)

    @property
    def pending(self) -> int:
        """Coroutines queued but not started."""
        return len(self._queue)

    @property
    def running(self) -> int:
        """Coroutines started but not finished."""
        return len(self._tasks)

    async def advance(self) -> int:
        """Start every queued coroutine and let each run to its first suspension.

        Returns:
            The number of coroutines started.
        """
        loop = asyncio.get_running_loop()
        started = 0
        while self._queue:
            task = loop.create_task(self._queue.popleft())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            started += 1
        await asyncio.sleep(0)
        return started

    async def run_until_idle(self) -> None:
        """Start queued coroutines until nothing is queued or running.

        Coroutines spawned by running ones are started on the next pass, so
        a task waiting on work it queued itself still makes progress.
        """
        while self._queue or self._tasks:
            await self.advance()

    def close(self) -> None:
        """Discard queued coroutines without running them."""
        while self._queue:
            self._queue.popleft().close()


def _route_key(method: str, url: httpx.URL, body: Any) -> str:
    data = ""
    if body is not None and body != "":
        data = body if isinstance(body, str) else json.dumps(body, sort_keys=True)
    return f"{str(url).lower()}{method.lower()}{data}"


def _decode(content: bytes) -> Any:
    if not content:
        return None
    text = content.decode()
    try:
        return json.loads(text)
    except ValueError:
        return text


def _to_httpx(response: MockResponse) -> httpx.Response:
    if isinstance(response.data, (str, bytes)):
        return httpx.Response(response.status, content=response.data)
    if response.data is None:
        return httpx.Response(response.status)
    return httpx.Response(response.status, json=response.data)
