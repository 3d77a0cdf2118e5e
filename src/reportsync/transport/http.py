"""Asynchronous HTTP transport backed by :class:`httpx.AsyncClient`.

:class:`HttpTransport` implements the :class:`~reportsync.transport.base.Transport`
protocol for a :class:`~reportsync.models.Profile`:

- **Auth injection** -- a bearer token read from the environment variable
  named by ``profile.token_env``.
- **Cache busting** -- with ``request.cache_bust`` enabled, GET requests
  carry a ``_`` timestamp parameter (ignored by request fingerprints).
- **Retry with backoff** -- retries on 5xx and network errors with
  exponential delay (1 s, 2 s, 4 s, ...).
- **Error mapping** -- non-2xx responses raise
  :class:`~reportsync.exceptions.TransportFailure` subclasses carrying the
  status and decoded body.
"""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Awaitable, Callable
from typing import Any, Optional

import httpx

from reportsync.exceptions import ConfigError, ConnectionError_, failure_for_status
from reportsync.fingerprint import CACHE_BUST_PARAM
from reportsync.models import Profile
from reportsync.output import debug
from reportsync.transport.base import TransportResponse


class HttpTransport:
    """Transport that talks to the remote store over HTTP.

    Must be used as an async context manager so that the underlying
    connection pool is opened and closed.

    Args:
        profile: Base URL, token source and request settings (timeout,
            retries, SSL verify, cache busting).
        transport: Optional httpx transport, e.g. :class:`httpx.MockTransport`
            in tests.
        sleep: Coroutine used to wait between retries.

    Example::

        async with HttpTransport(profile) as transport:
            response = await transport.send("GET", "/tasks/t1")
    """

    def __init__(
        self,
        profile: Profile,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._profile = profile
        self._transport = transport
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None
        self._calls = 0

    # ------------------------------------------------------------------ #
    # Async context manager
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> HttpTransport:
        config = self._profile.request
        self._client = httpx.AsyncClient(
            base_url=self._profile.base_url,
            headers=self._auth_headers(),
            timeout=config.timeout,
            verify=config.verify_ssl,
            follow_redirects=True,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def calls(self) -> int:
        """Number of :meth:`send` calls made (retries not counted)."""
        return self._calls

    # ------------------------------------------------------------------ #
    # Transport protocol
    # ------------------------------------------------------------------ #

    async def send(
        self,
        method: str,
        path: str,
        body: Optional[Any] = None,
    ) -> TransportResponse:
        """Send one request and return its decoded 2xx response.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE).
            path: Path relative to the profile's ``base_url``, optionally
                with a query string.
            body: JSON-serialisable request body.

        Returns:
            The response status and JSON-decoded body.

        Raises:
            AuthError: On 401 / 403.
            NotFoundError: On 404.
            ServerError: On 5xx after all retries, and on other 4xx.
            ConnectionError_: On network / timeout errors after all retries.
        """
        self._calls += 1
        method = method.upper()
        params: dict[str, Any] = {}
        if method == "GET" and self._profile.request.cache_bust:
            params[CACHE_BUST_PARAM] = str(int(time.time() * 1000))

        debug(f"{method} {path}")
        response = await self._execute_with_retry(method, path, params, body)
        data = extract_response_data(response)
        if response.status_code >= 400:
            raise failure_for_status(response.status_code, data)
        return TransportResponse(status=response.status_code, body=data)

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _auth_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        var = self._profile.token_env
        if var:
            token = os.environ.get(var)
            if token is None:
                raise ConfigError(f"Environment variable '{var}' is not set (profile: {self._profile.name})")
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _execute_with_retry(
        self,
        method: str,
        path: str,
        params: dict[str, Any],
        body: Any,
    ) -> httpx.Response:
        """Execute the request, retrying 5xx and network errors with backoff."""
        assert self._client is not None, "Transport not initialised -- use as async context manager"

        max_retries = self._profile.request.max_retries

        for attempt in range(max_retries + 1):
            try:
                kwargs: dict[str, Any] = {"method": method, "url": path}
                if params:
                    kwargs["params"] = params
                if body is not None:
                    kwargs["json"] = body

                response = await self._client.request(**kwargs)

                if response.status_code >= 500 and attempt < max_retries:
                    delay = 2 ** attempt
                    debug(
                        f"Server error {response.status_code}, retrying in {delay}s "
                        f"(attempt {attempt + 1}/{max_retries})"
                    )
                    await self._sleep(delay)
                    continue

                return response

            except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
                if attempt < max_retries:
                    delay = 2 ** attempt
                    debug(
                        f"Connection error: {exc}, retrying in {delay}s "
                        f"(attempt {attempt + 1}/{max_retries})"
                    )
                    await self._sleep(delay)
                    continue

                raise ConnectionError_(
                    f"Connection failed after {max_retries + 1} attempts: {exc}"
                ) from exc

        raise ConnectionError_("Request failed after all retries")  # pragma: no cover


def extract_response_data(response: httpx.Response) -> Any:
    """Decode a response body: JSON if possible, else text, ``None`` if empty."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
