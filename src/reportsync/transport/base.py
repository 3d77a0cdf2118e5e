"""Transport contract consumed by the cache core."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol


@dataclass(frozen=True)
class TransportResponse:
    """A successful (2xx) response with its JSON-decoded body."""

    status: int
    body: Any = None


class Transport(Protocol):
    """Sends a single request to the remote store.

    Implementations raise :class:`~reportsync.exceptions.TransportFailure`
    (carrying ``status`` and ``body``) for non-2xx responses, and
    :class:`~reportsync.exceptions.ConnectionError_` when no response
    arrives at all.
    """

    async def send(
        self,
        method: str,
        path: str,
        body: Optional[Any] = None,
    ) -> TransportResponse:
        ...
