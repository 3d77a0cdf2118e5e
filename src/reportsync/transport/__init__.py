"""Transport layer for reportsync.

The cache core only needs something that can send one request and return a
status-coded response; that contract is :class:`Transport`.

Classes:
    :class:`Transport` -- the protocol consumed by :class:`~reportsync.store.SyncStore`.
    :class:`TransportResponse` -- ``(status, body)`` result of a send.
    :class:`HttpTransport` -- implementation backed by :class:`httpx.AsyncClient`.
"""

from reportsync.transport.base import Transport, TransportResponse
from reportsync.transport.http import HttpTransport

__all__ = ["HttpTransport", "Transport", "TransportResponse"]
