"""Exception hierarchy for reportsync.

All exceptions inherit from :class:`ReportsyncError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`reportsync.exit_codes`.
The CLI entry point catches ``ReportsyncError`` and exits with that code.

Subclass hierarchy::

    ReportsyncError (exit 1)
    +-- InvalidUsageError           (exit 2)
    +-- ConfigError                 (exit 1)
    +-- TransportFailure            (exit 5)
    |   +-- AuthError               (exit 3)
    |   +-- NotFoundError           (exit 4)
    |   +-- ServerError             (exit 5)
    +-- ConnectionError_            (exit 6)
    +-- NoHandlerFailure            (exit 70)
    +-- FingerprintCollisionError   (exit 70)
"""

from __future__ import annotations

from typing import Any

from reportsync.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INTERNAL_ERROR,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_SERVER_ERROR,
)


class ReportsyncError(Exception):
    """Base exception for all reportsync errors.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(ReportsyncError):
    """Raised for invalid arguments, e.g. a query with ``page`` but no ``count``."""

    exit_code = EXIT_INVALID_USAGE


class ConfigError(ReportsyncError):
    """Raised for configuration problems (missing profiles, invalid JSON)."""

    exit_code = EXIT_GENERIC_FAILURE


class TransportFailure(ReportsyncError):
    """A non-2xx response from the remote store.

    Delivered unchanged to every caller attached to the failed cache entry.

    Args:
        status: The HTTP status code.
        body: The decoded response body (JSON value, text, or ``None``).
        message: Optional message; derived from *status* and *body* if omitted.
    """

    exit_code = EXIT_SERVER_ERROR

    def __init__(self, status: int, body: Any = None, message: str | None = None):
        super().__init__(message or _describe(status, body))
        self.status = status
        self.body = body


class AuthError(TransportFailure):
    """HTTP 401 / 403."""

    exit_code = EXIT_AUTH_FAILURE


class NotFoundError(TransportFailure):
    """HTTP 404."""

    exit_code = EXIT_NOT_FOUND


class ServerError(TransportFailure):
    """HTTP 5xx, and any 4xx without a more specific class."""

    exit_code = EXIT_SERVER_ERROR


class ConnectionError_(ReportsyncError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR


class NoHandlerFailure(ReportsyncError):
    """No mock response was configured for a request.

    This is a programmer error in a test or dev double and must never be
    turned into an empty result.
    """

    exit_code = EXIT_INTERNAL_ERROR


class FingerprintCollisionError(ReportsyncError):
    """Two different requests produced the same cache fingerprint."""

    exit_code = EXIT_INTERNAL_ERROR


def failure_for_status(status: int, body: Any = None) -> TransportFailure:
    """Return the :class:`TransportFailure` subclass instance for *status*."""
    if status in (401, 403):
        return AuthError(status, body)
    if status == 404:
        return NotFoundError(status, body)
    return ServerError(status, body)


def _describe(status: int, body: Any) -> str:
    msg = ""
    if isinstance(body, dict):
        msg = body.get("message") or body.get("error") or body.get("detail") or ""
    elif body:
        msg = str(body)[:200]
    prefix = f"HTTP {status}"
    return f"{prefix}: {msg}" if msg else prefix
