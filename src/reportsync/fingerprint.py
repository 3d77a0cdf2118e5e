"""Request fingerprints used as single-flight cache keys.

A fingerprint is the SHA-256 of a canonical request string
``METHOD path?sorted_query body_json``:

* the method is upper-cased;
* the query string is re-encoded with its pairs sorted, and for GET the
  cache-busting ``_`` parameter is dropped, so two GETs that differ only in
  that parameter share one entry;
* the body is serialised as compact JSON with sorted keys.

The canonical string itself is unambiguous (paths and queries never contain
a raw space), so distinct requests cannot map to the same string.
:func:`canonical_request` exposes it so the cache can detect a hash
collision instead of serving the wrong payload.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit

CACHE_BUST_PARAM = "_"


def canonical_request(method: str, path: str, payload: Optional[Any] = None) -> str:
    """Return the canonical identity string for a request.

    Args:
        method: HTTP method, any case.
        path: Request path, optionally with a query string.
        payload: JSON-serialisable request body, or ``None``.

    Returns:
        ``"METHOD path?query body"`` with the normalisations described in
        the module docstring.
    """
    method = method.upper()
    parts = urlsplit(path)
    pairs = parse_qsl(parts.query, keep_blank_values=True)
    if method == "GET":
        pairs = [(k, v) for k, v in pairs if k != CACHE_BUST_PARAM]
    normalized = parts.path or "/"
    if pairs:
        normalized = f"{normalized}?{urlencode(sorted(pairs))}"

    key = f"{method} {normalized}"
    if payload is not None:
        key = f"{key} {json.dumps(payload, sort_keys=True, separators=(',', ':'), default=str)}"
    return key


def fingerprint(method: str, path: str, payload: Optional[Any] = None) -> str:
    """Derive the cache key for a request.

    Pure and deterministic: equal inputs (after normalisation) always give
    the same key.

    Example::

        >>> fingerprint("get", "/tasks/t1?_=1700000000") == fingerprint("GET", "/tasks/t1")
        True
    """
    raw = canonical_request(method, path, payload)
    return hashlib.sha256(raw.encode()).hexdigest()
