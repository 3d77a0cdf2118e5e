"""In-memory single-flight request caching for reportsync.

This package provides :class:`SingleFlightCache`, which maps a request
fingerprint (see :mod:`reportsync.fingerprint`) to at most one in-flight or
settled fetch. Callers that ask for the same fingerprint while a fetch is
running attach to it instead of issuing a second request.

The cache is owned by :class:`~reportsync.store.SyncStore`.
"""

from reportsync.cache.single_flight import CacheEntry, EntryState, SingleFlightCache

__all__ = ["CacheEntry", "EntryState", "SingleFlightCache"]
