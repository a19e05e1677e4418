"""In-memory TTL cache for idempotent API responses.

Entries are keyed by a request fingerprint and expire lazily: an expired
entry is removed when it is looked up, never by a background sweep. When
the cache is full the oldest entries are evicted first.

Concurrent misses for the same fingerprint share a single producer call;
lookups for different fingerprints proceed in parallel.
"""

import hashlib
import json
import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Tuple
from urllib.parse import urlencode

logger = logging.getLogger(__name__)


def request_fingerprint(
    method: str,
    path: str,
    params: Optional[Mapping[str, Any]] = None,
    body: Any = None,
) -> str:
    """
    Derive a deterministic cache key for a request.

    The key is built from the upper-cased method, the path without a
    trailing slash, the query parameters sorted by name and a digest of the
    canonical JSON body.

    Args:
        method: HTTP method
        path: Request path
        params: Query parameters
        body: JSON request body

    Returns:
        Fingerprint string, e.g. ``GET /api/quote?symbol=AAPL``
    """
    normalized = "/" + path.strip("/")
    key = f"{method.upper()} {normalized}"

    if params:
        items = sorted(
            (str(k), _query_value(v)) for k, v in params.items() if v is not None
        )
        if items:
            key += "?" + urlencode(items)

    if body is not None:
        canonical = json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)
        key += "#" + hashlib.sha256(canonical.encode()).hexdigest()[:16]

    return key


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


@dataclass(frozen=True)
class CacheEntry:
    """
    Cached response.

    Attributes:
        key: Request fingerprint
        value: Cached value
        inserted_at: Cache clock reading at insertion
        ttl: Time-to-live in seconds
    """

    key: str
    value: Any
    inserted_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl


class ResponseCache:
    """
    TTL cache with per-key single-flight computation.

    Example:
        cache = ResponseCache(default_ttl=30)
        quote = cache.get_or_compute(
            request_fingerprint("GET", "/api/quote", {"symbol": "AAPL"}),
            ttl=5,
            producer=lambda: executor.execute(spec),
        )
    """

    def __init__(
        self,
        default_ttl: float = 60.0,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            default_ttl: TTL used when a call does not specify one (seconds)
            max_entries: Maximum number of cached entries
            clock: Monotonic clock (injectable for tests)
        """
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")

        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, Future] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, fingerprint: str) -> Tuple[bool, Any]:
        """
        Look up a fingerprint without computing.

        Returns:
            Tuple of (found, value); expired entries are removed and
            reported as not found
        """
        with self._lock:
            return self._lookup(fingerprint)

    def get_or_compute(
        self,
        fingerprint: str,
        ttl: Optional[float],
        producer: Callable[[], Any],
    ) -> Any:
        """
        Return the cached value or compute, store and return it.

        The producer is not invoked on a hit. Exceptions raised by the
        producer propagate to every waiting caller and nothing is cached.

        Args:
            fingerprint: Request fingerprint
            ttl: Time-to-live in seconds (default_ttl if None)
            producer: Callable performing the real request

        Returns:
            Cached or freshly computed value
        """
        ttl = self.default_ttl if ttl is None else ttl

        with self._lock:
            found, value = self._lookup(fingerprint)
            if found:
                self.hits += 1
                logger.debug(f"Cache hit: {fingerprint}")
                return value

            self.misses += 1
            future = self._inflight.get(fingerprint)
            leader = future is None
            if leader:
                future = Future()
                self._inflight[fingerprint] = future

        if not leader:
            logger.debug(f"Waiting for in-flight computation: {fingerprint}")
            return future.result()

        logger.debug(f"Cache miss: {fingerprint}")
        try:
            value = producer()
        except BaseException as e:
            with self._lock:
                self._inflight.pop(fingerprint, None)
            future.set_exception(e)
            raise

        with self._lock:
            self._inflight.pop(fingerprint, None)
            if ttl > 0:
                self._store(CacheEntry(fingerprint, value, self._clock(), ttl))
        future.set_result(value)
        return value

    def invalidate(self, fingerprint: str) -> bool:
        """
        Remove one entry.

        Returns:
            True if an entry was removed
        """
        with self._lock:
            return self._entries.pop(fingerprint, None) is not None

    def clear(self) -> None:
        """Remove every entry."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        if count:
            logger.debug(f"Cache cleared ({count} entries)")

    def _lookup(self, fingerprint: str) -> Tuple[bool, Any]:
        """Caller must hold the lock."""
        entry = self._entries.get(fingerprint)
        if entry is None:
            return False, None
        if entry.is_expired(self._clock()):
            del self._entries[fingerprint]
            return False, None
        return True, entry.value

    def _store(self, entry: CacheEntry) -> None:
        """Insert an entry, evicting the oldest ones when full. Caller must hold the lock."""
        self._entries.pop(entry.key, None)
        if len(self._entries) >= self.max_entries:
            now = self._clock()
            for key in [k for k, e in self._entries.items() if e.is_expired(now)]:
                del self._entries[key]

        while len(self._entries) >= self.max_entries:
            oldest = min(self._entries.values(), key=lambda e: e.inserted_at)
            del self._entries[oldest.key]

        self._entries[entry.key] = entry
