"""Thread-safe in-memory LRU cache with a byte-size ceiling and per-entry TTL.

Design decisions
────────────────
• **OrderedDict** for O(1) LRU eviction and promotion.
• **Size tracking** via ``json.dumps`` byte length, accurate for the JSON
  payloads returned by the marketplace backend.
• **TTL** per entry: barbershops and services are edited from the admin
  panel, so catalog entries expire instead of living until restart.
• **threading.Lock** because tool executors run in worker threads and several
  of them may read the catalog at the same time.

Usage in MarketplaceClient
──────────────────────────
>>> cache = TTLCache(max_bytes=5 * 1024 * 1024, ttl_seconds=300)
>>> cache.put("barbershops:", [shop1, shop2])
>>> cache.get("barbershops:")
[shop1, shop2]
>>> cache.entry_count
1
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import OrderedDict
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_TTL_SECONDS = 300.0


class TTLCache:
    """Least-Recently-Used cache bounded by total byte size, with expiry."""

    def __init__(
        self,
        max_bytes: int = DEFAULT_MAX_BYTES,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock=time.monotonic,
    ) -> None:
        self._max_bytes = max_bytes
        self._ttl = ttl_seconds
        self._clock = clock
        self._current_bytes = 0
        # key → (value, size_bytes, expires_at)
        self._store: OrderedDict[str, tuple[Any, int, float]] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def _estimate_bytes(value: Any) -> int:
        """Return the JSON-encoded size of *value* (``str()`` as fallback)."""
        try:
            return len(json.dumps(value, default=str).encode("utf-8"))
        except (TypeError, ValueError, OverflowError):
            return len(str(value).encode("utf-8"))

    def _drop(self, key: str) -> None:
        _, size, _ = self._store.pop(key)
        self._current_bytes -= size

    # ── Core operations ──────────────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """Return the cached value (promoting it to MRU) or ``None``.

        Expired entries are removed on access.
        """
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, _, expires_at = entry
            if self._clock() >= expires_at:
                self._drop(key)
                logger.debug("Cache: expired %s", key)
                return None
            self._store.move_to_end(key)
            return value

    def put(self, key: str, value: Any) -> None:
        """Insert or overwrite *key*.  Evicts LRU entries if needed."""
        size = self._estimate_bytes(value)
        if size > self._max_bytes:
            logger.debug(
                "Cache: skipping key %s (size %d > max %d)",
                key, size, self._max_bytes,
            )
            return

        with self._lock:
            if key in self._store:
                self._drop(key)

            while self._current_bytes + size > self._max_bytes and self._store:
                evicted_key, (_, evicted_size, _) = self._store.popitem(last=False)
                self._current_bytes -= evicted_size
                logger.debug("Cache: evicted %s (%d bytes)", evicted_key, evicted_size)

            self._store[key] = (value, size, self._clock() + self._ttl)
            self._current_bytes += size

    # ── Introspection ────────────────────────────────────────────────

    @property
    def current_bytes(self) -> int:
        return self._current_bytes

    @property
    def entry_count(self) -> int:
        return len(self._store)
