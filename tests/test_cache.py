"""Tests for the in-memory TTL/LRU catalog cache."""

from __future__ import annotations

from src.services.cache import DEFAULT_MAX_BYTES, TTLCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


# ── Core operations ──────────────────────────────────────────────────


class TestCacheBasics:
    def test_put_and_get(self):
        cache = TTLCache()
        cache.put("barbershop:shop-1", {"name": "Vintage Barber"})
        assert cache.get("barbershop:shop-1") == {"name": "Vintage Barber"}

    def test_get_returns_none_for_missing_key(self):
        cache = TTLCache()
        assert cache.get("nonexistent") is None

    def test_put_overwrites_existing_key(self):
        cache = TTLCache()
        cache.put("key1", "old")
        cache.put("key1", "new")
        assert cache.get("key1") == "new"
        assert cache.entry_count == 1


# ── Expiry ──────────────────────────────────────────────────────────


class TestExpiry:
    def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        cache = TTLCache(ttl_seconds=60, clock=clock)
        cache.put("barbershops:", ["shop"])

        clock.now += 59
        assert cache.get("barbershops:") == ["shop"]

        clock.now += 1
        assert cache.get("barbershops:") is None
        assert cache.entry_count == 0
        assert cache.current_bytes == 0

    def test_overwrite_refreshes_ttl(self):
        clock = FakeClock()
        cache = TTLCache(ttl_seconds=10, clock=clock)
        cache.put("k", "v1")
        clock.now += 8
        cache.put("k", "v2")
        clock.now += 8
        assert cache.get("k") == "v2"


# ── LRU eviction ────────────────────────────────────────────────────


class TestLRUEviction:
    def test_evicts_lru_when_over_limit(self):
        # json.dumps("aaa") → '"aaa"' → 5 bytes.  Limit of 10 fits 2 entries.
        cache = TTLCache(max_bytes=10)
        cache.put("first", "aaa")
        cache.put("second", "bbb")
        cache.put("third", "ccc")
        assert cache.get("first") is None
        assert cache.get("third") == "ccc"
        assert cache.current_bytes == 10

    def test_access_promotes_to_mru(self):
        cache = TTLCache(max_bytes=10)
        cache.put("a", "111")
        cache.put("b", "222")
        cache.get("a")
        cache.put("c", "333")
        assert cache.get("a") == "111"
        assert cache.get("b") is None

    def test_skips_entry_larger_than_max(self):
        cache = TTLCache(max_bytes=10)
        cache.put("huge", "x" * 100)
        assert cache.get("huge") is None
        assert cache.entry_count == 0


# ── Size tracking ───────────────────────────────────────────────────


class TestSizeTracking:
    def test_overwrite_adjusts_size(self):
        cache = TTLCache()
        cache.put("k", "short")
        size_short = cache.current_bytes
        cache.put("k", "a much longer value string")
        assert cache.current_bytes > size_short
        assert cache.entry_count == 1

    def test_default_limit(self):
        assert TTLCache()._max_bytes == DEFAULT_MAX_BYTES
