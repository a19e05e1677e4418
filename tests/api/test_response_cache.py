"""Tests for the response cache."""

import threading
import time
from unittest import mock

import pytest

from webull_client.api.cache import CacheEntry, ResponseCache, request_fingerprint


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ResponseCache(default_ttl=60.0, max_entries=3, clock=clock)


class TestRequestFingerprint:
    """Tests for request_fingerprint()."""

    def test_method_and_path(self):
        assert request_fingerprint("get", "/api/account/list/") == "GET /api/account/list"

    def test_params_sorted(self):
        """Parameter order does not change the key."""
        first = request_fingerprint("GET", "/api/quote", {"b": 2, "a": "x"})
        second = request_fingerprint("GET", "/api/quote", {"a": "x", "b": 2})

        assert first == second == "GET /api/quote?a=x&b=2"

    def test_none_params_ignored(self):
        assert request_fingerprint("GET", "/q", {"a": None}) == "GET /q"

    def test_bool_and_list_values(self):
        key = request_fingerprint("GET", "/q", {"flag": True, "symbols": ["AAPL", "MSFT"]})

        assert key == "GET /q?flag=true&symbols=AAPL%2CMSFT"

    def test_body_digest(self):
        first = request_fingerprint("POST", "/q", body={"a": 1, "b": 2})
        second = request_fingerprint("POST", "/q", body={"b": 2, "a": 1})
        other = request_fingerprint("POST", "/q", body={"a": 2})

        assert first == second
        assert first != other
        assert first.startswith("POST /q#")


class TestCacheEntry:
    def test_expiry_boundary(self):
        entry = CacheEntry("k", "v", inserted_at=10.0, ttl=5.0)

        assert not entry.is_expired(14.9)
        assert entry.is_expired(15.0)


class TestGetOrCompute:
    """Tests for get_or_compute()."""

    def test_producer_called_once_within_ttl(self, cache):
        """A hit within the TTL does not call the producer again."""
        producer = mock.Mock(return_value={"price": 190.5})

        first = cache.get_or_compute("GET /quote", 30, producer)
        second = cache.get_or_compute("GET /quote", 30, producer)

        assert first == second == {"price": 190.5}
        producer.assert_called_once()
        assert cache.hits == 1
        assert cache.misses == 1

    def test_recomputed_after_expiry(self, cache, clock):
        """After the TTL the producer is called again."""
        producer = mock.Mock(side_effect=["v1", "v2"])

        assert cache.get_or_compute("k", 30, producer) == "v1"
        clock.now += 30
        assert cache.get_or_compute("k", 30, producer) == "v2"

        assert producer.call_count == 2

    def test_expired_entry_removed_on_lookup(self, cache, clock):
        cache.get_or_compute("k", 10, lambda: "v")
        clock.now += 10

        assert cache.get("k") == (False, None)
        assert len(cache) == 0

    def test_default_ttl(self, cache, clock):
        producer = mock.Mock(return_value="v")
        cache.get_or_compute("k", None, producer)

        clock.now += 59
        cache.get_or_compute("k", None, producer)
        assert producer.call_count == 1

        clock.now += 1
        cache.get_or_compute("k", None, producer)
        assert producer.call_count == 2

    def test_zero_ttl_not_stored(self, cache):
        cache.get_or_compute("k", 0, lambda: "v")

        assert len(cache) == 0

    def test_producer_error_not_cached(self, cache):
        """A failing producer propagates and leaves nothing cached."""
        producer = mock.Mock(side_effect=[RuntimeError("boom"), "ok"])

        with pytest.raises(RuntimeError):
            cache.get_or_compute("k", 30, producer)

        assert cache.get("k") == (False, None)
        assert cache.get_or_compute("k", 30, producer) == "ok"

    def test_different_keys_independent(self, cache):
        assert cache.get_or_compute("a", 30, lambda: 1) == 1
        assert cache.get_or_compute("b", 30, lambda: 2) == 2
        assert cache.get("a") == (True, 1)

    def test_concurrent_misses_share_producer(self):
        """Concurrent misses for one key call the producer once."""
        cache = ResponseCache(default_ttl=60)
        started = threading.Event()
        release = threading.Event()
        calls = []

        def producer():
            calls.append(1)
            started.set()
            assert release.wait(5)
            return "value"

        results = []

        def worker():
            results.append(cache.get_or_compute("k", 60, producer))

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for thread in threads:
            thread.start()
        assert started.wait(5)
        time.sleep(0.05)
        release.set()
        for thread in threads:
            thread.join(5)

        assert results == ["value"] * 5
        assert len(calls) == 1

    def test_waiters_see_producer_error(self):
        cache = ResponseCache(default_ttl=60)
        started = threading.Event()
        release = threading.Event()

        def producer():
            started.set()
            assert release.wait(5)
            raise ValueError("upstream failed")

        errors = []

        def worker():
            try:
                cache.get_or_compute("k", 60, producer)
            except ValueError as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(3)]
        for thread in threads:
            thread.start()
        assert started.wait(5)
        time.sleep(0.05)
        release.set()
        for thread in threads:
            thread.join(5)

        assert len(errors) == 3
        assert len(cache) == 0


class TestEviction:
    """Tests for invalidation and the size bound."""

    def test_invalidate(self, cache):
        cache.get_or_compute("k", 30, lambda: "v")

        assert cache.invalidate("k") is True
        assert cache.invalidate("k") is False
        assert cache.get("k") == (False, None)

    def test_clear(self, cache):
        cache.get_or_compute("a", 30, lambda: 1)
        cache.get_or_compute("b", 30, lambda: 2)

        cache.clear()

        assert len(cache) == 0

    def test_oldest_evicted_when_full(self, cache, clock):
        for i, key in enumerate(["a", "b", "c"]):
            clock.now = 100.0 + i
            cache.get_or_compute(key, 60, lambda k=key: k)

        clock.now = 110.0
        cache.get_or_compute("d", 60, lambda: "d")

        assert len(cache) == 3
        assert cache.get("a") == (False, None)
        assert cache.get("d") == (True, "d")

    def test_expired_evicted_before_oldest(self, cache, clock):
        cache.get_or_compute("short", 1, lambda: 1)
        clock.now += 0.5
        cache.get_or_compute("b", 60, lambda: 2)
        cache.get_or_compute("c", 60, lambda: 3)

        clock.now += 5
        cache.get_or_compute("d", 60, lambda: 4)

        assert cache.get("b") == (True, 2)
        assert cache.get("short") == (False, None)

    def test_invalid_max_entries(self):
        with pytest.raises(ValueError):
            ResponseCache(max_entries=0)
