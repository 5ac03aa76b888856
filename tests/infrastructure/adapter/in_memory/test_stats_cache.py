"""
Tests for in-memory stats cache.
"""

import threading

from nodeflow.infrastructure.adapter.in_memory.stats_cache import InMemoryStatsCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestInMemoryStatsCache:
    """Test cases for InMemoryStatsCache."""

    def setup_method(self):
        self.clock = FakeClock()
        self.cache = InMemoryStatsCache(clock=self.clock)

    def test_missing_key_returns_default(self):
        assert self.cache.get("nope") is None
        assert self.cache.get("nope", {"n": 0}) == {"n": 0}

    def test_update_creates_from_default(self):
        value = self.cache.update("k", lambda current: current + 1, ttl=10, default=0)

        assert value == 1
        assert self.cache.get("k") == 1

    def test_values_expire(self):
        self.cache.update("k", lambda current: "v", ttl=10)

        self.clock.now = 9.9
        assert self.cache.get("k") == "v"

        self.clock.now = 10
        assert self.cache.get("k") is None

    def test_update_resets_expiry(self):
        self.cache.update("k", lambda current: 1, ttl=10)
        self.clock.now = 8
        self.cache.update("k", lambda current: current + 1, ttl=10)
        self.clock.now = 15

        assert self.cache.get("k") == 2

    def test_expired_value_is_not_handed_to_update(self):
        self.cache.update("k", lambda current: 5, ttl=1)
        self.clock.now = 2

        assert self.cache.update("k", lambda current: current, ttl=1, default="fresh") == "fresh"

    def test_values_are_copied(self):
        self.cache.update("k", lambda current: {"items": [1]}, ttl=10)

        self.cache.get("k")["items"].append(2)

        assert self.cache.get("k") == {"items": [1]}

    def test_delete(self):
        self.cache.update("k", lambda current: 1, ttl=10)

        assert self.cache.delete("k") is True
        assert self.cache.delete("k") is False

    def test_concurrent_updates_are_atomic(self):
        def bump():
            for _ in range(500):
                self.cache.update("counter", lambda current: current + 1, ttl=60, default=0)

        threads = [threading.Thread(target=bump) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert self.cache.get("counter") == 4000
