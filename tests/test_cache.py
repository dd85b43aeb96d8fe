"""Tests for the bounded prediction cache."""

import threading

import pytest

from ecr.core.worker.cache import PredictionCache, cache_key


class TestCacheKey:
    def test_name_and_cr(self):
        assert cache_key({"name": "Goblin", "cr": "1/4"}) == ("Goblin", '"1/4"')

    def test_object_cr_is_hashable(self):
        a = cache_key({"name": "Dragon", "cr": {"cr": "10", "lair": "11"}})
        b = cache_key({"name": "Dragon", "cr": {"lair": "11", "cr": "10"}})
        assert a == b
        hash(a)

    def test_same_name_different_cr(self):
        assert cache_key({"name": "Bandit", "cr": "1/8"}) != cache_key({"name": "Bandit", "cr": "1"})

    def test_missing_fields(self):
        assert cache_key({}) == ("None", "null")
        assert cache_key("not a dict") == ("None", "null")


class TestFifo:
    """Default policy: oldest insert evicted, hits do not refresh."""

    def test_capacity(self):
        cache = PredictionCache(1000)
        for i in range(1001):
            cache.put(("monster", str(i)), i)

        assert len(cache) == 1000
        assert cache.get(("monster", "0")) is None
        assert cache.get(("monster", "1")) == 1
        assert cache.get(("monster", "1000")) == 1000

    def test_hit_does_not_refresh(self):
        cache = PredictionCache(2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.get("a")
        cache.put("c", 3)

        assert "a" not in cache
        assert "b" in cache
        assert "c" in cache

    def test_overwrite_keeps_position(self):
        cache = PredictionCache(2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("a", 10)
        cache.put("c", 3)

        assert "a" not in cache
        assert cache.get("b") == 2


class TestLru:
    def test_hit_refreshes(self):
        cache = PredictionCache(2, policy="lru")
        cache.put("a", 1)
        cache.put("b", 2)
        cache.get("a")
        cache.put("c", 3)

        assert "a" in cache
        assert "b" not in cache

    def test_unknown_policy(self):
        with pytest.raises(ValueError):
            PredictionCache(10, policy="random")


class TestStats:
    def test_hits_and_misses(self):
        cache = PredictionCache(10)
        cache.put("a", 1)
        cache.get("a")
        cache.get("b")

        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["size"] == 1
        assert stats["policy"] == "fifo"

    def test_clear(self):
        cache = PredictionCache(10)
        cache.put("a", 1)
        cache.clear()
        assert len(cache) == 0


class TestConcurrency:
    def test_parallel_puts_stay_bounded(self):
        cache = PredictionCache(100)

        def fill(offset):
            for i in range(500):
                cache.put((offset, i), i)
                cache.get((offset, i - 1))

        threads = [threading.Thread(target=fill, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert len(cache) == 100
