"""Tests for index.lru: bounded LRU mapping used for parse results."""

import pytest

from repo_lens.index.lru import LRUCache


class TestLRUCache:

    def test_evicts_least_recently_used(self):
        cache = LRUCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        assert "a" not in cache
        assert cache.keys() == ["b", "c"]

    def test_get_counts_as_use(self):
        cache = LRUCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        assert cache.get("a") == 1
        cache.set("c", 3)
        assert cache.keys() == ["a", "c"]

    def test_overwrite_does_not_evict(self):
        cache = LRUCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)
        assert len(cache) == 2
        assert cache.get("a") == 10
        assert cache.keys() == ["b", "a"]

    def test_missing_key_returns_none(self):
        assert LRUCache().get("nope") is None

    def test_instances_do_not_share_storage(self):
        first, second = LRUCache(), LRUCache()
        first.set("k", 1)
        assert "k" not in second

    def test_pop_and_clear(self):
        cache = LRUCache()
        cache.set("a", 1)
        cache.set("b", 2)
        assert cache.pop("a") == 1
        assert cache.pop("a") is None
        cache.clear()
        assert len(cache) == 0

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            LRUCache(max_size=0)
