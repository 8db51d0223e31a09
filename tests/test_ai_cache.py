"""Tests for cache.ai_cache: change-aware LRU response cache."""

import json

import pytest

from repo_lens.cache.ai_cache import AICache, cache_key


@pytest.fixture
def repo(tmp_path):
    root = tmp_path / "repo"
    root.mkdir()
    (root / "a.py").write_text("def a():\n    return 1\n")
    (root / "b.py").write_text("def b():\n    return 2\n")
    return root


@pytest.fixture
def cache(repo, cache_dir):
    return AICache("repo", cache_dir=cache_dir, repo_root=repo)


class TestGetSet:

    def test_miss_then_hit(self, cache):
        assert cache.get("explain a", "model-x") is None
        cache.set("explain a", "model-x", "a returns 1")
        assert cache.get("explain a", "model-x") == "a returns 1"
        stats = cache.get_stats()
        assert (stats.hits, stats.misses) == (1, 1)
        assert stats.hit_rate == pytest.approx(50.0)

    def test_key_includes_model(self, cache):
        cache.set("p", "m1", "r1")
        assert cache.get("p", "m2") is None
        assert cache_key("p", "m1") != cache_key("p", "m2")

    def test_overwrite_keeps_single_entry(self, cache):
        cache.set("p", "m", "old")
        cache.set("p", "m", "newer")
        assert cache.entry_count() == 1
        assert cache.get("p", "m") == "newer"
        assert cache.get_stats().total_size == len("p") + len("newer")

    def test_size_counts_utf8_bytes(self, cache):
        cache.set("é", "m", "ü")
        assert cache.get_stats().total_size == 4


class TestInvalidation:

    def test_changed_file_is_a_miss_and_evicts(self, repo, cache):
        cache.set("explain a", "m", "answer", files=["a.py"])
        assert cache.get("explain a", "m", files=["a.py"]) == "answer"
        (repo / "a.py").write_text("def a():\n    return 42\n")
        assert cache.get("explain a", "m", files=["a.py"]) is None
        assert cache.get_stats().total_entries == 0

    def test_recorded_files_checked_without_arguments(self, repo, cache):
        cache.set("p", "m", "r", files=["a.py"])
        (repo / "a.py").unlink()
        assert cache.get("p", "m") is None
        assert cache.is_empty()

    def test_unrecorded_file_counts_as_changed(self, cache):
        cache.set("p", "m", "r", files=["a.py"])
        assert cache.get("p", "m", files=["a.py", "b.py"]) is None

    def test_invalidate_changed_files(self, repo, cache):
        cache.set("pa", "m", "ra", files=["a.py"])
        cache.set("pb", "m", "rb", files=["b.py"])
        (repo / "b.py").write_text("def b():\n    return 3\n")
        assert cache.invalidate(["a.py", "b.py"]) == 1
        assert cache.entry_count() == 1
        assert cache.get("pa", "m", files=["a.py"]) == "ra"

    def test_directory_reference_does_not_raise(self, repo, cache):
        (repo / "pkg").mkdir()
        cache.set("p", "m", "r", files=["pkg"])
        assert cache.get("p", "m", files=["pkg"]) == "r"
        assert cache.invalidate(["pkg"]) == 0

    def test_file_replaced_by_directory_is_changed(self, repo, cache):
        cache.set("p", "m", "r", files=["a.py"])
        (repo / "a.py").unlink()
        (repo / "a.py").mkdir()
        assert cache.invalidate(["a.py"]) == 1
        assert cache.is_empty()


class TestEviction:

    def test_lru_order_with_capacity_for_n(self, repo, cache_dir):
        # each entry is 2 bytes; room for exactly three
        cache = AICache("lru", cache_dir=cache_dir, max_size_bytes=6, repo_root=repo)
        for name in ("a", "b", "c"):
            cache.set(name, "m", "x")
        cache.get("a", "m")
        cache.set("d", "m", "x")
        assert cache.access_order() == [cache_key(k, "m") for k in ("c", "a", "d")]
        assert cache.get("b", "m") is None
        assert cache.get_stats().total_size <= 6

    def test_oversized_entry_not_cached(self, repo, cache_dir):
        cache = AICache("tiny", cache_dir=cache_dir, max_size_bytes=4, repo_root=repo)
        cache.set("a", "m", "x")
        cache.set("long prompt", "m", "long response")
        assert cache.entry_count() == 1
        assert cache.get("a", "m") == "x"

    def test_utilization(self, repo, cache_dir):
        cache = AICache("util", cache_dir=cache_dir, max_size_bytes=10, repo_root=repo)
        cache.set("ab", "m", "cde")
        assert cache.utilization() == pytest.approx(50.0)


class TestPersistence:

    def test_survives_restart(self, repo, cache_dir, cache):
        cache.set("p1", "m", "r1", files=["a.py"])
        cache.set("p2", "m", "r2")
        cache.get("p1", "m")
        reopened = AICache("repo", cache_dir=cache_dir, repo_root=repo)
        assert reopened.entry_count() == 2
        assert reopened.access_order() == [cache_key("p2", "m"), cache_key("p1", "m")]
        assert reopened.get_stats().hits == 1
        assert reopened.get("p1", "m", files=["a.py"]) == "r1"

    def test_corrupt_file_resets(self, repo, cache_dir, cache):
        cache.set("p", "m", "r")
        cache.cache_path.write_text(json.dumps({"entries": [{"key": "k"}]}))
        reopened = AICache("repo", cache_dir=cache_dir, repo_root=repo)
        assert reopened.is_empty()
        assert reopened.get_stats().hits == 0

    def test_unreadable_json_resets(self, repo, cache_dir, cache):
        cache.set("p", "m", "r")
        cache.cache_path.write_text("{{{")
        assert AICache("repo", cache_dir=cache_dir, repo_root=repo).is_empty()

    def test_clear_removes_file(self, cache):
        cache.set("p", "m", "r")
        cache.clear()
        assert not cache.cache_path.exists()
        assert cache.is_empty()
        assert cache.size_mb() == 0
