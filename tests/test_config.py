"""Tests for config.settings: environment-driven configuration."""

from pathlib import Path

from repo_lens.config import AppConfig, CacheConfig, EmbeddingConfig, IndexerConfig
from repo_lens.rag.chunker import ChunkingOptions
from repo_lens.rag.context import ContextBuildOptions
from repo_lens.rag.embedding_indexer import IndexingOptions
from repo_lens.rag.search import SearchOptions


class TestFromEnv:

    def test_defaults(self, monkeypatch):
        for name in ("REPO_LENS_CACHE_DIR", "REPO_LENS_EMBEDDING_BACKEND", "REPO_LENS_TOP_K"):
            monkeypatch.delenv(name, raising=False)
        config = AppConfig.from_env()
        assert config.cache_dir == Path("~/.repo-lens/cache").expanduser()
        assert config.embedding.backend == "local"
        assert config.embedding.model == "all-MiniLM-L6-v2"
        assert config.search.top_k == 10
        assert config.context.max_tokens == 4000
        assert config.indexer.extensions == (".py",)

    def test_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("REPO_LENS_CACHE_DIR", str(tmp_path))
        monkeypatch.setenv("REPO_LENS_EMBEDDING_BACKEND", "mock")
        monkeypatch.setenv("REPO_LENS_MOCK_DIMENSIONS", "32")
        monkeypatch.setenv("REPO_LENS_SKIP_DIRS", "vendor, third_party")
        monkeypatch.setenv("REPO_LENS_ENABLE_RANKING", "false")
        monkeypatch.setenv("REPO_LENS_CACHE_MAX_MB", "0.5")
        config = AppConfig.from_env()
        assert config.cache_dir == tmp_path
        assert config.embedding.backend == "mock"
        assert config.embedding.mock_dimensions == 32
        assert config.indexer.skip_dirs == ("vendor", "third_party")
        assert config.search.enable_ranking is False
        assert config.cache.max_size_bytes == 512 * 1024

    def test_cache_size_in_bytes(self):
        assert CacheConfig(max_size_mb=1).max_size_bytes == 1024 * 1024

    def test_indexer_default_skip_dirs(self):
        assert ".git" in IndexerConfig().skip_dirs
        assert "node_modules" in IndexerConfig().skip_dirs


class TestOptionsFromConfig:

    def test_options_mirror_config(self):
        config = AppConfig()
        config.search.top_k = 3
        config.chunking.max_function_size = 99
        config.context.max_tokens = 123
        assert SearchOptions.from_config(config.search).k == 3
        assert ChunkingOptions.from_config(config.chunking).max_function_size == 99
        assert ContextBuildOptions.from_config(config.context).max_tokens == 123
        opts = IndexingOptions.from_config(EmbeddingConfig(batch_size=7, max_concurrency=2))
        assert (opts.batch_size, opts.max_concurrency, opts.incremental) == (7, 2, True)
