"""Configuration management for repo-lens.

Loads settings from environment variables with sensible defaults.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_CACHE_DIR = "~/.repo-lens/cache"
DEFAULT_EXTENSIONS = (".py",)
DEFAULT_SKIP_DIRS = (
    ".git",
    "__pycache__",
    ".venv",
    "venv",
    "node_modules",
    "dist",
    "build",
    ".tox",
    ".mypy_cache",
    ".pytest_cache",
    "coverage",
)


def _split_list(raw: str | None, default: tuple[str, ...]) -> tuple[str, ...]:
    if not raw:
        return default
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def resolve_cache_dir(raw: str | None = None) -> Path:
    """Expand the configured cache root (``~`` allowed)."""
    return Path(raw or os.getenv("REPO_LENS_CACHE_DIR", DEFAULT_CACHE_DIR)).expanduser()


@dataclass
class IndexerConfig:
    """Codebase indexer configuration."""
    extensions: tuple[str, ...] = DEFAULT_EXTENSIONS
    skip_dirs: tuple[str, ...] = DEFAULT_SKIP_DIRS
    parse_cache_size: int = 100

    @classmethod
    def from_env(cls) -> "IndexerConfig":
        return cls(
            extensions=_split_list(os.getenv("REPO_LENS_EXTENSIONS"), DEFAULT_EXTENSIONS),
            skip_dirs=_split_list(os.getenv("REPO_LENS_SKIP_DIRS"), DEFAULT_SKIP_DIRS),
            parse_cache_size=int(os.getenv("REPO_LENS_PARSE_CACHE_SIZE", "100")),
        )


@dataclass
class ChunkingConfig:
    """Chunk size limits (characters)."""
    max_function_size: int = 2000
    max_class_size: int = 5000
    max_file_size: int = 1000
    include_documentation: bool = True

    @classmethod
    def from_env(cls) -> "ChunkingConfig":
        return cls(
            max_function_size=int(os.getenv("REPO_LENS_MAX_FUNCTION_SIZE", "2000")),
            max_class_size=int(os.getenv("REPO_LENS_MAX_CLASS_SIZE", "5000")),
            max_file_size=int(os.getenv("REPO_LENS_MAX_FILE_SIZE", "1000")),
            include_documentation=os.getenv("REPO_LENS_INCLUDE_DOCS", "1") not in ("0", "false", "no"),
        )


@dataclass
class EmbeddingConfig:
    """Embedding provider configuration."""
    backend: str = "local"  # "local", "mock"
    model: str = "all-MiniLM-L6-v2"
    mock_dimensions: int = 384
    batch_size: int = 50
    max_concurrency: int = 5

    @classmethod
    def from_env(cls) -> "EmbeddingConfig":
        return cls(
            backend=os.getenv("REPO_LENS_EMBEDDING_BACKEND", "local"),
            model=os.getenv("REPO_LENS_EMBEDDING_MODEL", "all-MiniLM-L6-v2"),
            mock_dimensions=int(os.getenv("REPO_LENS_MOCK_DIMENSIONS", "384")),
            batch_size=int(os.getenv("REPO_LENS_EMBEDDING_BATCH_SIZE", "50")),
            max_concurrency=int(os.getenv("REPO_LENS_EMBEDDING_CONCURRENCY", "5")),
        )


@dataclass
class SearchConfig:
    """Embedding search defaults."""
    top_k: int = 10
    min_similarity: float = 0.5
    enable_ranking: bool = True

    @classmethod
    def from_env(cls) -> "SearchConfig":
        return cls(
            top_k=int(os.getenv("REPO_LENS_TOP_K", "10")),
            min_similarity=float(os.getenv("REPO_LENS_MIN_SIMILARITY", "0.5")),
            enable_ranking=os.getenv("REPO_LENS_ENABLE_RANKING", "1") not in ("0", "false", "no"),
        )


@dataclass
class ContextConfig:
    """RAG context budget defaults."""
    max_tokens: int = 4000
    code_weight: float = 0.6
    docs_weight: float = 0.2
    history_weight: float = 0.2

    @classmethod
    def from_env(cls) -> "ContextConfig":
        return cls(
            max_tokens=int(os.getenv("REPO_LENS_CONTEXT_TOKENS", "4000")),
            code_weight=float(os.getenv("REPO_LENS_CODE_WEIGHT", "0.6")),
            docs_weight=float(os.getenv("REPO_LENS_DOCS_WEIGHT", "0.2")),
            history_weight=float(os.getenv("REPO_LENS_HISTORY_WEIGHT", "0.2")),
        )


@dataclass
class CacheConfig:
    """AI response cache configuration."""
    max_size_mb: float = 100.0

    @property
    def max_size_bytes(self) -> int:
        return int(self.max_size_mb * 1024 * 1024)

    @classmethod
    def from_env(cls) -> "CacheConfig":
        return cls(max_size_mb=float(os.getenv("REPO_LENS_CACHE_MAX_MB", "100")))


@dataclass
class AppConfig:
    """Top-level application configuration."""
    cache_dir: Path = field(default_factory=resolve_cache_dir)
    indexer: IndexerConfig = field(default_factory=IndexerConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "AppConfig":
        return cls(
            cache_dir=resolve_cache_dir(),
            indexer=IndexerConfig.from_env(),
            chunking=ChunkingConfig.from_env(),
            embedding=EmbeddingConfig.from_env(),
            search=SearchConfig.from_env(),
            context=ContextConfig.from_env(),
            cache=CacheConfig.from_env(),
            log_level=os.getenv("REPO_LENS_LOG_LEVEL", "INFO").upper(),
        )
