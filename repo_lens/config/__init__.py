from .settings import (
    AppConfig,
    CacheConfig,
    ChunkingConfig,
    ContextConfig,
    EmbeddingConfig,
    IndexerConfig,
    SearchConfig,
)

__all__ = [
    "AppConfig",
    "CacheConfig",
    "ChunkingConfig",
    "ContextConfig",
    "EmbeddingConfig",
    "IndexerConfig",
    "SearchConfig",
]
