"""
repo-lens: codebase indexing, embeddings and retrieval-augmented context.
"""

from repo_lens.cache.ai_cache import AICache, CacheStats
from repo_lens.config.settings import AppConfig
from repo_lens.errors import (
    DimensionMismatchError,
    IndexNotFoundError,
    ParseError,
    ProviderError,
    RebuildRequiredError,
    RepoLensError,
    StorageError,
    SymbolNotFoundError,
)
from repo_lens.index.indexer import CodebaseIndexer
from repo_lens.rag.chunker import EmbeddingChunker
from repo_lens.rag.context import RAGContextBuilder
from repo_lens.rag.embedding_indexer import EmbeddingIndexer
from repo_lens.rag.embedding_provider import LocalEmbeddingProvider, MockEmbeddingProvider
from repo_lens.rag.search import EmbeddingSearchEngine
from repo_lens.rag.store import FileEmbeddingStore

__version__ = "0.3.0"

__all__ = [
    "AICache",
    "AppConfig",
    "CacheStats",
    "CodebaseIndexer",
    "DimensionMismatchError",
    "EmbeddingChunker",
    "EmbeddingIndexer",
    "EmbeddingSearchEngine",
    "FileEmbeddingStore",
    "IndexNotFoundError",
    "LocalEmbeddingProvider",
    "MockEmbeddingProvider",
    "ParseError",
    "ProviderError",
    "RAGContextBuilder",
    "RebuildRequiredError",
    "RepoLensError",
    "StorageError",
    "SymbolNotFoundError",
]
