"""
Records shared by the chunker, embedding store and search engine.

Chunks and embeddings are pydantic models: they are persisted in the
embedding index document and re-validated on load. Filters and search
results are plain dataclasses that never leave the process.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

EMBEDDING_INDEX_VERSION = "1.0.0"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChunkType(str, Enum):
    """Semantic label of a chunk."""

    FUNCTION = "function"
    CLASS = "class"
    FILE = "file"
    DOCUMENTATION = "documentation"


class EmbeddingMetadata(BaseModel):
    language: str = "unknown"
    symbol_name: Optional[str] = None
    complexity: Optional[int] = None
    dependencies: List[str] = Field(default_factory=list)
    exports: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    last_modified: datetime = Field(default_factory=_utcnow)


class CodeChunk(BaseModel):
    """A bounded span of code or documentation, ready to embed."""

    type: ChunkType
    content: str
    source: str
    start_line: int = 1
    end_line: int = 1
    metadata: EmbeddingMetadata = Field(default_factory=EmbeddingMetadata)


class CodeEmbedding(BaseModel):
    """A chunk together with its vector and content hash."""

    id: str
    type: ChunkType
    source: str
    start_line: int
    end_line: int
    content: str
    content_summary: str = ""
    embedding: List[float]
    metadata: EmbeddingMetadata = Field(default_factory=EmbeddingMetadata)
    hash: str

    @property
    def dimensions(self) -> int:
        return len(self.embedding)


class EmbeddingIndexMetadata(BaseModel):
    model: str = ""
    dimensions: int = 0
    cost_usd: Optional[float] = None


class EmbeddingIndexDocument(BaseModel):
    """On-disk format of one repository's embedding index."""

    version: str = EMBEDDING_INDEX_VERSION
    repo_id: str
    generated_at: datetime = Field(default_factory=_utcnow)
    total_embeddings: int = 0
    embeddings: List[CodeEmbedding] = Field(default_factory=list)
    metadata: EmbeddingIndexMetadata = Field(default_factory=EmbeddingIndexMetadata)


@dataclass
class SearchFilters:
    """
    Conjunctive filters applied when loading embeddings.

    ``file_pattern`` is a regular expression searched in the source path;
    ``tags`` must all be present on an embedding for it to match.
    """

    language: Optional[str] = None
    type: Optional[ChunkType] = None
    file_pattern: Optional[str] = None
    min_complexity: Optional[int] = None
    max_complexity: Optional[int] = None
    tags: Optional[List[str]] = None


@dataclass
class RankingWeights:
    similarity: float = 0.6
    recency: float = 0.2
    importance: float = 0.2


@dataclass
class RankingFactors:
    similarity: float
    recency: float
    importance: float


@dataclass
class SearchResult:
    """An embedding with its cosine similarity and optional blended score."""

    embedding: CodeEmbedding
    similarity_score: float
    relevance_score: Optional[float] = None
    ranking_factors: Optional[RankingFactors] = None

    @property
    def final_score(self) -> float:
        return self.relevance_score if self.relevance_score is not None else self.similarity_score
