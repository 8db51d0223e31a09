from __future__ import annotations

import hashlib
import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel

from repo_lens.cache.ai_cache import AICache
from repo_lens.config.settings import AppConfig
from repo_lens.index.indexer import CodebaseIndexer
from repo_lens.rag.chunker import ChunkingOptions, EmbeddingChunker
from repo_lens.rag.context import ContextBuildOptions, ConversationTurn, RAGContextBuilder
from repo_lens.rag.embedding_indexer import EmbeddingIndexer, IndexingOptions, IndexingResult
from repo_lens.rag.embedding_provider import EmbeddingProvider, build_embedding_provider
from repo_lens.rag.models import SearchResult
from repo_lens.rag.search import EmbeddingSearchEngine, SearchOptions
from repo_lens.rag.store import FileEmbeddingStore

LOG = logging.getLogger("repo_lens")


# ─────────────────────────────────────────────────────────────────
# Response payloads
# ─────────────────────────────────────────────────────────────────


class EmbeddingSummary(BaseModel):
    success: bool
    totalChunks: int
    embeddingsGenerated: int
    chunksCached: int
    chunksSkipped: int
    estimatedCost: float
    durationMs: float
    errors: List[str]


class IndexSummary(BaseModel):
    repoId: str
    rootPath: str
    totalFiles: int
    totalLoc: int
    symbols: int
    edges: int
    languages: Dict[str, int]
    embeddings: Optional[EmbeddingSummary] = None


class SearchHit(BaseModel):
    id: str
    type: str
    source: str
    startLine: int
    endLine: int
    symbolName: Optional[str] = None
    similarity: float
    score: float
    summary: str


class SearchHits(BaseModel):
    query: str
    results: List[SearchHit]


class ContextPayload(BaseModel):
    query: str
    tokenBudget: int
    tokensUsed: int
    codeSnippets: int
    docSnippets: int
    historyTurns: int
    averageRelevance: float
    prompt: str


class ReferencePayload(BaseModel):
    symbol: str
    file: str
    line: int
    context: str


class CacheStatsPayload(BaseModel):
    repoId: str
    hits: int
    misses: int
    totalEntries: int
    totalSize: int
    hitRate: float
    utilization: float


# ─────────────────────────────────────────────────────────────────
# Wiring
# ─────────────────────────────────────────────────────────────────


def default_repo_id(repo_path: Path | str) -> str:
    """Stable id for a checkout: directory name plus a short hash of its absolute path."""
    resolved = Path(repo_path).expanduser().resolve()
    digest = hashlib.sha256(str(resolved).encode("utf-8")).hexdigest()[:8]
    return f"{resolved.name}-{digest}"


@lru_cache(maxsize=4)
def get_provider(backend: str, model: str, mock_dimensions: int) -> EmbeddingProvider:
    if backend == "mock":
        return build_embedding_provider("mock", dim=mock_dimensions)
    return build_embedding_provider(backend, model_name=model)


class Workspace:
    """All collaborators for one repository, built from an AppConfig."""

    def __init__(self, repo_path: str, repo_id: Optional[str] = None, config: Optional[AppConfig] = None) -> None:
        self.config = config or AppConfig.from_env()
        self.root = Path(repo_path).expanduser().resolve()
        if not self.root.is_dir():
            raise ValueError(f"Repository path is not a directory: {repo_path}")
        self.repo_id = repo_id or default_repo_id(self.root)
        self.indexer = CodebaseIndexer(self.root, self.repo_id, cache_dir=self.config.cache_dir, config=self.config.indexer)
        self.store = FileEmbeddingStore(self.repo_id, cache_dir=self.config.cache_dir)
        LOG.debug("Workspace %s at %s (cache %s)", self.repo_id, self.root, self.config.cache_dir)

    @property
    def provider(self) -> EmbeddingProvider:
        emb = self.config.embedding
        return get_provider(emb.backend, emb.model, emb.mock_dimensions)

    def embedding_indexer(self) -> EmbeddingIndexer:
        chunker = EmbeddingChunker(self.root, ChunkingOptions.from_config(self.config.chunking))
        return EmbeddingIndexer(self.indexer, chunker, self.provider, self.store)

    def search_engine(self) -> EmbeddingSearchEngine:
        return EmbeddingSearchEngine(self.provider, self.store)

    def ai_cache(self) -> AICache:
        return AICache(
            self.repo_id,
            cache_dir=self.config.cache_dir,
            max_size_bytes=self.config.cache.max_size_bytes,
            repo_root=self.root,
        )


def _validate_required(name: str, value: Optional[str]) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"Missing required field: {name}")


def _embedding_summary(result: IndexingResult) -> EmbeddingSummary:
    return EmbeddingSummary(
        success=result.success,
        totalChunks=result.stats.total_chunks,
        embeddingsGenerated=result.stats.embeddings_generated,
        chunksCached=result.stats.chunks_cached,
        chunksSkipped=result.stats.chunks_skipped,
        estimatedCost=result.stats.estimated_cost,
        durationMs=result.duration_ms,
        errors=[e.message for e in result.errors],
    )


def _hit(result: SearchResult) -> SearchHit:
    emb = result.embedding
    return SearchHit(
        id=emb.id,
        type=emb.type.value,
        source=emb.source,
        startLine=emb.start_line,
        endLine=emb.end_line,
        symbolName=emb.metadata.symbol_name,
        similarity=result.similarity_score,
        score=result.final_score,
        summary=emb.content_summary,
    )


def _index_summary(ws: Workspace, embeddings: Optional[EmbeddingSummary]) -> IndexSummary:
    index = ws.indexer.load_index()
    if index is None:
        raise RuntimeError(f"Index for {ws.repo_id} was not persisted")
    return IndexSummary(
        repoId=ws.repo_id,
        rootPath=index.root_path,
        totalFiles=index.total_files,
        totalLoc=index.total_loc,
        symbols=len(index.symbols),
        edges=index.dependencies.edge_count,
        languages=index.metadata.languages,
        embeddings=embeddings,
    )


# ─────────────────────────────────────────────────────────────────
# Tools
# ─────────────────────────────────────────────────────────────────


def index_repository(repoPath: str, repoId: Optional[str] = None, embed: bool = True) -> IndexSummary:
    _validate_required("repoPath", repoPath)
    ws = Workspace(repoPath, repoId)
    summary: Optional[EmbeddingSummary] = None
    if embed:
        result = ws.embedding_indexer().index_codebase(IndexingOptions.from_config(ws.config.embedding))
        summary = _embedding_summary(result)
    else:
        ws.indexer.build_index()
    return _index_summary(ws, summary)


def update_repository(
    repoPath: str, changedFiles: List[str], repoId: Optional[str] = None, embed: bool = True
) -> IndexSummary:
    _validate_required("repoPath", repoPath)
    ws = Workspace(repoPath, repoId)
    summary: Optional[EmbeddingSummary] = None
    if embed:
        result = ws.embedding_indexer().update_index(changedFiles, IndexingOptions.from_config(ws.config.embedding))
        summary = _embedding_summary(result)
    else:
        ws.indexer.update_index(changedFiles)
    ws.ai_cache().invalidate(changedFiles)
    return _index_summary(ws, summary)


def search_code(
    repoPath: str,
    query: str,
    k: Optional[int] = None,
    diverse: bool = False,
    repoId: Optional[str] = None,
) -> SearchHits:
    _validate_required("repoPath", repoPath)
    _validate_required("query", query)
    ws = Workspace(repoPath, repoId)
    options = SearchOptions.from_config(ws.config.search)
    if k is not None:
        if int(k) <= 0:
            raise ValueError("k must be a positive integer")
        options.k = int(k)
    engine = ws.search_engine()
    results = engine.search_diverse(query, options) if diverse else engine.search(query, options).results
    return SearchHits(query=query, results=[_hit(r) for r in results])


def build_context(
    repoPath: str,
    query: str,
    maxTokens: Optional[int] = None,
    history: Optional[List[Dict[str, str]]] = None,
    repoId: Optional[str] = None,
) -> ContextPayload:
    _validate_required("repoPath", repoPath)
    _validate_required("query", query)
    ws = Workspace(repoPath, repoId)
    options = ContextBuildOptions.from_config(ws.config.context)
    if maxTokens is not None:
        options.max_tokens = int(maxTokens)
    turns = [ConversationTurn.model_validate(turn) for turn in (history or [])]
    builder = RAGContextBuilder(ws.search_engine())
    context = builder.build_context(query, turns, options)
    return ContextPayload(
        query=query,
        tokenBudget=context.token_budget,
        tokensUsed=context.tokens_used,
        codeSnippets=len(context.relevant_code),
        docSnippets=len(context.relevant_docs),
        historyTurns=len(context.conversation_history),
        averageRelevance=context.metadata.average_relevance,
        prompt=builder.format_context_for_prompt(context),
    )


def find_references(repoPath: str, name: str, repoId: Optional[str] = None) -> List[ReferencePayload]:
    _validate_required("repoPath", repoPath)
    _validate_required("name", name)
    ws = Workspace(repoPath, repoId)
    return [ReferencePayload(**ref.model_dump()) for ref in ws.indexer.find_references(name)]


def cache_stats(repoPath: str, repoId: Optional[str] = None) -> CacheStatsPayload:
    _validate_required("repoPath", repoPath)
    ws = Workspace(repoPath, repoId)
    cache = ws.ai_cache()
    stats = cache.get_stats()
    return CacheStatsPayload(
        repoId=ws.repo_id,
        hits=stats.hits,
        misses=stats.misses,
        totalEntries=stats.total_entries,
        totalSize=stats.total_size,
        hitRate=stats.hit_rate,
        utilization=cache.utilization(),
    )
