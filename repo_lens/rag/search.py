"""
Semantic search over stored embeddings.

The query is embedded with the current provider and compared only against
stored vectors of the same dimensionality; vectors from another model are
skipped with a warning. When nothing compatible is left the caller gets a
RebuildRequiredError instead of an empty result list.

Optional multi-factor ranking blends similarity with recency and an
importance heuristic. Sorting is stable, so equal scores keep store order.
"""

from __future__ import annotations

import logging
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from repo_lens.config.settings import SearchConfig
from repo_lens.errors import RebuildRequiredError
from repo_lens.rag.embedding_provider import EmbeddingProvider
from repo_lens.rag.models import ChunkType, CodeEmbedding, RankingFactors, RankingWeights, SearchFilters, SearchResult
from repo_lens.rag.store import FileEmbeddingStore
from repo_lens.rag.vectors import cosine_similarities

LOG = logging.getLogger("rag.search")

RECENCY_WINDOW_DAYS = 365
DIVERSE_OVERFETCH = 3
DIVERSE_MAX_PER_FILE = 2
MIN_STEM = 4
MAX_STEM_GAP = 3

_WORD_RE = re.compile(r"[a-z0-9]+")


@dataclass
class SearchOptions:
    k: int = 10
    filters: Optional[SearchFilters] = None
    min_similarity: float = 0.5
    enable_ranking: bool = True
    ranking_weights: RankingWeights = field(default_factory=RankingWeights)

    @classmethod
    def from_config(cls, config: SearchConfig) -> "SearchOptions":
        return cls(k=config.top_k, min_similarity=config.min_similarity, enable_ranking=config.enable_ranking)


@dataclass
class SearchStats:
    total_embeddings: int
    filtered_count: int
    search_time_ms: float
    average_similarity: float
    incompatible_count: int = 0


@dataclass
class SearchResponse:
    results: List[SearchResult]
    stats: SearchStats


@dataclass
class SearchMetrics:
    average_results: float
    average_similarity: float
    average_search_time: float
    coverage_by_type: Dict[str, int]


@dataclass
class CoverageStats:
    total_embeddings: int
    by_type: Dict[str, int]
    by_language: Dict[str, int]
    oldest_embedding: Optional[datetime]
    newest_embedding: Optional[datetime]


def _shares_stem(a: str, b: str) -> bool:
    """True for words like "validate"/"validation" that differ only in suffix."""
    prefix = 0
    for x, y in zip(a, b):
        if x != y:
            break
        prefix += 1
    return prefix >= MIN_STEM and prefix >= min(len(a), len(b)) - MAX_STEM_GAP


def tag_matches(tag: str, query: str) -> bool:
    tag = tag.lower()
    query = query.lower()
    if tag in query:
        return True
    return any(_shares_stem(tag, word) for word in _WORD_RE.findall(query))


def recency_score(last_modified: datetime, now: Optional[datetime] = None) -> float:
    """1.0 for just-modified, decaying linearly to 0.0 over the window."""
    now = now or datetime.now(timezone.utc)
    if last_modified.tzinfo is None:
        last_modified = last_modified.replace(tzinfo=timezone.utc)
    age_days = (now - last_modified).total_seconds() / 86400.0
    return max(0.0, min(1.0, 1.0 - age_days / RECENCY_WINDOW_DAYS))


def importance_score(emb: CodeEmbedding, query: str) -> float:
    """Additive heuristic in [0, 1]."""
    meta = emb.metadata
    score = 0.5

    if meta.complexity is not None:
        if 5 <= meta.complexity <= 15:
            score += 0.2
        elif meta.complexity > 15:
            score += 0.1

    if meta.exports:
        score += 0.15

    if meta.dependencies:
        score += min(0.15, len(meta.dependencies) * 0.03)

    matching = [t for t in meta.tags if tag_matches(t, query)]
    if matching:
        score += min(0.2, len(matching) * 0.1)

    if emb.type == ChunkType.FUNCTION:
        score += 0.1
    elif emb.type == ChunkType.CLASS:
        score += 0.05
    elif emb.type == ChunkType.DOCUMENTATION:
        score += 0.15

    return max(0.0, min(1.0, score))


class EmbeddingSearchEngine:
    """Cosine search with optional re-ranking over one embedding store."""

    def __init__(self, provider: EmbeddingProvider, store: FileEmbeddingStore) -> None:
        self._provider = provider
        self._store = store

    def search(self, query: str, options: Optional[SearchOptions] = None) -> SearchResponse:
        """
        Embed ``query`` and return the top ``k`` matches.

        Raises:
            RebuildRequiredError: If no stored embedding matches the query's
                dimensionality
            ProviderError: If the query cannot be embedded
        """
        opts = options or SearchOptions()
        start = time.perf_counter()

        query_vector = self._provider.generate_embedding(query)
        dims = len(query_vector)

        if opts.filters is not None:
            candidates = self._store.load_embeddings_with_filters(opts.filters)
        else:
            candidates = self._store.load_embeddings()

        compatible = [e for e in candidates if e.dimensions == dims]
        incompatible = len(candidates) - len(compatible)
        if incompatible:
            LOG.warning(
                "%d embeddings have incompatible dimensions (%d expected) and were skipped; "
                "rebuild the embedding index with the current provider",
                incompatible,
                dims,
            )
        if not compatible:
            raise RebuildRequiredError(
                f"No compatible embeddings found for {dims}-dimensional queries "
                f"({len(candidates)} stored). Rebuild the embedding index."
            )

        scores = cosine_similarities(query_vector, [e.embedding for e in compatible])
        results = [
            SearchResult(embedding=emb, similarity_score=float(score))
            for emb, score in zip(compatible, scores)
            if score >= opts.min_similarity
        ]
        filtered_count = len(results)

        if opts.enable_ranking:
            self._apply_ranking(results, opts.ranking_weights, query)

        top = sorted(results, key=lambda r: r.final_score, reverse=True)[: opts.k]
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        average = sum(r.similarity_score for r in top) / len(top) if top else 0.0

        LOG.debug("Search %r: %d/%d above threshold, %.1fms", query, filtered_count, len(compatible), elapsed_ms)
        return SearchResponse(
            results=top,
            stats=SearchStats(
                total_embeddings=len(compatible),
                filtered_count=filtered_count,
                search_time_ms=elapsed_ms,
                average_similarity=average,
                incompatible_count=incompatible,
            ),
        )

    def search_diverse(self, query: str, options: Optional[SearchOptions] = None) -> List[SearchResult]:
        """
        Search, then keep at most two results per source file.

        Greedy: over-fetches 3×k, caps each file, re-sorts and truncates.
        """
        opts = options or SearchOptions()
        wide = SearchOptions(
            k=opts.k * DIVERSE_OVERFETCH,
            filters=opts.filters,
            min_similarity=opts.min_similarity,
            enable_ranking=opts.enable_ranking,
            ranking_weights=opts.ranking_weights,
        )
        results = self.search(query, wide).results

        per_file: Counter[str] = Counter()
        diverse: List[SearchResult] = []
        for result in results:
            source = result.embedding.source
            if per_file[source] < DIVERSE_MAX_PER_FILE:
                per_file[source] += 1
                diverse.append(result)

        diverse.sort(key=lambda r: r.final_score, reverse=True)
        return diverse[: opts.k]

    def batch_search(self, queries: List[str], options: Optional[SearchOptions] = None) -> Dict[str, List[SearchResult]]:
        return {query: self.search(query, options).results for query in queries}

    def find_similar_to_embedding(self, target: CodeEmbedding, k: int = 5) -> List[SearchResult]:
        """Nearest stored neighbours of ``target``, excluding itself."""
        others = [e for e in self._store.load_embeddings() if e.id != target.id and e.dimensions == target.dimensions]
        scores = cosine_similarities(target.embedding, [e.embedding for e in others])
        results = [SearchResult(embedding=e, similarity_score=float(s)) for e, s in zip(others, scores)]
        results.sort(key=lambda r: r.similarity_score, reverse=True)
        return results[:k]

    def find_by_file(self, file_path: str) -> List[CodeEmbedding]:
        return [e for e in self._store.load_embeddings() if e.source == file_path]

    def find_by_tags(self, tags: List[str], match_all: bool = False) -> List[CodeEmbedding]:
        wanted = set(tags)
        matcher = wanted.issubset if match_all else wanted.intersection
        return [e for e in self._store.load_embeddings() if matcher(e.metadata.tags)]

    def find_by_complexity(self, minimum: int, maximum: int) -> List[CodeEmbedding]:
        return [
            e
            for e in self._store.load_embeddings()
            if e.metadata.complexity is not None and minimum <= e.metadata.complexity <= maximum
        ]

    # ─────────────────────────────────────────────────────────────────
    # Analytics
    # ─────────────────────────────────────────────────────────────────

    def get_search_metrics(self, queries: List[str]) -> SearchMetrics:
        if not queries:
            return SearchMetrics(0.0, 0.0, 0.0, {})
        total_results = 0
        total_similarity = 0.0
        total_time = 0.0
        by_type: Counter[str] = Counter()
        for query in queries:
            response = self.search(query)
            total_results += len(response.results)
            total_similarity += response.stats.average_similarity
            total_time += response.stats.search_time_ms
            by_type.update(r.embedding.type.value for r in response.results)
        count = len(queries)
        return SearchMetrics(
            average_results=total_results / count,
            average_similarity=total_similarity / count,
            average_search_time=total_time / count,
            coverage_by_type=dict(by_type),
        )

    def get_coverage_stats(self) -> CoverageStats:
        embeddings = self._store.load_embeddings()
        dates = [e.metadata.last_modified for e in embeddings]
        return CoverageStats(
            total_embeddings=len(embeddings),
            by_type=dict(Counter(e.type.value for e in embeddings)),
            by_language=dict(Counter(e.metadata.language for e in embeddings)),
            oldest_embedding=min(dates) if dates else None,
            newest_embedding=max(dates) if dates else None,
        )

    # ─────────────────────────────────────────────────────────────────
    # Ranking
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _apply_ranking(results: List[SearchResult], weights: RankingWeights, query: str) -> None:
        now = datetime.now(timezone.utc)
        for result in results:
            emb = result.embedding
            recency = recency_score(emb.metadata.last_modified, now)
            importance = importance_score(emb, query)
            result.ranking_factors = RankingFactors(
                similarity=result.similarity_score,
                recency=recency,
                importance=importance,
            )
            result.relevance_score = (
                result.similarity_score * weights.similarity
                + recency * weights.recency
                + importance * weights.importance
            )
