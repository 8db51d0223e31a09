"""
End-to-end embedding pipeline: index → chunk → embed → store.

Batches are embedded on a thread pool in waves of at most
``max_concurrency`` batches. A wave is collected in submission order before
the next one starts, so stored embeddings follow chunk order. A batch whose
provider call fails is recorded and skipped; indexing continues.
"""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from repo_lens.config.settings import EmbeddingConfig
from repo_lens.errors import ProviderError
from repo_lens.index.indexer import CodebaseIndexer
from repo_lens.index.models import CodebaseIndex
from repo_lens.rag.chunker import CHARS_PER_TOKEN, EmbeddingChunker
from repo_lens.rag.embedding_provider import EmbeddingProvider
from repo_lens.rag.models import CodeChunk, CodeEmbedding
from repo_lens.rag.store import FileEmbeddingStore
from repo_lens.rag.vectors import generate_embedding_id, hash_content, validate_embedding

LOG = logging.getLogger("rag.embedding_indexer")

SUMMARY_CHARS = 100


@dataclass
class IndexingOptions:
    incremental: bool = True
    batch_size: int = 50
    validate_embeddings: bool = True
    max_concurrency: int = 5

    @classmethod
    def from_config(cls, config: EmbeddingConfig) -> "IndexingOptions":
        return cls(batch_size=config.batch_size, max_concurrency=config.max_concurrency)


@dataclass
class IndexingStats:
    total_chunks: int = 0
    chunks_processed: int = 0
    chunks_cached: int = 0
    chunks_skipped: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0
    embeddings_generated: int = 0
    files_analyzed: int = 0


@dataclass
class IndexingError:
    type: str  # "embedding" | "validation"
    message: str
    file: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class IndexingResult:
    success: bool
    stats: IndexingStats
    errors: List[IndexingError]
    duration_ms: float


@dataclass
class IndexStats:
    indexed: bool
    total_embeddings: int
    storage_size: int
    last_indexed: Optional[datetime]
    model: str


def chunk_id(chunk: CodeChunk) -> str:
    return generate_embedding_id(chunk.type.value, chunk.source, chunk.metadata.symbol_name, chunk.start_line)


def summarize(content: str) -> str:
    first_line = content.split("\n", 1)[0]
    return first_line[:SUMMARY_CHARS] + "..." if len(first_line) > SUMMARY_CHARS else first_line


class EmbeddingIndexer:
    """Keeps a repository's embedding store in step with its source."""

    def __init__(
        self,
        codebase_indexer: CodebaseIndexer,
        chunker: EmbeddingChunker,
        provider: EmbeddingProvider,
        store: FileEmbeddingStore,
    ) -> None:
        self._indexer = codebase_indexer
        self._chunker = chunker
        self._provider = provider
        self._store = store

    def index_codebase(self, options: Optional[IndexingOptions] = None) -> IndexingResult:
        """Build the codebase index and embed every new or changed chunk."""
        index = self._indexer.build_index()
        return self._run(index, options or IndexingOptions())

    def update_index(
        self, changed_files: Sequence[str | Path], options: Optional[IndexingOptions] = None
    ) -> IndexingResult:
        """Invalidate embeddings for ``changed_files`` and re-embed incrementally."""
        relative = [self._indexer.relative_path(p) for p in changed_files]
        self._store.invalidate_changed_files(relative)
        index = self._indexer.update_index(relative)
        opts = options or IndexingOptions()
        opts = IndexingOptions(
            incremental=True,
            batch_size=opts.batch_size,
            validate_embeddings=opts.validate_embeddings,
            max_concurrency=opts.max_concurrency,
        )
        return self._run(index, opts)

    def _run(self, index: CodebaseIndex, opts: IndexingOptions) -> IndexingResult:
        start = time.perf_counter()
        errors: List[IndexingError] = []
        stats = IndexingStats(files_analyzed=index.total_files)

        chunking = self._chunker.chunk_codebase(index)
        chunks = chunking.chunks
        stats.total_chunks = len(chunks)
        stats.total_tokens = chunking.stats.estimated_tokens

        if not chunks:
            LOG.warning("No code chunks found to index in %s", index.root_path)
            return IndexingResult(True, stats, errors, (time.perf_counter() - start) * 1000.0)

        pending = chunks
        if opts.incremental:
            existing = {emb.id: emb.hash for emb in self._store.load_embeddings()}
            pending = []
            for chunk in chunks:
                if existing.get(chunk_id(chunk)) == hash_content(chunk.content):
                    stats.chunks_cached += 1
                else:
                    pending.append(chunk)
            LOG.info("Cached: %d, to process: %d", stats.chunks_cached, len(pending))

        if pending:
            embeddings = self._generate(pending, opts, stats, errors)

            if opts.validate_embeddings:
                dims = self._provider.get_dimensions()
                invalid = [e for e in embeddings if not validate_embedding(e.embedding, dims, check_magnitude=True)]
                if invalid:
                    errors.append(
                        IndexingError(
                            type="validation",
                            message=f"{len(invalid)} embeddings failed validation",
                            details={"ids": [e.id for e in invalid]},
                        )
                    )
                    rejected = {e.id for e in invalid}
                    embeddings = [e for e in embeddings if e.id not in rejected]
                    stats.chunks_skipped += len(invalid)

            stats.embeddings_generated = len(embeddings)
            stats.chunks_processed = len(embeddings)
            processed_chars = sum(len(e.content) for e in embeddings)
            stats.estimated_cost = self._provider.estimate_cost(math.ceil(processed_chars / CHARS_PER_TOKEN))
            self._store.save_embeddings(embeddings, model=self._provider.get_model(), cost_usd=stats.estimated_cost)

        duration_ms = (time.perf_counter() - start) * 1000.0
        LOG.info(
            "Embedding index for %s: %d chunks, %d embedded, %d cached, %d skipped, %.0fms",
            index.repo_id,
            stats.total_chunks,
            stats.embeddings_generated,
            stats.chunks_cached,
            stats.chunks_skipped,
            duration_ms,
        )
        return IndexingResult(not errors, stats, errors, duration_ms)

    def _generate(
        self,
        chunks: List[CodeChunk],
        opts: IndexingOptions,
        stats: IndexingStats,
        errors: List[IndexingError],
    ) -> List[CodeEmbedding]:
        batch_size = max(1, opts.batch_size)
        batches = [chunks[i : i + batch_size] for i in range(0, len(chunks), batch_size)]
        workers = max(1, opts.max_concurrency)
        embeddings: List[CodeEmbedding] = []

        with ThreadPoolExecutor(max_workers=workers) as executor:
            for w in range(0, len(batches), workers):
                wave = batches[w : w + workers]
                futures = [
                    executor.submit(self._provider.generate_bulk_embeddings, [c.content for c in batch])
                    for batch in wave
                ]
                for batch, future in zip(wave, futures):
                    try:
                        vectors = future.result()
                    except ProviderError as exc:
                        LOG.warning("Batch embedding failed (%d chunks): %s", len(batch), exc)
                        errors.append(
                            IndexingError(
                                type="embedding",
                                message=f"Batch embedding failed: {exc}",
                                file=batch[0].source,
                                details={"batch_size": len(batch)},
                            )
                        )
                        stats.chunks_skipped += len(batch)
                        continue
                    embeddings.extend(self._to_embedding(c, v) for c, v in zip(batch, vectors))

        return embeddings

    @staticmethod
    def _to_embedding(chunk: CodeChunk, vector: List[float]) -> CodeEmbedding:
        return CodeEmbedding(
            id=chunk_id(chunk),
            type=chunk.type,
            source=chunk.source,
            start_line=chunk.start_line,
            end_line=chunk.end_line,
            content=chunk.content,
            content_summary=summarize(chunk.content),
            embedding=vector,
            metadata=chunk.metadata,
            hash=hash_content(chunk.content),
        )

    # ─────────────────────────────────────────────────────────────────
    # Maintenance
    # ─────────────────────────────────────────────────────────────────

    def get_index_stats(self) -> IndexStats:
        if not self._store.exists():
            return IndexStats(False, 0, 0, None, self._provider.get_model())
        stats = self._store.get_stats()
        if stats is None:
            return IndexStats(False, 0, 0, None, self._provider.get_model())
        return IndexStats(
            indexed=True,
            total_embeddings=stats.embedding_count,
            storage_size=stats.total_size,
            last_indexed=stats.indexed_at,
            model=stats.model or self._provider.get_model(),
        )

    def clear_index(self) -> None:
        self._store.clear()

    def optimize_index(self) -> int:
        return self._store.optimize()

    def export_index(self, output_path: Path | str) -> None:
        self._store.export_to_file(output_path)

    def import_index(self, input_path: Path | str) -> int:
        return self._store.import_from_file(input_path)
