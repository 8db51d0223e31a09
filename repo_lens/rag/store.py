"""
File-backed embedding store.

One JSON document per repository id at
``<cache_dir>/<repo_id>/embeddings/index.json`` holds every embedding plus
index-level metadata (model name, dimensionality, cost). The document is
rewritten in full on each mutation. Each store instance keeps its own
in-memory copy; two instances never share state.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError

from repo_lens.config.settings import resolve_cache_dir
from repo_lens.errors import StorageError
from repo_lens.jsonio import read_json, write_json_atomic
from repo_lens.rag.models import (
    CodeEmbedding,
    EmbeddingIndexDocument,
    EmbeddingIndexMetadata,
    SearchFilters,
)

LOG = logging.getLogger("rag.store")


@dataclass
class StoreStats:
    total_size: int
    embedding_count: int
    indexed_at: datetime
    model: str
    dimensions: int


def apply_filters(embeddings: Iterable[CodeEmbedding], filters: SearchFilters) -> List[CodeEmbedding]:
    """
    Keep embeddings matching every set filter.

    An embedding without a complexity value never satisfies a complexity
    bound.
    """
    pattern = re.compile(filters.file_pattern) if filters.file_pattern else None
    wanted_tags = set(filters.tags or [])
    out: List[CodeEmbedding] = []
    for emb in embeddings:
        meta = emb.metadata
        if filters.language and meta.language != filters.language:
            continue
        if filters.type and emb.type != filters.type:
            continue
        if pattern is not None and not pattern.search(emb.source):
            continue
        if filters.min_complexity is not None:
            if meta.complexity is None or meta.complexity < filters.min_complexity:
                continue
        if filters.max_complexity is not None:
            if meta.complexity is None or meta.complexity > filters.max_complexity:
                continue
        if wanted_tags and not wanted_tags.issubset(meta.tags):
            continue
        out.append(emb)
    return out


class FileEmbeddingStore:
    """Persist and query one repository's embeddings."""

    def __init__(self, repo_id: str, cache_dir: Path | str | None = None) -> None:
        self._repo_id = repo_id
        base = Path(cache_dir).expanduser() if cache_dir else resolve_cache_dir()
        self._storage_dir = base / repo_id / "embeddings"
        self._index_path = self._storage_dir / "index.json"
        self._document: Optional[EmbeddingIndexDocument] = None
        self._loaded = False

    @property
    def repo_id(self) -> str:
        return self._repo_id

    @property
    def storage_dir(self) -> Path:
        return self._storage_dir

    @property
    def index_path(self) -> Path:
        return self._index_path

    def initialize(self) -> None:
        """Create the storage directory."""
        try:
            self._storage_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to initialize embedding store: {exc}") from exc

    # ─────────────────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────────────────

    def save_embeddings(
        self,
        embeddings: List[CodeEmbedding],
        model: Optional[str] = None,
        cost_usd: Optional[float] = None,
    ) -> None:
        """Merge ``embeddings`` into the stored set by id; later writes win."""
        if not embeddings:
            return

        document = self._load_for_update() or EmbeddingIndexDocument(repo_id=self._repo_id)
        merged: Dict[str, CodeEmbedding] = {emb.id: emb for emb in document.embeddings}
        for emb in embeddings:
            merged[emb.id] = emb

        document.embeddings = list(merged.values())
        document.total_embeddings = len(document.embeddings)
        document.generated_at = datetime.now(timezone.utc)
        document.metadata.dimensions = embeddings[-1].dimensions
        if model:
            document.metadata.model = model
        elif not document.metadata.model:
            document.metadata.model = f"unknown-{document.metadata.dimensions}d"
        if cost_usd is not None:
            document.metadata.cost_usd = (document.metadata.cost_usd or 0.0) + cost_usd

        self._save(document)
        LOG.debug("Saved %d embeddings (%d total)", len(embeddings), document.total_embeddings)

    def update_embedding(self, embedding: CodeEmbedding) -> None:
        self.save_embeddings([embedding])

    def delete_embeddings(self, ids: Iterable[str]) -> int:
        """Delete embeddings by id; returns the number removed."""
        document = self._load_for_update()
        if document is None:
            return 0
        doomed = set(ids)
        before = len(document.embeddings)
        document.embeddings = [e for e in document.embeddings if e.id not in doomed]
        removed = before - len(document.embeddings)
        if removed:
            document.total_embeddings = len(document.embeddings)
            self._save(document)
        return removed

    def invalidate_changed_files(self, changed_files: Iterable[str]) -> int:
        """Drop every embedding whose source file is in ``changed_files``."""
        document = self._load_for_update()
        if document is None:
            return 0
        changed = {Path(p).as_posix() for p in changed_files}
        before = len(document.embeddings)
        document.embeddings = [e for e in document.embeddings if e.source not in changed]
        removed = before - len(document.embeddings)
        if removed:
            document.total_embeddings = len(document.embeddings)
            self._save(document)
            LOG.info("Invalidated %d embeddings for %d changed files", removed, len(changed))
        return removed

    def optimize(self) -> int:
        """Deduplicate by id, keeping the last occurrence; returns duplicates removed."""
        document = self._load_for_update()
        if document is None:
            return 0
        unique: Dict[str, CodeEmbedding] = {}
        for emb in document.embeddings:
            unique[emb.id] = emb
        removed = len(document.embeddings) - len(unique)
        document.embeddings = list(unique.values())
        document.total_embeddings = len(document.embeddings)
        self._save(document)
        if removed:
            LOG.info("Optimized storage: removed %d duplicates", removed)
        return removed

    def clear(self) -> None:
        try:
            self._index_path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to clear embeddings: {exc}") from exc
        self._document = None
        self._loaded = False

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    def load_embeddings(self) -> List[CodeEmbedding]:
        document = self._load()
        return list(document.embeddings) if document else []

    def load_embeddings_with_filters(self, filters: SearchFilters) -> List[CodeEmbedding]:
        return apply_filters(self.load_embeddings(), filters)

    def get_metadata(self) -> Optional[EmbeddingIndexMetadata]:
        document = self._load()
        return document.metadata if document else None

    def exists(self) -> bool:
        return self._index_path.exists()

    def count(self) -> int:
        document = self._load()
        return len(document.embeddings) if document else 0

    def get_stats(self) -> Optional[StoreStats]:
        document = self._load()
        if document is None:
            return None
        try:
            size = self._index_path.stat().st_size
        except OSError:
            size = 0
        return StoreStats(
            total_size=size,
            embedding_count=len(document.embeddings),
            indexed_at=document.generated_at,
            model=document.metadata.model,
            dimensions=document.metadata.dimensions,
        )

    # ─────────────────────────────────────────────────────────────────
    # Import / export
    # ─────────────────────────────────────────────────────────────────

    def export_to_file(self, output_path: Path | str) -> None:
        document = self._load()
        if document is None:
            raise StorageError("No embeddings to export")
        try:
            write_json_atomic(Path(output_path), document.model_dump(mode="json"))
        except OSError as exc:
            raise StorageError(f"Failed to export embeddings to {output_path}: {exc}") from exc

    def import_from_file(self, input_path: Path | str) -> int:
        """
        Replace the stored index with a previously exported document.

        Raises:
            ValueError: If the file is not a valid embedding index document
        """
        try:
            raw = json.loads(Path(input_path).read_text(encoding="utf-8"))
            document = EmbeddingIndexDocument.model_validate(raw)
        except (json.JSONDecodeError, ValidationError) as exc:
            raise ValueError(f"Invalid embedding index format in {input_path}: {exc}") from exc
        document.repo_id = self._repo_id
        document.total_embeddings = len(document.embeddings)
        self._save(document)
        return document.total_embeddings

    # ─────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────

    def _load(self) -> Optional[EmbeddingIndexDocument]:
        if self._loaded:
            return self._document
        raw = read_json(self._index_path)
        document: Optional[EmbeddingIndexDocument] = None
        if raw is not None:
            try:
                document = EmbeddingIndexDocument.model_validate(raw)
            except ValidationError as exc:
                LOG.warning("Discarding corrupt embedding index %s: %s", self._index_path, exc)
        self._document = document
        self._loaded = True
        return document

    def _load_for_update(self) -> Optional[EmbeddingIndexDocument]:
        # writers mutate a copy; _save swaps it in only once it is on disk
        document = self._load()
        return document.model_copy(deep=True) if document is not None else None

    def _save(self, document: EmbeddingIndexDocument) -> None:
        try:
            write_json_atomic(self._index_path, document.model_dump(mode="json"))
        except OSError as exc:
            raise StorageError(f"Failed to save embedding index {self._index_path}: {exc}") from exc
        self._document = document
        self._loaded = True
