"""
Change-aware LRU cache for model responses.

Entries are keyed by SHA-256 of ``"prompt::model"`` and remember the content
hash of every source file they were built from. An entry whose files have
changed is evicted on the next lookup. The byte budget counts prompt and
response bytes only; the least recently accessed entries are evicted first.

The whole cache state is rewritten to ``<cache_dir>/<repo_id>/ai-cache/
cache.json`` after every change to the entries or their access order.
"""

from __future__ import annotations

import hashlib
import logging
import shutil
from collections import OrderedDict
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, ValidationError

from repo_lens.config.settings import resolve_cache_dir
from repo_lens.jsonio import read_json, write_json_atomic

LOG = logging.getLogger("cache.ai_cache")

DEFAULT_MAX_SIZE_BYTES = 100 * 1024 * 1024


class CacheEntry(BaseModel):
    key: str
    prompt: str
    model: str
    response: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    file_hashes: Dict[str, str] = Field(default_factory=dict)
    size: int


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    total_entries: int = 0
    total_size: int = 0
    hit_rate: float = 0.0  # percent


def cache_key(prompt: str, model: str) -> str:
    return hashlib.sha256(f"{prompt}::{model}".encode("utf-8")).hexdigest()


class AICache:
    """LRU response cache for one repository, invalidated by file content."""

    def __init__(
        self,
        repo_id: str,
        cache_dir: Path | str | None = None,
        max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES,
        repo_root: Path | str | None = None,
    ) -> None:
        self._repo_id = repo_id
        base = Path(cache_dir).expanduser() if cache_dir else resolve_cache_dir()
        self._dir = base / repo_id / "ai-cache"
        self._path = self._dir / "cache.json"
        self._root = Path(repo_root) if repo_root else None
        self._max_size = max_size_bytes
        # Ordered least → most recently accessed.
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._size = 0
        self._stats = CacheStats()
        self._load()

    @property
    def cache_path(self) -> Path:
        return self._path

    # ─────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────

    def get(self, prompt: str, model: str, files: Optional[Iterable[str]] = None) -> Optional[str]:
        """
        Cached response, or None on a miss.

        The entry is evicted if any of its recorded files, or any of
        ``files``, no longer hashes to the value seen at write time. A file
        in ``files`` that was not recorded counts as changed.
        """
        key = cache_key(prompt, model)
        entry = self._entries.get(key)
        if entry is None:
            self._record(hit=False)
            return None

        if self._files_changed(entry, list(files or [])):
            LOG.debug("Cache entry %s invalidated by file change", key[:12])
            self._remove(key)
            self._record(hit=False)
            self._save()
            return None

        self._entries.move_to_end(key)
        self._record(hit=True)
        self._save()
        return entry.response

    def set(self, prompt: str, model: str, response: str, files: Optional[Iterable[str]] = None) -> None:
        key = cache_key(prompt, model)
        size = len(prompt.encode("utf-8")) + len(response.encode("utf-8"))
        if size > self._max_size:
            LOG.warning("Not caching %d-byte response: larger than the %d-byte cache", size, self._max_size)
            return

        entry = CacheEntry(
            key=key,
            prompt=prompt,
            model=model,
            response=response,
            file_hashes={f: self._hash_file(f) for f in (files or [])},
            size=size,
        )

        # Release a replaced entry first so it cannot evict itself.
        if key in self._entries:
            self._remove(key)
        while self._entries and self._size + size > self._max_size:
            self._evict_lru()

        self._entries[key] = entry
        self._size += size
        self._sync_totals()
        self._save()

    def invalidate(self, changed_files: Iterable[str]) -> int:
        """Drop entries whose recorded hash for any of ``changed_files`` is stale."""
        changed = list(changed_files)
        doomed: List[str] = []
        for key, entry in self._entries.items():
            for path in changed:
                if path in entry.file_hashes and entry.file_hashes[path] != self._hash_file(path):
                    doomed.append(key)
                    break
        for key in doomed:
            self._remove(key)
        if doomed:
            self._save()
            LOG.info("Invalidated %d cache entries", len(doomed))
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()
        self._size = 0
        self._stats = CacheStats()
        shutil.rmtree(self._dir, ignore_errors=True)

    def get_stats(self) -> CacheStats:
        return CacheStats(**asdict(self._stats))

    def size_mb(self) -> float:
        return self._size / (1024 * 1024)

    def entry_count(self) -> int:
        return len(self._entries)

    def is_empty(self) -> bool:
        return not self._entries

    def utilization(self) -> float:
        """Percent of the byte budget in use."""
        return self._size / self._max_size * 100.0 if self._max_size else 0.0

    def access_order(self) -> List[str]:
        """Keys from least to most recently accessed."""
        return list(self._entries)

    # ─────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────

    def _resolve(self, path: str) -> Path:
        p = Path(path)
        if self._root is not None and not p.is_absolute():
            return self._root / p
        return p

    def _hash_file(self, path: str) -> str:
        try:
            return hashlib.sha256(self._resolve(path).read_bytes()).hexdigest()
        except FileNotFoundError:
            return ""
        except OSError as exc:
            # unreadable paths hash like missing ones
            LOG.debug("Cannot hash %s: %s", path, exc)
            return ""

    def _files_changed(self, entry: CacheEntry, files: List[str]) -> bool:
        for path in files:
            if path not in entry.file_hashes:
                return True
        return any(self._hash_file(path) != recorded for path, recorded in entry.file_hashes.items())

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._size -= entry.size
        self._sync_totals()

    def _evict_lru(self) -> None:
        key, entry = self._entries.popitem(last=False)
        self._size -= entry.size
        LOG.debug("Evicted LRU cache entry %s (%d bytes)", key[:12], entry.size)

    def _record(self, hit: bool) -> None:
        if hit:
            self._stats.hits += 1
        else:
            self._stats.misses += 1
        total = self._stats.hits + self._stats.misses
        self._stats.hit_rate = self._stats.hits / total * 100.0 if total else 0.0

    def _sync_totals(self) -> None:
        self._stats.total_entries = len(self._entries)
        self._stats.total_size = self._size

    def _save(self) -> None:
        payload = {
            "entries": [entry.model_dump(mode="json") for entry in self._entries.values()],
            "access_order": list(self._entries),
            "stats": asdict(self._stats),
        }
        try:
            write_json_atomic(self._path, payload)
        except OSError as exc:
            LOG.warning("Failed to persist AI cache to %s: %s", self._path, exc)

    def _load(self) -> None:
        data = read_json(self._path)
        if data is None:
            return
        try:
            entries = {e.key: e for e in (CacheEntry.model_validate(raw) for raw in data["entries"])}
            order = [k for k in data.get("access_order", []) if k in entries]
            order += [k for k in entries if k not in order]
            stats = CacheStats(**data.get("stats", {}))
        except (KeyError, TypeError, ValidationError) as exc:
            LOG.warning("Resetting corrupt AI cache %s: %s", self._path, exc)
            return

        self._entries = OrderedDict((k, entries[k]) for k in order)
        self._size = sum(e.size for e in self._entries.values())
        self._stats = stats
        self._sync_totals()
