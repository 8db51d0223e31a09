"""
Codebase indexer: symbol table, dependency graph and incremental updates.

Walks the repository, asks a language front-end for each source file's
structure, and records every function, class and method as a Symbol with a
deterministic id. The dependency graph is rebuilt from the symbol table after
every build or update because edges can span files outside a changed set.

Call and inheritance edges are resolved by bare name: the first symbol with a
matching name (ordered by file path, then line) wins. This is a heuristic,
not lexical-scope resolution.

The index is persisted as one JSON document per repository id. Nothing here
locks that file; two processes indexing the same repository id can race.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import time
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath

from repo_lens.config.settings import IndexerConfig, resolve_cache_dir
from repo_lens.errors import IndexNotFoundError, ParseError, StorageError, SymbolNotFoundError
from repo_lens.index.frontend import LanguageFrontend, PythonFrontend, get_frontend
from repo_lens.index.lru import LRUCache
from repo_lens.index.models import (
    CodebaseIndex,
    ComplexityStats,
    DependencyGraph,
    EdgeKind,
    FileIndex,
    ParsedClass,
    ParsedFile,
    ParsedFunction,
    Reference,
    Symbol,
    SymbolKind,
    symbol_id,
)
from repo_lens.jsonio import read_json, write_json_atomic

LOG = logging.getLogger("index.indexer")

INDEX_FILENAME = "index.json"
COMMENT_PREFIXES = ("#", "//", "/*")
# Suffixes tried, in order, when resolving a relative import to a file.
RELATIVE_IMPORT_CANDIDATES = (".py", ".pyi", "/__init__.py")
COMPLEXITY_BUCKET = 5


def count_loc(content: str) -> int:
    """Count non-blank lines that are not comment lines."""
    count = 0
    for line in content.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith(COMMENT_PREFIXES):
            count += 1
    return count


def hash_text(content: str) -> str:
    """SHA-256 hex digest of text content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class CodebaseIndexer:
    """
    Builds and maintains a searchable index of one repository.

    Workflow:
    1. ``build_index()`` walks the tree and indexes every allowed file
    2. ``update_index(changed)`` drops and re-indexes only the changed files
    3. Queries (``search_functions``, ``get_dependencies``, ...) read the
       in-memory index, loading the persisted one on first use
    """

    def __init__(
        self,
        repo_root: Path | str,
        repo_id: str,
        cache_dir: Path | str | None = None,
        config: IndexerConfig | None = None,
        frontends: list[LanguageFrontend] | None = None,
    ) -> None:
        self._root = Path(repo_root).resolve()
        self._repo_id = repo_id
        self._config = config or IndexerConfig()
        self._frontends = frontends if frontends is not None else [PythonFrontend()]
        self._cache_dir = Path(cache_dir).expanduser() if cache_dir else resolve_cache_dir()
        self._repo_dir = self._cache_dir / repo_id
        self._parse_cache: LRUCache[str, tuple[str, ParsedFile]] = LRUCache(self._config.parse_cache_size)
        self._index: CodebaseIndex | None = None

    @property
    def repo_root(self) -> Path:
        return self._root

    @property
    def repo_id(self) -> str:
        return self._repo_id

    @property
    def index_path(self) -> Path:
        return self._repo_dir / INDEX_FILENAME

    # ─────────────────────────────────────────────────────────────────
    # Build / update
    # ─────────────────────────────────────────────────────────────────

    def build_index(self) -> CodebaseIndex:
        """Build the complete index from scratch and persist it."""
        start = time.monotonic()
        index = CodebaseIndex(repo_id=self._repo_id, root_path=str(self._root))

        files = self.find_code_files()
        skipped = 0
        for path in files:
            try:
                self._index_file(path, index)
            except (ParseError, OSError) as exc:
                skipped += 1
                LOG.warning("Failed to index %s: %s", self.relative_path(path), exc)

        self._build_dependency_graph(index)
        self._calculate_metadata(index)
        self._save_index(index)
        self._index = index

        LOG.info(
            "Indexed %s: %d files (%d skipped), %d symbols, %d edges, %dms",
            self._repo_id,
            index.total_files,
            skipped,
            len(index.symbols),
            index.dependencies.edge_count,
            int((time.monotonic() - start) * 1000),
        )
        return index

    def update_index(self, changed_files: list[str | Path]) -> CodebaseIndex:
        """
        Re-index only ``changed_files`` (relative to the root or absolute).

        Falls back to a full build when no persisted index exists. Deleted
        files are dropped; the graph and metadata are always rebuilt.
        """
        index = self.load_index()
        if index is None:
            LOG.info("No existing index for %s, building from scratch", self._repo_id)
            return self.build_index()

        for changed in changed_files:
            if not self._within_root(Path(changed)):
                LOG.warning("Skipping %s: outside repository root %s", changed, self._root)
                continue
            rel = self.relative_path(Path(changed))
            self._remove_file(rel, index)

            absolute = self._root / rel
            if absolute.is_file() and self._is_indexable(PurePosixPath(rel)):
                try:
                    self._index_file(absolute, index)
                except (ParseError, OSError) as exc:
                    LOG.warning("Failed to re-index %s: %s", rel, exc)

        self._build_dependency_graph(index)
        self._calculate_metadata(index)
        index.last_updated = datetime.now(timezone.utc)
        self._save_index(index)
        self._index = index

        LOG.info("Updated index for %s: %d changed files", self._repo_id, len(changed_files))
        return index

    def find_code_files(self) -> list[Path]:
        """All files under the root with an allowed extension, in sorted order."""
        skip = set(self._config.skip_dirs)
        found: list[Path] = []
        for current, dirnames, filenames in os.walk(self._root):
            dirnames[:] = sorted(d for d in dirnames if d not in skip)
            for name in sorted(filenames):
                if Path(name).suffix.lower() in self._config.extensions:
                    found.append(Path(current) / name)
        return found

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    def search_functions(self, query: str) -> list[ParsedFunction]:
        """Functions whose name contains ``query`` (case-insensitive)."""
        needle = query.lower()
        return [f for f in self._require_index().functions.values() if needle in f.name.lower()]

    def search_classes(self, query: str) -> list[ParsedClass]:
        """Classes whose name contains ``query`` (case-insensitive)."""
        needle = query.lower()
        return [c for c in self._require_index().classes.values() if needle in c.name.lower()]

    def get_dependencies(self, node_id: str) -> list[str]:
        """Nodes that ``node_id`` (a file path or symbol id) depends on."""
        graph = self._require_node(node_id)
        return sorted(graph.dependencies_of(node_id))

    def get_reverse_dependencies(self, node_id: str) -> list[str]:
        """Nodes that depend on ``node_id``."""
        graph = self._require_node(node_id)
        return sorted(graph.dependents_of(node_id))

    def find_references(self, name: str) -> list[Reference]:
        """Functions and methods that call something named ``name``."""
        index = self._require_index()
        references: list[Reference] = []
        for func in index.functions.values():
            if name in func.dependencies:
                references.append(
                    Reference(symbol=name, file=func.file, line=func.line, context=f"Called in {func.name}()")
                )
        for cls in index.classes.values():
            for method in cls.methods:
                if name in method.dependencies:
                    references.append(
                        Reference(
                            symbol=name,
                            file=method.file,
                            line=method.line,
                            context=f"Called in {cls.name}.{method.name}()",
                        )
                    )
        return references

    def get_symbol(self, sid: str) -> Symbol:
        symbol = self._require_index().symbols.get(sid)
        if symbol is None:
            raise SymbolNotFoundError(f"Symbol not found in index: {sid}")
        return symbol

    def get_file_index(self, path: str | Path) -> FileIndex:
        rel = self.relative_path(Path(path))
        file_index = self._require_index().files.get(rel)
        if file_index is None:
            raise SymbolNotFoundError(f"File not indexed: {rel}")
        return file_index

    def get_parsed_file(self, path: str | Path) -> ParsedFile | None:
        """Parse a file through the LRU parse cache; None if it cannot be parsed."""
        absolute = self._root / self.relative_path(Path(path))
        try:
            content = self._read(absolute)
            return self._parse(absolute, content, hash_text(content))
        except (ParseError, OSError) as exc:
            LOG.warning("Failed to parse %s: %s", absolute, exc)
            return None

    # ─────────────────────────────────────────────────────────────────
    # Persistence
    # ─────────────────────────────────────────────────────────────────

    def load_index(self) -> CodebaseIndex | None:
        """Load the persisted index; None if absent or corrupt."""
        data = read_json(self.index_path)
        if data is None:
            return None
        try:
            return CodebaseIndex.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            LOG.warning("Discarding corrupt index %s: %s", self.index_path, exc)
            return None

    def clear_cache(self) -> None:
        """Delete the persisted index and forget all cached parses."""
        shutil.rmtree(self._repo_dir, ignore_errors=True)
        self._parse_cache.clear()
        self._index = None

    def _save_index(self, index: CodebaseIndex) -> None:
        try:
            write_json_atomic(self.index_path, index.to_dict())
        except OSError as exc:
            raise StorageError(f"Failed to save index to {self.index_path}: {exc}") from exc

    def _require_index(self) -> CodebaseIndex:
        if self._index is None:
            self._index = self.load_index()
        if self._index is None:
            raise IndexNotFoundError(f"No index for repository {self._repo_id!r}; run build_index() first")
        return self._index

    def _require_node(self, node_id: str) -> DependencyGraph:
        graph = self._require_index().dependencies
        if node_id not in graph.nodes:
            raise SymbolNotFoundError(f"Not a node of the dependency graph: {node_id}")
        return graph

    # ─────────────────────────────────────────────────────────────────
    # Per-file indexing
    # ─────────────────────────────────────────────────────────────────

    def relative_path(self, path: Path | str) -> str:
        """``path`` (absolute or root-relative) as a POSIX path relative to the root."""
        path = Path(path)
        absolute = path if path.is_absolute() else self._root / path
        try:
            return absolute.resolve().relative_to(self._root).as_posix()
        except ValueError:
            return path.as_posix()

    def _within_root(self, path: Path) -> bool:
        absolute = path if path.is_absolute() else self._root / path
        return absolute.resolve().is_relative_to(self._root)

    def _is_indexable(self, rel: PurePosixPath) -> bool:
        if rel.suffix.lower() not in self._config.extensions:
            return False
        return not any(part in self._config.skip_dirs for part in rel.parts[:-1])

    @staticmethod
    def _read(path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise ParseError(f"{path}: not valid UTF-8 ({exc})") from exc

    def _parse(self, absolute: Path, content: str, digest: str) -> ParsedFile:
        key = str(absolute)
        cached = self._parse_cache.get(key)
        if cached is not None and cached[0] == digest:
            return cached[1]

        rel = self.relative_path(absolute)
        frontend = get_frontend(absolute, self._frontends)
        if frontend is None:
            raise ParseError(f"No language front-end for {rel}")
        parsed = frontend.parse_source(content, rel)
        self._parse_cache.set(key, (digest, parsed))
        return parsed

    def _index_file(self, path: Path, index: CodebaseIndex) -> None:
        rel = self.relative_path(path)
        content = self._read(path)
        digest = hash_text(content)
        parsed = self._parse(path, content, digest)
        loc = count_loc(content)

        file_index = FileIndex(
            path=rel,
            hash=digest,
            language=parsed.language,
            loc=loc,
            last_modified=datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc),
            imports=list(parsed.imports),
            exports=list(parsed.exports),
        )

        for func in parsed.functions:
            fid = symbol_id(rel, func.name, func.line)
            index.functions[fid] = func
            file_index.functions.append(fid)
            index.symbols[fid] = Symbol(
                id=fid,
                name=func.name,
                kind=SymbolKind.FUNCTION,
                file=rel,
                line=func.line,
                exported=func.is_exported,
                documentation=func.documentation,
            )

        for cls in parsed.classes:
            cid = symbol_id(rel, cls.name, cls.line)
            index.classes[cid] = cls
            file_index.classes.append(cid)
            index.symbols[cid] = Symbol(
                id=cid,
                name=cls.name,
                kind=SymbolKind.CLASS,
                file=rel,
                line=cls.line,
                exported=cls.is_exported,
                documentation=cls.documentation,
            )
            for method in cls.methods:
                qualified = f"{cls.name}.{method.name}"
                mid = symbol_id(rel, qualified, method.line)
                file_index.methods.append(mid)
                index.symbols[mid] = Symbol(
                    id=mid,
                    name=qualified,
                    kind=SymbolKind.METHOD,
                    file=rel,
                    line=method.line,
                    exported=cls.is_exported,
                    documentation=method.documentation,
                )

        index.files[rel] = file_index
        index.total_files += 1
        index.total_loc += loc

    def _remove_file(self, rel: str, index: CodebaseIndex) -> None:
        file_index = index.files.pop(rel, None)
        if file_index is None:
            return
        for fid in file_index.functions:
            index.functions.pop(fid, None)
            index.symbols.pop(fid, None)
        for cid in file_index.classes:
            index.classes.pop(cid, None)
            index.symbols.pop(cid, None)
        for mid in file_index.methods:
            index.symbols.pop(mid, None)
        index.total_files -= 1
        index.total_loc -= file_index.loc

    # ─────────────────────────────────────────────────────────────────
    # Graph and metadata
    # ─────────────────────────────────────────────────────────────────

    def _build_dependency_graph(self, index: CodebaseIndex) -> None:
        graph = DependencyGraph()
        for rel in index.files:
            graph.add_node(rel)
        for sid in index.symbols:
            graph.add_node(sid)

        for rel, file_index in index.files.items():
            for imported in file_index.imports:
                target = self._resolve_import(imported, rel, index)
                if target is not None and target != rel:
                    graph.add_edge(rel, target, EdgeKind.IMPORT)

        first_by_name: dict[str, str] = {}
        for symbol in sorted(index.symbols.values(), key=lambda s: (s.file, s.line, s.id)):
            first_by_name.setdefault(symbol.name, symbol.id)

        for fid, func in index.functions.items():
            self._add_call_edges(graph, fid, func, first_by_name)

        for cid, cls in index.classes.items():
            for method in cls.methods:
                mid = symbol_id(cls.file, f"{cls.name}.{method.name}", method.line)
                self._add_call_edges(graph, mid, method, first_by_name)
            for base in cls.extends:
                target = first_by_name.get(base.split(".")[-1])
                if target is not None:
                    graph.add_edge(cid, target, EdgeKind.EXTENDS)
            for iface in cls.implements:
                target = first_by_name.get(iface.split(".")[-1])
                if target is not None:
                    graph.add_edge(cid, target, EdgeKind.IMPLEMENTS)

        index.dependencies = graph

    @staticmethod
    def _add_call_edges(
        graph: DependencyGraph, source: str, func: ParsedFunction, first_by_name: dict[str, str]
    ) -> None:
        for dep in func.dependencies:
            target = first_by_name.get(dep)
            if target is not None:
                graph.add_edge(source, target, EdgeKind.CALL)

    @staticmethod
    def _resolve_import(imported: str, from_file: str, index: CodebaseIndex) -> str | None:
        """
        Resolve a relative import to an indexed file.

        One leading dot is the importing file's package, each additional dot
        one package up. Absolute (external) imports are never resolved.
        """
        if not imported.startswith("."):
            return None

        level = len(imported) - len(imported.lstrip("."))
        rest = imported[level:]
        base = list(PurePosixPath(from_file).parent.parts)
        if level - 1 > len(base):
            return None  # Can't go above the repository root
        parts = base[: len(base) - (level - 1)] + (rest.split(".") if rest else [])

        stem = "/".join(parts)
        if not stem:
            return "__init__.py" if "__init__.py" in index.files else None
        for suffix in RELATIVE_IMPORT_CANDIDATES:
            candidate = f"{stem}{suffix}"
            if candidate in index.files:
                return candidate
        return None

    @staticmethod
    def _calculate_metadata(index: CodebaseIndex) -> None:
        complexities = [f.complexity for f in index.functions.values()]
        complexities += [m.complexity for c in index.classes.values() for m in c.methods]

        distribution: Counter[int] = Counter((c // COMPLEXITY_BUCKET) * COMPLEXITY_BUCKET for c in complexities)
        index.metadata.complexity = ComplexityStats(
            average=sum(complexities) / len(complexities) if complexities else 0.0,
            max=max(complexities, default=0),
            distribution=dict(sorted(distribution.items())),
        )
        index.metadata.languages = dict(sorted(Counter(f.language for f in index.files.values()).items()))
