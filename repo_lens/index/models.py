"""
Index models: parsed-file records, symbols, the dependency graph and the
codebase index that ties them together.

Parsed records and symbols are pydantic models because they cross the
front-end boundary and are persisted. The graph and the index itself are
plain dataclasses holding sets and dicts; ``to_dict``/``from_dict`` flatten
them into sorted JSON arrays so identical indexes serialize identically.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

INDEX_FORMAT_VERSION = "1.0.0"


class SymbolKind(str, Enum):
    """Kind of indexed symbol."""

    FUNCTION = "function"
    CLASS = "class"
    METHOD = "method"


class EdgeKind(str, Enum):
    """Kind of dependency edge."""

    IMPORT = "import"
    CALL = "call"
    EXTENDS = "extends"
    IMPLEMENTS = "implements"


# ─────────────────────────────────────────────────────────────────
# Front-end records
# ─────────────────────────────────────────────────────────────────


class Parameter(BaseModel):
    name: str
    type: str = ""
    optional: bool = False
    default_value: str | None = None


class Property(BaseModel):
    name: str
    type: str = ""
    is_static: bool = False


class ParsedFunction(BaseModel):
    """A function or method as reported by the language front-end."""

    name: str
    file: str
    line: int
    end_line: int
    parameters: list[Parameter] = Field(default_factory=list)
    return_type: str = ""
    body: str = ""
    complexity: int = 1
    is_async: bool = False
    is_exported: bool = False
    documentation: str | None = None
    decorators: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)


class ParsedClass(BaseModel):
    """A class as reported by the language front-end."""

    name: str
    file: str
    line: int
    end_line: int
    is_exported: bool = False
    is_abstract: bool = False
    extends: list[str] = Field(default_factory=list)
    implements: list[str] = Field(default_factory=list)
    properties: list[Property] = Field(default_factory=list)
    methods: list[ParsedFunction] = Field(default_factory=list)
    documentation: str | None = None


class ParsedFile(BaseModel):
    """Structured view of one source file."""

    path: str
    language: str
    functions: list[ParsedFunction] = Field(default_factory=list)
    classes: list[ParsedClass] = Field(default_factory=list)
    imports: list[str] = Field(default_factory=list)
    exports: list[str] = Field(default_factory=list)
    complexity: int = 0


# ─────────────────────────────────────────────────────────────────
# Index records
# ─────────────────────────────────────────────────────────────────


class Symbol(BaseModel):
    """
    A named, indexable code entity.

    ``id`` is ``{relative_path}:{name}:{line}``; for methods the name part is
    ``{class}.{method}``.
    """

    id: str
    name: str
    kind: SymbolKind
    file: str
    line: int
    exported: bool = False
    documentation: str | None = None


class FileIndex(BaseModel):
    """Per-file entry of the codebase index."""

    path: str
    hash: str
    language: str
    loc: int
    last_modified: datetime
    functions: list[str] = Field(default_factory=list)
    classes: list[str] = Field(default_factory=list)
    methods: list[str] = Field(default_factory=list)
    imports: list[str] = Field(default_factory=list)
    exports: list[str] = Field(default_factory=list)

    @property
    def symbol_ids(self) -> list[str]:
        return [*self.functions, *self.classes, *self.methods]


class Reference(BaseModel):
    """A call site that refers to a symbol by name."""

    symbol: str
    file: str
    line: int
    context: str


def symbol_id(relative_path: str, name: str, line: int) -> str:
    """Build the deterministic symbol id."""
    return f"{relative_path}:{name}:{line}"


# ─────────────────────────────────────────────────────────────────
# Dependency graph
# ─────────────────────────────────────────────────────────────────


@dataclass
class DependencyGraph:
    """
    Directed dependency graph over file paths and symbol ids.

    ``edges`` maps a node to the nodes it depends on; ``reverse_edges`` maps a
    node to the nodes that depend on it. Both are updated together by
    ``add_edge`` and every endpoint is added to ``nodes``.
    """

    nodes: set[str] = field(default_factory=set)
    edges: dict[str, set[str]] = field(default_factory=dict)
    reverse_edges: dict[str, set[str]] = field(default_factory=dict)
    kinds: dict[tuple[str, str], EdgeKind] = field(default_factory=dict)

    def add_node(self, node_id: str) -> None:
        self.nodes.add(node_id)

    def add_edge(self, source: str, target: str, kind: EdgeKind) -> None:
        """Insert ``source → target`` into both adjacency mappings."""
        self.nodes.add(source)
        self.nodes.add(target)
        self.edges.setdefault(source, set()).add(target)
        self.reverse_edges.setdefault(target, set()).add(source)
        # First kind recorded for a pair is kept (an import edge stays an import edge).
        self.kinds.setdefault((source, target), kind)

    def dependencies_of(self, node_id: str) -> set[str]:
        return self.edges.get(node_id, set())

    def dependents_of(self, node_id: str) -> set[str]:
        return self.reverse_edges.get(node_id, set())

    def edge_kind(self, source: str, target: str) -> EdgeKind | None:
        return self.kinds.get((source, target))

    @property
    def edge_count(self) -> int:
        return sum(len(targets) for targets in self.edges.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": sorted(self.nodes),
            "edges": [[src, sorted(dst)] for src, dst in sorted(self.edges.items())],
            "reverse_edges": [[dst, sorted(src)] for dst, src in sorted(self.reverse_edges.items())],
            "kinds": [[src, dst, kind.value] for (src, dst), kind in sorted(self.kinds.items())],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DependencyGraph":
        graph = cls(nodes=set(data.get("nodes", [])))
        graph.edges = {src: set(dst) for src, dst in data.get("edges", [])}
        graph.reverse_edges = {dst: set(src) for dst, src in data.get("reverse_edges", [])}
        graph.kinds = {(src, dst): EdgeKind(kind) for src, dst, kind in data.get("kinds", [])}
        return graph


# ─────────────────────────────────────────────────────────────────
# Codebase index
# ─────────────────────────────────────────────────────────────────


@dataclass
class ComplexityStats:
    average: float = 0.0
    max: int = 0
    distribution: dict[int, int] = field(default_factory=dict)


@dataclass
class IndexMetadata:
    languages: dict[str, int] = field(default_factory=dict)
    complexity: ComplexityStats = field(default_factory=ComplexityStats)


@dataclass
class CodebaseIndex:
    """The complete, persisted model of one repository."""

    repo_id: str
    root_path: str
    version: str = INDEX_FORMAT_VERSION
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    total_files: int = 0
    total_loc: int = 0
    files: dict[str, FileIndex] = field(default_factory=dict)
    functions: dict[str, ParsedFunction] = field(default_factory=dict)
    classes: dict[str, ParsedClass] = field(default_factory=dict)
    symbols: dict[str, Symbol] = field(default_factory=dict)
    dependencies: DependencyGraph = field(default_factory=DependencyGraph)
    metadata: IndexMetadata = field(default_factory=IndexMetadata)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "repo_id": self.repo_id,
            "root_path": self.root_path,
            "last_updated": self.last_updated.isoformat(),
            "total_files": self.total_files,
            "total_loc": self.total_loc,
            "files": [[k, v.model_dump(mode="json")] for k, v in self.files.items()],
            "functions": [[k, v.model_dump(mode="json")] for k, v in self.functions.items()],
            "classes": [[k, v.model_dump(mode="json")] for k, v in self.classes.items()],
            "symbols": [[k, v.model_dump(mode="json")] for k, v in self.symbols.items()],
            "dependencies": self.dependencies.to_dict(),
            "metadata": {
                "languages": sorted(self.metadata.languages.items()),
                "complexity": {
                    "average": self.metadata.complexity.average,
                    "max": self.metadata.complexity.max,
                    "distribution": sorted(self.metadata.complexity.distribution.items()),
                },
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CodebaseIndex":
        meta = data.get("metadata", {})
        complexity = meta.get("complexity", {})
        return cls(
            repo_id=data["repo_id"],
            root_path=data["root_path"],
            version=data.get("version", INDEX_FORMAT_VERSION),
            last_updated=datetime.fromisoformat(data["last_updated"]),
            total_files=data.get("total_files", 0),
            total_loc=data.get("total_loc", 0),
            files={k: FileIndex.model_validate(v) for k, v in data.get("files", [])},
            functions={k: ParsedFunction.model_validate(v) for k, v in data.get("functions", [])},
            classes={k: ParsedClass.model_validate(v) for k, v in data.get("classes", [])},
            symbols={k: Symbol.model_validate(v) for k, v in data.get("symbols", [])},
            dependencies=DependencyGraph.from_dict(data.get("dependencies", {})),
            metadata=IndexMetadata(
                languages=dict(meta.get("languages", [])),
                complexity=ComplexityStats(
                    average=complexity.get("average", 0.0),
                    max=complexity.get("max", 0),
                    distribution={int(k): v for k, v in complexity.get("distribution", [])},
                ),
            ),
        )
