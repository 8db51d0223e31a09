"""
Hierarchical chunking of an indexed codebase for embedding.

Chunks are produced in priority order: functions, classes, whole small files
not already covered by a function or class chunk, then a fixed set of
top-level documentation files. Oversized function and class chunks are
dropped rather than cut, since a truncated symbol embeds poorly.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from repo_lens.config.settings import ChunkingConfig
from repo_lens.index.models import CodebaseIndex, FileIndex, ParsedClass, ParsedFunction
from repo_lens.rag.models import ChunkType, CodeChunk, EmbeddingMetadata

LOG = logging.getLogger("rag.chunker")

MAX_BODY_CHARS = 1500
CHARS_PER_TOKEN = 4
# Rough conversion used to skip files before reading them.
CHARS_PER_LINE = 10

DOC_FILES = ("README.md", "CONTRIBUTING.md", "ARCHITECTURE.md", "API.md", "CHANGELOG.md")

LINE_COMMENT = {
    "python": "#",
    "ruby": "#",
    "shell": "#",
    "markdown": "#",
}

FUNCTION_TAGS = (
    (("auth", "login"), "authentication"),
    (("db", "database", "query"), "database"),
    (("api", "fetch", "request"), "api"),
    (("test",), "test"),
    (("util", "helper"), "utility"),
    (("validate", "check", "verify"), "validation"),
    (("encrypt", "decrypt", "hash"), "security"),
    (("parse", "format", "serialize"), "parsing"),
)

CLASS_TAGS = (
    (("service",), "service"),
    (("controller",), "controller"),
    (("model",), "model"),
    (("util", "helper"), "utility"),
    (("test",), "test"),
    (("manager",), "manager"),
    (("provider",), "provider"),
    (("handler",), "handler"),
    (("error", "exception"), "error"),
)

FILE_TAGS = (
    (("test",), "test"),
    (("config", "setting"), "configuration"),
    (("util",), "utility"),
    (("types",), "types"),
    (("constant",), "constants"),
)


@dataclass
class ChunkingOptions:
    max_function_size: int = 2000
    max_class_size: int = 5000
    max_file_size: int = 1000
    include_documentation: bool = True
    min_complexity: int = 0
    max_listed_dependencies: int = 10

    @classmethod
    def from_config(cls, config: ChunkingConfig) -> "ChunkingOptions":
        return cls(
            max_function_size=config.max_function_size,
            max_class_size=config.max_class_size,
            max_file_size=config.max_file_size,
            include_documentation=config.include_documentation,
        )


@dataclass
class ChunkingStats:
    total_chunks: int = 0
    function_chunks: int = 0
    class_chunks: int = 0
    file_chunks: int = 0
    documentation_chunks: int = 0
    total_characters: int = 0
    estimated_tokens: int = 0


@dataclass
class ChunkingResult:
    chunks: List[CodeChunk] = field(default_factory=list)
    stats: ChunkingStats = field(default_factory=ChunkingStats)


def _comment(language: str) -> str:
    return LINE_COMMENT.get(language, "//")


def _match_tags(name: str, table) -> List[str]:
    tags: List[str] = []
    for needles, tag in table:
        if any(n in name for n in needles) and tag not in tags:
            tags.append(tag)
    return tags


def function_tags(func: ParsedFunction) -> List[str]:
    tags = _match_tags(func.name.lower(), FUNCTION_TAGS)
    if func.complexity > 10:
        tags.append("complex")
    elif func.complexity <= 3:
        tags.append("simple")
    if func.is_async:
        tags.append("async")
    return tags


def class_tags(cls: ParsedClass) -> List[str]:
    tags = _match_tags(cls.name.lower(), CLASS_TAGS)
    if cls.is_abstract:
        tags.append("abstract")
    return tags


def file_tags(path: str, content: str) -> List[str]:
    tags = _match_tags(path.lower(), FILE_TAGS)
    if "import " in content:
        tags.append("module")
    return tags


def doc_type(name: str) -> str:
    stem = Path(name).stem.lower()
    return stem if stem in ("readme", "contributing", "architecture", "api", "changelog") else "general"


def format_signature(func: ParsedFunction) -> str:
    params = []
    for p in func.parameters:
        text = f"{p.name}: {p.type}" if p.type else p.name
        if p.default_value is not None:
            text += f" = {p.default_value}"
        params.append(text)
    prefix = "async def" if func.is_async else "def"
    returns = f" -> {func.return_type}" if func.return_type else ""
    return f"{prefix} {func.name}({', '.join(params)}){returns}"


class EmbeddingChunker:
    """Turns a CodebaseIndex into labeled, size-bounded chunks."""

    def __init__(self, repo_root: Path | str, options: Optional[ChunkingOptions] = None) -> None:
        self._root = Path(repo_root)
        self._options = options or ChunkingOptions()

    def chunk_codebase(self, index: CodebaseIndex, options: Optional[ChunkingOptions] = None) -> ChunkingResult:
        opts = options or self._options
        result = ChunkingResult()

        functions = self._chunk_functions(index, opts)
        classes = self._chunk_classes(index, opts)
        covered = {c.source for c in functions} | {c.source for c in classes}
        files = self._chunk_files(index, opts, covered)
        docs = self._chunk_documentation() if opts.include_documentation else []

        result.chunks = [*functions, *classes, *files, *docs]
        stats = result.stats
        stats.function_chunks = len(functions)
        stats.class_chunks = len(classes)
        stats.file_chunks = len(files)
        stats.documentation_chunks = len(docs)
        stats.total_chunks = len(result.chunks)
        stats.total_characters = sum(len(c.content) for c in result.chunks)
        stats.estimated_tokens = math.ceil(stats.total_characters / CHARS_PER_TOKEN)

        LOG.info(
            "Chunked %d functions, %d classes, %d files, %d docs (~%d tokens)",
            stats.function_chunks,
            stats.class_chunks,
            stats.file_chunks,
            stats.documentation_chunks,
            stats.estimated_tokens,
        )
        return result

    # ─────────────────────────────────────────────────────────────────
    # Chunk producers
    # ─────────────────────────────────────────────────────────────────

    def _chunk_functions(self, index: CodebaseIndex, opts: ChunkingOptions) -> List[CodeChunk]:
        chunks: List[CodeChunk] = []
        for func in index.functions.values():
            if func.complexity < opts.min_complexity:
                continue
            file_index = index.files.get(func.file)
            language = file_index.language if file_index else "unknown"
            content = self.format_function(func, language, opts.max_listed_dependencies)
            if len(content) > opts.max_function_size:
                LOG.debug("Dropping oversized function chunk %s:%s", func.file, func.name)
                continue
            chunks.append(
                CodeChunk(
                    type=ChunkType.FUNCTION,
                    content=content,
                    source=func.file,
                    start_line=func.line,
                    end_line=func.end_line,
                    metadata=EmbeddingMetadata(
                        language=language,
                        symbol_name=func.name,
                        complexity=func.complexity,
                        dependencies=list(func.dependencies),
                        exports=[func.name] if func.is_exported else [],
                        tags=function_tags(func),
                        last_modified=self._modified(file_index),
                    ),
                )
            )
        return chunks

    def _chunk_classes(self, index: CodebaseIndex, opts: ChunkingOptions) -> List[CodeChunk]:
        chunks: List[CodeChunk] = []
        for cls in index.classes.values():
            file_index = index.files.get(cls.file)
            language = file_index.language if file_index else "unknown"
            content = self.format_class(cls, language)
            if len(content) > opts.max_class_size:
                LOG.debug("Dropping oversized class chunk %s:%s", cls.file, cls.name)
                continue
            chunks.append(
                CodeChunk(
                    type=ChunkType.CLASS,
                    content=content,
                    source=cls.file,
                    start_line=cls.line,
                    end_line=cls.end_line,
                    metadata=EmbeddingMetadata(
                        language=language,
                        symbol_name=cls.name,
                        complexity=sum(m.complexity for m in cls.methods),
                        dependencies=list(cls.extends),
                        exports=[cls.name] if cls.is_exported else [],
                        tags=class_tags(cls),
                        last_modified=self._modified(file_index),
                    ),
                )
            )
        return chunks

    def _chunk_files(self, index: CodebaseIndex, opts: ChunkingOptions, covered: set) -> List[CodeChunk]:
        chunks: List[CodeChunk] = []
        for path, file_index in index.files.items():
            if path in covered or file_index.loc > opts.max_file_size / CHARS_PER_LINE:
                continue
            try:
                content = (self._root / path).read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                LOG.debug("Skipping file chunk for %s: %s", path, exc)
                continue
            if not content.strip() or len(content) > opts.max_file_size:
                continue
            chunks.append(
                CodeChunk(
                    type=ChunkType.FILE,
                    content=f"{_comment(file_index.language)} File: {path}\n\n{content}",
                    source=path,
                    start_line=1,
                    end_line=max(1, len(content.splitlines())),
                    metadata=EmbeddingMetadata(
                        language=file_index.language,
                        dependencies=list(file_index.imports),
                        exports=list(file_index.exports),
                        tags=file_tags(path, content),
                        last_modified=file_index.last_modified,
                    ),
                )
            )
        return chunks

    def _chunk_documentation(self) -> List[CodeChunk]:
        chunks: List[CodeChunk] = []
        for name in DOC_FILES:
            path = self._root / name
            if not path.is_file():
                continue
            try:
                content = path.read_text(encoding="utf-8")
                modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
            except (OSError, UnicodeDecodeError) as exc:
                LOG.debug("Skipping documentation %s: %s", name, exc)
                continue
            chunks.append(
                CodeChunk(
                    type=ChunkType.DOCUMENTATION,
                    content=f"# Documentation: {name}\n\n{content}",
                    source=name,
                    start_line=1,
                    end_line=max(1, len(content.splitlines())),
                    metadata=EmbeddingMetadata(
                        language="markdown",
                        tags=["documentation", doc_type(name)],
                        last_modified=modified,
                    ),
                )
            )
        return chunks

    # ─────────────────────────────────────────────────────────────────
    # Formatting
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def format_function(func: ParsedFunction, language: str = "python", max_deps: int = 10) -> str:
        c = _comment(language)
        parts = [f"{c} File: {func.file}", f"{c} Function: {func.name}"]
        if func.documentation:
            parts.append(f"{c} Description: {func.documentation}")
        if func.dependencies:
            listed = ", ".join(func.dependencies[:max_deps])
            extra = len(func.dependencies) - max_deps
            if extra > 0:
                listed += f" (+{extra} more)"
            parts.append(f"{c} Dependencies: {listed}")
        if func.body:
            # the source segment already opens with the def line
            body = func.body
            if len(body) > MAX_BODY_CHARS:
                body = body[:MAX_BODY_CHARS] + f"\n{c} ... (truncated)"
            parts.append(body)
        else:
            parts.append(format_signature(func))
        return "\n".join(parts)

    @staticmethod
    def format_class(cls: ParsedClass, language: str = "python") -> str:
        c = _comment(language)
        parts = [f"{c} File: {cls.file}", f"{c} Class: {cls.name}"]
        if cls.documentation:
            parts.append(f"{c} Description: {cls.documentation}")
        bases = f"({', '.join(cls.extends)})" if cls.extends else ""
        parts.append(f"class {cls.name}{bases}:")
        if cls.properties:
            parts.append(f"    {c} Properties:")
            for prop in cls.properties:
                parts.append(f"    {prop.name}: {prop.type or 'Any'}")
        if cls.methods:
            parts.append(f"    {c} Methods:")
            for method in cls.methods:
                if method.body:
                    parts.append(f"    {method.body}")
                else:
                    parts.append(f"    {format_signature(method)}")
        return "\n".join(parts)

    @staticmethod
    def _modified(file_index: Optional[FileIndex]) -> datetime:
        if file_index is None:
            return datetime.now(timezone.utc)
        return file_index.last_modified
