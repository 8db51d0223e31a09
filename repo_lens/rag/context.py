"""
Token-budgeted context assembly for retrieval-augmented prompts.

The total budget is split into code, documentation and history sub-budgets
by weight. Each sub-budget is packed greedily in relevance order and is
never exceeded on its own. The weights are not normalized: weights summing
past 1.0 are logged and honoured, so the sub-budgets can jointly exceed the
nominal total.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from repo_lens.config.settings import ContextConfig
from repo_lens.rag.models import ChunkType, SearchResult
from repo_lens.rag.search import EmbeddingSearchEngine, SearchOptions

LOG = logging.getLogger("rag.context")

CHARS_PER_TOKEN = 4
TRUNCATION_MARKER = "\n... (truncated)"
CONTEXT_MIN_SIMILARITY = 0.3
CODE_SNIPPET_SHARE = 0.3
DOC_SNIPPET_SHARE = 0.5
DIVERSE_FILE_COUNT = 3

CODE_TYPES = (ChunkType.FUNCTION, ChunkType.CLASS, ChunkType.FILE)


class ConversationTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    tokens: Optional[int] = None


@dataclass
class CodeSnippet:
    source: str
    code: str
    relevance_score: float
    type: str
    language: str
    start_line: Optional[int] = None
    end_line: Optional[int] = None


@dataclass
class DocumentationSnippet:
    source: str
    content: str
    type: str
    relevance_score: float


@dataclass
class RAGMetadata:
    search_time_ms: float = 0.0
    build_time_ms: float = 0.0
    total_results: int = 0
    results_used: int = 0
    average_relevance: float = 0.0
    budget_utilization: float = 0.0


@dataclass
class RAGContext:
    query: str
    token_budget: int
    relevant_code: List[CodeSnippet] = field(default_factory=list)
    relevant_docs: List[DocumentationSnippet] = field(default_factory=list)
    conversation_history: List[ConversationTurn] = field(default_factory=list)
    tokens_used: int = 0
    metadata: RAGMetadata = field(default_factory=RAGMetadata)


@dataclass
class ContextBuildOptions:
    max_tokens: int = 4000
    code_weight: float = 0.6
    docs_weight: float = 0.2
    history_weight: float = 0.2
    max_code_snippets: int = 10
    max_doc_snippets: int = 3

    @classmethod
    def from_config(cls, config: ContextConfig) -> "ContextBuildOptions":
        return cls(
            max_tokens=config.max_tokens,
            code_weight=config.code_weight,
            docs_weight=config.docs_weight,
            history_weight=config.history_weight,
        )


class TokenManager:
    """Character-based token estimates (about four characters per token)."""

    def estimate_tokens(self, text: str) -> int:
        return math.ceil(len(text) / CHARS_PER_TOKEN)

    def code_header(self, snippet: CodeSnippet) -> str:
        header = f"# File: {snippet.source}\n"
        if snippet.start_line:
            header += f"# Lines: {snippet.start_line}-{snippet.end_line}\n"
        return header

    def estimate_code_snippet_tokens(self, snippet: CodeSnippet) -> int:
        return self.estimate_tokens(self.code_header(snippet) + snippet.code)

    def estimate_doc_snippet_tokens(self, snippet: DocumentationSnippet) -> int:
        return self.estimate_tokens(f"# Documentation: {snippet.source}\n{snippet.content}")

    def estimate_conversation_tokens(self, turn: ConversationTurn) -> int:
        if turn.tokens:
            return turn.tokens
        return self.estimate_tokens(f"{turn.role}: {turn.content}")

    def truncate_to_tokens(self, text: str, max_tokens: int) -> str:
        """Cut ``text`` so that it, marker included, fits in ``max_tokens``."""
        max_chars = max(0, max_tokens) * CHARS_PER_TOKEN
        if len(text) <= max_chars:
            return text
        if max_chars <= len(TRUNCATION_MARKER):
            return text[:max_chars]
        return text[: max_chars - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER


def infer_doc_type(source: str) -> str:
    upper = source.upper()
    for key in ("README", "API", "ARCHITECTURE", "CONTRIBUTING", "CHANGELOG"):
        if key in upper:
            return key.lower()
    return "general"


class RAGContextBuilder:
    """Assemble search results and conversation history into one context."""

    def __init__(self, search_engine: EmbeddingSearchEngine) -> None:
        self._search = search_engine
        self._tokens = TokenManager()

    @property
    def token_manager(self) -> TokenManager:
        return self._tokens

    def build_context(
        self,
        query: str,
        history: Optional[Sequence[ConversationTurn]] = None,
        options: Optional[ContextBuildOptions] = None,
    ) -> RAGContext:
        """
        Search for ``query`` and pack the results into token sub-budgets.

        Raises:
            RebuildRequiredError: If the store holds no compatible embeddings
        """
        opts = options or ContextBuildOptions()
        start = time.perf_counter()

        total_weight = opts.code_weight + opts.docs_weight + opts.history_weight
        if total_weight > 1.0 + 1e-9:
            LOG.warning(
                "Context weights sum to %.2f; sub-budgets may exceed the %d token budget",
                total_weight,
                opts.max_tokens,
            )

        code_budget = math.floor(opts.max_tokens * opts.code_weight)
        docs_budget = math.floor(opts.max_tokens * opts.docs_weight)
        history_budget = math.floor(opts.max_tokens * opts.history_weight)

        response = self._search.search(
            query,
            SearchOptions(
                k=opts.max_code_snippets * 2,
                min_similarity=CONTEXT_MIN_SIMILARITY,
                enable_ranking=True,
            ),
        )
        results = response.results
        code_results = [r for r in results if r.embedding.type in CODE_TYPES]
        doc_results = [r for r in results if r.embedding.type == ChunkType.DOCUMENTATION]

        context = RAGContext(query=query, token_budget=opts.max_tokens)
        context.relevant_code, code_tokens = self._pack_code(code_results, code_budget, opts.max_code_snippets)
        context.relevant_docs, doc_tokens = self._pack_docs(doc_results, docs_budget, opts.max_doc_snippets)
        context.conversation_history, history_tokens = self._pack_history(list(history or []), history_budget)
        context.tokens_used = code_tokens + doc_tokens + history_tokens

        scores = [s.relevance_score for s in context.relevant_code]
        scores += [d.relevance_score for d in context.relevant_docs]
        meta = context.metadata
        meta.search_time_ms = response.stats.search_time_ms
        meta.total_results = len(results)
        meta.results_used = len(scores)
        meta.average_relevance = sum(scores) / len(scores) if scores else 0.0
        meta.budget_utilization = context.tokens_used / opts.max_tokens if opts.max_tokens > 0 else 0.0
        meta.build_time_ms = (time.perf_counter() - start) * 1000.0

        LOG.debug(
            "Context for %r: %d code, %d docs, %d turns, %d/%d tokens",
            query,
            len(context.relevant_code),
            len(context.relevant_docs),
            len(context.conversation_history),
            context.tokens_used,
            opts.max_tokens,
        )
        return context

    # ─────────────────────────────────────────────────────────────────
    # Packing
    # ─────────────────────────────────────────────────────────────────

    def _pack_code(self, results: List[SearchResult], budget: int, limit: int) -> Tuple[List[CodeSnippet], int]:
        snippets: List[CodeSnippet] = []
        used = 0
        seen_files: set = set()
        cap = math.floor(budget * CODE_SNIPPET_SHARE)

        for result in results:
            if len(snippets) >= limit or used >= budget:
                break
            emb = result.embedding
            # Once enough distinct files are represented, stop stacking repeats.
            if emb.source in seen_files and len(seen_files) >= DIVERSE_FILE_COUNT:
                continue

            snippet = CodeSnippet(
                source=emb.source,
                code=emb.content,
                relevance_score=result.final_score,
                type=emb.type.value,
                language=emb.metadata.language,
                start_line=emb.start_line,
                end_line=emb.end_line,
            )
            tokens = self._tokens.estimate_code_snippet_tokens(snippet)
            if tokens > cap:
                header_tokens = self._tokens.estimate_tokens(self._tokens.code_header(snippet))
                snippet.code = self._tokens.truncate_to_tokens(snippet.code, cap - header_tokens)
                tokens = self._tokens.estimate_code_snippet_tokens(snippet)

            if used + tokens <= budget:
                snippets.append(snippet)
                used += tokens
                seen_files.add(emb.source)

        return snippets, used

    def _pack_docs(
        self, results: List[SearchResult], budget: int, limit: int
    ) -> Tuple[List[DocumentationSnippet], int]:
        snippets: List[DocumentationSnippet] = []
        used = 0
        cap = math.floor(budget * DOC_SNIPPET_SHARE)

        for result in results:
            if len(snippets) >= limit or used >= budget:
                break
            emb = result.embedding
            snippet = DocumentationSnippet(
                source=emb.source,
                content=emb.content,
                type=infer_doc_type(emb.source),
                relevance_score=result.final_score,
            )
            tokens = self._tokens.estimate_doc_snippet_tokens(snippet)
            if tokens > cap:
                header_tokens = self._tokens.estimate_tokens(f"# Documentation: {snippet.source}\n")
                snippet.content = self._tokens.truncate_to_tokens(snippet.content, cap - header_tokens)
                tokens = self._tokens.estimate_doc_snippet_tokens(snippet)

            if used + tokens <= budget:
                snippets.append(snippet)
                used += tokens

        return snippets, used

    def _pack_history(self, history: List[ConversationTurn], budget: int) -> Tuple[List[ConversationTurn], int]:
        kept: List[ConversationTurn] = []
        used = 0
        for turn in reversed(history):
            tokens = self._tokens.estimate_conversation_tokens(turn)
            if used + tokens > budget:
                break
            kept.append(turn)
            used += tokens
        kept.reverse()
        return kept, used

    # ─────────────────────────────────────────────────────────────────
    # Presentation
    # ─────────────────────────────────────────────────────────────────

    def format_context_for_prompt(self, context: RAGContext) -> str:
        """Render the context as a markdown prompt ending with the question."""
        parts: List[str] = [
            "# Codebase Context\n",
            f'You are analyzing a codebase to answer: "{context.query}"\n',
            f"Context retrieved from {context.metadata.results_used} relevant sources.\n",
        ]

        if context.relevant_code:
            parts.append("\n## Relevant Code\n")
            for i, snippet in enumerate(context.relevant_code, 1):
                line = f"\n### {i}. {snippet.source}"
                if snippet.start_line:
                    line += f" (lines {snippet.start_line}-{snippet.end_line})"
                line += f" [{snippet.language}] - Relevance: {snippet.relevance_score * 100:.1f}%\n"
                parts.append(line)
                parts.append(f"```{snippet.language}\n{snippet.code}\n```\n")

        if context.relevant_docs:
            parts.append("\n## Relevant Documentation\n")
            for i, doc in enumerate(context.relevant_docs, 1):
                parts.append(f"\n### {i}. {doc.source} [{doc.type}]\n")
                parts.append(f"{doc.content}\n")

        if context.conversation_history:
            parts.append("\n## Recent Conversation\n")
            for turn in context.conversation_history:
                role = "User" if turn.role == "user" else "Assistant"
                parts.append(f"\n**{role}:** {turn.content}\n")

        parts.append("\n## Current Question\n")
        parts.append(f"**User:** {context.query}\n")
        return "".join(parts)

    def get_context_stats(self, context: RAGContext) -> Dict[str, Any]:
        return {
            "total_tokens": context.tokens_used,
            "code_tokens": sum(self._tokens.estimate_code_snippet_tokens(s) for s in context.relevant_code),
            "docs_tokens": sum(self._tokens.estimate_doc_snippet_tokens(d) for d in context.relevant_docs),
            "history_tokens": sum(
                self._tokens.estimate_conversation_tokens(t) for t in context.conversation_history
            ),
            "budget_used": f"{context.metadata.budget_utilization * 100:.1f}%",
            "snippet_count": len(context.relevant_code) + len(context.relevant_docs),
        }
