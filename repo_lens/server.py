from __future__ import annotations

import logging
import os
from typing import Dict, List, Optional

from repo_lens.tools import (
    build_context,
    cache_stats,
    find_references,
    index_repository,
    search_code,
    update_repository,
)

LOG_LEVEL = os.environ.get("REPO_LENS_LOG_LEVEL", "INFO").upper()

try:
    from mcp.server.fastmcp import FastMCP
except ImportError as exc:  # pragma: no cover - dependency is optional at import time
    FastMCP = None
    _IMPORT_ERROR = exc
else:
    _IMPORT_ERROR = None


def _require_server() -> "FastMCP":
    if FastMCP is None:
        raise SystemExit(
            "The mcp package is required to run the server. "
            "Install it with `pip install repo-lens[server]` or `pip install mcp`."
        ) from _IMPORT_ERROR
    return FastMCP("repo-lens")


def _json_payload(model) -> dict:
    return model.model_dump(mode="json")


def build_server() -> "FastMCP":
    server = _require_server()

    @server.tool(description="Index a repository: symbols, dependency graph and (optionally) embeddings.")
    def index_repository_tool(repoPath: str, repoId: Optional[str] = None, embed: bool = True) -> dict:
        return _json_payload(index_repository(repoPath=repoPath, repoId=repoId, embed=embed))

    @server.tool(description="Re-index only the given changed files of a previously indexed repository.")
    def update_repository_tool(
        repoPath: str, changedFiles: List[str], repoId: Optional[str] = None, embed: bool = True
    ) -> dict:
        return _json_payload(
            update_repository(repoPath=repoPath, changedFiles=changedFiles, repoId=repoId, embed=embed)
        )

    @server.tool(description="Semantic code search over a repository's embeddings.")
    def search_code_tool(
        repoPath: str, query: str, k: Optional[int] = None, diverse: bool = False, repoId: Optional[str] = None
    ) -> dict:
        return _json_payload(search_code(repoPath=repoPath, query=query, k=k, diverse=diverse, repoId=repoId))

    @server.tool(description="Assemble a token-budgeted prompt context of relevant code, docs and history.")
    def build_context_tool(
        repoPath: str,
        query: str,
        maxTokens: Optional[int] = None,
        history: Optional[List[Dict[str, str]]] = None,
        repoId: Optional[str] = None,
    ) -> dict:
        return _json_payload(
            build_context(repoPath=repoPath, query=query, maxTokens=maxTokens, history=history, repoId=repoId)
        )

    @server.tool(description="List functions and methods that call a symbol by name.")
    def find_references_tool(repoPath: str, name: str, repoId: Optional[str] = None) -> dict:
        refs = find_references(repoPath=repoPath, name=name, repoId=repoId)
        return {"references": [_json_payload(r) for r in refs]}

    @server.tool(description="Hit/miss statistics of the repository's AI response cache.")
    def cache_stats_tool(repoPath: str, repoId: Optional[str] = None) -> dict:
        return _json_payload(cache_stats(repoPath=repoPath, repoId=repoId))

    return server


def main() -> None:
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    server = build_server()
    server.run()


if __name__ == "__main__":
    main()
