"""
Exception taxonomy for repo-lens.

Recovered conditions (a single unparsable file, a corrupt cache document,
embeddings from a different model) are logged at the point they occur and
never surface here. Everything below is raised to the caller.
"""

from __future__ import annotations


class RepoLensError(Exception):
    """Base exception for all repo-lens errors."""

    pass


class ParseError(RepoLensError):
    """A source file could not be parsed by the language front-end."""

    pass


class DimensionMismatchError(RepoLensError, ValueError):
    """Two vectors of different dimensionality were compared."""

    pass


class RebuildRequiredError(DimensionMismatchError):
    """No stored embedding is compatible with the current embedding provider."""

    pass


class ProviderError(RepoLensError):
    """The embedding provider failed or returned a malformed payload."""

    pass


class StorageError(RepoLensError):
    """An essential on-disk document could not be written or read."""

    pass


class IndexNotFoundError(RepoLensError):
    """No codebase index has been built or persisted for the repository."""

    pass


class SymbolNotFoundError(RepoLensError, KeyError):
    """A requested symbol, graph node or file is not in the index."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the message readable.
        return str(self.args[0]) if self.args else ""
