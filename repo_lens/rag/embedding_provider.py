"""
Embedding provider abstraction with local sentence-transformers backend.

Raw model output is coerced into ``list[float]`` vectors at this boundary
and checked for count and dimensionality, so nothing untyped reaches the
store or the search engine.
"""

from __future__ import annotations

import hashlib
import logging
import math
import re
from abc import ABC, abstractmethod
from typing import Any, List

from repo_lens.errors import ProviderError

LOG = logging.getLogger("rag.embedding_provider")

_TOKEN_RE = re.compile(r"[A-Za-z0-9]+")


class EmbeddingProvider(ABC):
    """Abstract interface for text → embedding vector conversion."""

    def __init__(self, name: str, model: str, dimensions: int) -> None:
        self._name = name
        self._model_name = model
        self._dim = dimensions

    def get_name(self) -> str:
        return self._name

    def get_model(self) -> str:
        return self._model_name

    def get_dimensions(self) -> int:
        return self._dim

    def generate_embedding(self, text: str) -> List[float]:
        return self.generate_bulk_embeddings([text])[0]

    def generate_bulk_embeddings(self, texts: List[str]) -> List[List[float]]:
        """
        Convert a batch of texts into embedding vectors, one per input.

        Raises:
            ProviderError: If the backend fails or returns a malformed payload
        """
        if not texts:
            return []
        try:
            raw = self._embed(texts)
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(f"{self._name} embedding failed: {exc}") from exc
        return self._coerce(raw, len(texts))

    @abstractmethod
    def _embed(self, texts: List[str]) -> Any:
        """Backend call; may return any nested sequence of numbers."""

    @abstractmethod
    def estimate_cost(self, token_count: int) -> float:
        """Cost in USD for embedding ``token_count`` tokens (0 for local models)."""

    def is_available(self) -> bool:
        return True

    def _coerce(self, raw: Any, expected: int) -> List[List[float]]:
        if hasattr(raw, "tolist"):
            raw = raw.tolist()
        try:
            vectors = [[float(x) for x in vector] for vector in raw]
        except (TypeError, ValueError) as exc:
            raise ProviderError(f"{self._name} returned a malformed embedding payload: {exc}") from exc
        if len(vectors) != expected:
            raise ProviderError(f"{self._name} returned {len(vectors)} embeddings for {expected} texts")
        for vector in vectors:
            if len(vector) != self._dim:
                raise ProviderError(
                    f"{self._name} returned a {len(vector)}-dimensional vector, expected {self._dim}"
                )
        return vectors


class LocalEmbeddingProvider(EmbeddingProvider):
    """
    Local embedding via sentence-transformers.

    Default model: all-MiniLM-L6-v2 (384 dimensions, fast, good for code).
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2") -> None:
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise ImportError(
                "sentence-transformers is required for LocalEmbeddingProvider. "
                "Install with: pip install sentence-transformers"
            )

        LOG.info("Loading embedding model: %s", model_name)
        self._model = SentenceTransformer(model_name)
        super().__init__("local", model_name, self._model.get_sentence_embedding_dimension())

    def _embed(self, texts: List[str]) -> Any:
        return self._model.encode(texts, show_progress_bar=False)

    def estimate_cost(self, token_count: int) -> float:
        return 0.0


class MockEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic offline provider for tests.

    Hashes each lowercase word into one of ``dim`` buckets (feature hashing)
    and L2-normalizes the counts, so texts sharing words score as similar.
    """

    def __init__(self, dim: int = 384, model: str = "mock-hashing") -> None:
        super().__init__("mock", model, dim)

    def _embed(self, texts: List[str]) -> List[List[float]]:
        return [self._vector(text) for text in texts]

    def _vector(self, text: str) -> List[float]:
        vector = [0.0] * self._dim
        for token in _TOKEN_RE.findall(text.lower()):
            digest = hashlib.sha1(token.encode("utf-8")).digest()
            vector[int.from_bytes(digest[:4], "big") % self._dim] += 1.0
        magnitude = math.sqrt(sum(v * v for v in vector))
        if magnitude == 0.0:
            vector[0] = 1.0
            return vector
        return [v / magnitude for v in vector]

    def estimate_cost(self, token_count: int) -> float:
        return 0.0


def build_embedding_provider(
    backend: str = "local",
    **kwargs: Any,
) -> EmbeddingProvider:
    """
    Factory: create an EmbeddingProvider of the requested type.

    Args:
        backend: "local" (sentence-transformers) or "mock"
        **kwargs: Backend-specific configuration

    Raises:
        ValueError: Unknown backend
    """
    if backend == "local":
        return LocalEmbeddingProvider(**kwargs)
    elif backend == "mock":
        return MockEmbeddingProvider(**kwargs)
    else:
        raise ValueError(
            f"Unknown embedding backend: {backend!r}. "
            f"Supported: 'local', 'mock'"
        )
