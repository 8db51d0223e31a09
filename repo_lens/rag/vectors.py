"""
Vector math and id helpers for embeddings.
"""

from __future__ import annotations

import hashlib
from typing import Optional, Sequence

import numpy as np

from repo_lens.errors import DimensionMismatchError

MAX_EMBEDDING_MAGNITUDE = 100.0


def _as_array(vector: Sequence[float]) -> np.ndarray:
    return np.asarray(vector, dtype=np.float64)


def _check_dims(a: np.ndarray, b: np.ndarray) -> None:
    if a.shape != b.shape:
        raise DimensionMismatchError(f"Embedding dimension mismatch: {a.shape[0]} vs {b.shape[0]}")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity in [-1, 1]; 0.0 when either vector is all zeros.

    Raises:
        DimensionMismatchError: If the vectors differ in length
    """
    va, vb = _as_array(a), _as_array(b)
    _check_dims(va, vb)
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    score = float(np.dot(va, vb) / (norm_a * norm_b))
    # Rounding can push parallel vectors a hair past 1.
    return max(-1.0, min(1.0, score))


def euclidean_distance(a: Sequence[float], b: Sequence[float]) -> float:
    va, vb = _as_array(a), _as_array(b)
    _check_dims(va, vb)
    return float(np.linalg.norm(va - vb))


def normalize(vector: Sequence[float]) -> list[float]:
    """Unit-length copy of ``vector``; a zero vector is returned unchanged."""
    v = _as_array(vector)
    magnitude = float(np.linalg.norm(v))
    if magnitude == 0.0:
        return v.tolist()
    return (v / magnitude).tolist()


def validate_embedding(vector: Sequence[float], expected_dimensions: int, check_magnitude: bool = False) -> bool:
    """
    True when ``vector`` has the expected length and only finite values.

    With ``check_magnitude`` the norm must also lie in (0, 100].
    """
    try:
        v = _as_array(vector)
    except (TypeError, ValueError):
        return False
    if v.ndim != 1 or v.shape[0] != expected_dimensions:
        return False
    if not np.all(np.isfinite(v)):
        return False
    if check_magnitude:
        magnitude = float(np.linalg.norm(v))
        return 0.0 < magnitude <= MAX_EMBEDDING_MAGNITUDE
    return True


def hash_content(content: str) -> str:
    """Short SHA-256 digest used for chunk change detection."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


def generate_embedding_id(
    chunk_type: str, source: str, name: Optional[str] = None, line: Optional[int] = None
) -> str:
    """Deterministic id: ``<type>-<hash of type:source[:name][:line]>``."""
    parts = [chunk_type, source]
    if name:
        parts.append(name)
    if line is not None:
        parts.append(str(line))
    return f"{chunk_type}-{hash_content(':'.join(parts))}"


def cosine_similarities(query: Sequence[float], vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """
    Cosine similarity of ``query`` against each row of ``vectors``.

    Rows with zero magnitude score 0.0, matching ``cosine_similarity``.
    """
    q = _as_array(query)
    if len(vectors) == 0:
        return np.zeros(0)
    matrix = np.asarray(vectors, dtype=np.float64)
    if matrix.ndim != 2 or matrix.shape[1] != q.shape[0]:
        raise DimensionMismatchError(f"Embedding dimension mismatch: query has {q.shape[0]} dimensions")
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    dots = matrix @ q
    scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)
    return np.clip(scores, -1.0, 1.0)
