"""Tests for rag.vectors: similarity math and embedding ids."""

import math

import pytest

from repo_lens.errors import DimensionMismatchError
from repo_lens.rag.vectors import (
    cosine_similarities,
    cosine_similarity,
    euclidean_distance,
    generate_embedding_id,
    hash_content,
    normalize,
    validate_embedding,
)


class TestCosineSimilarity:

    def test_identical_vectors(self):
        v = [0.3, -1.2, 4.0]
        assert cosine_similarity(v, v) == pytest.approx(1.0)

    def test_orthogonal_and_opposite(self):
        assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
        assert cosine_similarity([1, 2], [-1, -2]) == pytest.approx(-1.0)

    def test_result_is_clamped(self):
        v = [1e-3, 7.0, 1e5]
        score = cosine_similarity(v, v)
        assert -1.0 <= score <= 1.0

    def test_zero_vector_scores_zero(self):
        assert cosine_similarity([0, 0, 0], [1, 2, 3]) == 0.0

    def test_dimension_mismatch_raises(self):
        with pytest.raises(DimensionMismatchError):
            cosine_similarity([1, 2, 3], [1, 2])

    def test_mismatch_is_a_value_error(self):
        with pytest.raises(ValueError):
            cosine_similarity([1], [1, 2])


class TestVectorized:

    def test_matches_scalar_version(self):
        query = [1.0, 2.0, 0.5]
        rows = [[1.0, 2.0, 0.5], [0.0, 0.0, 0.0], [-2.0, 1.0, 3.0]]
        scores = cosine_similarities(query, rows)
        for row, score in zip(rows, scores):
            assert score == pytest.approx(cosine_similarity(query, row))

    def test_empty_rows(self):
        assert len(cosine_similarities([1.0], [])) == 0

    def test_mismatched_rows_raise(self):
        with pytest.raises(DimensionMismatchError):
            cosine_similarities([1.0, 2.0], [[1.0, 2.0, 3.0]])


class TestHelpers:

    def test_euclidean_distance(self):
        assert euclidean_distance([0, 0], [3, 4]) == pytest.approx(5.0)

    def test_normalize(self):
        unit = normalize([3, 4])
        assert math.hypot(*unit) == pytest.approx(1.0)
        assert normalize([0, 0]) == [0.0, 0.0]

    def test_validate_embedding(self):
        assert validate_embedding([0.1, 0.2], 2)
        assert not validate_embedding([0.1, 0.2], 3)
        assert not validate_embedding([0.1, float("nan")], 2)
        assert not validate_embedding([0.0, 0.0], 2, check_magnitude=True)
        assert not validate_embedding([200.0, 0.0], 2, check_magnitude=True)
        assert validate_embedding([0.6, 0.8], 2, check_magnitude=True)

    def test_ids_are_deterministic(self):
        first = generate_embedding_id("function", "src/a.py", "run")
        assert first == generate_embedding_id("function", "src/a.py", "run")
        assert first.startswith("function-")
        assert first != generate_embedding_id("function", "src/a.py", "walk")
        assert generate_embedding_id("function", "src/a.py", "run", 3) != generate_embedding_id("function", "src/a.py", "run", 9)

    def test_hash_content_is_short(self):
        assert len(hash_content("abc")) == 16
        assert hash_content("abc") != hash_content("abd")
