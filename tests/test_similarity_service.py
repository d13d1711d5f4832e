"""Unit tests for cosine similarity and the clamped embedding score."""
import math

import pytest

from app.services.similarity_service import cosine_similarity, embedding_score


class TestCosineSimilarity:
    """Tests for the raw cosine in [-1, 1]."""

    def test_identical_vectors(self):
        assert cosine_similarity([0.2, 0.4, 0.9], [0.2, 0.4, 0.9]) == pytest.approx(1.0)

    def test_scaled_vectors_are_identical_in_direction(self):
        assert cosine_similarity([1.0, 2.0], [3.0, 6.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_known_angle(self):
        """45 degrees apart: cos = 1 / sqrt(2)."""
        assert cosine_similarity([1.0, 0.0], [1.0, 1.0]) == pytest.approx(1 / math.sqrt(2))


class TestDegenerateInputs:
    """Mismatched, empty, zero and missing vectors all score 0.0."""

    def test_length_mismatch(self):
        assert cosine_similarity([1.0, 0.0, 0.0], [1.0, 0.0]) == 0.0

    def test_empty_vectors(self):
        assert cosine_similarity([], []) == 0.0

    def test_zero_magnitude(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_missing_vector(self):
        assert cosine_similarity(None, [1.0]) == 0.0


class TestEmbeddingScore:
    """The blended score only ever sees values in [0, 1]."""

    def test_negative_cosine_clamped_to_zero(self):
        assert embedding_score([1.0, 0.0], [-1.0, 0.0]) == 0.0

    def test_positive_cosine_unchanged(self):
        assert embedding_score([1.0, 0.0], [1.0, 1.0]) == pytest.approx(1 / math.sqrt(2))
