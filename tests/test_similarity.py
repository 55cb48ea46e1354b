"""
Unit tests for similarity scoring and the precedence policy.
"""

import numpy as np
import pytest

from differ.features.embedding import normalize_l2
from differ.features.similarity import (
    SimilarityScorer,
    embedding_similarity,
    hash_similarity,
)
from differ.models import ImageRecord


def unit(values) -> np.ndarray:
    return normalize_l2(np.asarray(values, dtype=np.float32))


def random_unit(seed: int, dims: int = 384) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return normalize_l2(rng.standard_normal(dims).astype(np.float32))


class TestHashSimilarity:
    """Test the Hamming-distance score."""

    def test_identical_is_100(self):
        assert hash_similarity(0x0123456789ABCDEF, 0x0123456789ABCDEF) == 100.0

    def test_complement_is_0(self):
        assert hash_similarity(0, 2 ** 64 - 1) == 0.0

    def test_linear_in_distance(self):
        assert hash_similarity(0, 0b1111) == pytest.approx((1 - 4 / 64) * 100)

    def test_symmetric(self):
        a, b = 0xF0F0F0F0F0F0F0F0, 0x0FF00FF00FF00FF0
        assert hash_similarity(a, b) == hash_similarity(b, a)


class TestEmbeddingSimilarity:
    """Test the cosine score."""

    def test_self_score_is_100(self):
        vector = random_unit(1)
        assert embedding_similarity(vector, vector) == pytest.approx(100.0, abs=1e-3)

    def test_opposite_is_0(self):
        vector = random_unit(2)
        assert embedding_similarity(vector, -vector) == pytest.approx(0.0, abs=1e-3)

    def test_orthogonal_is_50(self):
        assert embedding_similarity(unit([1, 0]), unit([0, 1])) == pytest.approx(50.0)

    def test_symmetric(self):
        a, b = random_unit(3), random_unit(4)
        assert embedding_similarity(a, b) == pytest.approx(embedding_similarity(b, a))

    def test_length_mismatch_scores_zero(self):
        assert embedding_similarity(unit([1, 0, 0]), unit([1, 0])) == 0.0

    def test_empty_scores_zero(self):
        empty = np.array([], dtype=np.float32)
        assert embedding_similarity(empty, empty) == 0.0

    def test_in_range(self):
        for seed in range(10):
            score = embedding_similarity(random_unit(seed), random_unit(seed + 100))
            assert 0.0 <= score <= 100.0

    def test_float32_self_scores_never_exceed_100(self):
        """Rounding in float32 dot products must not push a self-match past 100."""
        rng = np.random.default_rng(7)
        worst = 0.0
        for _ in range(2000):
            v = normalize_l2(rng.standard_normal(768).astype(np.float32))
            worst = max(worst, embedding_similarity(v, v))
        assert worst <= 100.0
        assert worst == pytest.approx(100.0)

    def test_opposite_vectors_never_below_0(self):
        v = unit(np.random.default_rng(3).standard_normal(768))
        assert embedding_similarity(v, -v) >= 0.0


class TestSimilarityScorer:
    """Test precedence between embeddings and hashes."""

    def test_embedding_wins_over_hash(self):
        scorer = SimilarityScorer(fallback_to_hash=True)
        a = ImageRecord(path="/a.png", embedding=unit([1, 0]), perceptual_hash=0)
        b = ImageRecord(path="/b.png", embedding=unit([0, 1]), perceptual_hash=0)
        # Hashes are identical (100) but the embedding score is used
        assert scorer.score(a, b) == pytest.approx(50.0)

    def test_hash_used_when_one_side_lacks_embedding(self):
        scorer = SimilarityScorer(fallback_to_hash=True)
        a = ImageRecord(path="/a.png", embedding=unit([1, 0]), perceptual_hash=0b1)
        b = ImageRecord(path="/b.png", perceptual_hash=0b0)
        assert scorer.score(a, b) == pytest.approx((1 - 1 / 64) * 100)

    def test_hash_used_on_length_mismatch(self):
        scorer = SimilarityScorer(fallback_to_hash=True)
        a = ImageRecord(path="/a.png", embedding=unit([1, 0, 0]), perceptual_hash=5)
        b = ImageRecord(path="/b.png", embedding=unit([1, 0]), perceptual_hash=5)
        assert scorer.score(a, b) == 100.0

    def test_no_fallback_ignores_hashes(self):
        scorer = SimilarityScorer(fallback_to_hash=False)
        a = ImageRecord(path="/a.png", perceptual_hash=1)
        b = ImageRecord(path="/b.png", perceptual_hash=1)
        assert scorer.score(a, b) is None
        assert not scorer.can_score(a)

    def test_no_representation_is_not_comparable(self):
        scorer = SimilarityScorer(fallback_to_hash=True)
        a = ImageRecord(path="/a.png")
        b = ImageRecord(path="/b.png", perceptual_hash=1)
        assert scorer.score(a, b) is None
        assert not scorer.can_score(a)
        assert scorer.can_score(b)

    def test_length_mismatch_without_fallback_scores_zero(self):
        scorer = SimilarityScorer(fallback_to_hash=False)
        a = ImageRecord(path="/a.png", embedding=unit([1, 0, 0]))
        b = ImageRecord(path="/b.png", embedding=unit([1, 0]))
        assert scorer.score(a, b) == 0.0
