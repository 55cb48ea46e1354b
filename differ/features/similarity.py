"""
Similarity scoring for the features package.

Turns two fingerprints or two embeddings into a 0-100 similarity score and
applies the precedence policy when a record carries both representations.
"""

from __future__ import annotations

from typing import Optional

from ..config import DEFAULT_FALLBACK_TO_HASH, HASH_BITS
from ..models import ImageRecord
from .dependencies import np, _logger
from .hashing import hamming_distance


def hash_similarity(hash1: int, hash2: int) -> float:
    """
    Similarity of two 64-bit fingerprints.

    Maps Hamming distance linearly: 0 differing bits -> 100, 64 -> 0.
    """
    distance = hamming_distance(hash1, hash2)
    return (1.0 - distance / HASH_BITS) * 100


def embedding_similarity(features1: np.ndarray, features2: np.ndarray) -> float:
    """
    Cosine similarity of two L2-normalized vectors, mapped to 0-100.

    For unit vectors the cosine is the dot product; [-1, 1] is mapped to
    [0, 100] via (dot + 1) * 50.

    Returns:
        The score, or 0.0 if the vectors are empty or differ in length
    """
    if features1 is None or features2 is None:
        return 0.0

    if len(features1) != len(features2) or len(features1) == 0:
        _logger.warning(
            f"Embedding lengths don't match ({len(features1)} vs {len(features2)}), scoring 0"
        )
        return 0.0

    # float32 rounding can push the dot product of unit vectors past +-1
    dot = min(1.0, max(-1.0, float(np.dot(features1, features2))))
    return (dot + 1.0) * 50.0


class SimilarityScorer:
    """
    Scores pairs of ImageRecords.

    Embeddings take precedence: if both records carry non-empty embeddings of
    equal length, the embedding score is used. Otherwise, when
    ``fallback_to_hash`` is enabled and both records carry a fingerprint, the
    hash score is used. Anything else is not comparable.
    """

    def __init__(self, fallback_to_hash: bool = DEFAULT_FALLBACK_TO_HASH):
        self.fallback_to_hash = fallback_to_hash

    def can_score(self, record: ImageRecord) -> bool:
        """True if ``record`` carries a representation this policy uses."""
        if record.has_embedding:
            return True
        return self.fallback_to_hash and record.has_hash

    def score(self, a: ImageRecord, b: ImageRecord) -> Optional[float]:
        """
        Similarity of two records on a 0-100 scale.

        Returns:
            The score, or None if the pair cannot be compared
        """
        if a.has_embedding and b.has_embedding and len(a.embedding) == len(b.embedding):
            return embedding_similarity(a.embedding, b.embedding)

        if self.fallback_to_hash and a.has_hash and b.has_hash:
            return hash_similarity(a.perceptual_hash, b.perceptual_hash)

        if a.has_embedding and b.has_embedding:
            # Mismatched lengths with no hash to fall back on
            return embedding_similarity(a.embedding, b.embedding)

        return None


__all__ = [
    'SimilarityScorer',
    'hash_similarity',
    'embedding_similarity',
]
