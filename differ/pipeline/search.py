"""
Similarity search over a record set.
"""

from __future__ import annotations

from typing import Iterable

from ..features.similarity import SimilarityScorer
from ..models import ImageRecord, SearchResult


def rank_candidates(
    source: ImageRecord,
    candidates: Iterable[ImageRecord],
    scorer: SimilarityScorer,
    threshold: float,
    exclude_source: bool = True,
) -> list[SearchResult]:
    """
    Score every eligible candidate against ``source``.

    Each scored candidate's ``similarity`` is updated. Candidates without a
    representation comparable to the source are skipped.

    Args:
        source: Record to compare against
        candidates: Records in display (file-name) order
        scorer: Scoring policy
        threshold: Minimum score (0-100) for a match
        exclude_source: Skip the candidate with the source's path

    Returns:
        Matches sorted by descending score; equal scores keep candidate order
    """
    scored = []
    for index, candidate in enumerate(candidates):
        if exclude_source and candidate.path == source.path:
            continue
        if not candidate.is_searchable:
            continue

        score = scorer.score(source, candidate)
        if score is None:
            continue

        candidate.similarity = score
        if score >= threshold:
            scored.append((index, SearchResult(record=candidate, score=score)))

    scored.sort(key=lambda item: (-item[1].score, item[0]))
    return [result for _, result in scored]


__all__ = ['rank_candidates']
