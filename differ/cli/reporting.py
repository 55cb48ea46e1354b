"""
Report formatting and display for the CLI interface.

Provides functions to print scan summaries, ranked matches and cache
statistics in a human-readable format, plus a progress adapter that feeds
pipeline progress into tqdm bars.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from ..features.dependencies import HAS_TQDM, _tqdm_class
from ..features.hashing import fingerprint_to_hex
from ..models import CacheStatistics, ImageRecord, SearchOutcome
from ..pipeline import ScanSummary


_STAGE_LABELS = {
    'extracting': "Extracting features",
    'thumbnails': "Loading thumbnails",
}


class ProgressBars:
    """
    Progress callback rendering one tqdm bar per pipeline stage.

    Does nothing when tqdm is missing or progress is disabled.
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled and HAS_TQDM and _tqdm_class is not None
        self._stage: Optional[str] = None
        self._bar: Optional[Any] = None

    def __call__(self, stage: str, current: int, total: int) -> None:
        if not self.enabled:
            return
        if stage != self._stage:
            self.close()
            self._stage = stage
            self._bar = _tqdm_class(
                total=total,
                desc=_STAGE_LABELS.get(stage, stage),
                unit="img",
                ncols=80,
            )
        self._bar.n = current
        self._bar.refresh()

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
        self._bar = None
        self._stage = None


def _print_section_header(title: str) -> None:
    """Print a section header with divider lines."""
    print("\n" + "-" * 70)
    print(title)
    print("-" * 70)


def print_scan_summary(summary: ScanSummary, label: str = "Folder") -> None:
    """Print what a folder scan produced."""
    print(f"\n{label}: {summary.folder}")
    if summary.cancelled:
        print("  Scan was cancelled")
        return
    print(f"  Images found: {summary.total_files:,}")
    if summary.model_unavailable:
        print("  Embedding model unavailable" + (
            "" if summary.loaded else " - no features extracted"))
    print(f"  Loaded: {summary.loaded:,} ({summary.searchable:,} searchable)")
    stats = summary.cache_stats
    if stats.cache_hits:
        print(f"  Cache: {stats.cache_hits:,} hits, {stats.cache_misses:,} misses "
              f"({stats.hit_rate:.1f}% hit rate)")
    if summary.extracted:
        print(f"  Embeddings extracted: {summary.extracted:,}")
    if summary.failed:
        print(f"  Without usable features: {summary.failed:,}")
    if summary.skipped:
        print(f"  Vanished during scan: {summary.skipped:,}")


def _describe_record(record: ImageRecord) -> str:
    parts = [record.file_size_formatted]
    if record.has_embedding:
        parts.append("embedding" + (" (cached)" if record.from_cache else ""))
    if record.has_hash:
        parts.append(f"hash {fingerprint_to_hex(record.perceptual_hash)}")
    return " | ".join(parts)


def print_search_report(
    source: ImageRecord,
    outcome: SearchOutcome,
    threshold: float,
    limit: Optional[int] = None,
) -> None:
    """
    Print the ranked matches of a search.

    Args:
        source: The source image
        outcome: Result of the search
        threshold: Threshold that was applied
        limit: Show at most this many matches
    """
    print("\n" + "=" * 70)
    print("SIMILAR IMAGE REPORT")
    print("=" * 70)
    print(f"\nSource: {source.path}")
    print(f"        {_describe_record(source)}")

    if not outcome.ok:
        print(f"\n{outcome.status}")
        return

    print(f"\nMatches at or above {threshold:.0f}%: {outcome.count:,}")

    results = outcome.results if limit is None else outcome.results[:limit]
    if results:
        _print_section_header("MATCHES (most similar first)")
        for rank, result in enumerate(results, start=1):
            print(f"  {rank:>3}. {result.score:6.2f}%  {result.path}")
            print(f"              {_describe_record(result.record)}")
        hidden = outcome.count - len(results)
        if hidden > 0:
            print(f"\n  ... {hidden:,} more not shown")

    print("\n" + "=" * 70)


def print_search_json(source: ImageRecord, outcome: SearchOutcome, threshold: float) -> None:
    """Print the search outcome as a JSON document."""
    document = {
        'source': source.to_dict(),
        'threshold': threshold,
        'ok': outcome.ok,
        'status': outcome.status,
        'matches': [
            dict(result.record.to_dict(), score=round(result.score, 2))
            for result in outcome.results
        ],
    }
    print(json.dumps(document, indent=2))


def print_cache_statistics(stats: Optional[CacheStatistics]) -> None:
    """Print feature cache statistics."""
    if stats is None:
        print("\nFeature cache: not open")
        return
    print(f"\nFeature cache: {stats.db_path}")
    print(f"  Entries: {stats.total_entries:,} ({stats.embedding_entries:,} with embeddings)")
    print(f"  Size: {stats.db_size_formatted}")


__all__ = [
    'ProgressBars',
    'print_scan_summary',
    'print_search_report',
    'print_search_json',
    'print_cache_statistics',
]
