"""
Pipeline state and scan bookkeeping.

Provides the PipelineState machine, the ScanSummary reported after each
folder load, and the internal FolderScan that owns one scan's records.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from ..database import CacheStats, FeatureCache
from ..models import ImageRecord


# progress_callback(stage, current, total); stage is 'extracting' or 'thumbnails'
ProgressCallback = Callable[[str, int, int], None]


class PipelineState(Enum):
    """
    Lifecycle of a folder selection.

    IDLE -> SCANNING -> EXTRACTING -> THUMBNAIL_LOADING -> READY, with
    SEARCHING entered from READY on demand.
    """
    IDLE = "idle"
    SCANNING = "scanning"
    EXTRACTING = "extracting"
    THUMBNAIL_LOADING = "thumbnail_loading"
    READY = "ready"
    SEARCHING = "searching"


@dataclass
class ScanSummary:
    """
    Outcome of loading one folder.

    Attributes:
        folder: Absolute folder path
        total_files: Supported image files found by the enumerator
        loaded: Records in the final view
        searchable: Records carrying at least one usable representation
        extracted: Embeddings computed by the model during this scan
        failed: Records left without any usable representation
        skipped: Files that vanished between enumeration and probing
        cancelled: True if a newer folder selection replaced this scan
        model_unavailable: True if extraction was refused for lack of a model
        cache_stats: Cache hits and misses for this scan
    """
    folder: str
    total_files: int = 0
    loaded: int = 0
    searchable: int = 0
    extracted: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: bool = False
    model_unavailable: bool = False
    cache_stats: CacheStats = field(default_factory=CacheStats)


class FolderScan:
    """
    Records, cache handle and cancellation token of one folder load.

    Owned by the pipeline. Records become visible one by one as their
    thumbnail step completes; the view is always in file-name order.
    """

    def __init__(self, folder: str, recursive: bool):
        self.folder = folder
        self.recursive = recursive
        self.state = PipelineState.IDLE
        self.cache: Optional[FeatureCache] = None
        self.records: list[ImageRecord] = []
        self._visible: set[str] = set()
        self._cancelled = threading.Event()
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def set_records(self, records: list[ImageRecord]) -> None:
        with self._lock:
            self.records = list(records)
            self._visible.clear()

    def mark_visible(self, record: ImageRecord) -> None:
        with self._lock:
            self._visible.add(record.path)

    def mark_all_visible(self) -> None:
        with self._lock:
            self._visible = {r.path for r in self.records}

    def view(self) -> tuple[ImageRecord, ...]:
        """Visible records, sorted by file name."""
        with self._lock:
            return tuple(r for r in self.records if r.path in self._visible)

    def find(self, path: str) -> Optional[ImageRecord]:
        with self._lock:
            for record in self.records:
                if record.path == path:
                    return record
        return None

    def discard(self) -> None:
        """Drop every record and its thumbnail."""
        with self._lock:
            for record in self.records:
                record.release_thumbnail()
            self.records = []
            self._visible.clear()


__all__ = ['PipelineState', 'ScanSummary', 'FolderScan', 'ProgressCallback']
