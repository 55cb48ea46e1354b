"""
Extraction pipeline orchestrator.

Drives a folder selection through scanning, feature extraction, thumbnail
loading and similarity search, and owns every shared resource involved:
the embedding extractor and its serialized inference lane, the per-folder
feature caches and the thumbnail LRU.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Optional, Union

from ..config import (
    DEFAULT_FALLBACK_TO_HASH,
    DEFAULT_THRESHOLD,
    DEFAULT_THUMBNAIL_CACHE_SIZE,
    DEFAULT_THUMBNAIL_SIZE,
    DEFAULT_WORKERS,
    THUMBNAIL_CONCURRENCY,
)
from ..database import CacheStats, FeatureCache, open_cache
from ..features import (
    EmbeddingExtractor,
    HashExtractor,
    SimilarityScorer,
    ThumbnailCache,
    find_image_files,
    probe_image_file,
)
from ..models import CacheStatistics, ImageRecord, SearchOutcome
from .lane import InferenceLane
from .search import rank_candidates
from .state import FolderScan, PipelineState, ProgressCallback, ScanSummary


STATUS_INITIAL = "Select a folder to browse images"
STATUS_MODEL_UNAVAILABLE = "Embedding model is not available. Please check the model file."
STATUS_HASH_ONLY = "Embedding model is not available; using perceptual hashes only."
STATUS_SEARCH_UNAVAILABLE = "Embedding model is not available. Cannot perform similarity search."
STATUS_NO_SOURCE = "Please select a source image first"
STATUS_NO_FEATURES = "Source image has no features to compare"
STATUS_NO_CANDIDATES = "No images to compare against"


@dataclass
class PipelineSettings:
    """
    Runtime settings of an ExtractionPipeline.

    Attributes:
        similarity_threshold: Minimum score (0-100) for a match
        fallback_to_hash: Compute perceptual hashes and use them when no
            embedding is available
        use_cache: Read and write the per-folder feature cache
        recursive: Include subfolders when scanning
        hash_workers: Size of the hashing worker pool
        thumbnail_size: Longest edge of decoded thumbnails
        thumbnail_cache_size: Capacity of the thumbnail LRU
        thumbnail_concurrency: Maximum concurrent thumbnail decodes
        load_thumbnails: Decode thumbnails at all (off for headless use)
        model_path: Explicit ONNX model file, searched for when None
        prefer_gpu: Try CUDA before CPU
    """
    similarity_threshold: float = DEFAULT_THRESHOLD
    fallback_to_hash: bool = DEFAULT_FALLBACK_TO_HASH
    use_cache: bool = True
    recursive: bool = True
    hash_workers: int = DEFAULT_WORKERS
    thumbnail_size: int = DEFAULT_THUMBNAIL_SIZE
    thumbnail_cache_size: int = DEFAULT_THUMBNAIL_CACHE_SIZE
    thumbnail_concurrency: int = THUMBNAIL_CONCURRENCY
    load_thumbnails: bool = True
    model_path: Optional[str] = None
    prefer_gpu: bool = True

    @classmethod
    def from_user_config(cls, config, **overrides) -> 'PipelineSettings':
        """Build settings from a UserConfig, then apply explicit overrides."""
        values = dict(
            similarity_threshold=float(config.similarity_threshold),
            fallback_to_hash=bool(config.fallback_to_hash),
            use_cache=bool(config.use_cache),
            recursive=bool(config.recursive),
            hash_workers=int(config.hash_workers),
            thumbnail_size=int(config.thumbnail_size),
            thumbnail_cache_size=int(config.thumbnail_cache_size),
            thumbnail_concurrency=int(config.thumbnail_concurrency),
            model_path=config.model_path,
            prefer_gpu=bool(config.prefer_gpu),
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class ExtractionPipeline:
    """
    Folder scan, feature extraction and similarity search.

    Only one primary scan is live at a time: choosing a new folder cancels
    the previous scan and discards its results. An optional compare scan
    supplies the candidates for search instead of the primary folder.

    Usage:
        with ExtractionPipeline(PipelineSettings()) as pipeline:
            pipeline.initialize_model()
            pipeline.load_folder("/photos")
            outcome = pipeline.set_source_and_search(pipeline.records[0], 80)
            for result in outcome.results:
                print(result.path, result.score)
    """

    def __init__(
        self,
        settings: Optional[PipelineSettings] = None,
        extractor: Optional[EmbeddingExtractor] = None,
        hash_extractor: Optional[HashExtractor] = None,
        thumbnail_cache: Optional[ThumbnailCache] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings or PipelineSettings()
        self.logger = logger or logging.getLogger(__name__)

        self.extractor = extractor if extractor is not None else EmbeddingExtractor(
            model_path=self.settings.model_path,
            prefer_gpu=self.settings.prefer_gpu,
        )
        self.hash_extractor = hash_extractor or HashExtractor()
        self.scorer = SimilarityScorer(self.settings.fallback_to_hash)
        self.thumbnail_cache = thumbnail_cache or ThumbnailCache(self.settings.thumbnail_cache_size)

        self.similarity_threshold = self.settings.similarity_threshold
        self.source: Optional[ImageRecord] = None
        self.status_text = STATUS_INITIAL
        self.model_status = "Model not loaded"
        self.model_available = False

        self._model_checked = False
        self._lane = InferenceLane()
        self._thumbnail_slots = threading.BoundedSemaphore(max(1, self.settings.thumbnail_concurrency))
        self._lock = threading.RLock()
        self._searching = False
        self._primary: Optional[FolderScan] = None
        self._compare: Optional[FolderScan] = None
        self._closed = False

    # ------------------------------------------------------------------
    # Model
    # ------------------------------------------------------------------

    def initialize_model(self) -> bool:
        """
        Initialize the embedding extractor and record the model status.

        Returns:
            True if embeddings are available
        """
        available = self.extractor.initialize()
        with self._lock:
            self._model_checked = True
            self.model_available = available
            if available:
                device = "GPU" if getattr(self.extractor, 'is_using_gpu', False) else "CPU"
                self.model_status = f"Embedding model loaded ({device})"
            else:
                reason = getattr(self.extractor, 'last_error', None) or "unknown error"
                self.model_status = f"Embedding model unavailable: {reason}"
                if self.settings.fallback_to_hash:
                    self.status_text = STATUS_HASH_ONLY
                else:
                    self.status_text = STATUS_MODEL_UNAVAILABLE
        return available

    def _ensure_model(self) -> bool:
        if not self._model_checked:
            self.initialize_model()
        return self.model_available

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        if self._searching:
            return PipelineState.SEARCHING
        scan = self._primary
        return scan.state if scan is not None else PipelineState.IDLE

    @property
    def current_folder(self) -> Optional[str]:
        scan = self._primary
        return scan.folder if scan is not None else None

    @property
    def compare_folder(self) -> Optional[str]:
        scan = self._compare
        return scan.folder if scan is not None else None

    @property
    def records(self) -> tuple[ImageRecord, ...]:
        """Visible records of the primary folder, in file-name order."""
        scan = self._primary
        return scan.view() if scan is not None else ()

    @property
    def compare_records(self) -> tuple[ImageRecord, ...]:
        """Visible records of the compare folder, in file-name order."""
        scan = self._compare
        return scan.view() if scan is not None else ()

    # ------------------------------------------------------------------
    # Folder loading
    # ------------------------------------------------------------------

    def load_folder(
        self,
        folder: Union[str, os.PathLike],
        recursive: Optional[bool] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> ScanSummary:
        """
        Scan a folder as the primary image set.

        Any scan still running for a previous selection is cancelled and its
        results are discarded. The search source is cleared.

        Raises:
            NotADirectoryError: If ``folder`` is not an existing directory
        """
        folder = self._check_folder(folder)
        scan = FolderScan(folder, self.settings.recursive if recursive is None else recursive)

        with self._lock:
            old = self._primary
            self._primary = scan
            self.source = None
            self.thumbnail_cache.clear()
            scan.cache = self._swap_cache(old, folder)
            if old is not None:
                self._release_scan(old)

        self.logger.info(f"Loading folder: {folder}")
        return self._run_scan(scan, progress_callback, primary=True)

    def load_compare_folder(
        self,
        folder: Union[str, os.PathLike],
        recursive: Optional[bool] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> ScanSummary:
        """
        Scan a second folder whose images become the search candidates.

        Raises:
            NotADirectoryError: If ``folder`` is not an existing directory
        """
        folder = self._check_folder(folder)
        scan = FolderScan(folder, self.settings.recursive if recursive is None else recursive)

        with self._lock:
            old = self._compare
            self._compare = scan
            scan.cache = self._swap_cache(old, folder)
            if old is not None:
                self._release_scan(old)

        self.logger.info(f"Loading compare folder: {folder}")
        return self._run_scan(scan, progress_callback, primary=False)

    def clear_compare_folder(self) -> None:
        """Drop the compare folder; search falls back to the primary folder."""
        with self._lock:
            old = self._compare
            self._compare = None
            if old is not None:
                self._release_scan(old)
                self.logger.info(f"Cleared compare folder: {old.folder}")

    def _check_folder(self, folder) -> str:
        if self._closed:
            raise RuntimeError("Pipeline is closed")
        folder = os.path.realpath(os.fspath(folder))
        if not os.path.isdir(folder):
            raise NotADirectoryError(folder)
        return folder

    # ------------------------------------------------------------------
    # Cache ownership (one open FeatureCache per folder)
    # ------------------------------------------------------------------

    def _swap_cache(self, old: Optional[FolderScan], folder: str) -> Optional[FeatureCache]:
        """
        Pick the cache for a new scan of ``folder``.

        Reuses the outgoing scan's cache when the folder is unchanged, or
        the other role's cache when both point at the same folder. Otherwise
        the outgoing cache is closed before a new one is opened.
        """
        if not self.settings.use_cache:
            return None

        if old is not None and old.cache is not None and old.folder == folder and old.cache.is_open:
            cache = old.cache
            old.cache = None
            return cache

        for other in (self._primary, self._compare):
            if other is not None and other is not old and other.folder == folder:
                if other.cache is not None and other.cache.is_open:
                    return other.cache

        if old is not None:
            self._close_scan_cache(old)
        return open_cache(folder)

    def _close_scan_cache(self, scan: FolderScan) -> None:
        cache = scan.cache
        scan.cache = None
        if cache is None:
            return
        for other in (self._primary, self._compare):
            if other is not None and other is not scan and other.cache is cache:
                return
        cache.close()

    def _release_scan(self, scan: FolderScan) -> None:
        """Cancel a replaced scan and free its records and cache."""
        scan.cancel()
        scan.discard()
        self._close_scan_cache(scan)

    def _active_caches(self) -> list[FeatureCache]:
        caches = []
        for scan in (self._primary, self._compare):
            if scan is not None and scan.cache is not None and scan.cache not in caches:
                caches.append(scan.cache)
        return caches

    # ------------------------------------------------------------------
    # Scan stages
    # ------------------------------------------------------------------

    def _set_state(self, scan: FolderScan, state: PipelineState, status: Optional[str] = None,
                   primary: bool = True) -> None:
        with self._lock:
            if scan.cancelled:
                return
            scan.state = state
            if status is not None and primary:
                self.status_text = status

    def _run_scan(self, scan: FolderScan, progress_callback: Optional[ProgressCallback],
                  primary: bool) -> ScanSummary:
        start_time = time.time()
        summary = ScanSummary(folder=scan.folder)

        self._set_state(scan, PipelineState.SCANNING, "Scanning folder...", primary)
        files = find_image_files(scan.folder, recursive=scan.recursive)
        summary.total_files = len(files)

        records = []
        for filepath in files:
            record = probe_image_file(filepath)
            if record is None:
                summary.skipped += 1
            else:
                records.append(record)
        records.sort(key=lambda r: (r.file_name.lower(), r.path))

        if scan.cancelled:
            return self._cancelled(scan, summary)

        if not records:
            scan.set_records([])
            self._set_state(scan, PipelineState.READY, "No images found in folder", primary)
            self.logger.info(f"No images found in {scan.folder}")
            return summary

        self.logger.info(f"Found {len(records):,} images in {scan.folder}")

        model_ready = self._ensure_model()
        if not model_ready and not self.settings.fallback_to_hash:
            scan.set_records([])
            summary.model_unavailable = True
            self._set_state(scan, PipelineState.READY, STATUS_MODEL_UNAVAILABLE, primary)
            self.logger.error(f"Not extracting features for {scan.folder}: embedding model unavailable")
            return summary
        summary.model_unavailable = not model_ready

        self._set_state(scan, PipelineState.EXTRACTING, "Extracting image features...", primary)
        self._extract_features(scan, records, summary, progress_callback, model_ready)
        if scan.cancelled:
            return self._cancelled(scan, summary)

        scan.set_records(records)
        self._set_state(scan, PipelineState.THUMBNAIL_LOADING, "Loading thumbnails...", primary)
        self._load_thumbnails(scan, records, progress_callback)
        if scan.cancelled:
            return self._cancelled(scan, summary)

        summary.loaded = len(records)
        summary.searchable = sum(1 for r in records if r.is_searchable)
        summary.failed = summary.loaded - summary.searchable
        if summary.failed:
            self.logger.warning(f"{summary.failed:,} images have no usable features and will not be searched")

        elapsed = time.time() - start_time
        status = f"Loaded {summary.loaded} images"
        if summary.model_unavailable:
            status += " (perceptual hashes only)"
        self._set_state(scan, PipelineState.READY, status, primary)
        self.logger.info(f"Loaded {summary.loaded:,} images from {scan.folder} in {elapsed:.1f}s")
        return summary

    def _cancelled(self, scan: FolderScan, summary: ScanSummary) -> ScanSummary:
        scan.discard()
        summary.cancelled = True
        summary.loaded = 0
        self.logger.info(f"Scan of {scan.folder} was cancelled")
        return summary

    def _extract_features(
        self,
        scan: FolderScan,
        records: list[ImageRecord],
        summary: ScanSummary,
        progress_callback: Optional[ProgressCallback],
        model_ready: bool,
    ) -> None:
        """
        Restore cached embeddings, then run inference and hashing.

        Inference goes through the single-worker lane; hashes run on a
        bounded pool at the same time. All results are applied here, in the
        calling thread.
        """
        total = len(records)
        stats = CacheStats(total_files=total)
        summary.cache_stats = stats
        to_extract: list[ImageRecord] = []

        cache = scan.cache
        if cache is not None:
            cached = cache.lookup_batch([r.path for r in records])
            for record in records:
                entry = cached.get(record.path)
                vector = entry.embedding() if entry is not None else None
                if vector is not None:
                    record.embedding = vector
                    record.from_cache = True
                    stats.cache_hits += 1
                else:
                    to_extract.append(record)
                    stats.cache_misses += 1

            if stats.cache_hits > 0:
                self.logger.info(
                    f"Cache: {stats.cache_hits:,} hits, {stats.cache_misses:,} misses "
                    f"({stats.hit_rate:.1f}% hit rate)"
                )
        else:
            to_extract = list(records)
            stats.cache_misses = total

        compute_hashes = self.settings.fallback_to_hash
        if model_ready:
            # Progress counts finished embedding steps; cache hits are already done
            done = stats.cache_hits
        else:
            done = 0
        if progress_callback and done:
            progress_callback('extracting', done, total)

        embed_futures: dict[Future, ImageRecord] = {}
        hash_futures: dict[Future, ImageRecord] = {}
        failed = 0

        with ThreadPoolExecutor(max_workers=max(1, self.settings.hash_workers)) as hash_pool:
            if model_ready:
                for record in to_extract:
                    if scan.cancelled:
                        break
                    try:
                        future = self._lane.submit(self._embed_one, scan, record.path)
                    except RuntimeError:
                        # Lane shut down by close(), which cancels every scan first
                        scan.cancel()
                        break
                    embed_futures[future] = record
            if compute_hashes:
                for record in records:
                    hash_futures[hash_pool.submit(self._hash_one, scan, record.path)] = record

            for future in as_completed(list(embed_futures) + list(hash_futures)):
                if scan.cancelled:
                    continue

                is_embedding = future in embed_futures
                record = embed_futures[future] if is_embedding else hash_futures[future]
                try:
                    result = future.result()
                except Exception as e:
                    self.logger.warning(f"Feature extraction failed for {record.path}: {e}")
                    result = None

                if is_embedding:
                    if result is not None:
                        record.embedding = result
                        summary.extracted += 1
                        if cache is not None:
                            cache.store(record.path, result)
                    else:
                        failed += 1
                else:
                    record.perceptual_hash = result

                if is_embedding == model_ready:
                    done += 1
                    if progress_callback:
                        progress_callback('extracting', done, total)

        if failed and not scan.cancelled:
            self.logger.warning(f"Skipped {failed:,} images whose embedding could not be extracted")

    def _embed_one(self, scan: FolderScan, filepath: str):
        if scan.cancelled:
            return None
        return self.extractor.extract(filepath)

    def _hash_one(self, scan: FolderScan, filepath: str) -> Optional[int]:
        if scan.cancelled:
            return None
        return self.hash_extractor.try_hash(filepath)

    def _load_thumbnails(
        self,
        scan: FolderScan,
        records: list[ImageRecord],
        progress_callback: Optional[ProgressCallback],
    ) -> None:
        if not self.settings.load_thumbnails:
            scan.mark_all_visible()
            return

        total = len(records)
        workers = max(1, self.settings.thumbnail_concurrency)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="thumbnail") as pool:
            futures = {pool.submit(self._thumbnail_one, scan, r.path): r for r in records}
            for done, future in enumerate(as_completed(futures), start=1):
                if scan.cancelled:
                    continue
                record = futures[future]
                try:
                    record.thumbnail = future.result()
                except Exception as e:
                    self.logger.debug(f"Thumbnail failed for {record.path}: {e}")
                    record.thumbnail = None
                scan.mark_visible(record)
                if progress_callback:
                    progress_callback('thumbnails', done, total)

    def _thumbnail_one(self, scan: FolderScan, filepath: str):
        with self._thumbnail_slots:
            if scan.cancelled:
                return None
            return self.thumbnail_cache.get_or_load(filepath, self.settings.thumbnail_size)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def find_record(self, path: Union[str, os.PathLike]) -> Optional[ImageRecord]:
        """Look up a loaded record by path in the primary, then compare folder."""
        path = os.path.realpath(os.fspath(path))
        for scan in (self._primary, self._compare):
            if scan is not None:
                record = scan.find(path)
                if record is not None:
                    return record
        return None

    def prepare_external_source(self, filepath: Union[str, os.PathLike]) -> Optional[ImageRecord]:
        """
        Extract features for an image that is not part of any loaded folder.

        Returns:
            A record carrying whatever representations could be computed, or
            None if the file cannot be read
        """
        record = probe_image_file(filepath)
        if record is None:
            return None
        if self._ensure_model():
            record.embedding = self._lane.run(self.extractor.extract, record.path)
        if self.settings.fallback_to_hash:
            record.perceptual_hash = self.hash_extractor.try_hash(record.path)
        return record

    def set_source_and_search(
        self,
        source: Union[ImageRecord, str, os.PathLike, None],
        threshold: Optional[float] = None,
    ) -> SearchOutcome:
        """
        Select a source image and search for similar candidates.

        Args:
            source: A loaded record, or the path of a loaded image
            threshold: New similarity threshold (0-100); keeps the current one
                when None

        Returns:
            SearchOutcome; precondition failures are reported through
            ``ok=False`` and the status text
        """
        if source is not None and not isinstance(source, ImageRecord):
            source = self.find_record(source)
        with self._lock:
            self.source = source
            if threshold is not None:
                self.similarity_threshold = float(threshold)
        return self.find_similar()

    def update_threshold(self, value: float) -> Optional[SearchOutcome]:
        """Change the threshold, re-running the search if a source is set."""
        with self._lock:
            self.similarity_threshold = float(value)
            if self.source is None or self._searching:
                return None
        return self.find_similar()

    def find_similar(self) -> SearchOutcome:
        """Search candidates for images similar to the current source."""
        source = self.source
        if source is None:
            return self._search_failed(STATUS_NO_SOURCE)

        if not self.scorer.can_score(source):
            if self._model_checked and not self.model_available and not self.settings.fallback_to_hash:
                return self._search_failed(STATUS_SEARCH_UNAVAILABLE)
            return self._search_failed(STATUS_NO_FEATURES)

        candidates = self.compare_records if self._compare is not None else self.records
        if not candidates:
            return self._search_failed(STATUS_NO_CANDIDATES)

        threshold = self.similarity_threshold
        with self._lock:
            self._searching = True
            self.status_text = "Searching for similar images..."
        try:
            results = rank_candidates(source, candidates, self.scorer, threshold)
        finally:
            with self._lock:
                self._searching = False

        status = f"Found {len(results)} similar images (similarity >= {threshold:.0f}%)"
        with self._lock:
            self.status_text = status
        self.logger.info(f"{status} for {source.file_name}")
        return SearchOutcome(results=results, status=status, ok=True)

    def _search_failed(self, status: str) -> SearchOutcome:
        with self._lock:
            self.status_text = status
        self.logger.debug(f"Search not run: {status}")
        return SearchOutcome(results=[], status=status, ok=False)

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def set_use_cache(self, enabled: bool) -> None:
        """Enable or disable the feature cache; disabling closes open caches."""
        with self._lock:
            self.settings.use_cache = enabled
            if not enabled:
                for scan in (self._primary, self._compare):
                    if scan is not None:
                        self._close_scan_cache(scan)
        self.logger.info(f"Feature cache {'enabled' if enabled else 'disabled'}")

    def cleanup_cache(self) -> int:
        """Remove cache entries whose files no longer exist."""
        with self._lock:
            caches = self._active_caches()
        return sum(cache.cleanup_expired() for cache in caches)

    def cache_statistics(self) -> Optional[CacheStatistics]:
        """Statistics of the primary folder's cache, if one is open."""
        scan = self._primary
        if scan is None or scan.cache is None:
            return None
        return scan.cache.statistics()

    def reset_cache(self) -> None:
        """Delete every entry of the primary folder's cache."""
        scan = self._primary
        if scan is not None and scan.cache is not None:
            scan.cache.clear()
            self.logger.info(f"Cleared feature cache for {scan.folder}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Cancel scans and release the lane, caches, thumbnails and model."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            scans = [s for s in (self._primary, self._compare) if s is not None]
            for scan in scans:
                scan.cancel()
            self._primary = None
            self._compare = None
            for scan in scans:
                scan.discard()
                if scan.cache is not None and scan.cache.is_open:
                    scan.cache.close()
                scan.cache = None
            self.source = None
            self.thumbnail_cache.clear()

        self._lane.shutdown(wait=True)
        self.extractor.dispose()

    def __enter__(self) -> 'ExtractionPipeline':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ['ExtractionPipeline', 'PipelineSettings']
