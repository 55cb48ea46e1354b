"""
Thumbnail module for the features package.

Decodes and downscales images for display, and keeps recently used
thumbnails in a bounded in-memory LRU cache.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from pathlib import Path
from typing import Optional

from ..config import DEFAULT_THUMBNAIL_SIZE, DEFAULT_THUMBNAIL_CACHE_SIZE
from .dependencies import Image, _logger


def load_thumbnail(filepath: str | Path, max_size: int = DEFAULT_THUMBNAIL_SIZE) -> Optional[Image.Image]:
    """
    Decode an image and scale it to fit a ``max_size`` square.

    Aspect ratio is preserved. The returned image is fully loaded and no
    longer references the file.

    Returns:
        RGB thumbnail, or None if the image could not be decoded
    """
    try:
        with Image.open(filepath) as img:
            img.draft('RGB', (max_size, max_size))  # Faster JPEG decoding
            img.load()
            thumb = img.convert('RGB')
            thumb.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)
            return thumb
    except Exception as e:
        _logger.debug(f"Thumbnail generation failed for {filepath}: {e}")
        return None


class ThumbnailCache:
    """
    Thread-safe LRU cache of decoded thumbnails.

    Holds at most ``max_entries`` rasters; inserting beyond that evicts the
    least recently used entry. Keys combine path and thumbnail size.
    """

    def __init__(self, max_entries: int = DEFAULT_THUMBNAIL_CACHE_SIZE):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries: OrderedDict[tuple[str, int], Image.Image] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, filepath: str, size: int) -> Optional[Image.Image]:
        key = (str(filepath), size)
        with self._lock:
            thumb = self._entries.get(key)
            if thumb is None:
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return thumb

    def put(self, filepath: str, size: int, thumb: Image.Image) -> None:
        key = (str(filepath), size)
        with self._lock:
            self._entries[key] = thumb
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def get_or_load(self, filepath: str, size: int = DEFAULT_THUMBNAIL_SIZE) -> Optional[Image.Image]:
        """Return the cached thumbnail, decoding and caching it on a miss."""
        thumb = self.get(filepath, size)
        if thumb is not None:
            return thumb

        thumb = load_thumbnail(filepath, size)
        if thumb is not None:
            self.put(filepath, size, thumb)
        return thumb

    def clear(self) -> None:
        """Drop every cached raster."""
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key) -> bool:
        with self._lock:
            return key in self._entries


__all__ = ['ThumbnailCache', 'load_thumbnail']
