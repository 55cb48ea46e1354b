"""
SQLite feature cache for differ.

Provides persistent per-folder caching of image embeddings to enable:
- Incremental re-scans (only extract new/changed files)
- Fast reopening of large folders

The cache uses file path + FILETIME mtime + size to detect changes.

Public API:
- FeatureCache: Main cache class (one per scanned folder)
- CacheStats: Per-scan hit/miss statistics
- open_cache(): Open the cache of a folder, None if it cannot be opened
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .core import FeatureCache
from .utils import CacheStats


logger = logging.getLogger(__name__)


def open_cache(folder_path: str | Path) -> Optional[FeatureCache]:
    """
    Open the feature cache of a folder.

    Returns:
        FeatureCache, or None if the database could not be created (for
        example a read-only folder); the caller then runs uncached

    Example:
        cache = open_cache(folder)
        if cache is not None:
            entry = cache.lookup(filepath)
    """
    try:
        return FeatureCache(folder_path)
    except Exception as e:
        logger.error(f"Cannot open feature cache for {folder_path}: {e}")
        return None


__all__ = [
    'FeatureCache',
    'CacheStats',
    'open_cache',
]
