"""
Shared utilities for database operations.

Provides:
- CacheStats: Per-scan hit/miss statistics
- File identity helpers (size + FILETIME modification time)
- Embedding payload encoding and row conversion
"""

from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from ..models import CacheEntry


# SQLite variable limit constant - used for batch operations
# SQLite has a limit of 999 variables, we use 500 for safety
CHUNK_SIZE = 500

# 100 ns intervals between 1601-01-01 and 1970-01-01 (UTC)
FILETIME_EPOCH_OFFSET = 116_444_736_000_000_000


@dataclass
class CacheStats:
    """Statistics about cache usage during a scan."""
    cache_hits: int = 0
    cache_misses: int = 0
    total_files: int = 0

    @property
    def hit_rate(self) -> float:
        """Return cache hit rate as percentage."""
        if self.total_files == 0:
            return 0.0
        return (self.cache_hits / self.total_files) * 100


def to_filetime(mtime_ns: int) -> int:
    """
    Convert a POSIX timestamp in nanoseconds to FILETIME ticks.

    FILETIME counts 100 ns intervals since 1601-01-01 UTC.
    """
    return mtime_ns // 100 + FILETIME_EPOCH_OFFSET


def get_file_stats(filepath: str) -> tuple[int, int]:
    """
    Get file size and modification time.

    Args:
        filepath: Path to the file

    Returns:
        Tuple of (size in bytes, mtime as FILETIME ticks)
    """
    stat = os.stat(filepath)
    return stat.st_size, to_filetime(stat.st_mtime_ns)


def encode_features(embedding) -> tuple[bytes, int]:
    """
    Serialize an embedding as raw little-endian float32 bytes.

    Returns:
        Tuple of (payload, element count)
    """
    vector = np.asarray(embedding, dtype='<f4').reshape(-1)
    return vector.tobytes(), int(vector.size)


def row_to_cache_entry(row: sqlite3.Row) -> CacheEntry:
    """
    Convert database row to CacheEntry object.

    Args:
        row: sqlite3.Row from the image_features table

    Returns:
        CacheEntry object
    """
    return CacheEntry(
        file_path=row['file_path'],
        file_name=row['file_name'],
        file_size=row['file_size'],
        last_modified=row['last_modified'],
        features=bytes(row['features']) if row['features'] is not None else b"",
        feature_length=row['feature_length'] or 0,
    )


def is_database_corrupted(db_path: str) -> bool:
    """
    Probe an existing database file read-only.

    Returns:
        True if the file cannot be opened as a SQLite database or
        ``PRAGMA quick_check`` reports damaged pages
    """
    try:
        uri = Path(db_path).resolve().as_uri() + "?mode=ro"
        conn = sqlite3.connect(uri, uri=True, timeout=5.0)
        try:
            rows = conn.execute("PRAGMA quick_check").fetchall()
        finally:
            conn.close()
        return [tuple(row) for row in rows] != [("ok",)]
    except sqlite3.Error:
        return True


__all__ = [
    'CHUNK_SIZE',
    'CacheStats',
    'to_filetime',
    'get_file_stats',
    'encode_features',
    'row_to_cache_entry',
    'is_database_corrupted',
]
