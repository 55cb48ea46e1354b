"""
Data models for differ.

Contains dataclasses for scanned image records, persisted cache entries and
search results. Nothing in this module touches the file system.
"""

from dataclasses import dataclass, field
from typing import Any, Optional
import os

import numpy as np


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable form."""
    for unit in ['B', 'KB', 'MB', 'GB']:
        if size_bytes < 1024:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f} TB"


@dataclass(eq=False)
class ImageRecord:
    """
    One scanned image file and its extracted features.

    Attributes:
        path: Absolute path, unique within a scan
        file_name: Base name of the file (used for ordering)
        file_size: Size in bytes at scan time
        last_modified: Modification time (st_mtime) at scan time
        embedding: L2-normalized float32 vector, if deep extraction succeeded
        perceptual_hash: 64-bit DCT fingerprint, if hash extraction ran
        thumbnail: Decoded, downscaled raster owned by this record
        similarity: Score from the last search pass (not persisted)
        from_cache: True if the embedding was restored from the folder cache
    """
    path: str
    file_name: str = ""
    file_size: int = 0
    last_modified: float = 0.0
    embedding: Optional[np.ndarray] = None
    perceptual_hash: Optional[int] = None
    thumbnail: Optional[Any] = None
    similarity: float = 0.0
    from_cache: bool = False

    def __post_init__(self):
        if not self.file_name:
            self.file_name = os.path.basename(self.path)

    def __hash__(self):
        return hash(str(self.path))

    def __eq__(self, other):
        if not isinstance(other, ImageRecord):
            return False
        return str(self.path) == str(other.path)

    @property
    def has_embedding(self) -> bool:
        """True if a non-empty embedding is attached."""
        return self.embedding is not None and len(self.embedding) > 0

    @property
    def has_hash(self) -> bool:
        return self.perceptual_hash is not None

    @property
    def is_searchable(self) -> bool:
        """Records without any representation are excluded from search."""
        return self.has_embedding or self.has_hash

    @property
    def directory(self) -> str:
        return os.path.dirname(self.path)

    @property
    def file_size_formatted(self) -> str:
        return format_size(self.file_size)

    def release_thumbnail(self) -> None:
        """
        Drop this record's reference to its raster.

        The raster itself may still be shared with the thumbnail cache,
        which owns eviction, so it is not closed here.
        """
        self.thumbnail = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        from .features.hashing import fingerprint_to_hex

        return {
            'path': self.path,
            'file_name': self.file_name,
            'directory': self.directory,
            'file_size': self.file_size,
            'file_size_formatted': self.file_size_formatted,
            'last_modified': self.last_modified,
            'embedding_length': len(self.embedding) if self.has_embedding else 0,
            'perceptual_hash': fingerprint_to_hex(self.perceptual_hash) if self.has_hash else None,
            'similarity': round(self.similarity, 2),
            'from_cache': self.from_cache,
        }


@dataclass
class CacheEntry:
    """
    Persisted embedding for one file.

    ``file_size`` and ``last_modified`` (FILETIME ticks) must match the live
    file exactly for the entry to count as a hit.
    """
    file_path: str
    file_name: str
    file_size: int
    last_modified: int
    features: bytes = b""
    feature_length: int = 0

    def embedding(self) -> Optional[np.ndarray]:
        """
        Decode the stored little-endian float32 payload.

        Returns:
            The vector, or None if the payload is empty or its byte length
            disagrees with the recorded element count
        """
        if not self.features or self.feature_length <= 0:
            return None
        itemsize = np.dtype('<f4').itemsize
        if len(self.features) != self.feature_length * itemsize:
            return None
        return np.frombuffer(self.features, dtype='<f4', count=self.feature_length).astype(np.float32)


@dataclass
class CacheStatistics:
    """Summary of a folder cache database."""
    total_entries: int = 0
    embedding_entries: int = 0
    db_size_bytes: int = 0
    db_path: str = ""

    @property
    def db_size_formatted(self) -> str:
        return format_size(self.db_size_bytes)

    def to_dict(self) -> dict:
        return {
            'total_entries': self.total_entries,
            'embedding_entries': self.embedding_entries,
            'db_size_bytes': self.db_size_bytes,
            'db_size_mb': round(self.db_size_bytes / (1024 * 1024), 2),
            'db_path': self.db_path,
        }


@dataclass
class SearchResult:
    """A candidate that passed the similarity threshold."""
    record: ImageRecord
    score: float

    @property
    def path(self) -> str:
        return self.record.path


@dataclass
class SearchOutcome:
    """
    Result of a "set source and search" request.

    Attributes:
        results: Matches sorted by descending score
        status: Human-readable status line
        ok: False when a precondition failed (no source, no features, ...)
    """
    results: list = field(default_factory=list)
    status: str = ""
    ok: bool = True

    @property
    def count(self) -> int:
        return len(self.results)
