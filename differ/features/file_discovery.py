"""
File discovery module for the features package.

Provides functionality to find and enumerate image files in directories,
with support for recursive scanning and HEIC/HEIF format detection, and to
probe file metadata for new ImageRecords.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from ..config import IMAGE_EXTENSIONS
from ..models import ImageRecord
from .dependencies import HAS_HEIF_SUPPORT, _logger


def supported_extensions() -> set[str]:
    """Extensions that can be decoded with the installed plugins."""
    if HAS_HEIF_SUPPORT:
        return set(IMAGE_EXTENSIONS)
    return {ext for ext in IMAGE_EXTENSIONS if ext not in {'.heic', '.heif'}}


def is_supported_image(filepath: str | Path) -> bool:
    """Check whether a path has a supported image extension."""
    return os.path.splitext(str(filepath))[1].lower() in supported_extensions()


def find_image_files(root_path: str | Path, recursive: bool = True) -> list[str]:
    """
    Find all image files in the given directory.

    Args:
        root_path: Directory path to search for images
        recursive: If True, search subdirectories recursively

    Returns:
        List of absolute file paths as strings, empty if the directory does
        not exist

    Notes:
        - HEIC/HEIF files are skipped if pillow-heif is not installed
        - Symlinks are resolved to canonical paths and deduplicated
    """
    root = Path(root_path)
    if not root.is_dir():
        return []

    extensions_to_scan = supported_extensions()

    images = []
    seen = set()  # Track resolved paths to avoid duplicates

    iterator = root.rglob('*') if recursive else root.glob('*')

    for filepath in iterator:
        if filepath.suffix.lower() not in extensions_to_scan:
            continue
        try:
            if not filepath.is_file():
                continue
            resolved = str(filepath.resolve())
        except OSError as e:
            _logger.debug(f"Skipping unreadable entry {filepath}: {e}")
            continue
        if resolved not in seen:
            seen.add(resolved)
            images.append(resolved)

    return images


def probe_image_file(filepath: str | Path) -> Optional[ImageRecord]:
    """
    Build an ImageRecord from the file's current metadata.

    Args:
        filepath: Path to an image file

    Returns:
        ImageRecord with size and modification time, or None if the file
        vanished or cannot be stat'ed (the caller skips it)
    """
    filepath = str(filepath)
    try:
        stat = os.stat(filepath)
    except OSError as e:
        _logger.warning(f"Skipping {filepath}: {e}")
        return None

    return ImageRecord(
        path=filepath,
        file_name=os.path.basename(filepath),
        file_size=stat.st_size,
        last_modified=stat.st_mtime,
    )


__all__ = [
    'find_image_files',
    'probe_image_file',
    'is_supported_image',
    'supported_extensions',
]
