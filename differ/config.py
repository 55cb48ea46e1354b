"""
Configuration constants for differ.

This module contains all configurable settings including:
- Supported image extensions
- Perceptual hash and embedding model parameters
- Cache, search and thumbnail defaults
"""

import os

# Extensions the folder enumerator picks up
IMAGE_EXTENSIONS = {
    '.jpg', '.jpeg', '.png', '.bmp', '.gif', '.webp',
    '.tiff', '.tif',
    '.heic', '.heif',
}

# Perceptual hash: 8x8 low-frequency block taken from a 32x32 DCT input
HASH_SIZE = 8
HIGH_FREQ_FACTOR = 4
HASH_IMAGE_SIZE = HASH_SIZE * HIGH_FREQ_FACTOR  # 32
HASH_BITS = HASH_SIZE * HASH_SIZE

# Embedding model (DINOv3 ONNX export)
MODEL_FILE_NAME = 'model_q4.onnx'
MODEL_INPUT_SIZE = 518
IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)

# Search defaults (similarity is on a 0-100 scale)
DEFAULT_THRESHOLD = 70.0

# Hash fallback when the embedding model is missing or fails for a file
DEFAULT_FALLBACK_TO_HASH = True

# Default number of parallel workers for hashing
DEFAULT_WORKERS = 4

# Thumbnails
DEFAULT_THUMBNAIL_SIZE = 150
DEFAULT_THUMBNAIL_CACHE_SIZE = 500
# Concurrent thumbnail decodes (2x cores keeps memory bounded)
THUMBNAIL_CONCURRENCY = max(2, (os.cpu_count() or 1) * 2)

# Per-folder cache database, stored at the root of the scanned folder
CACHE_DB_NAME = '.differ_cache.db'
CACHE_SCHEMA_VERSION = 1

# Model search locations (first existing file wins); relative entries
# are resolved against the working directory at lookup time
MODEL_SEARCH_DIRS = [
    os.path.join(os.path.expanduser('~'), '.differ', 'models'),
    'Model',
    os.path.join(os.path.dirname(os.path.abspath(__file__)), 'Model'),
]
