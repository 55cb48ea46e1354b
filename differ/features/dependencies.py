"""
Dependency initialization for the features package.

Handles PIL, numpy, imagehash, onnxruntime, HEIC/HEIF support, and tqdm
imports with proper error handling and configuration.
"""

from __future__ import annotations

import warnings
import logging
from typing import Optional, Any

# Module-level logger
_logger = logging.getLogger(__name__)

# Check for required dependencies
try:
    from PIL import Image
    import numpy as np
    import imagehash
except ImportError:
    raise ImportError(
        "Required packages not found!\n"
        "Install with: pip install Pillow numpy imagehash"
    )

# ONNX Runtime drives the embedding model. Without it the extractor reports
# itself unavailable and the pipeline applies its hash fallback policy.
HAS_ONNXRUNTIME = False
ort: Optional[Any] = None
try:
    import onnxruntime as _ort_import
    ort = _ort_import
    HAS_ONNXRUNTIME = True
except ImportError:
    _logger.warning(
        "onnxruntime not installed - deep embeddings are unavailable. "
        "Install with: pip install onnxruntime"
    )

# Register HEIC/HEIF support via pillow-heif
# This must be done before opening any HEIC files
HAS_HEIF_SUPPORT = False
try:
    from pillow_heif import register_heif_opener
    register_heif_opener()
    HAS_HEIF_SUPPORT = True
    _logger.debug("HEIC/HEIF support enabled via pillow-heif")
except ImportError:
    _logger.warning(
        "pillow-heif not installed - HEIC/HEIF files will not be processed. "
        "Install with: pip install pillow-heif"
    )

# Large scans and panoramas exceed PIL's default decompression bomb limit
Image.MAX_IMAGE_PIXELS = 500_000_000  # 500 megapixels
warnings.filterwarnings("ignore", category=Image.DecompressionBombWarning)

# Optional: tqdm for progress bars
HAS_TQDM = False
_tqdm_class: Optional[Any] = None

try:
    from tqdm import tqdm as _tqdm_import
    HAS_TQDM = True
    _tqdm_class = _tqdm_import
except ImportError:
    pass


__all__ = [
    'Image',
    'np',
    'imagehash',
    'ort',
    'HAS_ONNXRUNTIME',
    'HAS_HEIF_SUPPORT',
    'HAS_TQDM',
    '_tqdm_class',
    '_logger',
]
