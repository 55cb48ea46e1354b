"""
Embedding module for the features package.

Runs a pretrained vision model (a DINOv3 ONNX export by default) over an
image and returns an L2-normalized float32 feature vector.

The ONNX session is owned by an EmbeddingExtractor instance. Session runs are
serialized: the runtime does not guarantee that one session may be invoked
from several threads at once.
"""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Optional

from ..config import (
    IMAGENET_MEAN,
    IMAGENET_STD,
    MODEL_FILE_NAME,
    MODEL_INPUT_SIZE,
    MODEL_SEARCH_DIRS,
)
from .dependencies import Image, np, ort, HAS_ONNXRUNTIME, _logger


CUDA_PROVIDER = 'CUDAExecutionProvider'
CPU_PROVIDER = 'CPUExecutionProvider'

_MEAN = np.array(IMAGENET_MEAN, dtype=np.float32)
_STD = np.array(IMAGENET_STD, dtype=np.float32)


def resolve_model_path(model_path: Optional[str | Path] = None) -> Optional[str]:
    """
    Locate the ONNX model file.

    Args:
        model_path: Explicit path. When given it is used as-is.

    Returns:
        The explicit path, else ``$DIFFER_MODEL_PATH`` if that file exists,
        else the first existing file among the search directories, else None
    """
    if model_path:
        return str(model_path)

    env_path = os.getenv('DIFFER_MODEL_PATH')
    if env_path:
        if os.path.isfile(env_path):
            return os.path.abspath(env_path)
        _logger.warning(f"DIFFER_MODEL_PATH points to a missing file: {env_path}")

    for directory in MODEL_SEARCH_DIRS:
        candidate = os.path.abspath(os.path.join(directory, MODEL_FILE_NAME))
        if os.path.isfile(candidate):
            _logger.info(f"Found model at: {candidate}")
            return candidate

    return None


def normalize_l2(vector: np.ndarray) -> np.ndarray:
    """
    Scale ``vector`` in place to unit Euclidean length.

    A vector whose norm is ~0 is left unchanged.
    """
    norm = float(np.linalg.norm(vector))
    if norm > np.finfo(np.float32).eps:
        vector /= norm
    return vector


def cpu_thread_count() -> int:
    """Threads for CPU inference: half the available cores, at least one."""
    return max(1, (os.cpu_count() or 1) // 2)


class EmbeddingExtractor:
    """
    Deep feature extractor backed by an ONNX Runtime inference session.

    Usage:
        extractor = EmbeddingExtractor(model_path)
        if extractor.initialize():
            vector = extractor.extract("photo.jpg")
        extractor.dispose()

    ``initialize`` tries CUDA first and falls back to CPU. It is idempotent
    and safe to call concurrently; the expensive work runs once under a lock.
    """

    def __init__(
        self,
        model_path: Optional[str | Path] = None,
        input_size: int = MODEL_INPUT_SIZE,
        prefer_gpu: bool = True,
    ):
        """
        Initialize the extractor (no model is loaded yet).

        Args:
            model_path: ONNX model file. Searched for when None.
            input_size: Square input resolution used when the model input
                has no static spatial size
            prefer_gpu: Attempt CUDA before CPU
        """
        self._requested_model_path = model_path
        self.input_size = input_size
        self.prefer_gpu = prefer_gpu

        self.model_path: Optional[str] = None
        self.is_using_gpu = False
        self.last_error: Optional[str] = None

        self._session = None
        self._input_name: Optional[str] = None
        self._initialized = False
        self._init_lock = threading.Lock()
        self._run_lock = threading.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> bool:
        """
        Load the model, GPU first with CPU fallback.

        Returns:
            True if a session is ready for inference
        """
        if self._initialized:
            return True

        with self._init_lock:
            # Double-check after acquiring lock
            if self._initialized:
                return True

            self.last_error = None
            if not HAS_ONNXRUNTIME:
                self.last_error = "onnxruntime is not installed"
                _logger.critical(f"Embedding model unavailable: {self.last_error}")
                return False

            self.model_path = resolve_model_path(self._requested_model_path)
            if not self.model_path or not os.path.isfile(self.model_path):
                self.last_error = f"Model file not found: {self.model_path or MODEL_FILE_NAME}"
                _logger.error(self.last_error)
                return False

            session = None
            if self.prefer_gpu:
                try:
                    session = self._create_gpu_session(self.model_path)
                    self.is_using_gpu = True
                    _logger.info("Embedding model initialized with CUDA GPU acceleration")
                except Exception as gpu_err:
                    # The partial GPU session was dropped inside _create_gpu_session
                    session = None
                    self.is_using_gpu = False
                    _logger.warning(f"GPU initialization failed, falling back to CPU: {gpu_err}")
                    self.last_error = f"GPU failed, using CPU: {gpu_err}"

            if session is None:
                try:
                    session = self._create_cpu_session(self.model_path)
                    _logger.info(
                        f"Embedding model initialized on CPU ({cpu_thread_count()} threads)"
                    )
                except Exception as cpu_err:
                    self.last_error = f"Model initialization failed on CPU: {cpu_err}"
                    _logger.critical(self.last_error, exc_info=True)
                    return False

            self._bind_session(session)
            self._initialized = True
            return True

    def _create_gpu_session(self, model_path: str):
        if CUDA_PROVIDER not in ort.get_available_providers():
            raise RuntimeError(f"{CUDA_PROVIDER} is not available in this onnxruntime build")

        options = ort.SessionOptions()
        options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        options.enable_mem_pattern = True
        options.enable_cpu_mem_arena = True

        session = ort.InferenceSession(model_path, sess_options=options, providers=[CUDA_PROVIDER])
        active = session.get_providers()
        if not active or active[0] != CUDA_PROVIDER:
            del session
            raise RuntimeError(f"session fell back to {active[0] if active else 'no provider'}")
        return session

    def _create_cpu_session(self, model_path: str):
        options = ort.SessionOptions()
        options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        options.intra_op_num_threads = cpu_thread_count()
        options.inter_op_num_threads = cpu_thread_count()
        options.enable_mem_pattern = True
        options.enable_cpu_mem_arena = True

        return ort.InferenceSession(model_path, sess_options=options, providers=[CPU_PROVIDER])

    def _bind_session(self, session) -> None:
        """Store the session and adopt the model's static input size, if any."""
        model_input = session.get_inputs()[0]
        self._input_name = model_input.name

        shape = list(getattr(model_input, 'shape', None) or [])
        if len(shape) == 4:
            height, width = shape[2], shape[3]
            if isinstance(height, int) and isinstance(width, int) and height == width and height > 0:
                self.input_size = height

        self._session = session

    def preprocess(self, filepath: str | Path) -> Optional[np.ndarray]:
        """
        Load an image and build the NCHW model input tensor.

        The image is stretched (not letterboxed) to the square input size and
        normalized per channel with ImageNet mean/std.

        Returns:
            float32 array of shape (1, 3, size, size), or None if the image
            has invalid dimensions
        """
        with Image.open(filepath) as img:
            img.load()
            width, height = img.size
            if width == 0 or height == 0:
                _logger.error(f"Invalid image dimensions for {filepath}: {width}x{height}")
                return None

            rgb = img.convert('RGB').resize(
                (self.input_size, self.input_size), Image.Resampling.BICUBIC
            )

        pixels = np.asarray(rgb, dtype=np.float32) / 255.0
        pixels = (pixels - _MEAN) / _STD
        return np.ascontiguousarray(pixels.transpose(2, 0, 1)[np.newaxis, ...], dtype=np.float32)

    def extract(self, filepath: str | Path) -> Optional[np.ndarray]:
        """
        Extract the L2-normalized feature vector of an image.

        Args:
            filepath: Path to the image

        Returns:
            1-D float32 vector, or None if the model is not initialized or
            anything about this file failed (details are logged)
        """
        if not self._initialized or self._session is None:
            _logger.debug(f"Cannot extract features for {filepath}: model not initialized")
            return None

        if not os.path.isfile(filepath):
            _logger.error(f"Image file not found: {filepath}")
            return None

        try:
            tensor = self.preprocess(filepath)
            if tensor is None:
                return None

            with self._run_lock:
                session = self._session
                if session is None:
                    return None
                outputs = session.run(None, {self._input_name: tensor})

            if not outputs or outputs[0] is None:
                _logger.error(f"Empty output from model for {filepath}")
                return None

            features = np.array(outputs[0], dtype=np.float32).reshape(-1)
            if features.size == 0:
                _logger.error(f"Empty output tensor for {filepath} (input {tensor.shape})")
                return None

            normalize_l2(features)
            _logger.debug(f"Extracted {features.size} features from {filepath}")
            return features

        except Exception as e:
            self.last_error = f"Feature extraction failed for {filepath}: {e}"
            _logger.error(self.last_error)
            return None

    def dispose(self) -> None:
        """Release the session. The extractor can be initialized again."""
        with self._init_lock:
            with self._run_lock:
                self._session = None
                self._input_name = None
                self._initialized = False
                self.is_using_gpu = False

    def __enter__(self) -> 'EmbeddingExtractor':
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()


__all__ = [
    'EmbeddingExtractor',
    'resolve_model_path',
    'normalize_l2',
    'cpu_thread_count',
    'CUDA_PROVIDER',
    'CPU_PROVIDER',
]
