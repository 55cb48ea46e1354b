"""
Pytest configuration and shared fixtures for test suite.
"""

import pytest
import tempfile
import shutil
import threading
import time
from pathlib import Path
from types import SimpleNamespace

import numpy as np
from PIL import Image


def make_pattern(seed: int, blocks: int = 16) -> np.ndarray:
    """Random block pattern in the 20..235 range (no clipping when shifted)."""
    rng = np.random.default_rng(seed)
    return rng.integers(20, 236, size=(blocks, blocks, 3), dtype=np.int16)


def save_pattern(path, pattern: np.ndarray, shift: int = 0, size: int = 64) -> str:
    """Upscale a block pattern to ``size`` pixels and save it losslessly."""
    pixels = np.clip(pattern + shift, 0, 255).astype(np.uint8)
    img = Image.fromarray(pixels, 'RGB').resize((size, size), Image.Resampling.NEAREST)
    img.save(path, 'PNG')
    return str(path)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    tmpdir = tempfile.mkdtemp()
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def sample_images(temp_dir):
    """
    Create a set of sample images for testing.

    Returns:
        dict with paths to:
        - base: patterned source image
        - brighter: the same pattern shifted by +8 (near duplicate)
        - resized: the same pattern at 128x128 (near duplicate)
        - other1, other2: unrelated patterns
        - jpeg: an unrelated pattern saved as JPEG
        - corrupted: a .png that is not an image
        - notes: a .txt file (unsupported extension)
    """
    images = {}
    base = make_pattern(1)

    images['base'] = save_pattern(temp_dir / "base.png", base)
    images['brighter'] = save_pattern(temp_dir / "brighter.png", base, shift=8)
    images['resized'] = save_pattern(temp_dir / "resized.png", base, size=128)
    images['other1'] = save_pattern(temp_dir / "other1.png", make_pattern(2))
    images['other2'] = save_pattern(temp_dir / "other2.png", make_pattern(3))

    jpeg = Image.fromarray(make_pattern(4).astype(np.uint8), 'RGB').resize((64, 64))
    jpeg_path = temp_dir / "photo.jpg"
    jpeg.save(jpeg_path, 'JPEG', quality=95)
    images['jpeg'] = str(jpeg_path)

    corrupted = temp_dir / "corrupted.png"
    corrupted.write_bytes(b"not an image")
    images['corrupted'] = str(corrupted)

    notes = temp_dir / "notes.txt"
    notes.write_text("not an image")
    images['notes'] = str(notes)

    return images


@pytest.fixture
def similarity_folder(temp_dir):
    """
    Folder of 10 images: a source, 3 near duplicates of it, 6 unrelated.

    Returns:
        (folder, source path, set of near-duplicate paths)
    """
    folder = temp_dir / "photos"
    folder.mkdir()
    base = make_pattern(100)

    source = save_pattern(folder / "img_00_source.png", base)
    near = {
        save_pattern(folder / "img_01_near.png", base, shift=4),
        save_pattern(folder / "img_02_near.png", base, shift=8),
        save_pattern(folder / "img_03_near.png", base, shift=-6),
    }
    for i in range(6):
        save_pattern(folder / f"img_{i + 4:02d}_other.png", make_pattern(200 + i))

    return folder, source, near


@pytest.fixture
def temp_cache_db(temp_dir):
    """Create a temporary database file for cache tests."""
    db_path = temp_dir / "test_cache.db"
    return str(db_path)


class PixelEmbeddingExtractor:
    """
    Stand-in for the ONNX extractor.

    Embeds an image as its mean-centred 16x16 grayscale thumbnail, so near
    duplicates score close to 100 and unrelated patterns close to 50.
    """

    def __init__(self, available: bool = True):
        self.available = available
        self.is_using_gpu = False
        self.last_error = None
        self.calls = []
        self.disposed = False
        self.initialize_calls = 0
        self._lock = threading.Lock()

    def initialize(self) -> bool:
        self.initialize_calls += 1
        if not self.available:
            self.last_error = "Model file not found: model_q4.onnx"
        return self.available

    def extract(self, filepath):
        with self._lock:
            self.calls.append(str(filepath))
        try:
            with Image.open(filepath) as img:
                gray = img.convert('L').resize((16, 16), Image.Resampling.BILINEAR)
        except Exception:
            return None
        vector = np.asarray(gray, dtype=np.float32).reshape(-1)
        vector -= vector.mean()
        norm = np.linalg.norm(vector)
        if norm == 0:
            return None
        return (vector / norm).astype(np.float32)

    def dispose(self):
        self.disposed = True


class BlockingExtractor(PixelEmbeddingExtractor):
    """Extractor whose calls for one folder wait until ``release`` is set."""

    def __init__(self, block_folder: str):
        super().__init__()
        self.block_folder = str(block_folder)
        self.entered = threading.Event()
        self.release = threading.Event()

    def extract(self, filepath):
        if str(filepath).startswith(self.block_folder):
            self.entered.set()
            self.release.wait(10)
        return super().extract(filepath)


@pytest.fixture
def pixel_extractor():
    return PixelEmbeddingExtractor()


@pytest.fixture
def unavailable_extractor():
    return PixelEmbeddingExtractor(available=False)


class FakeSession:
    """
    Minimal onnxruntime.InferenceSession replacement.

    The output is the input tensor average-pooled to 8x8 per channel, so it
    depends on the image. Tracks how many runs are in flight at once.
    """

    def __init__(self, providers, input_shape=(1, 3, 32, 32), delay: float = 0.0,
                 output=None, fail_with=None):
        self._providers = list(providers)
        self._input_shape = list(input_shape)
        self.delay = delay
        self.output = output
        self.fail_with = fail_with
        self.in_flight = 0
        self.max_in_flight = 0
        self.runs = 0
        self._counter_lock = threading.Lock()

    def get_providers(self):
        return self._providers

    def get_inputs(self):
        return [SimpleNamespace(name='pixel_values', shape=self._input_shape)]

    def run(self, output_names, feed):
        with self._counter_lock:
            self.in_flight += 1
            self.runs += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.fail_with is not None:
                raise self.fail_with
            if self.delay:
                time.sleep(self.delay)
            if self.output is not None:
                return self.output
            tensor = feed['pixel_values']
            _, channels, height, width = tensor.shape
            pooled = tensor.reshape(1, channels, 8, height // 8, 8, width // 8).mean(axis=(3, 5))
            return [pooled.reshape(1, -1)]
        finally:
            with self._counter_lock:
                self.in_flight -= 1


class FakeOrt:
    """
    Namespace standing in for the onnxruntime module.

    Args:
        providers: What get_available_providers reports
        gpu_active_provider: Provider a CUDA session reports as active
        cpu_fails: Make CPU session creation raise
        session_kwargs: Passed to every FakeSession
    """

    GraphOptimizationLevel = SimpleNamespace(ORT_ENABLE_ALL=99)

    class SessionOptions:
        pass

    def __init__(self, providers=('CPUExecutionProvider',), gpu_active_provider='CUDAExecutionProvider',
                 cpu_fails=False, **session_kwargs):
        self.providers = list(providers)
        self.gpu_active_provider = gpu_active_provider
        self.cpu_fails = cpu_fails
        self.session_kwargs = session_kwargs
        self.created = []

    def get_available_providers(self):
        return self.providers

    def InferenceSession(self, model_path, sess_options=None, providers=None):
        requested = list(providers or [])
        if requested == ['CPUExecutionProvider'] and self.cpu_fails:
            raise RuntimeError("cannot create CPU session")
        if requested == ['CUDAExecutionProvider']:
            active = [self.gpu_active_provider]
        else:
            active = requested
        session = FakeSession(active, **self.session_kwargs)
        self.created.append((requested, sess_options, session))
        return session


@pytest.fixture
def model_file(temp_dir):
    """A placeholder model file (the fake runtime never reads it)."""
    path = temp_dir / "model_q4.onnx"
    path.write_bytes(b"onnx")
    return str(path)


@pytest.fixture
def fake_ort(monkeypatch):
    """
    Install a FakeOrt into the embedding module.

    Returns a factory; call it with FakeOrt arguments to replace the default.
    """
    from differ.features import embedding as embedding_module

    def install(**kwargs):
        fake = FakeOrt(**kwargs)
        monkeypatch.setattr(embedding_module, 'ort', fake)
        monkeypatch.setattr(embedding_module, 'HAS_ONNXRUNTIME', True)
        return fake

    install()
    return install
