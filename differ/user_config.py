"""
User configuration management for differ.

Supports configuration from multiple sources (in order of priority):
1. Runtime parameters (highest priority)
2. Environment variables
3. User config file (~/.differ/config.json)
4. Default values from config.py (lowest priority)

Configuration file location: ~/.differ/config.json

Example config.json:
{
    "similarity_threshold": 70,
    "fallback_to_hash": true,
    "use_cache": true,
    "recursive": true,
    "hash_workers": 4,
    "thumbnail_size": 150,
    "thumbnail_cache_size": 500,
    "model_path": null,
    "prefer_gpu": true
}
"""

import json
import os
from pathlib import Path
from typing import Any, Optional
import logging

from .config import (
    DEFAULT_FALLBACK_TO_HASH,
    DEFAULT_THRESHOLD,
    DEFAULT_THUMBNAIL_CACHE_SIZE,
    DEFAULT_THUMBNAIL_SIZE,
    DEFAULT_WORKERS,
    THUMBNAIL_CONCURRENCY,
)

logger = logging.getLogger(__name__)


class UserConfig:
    """
    Manages user configuration from file and environment variables.

    Attributes are lazy-loaded and cached for performance.
    """

    _instance: Optional['UserConfig'] = None
    _config_data: Optional[dict] = None

    def __new__(cls):
        """Singleton pattern to ensure one config instance."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def config_dir(self) -> Path:
        """Get the configuration directory path."""
        env_dir = os.getenv('DIFFER_CONFIG_DIR')
        if env_dir:
            return Path(env_dir)
        return Path.home() / '.differ'

    @property
    def config_file_path(self) -> Path:
        """Get the configuration file path."""
        return self.config_dir / 'config.json'

    def _load_config_file(self) -> dict:
        """Load configuration from JSON file."""
        if not self.config_file_path.exists():
            return {}

        try:
            with open(self.config_file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
                logger.debug(f"Loaded configuration from {self.config_file_path}")
                return data if isinstance(data, dict) else {}
        except Exception as e:
            logger.warning(f"Failed to load config file {self.config_file_path}: {e}")
            return {}

    def _get_config_data(self) -> dict:
        """Get cached config data (lazy loading)."""
        if self._config_data is None:
            self._config_data = self._load_config_file()
        return self._config_data

    def reload(self):
        """Reload configuration from file."""
        self._config_data = None

    def get(self, key: str, default: Any = None, env_var: Optional[str] = None) -> Any:
        """
        Get a configuration value with priority:
        1. Environment variable (if env_var specified)
        2. Config file
        3. Default value

        Args:
            key: Configuration key
            default: Default value if not found
            env_var: Optional environment variable name to check

        Returns:
            Configuration value
        """
        if env_var:
            env_value = os.getenv(env_var)
            if env_value is not None:
                # JSON first so "false" and "85" come back typed
                try:
                    return json.loads(env_value)
                except (json.JSONDecodeError, TypeError):
                    return env_value

        config_data = self._get_config_data()
        if key in config_data:
            return config_data[key]

        return default

    @property
    def similarity_threshold(self) -> float:
        """Minimum similarity score (0-100) for a search match."""
        return self.get(
            'similarity_threshold',
            default=DEFAULT_THRESHOLD,
            env_var='DIFFER_THRESHOLD'
        )

    @property
    def fallback_to_hash(self) -> bool:
        """Use perceptual hashes when no embedding is available."""
        return self.get(
            'fallback_to_hash',
            default=DEFAULT_FALLBACK_TO_HASH,
            env_var='DIFFER_FALLBACK_TO_HASH'
        )

    @property
    def use_cache(self) -> bool:
        """Read and write the per-folder feature cache."""
        return self.get('use_cache', default=True, env_var='DIFFER_USE_CACHE')

    @property
    def recursive(self) -> bool:
        """Include subfolders when scanning."""
        return self.get('recursive', default=True, env_var='DIFFER_RECURSIVE')

    @property
    def hash_workers(self) -> int:
        """Number of parallel workers for perceptual hashing."""
        return self.get(
            'hash_workers',
            default=DEFAULT_WORKERS,
            env_var='DIFFER_WORKERS'
        )

    @property
    def thumbnail_size(self) -> int:
        return self.get(
            'thumbnail_size',
            default=DEFAULT_THUMBNAIL_SIZE,
            env_var='DIFFER_THUMBNAIL_SIZE'
        )

    @property
    def thumbnail_cache_size(self) -> int:
        """Maximum number of decoded thumbnails kept in memory."""
        return self.get(
            'thumbnail_cache_size',
            default=DEFAULT_THUMBNAIL_CACHE_SIZE,
            env_var='DIFFER_THUMBNAIL_CACHE_SIZE'
        )

    @property
    def thumbnail_concurrency(self) -> int:
        return self.get(
            'thumbnail_concurrency',
            default=THUMBNAIL_CONCURRENCY,
            env_var='DIFFER_THUMBNAIL_CONCURRENCY'
        )

    @property
    def model_path(self) -> Optional[str]:
        """Path to the ONNX embedding model; searched for when unset."""
        return self.get('model_path', env_var='DIFFER_MODEL_PATH')

    @property
    def prefer_gpu(self) -> bool:
        """Try CUDA before falling back to CPU."""
        return self.get('prefer_gpu', default=True, env_var='DIFFER_PREFER_GPU')

    def as_dict(self) -> dict:
        """Current effective settings."""
        return {
            'similarity_threshold': self.similarity_threshold,
            'fallback_to_hash': self.fallback_to_hash,
            'use_cache': self.use_cache,
            'recursive': self.recursive,
            'hash_workers': self.hash_workers,
            'thumbnail_size': self.thumbnail_size,
            'thumbnail_cache_size': self.thumbnail_cache_size,
            'thumbnail_concurrency': self.thumbnail_concurrency,
            'model_path': self.model_path,
            'prefer_gpu': self.prefer_gpu,
        }

    def create_example_config(self):
        """Create an example configuration file."""
        self.config_dir.mkdir(parents=True, exist_ok=True)

        example_config = {
            "_comment": "differ user configuration",
            "similarity_threshold": DEFAULT_THRESHOLD,
            "fallback_to_hash": DEFAULT_FALLBACK_TO_HASH,
            "use_cache": True,
            "recursive": True,
            "hash_workers": DEFAULT_WORKERS,
            "thumbnail_size": DEFAULT_THUMBNAIL_SIZE,
            "thumbnail_cache_size": DEFAULT_THUMBNAIL_CACHE_SIZE,
            "model_path": None,
            "prefer_gpu": True,
        }

        try:
            with open(self.config_file_path, 'w', encoding='utf-8') as f:
                json.dump(example_config, f, indent=2)
            logger.info(f"Created example config file at {self.config_file_path}")
            return True
        except Exception as e:
            logger.error(f"Failed to create example config: {e}")
            return False


# Global instance
_user_config = UserConfig()


def get_user_config() -> UserConfig:
    """Get the global UserConfig instance."""
    return _user_config
