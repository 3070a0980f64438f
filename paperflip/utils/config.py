"""
Configuration loader for the paperflip reader.
"""

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


class Config:
    """Configuration manager for segmentation, playback and storage."""

    _instance: Optional["Config"] = None
    _config: Dict[str, Any] = {}

    def __new__(cls) -> "Config":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if not self._config:
            self._load_config()

    def _get_project_root(self) -> Path:
        """Get the project root directory."""
        # Navigate up from paperflip/utils to project root
        current = Path(__file__).resolve()
        return current.parent.parent.parent

    def _load_config(self) -> None:
        """Load configuration from YAML file, layered over the defaults."""
        env_path = os.environ.get("PAPERFLIP_CONFIG")
        if env_path:
            config_path = Path(env_path)
        else:
            config_path = self._get_project_root() / "config" / "settings.yaml"

        self._config = self._get_defaults()

        if config_path.exists():
            with open(config_path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
            _merge(self._config, loaded)

    def reload(self) -> None:
        """Re-read the configuration file."""
        self._config = {}
        self._load_config()

    def _get_defaults(self) -> Dict[str, Any]:
        """Return default configuration."""
        return {
            "segmenter": {
                "max_segment_length": 1000,
                "sentence_finder": "auto",
                "locale": "en_US",
            },
            "playback": {
                "watchdog_delay": 2.0,
                "debounce_delay": 1.0,
                "word_count": 8,
            },
            "narration": {
                "driver": None,
                "base_rate": 200,
                "pump_interval": 0.05,
            },
            "paths": {
                "data": "data",
            },
        }

    def get(self, *keys: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Example:
            config.get("playback", "debounce_delay") -> 1.0
        """
        value = self._config
        for key in keys:
            if isinstance(value, dict):
                value = value.get(key)
            else:
                return default
            if value is None:
                return default
        return value

    def get_path(self, key: str) -> Path:
        """Get a path configuration as absolute Path."""
        configured = Path(self.get("paths", key, default=key)).expanduser()
        if configured.is_absolute():
            return configured
        return self._get_project_root() / configured

    @property
    def project_root(self) -> Path:
        """Get the project root directory."""
        return self._get_project_root()

    @property
    def data_dir(self) -> Path:
        """Directory holding the document and settings collections."""
        env_dir = os.environ.get("PAPERFLIP_DATA_DIR")
        if env_dir:
            return Path(env_dir)
        return self.get_path("data")

    @property
    def max_segment_length(self) -> int:
        return self.get("segmenter", "max_segment_length", default=1000)

    @property
    def sentence_finder(self) -> str:
        """Sentence boundary finder: auto, icu or regex."""
        return self.get("segmenter", "sentence_finder", default="auto")

    @property
    def locale(self) -> str:
        return self.get("segmenter", "locale", default="en_US")

    @property
    def watchdog_delay(self) -> float:
        """Seconds to wait for a word boundary before falling back to dictation."""
        return self.get("playback", "watchdog_delay", default=2.0)

    @property
    def debounce_delay(self) -> float:
        """Seconds of inactivity before a progress write."""
        return self.get("playback", "debounce_delay", default=1.0)

    @property
    def word_count(self) -> int:
        return self.get("playback", "word_count", default=8)

    @property
    def engine_driver(self) -> Optional[str]:
        return self.get("narration", "driver")

    @property
    def engine_base_rate(self) -> int:
        """Words per minute at playback rate 1.0."""
        return self.get("narration", "base_rate", default=200)

    @property
    def pump_interval(self) -> float:
        return self.get("narration", "pump_interval", default=0.05)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = copy.deepcopy(value)


# Singleton instance
config = Config()
