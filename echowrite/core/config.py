"""
Application configuration manager.
Stores settings in a JSON file under Application Support.
"""

import json
import logging
from pathlib import Path

from echowrite.core.constants import (
    CONFIG_PATH, DEFAULT_WATCH_ROOT, CHUNK_SEC, SCAN_DEBOUNCE_SEC,
    DEEPGRAM_MODEL, DEEPGRAM_LANGUAGE, SAMPLE_RATE,
)

# Validation bounds
_CHUNK_SEC_MIN = 1
_CHUNK_SEC_MAX = 600          # 10 minutes
_DEBOUNCE_MIN = 0.0
_DEBOUNCE_MAX = 10.0

logger = logging.getLogger(__name__)

_DEFAULTS = {
    'watch_root': str(DEFAULT_WATCH_ROOT),
    'chunk_sec': CHUNK_SEC,
    'scan_debounce_sec': SCAN_DEBOUNCE_SEC,
    'deepgram_model': DEEPGRAM_MODEL,
    'deepgram_language': DEEPGRAM_LANGUAGE,
}


class AppConfig:
    """Manages application configuration stored as JSON."""

    def __init__(self, config_path: Path | None = None):
        self.path = config_path or CONFIG_PATH
        self._data: dict = {}
        self.load()

    def load(self):
        """Load config from disk, merging with defaults."""
        self._data = dict(_DEFAULTS)
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
                for key, value in saved.items():
                    self._data[key] = self._validate(key, value)
            except (OSError, ValueError, AttributeError) as e:
                logger.warning("Failed to load config: %s", e)

    def save(self):
        """Persist config to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(self._data, f, indent=2)

    def get(self, key: str, default=None):
        return self._data.get(key, default)

    def set(self, key: str, value):
        value = self._validate(key, value)
        self._data[key] = value
        self.save()

    def override(self, key: str, value):
        """Use a value for this session only; nothing is written to disk."""
        self._data[key] = self._validate(key, value)

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key == 'chunk_sec':
            try:
                value = int(value)
            except (TypeError, ValueError):
                logger.warning("Invalid chunk_sec %r, using default", value)
                return CHUNK_SEC
            return max(_CHUNK_SEC_MIN, min(_CHUNK_SEC_MAX, value))

        if key == 'scan_debounce_sec':
            try:
                value = float(value)
            except (TypeError, ValueError):
                logger.warning("Invalid scan_debounce_sec %r, using default", value)
                return SCAN_DEBOUNCE_SEC
            return max(_DEBOUNCE_MIN, min(_DEBOUNCE_MAX, value))

        if key == 'watch_root':
            return str(Path(str(value)).expanduser())

        return value

    def as_dict(self) -> dict:
        return dict(self._data)

    @property
    def watch_root(self) -> Path:
        return Path(self._data.get('watch_root', str(DEFAULT_WATCH_ROOT)))

    @watch_root.setter
    def watch_root(self, value: str | Path):
        self.set('watch_root', str(value))

    @property
    def chunk_samples(self) -> int:
        return int(self._data.get('chunk_sec', CHUNK_SEC)) * SAMPLE_RATE
