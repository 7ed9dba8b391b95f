import dataclasses
import json
import logging
import threading
from pathlib import Path

from schemas.models import AppConfig
from core.errors import StorageError, FormatError

logger = logging.getLogger(__name__)


def load_config(path: Path) -> AppConfig:
    if not path.exists():
        return AppConfig()
    try:
        contents = path.read_text(encoding="utf-8")
    except OSError as e:
        raise StorageError(f"failed to read {path.name}: {e}") from e
    if not contents.strip():
        return AppConfig()
    try:
        return AppConfig.from_dict(json.loads(contents))
    except (ValueError, TypeError) as e:
        raise FormatError(f"invalid {path.name}: {e}") from e


def save_config(path: Path, cfg: AppConfig):
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(cfg.to_dict(), indent=2), encoding="utf-8")
    except OSError as e:
        raise StorageError(f"failed to save {path.name}: {e}") from e


class ConfigStore:
    """Holds the live AppConfig. Readers get a snapshot, never the live object."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()
        self._config = load_config(path)

    def snapshot(self) -> AppConfig:
        with self._lock:
            return dataclasses.replace(self._config)

    def update(self, cfg: AppConfig) -> AppConfig:
        with self._lock:
            self._config = dataclasses.replace(cfg)
            save_config(self.path, self._config)
            logger.info("Configuration saved")
            return dataclasses.replace(self._config)

    def initialize(self, cfg: AppConfig) -> AppConfig:
        return self.update(dataclasses.replace(cfg, initialized=True))

    def is_initialized(self) -> bool:
        with self._lock:
            return self._config.initialized
