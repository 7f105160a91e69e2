"""JSON-file key-value store implementation."""

import json
import os
from pathlib import Path
from threading import Lock
from typing import Dict, Optional, Union

import structlog

from .base import KeyValueStore

logger = structlog.get_logger()


class JsonFileStore(KeyValueStore):
    """Persists values as a flat JSON object in a single file."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self._lock = Lock()
        self._values: Dict[str, str] = self._read()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("state_file_unreadable", path=str(self.path), error=str(e))
            return {}
        if not isinstance(data, dict):
            logger.warning("state_file_invalid", path=str(self.path))
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(self._values, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value
            self._write()

    def remove(self, key: str) -> None:
        with self._lock:
            if self._values.pop(key, None) is not None:
                self._write()
