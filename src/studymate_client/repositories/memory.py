"""In-memory key-value store implementation."""

from threading import Lock
from typing import Dict, Optional

import structlog

from .base import KeyValueStore

logger = structlog.get_logger()


class InMemoryStore(KeyValueStore):
    """Thread-safe dictionary-backed store, used for tests and guest runs."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._lock = Lock()
        self._values: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value
            logger.debug("store_value_set", key=key)

    def remove(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)
