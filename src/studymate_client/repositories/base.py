"""Base key-value store interface."""

from abc import ABC, abstractmethod
from typing import Optional


class KeyValueStore(ABC):
    """Abstract persistent store for small client-side values."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None when the key is absent."""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a value under a key, overwriting any previous one."""
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete a key. Missing keys are ignored."""
        pass
