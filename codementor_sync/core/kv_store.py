"""KeyValueStore abstract base class: the local-storage seam."""

from __future__ import annotations

from abc import ABC, abstractmethod


class KeyValueStore(ABC):
    """Pluggable string-to-string storage, one instance per client profile.

    Mirrors browser local storage: values are opaque strings (callers
    serialize JSON themselves), a missing key reads as ``None``, and
    removing a missing key is not an error. Backends raise
    ``StorageError`` when a read or write cannot be completed.
    """

    @abstractmethod
    def get_item(self, key: str) -> str | None:
        """Return the stored value or None if absent."""

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Remove a key. No-op if absent."""

    @abstractmethod
    def keys(self) -> list[str]:
        """List all stored keys, sorted."""

    def clear(self) -> None:
        """Remove every key."""
        for key in self.keys():
            self.remove_item(key)

    def __contains__(self, key: str) -> bool:
        return self.get_item(key) is not None

    def close(self) -> None:
        """Release backend resources."""
