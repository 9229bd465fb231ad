"""MemoryStore: dict-backed key-value store for tests and ephemeral sessions."""

from __future__ import annotations

from ..core.kv_store import KeyValueStore
from ..types import StorageError


class MemoryStore(KeyValueStore):
    """In-process store. ``quota_bytes`` emulates a full browser store."""

    def __init__(self, initial: dict[str, str] | None = None, quota_bytes: int | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self.quota_bytes = quota_bytes

    def _size_with(self, key: str, value: str) -> int:
        total = len(key) + len(value)
        for k, v in self._data.items():
            if k != key:
                total += len(k) + len(v)
        return total

    def get_item(self, key: str) -> str | None:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self.quota_bytes is not None and self._size_with(key, value) > self.quota_bytes:
            raise StorageError(f"Quota exceeded writing '{key}' ({self.quota_bytes} bytes)")
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)

    def clear(self) -> None:
        self._data.clear()
