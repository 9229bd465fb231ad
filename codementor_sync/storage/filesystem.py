"""FilesystemStore: one JSON document holding every key, rewritten atomically."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from ..core.kv_store import KeyValueStore
from ..types import StorageError

logger = logging.getLogger(__name__)

INDEX_FILENAME = "_storage.json"


class FilesystemStore(KeyValueStore):
    """Store keys in ``<root>/_storage.json``.

    Every read goes to disk, and every mutation re-reads the document,
    applies the change and rewrites it through a temp file + ``os.replace``.
    Other stores on the same root see each other's writes, and a crash
    mid-write leaves the previous document intact.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self._path = self.root / INDEX_FILENAME
        self.root.mkdir(parents=True, exist_ok=True)

    def _read(self) -> dict[str, str]:
        if not self._path.is_file():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Unreadable storage file %s, treating as empty: %s", self._path, e)
            return {}
        if not isinstance(raw, dict):
            logger.warning("Storage file %s is not an object, treating as empty", self._path)
            return {}
        return {str(k): v for k, v in raw.items() if isinstance(v, str)}

    def _write(self, data: dict[str, str]) -> None:
        tmp = None
        try:
            fd, tmp = tempfile.mkstemp(dir=self.root, prefix=".storage-", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp, self._path)
        except OSError as e:
            if tmp is not None and os.path.exists(tmp):
                os.unlink(tmp)
            raise StorageError(f"Failed to write {self._path}: {e}") from e

    def get_item(self, key: str) -> str | None:
        return self._read().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove_item(self, key: str) -> None:
        data = self._read()
        if key not in data:
            return
        del data[key]
        self._write(data)

    def keys(self) -> list[str]:
        return sorted(self._read())

    def clear(self) -> None:
        self._write({})
