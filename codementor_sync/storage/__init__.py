from ..core.kv_store import KeyValueStore
from ..types import StorageConfig
from .filesystem import FilesystemStore
from .memory import MemoryStore
from .sqlite import SQLiteStore


def open_store(config: StorageConfig) -> KeyValueStore:
    """Build the backend named by ``config.backend``."""
    if config.backend == "memory":
        return MemoryStore()
    if config.backend == "sqlite":
        return SQLiteStore(db_path=config.sqlite_path)
    if config.backend == "filesystem":
        return FilesystemStore(root=config.root)
    raise ValueError(f"Unknown storage backend: {config.backend}")


__all__ = ["FilesystemStore", "MemoryStore", "SQLiteStore", "open_store"]
