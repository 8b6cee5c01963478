"""Local persistence of the snapshot and session identity."""

from ems_sync.core.cache.store import (
    SESSION_KEY,
    SNAPSHOT_KEY,
    JsonFileStore,
    KeyValueStore,
    LocalCache,
    get_default_cache_dir,
)

__all__ = [
    "SESSION_KEY",
    "SNAPSHOT_KEY",
    "JsonFileStore",
    "KeyValueStore",
    "LocalCache",
    "get_default_cache_dir",
]
