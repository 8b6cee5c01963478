"""
Local cache of the last known-good snapshot and the signed-in identity.

Two layers:

1. ``KeyValueStore``: a plain get/set/remove surface over strings.
   ``JsonFileStore`` keeps one file per key in a cache directory
   (default ``~/.local/share/ems-sync``), written atomically.
2. ``LocalCache``: typed access on top of a store. Reads and writes are
   best-effort: a failing backend never crashes the caller, since the
   in-memory state stays authoritative for the running process.

The cache has no transactional semantics; all saves are funnelled through
the reconciler and scheduler, which never run two at once.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import ValidationError

from ems_sync.core.snapshot.models import Identity, Snapshot
from ems_sync.core.snapshot.sanitize import normalize_role, sanitize, try_coerce_id

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "ems_data"
SESSION_KEY = "ems_user"


@runtime_checkable
class KeyValueStore(Protocol):
    """
    Durable string key-value surface.

    Implementations may raise any exception on failure (OSError from a
    file, sqlite3.Error from a database and so on). ``LocalCache`` logs and
    absorbs all of them; none reach the sync engine.
    """

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


def get_default_cache_dir() -> Path:
    """
    Get the default cache directory.

    Returns:
        $XDG_DATA_HOME/ems-sync (defaults to ~/.local/share/ems-sync)
    """
    if xdg_data := os.environ.get("XDG_DATA_HOME"):
        return Path(xdg_data) / "ems-sync"
    return Path.home() / ".local" / "share" / "ems-sync"


class JsonFileStore:
    """
    File-backed ``KeyValueStore``: each key lives in ``<directory>/<key>.json``.

    Example:
        >>> store = JsonFileStore(Path("/tmp/ems-cache"))
        >>> store.set("ems_user", '{"User_ID": 7}')
        >>> store.get("ems_user")
        '{"User_ID": 7}'
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> str | None:
        path = self.path_for(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        """Write atomically via a temp file in the same directory."""
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(key)
        temp_path = path.with_suffix(".tmp")
        try:
            temp_path.write_text(value, encoding="utf-8")
            temp_path.replace(path)
        except OSError:
            if temp_path.exists():
                temp_path.unlink()
            raise

    def remove(self, key: str) -> None:
        self.path_for(key).unlink(missing_ok=True)


class LocalCache:
    """
    Typed, best-effort persistence of the snapshot and session identity.

    Example:
        >>> cache = LocalCache(JsonFileStore(get_default_cache_dir()))
        >>> snapshot = cache.load()          # never missing a table
        >>> stored = cache.save(snapshot)    # never raises
        >>> cache.load_session() is None
        True
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    def load(self) -> Snapshot:
        """
        Load the cached snapshot.

        The cached document goes through the sanitizer, so an old or
        partially written cache still yields every table.

        Returns:
            Cached snapshot, or the empty snapshot if none is usable
        """
        try:
            text = self.store.get(SNAPSHOT_KEY)
        except Exception as e:
            logger.warning("Failed to read cached snapshot: %s", e)
            return Snapshot()
        if not text:
            return Snapshot()
        try:
            return sanitize(json.loads(text))
        except ValueError as e:
            logger.warning("Cached snapshot is corrupt, ignoring it: %s", e)
            return Snapshot()

    def save(self, snapshot: Snapshot) -> bool:
        """
        Persist a snapshot.

        Returns:
            True if the snapshot was stored, False if persistence failed
        """
        try:
            self.store.set(SNAPSHOT_KEY, snapshot.model_dump_json(by_alias=True))
        except Exception as e:
            logger.warning("Failed to cache snapshot: %s", e)
            return False
        return True

    def load_session(self) -> Identity | None:
        """
        Load the signed-in identity.

        ``User_ID`` is coerced to an integer; an identity without a usable
        id is treated as signed out.
        """
        try:
            text = self.store.get(SESSION_KEY)
        except Exception as e:
            logger.warning("Failed to read cached session: %s", e)
            return None
        if not text:
            return None
        try:
            data = json.loads(text)
        except ValueError as e:
            logger.warning("Cached session is corrupt, ignoring it: %s", e)
            return None
        if not isinstance(data, dict):
            return None

        user_id = try_coerce_id(data.get("User_ID"))
        if user_id is None:
            logger.warning("Cached session has no usable User_ID, ignoring it")
            return None
        data["User_ID"] = user_id
        data["User_Type"] = normalize_role(data.get("User_Type"))
        try:
            return Identity.model_validate(data)
        except ValidationError as e:
            logger.warning("Cached session is invalid, ignoring it: %s", e)
            return None

    def save_session(self, identity: Identity) -> bool:
        try:
            self.store.set(SESSION_KEY, identity.model_dump_json(by_alias=True))
        except Exception as e:
            logger.warning("Failed to cache session: %s", e)
            return False
        return True

    def clear_session(self) -> bool:
        try:
            self.store.remove(SESSION_KEY)
        except Exception as e:
            logger.warning("Failed to clear cached session: %s", e)
            return False
        return True
