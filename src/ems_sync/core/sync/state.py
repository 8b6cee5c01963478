"""
Process-scoped application state.

``AppState`` owns the single in-memory snapshot, the session identity and
the sync status flags. It is passed explicitly to the reconciler and the
scheduler; they are the only code that replaces the snapshot, and every
replacement is mirrored to the local cache.

Lifecycle:
    - ``AppState.from_cache(cache)`` on startup (instant, possibly stale data)
    - ``logout()`` clears the session; ``teardown()`` drops everything
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from ems_sync.core.cache.store import LocalCache
from ems_sync.core.errors import SyncError, SyncErrorKind
from ems_sync.core.snapshot.models import Identity, Snapshot
from ems_sync.core.sync.models import SyncIndicator

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[Snapshot], None]


@dataclass
class AppState:
    """
    The shared mutable state of a running client.

    Attributes:
        cache: Local cache mirroring ``snapshot`` and ``identity``
        snapshot: Current snapshot (optimistic while a write is in flight)
        identity: Signed-in user, None when signed out
        offline: True when no endpoint is configured
        is_syncing: A foreground refresh is running (indicator visible)
        write_in_flight: The single-write guard
        refresh_in_flight: A refresh of any kind is running
        sync_error: Whether the last operation failed
        last_error: Message of the most recent failure
        last_error_kind: Kind of the most recent failure
        last_synced_at: Time of the last confirmed sync
        write_generation: Incremented whenever a write starts
    """

    cache: LocalCache
    snapshot: Snapshot = field(default_factory=Snapshot)
    identity: Identity | None = None
    offline: bool = False
    is_syncing: bool = False
    write_in_flight: bool = False
    refresh_in_flight: bool = False
    sync_error: bool = False
    last_error: str | None = None
    last_error_kind: SyncErrorKind | None = None
    last_synced_at: datetime | None = None
    write_generation: int = 0
    listeners: list[SnapshotListener] = field(default_factory=list)

    @classmethod
    def from_cache(cls, cache: LocalCache, *, offline: bool = False) -> AppState:
        """Initialize from whatever the cache holds."""
        state = cls(cache=cache, offline=offline)
        state.snapshot = cache.load()
        state.identity = cache.load_session()
        logger.debug(
            "Loaded cached state: %s, identity=%s",
            state.snapshot.counts(),
            state.identity.user_id if state.identity else None,
        )
        return state

    @property
    def indicator(self) -> SyncIndicator:
        if self.offline:
            return SyncIndicator.OFFLINE
        if self.is_syncing or self.write_in_flight:
            return SyncIndicator.SYNCING
        if self.sync_error:
            return SyncIndicator.ERROR
        return SyncIndicator.ONLINE

    def commit(self, snapshot: Snapshot) -> bool:
        """
        Replace the snapshot, save it to the cache and notify listeners.

        Returns:
            Whether the cache write succeeded
        """
        self.snapshot = snapshot
        stored = self.cache.save(snapshot)
        for listener in list(self.listeners):
            listener(snapshot)
        return stored

    def begin_write(self) -> bool:
        """
        Take the write guard.

        Returns:
            False if a write is already in flight
        """
        if self.write_in_flight:
            return False
        self.write_in_flight = True
        self.write_generation += 1
        return True

    def end_write(self) -> None:
        self.write_in_flight = False

    def record_error(self, error: SyncError) -> None:
        """Keep only the latest failure."""
        self.sync_error = True
        self.last_error = error.message
        self.last_error_kind = error.kind

    def clear_error(self) -> None:
        self.sync_error = False
        self.last_error = None
        self.last_error_kind = None

    def dismiss_error(self) -> None:
        """Hide the error indicator (user acknowledged it)."""
        self.clear_error()

    def mark_synced(self, when: datetime) -> None:
        self.last_synced_at = when
        self.clear_error()

    def subscribe(self, listener: SnapshotListener) -> None:
        self.listeners.append(listener)

    def unsubscribe(self, listener: SnapshotListener) -> None:
        if listener in self.listeners:
            self.listeners.remove(listener)

    def login(self, identity: Identity) -> None:
        self.identity = identity
        self.cache.save_session(identity)

    def logout(self) -> None:
        self.identity = None
        self.cache.clear_session()

    def teardown(self) -> None:
        """Forget the session and all in-memory data. The cached snapshot stays."""
        self.logout()
        self.snapshot = Snapshot()
        self.listeners.clear()
        self.clear_error()
        self.last_synced_at = None


__all__ = ["AppState", "SnapshotListener"]
