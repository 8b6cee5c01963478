"""
Periodic snapshot refresh.

``SyncScheduler`` pulls the authoritative snapshot from the endpoint:
once in the foreground on ``start()``, then in the background every
``interval_seconds`` until ``stop()``.

A refresh never clobbers an optimistic write: it is skipped while a write is
in flight, and a fetch that was already running when a write started is
discarded on arrival (``AppState.write_generation`` changed).
"""

from __future__ import annotations

import asyncio
import logging

from ems_sync.core.errors import SyncError
from ems_sync.core.remote.client import RemoteStore
from ems_sync.core.snapshot.sanitize import sanitize
from ems_sync.core.sync.clock import Clock, SystemClock
from ems_sync.core.sync.models import RefreshResult
from ems_sync.core.sync.state import AppState, SnapshotListener
from ems_sync.core.views.integrity import find_dangling_references

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL = 300.0


class SyncScheduler:
    """
    Runs refreshes on demand and on a fixed interval.

    Example:
        >>> scheduler = SyncScheduler(state, remote)
        >>> first = await scheduler.start(interval_seconds=60)
        >>> first.success
        True
        >>> await scheduler.stop()
    """

    def __init__(
        self,
        state: AppState,
        remote: RemoteStore | None,
        *,
        clock: Clock | None = None,
        interval_seconds: float = DEFAULT_REFRESH_INTERVAL,
    ) -> None:
        self.state = state
        self.remote = remote
        self.clock = clock or SystemClock()
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self._listener: SnapshotListener | None = None
        self._refresh_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(
        self,
        on_snapshot: SnapshotListener | None = None,
        interval_seconds: float | None = None,
    ) -> RefreshResult:
        """
        Refresh once in the foreground, then keep refreshing in the background.

        Args:
            on_snapshot: Called with every snapshot that replaces the state
            interval_seconds: Overrides the configured interval

        Returns:
            Result of the initial foreground refresh
        """
        if self.running:
            raise RuntimeError("Scheduler already started")
        if interval_seconds is not None:
            self.interval_seconds = interval_seconds
        if on_snapshot is not None:
            self._listener = on_snapshot
            self.state.subscribe(on_snapshot)

        result = await self.refresh_now(show_indicator=True)
        self._task = asyncio.create_task(self._run())
        logger.info("Background refresh every %gs", self.interval_seconds)
        return result

    async def stop(self) -> None:
        """Cancel the background loop. No refresh fires after this returns."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._listener is not None:
            self.state.unsubscribe(self._listener)
            self._listener = None

    async def _run(self) -> None:
        while True:
            await self.clock.sleep(self.interval_seconds)
            try:
                result = await self.refresh_now(show_indicator=False)
            except Exception:
                logger.exception("Background refresh crashed")
                continue
            logger.debug("Background tick: %s", result.summary())

    async def refresh_now(self, show_indicator: bool = True) -> RefreshResult:
        """
        Pull and apply the authoritative snapshot, unless busy.

        Skipped (not queued) while a write or another refresh is running.
        Never raises for sync failures: the previous state is kept and the
        error recorded.
        """
        if self.remote is None:
            return RefreshResult(success=False, offline=True)
        if self.state.write_in_flight:
            return RefreshResult(success=False, skipped=True, message="write in progress")
        if self._refresh_lock.locked():
            return RefreshResult(success=False, skipped=True, message="refresh in progress")
        async with self._refresh_lock:
            return await self._refresh(show_indicator)

    async def refresh_when_idle(self, show_indicator: bool = False) -> RefreshResult:
        """
        Refresh after any running refresh finishes.

        Used after a failed or unconfirmed write: a refresh that started
        before the write is discarded, so this one must not be skipped.
        """
        if self.remote is None:
            return RefreshResult(success=False, offline=True)
        async with self._refresh_lock:
            if self.state.write_in_flight:
                return RefreshResult(success=False, skipped=True, message="write in progress")
            return await self._refresh(show_indicator)

    async def _refresh(self, show_indicator: bool) -> RefreshResult:
        assert self.remote is not None
        generation = self.state.write_generation
        self.state.refresh_in_flight = True
        if show_indicator:
            self.state.is_syncing = True
        try:
            raw = await self.remote.fetch_snapshot()
        except SyncError as e:
            logger.warning("Refresh failed (%s): %s", e.kind.value, e.message)
            self.state.record_error(e)
            return RefreshResult(success=False, error_kind=e.kind, message=e.message)
        finally:
            self.state.refresh_in_flight = False
            if show_indicator:
                self.state.is_syncing = False

        if self.state.write_in_flight or self.state.write_generation != generation:
            logger.info("Discarding fetched snapshot: a write started during the fetch")
            return RefreshResult(success=False, skipped=True, message="write started during fetch")

        snapshot = sanitize(raw)
        self.state.commit(snapshot)
        now = self.clock.now()
        self.state.mark_synced(now)

        dangling = find_dangling_references(snapshot)
        if dangling:
            logger.info("Snapshot has %d dangling references", len(dangling))
            for ref in dangling:
                logger.debug("Dangling reference: %s", ref)
        counts = snapshot.counts()
        logger.info("Refreshed snapshot: %s", counts)
        return RefreshResult(
            success=True,
            counts=counts,
            dangling_references=len(dangling),
            synced_at=now,
        )


__all__ = ["DEFAULT_REFRESH_INTERVAL", "SyncScheduler"]
