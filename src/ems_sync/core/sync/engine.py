"""
SyncEngine: the one object collaborators talk to.

It wires the cache, the remote client, the scheduler and the reconciler
around a shared ``AppState`` and offers entity-level helpers that compute
the optimistic snapshot for the caller.

Example:
    >>> async with SyncEngine.from_config() as engine:
    ...     await engine.start()
    ...     result = await engine.upsert(Post(post_name="Clerk"))
    ...     print(result.summary())
    upsertPost succeeded, id 12
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from ems_sync.core.cache.store import JsonFileStore, LocalCache, get_default_cache_dir
from ems_sync.core.config.loader import load_config
from ems_sync.core.config.models import SyncConfig
from ems_sync.core.ids.allocator import allocate_local_id, allocate_optimistic_id, is_placeholder
from ems_sync.core.remote.client import RemoteStore
from ems_sync.core.snapshot.models import (
    Employee,
    EntityAction,
    EntityKind,
    Identity,
    Post,
    Record,
    Snapshot,
    User,
)
from ems_sync.core.snapshot.sanitize import try_coerce_id
from ems_sync.core.sync.clock import Clock, SystemClock
from ems_sync.core.sync.models import RefreshResult, SyncIndicator, WriteResult
from ems_sync.core.sync.reconcile import Reconciler
from ems_sync.core.sync.scheduler import DEFAULT_REFRESH_INTERVAL, SyncScheduler
from ems_sync.core.sync.state import AppState, SnapshotListener
from ems_sync.core.views.integrity import DanglingReference, find_dangling_references
from ems_sync.core.views.projector import offices_in_department, project_employees, project_posts

logger = logging.getLogger(__name__)


class SyncEngine:
    """
    Facade over state, scheduler and reconciler.

    Args:
        state: Shared application state
        remote: Endpoint client, None to run offline
        clock: Time source (injectable for tests)
        interval_seconds: Background refresh interval
    """

    def __init__(
        self,
        state: AppState,
        remote: RemoteStore | None = None,
        *,
        clock: Clock | None = None,
        interval_seconds: float = DEFAULT_REFRESH_INTERVAL,
    ) -> None:
        self.state = state
        self.remote = remote
        self.clock = clock or SystemClock()
        self.state.offline = remote is None
        self.scheduler = SyncScheduler(state, remote, clock=self.clock, interval_seconds=interval_seconds)
        self.reconciler = Reconciler(state, remote, self.scheduler, clock=self.clock)

    @classmethod
    def from_config(cls, config: SyncConfig | None = None, project_dir: Path | None = None) -> SyncEngine:
        """Build an engine from layered configuration."""
        if config is None:
            config = load_config(project_dir)
        cache_dir = config.cache.directory or get_default_cache_dir()
        cache = LocalCache(JsonFileStore(cache_dir))

        remote = None
        if config.remote.endpoint_url:
            remote = RemoteStore(
                config.remote.endpoint_url,
                fetch_timeout=config.remote.fetch_timeout_seconds,
                write_timeout=config.remote.write_timeout_seconds,
                fetch_retries=config.remote.fetch_retries,
                retry_base_delay=config.remote.retry_base_delay_seconds,
            )
        else:
            logger.info("No endpoint configured, running offline")

        state = AppState.from_cache(cache, offline=remote is None)
        return cls(state, remote, interval_seconds=config.scheduler.refresh_interval_seconds)

    async def __aenter__(self) -> SyncEngine:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self.scheduler.stop()
        if self.remote is not None:
            await self.remote.aclose()

    @property
    def snapshot(self) -> Snapshot:
        return self.state.snapshot

    @property
    def identity(self) -> Identity | None:
        return self.state.identity

    @property
    def indicator(self) -> SyncIndicator:
        return self.state.indicator

    # Scheduling

    async def start(
        self,
        on_snapshot: SnapshotListener | None = None,
        interval_seconds: float | None = None,
    ) -> RefreshResult:
        return await self.scheduler.start(on_snapshot, interval_seconds)

    async def stop(self) -> None:
        await self.scheduler.stop()

    async def refresh_now(self, show_indicator: bool = True) -> RefreshResult:
        return await self.scheduler.refresh_now(show_indicator)

    def dismiss_error(self) -> None:
        self.state.dismiss_error()

    # Writes

    async def perform_write(
        self,
        action: EntityAction | str,
        payload: Any,
        optimistic: Snapshot,
    ) -> WriteResult:
        return await self.reconciler.perform_write(action, payload, optimistic)

    async def upsert(self, record: Record) -> WriteResult:
        """
        Create or update one record.

        A record without an id is created: it is shown immediately under the
        placeholder id and renumbered when the server confirms it.
        Employee attachments go out with the write but are not kept locally.
        Offline, the record is numbered locally instead, since no server will
        ever confirm it.
        """
        if is_placeholder(record.entity_id):
            if self.remote is None:
                new_id = allocate_local_id(self.state.snapshot.table(record.kind))
            else:
                new_id = allocate_optimistic_id()
            record = record.with_id(new_id)
        payload = record.to_wire(include_attachments=True)
        local = record.without_attachments() if isinstance(record, Employee) else record
        optimistic = self.state.snapshot.with_record(local)
        return await self.perform_write(record.kind.upsert_action, payload, optimistic)

    async def delete(self, kind: EntityKind, entity_id: int) -> WriteResult:
        """Delete one record. The row disappears once the server confirms, or at once offline."""
        payload = {kind.model.id_field: entity_id}
        return await self.perform_write(kind.delete_action, payload, self.state.snapshot)

    async def update_post_selections(self, user_id: int, post_ids: Iterable[int]) -> WriteResult:
        """Replace the set of posts ``user_id`` may manage."""
        selected = frozenset(post_ids)
        payload = {"User_ID": user_id, "Post_IDs": sorted(selected)}
        optimistic = self.state.snapshot.with_post_selection(user_id, selected)
        return await self.perform_write(EntityAction.UPDATE_USER_POST_SELECTIONS, payload, optimistic)

    async def toggle_post_selection(self, post_id: int, user_id: int | None = None) -> WriteResult:
        """Add or remove one post in a user's selection (the session user by default)."""
        if user_id is None:
            if self.state.identity is None:
                return WriteResult(
                    success=False,
                    action=EntityAction.UPDATE_USER_POST_SELECTIONS.value,
                    message="Not signed in",
                )
            user_id = self.state.identity.user_id
        current = self.state.snapshot.post_selection(user_id)
        updated = current - {post_id} if post_id in current else current | {post_id}
        return await self.update_post_selections(user_id, updated)

    async def set_office_finalized(self, office_id: int, finalized: bool = True) -> WriteResult:
        """Lock (or unlock) an office's employees for non-admin users."""
        office = self.state.snapshot.find(EntityKind.OFFICE, office_id)
        if office is None:
            return WriteResult(
                success=False,
                action=EntityAction.UPSERT_OFFICE.value,
                message=f"Office {office_id} not found",
            )
        updated = office.model_copy(update={"finalized": "Yes" if finalized else "No"})
        return await self.upsert(updated)

    async def finalize_department(self, department_id: int) -> list[WriteResult]:
        """
        Finalize every office of a department that is not finalized yet.

        Offices are written one after another; the first failure stops the
        run, so the returned list ends with the failing result.
        """
        pending: list[int] = [
            office.office_id
            for office in offices_in_department(self.state.snapshot, department_id)
            if office.office_id and not office.is_finalized
        ]
        results: list[WriteResult] = []
        for office_id in pending:
            result = await self.set_office_finalized(office_id, True)
            results.append(result)
            if not result.success:
                logger.warning("Stopped finalizing department %s at office %s", department_id, office_id)
                break
        return results

    # Session

    def login(self, user_id: Any) -> Identity | None:
        """
        Sign in as a user of the current snapshot.

        Returns:
            The stored identity, or None if no such user exists
        """
        wanted = try_coerce_id(user_id)
        if wanted is None:
            return None
        user = self.state.snapshot.find(EntityKind.USER, wanted)
        if not isinstance(user, User):
            return None
        identity = Identity.from_user(user)
        self.state.login(identity)
        logger.info("Signed in as user %s", identity.user_id)
        return identity

    def logout(self) -> None:
        self.state.logout()

    # Views

    def employees(self) -> list[Employee]:
        return project_employees(self.state.snapshot, self.state.identity)

    def posts(self) -> list[Post]:
        return project_posts(self.state.snapshot, self.state.identity)

    def dangling_references(self) -> list[DanglingReference]:
        return find_dangling_references(self.state.snapshot)


__all__ = ["SyncEngine"]
