"""
Optimistic writes and their reconciliation with the server.

A write runs as a small state machine:

1. Guard: a second write while one is outstanding returns ``sync-busy``
   immediately, leaving state untouched. Writes are never queued.
2. Apply-local: the caller's optimistic snapshot becomes the state (and is
   cached) before the network call.
3. Transmit the action.
4. Failure: record the error, release the guard, then pull the
   authoritative snapshot so unconfirmed changes are discarded.
5. Success without a canonical row: the optimistic state is final.
   Confirmed deletes filter the row out; a confirmed create triggers a
   refresh to learn its server id.
6. Success with a canonical row: it replaces the optimistic row (matched by
   id, or the placeholder row for a create) and every other row holding the
   canonical id is dropped.

The guard is released on every exit path, cancellation included.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from ems_sync.core.errors import MalformedResponseError, SyncError, SyncErrorKind
from ems_sync.core.ids.allocator import find_placeholder, is_placeholder
from ems_sync.core.remote.client import RemoteStore
from ems_sync.core.snapshot.models import Employee, EntityAction, EntityKind, Record, Snapshot
from ems_sync.core.snapshot.sanitize import sanitize_record, try_coerce_id
from ems_sync.core.sync.clock import Clock, SystemClock
from ems_sync.core.sync.models import WriteResult
from ems_sync.core.sync.scheduler import SyncScheduler
from ems_sync.core.sync.state import AppState

logger = logging.getLogger(__name__)


def payload_id(kind: EntityKind, payload: Any) -> int | None:
    """Identifier the payload was sent with (None if absent or unusable)."""
    if isinstance(payload, Record):
        return payload.entity_id
    if isinstance(payload, Mapping):
        return try_coerce_id(payload.get(kind.model.id_field))
    return try_coerce_id(payload)


def merge_canonical(
    snapshot: Snapshot,
    kind: EntityKind,
    sent_id: int | None,
    canonical: Record,
) -> Snapshot:
    """
    Substitute the server's canonical row into the optimistic table.

    The row to replace is the one holding ``sent_id``, or for a create (a
    placeholder id was sent) the placeholder row. If neither exists the
    canonical row is appended. Afterwards exactly one row holds the
    canonical id.

    Example:
        >>> optimistic = Snapshot().with_record(Post(post_id=0, post_name="Clerk"))
        >>> merged = merge_canonical(optimistic, EntityKind.POST, 0, Post(post_id=9, post_name="Clerk"))
        >>> [p.post_id for p in merged.posts]
        [9]
    """
    records = list(snapshot.table(kind))
    if is_placeholder(sent_id):
        target = find_placeholder(records)
    else:
        target = next((i for i, r in enumerate(records) if r.entity_id == sent_id), None)

    if target is None:
        records.append(canonical)
        target = len(records) - 1
    else:
        records[target] = canonical

    canonical_id = canonical.entity_id
    merged = [r for i, r in enumerate(records) if i == target or r.entity_id != canonical_id]
    return snapshot.with_table(kind, merged)


class Reconciler:
    """
    Performs writes against the remote store, one at a time.

    Args:
        state: Shared application state
        remote: Endpoint client, None for offline mode
        scheduler: Used for the corrective refresh after a failure
        clock: Time source for result timestamps
    """

    def __init__(
        self,
        state: AppState,
        remote: RemoteStore | None,
        scheduler: SyncScheduler | None = None,
        *,
        clock: Clock | None = None,
    ) -> None:
        self.state = state
        self.remote = remote
        self.scheduler = scheduler
        self.clock = clock or SystemClock()

    async def perform_write(
        self,
        action: EntityAction | str,
        payload: Any,
        optimistic: Snapshot,
    ) -> WriteResult:
        """
        Apply ``optimistic`` locally, send ``(action, payload)`` and reconcile.

        Args:
            action: Write action name
            payload: JSON-serializable payload sent as-is
            optimistic: Snapshot as it should look once the write succeeds

        Returns:
            WriteResult; sync failures and unknown actions are reported,
            never raised
        """
        started_at = self.clock.now()
        try:
            action = EntityAction(action)
        except ValueError:
            logger.warning("Rejected unknown write action %r", action)
            return WriteResult(
                success=False,
                action=str(action),
                message=f"Unknown action: {action}",
                started_at=started_at,
                completed_at=started_at,
            )

        if not self.state.begin_write():
            logger.info("Rejected %s: another write is in flight", action.value)
            return WriteResult(
                success=False,
                action=action.value,
                error_kind=SyncErrorKind.BUSY,
                message="Another change is still being saved",
                started_at=started_at,
                completed_at=started_at,
            )

        error: SyncError | None = None
        record: dict[str, Any] | None = None
        needs_refresh = False
        try:
            self.state.commit(optimistic)
            if self.remote is not None:
                data = await self.remote.send(action.value, payload)
                record, needs_refresh = self._confirm(action, payload, data)
            elif action.is_delete:
                self._remove_deleted(action, payload)
        except SyncError as e:
            error = e
        finally:
            self.state.end_write()

        if error is not None:
            return await self._fail(action, error, started_at)

        if self.remote is None:
            logger.info("Applied %s locally (offline)", action.value)
            return WriteResult(
                success=True,
                action=action.value,
                offline=True,
                started_at=started_at,
                completed_at=self.clock.now(),
            )

        logger.info("Confirmed %s", action.value)
        refreshed = False
        if needs_refresh and self.scheduler is not None:
            refresh = await self.scheduler.refresh_when_idle()
            refreshed = refresh.success
        return WriteResult(
            success=True,
            action=action.value,
            record=record,
            refreshed=refreshed,
            started_at=started_at,
            completed_at=self.clock.now(),
        )

    def _confirm(
        self,
        action: EntityAction,
        payload: Any,
        data: dict[str, Any] | None,
    ) -> tuple[dict[str, Any] | None, bool]:
        """
        Settle a confirmed write into the state.

        Returns:
            (canonical record in wire form or None, whether a refresh is needed)
        """
        kind = action.kind
        now = self.clock.now()

        if kind is not None and action.is_upsert and data is not None:
            canonical = sanitize_record(kind, data)
            if canonical is None or is_placeholder(canonical.entity_id):
                raise MalformedResponseError(
                    f"{action.value} returned a row without a usable {kind.model.id_field}",
                    body=str(data),
                    action=action.value,
                )
            if isinstance(canonical, Employee):
                canonical = canonical.without_attachments()
            merged = merge_canonical(self.state.snapshot, kind, payload_id(kind, payload), canonical)
            self.state.commit(merged)
            self.state.mark_synced(now)
            return canonical.to_wire(), False

        needs_refresh = False
        if action.is_delete:
            self._remove_deleted(action, payload)
        elif kind is not None and action.is_upsert:
            # Created without the canonical row: only a refresh can tell its id
            needs_refresh = is_placeholder(payload_id(kind, payload))

        self.state.mark_synced(now)
        return None, needs_refresh

    def _remove_deleted(self, action: EntityAction, payload: Any) -> None:
        kind = action.kind
        deleted_id = payload_id(kind, payload) if kind is not None else None
        if deleted_id is not None:
            self.state.commit(self.state.snapshot.without_record(kind, deleted_id))

    async def _fail(self, action: EntityAction, error: SyncError, started_at: datetime) -> WriteResult:
        logger.warning("%s failed (%s): %s", action.value, error.kind.value, error.message)
        self.state.record_error(error)

        refreshed = False
        if self.scheduler is not None:
            refresh = await self.scheduler.refresh_when_idle()
            refreshed = refresh.success
            # A successful refresh clears errors; the write failure stays visible
            self.state.record_error(error)

        return WriteResult(
            success=False,
            action=action.value,
            error_kind=error.kind,
            message=error.message,
            refreshed=refreshed,
            started_at=started_at,
            completed_at=self.clock.now(),
        )


__all__ = ["Reconciler", "merge_canonical", "payload_id"]
