"""
Tests for optimistic writes and reconciliation.

Drives the Reconciler through the engine against a fake remote so each
state-machine branch (busy, failure, confirmed, canonical) is exercised.
"""

import asyncio
import sqlite3

import pytest
from conftest import settle

from ems_sync.core.cache import LocalCache
from ems_sync.core.errors import (
    MalformedResponseError,
    ServerRejectedError,
    SyncErrorKind,
    TransportTimeoutError,
)
from ems_sync.core.snapshot import EntityAction, EntityKind, Snapshot, sanitize
from ems_sync.core.snapshot.models import Employee, Office, Post
from ems_sync.core.sync import AppState, SyncEngine, SyncIndicator, merge_canonical
from ems_sync.core.sync.reconcile import payload_id

# ==============================================================================
# Pure Merge
# ==============================================================================


class TestMergeCanonical:
    """Test substitution of canonical rows."""

    def test_placeholder_is_replaced(self):
        optimistic = Snapshot().with_record(Post(post_id=3)).with_record(Post(post_id=0, post_name="New"))
        merged = merge_canonical(optimistic, EntityKind.POST, 0, Post(post_id=9, post_name="New"))
        assert [p.post_id for p in merged.posts] == [3, 9]

    def test_existing_row_is_replaced_in_place(self):
        optimistic = Snapshot().with_record(Post(post_id=3, post_name="Old")).with_record(Post(post_id=4))
        merged = merge_canonical(optimistic, EntityKind.POST, 3, Post(post_id=3, post_name="Server"))
        assert [(p.post_id, p.post_name) for p in merged.posts] == [(3, "Server"), (4, None)]

    def test_duplicates_of_canonical_id_are_removed(self):
        """A refresh may already have brought in the server row."""
        optimistic = Snapshot(posts=[Post(post_id=9, post_name="From refresh"), Post(post_id=0, post_name="New")])
        merged = merge_canonical(optimistic, EntityKind.POST, 0, Post(post_id=9, post_name="New"))
        assert [(p.post_id, p.post_name) for p in merged.posts] == [(9, "New")]

    def test_missing_row_is_appended(self):
        merged = merge_canonical(Snapshot(), EntityKind.POST, 5, Post(post_id=5))
        assert [p.post_id for p in merged.posts] == [5]

    def test_original_snapshot_is_untouched(self):
        optimistic = Snapshot().with_record(Post(post_id=0))
        merge_canonical(optimistic, EntityKind.POST, 0, Post(post_id=9))
        assert [p.post_id for p in optimistic.posts] == [0]

    def test_payload_id_reads_id_column(self):
        assert payload_id(EntityKind.OFFICE, {"Office_ID": "12"}) == 12
        assert payload_id(EntityKind.OFFICE, {"Office_Name": "x"}) is None
        assert payload_id(EntityKind.OFFICE, 4) == 4


# ==============================================================================
# Write State Machine
# ==============================================================================


class TestPerformWrite:
    """Test the write state machine."""

    @pytest.mark.asyncio
    async def test_create_converges_on_server_id(self, engine, remote):
        """After confirmation exactly one row holds the server id, none the placeholder."""
        remote.responses.append({"Post_ID": "42", "Post_Name": "Typist"})

        result = await engine.upsert(Post(post_name="Typist"))

        assert result.success
        assert result.record == {"Post_ID": 42, "Post_Name": "Typist"}
        ids = [p.post_id for p in engine.snapshot.posts]
        assert ids.count(42) == 1
        assert ids.count(0) == 0
        assert remote.sent == [("upsertPost", {"Post_ID": 0, "Post_Name": "Typist"})]

    @pytest.mark.asyncio
    async def test_optimistic_state_is_visible_before_confirmation(self, engine, remote, cache):
        remote.send_gate = asyncio.Event()
        task = asyncio.create_task(engine.upsert(Post(post_name="Typist")))
        await settle()

        assert [p.post_id for p in engine.snapshot.posts] == [0]
        assert [p.post_id for p in cache.load().posts] == [0]
        assert engine.indicator is SyncIndicator.SYNCING

        remote.responses.append({"Post_ID": 7, "Post_Name": "Typist"})
        remote.send_gate.set()
        result = await task
        assert result.success
        assert [p.post_id for p in cache.load().posts] == [7]

    @pytest.mark.asyncio
    async def test_second_write_is_rejected_while_one_is_in_flight(self, engine, remote):
        """At most one write: the second returns sync-busy and changes nothing."""
        remote.send_gate = asyncio.Event()
        first = asyncio.create_task(engine.upsert(Post(post_name="First")))
        await settle()
        in_flight = engine.snapshot

        second = await engine.upsert(Post(post_name="Second"))

        assert not second.success
        assert second.error_kind is SyncErrorKind.BUSY
        assert engine.snapshot == in_flight
        assert len(remote.sent) == 1
        assert not engine.state.sync_error

        remote.send_gate.set()
        assert (await first).success
        assert not engine.state.write_in_flight

    @pytest.mark.asyncio
    async def test_failure_refreshes_and_keeps_error_visible(self, engine, remote, raw_snapshot):
        remote.responses.append(TransportTimeoutError("upsertPost timed out after 180s"))

        result = await engine.upsert(Post(post_name="Lost"))

        assert not result.success
        assert result.error_kind is SyncErrorKind.TRANSPORT_TIMEOUT
        assert result.refreshed
        assert remote.fetch_calls == 1
        assert engine.snapshot == sanitize(raw_snapshot)
        assert engine.state.sync_error
        assert engine.state.last_error_kind is SyncErrorKind.TRANSPORT_TIMEOUT
        assert engine.indicator is SyncIndicator.ERROR
        assert not engine.state.write_in_flight

    @pytest.mark.asyncio
    async def test_server_rejection_is_reported(self, engine, remote):
        remote.responses.append(ServerRejectedError("Office is finalized", action="upsertEmployee"))

        result = await engine.upsert(Employee(employee_name="X"))

        assert result.error_kind is SyncErrorKind.SERVER_REJECTED
        assert result.message == "Office is finalized"
        assert engine.state.last_error == "Office is finalized"

    @pytest.mark.asyncio
    async def test_canonical_row_without_id_is_malformed(self, engine, remote):
        remote.responses.append({"Post_Name": "No id"})

        result = await engine.upsert(Post(post_name="No id"))

        assert result.error_kind is SyncErrorKind.MALFORMED_RESPONSE
        assert remote.fetch_calls == 1

    @pytest.mark.asyncio
    async def test_failed_refresh_after_failed_write(self, engine, remote):
        """If the corrective refresh also fails, the write error is what remains."""
        remote.responses.append(MalformedResponseError("bad body"))
        remote.fetch_error = TransportTimeoutError("fetch timed out")

        result = await engine.upsert(Post(post_name="x"))

        assert not result.refreshed
        assert engine.state.last_error_kind is SyncErrorKind.MALFORMED_RESPONSE

    @pytest.mark.asyncio
    async def test_update_keeps_id(self, engine, remote, raw_snapshot):
        await engine.refresh_now()
        office = engine.snapshot.find(EntityKind.OFFICE, 101)
        remote.responses.append({**office.to_wire(), "Office_Name": "North (renamed)"})

        result = await engine.upsert(office.model_copy(update={"office_name": "North (renamed)"}))

        assert result.success
        offices = [o for o in engine.snapshot.offices if o.office_id == 101]
        assert len(offices) == 1
        assert offices[0].office_name == "North (renamed)"

    @pytest.mark.asyncio
    async def test_confirmed_delete_filters_row(self, engine, remote):
        await engine.refresh_now()

        result = await engine.delete(EntityKind.POST, 3)

        assert result.success
        assert engine.snapshot.find(EntityKind.POST, 3) is None
        assert remote.sent[-1] == ("deletePost", {"Post_ID": 3})

    @pytest.mark.asyncio
    async def test_rejected_delete_keeps_row(self, engine, remote):
        await engine.refresh_now()
        remote.responses.append(ServerRejectedError("Post in use"))

        result = await engine.delete(EntityKind.POST, 3)

        assert not result.success
        assert engine.snapshot.find(EntityKind.POST, 3) is not None

    @pytest.mark.asyncio
    async def test_create_without_canonical_row_triggers_refresh(self, engine, remote):
        remote.snapshot["posts"].append({"Post_ID": "4", "Post_Name": "Guard"})

        result = await engine.upsert(Post(post_name="Guard"))

        assert result.success
        assert result.refreshed
        assert [p.post_id for p in engine.snapshot.posts] == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_attachments_are_sent_but_not_stored(self, engine, remote, cache):
        remote.responses.append({"Employee_ID": 77, "Employee_Name": "Lata", "photoData": "abc"})

        await engine.upsert(Employee(employee_name="Lata", photo_data="base64photo", file_data="base64file"))

        action, payload = remote.sent[0]
        assert action == "upsertEmployee"
        assert payload["photoData"] == "base64photo"
        assert payload["fileData"] == "base64file"
        stored = engine.snapshot.find(EntityKind.EMPLOYEE, 77)
        assert stored.photo_data is None
        assert "photoData" not in cache.store.get("ems_data")
        assert "base64file" not in cache.store.get("ems_data")

    @pytest.mark.asyncio
    async def test_cancellation_releases_guard(self, engine, remote):
        remote.send_gate = asyncio.Event()
        task = asyncio.create_task(engine.upsert(Post(post_name="x")))
        await settle()
        assert engine.state.write_in_flight

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not engine.state.write_in_flight
        remote.send_gate.set()
        remote.responses.append({"Post_ID": 5})
        assert (await engine.upsert(Post(post_name="y"))).success

    @pytest.mark.asyncio
    async def test_unknown_action_is_reported(self, engine, remote):
        before = engine.snapshot

        result = await engine.perform_write("upsertEverything", {}, Snapshot().with_record(Post(post_id=1)))

        assert not result.success
        assert result.error_kind is None
        assert result.message == "Unknown action: upsertEverything"
        assert engine.snapshot is before
        assert remote.sent == []
        assert not engine.state.write_in_flight

    @pytest.mark.asyncio
    async def test_offline_write_applies_locally(self, offline_engine):
        result = await offline_engine.upsert(Office(office_name="Annex"))

        assert result.success
        assert result.offline
        assert [o.office_id for o in offline_engine.snapshot.offices] == [1]
        assert offline_engine.indicator is SyncIndicator.OFFLINE

    @pytest.mark.asyncio
    async def test_offline_records_can_be_edited_and_deleted(self, offline_engine):
        """Offline creates are numbered locally, so later edits and deletes hit one row."""
        await offline_engine.upsert(Post(post_name="Clerk"))
        await offline_engine.upsert(Post(post_name="Typist"))
        clerk = offline_engine.snapshot.posts[0]

        await offline_engine.upsert(clerk.model_copy(update={"post_name": "Senior Clerk"}))
        assert [(p.post_id, p.post_name) for p in offline_engine.snapshot.posts] == [
            (1, "Senior Clerk"),
            (2, "Typist"),
        ]

        result = await offline_engine.delete(EntityKind.POST, 1)

        assert result.success
        assert result.offline
        assert [(p.post_id, p.post_name) for p in offline_engine.snapshot.posts] == [(2, "Typist")]

    @pytest.mark.asyncio
    async def test_offline_ids_continue_after_cached_rows(self, offline_engine, raw_snapshot):
        offline_engine.state.commit(sanitize(raw_snapshot))

        await offline_engine.upsert(Post(post_name="Guard"))

        assert [p.post_id for p in offline_engine.snapshot.posts] == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_cache_backend_failure_still_reports_result(self, failing_store, remote, clock):
        """A store failing with a non-file error leaves the write contract intact."""
        failing_store.write_error = sqlite3.OperationalError("database or disk is full")
        failing_store.fail_writes = True
        engine = SyncEngine(AppState(cache=LocalCache(failing_store)), remote, clock=clock)
        remote.responses.append({"Post_ID": 12, "Post_Name": "Clerk"})

        result = await engine.upsert(Post(post_name="Clerk"))
        await settle()

        assert result.success
        assert engine.snapshot.find(EntityKind.POST, 12) is not None
        assert not engine.state.write_in_flight
        assert failing_store.data == {}

    @pytest.mark.asyncio
    async def test_post_selection_action_name(self, engine, remote):
        result = await engine.perform_write(
            EntityAction.UPDATE_USER_POST_SELECTIONS,
            {"User_ID": 7, "Post_IDs": [1]},
            Snapshot().with_post_selection(7, [1]),
        )
        assert result.success
        assert remote.sent == [("updateUserPostSelections", {"User_ID": 7, "Post_IDs": [1]})]
