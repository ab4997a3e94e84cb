"""Sync & restore reconciler: load, conflicts, stale echoes, failed writes."""

from datetime import UTC, datetime, timedelta

from lockstate_sdk.errors import LockStateErrorCode
from lockstate_sdk.models import SessionState
from lockstate_sdk.notices import NoticeKind
from lockstate_sdk.reconciler import SyncReconciler, SyncState
from lockstate_sdk.schemas import off_baseline_document, serialize_state
from lockstate_sdk.store import InMemoryDocumentStore
from lockstate_sdk.timers import TickerKind

T0 = datetime(2024, 3, 1, 8, 0, 0, tzinfo=UTC)
DOC_ID = "user-1"


def active_remote(revision=4, **overrides):
    state = SessionState(
        is_cage_on=True,
        cage_on_time=T0 - timedelta(hours=3),
        has_session_ever_been_active=True,
        total_time_cage_off=500,
        revision=revision,
    )
    doc = serialize_state(state)
    doc["chastity_history"] = [
        {
            "id": "h1",
            "period_number": 1,
            "start_time": "2024-02-01T08:00:00+00:00",
            "end_time": "2024-02-01T10:00:00+00:00",
            "duration": 7200,
            "total_pause_duration_seconds": 0,
            "reason_for_removal": "done",
        }
    ]
    doc.update(overrides)
    return doc


class CountingStore(InMemoryDocumentStore):
    def __init__(self, documents=None):
        super().__init__(documents)
        self.creates = 0

    async def create_if_absent(self, doc_id, defaults):
        self.creates += 1
        return await super().create_if_absent(doc_id, defaults)


class TestLoad:
    async def test_missing_document_created_once(self):
        store = CountingStore()
        reconciler = SyncReconciler(DOC_ID, store)

        assert await reconciler.load() == SyncState.SYNCED
        assert store.documents[DOC_ID] == off_baseline_document()
        assert reconciler.populated is True

        await reconciler.load()
        assert store.creates == 1

    async def test_existing_off_document_adopted(self):
        doc = active_remote(is_cage_on=False)
        store = InMemoryDocumentStore({DOC_ID: doc})
        reconciler = SyncReconciler(DOC_ID, store)

        assert await reconciler.load() == SyncState.SYNCED
        assert reconciler.state.is_cage_on is False
        assert reconciler.state.total_time_cage_off == 500
        assert [e.id for e in reconciler.state.chastity_history] == ["h1"]
        assert reconciler.state.revision == 4

    async def test_state_object_updated_in_place(self):
        owned = SessionState()
        store = InMemoryDocumentStore({DOC_ID: active_remote(is_cage_on=False)})
        reconciler = SyncReconciler(DOC_ID, store, state=owned)
        await reconciler.load()
        assert reconciler.state is owned
        assert owned.total_time_cage_off == 500

    async def test_malformed_items_do_not_block_load(self):
        doc = active_remote(is_cage_on=False, current_session_pause_events=["garbage"])
        doc["goal"] = {"backup_code": {"revealed": True}}
        reconciler = SyncReconciler(DOC_ID, InMemoryDocumentStore({DOC_ID: doc}))

        assert await reconciler.load() == SyncState.SYNCED
        assert reconciler.state.current_session_pause_events == []
        assert reconciler.state.goal.backup_code is None


class TestConflict:
    async def test_remote_active_session_is_conflict(self, store, client):
        store.documents[DOC_ID] = active_remote()

        assert await client.load() == SyncState.CONFLICT_PENDING
        assert client.timers.armed is None
        assert client.state.is_cage_on is False
        assert client.reconciler.conflict_snapshot.is_cage_on is True
        client.close()

    async def test_actions_rejected_while_conflict_pending(self, store, client):
        store.documents[DOC_ID] = active_remote()
        await client.load()

        result = await client.start_session()
        assert result.ok is False
        assert result.error.error_code == LockStateErrorCode.CONFLICT_UNRESOLVED
        assert store.writes == []
        client.close()

    async def test_tick_does_nothing_while_conflict_pending(self, store, client):
        store.documents[DOC_ID] = active_remote()
        await client.load()
        assert await client.tick() is None
        assert client.state.time_in_chastity == 0
        client.close()

    async def test_remote_change_updates_captured_snapshot(self, store, client):
        store.documents[DOC_ID] = active_remote()
        await client.load()

        store.put_remote(DOC_ID, {"accumulated_pause_time_this_session": 300, "revision": 5})

        assert client.sync_state == SyncState.CONFLICT_PENDING
        assert client.reconciler.conflict_snapshot.accumulated_pause_time_this_session == 300
        assert client.state.accumulated_pause_time_this_session == 0
        client.close()

    async def test_resume_remote_adopts_and_writes_back(self, store, client, clock):
        store.documents[DOC_ID] = active_remote(revision=4)
        await client.load()

        result = await client.resume_remote()

        assert result.ok is True
        assert client.sync_state == SyncState.SYNCED
        assert client.state.is_cage_on is True
        assert client.state.cage_on_time == T0 - timedelta(hours=3)
        assert client.state.revision == 5
        assert store.documents[DOC_ID]["revision"] == 5
        assert client.timers.armed == TickerKind.IN_CHASTITY
        assert client.effective_seconds() == 3 * 3600
        client.close()

    async def test_discard_keeps_history_and_totals(self, store, client):
        store.documents[DOC_ID] = active_remote(revision=4)
        await client.load()

        result = await client.discard_and_start_new()

        assert result.ok is True
        state = client.state
        assert state.is_cage_on is False
        assert state.has_session_ever_been_active is False
        assert state.last_pause_end_time is None
        assert state.total_time_cage_off == 500
        assert len(state.chastity_history) == 1
        remote = store.documents[DOC_ID]
        assert remote["is_cage_on"] is False
        assert remote["cage_on_time"] is None
        assert len(remote["chastity_history"]) == 1
        assert client.timers.armed == TickerKind.CAGE_OFF
        client.close()

    async def test_resolution_without_conflict(self, loaded_client):
        result = await loaded_client.resume_remote()
        assert result.ok is False
        assert result.error.error_code == LockStateErrorCode.NO_CONFLICT


class TestRemoteChanges:
    async def test_stale_and_echo_snapshots_ignored(self, store, loaded_client):
        await loaded_client.start_session()
        revision = loaded_client.state.revision
        assert revision == 1

        store.put_remote(DOC_ID, {"is_cage_on": False, "revision": 0})
        assert loaded_client.state.is_cage_on is True

        # Re-delivery of our own write.
        store.put_remote(DOC_ID, dict(store.documents[DOC_ID]))
        assert loaded_client.state.revision == revision
        assert loaded_client.state.is_cage_on is True

    async def test_concurrent_write_at_same_revision_adopted(self, store, loaded_client):
        await loaded_client.start_session()
        revision = loaded_client.state.revision

        # Another tab set a keyholder requirement from the same base revision.
        store.put_remote(DOC_ID, {"required_keyholder_duration_seconds": 86400, "revision": revision})

        assert loaded_client.state.keyholder.required_keyholder_duration_seconds == 86400
        assert loaded_client.state.is_cage_on is True
        result = await loaded_client.request_end()
        assert result.ok is False
        assert result.error.error_code == LockStateErrorCode.KEYHOLDER_LOCKED

    async def test_snapshot_with_malformed_items_still_applied(self, store, loaded_client):
        store.put_remote(
            DOC_ID,
            {
                "required_keyholder_duration_seconds": 100,
                "release_requests": [
                    {"id": "r1", "status": "denied", "requested_at": T0.isoformat(), "handled_by": 5},
                    "garbage",
                ],
                "revision": 50,
            },
        )
        state = loaded_client.state
        assert state.revision == 50
        assert state.keyholder.required_keyholder_duration_seconds == 100
        assert [r.handled_by for r in state.release_requests] == ["5"]

    async def test_newer_snapshot_applied(self, store, loaded_client):
        await loaded_client.start_session()
        store.put_remote(DOC_ID, {"is_cage_on": False, "cage_on_time": None, "revision": 2})

        assert loaded_client.state.is_cage_on is False
        assert loaded_client.state.revision == 2
        assert loaded_client.timers.armed == TickerKind.CAGE_OFF

    async def test_remote_end_discards_staged_end(self, store, loaded_client):
        await loaded_client.start_session()
        await loaded_client.request_end()
        assert loaded_client.state.pending_end is not None

        store.put_remote(DOC_ID, {"is_cage_on": False, "revision": 9})
        assert loaded_client.state.pending_end is None

    async def test_each_write_bumps_revision(self, store, loaded_client, clock):
        await loaded_client.start_session()
        clock.advance(minutes=5)
        await loaded_client.confirm_pause("bathroom")
        assert loaded_client.state.revision == 2
        assert store.writes[-1]["revision"] == 2
        assert set(store.writes[-1]) == {
            "is_paused",
            "pause_start_time",
            "accumulated_pause_time_this_session",
            "current_session_pause_events",
            "last_pause_end_time",
            "revision",
        }


class TestFailedWrites:
    async def test_failure_keeps_local_state_and_resends(self, store, loaded_client, clock):
        store.fail_writes = 1
        result = await loaded_client.start_session()

        assert result.ok is True
        assert result.persisted is False
        assert loaded_client.state.is_cage_on is True
        assert store.documents[DOC_ID]["is_cage_on"] is False
        assert loaded_client.reconciler.has_unsent_changes
        notice = loaded_client.notices.latest(NoticeKind.STORE_ERROR)
        assert notice.code == LockStateErrorCode.STORE_WRITE_FAILED.value

        clock.advance(minutes=5)
        result = await loaded_client.confirm_pause("")
        assert result.persisted is True
        remote = store.documents[DOC_ID]
        assert remote["is_cage_on"] is True
        assert remote["is_paused"] is True
        assert remote["revision"] == loaded_client.state.revision
        assert not loaded_client.reconciler.has_unsent_changes

    async def test_store_error_notice_auto_clears(self, store, loaded_client, clock, settings):
        store.fail_writes = 1
        await loaded_client.start_session()
        assert loaded_client.notices.latest(NoticeKind.STORE_ERROR) is not None
        clock.advance(seconds=settings.STORE_ERROR_NOTICE_SECONDS)
        assert loaded_client.notices.latest(NoticeKind.STORE_ERROR) is None


class TestRestoreFromUser:
    async def test_restore_copies_other_document(self, store, loaded_client):
        store.documents["other-user"] = active_remote(is_cage_on=False, revision=12)

        result = await loaded_client.restore_from_user(" other-user ")

        assert result.ok is True
        assert [e.id for e in loaded_client.state.chastity_history] == ["h1"]
        own = store.documents[DOC_ID]
        assert len(own["chastity_history"]) == 1
        assert own["revision"] == loaded_client.state.revision
        assert loaded_client.notices.latest(NoticeKind.INFO).message == "Data restored."

    async def test_unknown_id_is_generic_verification_failure(self, loaded_client, clock, settings):
        result = await loaded_client.restore_from_user("nobody")

        assert result.ok is False
        assert result.error.error_code == LockStateErrorCode.RESTORE_FAILED
        assert result.error.message == "No data found for the provided User ID."
        assert loaded_client.notices.latest(NoticeKind.VERIFICATION) is not None
        clock.advance(seconds=settings.VERIFICATION_NOTICE_SECONDS)
        assert loaded_client.notices.latest(NoticeKind.VERIFICATION) is None

    async def test_blank_id_rejected(self, loaded_client):
        result = await loaded_client.restore_from_user("   ")
        assert result.error.error_code == LockStateErrorCode.RESTORE_FAILED

    async def test_restore_tolerates_malformed_items(self, store, loaded_client):
        store.documents["other-user"] = active_remote(is_cage_on=False, current_session_pause_events=["garbage"])

        result = await loaded_client.restore_from_user("other-user")

        assert result.ok is True
        assert [e.id for e in loaded_client.state.chastity_history] == ["h1"]

    async def test_unreadable_source_is_generic_failure(self, store, loaded_client):
        store.documents["other-user"] = ["not", "a", "document"]
        before = dict(store.documents[DOC_ID])

        result = await loaded_client.restore_from_user("other-user")

        assert result.ok is False
        assert result.error.error_code == LockStateErrorCode.RESTORE_FAILED
        assert result.error.message == "No data found for the provided User ID."
        assert store.documents[DOC_ID] == before
