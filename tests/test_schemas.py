"""Remote snapshots are untrusted: corrupt values coerce to safe defaults."""

from datetime import UTC, datetime

import pytest

from lockstate_sdk.models import SessionState
from lockstate_sdk.schemas import (
    build_patch,
    coerce_timestamp,
    off_baseline_document,
    parse_document,
    serialize_state,
)

T0 = datetime(2024, 3, 1, 8, 0, 0, tzinfo=UTC)


class TestCoerceTimestamp:
    def test_iso_string_with_z(self):
        assert coerce_timestamp("2024-03-01T08:00:00Z") == T0

    def test_naive_is_utc(self):
        assert coerce_timestamp(datetime(2024, 3, 1, 8, 0, 0)) == T0

    def test_epoch_and_mapping(self):
        epoch = T0.timestamp()
        assert coerce_timestamp(epoch) == T0
        assert coerce_timestamp({"seconds": epoch, "nanoseconds": 0}) == T0

    @pytest.mark.parametrize("bad", ["not a date", "", None, float("nan"), True, [1, 2], {"nanoseconds": 5}])
    def test_invalid_becomes_none(self, bad):
        assert coerce_timestamp(bad) is None


class TestParseDocument:
    def test_missing_document_is_off_baseline(self):
        state = parse_document(None)
        assert state.is_cage_on is False
        assert state.chastity_history == []
        assert state.revision == 0

    def test_corrupt_values_clamped(self):
        state = parse_document(
            {
                "is_cage_on": True,
                "cage_on_time": "2024-03-01T08:00:00+00:00",
                "accumulated_pause_time_this_session": float("nan"),
                "total_time_cage_off": -50,
                "last_pause_end_time": "garbage",
                "chastity_history": "not-a-list",
                "revision": "7",
            }
        )
        assert state.is_cage_on is True
        assert state.cage_on_time == T0
        assert state.accumulated_pause_time_this_session == 0
        assert state.total_time_cage_off == 0
        assert state.last_pause_end_time is None
        assert state.chastity_history == []
        assert state.revision == 7

    def test_off_document_carries_no_pause(self):
        state = parse_document(
            {"is_cage_on": False, "is_paused": True, "pause_start_time": "2024-03-01T08:00:00+00:00"}
        )
        assert state.is_paused is False
        assert state.pause_start_time is None

    def test_active_without_start_is_off(self):
        state = parse_document({"is_cage_on": True, "cage_on_time": "??"})
        assert state.is_cage_on is False

    def test_paused_without_start_is_not_paused(self):
        state = parse_document({"is_cage_on": True, "cage_on_time": T0.isoformat(), "is_paused": True})
        assert state.is_cage_on is True
        assert state.is_paused is False

    def test_history_entry_with_bad_dates_dropped(self):
        state = parse_document(
            {
                "chastity_history": [
                    {"id": "a", "period_number": 1, "start_time": "bad", "end_time": T0.isoformat()},
                    {
                        "id": "b",
                        "period_number": 2,
                        "start_time": T0.isoformat(),
                        "end_time": "2024-03-01T09:00:00+00:00",
                        "duration": 3600,
                        "total_pause_duration_seconds": 9999,
                        "goal_status": "Bogus",
                        "goal_time_difference": -120,
                    },
                ]
            }
        )
        assert [e.id for e in state.chastity_history] == ["b"]
        entry = state.chastity_history[0]
        assert entry.total_pause_duration_seconds == 3600
        assert entry.effective_duration == 0
        assert entry.goal_status is None
        assert entry.goal_time_difference == -120

    def test_unknown_release_status_treated_as_denied(self):
        state = parse_document(
            {"release_requests": [{"id": "r1", "status": "weird", "requested_at": T0.isoformat()}]}
        )
        assert state.release_requests[0].status.value == "denied"

    def test_malformed_nested_items_dropped_or_coerced(self):
        state = parse_document(
            {
                "is_cage_on": True,
                "cage_on_time": T0.isoformat(),
                "current_session_pause_events": ["garbage", 7, {"start_time": T0.isoformat(), "reason": 3}],
                "chastity_history": [
                    None,
                    {
                        "id": "h1",
                        "start_time": "2024-02-01T08:00:00Z",
                        "end_time": "2024-02-01T10:00:00Z",
                        "duration": 7200,
                        "pause_events": "nope",
                    },
                ],
                "release_requests": [{"id": "r1", "status": "pending", "requested_at": T0.isoformat(), "handled_by": 5}],
                "required_keyholder_duration_seconds": 100,
                "revision": 50,
            }
        )
        assert len(state.current_session_pause_events) == 1
        assert state.current_session_pause_events[0].reason == ""
        assert [e.id for e in state.chastity_history] == ["h1"]
        assert state.chastity_history[0].pause_events == ()
        assert state.release_requests[0].handled_by == "5"
        assert state.keyholder.required_keyholder_duration_seconds == 100
        assert state.revision == 50

    def test_incomplete_secrets_dropped(self):
        state = parse_document(
            {
                "goal": {
                    "goal_duration_seconds": 3600,
                    "is_self_locking": True,
                    "is_goal_active": True,
                    "backup_code": {"code_hash": "abc"},
                    "self_lock_combination": "1234",
                }
            }
        )
        assert state.goal.is_self_locking is True
        assert state.goal.backup_code is None
        assert state.goal.combination is None


class TestSerialization:
    def test_state_survives_serialization(self):
        state = SessionState(is_cage_on=True, cage_on_time=T0, has_session_ever_been_active=True, revision=3)
        state.keyholder.required_keyholder_duration_seconds = 86400
        restored = parse_document(serialize_state(state))
        assert restored.is_cage_on is True
        assert restored.cage_on_time == T0
        assert restored.keyholder.required_keyholder_duration_seconds == 86400
        assert restored.revision == 3

    def test_timestamps_serialized_as_strings(self):
        doc = serialize_state(SessionState(is_cage_on=True, cage_on_time=T0))
        assert isinstance(doc["cage_on_time"], str)

    def test_patch_contains_only_named_keys_and_revision(self):
        state = SessionState(is_cage_on=True, cage_on_time=T0, revision=2)
        patch = build_patch(state, ["is_cage_on", "cage_on_time"])
        assert set(patch) == {"is_cage_on", "cage_on_time", "revision"}
        assert patch["revision"] == 2

    def test_patch_rejects_unknown_keys(self):
        with pytest.raises(KeyError):
            build_patch(SessionState(), ["is_cage_onn"])

    def test_baseline_document(self):
        doc = off_baseline_document()
        assert doc["is_cage_on"] is False
        assert doc["has_session_ever_been_active"] is False
        assert doc["revision"] == 0
