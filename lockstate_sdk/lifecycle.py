"""
lockstate_sdk/lifecycle.py - Session Lifecycle

OFF -> ON -> (PendingEnd) -> OFF

Ending is two-phase for the user: request_end() stages a PendingEnd with the
end instant frozen, confirm_end(reason) turns it into a HistoryEntry. Program
driven ends (emergency unlock, goal auto-release, keyholder approval) go
straight through end_now().

INVARIANTS:
1. A HistoryEntry is created exactly once per session, at the end
2. period_number = len(history) + 1
3. total_pause_duration_seconds <= duration
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from . import errors
from .clock import seconds_between
from .config import Settings
from .durations import effective_seconds, judge_goal
from .events import EventLog, EventType, emit
from .models import HistoryEntry, Mutation, PendingEnd, SessionState
from .pause import close_open_pause
from .schemas import SESSION_FIELDS, coerce_timestamp

logger = logging.getLogger(__name__)

START_FIELDS = SESSION_FIELDS + ("has_session_ever_been_active", "total_time_cage_off")
END_FIELDS = SESSION_FIELDS + ("chastity_history", "last_session_end_time")

ANONYMOUS_EDITOR = "Anonymous User"
EDIT_LOG_FAILED = "Error logging edit. Update applied locally."


class SessionLifecycle:
    def __init__(self, settings: Settings, event_log: EventLog):
        self.settings = settings
        self.event_log = event_log

    # --- Start ---

    def start_session(self, state: SessionState, now: datetime) -> Mutation:
        if state.is_cage_on:
            raise errors.session_active()

        if state.last_session_end_time is not None:
            state.total_time_cage_off += seconds_between(now, state.last_session_end_time)
        state.time_cage_off = 0

        state.reset_session_fields()
        state.is_cage_on = True
        state.cage_on_time = now
        state.has_session_ever_been_active = True
        if state.goal.is_goal_active and not state.goal.is_goal_completed:
            state.goal_duration_at_session_start = state.goal.goal_duration_seconds

        emit(self.event_log, EventType.SESSION_START, now, {"start_time": now.isoformat()})
        logger.info("Session started at %s", now.isoformat())
        return Mutation(fields=START_FIELDS)

    # --- End ---

    def request_end(self, state: SessionState, now: datetime) -> PendingEnd:
        if not state.is_cage_on or state.cage_on_time is None:
            raise errors.session_inactive()
        if state.is_paused:
            raise errors.session_paused()
        if state.goal.is_hardcore_locked:
            raise errors.hardcore_active()
        if state.keyholder.is_active:
            raise errors.release_gate_active()

        state.pending_end = PendingEnd(start=state.cage_on_time, end=now)
        return state.pending_end

    def cancel_end(self, state: SessionState) -> None:
        if state.pending_end is None:
            raise errors.no_pending_end()
        state.pending_end = None

    def confirm_end(self, state: SessionState, reason: Optional[str]) -> Mutation:
        pending = state.pending_end
        if pending is None:
            raise errors.no_pending_end()
        reason = (reason or "").strip()
        if not reason:
            raise errors.reason_required()
        return self._finish(state, pending.start, pending.end, reason)

    def end_now(self, state: SessionState, reason: str, now: datetime) -> Mutation:
        """End immediately, bypassing staging and end gates."""
        if not state.is_cage_on or state.cage_on_time is None:
            raise errors.session_inactive()
        return self._finish(state, state.cage_on_time, now, reason)

    def _finish(self, state: SessionState, start: datetime, end: datetime, reason: str) -> Mutation:
        open_pause = close_open_pause(state, end)
        duration = seconds_between(end, start)
        total_pause = min(duration, state.accumulated_pause_time_this_session + open_pause)
        status, difference = judge_goal(
            effective_seconds(duration, total_pause),
            state.goal_duration_at_session_start,
        )

        entry = HistoryEntry(
            id=str(uuid.uuid4()),
            period_number=len(state.chastity_history) + 1,
            start_time=start,
            end_time=end,
            duration=duration,
            total_pause_duration_seconds=total_pause,
            pause_events=tuple(state.current_session_pause_events),
            reason_for_removal=reason,
            goal_duration_at_session_start=state.goal_duration_at_session_start,
            goal_status=status,
            goal_time_difference=difference,
        )
        state.chastity_history.append(entry)
        state.reset_session_fields()
        state.last_session_end_time = end
        state.time_cage_off = 0

        emit(
            self.event_log,
            EventType.SESSION_END,
            end,
            {"period_number": entry.period_number, "duration": duration, "reason": reason},
        )
        logger.info(
            "Session %s ended: duration=%ss pause=%ss goal=%s",
            entry.period_number, duration, total_pause, status,
        )
        return Mutation(fields=END_FIELDS)

    # --- Edit ---

    def edit_session_start(
        self, state: SessionState, new_start: Any, now: datetime, editor: Optional[str] = None
    ) -> Mutation:
        if not state.is_cage_on or state.cage_on_time is None:
            raise errors.session_inactive()
        parsed = coerce_timestamp(new_start)
        if parsed is None:
            raise errors.invalid_timestamp(new_start)
        if parsed > now:
            raise errors.future_timestamp()

        old_start = state.cage_on_time
        state.cage_on_time = parsed
        state.time_in_chastity = seconds_between(now, parsed)
        if state.pending_end is not None:
            # A staged end must close the edited session, not the old one.
            end = state.pending_end.end
            state.pending_end = PendingEnd(start=parsed, end=end) if parsed <= end else None

        logged = emit(
            self.event_log,
            EventType.START_TIME_EDIT,
            now,
            {
                "old_start_time": old_start.isoformat(),
                "new_start_time": parsed.isoformat(),
                "edited_by": editor or ANONYMOUS_EDITOR,
                "notes": f"Session start time edited by {editor or ANONYMOUS_EDITOR}",
            },
        )
        logger.info("Session start moved from %s to %s", old_start.isoformat(), parsed.isoformat())
        return Mutation(fields=("cage_on_time",), warning=None if logged else EDIT_LOG_FAILED)


def refresh_counters(state: SessionState, now: datetime) -> None:
    """Recompute the live display counters from the clock."""
    if state.is_cage_on:
        state.time_in_chastity = seconds_between(now, state.cage_on_time)
        state.time_cage_off = 0
    else:
        state.time_in_chastity = 0
        state.time_cage_off = seconds_between(now, state.last_session_end_time)
