"""
lockstate_sdk/goals.py - Goal & Lock Policy

Personal goals, the hardcore self-lock, emergency unlock, and the keyholder
mandated minimum duration.

HARDCORE RULES:
1. A hardcore goal blocks ending the session until it completes
2. The backup code is generated once, revealed once, used once
3. The lock combination stays sealed until completion or emergency unlock
4. A wrong, used, or missing code fails with the same generic error
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from . import errors
from .config import Settings
from .durations import as_seconds, session_effective_seconds
from .events import EventLog, EventType, emit
from .lifecycle import SessionLifecycle
from .models import Goal, Mutation, OneTimeSecret, SealedCombination, SessionState

logger = logging.getLogger(__name__)

GOAL_FIELDS = ("goal", "goal_duration_at_session_start")
KEYHOLDER_FIELDS = ("required_keyholder_duration_seconds", "is_keyholder_controls_locked")

EMERGENCY_UNLOCK_REASON = "Emergency unlock"
GOAL_COMPLETED_REASON = "Hardcore goal completed"


def _positive_seconds(value: Any) -> int:
    seconds = as_seconds(value)
    if seconds <= 0:
        raise errors.invalid_duration(value)
    return seconds


class GoalPolicy:
    def __init__(self, settings: Settings, event_log: EventLog, lifecycle: SessionLifecycle):
        self.settings = settings
        self.event_log = event_log
        self.lifecycle = lifecycle

    # --- Personal goal ---

    def set_personal_goal(
        self,
        state: SessionState,
        duration_seconds: Any,
        hardcore: bool,
        now: datetime,
        lock_combination: Optional[str] = None,
    ) -> Mutation:
        if state.keyholder.is_active:
            raise errors.keyholder_locked()
        if state.goal.is_hardcore_locked:
            raise errors.hardcore_active()
        seconds = _positive_seconds(duration_seconds)

        goal = Goal(
            goal_duration_seconds=seconds,
            is_self_locking=bool(hardcore),
            is_goal_active=True,
            goal_end_date=now + timedelta(seconds=seconds),
        )
        revealed = {}
        if hardcore:
            goal.backup_code = OneTimeSecret.generate(self.settings.BACKUP_CODE_LENGTH)
            revealed["backup_code"] = goal.backup_code.reveal()
        if lock_combination:
            goal.combination = SealedCombination.seal(lock_combination, self.settings.SECRET_KEY)
        state.goal = goal

        if state.is_cage_on and state.goal_duration_at_session_start is None:
            state.goal_duration_at_session_start = seconds

        emit(self.event_log, EventType.GOAL_SET, now, {"duration": seconds, "hardcore": bool(hardcore)})
        logger.info("Goal set: %ss hardcore=%s", seconds, bool(hardcore))
        return Mutation(fields=GOAL_FIELDS, revealed=revealed)

    def clear_goal(self, state: SessionState, now: datetime, _unlocked: bool = False) -> Mutation:
        if state.goal.is_hardcore_locked and not _unlocked:
            raise errors.hardcore_active()
        state.goal = Goal()
        emit(self.event_log, EventType.GOAL_CLEARED, now, {"emergency": _unlocked})
        return Mutation(fields=("goal",))

    # --- Hardcore ---

    def attempt_emergency_unlock(self, state: SessionState, code: str, now: datetime) -> Mutation:
        goal = state.goal
        if not goal.is_hardcore_locked:
            raise errors.no_hardcore_goal()
        backup = goal.backup_code
        if backup is None or not backup.matches(code, self.settings.BACKUP_CODE_LENGTH):
            logger.info("Emergency unlock rejected")
            raise errors.unlock_failed()

        backup.consume()
        revealed = {}
        if goal.combination is not None:
            combination = goal.combination.reveal(self.settings.SECRET_KEY)
            if combination is not None:
                revealed["combination"] = combination

        period_number = len(state.chastity_history) + 1
        mutation = Mutation(revealed=revealed)
        if state.is_cage_on:
            mutation = mutation.merge(self.lifecycle.end_now(state, EMERGENCY_UNLOCK_REASON, now))
        mutation = mutation.merge(self.clear_goal(state, now, _unlocked=True))

        emit(self.event_log, EventType.EMERGENCY_UNLOCK, now, {"period_number": period_number})
        logger.warning("Emergency unlock used for period %s", period_number)
        return mutation

    def check_completion(self, state: SessionState, now: datetime) -> Optional[Mutation]:
        """
        Mark the goal complete once effective time reaches it. Idempotent.

        A completed hardcore goal reveals the combination and releases the
        session.
        """
        goal = state.goal
        if not (goal.is_goal_active and not goal.is_goal_completed and goal.goal_duration_seconds):
            return None
        if not state.is_cage_on:
            return None
        effective = session_effective_seconds(
            now,
            state.cage_on_time,
            state.accumulated_pause_time_this_session,
            state.pause_start_time,
            state.is_paused,
        )
        if effective < goal.goal_duration_seconds:
            return None

        goal.is_goal_completed = True
        goal.completed_at = now
        mutation = Mutation(fields=("goal",))
        emit(self.event_log, EventType.GOAL_COMPLETED, now, {"duration": goal.goal_duration_seconds})
        logger.info("Goal of %ss completed", goal.goal_duration_seconds)

        if goal.is_self_locking:
            if goal.combination is not None:
                combination = goal.combination.reveal(self.settings.SECRET_KEY)
                if combination is not None:
                    mutation.revealed["combination"] = combination
            mutation = mutation.merge(self.lifecycle.end_now(state, GOAL_COMPLETED_REASON, now))
        return mutation

    # --- Keyholder ---

    def set_required_duration(self, state: SessionState, seconds: Any, now: datetime) -> Mutation:
        required = as_seconds(seconds)
        return self._set_required(state, required, "set", now)

    def apply_reward(self, state: SessionState, seconds: Any, now: datetime) -> Mutation:
        amount = _positive_seconds(seconds)
        required = max(0, state.keyholder.required_keyholder_duration_seconds - amount)
        return self._set_required(state, required, "reward", now)

    def apply_punishment(self, state: SessionState, seconds: Any, now: datetime) -> Mutation:
        amount = _positive_seconds(seconds)
        required = state.keyholder.required_keyholder_duration_seconds + amount
        return self._set_required(state, required, "punishment", now)

    def _set_required(self, state: SessionState, required: int, change: str, now: datetime) -> Mutation:
        previous = state.keyholder.required_keyholder_duration_seconds
        state.keyholder.required_keyholder_duration_seconds = required
        emit(
            self.event_log,
            EventType.KEYHOLDER_DURATION,
            now,
            {"change": change, "required_seconds": required, "previous_seconds": previous},
        )
        logger.info("Keyholder duration %s: %ss -> %ss", change, previous, required)
        return Mutation(fields=KEYHOLDER_FIELDS)

    def lock_keyholder_controls(self, state: SessionState, locked: bool = True) -> Mutation:
        state.keyholder.controls_locked = locked
        return Mutation(fields=KEYHOLDER_FIELDS)
