"""
lockstate_sdk/client.py - Main SDK Entry Point

LockStateClient owns one user's SessionState and wires the policies, the
reconciler, the notice board, and the tickers around it.

Every action:
1. refuses to run while a restore conflict is pending
2. runs the policy against the owned state at clock.now()
3. merge-writes the changed keys
4. re-arms the ticker matching the new state

Rejections never raise out of the client: they are posted as notices and
returned as ActionResult(ok=False, error=...).
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .clock import Clock, SystemClock
from .config import Settings, get_settings
from .durations import (
    format_elapsed,
    session_effective_seconds,
)
from .errors import ErrorClassification, LockStateError, LockStateErrorCode, LockStateException
from .events import EventLog, EventType, NullEventLog, emit
from .goals import GoalPolicy
from .history import summarize
from .lifecycle import SessionLifecycle, refresh_counters
from .models import Mutation, SessionState
from .notices import NoticeBoard, NoticeKind
from .pause import PausePolicy
from .reconciler import SyncReconciler, SyncState
from .release import ReleaseWorkflow
from .store import DocumentStore
from .timers import Ticker, TickerKind, TimerService

logger = logging.getLogger(__name__)

Action = Callable[[SessionState, datetime], Optional[Mutation]]


@dataclass
class ActionResult:
    ok: bool
    error: Optional[LockStateError] = None
    revealed: Dict[str, str] = field(default_factory=dict)
    persisted: bool = True
    data: Dict[str, Any] = field(default_factory=dict)


class LockStateClient:
    def __init__(
        self,
        doc_id: str,
        store: DocumentStore,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        event_log: Optional[EventLog] = None,
        editor: Optional[str] = None,
    ):
        self.doc_id = doc_id
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock()
        self.event_log = event_log or NullEventLog()
        self.editor = editor

        self.state = SessionState()
        self.notices = NoticeBoard(self.clock)

        self.pause_policy = PausePolicy(self.settings, self.event_log)
        self.lifecycle = SessionLifecycle(self.settings, self.event_log)
        self.goals = GoalPolicy(self.settings, self.event_log, self.lifecycle)
        self.release = ReleaseWorkflow(self.settings, self.event_log, self.lifecycle)
        self.reconciler = SyncReconciler(
            doc_id,
            store,
            state=self.state,
            on_change=self._after_sync,
            on_error=self._on_store_error,
        )
        self.timers = TimerService(self.settings.TICK_INTERVAL_SECONDS, self._on_tick)
        self._poller: Optional[Ticker] = None
        self._revealed: Dict[str, str] = {}

    # --- Lifecycle of the client itself ---

    async def load(self) -> SyncState:
        sync_state = await self.reconciler.load()
        self._rearm()
        return sync_state

    def start_polling(self) -> bool:
        """Drive store.poll() for stores without push notifications."""
        poll = getattr(self.store, "poll", None)
        if poll is None:
            return False
        self._poller = Ticker("poll", self.settings.POLL_INTERVAL_SECONDS, poll)
        return self._poller.start()

    def close(self) -> None:
        self.timers.disarm()
        if self._poller is not None:
            self._poller.stop()
            self._poller = None
        self.reconciler.close()

    @property
    def sync_state(self) -> SyncState:
        return self.reconciler.sync_state

    def take_revealed(self) -> Dict[str, str]:
        """Hand out secrets revealed by background ticks, once."""
        revealed, self._revealed = self._revealed, {}
        return revealed

    # --- Plumbing ---

    async def _apply(self, action: Action, **data: Any) -> ActionResult:
        now = self.clock.now()
        try:
            self.reconciler.ensure_writable()
            mutation = action(self.state, now)
        except LockStateException as e:
            return self._rejected(e)
        return await self._commit(mutation, now, **data)

    async def _commit(self, mutation: Optional[Mutation], now: datetime, **data: Any) -> ActionResult:
        persisted = True
        revealed: Dict[str, str] = {}
        if mutation is not None:
            if mutation.fields:
                persisted = await self.reconciler.persist(mutation.fields)
            if mutation.warning:
                self.notices.post(mutation.warning, NoticeKind.INFO, self.settings.INFO_NOTICE_SECONDS)
            revealed = mutation.revealed
        refresh_counters(self.state, now)
        self._rearm()
        return ActionResult(ok=True, revealed=revealed, persisted=persisted, data=data)

    def _rejected(self, exc: LockStateException) -> ActionResult:
        error = exc.error
        logger.info("Action rejected: %s", error.error_code.value)
        self.notices.post_error(error, self._lifetime_for(error))
        return ActionResult(ok=False, error=error)

    def _lifetime_for(self, error: LockStateError) -> float:
        if error.error_code in (LockStateErrorCode.PAUSE_COOLDOWN, LockStateErrorCode.RELEASE_COOLDOWN):
            return self.settings.COOLDOWN_NOTICE_SECONDS
        if error.classification == ErrorClassification.VERIFICATION:
            return self.settings.VERIFICATION_NOTICE_SECONDS
        if error.classification == ErrorClassification.REMOTE_IO:
            return self.settings.STORE_ERROR_NOTICE_SECONDS
        return self.settings.INFO_NOTICE_SECONDS

    def _on_store_error(self, error: LockStateError) -> None:
        self.notices.post_error(error, self.settings.STORE_ERROR_NOTICE_SECONDS)

    def _after_sync(self) -> None:
        refresh_counters(self.state, self.clock.now())
        self._rearm()

    def _rearm(self) -> None:
        self.timers.rearm(
            self.state.is_cage_on,
            self.state.is_paused,
            conflict_pending=self.sync_state == SyncState.CONFLICT_PENDING,
        )

    def _on_tick(self, kind: TickerKind):
        return self.tick()

    async def tick(self) -> Optional[ActionResult]:
        """One clock tick: refresh live counters and check goal completion."""
        if self.sync_state == SyncState.CONFLICT_PENDING:
            return None
        now = self.clock.now()
        refresh_counters(self.state, now)
        mutation = self.goals.check_completion(self.state, now)
        if mutation is None:
            return None
        result = await self._commit(mutation, now)
        # Nobody awaits a tick; keep its secrets for take_revealed().
        self._revealed.update(result.revealed)
        if "combination" in result.revealed:
            self.notices.post("Goal complete. Your combination has been revealed.", NoticeKind.INFO)
        return result

    # --- Session lifecycle ---

    async def start_session(self) -> ActionResult:
        cooldown = self.notices.latest(NoticeKind.POLICY)
        if cooldown is not None and cooldown.code == LockStateErrorCode.PAUSE_COOLDOWN.value:
            return ActionResult(ok=False, persisted=False)
        if self.state.is_cage_on and self.sync_state != SyncState.CONFLICT_PENDING:
            # Already running: silent no-op.
            return ActionResult(ok=False, persisted=False)
        return await self._apply(self.lifecycle.start_session)

    async def request_end(self) -> ActionResult:
        now = self.clock.now()
        try:
            self.reconciler.ensure_writable()
            pending = self.lifecycle.request_end(self.state, now)
        except LockStateException as e:
            return self._rejected(e)
        return ActionResult(ok=True, data={"pending_end": pending})

    async def cancel_end(self) -> ActionResult:
        try:
            self.lifecycle.cancel_end(self.state)
        except LockStateException as e:
            return self._rejected(e)
        return ActionResult(ok=True)

    async def confirm_end(self, reason: str) -> ActionResult:
        return await self._apply(lambda state, now: self.lifecycle.confirm_end(state, reason))

    async def end_now(self, reason: str) -> ActionResult:
        return await self._apply(lambda state, now: self.lifecycle.end_now(state, reason, now))

    async def edit_session_start(self, new_start: Any) -> ActionResult:
        return await self._apply(
            lambda state, now: self.lifecycle.edit_session_start(state, new_start, now, self.editor)
        )

    # --- Pause ---

    async def initiate_pause(self) -> ActionResult:
        try:
            self.reconciler.ensure_writable()
            self.pause_policy.initiate_pause(self.state, self.clock.now())
        except LockStateException as e:
            return self._rejected(e)
        return ActionResult(ok=True)

    async def confirm_pause(self, reason: Optional[str] = None) -> ActionResult:
        return await self._apply(lambda state, now: self.pause_policy.confirm_pause(state, reason, now))

    async def resume(self) -> ActionResult:
        return await self._apply(self.pause_policy.resume)

    # --- Goals ---

    async def set_personal_goal(
        self, duration_seconds: Any, hardcore: bool = False, lock_combination: Optional[str] = None
    ) -> ActionResult:
        return await self._apply(
            lambda state, now: self.goals.set_personal_goal(
                state, duration_seconds, hardcore, now, lock_combination=lock_combination
            )
        )

    async def clear_goal(self) -> ActionResult:
        return await self._apply(self.goals.clear_goal)

    async def attempt_emergency_unlock(self, code: str) -> ActionResult:
        return await self._apply(lambda state, now: self.goals.attempt_emergency_unlock(state, code, now))

    # --- Keyholder ---

    async def set_required_duration(self, seconds: Any) -> ActionResult:
        return await self._apply(lambda state, now: self.goals.set_required_duration(state, seconds, now))

    async def apply_reward(self, seconds: Any) -> ActionResult:
        return await self._apply(lambda state, now: self.goals.apply_reward(state, seconds, now))

    async def apply_punishment(self, seconds: Any) -> ActionResult:
        return await self._apply(lambda state, now: self.goals.apply_punishment(state, seconds, now))

    async def lock_keyholder_controls(self, locked: bool = True) -> ActionResult:
        return await self._apply(lambda state, now: self.goals.lock_keyholder_controls(state, locked))

    async def file_release_request(self) -> ActionResult:
        return await self._apply(self.release.file_release_request)

    async def approve_release(self, handled_by: str = "keyholder") -> ActionResult:
        return await self._apply(lambda state, now: self.release.keyholder_approve(state, now, handled_by))

    async def deny_release(self, handled_by: str = "keyholder") -> ActionResult:
        return await self._apply(lambda state, now: self.release.keyholder_deny(state, now, handled_by))

    # --- Sync & restore ---

    async def resume_remote(self) -> ActionResult:
        try:
            persisted = await self.reconciler.resume_remote()
        except LockStateException as e:
            return self._rejected(e)
        emit(self.event_log, EventType.SESSION_RESTORED, self.clock.now(), {"source": self.doc_id})
        self._after_sync()
        return ActionResult(ok=True, persisted=persisted)

    async def discard_and_start_new(self) -> ActionResult:
        try:
            persisted = await self.reconciler.discard_and_start_new()
        except LockStateException as e:
            return self._rejected(e)
        emit(self.event_log, EventType.SESSION_DISCARDED, self.clock.now(), {"source": self.doc_id})
        self._after_sync()
        return ActionResult(ok=True, persisted=persisted)

    async def restore_from_user(self, source_doc_id: str) -> ActionResult:
        try:
            persisted = await self.reconciler.restore_from_user(source_doc_id)
        except LockStateException as e:
            return self._rejected(e)
        emit(self.event_log, EventType.SESSION_RESTORED, self.clock.now(), {"source": source_doc_id})
        self._after_sync()
        self.notices.post("Data restored.", NoticeKind.INFO, self.settings.INFO_NOTICE_SECONDS)
        return ActionResult(ok=True, persisted=persisted)

    # --- Read side ---

    def effective_seconds(self) -> int:
        state = self.state
        if not state.is_cage_on:
            return 0
        return session_effective_seconds(
            self.clock.now(),
            state.cage_on_time,
            state.accumulated_pause_time_this_session,
            state.pause_start_time,
            state.is_paused,
        )

    def status(self) -> Dict[str, Any]:
        now = self.clock.now()
        refresh_counters(self.state, now)
        state = self.state
        goal = state.goal
        return {
            "sync_state": self.sync_state.value,
            "is_cage_on": state.is_cage_on,
            "is_paused": state.is_paused,
            "cage_on_time": state.cage_on_time.isoformat() if state.cage_on_time else None,
            "time_in_chastity": format_elapsed(state.time_in_chastity),
            "effective": format_elapsed(self.effective_seconds()),
            "time_cage_off": format_elapsed(state.time_cage_off),
            "total_time_cage_off": format_elapsed(state.total_time_cage_off),
            "pause_cooldown": format_elapsed(self.pause_policy.cooldown_remaining(state, now)),
            "goal": {
                "duration": format_elapsed(goal.goal_duration_seconds) if goal.goal_duration_seconds else None,
                "hardcore": goal.is_self_locking,
                "active": goal.is_goal_active,
                "completed": goal.is_goal_completed,
                "end_date": goal.goal_end_date.isoformat() if goal.goal_end_date else None,
            },
            "keyholder": {
                "required": format_elapsed(state.keyholder.required_keyholder_duration_seconds),
                "controls_locked": state.keyholder.controls_locked,
                "pending_release": state.pending_release is not None,
                "release_cooldown": format_elapsed(self.release.cooldown_remaining(state, now)),
            },
            "history": summarize(state.chastity_history).to_dict(),
            "notices": [n.message for n in self.notices.active()],
        }
