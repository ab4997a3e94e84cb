"""
lockstate_sdk/pause.py - Pause Policy

ACTIVE <-> PAUSED, only while the cage is on.

RULES:
1. A new pause is rejected until PAUSE_COOLDOWN_HOURS have passed since the
   previous pause ENDED (cooldown is anchored on resume, not on start).
2. Every pause is logged as a PauseEvent, open until resume closes it.
3. Paused time accumulates per session and is only reset by a new start.
"""
import logging
from datetime import datetime
from typing import Optional

from . import errors
from .clock import seconds_between
from .config import Settings
from .durations import cooldown_remaining, format_elapsed
from .events import EventLog, EventType, emit
from .models import Mutation, PauseEvent, SessionState

logger = logging.getLogger(__name__)

PAUSE_FIELDS = (
    "is_paused",
    "pause_start_time",
    "accumulated_pause_time_this_session",
    "current_session_pause_events",
    "last_pause_end_time",
)


class PausePolicy:
    def __init__(self, settings: Settings, event_log: EventLog):
        self.settings = settings
        self.event_log = event_log

    def cooldown_remaining(self, state: SessionState, now: datetime) -> int:
        return cooldown_remaining(now, state.last_pause_end_time, self.settings.pause_cooldown_seconds)

    def initiate_pause(self, state: SessionState, now: datetime) -> None:
        """Check that a pause may start. The caller then asks for a reason."""
        if not state.is_cage_on:
            raise errors.session_inactive()
        if state.is_paused:
            raise errors.already_paused()
        remaining = self.cooldown_remaining(state, now)
        if remaining > 0:
            logger.info("Pause rejected, cooldown has %ss left", remaining)
            raise errors.pause_cooldown(remaining, format_elapsed(remaining))

    def confirm_pause(self, state: SessionState, reason: Optional[str], now: datetime) -> Mutation:
        self.initiate_pause(state, now)
        reason = (reason or "").strip()

        state.is_paused = True
        state.pause_start_time = now
        state.current_session_pause_events.append(PauseEvent(start_time=now, reason=reason))

        emit(self.event_log, EventType.PAUSE, now, {"reason": reason})
        logger.info("Session paused (%s)", reason or "no reason")
        return Mutation(fields=PAUSE_FIELDS)

    def resume(self, state: SessionState, now: datetime) -> Mutation:
        if not state.is_paused or state.pause_start_time is None:
            raise errors.not_paused()

        duration = close_open_pause(state, now)
        state.accumulated_pause_time_this_session += duration
        state.is_paused = False
        state.pause_start_time = None
        state.last_pause_end_time = now

        emit(self.event_log, EventType.RESUME, now, {"duration": duration})
        logger.info("Session resumed after %ss", duration)
        return Mutation(fields=PAUSE_FIELDS)


def close_open_pause(state: SessionState, end: datetime) -> int:
    """
    Close the open PauseEvent at `end` and return the open pause's length.

    Does not touch the accumulator or the pause flags.
    """
    if not state.is_paused or state.pause_start_time is None:
        return 0
    duration = seconds_between(end, state.pause_start_time)
    events = state.current_session_pause_events
    for index in range(len(events) - 1, -1, -1):
        if events[index].is_open:
            events[index] = events[index].closed(end, duration)
            break
    return duration
