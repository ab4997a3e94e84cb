"""
lockstate_sdk/durations.py - Pure duration arithmetic

No state, no clock reads, no I/O. Every function takes the instants it needs
so the scheduling loop and the policies can share one implementation.
"""
import math
from datetime import datetime
from typing import Any, Optional, Tuple

from .clock import seconds_between

GOAL_MET = "Met"
GOAL_NOT_MET = "Not Met"


def as_seconds(value: Any) -> int:
    """Coerce a stored duration to whole non-negative seconds (NaN/None -> 0)."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number) or math.isinf(number):
        return 0
    return max(0, int(number))


def effective_seconds(elapsed: int, accumulated_pause: int, live_pause: int = 0) -> int:
    return max(0, as_seconds(elapsed) - as_seconds(accumulated_pause) - as_seconds(live_pause))


def session_effective_seconds(
    now: datetime,
    cage_on_time: Optional[datetime],
    accumulated_pause: int,
    pause_start_time: Optional[datetime] = None,
    is_paused: bool = False,
) -> int:
    """
    Effective time of the running session at `now`.

    effective = elapsed - accumulated pause - open pause (when paused),
    clamped at zero when pauses exceed elapsed time (clock skew, manual edits).
    """
    elapsed = seconds_between(now, cage_on_time)
    live_pause = seconds_between(now, pause_start_time) if is_paused else 0
    return effective_seconds(elapsed, accumulated_pause, live_pause)


def format_elapsed(seconds: Any) -> str:
    """
    Render seconds as `Dd HHh MMm SSs`, dropping leading zero units.

    >>> format_elapsed(45)
    '45s'
    >>> format_elapsed(310)
    '05m 10s'
    >>> format_elapsed(43200)
    '12h 00m 00s'
    >>> format_elapsed(17400)
    '4h 50m 00s'
    >>> format_elapsed(106215)
    '1d 05h 30m 15s'
    """
    total = as_seconds(seconds)
    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)

    parts = []
    if days > 0:
        parts.append(f"{days}d")
        parts.append(f"{hours:02d}h")
    elif hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0 or hours > 0 or days > 0:
        parts.append(f"{minutes:02d}m")
    parts.append(f"{secs:02d}s")
    return " ".join(parts)


def judge_goal(effective: int, goal_seconds: Optional[int]) -> Tuple[Optional[str], Optional[int]]:
    """
    Goal verdict for a finished session.

    Returns (status, difference) where difference is effective - goal:
    >= 0 when met (the exceeded amount), < 0 when not met (the shortfall).
    Without a positive goal both values are None.
    """
    goal = as_seconds(goal_seconds)
    if goal_seconds is None or goal <= 0:
        return None, None
    difference = as_seconds(effective) - goal
    status = GOAL_MET if difference >= 0 else GOAL_NOT_MET
    return status, difference


def format_goal_difference(status: Optional[str], difference: Optional[int]) -> str:
    if status is None or difference is None:
        return ""
    if status == GOAL_MET:
        return f"Exceeded by {format_elapsed(abs(difference))}"
    return f"Short by {format_elapsed(abs(difference))}"


def cooldown_remaining(now: datetime, anchor: Optional[datetime], window_seconds: int) -> int:
    """Seconds left in a cooldown window that started at `anchor` (0 when clear)."""
    if anchor is None or window_seconds <= 0:
        return 0
    return max(0, window_seconds - seconds_between(now, anchor))
