"""
lockstate_sdk/clock.py - Wall clock collaborator

All duration math goes through seconds_between(): whole seconds, floored,
never negative.
"""
import math
from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Timezone-aware UTC wall clock."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class ManualClock:
    """
    Clock that only moves when told to.

    Used by tests and by the CLI's --at option to replay actions at a fixed
    instant.
    """

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime(2024, 1, 1, tzinfo=UTC)
        if self._now.tzinfo is None:
            self._now = self._now.replace(tzinfo=UTC)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self._now = self._now + timedelta(seconds=seconds, **kwargs)
        return self._now

    def set(self, when: datetime) -> None:
        if when.tzinfo is None:
            when = when.replace(tzinfo=UTC)
        self._now = when


def seconds_between(later: datetime | None, earlier: datetime | None) -> int:
    """
    Whole seconds from `earlier` to `later`, floored and clamped to >= 0.

    Missing endpoints count as zero elapsed time.
    """
    if later is None or earlier is None:
        return 0
    delta = (later - earlier).total_seconds()
    if math.isnan(delta):
        return 0
    return max(0, math.floor(delta))
