"""
lockstate_sdk/history.py - History summaries for reports
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .durations import GOAL_MET, GOAL_NOT_MET, format_elapsed, format_goal_difference
from .models import HistoryEntry


@dataclass(frozen=True)
class HistorySummary:
    session_count: int
    total_duration: int
    total_pause: int
    total_effective: int
    average_effective: int
    longest_effective: int
    goals_met: int
    goals_not_met: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_count": self.session_count,
            "total_duration": self.total_duration,
            "total_pause": self.total_pause,
            "total_effective": self.total_effective,
            "average_effective": self.average_effective,
            "longest_effective": self.longest_effective,
            "goals_met": self.goals_met,
            "goals_not_met": self.goals_not_met,
        }


def summarize(history: Sequence[HistoryEntry]) -> HistorySummary:
    effective = [entry.effective_duration for entry in history]
    return HistorySummary(
        session_count=len(history),
        total_duration=sum(entry.duration for entry in history),
        total_pause=sum(entry.total_pause_duration_seconds for entry in history),
        total_effective=sum(effective),
        average_effective=sum(effective) // len(effective) if effective else 0,
        longest_effective=max(effective, default=0),
        goals_met=sum(1 for entry in history if entry.goal_status == GOAL_MET),
        goals_not_met=sum(1 for entry in history if entry.goal_status == GOAL_NOT_MET),
    )


def describe_entry(entry: HistoryEntry) -> Dict[str, Optional[str]]:
    """Display row for one history entry, newest-first tables use this."""
    return {
        "period": str(entry.period_number),
        "start": entry.start_time.isoformat(),
        "end": entry.end_time.isoformat(),
        "duration": format_elapsed(entry.duration),
        "paused": format_elapsed(entry.total_pause_duration_seconds),
        "effective": format_elapsed(entry.effective_duration),
        "reason": entry.reason_for_removal,
        "goal": entry.goal_status,
        "goal_difference": format_goal_difference(entry.goal_status, entry.goal_time_difference) or None,
    }


def describe_history(history: Sequence[HistoryEntry]) -> List[Dict[str, Optional[str]]]:
    return [describe_entry(entry) for entry in sorted(history, key=lambda e: e.period_number, reverse=True)]
