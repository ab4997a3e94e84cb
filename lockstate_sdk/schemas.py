"""
schemas.py - Pydantic schema for the synced session document.

Remote snapshots are UNTRUSTED: another device, an older client, or a manual
edit may have written them. Validation never rejects a snapshot; corrupt values
are coerced to safe defaults instead.

COERCION RULES:
- Timestamps: datetime, ISO-8601 string, epoch seconds, or {"seconds": ...}
  mappings are accepted; anything else becomes None. Naive values are UTC.
- Durations: NaN, negative, or non-numeric values become 0.
- A document with is_cage_on=False carries no pause state.
- is_paused without a pause_start_time is not paused.
- Non-mapping list items, and secrets missing their hash or seal, are dropped.
"""

import math
from datetime import UTC, datetime
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .durations import GOAL_MET, GOAL_NOT_MET, as_seconds
from .models import (
    Goal,
    HistoryEntry,
    KeyholderRequirement,
    OneTimeSecret,
    PauseEvent,
    ReleaseRequest,
    ReleaseStatus,
    SealedCombination,
    SessionState,
)


def coerce_timestamp(value: Any) -> datetime | None:
    """Best-effort conversion of a stored timestamp. Invalid input -> None."""
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        value = value.get("seconds", value.get("_seconds"))
        if value is None:
            return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, bool):
        return None
    elif isinstance(value, (int, float)):
        if math.isnan(value) or math.isinf(value):
            return None
        try:
            parsed = datetime.fromtimestamp(value, UTC)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _optional_seconds(value: Any) -> int | None:
    if value is None:
        return None
    return as_seconds(value)


def _records(value: Any) -> list:
    """Keep only mapping items of a stored list; anything else is dropped."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, (dict, BaseModel))]


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


class DocumentModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


# --- Nested records ---


class PauseEventDoc(DocumentModel):
    start_time: datetime | None = None
    end_time: datetime | None = None
    reason: str = ""
    duration: int | None = None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _timestamps(cls, v):
        return coerce_timestamp(v)

    @field_validator("duration", mode="before")
    @classmethod
    def _duration(cls, v):
        return _optional_seconds(v)

    @field_validator("reason", mode="before")
    @classmethod
    def _reason(cls, v):
        return _text(v)

    def to_model(self) -> PauseEvent | None:
        if self.start_time is None:
            return None
        return PauseEvent(
            start_time=self.start_time,
            end_time=self.end_time,
            reason=self.reason,
            duration=self.duration,
        )

    @classmethod
    def from_model(cls, event: PauseEvent) -> "PauseEventDoc":
        return cls(
            start_time=event.start_time,
            end_time=event.end_time,
            reason=event.reason,
            duration=event.duration,
        )


def _pause_events(docs: Iterable[PauseEventDoc]) -> list[PauseEvent]:
    return [e for e in (d.to_model() for d in docs) if e is not None]


class HistoryEntryDoc(DocumentModel):
    id: str = ""
    period_number: int = 0
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration: int = 0
    total_pause_duration_seconds: int = 0
    pause_events: list[PauseEventDoc] = Field(default_factory=list)
    reason_for_removal: str = ""
    goal_duration_at_session_start: int | None = None
    goal_status: str | None = None
    goal_time_difference: int | None = None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _timestamps(cls, v):
        return coerce_timestamp(v)

    @field_validator("period_number", "duration", "total_pause_duration_seconds", mode="before")
    @classmethod
    def _seconds(cls, v):
        return as_seconds(v)

    @field_validator("goal_duration_at_session_start", mode="before")
    @classmethod
    def _goal_seconds(cls, v):
        return _optional_seconds(v)

    @field_validator("goal_time_difference", mode="before")
    @classmethod
    def _difference(cls, v):
        # Signed: negative is a shortfall.
        try:
            number = float(v)
        except (TypeError, ValueError):
            return None
        if math.isnan(number) or math.isinf(number):
            return None
        return int(number)

    @field_validator("goal_status", mode="before")
    @classmethod
    def _status(cls, v):
        return v if v in (GOAL_MET, GOAL_NOT_MET) else None

    @field_validator("id", "reason_for_removal", mode="before")
    @classmethod
    def _strings(cls, v):
        return _text(v)

    @field_validator("pause_events", mode="before")
    @classmethod
    def _events(cls, v):
        return _records(v)

    def to_model(self) -> HistoryEntry | None:
        if self.start_time is None or self.end_time is None:
            return None
        return HistoryEntry(
            id=self.id,
            period_number=self.period_number,
            start_time=self.start_time,
            end_time=self.end_time,
            duration=self.duration,
            # Pause total can never exceed the session it belongs to.
            total_pause_duration_seconds=min(self.total_pause_duration_seconds, self.duration),
            pause_events=tuple(_pause_events(self.pause_events)),
            reason_for_removal=self.reason_for_removal,
            goal_duration_at_session_start=self.goal_duration_at_session_start,
            goal_status=self.goal_status,
            goal_time_difference=self.goal_time_difference,
        )

    @classmethod
    def from_model(cls, entry: HistoryEntry) -> "HistoryEntryDoc":
        return cls(
            id=entry.id,
            period_number=entry.period_number,
            start_time=entry.start_time,
            end_time=entry.end_time,
            duration=entry.duration,
            total_pause_duration_seconds=entry.total_pause_duration_seconds,
            pause_events=[PauseEventDoc.from_model(e) for e in entry.pause_events],
            reason_for_removal=entry.reason_for_removal,
            goal_duration_at_session_start=entry.goal_duration_at_session_start,
            goal_status=entry.goal_status,
            goal_time_difference=entry.goal_time_difference,
        )


class OneTimeSecretDoc(DocumentModel):
    code_hash: str = ""
    salt: str = ""
    revealed: bool = False
    consumed: bool = False

    @field_validator("code_hash", "salt", mode="before")
    @classmethod
    def _strings(cls, v):
        return _text(v)

    @field_validator("revealed", "consumed", mode="before")
    @classmethod
    def _flags(cls, v):
        return bool(v)

    def to_model(self) -> OneTimeSecret | None:
        if not self.code_hash or not self.salt:
            return None
        # Plaintext never leaves the device that generated it.
        return OneTimeSecret(
            code_hash=self.code_hash,
            salt=self.salt,
            revealed=self.revealed,
            consumed=self.consumed,
        )

    @classmethod
    def from_model(cls, secret: OneTimeSecret) -> "OneTimeSecretDoc":
        return cls(
            code_hash=secret.code_hash,
            salt=secret.salt,
            revealed=secret.revealed,
            consumed=secret.consumed,
        )


class SealedCombinationDoc(DocumentModel):
    sealed: str = ""
    tag: str = ""
    revealed: bool = False

    @field_validator("sealed", "tag", mode="before")
    @classmethod
    def _strings(cls, v):
        return _text(v)

    @field_validator("revealed", mode="before")
    @classmethod
    def _flags(cls, v):
        return bool(v)

    def to_model(self) -> SealedCombination | None:
        if not self.sealed or not self.tag:
            return None
        return SealedCombination(sealed=self.sealed, tag=self.tag, revealed=self.revealed)

    @classmethod
    def from_model(cls, combination: SealedCombination) -> "SealedCombinationDoc":
        return cls(sealed=combination.sealed, tag=combination.tag, revealed=combination.revealed)


class GoalDoc(DocumentModel):
    goal_duration_seconds: int | None = None
    is_self_locking: bool = False
    self_lock_combination: SealedCombinationDoc | None = None
    backup_code: OneTimeSecretDoc | None = None
    is_goal_active: bool = False
    is_goal_completed: bool = False
    goal_end_date: datetime | None = None
    completed_at: datetime | None = None

    @field_validator("goal_end_date", "completed_at", mode="before")
    @classmethod
    def _timestamps(cls, v):
        return coerce_timestamp(v)

    @field_validator("goal_duration_seconds", mode="before")
    @classmethod
    def _duration(cls, v):
        seconds = _optional_seconds(v)
        return seconds if seconds else None

    @field_validator("self_lock_combination", "backup_code", mode="before")
    @classmethod
    def _secret(cls, v):
        return v if isinstance(v, (dict, BaseModel)) else None

    @field_validator("is_self_locking", "is_goal_active", "is_goal_completed", mode="before")
    @classmethod
    def _flags(cls, v):
        return bool(v)

    def to_model(self) -> Goal:
        return Goal(
            goal_duration_seconds=self.goal_duration_seconds,
            is_self_locking=self.is_self_locking,
            combination=self.self_lock_combination.to_model() if self.self_lock_combination else None,
            backup_code=self.backup_code.to_model() if self.backup_code else None,
            is_goal_active=self.is_goal_active,
            is_goal_completed=self.is_goal_completed,
            goal_end_date=self.goal_end_date,
            completed_at=self.completed_at,
        )

    @classmethod
    def from_model(cls, goal: Goal) -> "GoalDoc":
        return cls(
            goal_duration_seconds=goal.goal_duration_seconds,
            is_self_locking=goal.is_self_locking,
            self_lock_combination=SealedCombinationDoc.from_model(goal.combination) if goal.combination else None,
            backup_code=OneTimeSecretDoc.from_model(goal.backup_code) if goal.backup_code else None,
            is_goal_active=goal.is_goal_active,
            is_goal_completed=goal.is_goal_completed,
            goal_end_date=goal.goal_end_date,
            completed_at=goal.completed_at,
        )


class ReleaseRequestDoc(DocumentModel):
    id: str = ""
    status: ReleaseStatus = ReleaseStatus.PENDING
    requested_at: datetime | None = None
    denied_at: datetime | None = None
    handled_at: datetime | None = None
    handled_by: str | None = None

    @field_validator("requested_at", "denied_at", "handled_at", mode="before")
    @classmethod
    def _timestamps(cls, v):
        return coerce_timestamp(v)

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v):
        try:
            return ReleaseStatus(v)
        except (TypeError, ValueError):
            return ReleaseStatus.DENIED

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, v):
        return _text(v)

    @field_validator("handled_by", mode="before")
    @classmethod
    def _handled_by(cls, v):
        if v is None or isinstance(v, str):
            return v
        return str(v)

    def to_model(self) -> ReleaseRequest | None:
        if not self.id or self.requested_at is None:
            return None
        return ReleaseRequest(
            id=self.id,
            status=self.status,
            requested_at=self.requested_at,
            denied_at=self.denied_at,
            handled_at=self.handled_at,
            handled_by=self.handled_by,
        )

    @classmethod
    def from_model(cls, request: ReleaseRequest) -> "ReleaseRequestDoc":
        return cls(
            id=request.id,
            status=request.status,
            requested_at=request.requested_at,
            denied_at=request.denied_at,
            handled_at=request.handled_at,
            handled_by=request.handled_by,
        )


# --- The document ---


SESSION_FIELDS = (
    "is_cage_on",
    "cage_on_time",
    "is_paused",
    "pause_start_time",
    "accumulated_pause_time_this_session",
    "current_session_pause_events",
    "goal_duration_at_session_start",
)


class SessionDocument(DocumentModel):
    """One user's synced state. Top-level keys are the merge-write unit."""

    is_cage_on: bool = False
    cage_on_time: datetime | None = None
    is_paused: bool = False
    pause_start_time: datetime | None = None
    accumulated_pause_time_this_session: int = 0
    current_session_pause_events: list[PauseEventDoc] = Field(default_factory=list)
    last_pause_end_time: datetime | None = None
    has_session_ever_been_active: bool = False
    last_session_end_time: datetime | None = None
    total_time_cage_off: int = 0
    chastity_history: list[HistoryEntryDoc] = Field(default_factory=list)
    goal: GoalDoc = Field(default_factory=GoalDoc)
    goal_duration_at_session_start: int | None = None
    required_keyholder_duration_seconds: int = 0
    is_keyholder_controls_locked: bool = False
    release_requests: list[ReleaseRequestDoc] = Field(default_factory=list)
    revision: int = 0

    @field_validator(
        "cage_on_time", "pause_start_time", "last_pause_end_time", "last_session_end_time", mode="before"
    )
    @classmethod
    def _timestamps(cls, v):
        return coerce_timestamp(v)

    @field_validator(
        "accumulated_pause_time_this_session",
        "total_time_cage_off",
        "required_keyholder_duration_seconds",
        "revision",
        mode="before",
    )
    @classmethod
    def _seconds(cls, v):
        return as_seconds(v)

    @field_validator("goal_duration_at_session_start", mode="before")
    @classmethod
    def _goal_seconds(cls, v):
        return _optional_seconds(v)

    @field_validator("is_cage_on", "is_paused", "has_session_ever_been_active", "is_keyholder_controls_locked", mode="before")
    @classmethod
    def _flags(cls, v):
        return bool(v)

    @field_validator("current_session_pause_events", "chastity_history", "release_requests", mode="before")
    @classmethod
    def _lists(cls, v):
        return _records(v)

    @field_validator("goal", mode="before")
    @classmethod
    def _goal(cls, v):
        return v if isinstance(v, (dict, BaseModel)) else {}

    @model_validator(mode="after")
    def _consistent_session(self) -> "SessionDocument":
        if not self.is_cage_on:
            self.cage_on_time = None
            self.is_paused = False
            self.pause_start_time = None
        elif self.cage_on_time is None:
            # An active session without a start cannot be timed.
            self.is_cage_on = False
            self.is_paused = False
            self.pause_start_time = None
        if self.is_paused and self.pause_start_time is None:
            self.is_paused = False
        if not self.is_paused:
            self.pause_start_time = None
        return self

    def to_state(self) -> SessionState:
        return SessionState(
            is_cage_on=self.is_cage_on,
            cage_on_time=self.cage_on_time,
            is_paused=self.is_paused,
            pause_start_time=self.pause_start_time,
            accumulated_pause_time_this_session=self.accumulated_pause_time_this_session,
            current_session_pause_events=_pause_events(self.current_session_pause_events),
            last_pause_end_time=self.last_pause_end_time,
            has_session_ever_been_active=self.has_session_ever_been_active or self.is_cage_on,
            last_session_end_time=self.last_session_end_time,
            total_time_cage_off=self.total_time_cage_off,
            chastity_history=[e for e in (h.to_model() for h in self.chastity_history) if e is not None],
            goal=self.goal.to_model(),
            goal_duration_at_session_start=self.goal_duration_at_session_start,
            keyholder=KeyholderRequirement(
                required_keyholder_duration_seconds=self.required_keyholder_duration_seconds,
                controls_locked=self.is_keyholder_controls_locked,
            ),
            release_requests=[r for r in (d.to_model() for d in self.release_requests) if r is not None],
            revision=self.revision,
        )

    @classmethod
    def from_state(cls, state: SessionState) -> "SessionDocument":
        return cls(
            is_cage_on=state.is_cage_on,
            cage_on_time=state.cage_on_time,
            is_paused=state.is_paused,
            pause_start_time=state.pause_start_time,
            accumulated_pause_time_this_session=state.accumulated_pause_time_this_session,
            current_session_pause_events=[PauseEventDoc.from_model(e) for e in state.current_session_pause_events],
            last_pause_end_time=state.last_pause_end_time,
            has_session_ever_been_active=state.has_session_ever_been_active,
            last_session_end_time=state.last_session_end_time,
            total_time_cage_off=state.total_time_cage_off,
            chastity_history=[HistoryEntryDoc.from_model(h) for h in state.chastity_history],
            goal=GoalDoc.from_model(state.goal),
            goal_duration_at_session_start=state.goal_duration_at_session_start,
            required_keyholder_duration_seconds=state.keyholder.required_keyholder_duration_seconds,
            is_keyholder_controls_locked=state.keyholder.controls_locked,
            release_requests=[ReleaseRequestDoc.from_model(r) for r in state.release_requests],
            revision=state.revision,
        )


DOCUMENT_FIELDS = tuple(SessionDocument.model_fields)


def parse_document(raw: dict[str, Any] | None) -> SessionState:
    """Validate a raw snapshot into a SessionState (None -> off baseline)."""
    return SessionDocument.model_validate(raw or {}).to_state()


def serialize_state(state: SessionState) -> dict[str, Any]:
    """Full JSON-safe document for a state."""
    return SessionDocument.from_state(state).model_dump(mode="json")


def build_patch(state: SessionState, fields: Iterable[str]) -> dict[str, Any]:
    """
    Merge-patch containing only the named top-level keys (plus revision).

    Unknown keys raise KeyError so a typo cannot silently drop a write.
    """
    wanted = set(fields) | {"revision"}
    unknown = wanted - set(DOCUMENT_FIELDS)
    if unknown:
        raise KeyError(f"Unknown document fields: {sorted(unknown)}")
    return SessionDocument.from_state(state).model_dump(mode="json", include=wanted)


def off_baseline_document() -> dict[str, Any]:
    """Defaults written when no remote document exists yet."""
    return serialize_state(SessionState())
