"""
lockstate_sdk/models.py - In-memory session model

SessionState is the single owned state object for one user. Policies receive
it explicitly; nothing here is module-global.

INVARIANTS:
1. is_paused implies is_cage_on
2. HistoryEntry is frozen once created
3. Effective duration is derived (duration - total pause), never stored
4. One-time secrets are revealed at most once
"""
import base64
import hashlib
import hmac
import secrets
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

BACKUP_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


@dataclass
class PauseEvent:
    start_time: datetime
    reason: str = ""
    end_time: Optional[datetime] = None
    duration: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def closed(self, end_time: datetime, duration: int) -> "PauseEvent":
        return replace(self, end_time=end_time, duration=duration)


@dataclass(frozen=True)
class HistoryEntry:
    id: str
    period_number: int
    start_time: datetime
    end_time: datetime
    duration: int
    total_pause_duration_seconds: int
    pause_events: Tuple[PauseEvent, ...]
    reason_for_removal: str
    goal_duration_at_session_start: Optional[int] = None
    goal_status: Optional[str] = None
    goal_time_difference: Optional[int] = None

    @property
    def effective_duration(self) -> int:
        return max(0, self.duration - self.total_pause_duration_seconds)


@dataclass(frozen=True)
class PendingEnd:
    """A session end staged while the reason is captured."""
    start: datetime
    end: datetime


def normalize_code(candidate: str, length: int = 6) -> str:
    return (candidate or "").strip().upper()[:length]


def _hash_code(salt: str, code: str) -> str:
    return hashlib.sha256(f"{salt}:{code}".encode("utf-8")).hexdigest()


@dataclass
class OneTimeSecret:
    """
    Single-use emergency unlock secret.

    Only the salted hash is persisted. The plaintext lives in memory until the
    first reveal() and is dropped afterwards.
    """
    code_hash: str
    salt: str
    revealed: bool = False
    consumed: bool = False
    _plaintext: Optional[str] = field(default=None, repr=False, compare=False)

    @classmethod
    def generate(cls, length: int = 6) -> "OneTimeSecret":
        code = "".join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(length))
        salt = secrets.token_hex(8)
        return cls(code_hash=_hash_code(salt, code), salt=salt, _plaintext=code)

    def reveal(self) -> Optional[str]:
        if self.revealed or self._plaintext is None:
            return None
        code, self._plaintext = self._plaintext, None
        self.revealed = True
        return code

    def matches(self, candidate: str, length: int = 6) -> bool:
        if self.consumed:
            return False
        normalized = normalize_code(candidate, length)
        if len(normalized) != length:
            return False
        return hmac.compare_digest(_hash_code(self.salt, normalized), self.code_hash)

    def consume(self) -> None:
        self.consumed = True
        self._plaintext = None


@dataclass
class SealedCombination:
    """
    Lock combination kept opaque until the goal completes.

    The value is encoded and tagged with the deployment SECRET_KEY so tampering
    in the shared document is detected; reveal() hands it out once.
    """
    sealed: str
    tag: str
    revealed: bool = False

    @classmethod
    def seal(cls, combination: str, secret_key: str) -> "SealedCombination":
        sealed = base64.urlsafe_b64encode(combination.encode("utf-8")).decode("ascii")
        return cls(sealed=sealed, tag=cls._tag(sealed, secret_key))

    @staticmethod
    def _tag(sealed: str, secret_key: str) -> str:
        return hmac.new(secret_key.encode("utf-8"), sealed.encode("ascii"), hashlib.sha256).hexdigest()

    def reveal(self, secret_key: str) -> Optional[str]:
        if self.revealed:
            return None
        if not hmac.compare_digest(self._tag(self.sealed, secret_key), self.tag):
            return None
        self.revealed = True
        return base64.urlsafe_b64decode(self.sealed.encode("ascii")).decode("utf-8")


@dataclass
class Goal:
    goal_duration_seconds: Optional[int] = None
    is_self_locking: bool = False
    combination: Optional[SealedCombination] = None
    backup_code: Optional[OneTimeSecret] = None
    is_goal_active: bool = False
    is_goal_completed: bool = False
    goal_end_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_hardcore_locked(self) -> bool:
        return self.is_goal_active and self.is_self_locking and not self.is_goal_completed


@dataclass
class KeyholderRequirement:
    required_keyholder_duration_seconds: int = 0
    controls_locked: bool = False

    @property
    def is_active(self) -> bool:
        return self.required_keyholder_duration_seconds > 0


class ReleaseStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


@dataclass
class ReleaseRequest:
    requested_at: datetime
    status: ReleaseStatus = ReleaseStatus.PENDING
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    denied_at: Optional[datetime] = None
    handled_at: Optional[datetime] = None
    handled_by: Optional[str] = None


@dataclass
class SessionState:
    is_cage_on: bool = False
    cage_on_time: Optional[datetime] = None
    is_paused: bool = False
    pause_start_time: Optional[datetime] = None
    accumulated_pause_time_this_session: int = 0
    current_session_pause_events: List[PauseEvent] = field(default_factory=list)
    last_pause_end_time: Optional[datetime] = None
    has_session_ever_been_active: bool = False
    last_session_end_time: Optional[datetime] = None
    total_time_cage_off: int = 0
    chastity_history: List[HistoryEntry] = field(default_factory=list)
    goal: Goal = field(default_factory=Goal)
    goal_duration_at_session_start: Optional[int] = None
    keyholder: KeyholderRequirement = field(default_factory=KeyholderRequirement)
    release_requests: List[ReleaseRequest] = field(default_factory=list)
    revision: int = 0

    # Live counters, recomputed from the clock on every tick.
    time_in_chastity: int = 0
    time_cage_off: int = 0

    # Local-only staging for the two-phase end.
    pending_end: Optional[PendingEnd] = None

    @property
    def pending_release(self) -> Optional[ReleaseRequest]:
        for request in reversed(self.release_requests):
            if request.status == ReleaseStatus.PENDING:
                return request
        return None

    @property
    def last_denied_release(self) -> Optional[ReleaseRequest]:
        denied = [r for r in self.release_requests if r.status == ReleaseStatus.DENIED and r.denied_at]
        if not denied:
            return None
        return max(denied, key=lambda r: r.denied_at)

    def reset_session_fields(self) -> None:
        """Return the per-session fields to the off baseline. History is kept."""
        self.is_cage_on = False
        self.cage_on_time = None
        self.is_paused = False
        self.pause_start_time = None
        self.accumulated_pause_time_this_session = 0
        self.current_session_pause_events = []
        self.goal_duration_at_session_start = None
        self.time_in_chastity = 0
        self.pending_end = None


@dataclass
class Mutation:
    """
    Outcome of a policy action.

    `fields` names the top-level document keys that changed and must be
    merge-written. `revealed` carries one-time secrets handed out by this
    action (never persisted in plaintext).
    """
    fields: Tuple[str, ...] = ()
    warning: Optional[str] = None
    revealed: Dict[str, str] = field(default_factory=dict)

    def merge(self, other: Optional["Mutation"]) -> "Mutation":
        if other is None:
            return self
        fields = self.fields + tuple(f for f in other.fields if f not in self.fields)
        return Mutation(
            fields=fields,
            warning=other.warning or self.warning,
            revealed={**self.revealed, **other.revealed},
        )
