"""
lockstate_sdk/notices.py - Transient user-facing messages

A notice is posted with a lifetime and disappears once the clock passes its
expiry. Rendering is left to the embedding UI; this board only decides what
is currently visible.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from .clock import Clock
from .errors import ErrorClassification, LockStateError

logger = logging.getLogger(__name__)


class NoticeKind(str, Enum):
    INFO = "info"
    POLICY = "policy"
    VERIFICATION = "verification"
    STORE_ERROR = "store_error"
    INPUT = "input"


_KIND_BY_CLASSIFICATION = {
    ErrorClassification.POLICY_VIOLATION: NoticeKind.POLICY,
    ErrorClassification.VERIFICATION: NoticeKind.VERIFICATION,
    ErrorClassification.REMOTE_IO: NoticeKind.STORE_ERROR,
    ErrorClassification.INVALID_INPUT: NoticeKind.INPUT,
}


@dataclass(frozen=True)
class Notice:
    kind: NoticeKind
    message: str
    posted_at: datetime
    expires_at: Optional[datetime]
    code: Optional[str] = None

    def is_visible(self, now: datetime) -> bool:
        return self.expires_at is None or now < self.expires_at


class NoticeBoard:
    def __init__(self, clock: Clock):
        self.clock = clock
        self._notices: List[Notice] = []

    def post(
        self,
        message: str,
        kind: NoticeKind = NoticeKind.INFO,
        lifetime_seconds: Optional[float] = None,
        code: Optional[str] = None,
    ) -> Notice:
        now = self.clock.now()
        expires_at = now + timedelta(seconds=lifetime_seconds) if lifetime_seconds else None
        notice = Notice(kind=kind, message=message, posted_at=now, expires_at=expires_at, code=code)
        # One visible notice per kind; a newer one replaces the older.
        self._notices = [n for n in self._notices if n.kind != kind]
        self._notices.append(notice)
        logger.debug("Notice posted (%s): %s", kind.value, message)
        return notice

    def post_error(self, error: LockStateError, lifetime_seconds: Optional[float] = None) -> Notice:
        kind = _KIND_BY_CLASSIFICATION.get(error.classification, NoticeKind.POLICY)
        return self.post(error.message, kind=kind, lifetime_seconds=lifetime_seconds, code=error.error_code.value)

    def active(self) -> List[Notice]:
        now = self.clock.now()
        self._notices = [n for n in self._notices if n.is_visible(now)]
        return list(self._notices)

    def latest(self, kind: Optional[NoticeKind] = None) -> Optional[Notice]:
        for notice in reversed(self.active()):
            if kind is None or notice.kind == kind:
                return notice
        return None

    def dismiss(self, kind: NoticeKind) -> None:
        self._notices = [n for n in self._notices if n.kind != kind]
