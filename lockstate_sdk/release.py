"""
lockstate_sdk/release.py - Release Request Workflow

Only in force while a keyholder duration is set. The wearer files a request;
the keyholder approves (session ends) or denies (4 hour cooldown before the
next request).
"""
import logging
from datetime import datetime

from . import errors
from .config import Settings
from .durations import cooldown_remaining, format_elapsed
from .events import EventLog, EventType, emit
from .lifecycle import SessionLifecycle
from .models import Mutation, ReleaseRequest, ReleaseStatus, SessionState

logger = logging.getLogger(__name__)

RELEASE_FIELDS = ("release_requests",)
APPROVED_REASON = "Keyholder approved release"


class ReleaseWorkflow:
    def __init__(self, settings: Settings, event_log: EventLog, lifecycle: SessionLifecycle):
        self.settings = settings
        self.event_log = event_log
        self.lifecycle = lifecycle

    def cooldown_remaining(self, state: SessionState, now: datetime) -> int:
        last = state.last_denied_release
        if last is None:
            return 0
        return cooldown_remaining(now, last.denied_at, self.settings.release_denial_cooldown_seconds)

    def file_release_request(self, state: SessionState, now: datetime) -> Mutation:
        if not state.keyholder.is_active:
            raise errors.release_not_required()
        if not state.is_cage_on:
            raise errors.session_inactive()
        if state.pending_release is not None:
            raise errors.release_pending()
        remaining = self.cooldown_remaining(state, now)
        if remaining > 0:
            logger.info("Release request rejected, cooldown has %ss left", remaining)
            raise errors.release_cooldown(remaining, format_elapsed(remaining))

        request = ReleaseRequest(requested_at=now)
        state.release_requests.append(request)
        emit(self.event_log, EventType.RELEASE_REQUESTED, now, {"request_id": request.id})
        logger.info("Release request %s filed", request.id)
        return Mutation(fields=RELEASE_FIELDS)

    def keyholder_approve(self, state: SessionState, now: datetime, handled_by: str = "keyholder") -> Mutation:
        request = state.pending_release
        if request is None:
            raise errors.no_pending_release()
        request.status = ReleaseStatus.APPROVED
        request.handled_at = now
        request.handled_by = handled_by

        mutation = Mutation(fields=RELEASE_FIELDS)
        emit(
            self.event_log,
            EventType.RELEASE_APPROVED,
            now,
            {"request_id": request.id, "handled_by": handled_by},
        )
        logger.info("Release request %s approved by %s", request.id, handled_by)
        if state.is_cage_on:
            mutation = mutation.merge(self.lifecycle.end_now(state, APPROVED_REASON, now))
        return mutation

    def keyholder_deny(self, state: SessionState, now: datetime, handled_by: str = "keyholder") -> Mutation:
        request = state.pending_release
        if request is None:
            raise errors.no_pending_release()
        request.status = ReleaseStatus.DENIED
        request.denied_at = now
        request.handled_at = now
        request.handled_by = handled_by

        emit(self.event_log, EventType.RELEASE_DENIED, now, {"request_id": request.id, "handled_by": handled_by})
        logger.info("Release request %s denied by %s", request.id, handled_by)
        return Mutation(fields=RELEASE_FIELDS)
