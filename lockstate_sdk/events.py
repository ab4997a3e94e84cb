"""
lockstate_sdk/events.py - Audit event definitions and the event log collaborator

The event log is fire-and-forget: append() failures are logged locally and
never block the action that produced the event.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Protocol

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    SESSION_START = "SESSION_START"
    SESSION_END = "SESSION_END"
    START_TIME_EDIT = "START_TIME_EDIT"
    PAUSE = "PAUSE"
    RESUME = "RESUME"
    GOAL_SET = "GOAL_SET"
    GOAL_CLEARED = "GOAL_CLEARED"
    GOAL_COMPLETED = "GOAL_COMPLETED"
    EMERGENCY_UNLOCK = "EMERGENCY_UNLOCK"
    RELEASE_REQUESTED = "RELEASE_REQUESTED"
    RELEASE_APPROVED = "RELEASE_APPROVED"
    RELEASE_DENIED = "RELEASE_DENIED"
    KEYHOLDER_DURATION = "KEYHOLDER_DURATION"
    SESSION_RESTORED = "SESSION_RESTORED"
    SESSION_DISCARDED = "SESSION_DISCARDED"


REQUIRED_FIELDS = {
    EventType.SESSION_START: ["start_time"],
    EventType.SESSION_END: ["period_number", "duration", "reason"],
    EventType.START_TIME_EDIT: ["old_start_time", "new_start_time", "edited_by", "notes"],
    EventType.PAUSE: ["reason"],
    EventType.RESUME: ["duration"],
    EventType.EMERGENCY_UNLOCK: ["period_number"],
    EventType.RELEASE_DENIED: ["request_id", "handled_by"],
    EventType.KEYHOLDER_DURATION: ["change", "required_seconds"],
}


def validate_payload(event_type: EventType, payload: Dict[str, Any]):
    """Strictly checks for required fields. Raises ValueError on failure."""
    req = REQUIRED_FIELDS.get(event_type)
    if req:
        missing = [f for f in req if f not in payload]
        if missing:
            raise ValueError(f"Event {event_type} missing required fields: {missing}")


@dataclass(frozen=True)
class AuditEvent:
    type: EventType
    timestamp: datetime
    payload: Dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
            "payload": self.payload,
        }


class EventLog(Protocol):
    def append(self, event: AuditEvent) -> None: ...


class InMemoryEventLog:
    def __init__(self):
        self.events: List[AuditEvent] = []

    def append(self, event: AuditEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> List[AuditEvent]:
        return [e for e in self.events if e.type == event_type]


class LoggingEventLog:
    """Writes audit events to the `lockstate_sdk.audit` logger."""

    def __init__(self):
        self._logger = logging.getLogger("lockstate_sdk.audit")

    def append(self, event: AuditEvent) -> None:
        self._logger.info("%s %s %s", event.timestamp.isoformat(), event.type.value, event.payload)


class NullEventLog:
    def append(self, event: AuditEvent) -> None:
        return None


def emit(event_log: EventLog, event_type: EventType, timestamp: datetime, payload: Dict[str, Any]) -> bool:
    """
    Validate and append one audit event.

    Returns False (after logging a warning) when the log rejects the event;
    callers treat that as a local-only warning.
    """
    validate_payload(event_type, payload)
    try:
        event_log.append(AuditEvent(type=event_type, timestamp=timestamp, payload=payload))
        return True
    except Exception:
        logger.warning("Event log append failed for %s", event_type.value, exc_info=True)
        return False
