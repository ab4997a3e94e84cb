"""
lockstate_sdk/errors.py - Error Taxonomy

Errors are contracts, not strings. Every rejection carries a stable code and
a classification; the message is what the user sees.

Classifications:
- POLICY_VIOLATION: action attempted outside its allowed state
- REMOTE_IO: document store read/write failed, local state kept
- VERIFICATION: wrong unlock code, unknown restore ID (generic wording)
- INVALID_INPUT: malformed dates, durations, reasons
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ErrorClassification(str, Enum):
    POLICY_VIOLATION = "POLICY_VIOLATION"
    REMOTE_IO = "REMOTE_IO"
    VERIFICATION = "VERIFICATION"
    INVALID_INPUT = "INVALID_INPUT"


class LockStateErrorCode(str, Enum):
    # POLICY_VIOLATION
    SESSION_ACTIVE = "LOCK_SESSION_ACTIVE"
    SESSION_INACTIVE = "LOCK_SESSION_INACTIVE"
    SESSION_PAUSED = "LOCK_SESSION_PAUSED"
    NOT_PAUSED = "LOCK_NOT_PAUSED"
    PAUSE_COOLDOWN = "LOCK_PAUSE_COOLDOWN"
    NO_PENDING_END = "LOCK_NO_PENDING_END"
    HARDCORE_ACTIVE = "LOCK_HARDCORE_ACTIVE"
    KEYHOLDER_LOCKED = "LOCK_KEYHOLDER_LOCKED"
    RELEASE_NOT_REQUIRED = "LOCK_RELEASE_NOT_REQUIRED"
    RELEASE_PENDING = "LOCK_RELEASE_PENDING"
    RELEASE_COOLDOWN = "LOCK_RELEASE_COOLDOWN"
    NO_PENDING_RELEASE = "LOCK_NO_PENDING_RELEASE"
    NO_HARDCORE_GOAL = "LOCK_NO_HARDCORE_GOAL"
    CONFLICT_UNRESOLVED = "LOCK_CONFLICT_UNRESOLVED"
    NO_CONFLICT = "LOCK_NO_CONFLICT"

    # VERIFICATION
    UNLOCK_FAILED = "LOCK_UNLOCK_FAILED"
    RESTORE_FAILED = "LOCK_RESTORE_FAILED"

    # INVALID_INPUT
    INVALID_TIMESTAMP = "LOCK_INVALID_TIMESTAMP"
    FUTURE_TIMESTAMP = "LOCK_FUTURE_TIMESTAMP"
    INVALID_DURATION = "LOCK_INVALID_DURATION"
    REASON_REQUIRED = "LOCK_REASON_REQUIRED"

    # REMOTE_IO
    STORE_READ_FAILED = "LOCK_STORE_READ_FAILED"
    STORE_WRITE_FAILED = "LOCK_STORE_WRITE_FAILED"


@dataclass(frozen=True)
class LockStateError:
    """Immutable rejection record."""
    error_code: LockStateErrorCode
    classification: ErrorClassification
    message: str
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code.value,
            "classification": self.classification.value,
            "message": self.message,
            "details": self.details or {},
        }


class LockStateException(Exception):
    """Raised by policies; the client converts it into a notice."""

    def __init__(self, error: LockStateError):
        self.error = error
        super().__init__(error.message)

    @property
    def code(self) -> LockStateErrorCode:
        return self.error.error_code


class PolicyViolation(LockStateException):
    pass


class VerificationFailed(LockStateException):
    pass


class InvalidInput(LockStateException):
    pass


class StoreError(Exception):
    """Raised by document store adapters when a read or write cannot complete."""

    def __init__(self, message=None, *, error_class=None, attempts=None, last_error=None):
        super().__init__(message or "Document store operation failed")
        self.error_class = error_class
        self.attempts = attempts
        self.last_error = last_error


def _policy(code: LockStateErrorCode, message: str, details: Optional[Dict[str, Any]] = None) -> PolicyViolation:
    return PolicyViolation(
        LockStateError(
            error_code=code,
            classification=ErrorClassification.POLICY_VIOLATION,
            message=message,
            details=details,
        )
    )


def _invalid(code: LockStateErrorCode, message: str, details: Optional[Dict[str, Any]] = None) -> InvalidInput:
    return InvalidInput(
        LockStateError(
            error_code=code,
            classification=ErrorClassification.INVALID_INPUT,
            message=message,
            details=details,
        )
    )


# Pre-defined factories for consistency

def session_active() -> PolicyViolation:
    return _policy(LockStateErrorCode.SESSION_ACTIVE, "A session is already active.")


def session_inactive() -> PolicyViolation:
    return _policy(LockStateErrorCode.SESSION_INACTIVE, "No active session.")


def session_paused() -> PolicyViolation:
    return _policy(LockStateErrorCode.SESSION_PAUSED, "Resume the session before ending it.")


def already_paused() -> PolicyViolation:
    return _policy(LockStateErrorCode.SESSION_PAUSED, "The session is already paused.")


def not_paused() -> PolicyViolation:
    return _policy(LockStateErrorCode.NOT_PAUSED, "The session is not paused.")


def pause_cooldown(remaining_seconds: int, remaining_text: str) -> PolicyViolation:
    return _policy(
        LockStateErrorCode.PAUSE_COOLDOWN,
        f"You can pause again in {remaining_text}.",
        {"remaining_seconds": remaining_seconds},
    )


def no_pending_end() -> PolicyViolation:
    return _policy(LockStateErrorCode.NO_PENDING_END, "No session end is waiting for confirmation.")


def hardcore_active() -> PolicyViolation:
    return _policy(
        LockStateErrorCode.HARDCORE_ACTIVE,
        "Hardcore goal is active. The session can only end when the goal completes or with your backup code.",
    )


def keyholder_locked() -> PolicyViolation:
    return _policy(
        LockStateErrorCode.KEYHOLDER_LOCKED,
        "A keyholder duration is active. Personal goals cannot be changed.",
    )


def release_gate_active() -> PolicyViolation:
    return _policy(
        LockStateErrorCode.KEYHOLDER_LOCKED,
        "Your keyholder controls this session. Request a release instead.",
    )


def release_not_required() -> PolicyViolation:
    return _policy(LockStateErrorCode.RELEASE_NOT_REQUIRED, "No keyholder duration is set.")


def release_pending() -> PolicyViolation:
    return _policy(LockStateErrorCode.RELEASE_PENDING, "A release request is already pending.")


def release_cooldown(remaining_seconds: int, remaining_text: str) -> PolicyViolation:
    return _policy(
        LockStateErrorCode.RELEASE_COOLDOWN,
        f"Your last request was denied. You can ask again in {remaining_text}.",
        {"remaining_seconds": remaining_seconds},
    )


def no_pending_release() -> PolicyViolation:
    return _policy(LockStateErrorCode.NO_PENDING_RELEASE, "There is no pending release request.")


def no_hardcore_goal() -> PolicyViolation:
    return _policy(LockStateErrorCode.NO_HARDCORE_GOAL, "Emergency unlock is not available.")


def conflict_unresolved() -> PolicyViolation:
    return _policy(
        LockStateErrorCode.CONFLICT_UNRESOLVED,
        "Choose whether to resume or discard the session found on another device first.",
    )


def no_conflict() -> PolicyViolation:
    return _policy(LockStateErrorCode.NO_CONFLICT, "There is no session waiting to be restored.")


def unlock_failed() -> VerificationFailed:
    # Same wording whether the code is wrong, used, or was never issued.
    return VerificationFailed(
        LockStateError(
            error_code=LockStateErrorCode.UNLOCK_FAILED,
            classification=ErrorClassification.VERIFICATION,
            message="Emergency unlock failed.",
        )
    )


def restore_failed() -> VerificationFailed:
    return VerificationFailed(
        LockStateError(
            error_code=LockStateErrorCode.RESTORE_FAILED,
            classification=ErrorClassification.VERIFICATION,
            message="No data found for the provided User ID.",
        )
    )


def invalid_timestamp(value: Any) -> InvalidInput:
    return _invalid(
        LockStateErrorCode.INVALID_TIMESTAMP,
        "Invalid date and/or time provided.",
        {"received": str(value)},
    )


def future_timestamp() -> InvalidInput:
    return _invalid(LockStateErrorCode.FUTURE_TIMESTAMP, "Start time cannot be in the future.")


def invalid_duration(value: Any) -> InvalidInput:
    return _invalid(
        LockStateErrorCode.INVALID_DURATION,
        "Duration must be a positive number of seconds.",
        {"received": str(value)},
    )


def reason_required() -> InvalidInput:
    return _invalid(LockStateErrorCode.REASON_REQUIRED, "A reason is required.")


def store_write_failed(error: Exception) -> LockStateError:
    return LockStateError(
        error_code=LockStateErrorCode.STORE_WRITE_FAILED,
        classification=ErrorClassification.REMOTE_IO,
        message="Could not save changes. They are kept on this device and will be retried.",
        details={"error": str(error)},
    )


def store_read_failed(error: Exception) -> LockStateError:
    return LockStateError(
        error_code=LockStateErrorCode.STORE_READ_FAILED,
        classification=ErrorClassification.REMOTE_IO,
        message="Could not load saved data.",
        details={"error": str(error)},
    )
