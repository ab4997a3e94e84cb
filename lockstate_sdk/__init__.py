"""Lock session tracking SDK."""

from .client import ActionResult, LockStateClient
from .clock import ManualClock, SystemClock
from .config import Settings, get_settings
from .errors import LockStateError, LockStateErrorCode, LockStateException, StoreError
from .models import HistoryEntry, PendingEnd, SessionState
from .reconciler import SyncReconciler, SyncState
from .store import InMemoryDocumentStore, SqlDocumentStore
from .transport import HttpDocumentStore

__all__ = [
    "ActionResult",
    "LockStateClient",
    "ManualClock",
    "SystemClock",
    "Settings",
    "get_settings",
    "LockStateError",
    "LockStateErrorCode",
    "LockStateException",
    "StoreError",
    "HistoryEntry",
    "PendingEnd",
    "SessionState",
    "SyncReconciler",
    "SyncState",
    "InMemoryDocumentStore",
    "SqlDocumentStore",
    "HttpDocumentStore",
]
