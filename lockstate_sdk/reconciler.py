"""
lockstate_sdk/reconciler.py - Sync & Restore Reconciler

Keeps the in-memory SessionState consistent with the remote document.

STATES:
    LOADING           subscribed, no snapshot applied yet
    SYNCED            local and remote agree as far as we know
    CONFLICT_PENDING  remote has an active session this load never saw;
                      the user must resume it or discard it
    WRITE_IN_FLIGHT   a merge-write is awaiting the store

INVARIANTS:
1. Every local write bumps `revision`; snapshots with a lower revision are
   stale echoes and are ignored. An equal revision is our own echo only when
   its content matches local state; otherwise it is a concurrent write and
   is adopted
2. While CONFLICT_PENDING no local action is accepted and the captured
   snapshot tracks later remote changes
3. A missing document is created with the off baseline at most once
4. A failed write never rolls back local state; the unsent keys are resent
   with the next write
"""
import logging
from dataclasses import fields as dataclass_fields
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional, Set

from pydantic import ValidationError

from . import errors
from .errors import LockStateError, StoreError
from .models import SessionState
from .schemas import DOCUMENT_FIELDS, SessionDocument, build_patch, off_baseline_document, serialize_state
from .store import DocumentStore, Unsubscribe

logger = logging.getLogger(__name__)

# Never taken from a snapshot.
LOCAL_ONLY_FIELDS = frozenset({"pending_end", "time_in_chastity", "time_cage_off"})


class SyncState(str, Enum):
    LOADING = "LOADING"
    SYNCED = "SYNCED"
    CONFLICT_PENDING = "CONFLICT_PENDING"
    WRITE_IN_FLIGHT = "WRITE_IN_FLIGHT"


class SyncReconciler:
    def __init__(
        self,
        doc_id: str,
        store: DocumentStore,
        state: Optional[SessionState] = None,
        on_change: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[LockStateError], None]] = None,
    ):
        self.doc_id = doc_id
        self.store = store
        self.state = state if state is not None else SessionState()
        self.on_change = on_change
        self.on_error = on_error

        self.sync_state = SyncState.LOADING
        self.populated = False
        self.conflict_snapshot: Optional[SessionState] = None

        self._missing = False
        self._created = False
        self._dirty: Set[str] = set()
        self._unsubscribe: Optional[Unsubscribe] = None

    # --- Load ---

    async def load(self) -> SyncState:
        """Subscribe to the document and settle the initial state."""
        self.close()
        if not self.populated:
            self.sync_state = SyncState.LOADING
        try:
            self._unsubscribe = self.store.subscribe(self.doc_id, self.handle_snapshot)
        except StoreError as e:
            logger.warning("Subscribing to %s failed: %s", self.doc_id, e)
            self._report(errors.store_read_failed(e))
            return self.sync_state

        if self.sync_state == SyncState.LOADING and not self._missing:
            # Polling stores do not deliver on subscribe.
            try:
                raw = await self.store.get_once(self.doc_id)
            except StoreError as e:
                logger.warning("Initial read of %s failed: %s", self.doc_id, e)
                self._report(errors.store_read_failed(e))
                return self.sync_state
            self.handle_snapshot(raw)

        if self.sync_state == SyncState.LOADING and self._missing:
            await self._create_baseline()
        return self.sync_state

    async def _create_baseline(self) -> None:
        if self._created:
            return
        self._created = True
        try:
            created = await self.store.create_if_absent(self.doc_id, off_baseline_document())
        except StoreError as e:
            logger.warning("Creating %s failed: %s", self.doc_id, e)
            self._report(errors.store_write_failed(e))
            return
        logger.info("Document %s %s", self.doc_id, "created with defaults" if created else "already existed")
        if self.sync_state != SyncState.LOADING:
            return
        if created:
            self._adopt(SessionState())
            self._settle()
        else:
            try:
                raw = await self.store.get_once(self.doc_id)
            except StoreError as e:
                self._report(errors.store_read_failed(e))
                return
            self.handle_snapshot(raw)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # --- Remote changes ---

    def handle_snapshot(self, raw: Optional[Dict[str, Any]]) -> None:
        if raw is None:
            if self.sync_state == SyncState.LOADING:
                self._missing = True
            else:
                logger.warning("Document %s disappeared remotely; keeping local state", self.doc_id)
            return

        try:
            incoming = SessionDocument.model_validate(raw).to_state()
        except ValidationError:
            logger.exception("Unreadable snapshot for %s ignored", self.doc_id)
            return
        self._missing = False

        if self.sync_state == SyncState.CONFLICT_PENDING:
            self.conflict_snapshot = incoming
            logger.info("Conflicting session updated remotely (revision %s)", incoming.revision)
            self._notify()
            return

        if not self.populated:
            if incoming.is_cage_on:
                self.conflict_snapshot = incoming
                self.sync_state = SyncState.CONFLICT_PENDING
                logger.warning("Active session found remotely for %s, awaiting user choice", self.doc_id)
                self._notify()
                return
            self._adopt(incoming)
            self._settle()
            return

        if incoming.revision < self.state.revision:
            logger.debug("Stale snapshot ignored (revision %s < %s)", incoming.revision, self.state.revision)
            return
        if incoming.revision == self.state.revision:
            if self._same_content(incoming):
                return
            # Another writer moved from the same base revision.
            logger.warning("Concurrent change at revision %s for %s; adopting remote", incoming.revision, self.doc_id)
            self._adopt(incoming)
            self._notify()
            return
        logger.info("Remote change applied (revision %s -> %s)", self.state.revision, incoming.revision)
        self._adopt(incoming)
        self._notify()

    # --- Conflict resolution ---

    def ensure_writable(self) -> None:
        if self.sync_state == SyncState.CONFLICT_PENDING:
            raise errors.conflict_unresolved()

    async def resume_remote(self) -> bool:
        """Adopt the captured remote session wholesale and write it back."""
        snapshot = self._take_conflict()
        self._adopt(snapshot)
        self._settle()
        logger.info("Resumed remote session for %s", self.doc_id)
        return await self.persist(DOCUMENT_FIELDS)

    async def discard_and_start_new(self) -> bool:
        """Drop the remote session and overwrite it with the off baseline."""
        snapshot = self._take_conflict()
        self._adopt(snapshot)
        self.state.reset_session_fields()
        self.state.has_session_ever_been_active = False
        self.state.last_pause_end_time = None
        self._settle()
        logger.info("Discarded remote session for %s", self.doc_id)
        return await self.persist(DOCUMENT_FIELDS)

    def _take_conflict(self) -> SessionState:
        if self.sync_state != SyncState.CONFLICT_PENDING or self.conflict_snapshot is None:
            raise errors.no_conflict()
        snapshot = self.conflict_snapshot
        self.conflict_snapshot = None
        return snapshot

    async def restore_from_user(self, source_doc_id: str) -> bool:
        """Copy another user's document into ours."""
        self.ensure_writable()
        source_doc_id = (source_doc_id or "").strip()
        if not source_doc_id:
            raise errors.restore_failed()
        try:
            raw = await self.store.get_once(source_doc_id)
        except StoreError as e:
            logger.warning("Restore read of %s failed: %s", source_doc_id, e)
            self._report(errors.store_read_failed(e))
            return False
        if not raw:
            raise errors.restore_failed()

        try:
            incoming = SessionDocument.model_validate(raw).to_state()
        except ValidationError:
            logger.exception("Unreadable restore source %s", source_doc_id)
            raise errors.restore_failed()
        incoming.revision = self.state.revision
        self._adopt(incoming)
        self._settle()
        logger.info("Restored %s from %s", self.doc_id, source_doc_id)
        return await self.persist(DOCUMENT_FIELDS)

    # --- Local writes ---

    async def persist(self, fields: Iterable[str]) -> bool:
        """
        Merge-write the named keys. Returns False when the write failed.

        Local state is authoritative either way.
        """
        self.ensure_writable()
        keys = set(fields) | self._dirty
        if not keys:
            return True

        self.state.revision += 1
        self.populated = True
        patch = build_patch(self.state, keys)

        self.sync_state = SyncState.WRITE_IN_FLIGHT
        try:
            await self.store.merge_write(self.doc_id, patch)
        except StoreError as e:
            self._dirty = keys
            self.sync_state = SyncState.SYNCED
            logger.warning("Write to %s failed, %s keys kept dirty: %s", self.doc_id, len(keys), e)
            self._report(errors.store_write_failed(e))
            return False

        self._dirty = set()
        self.sync_state = SyncState.SYNCED
        return True

    @property
    def has_unsent_changes(self) -> bool:
        return bool(self._dirty)

    # --- Internals ---

    def _adopt(self, incoming: SessionState) -> None:
        """Copy synced fields into the owned state object, in place."""
        previous_start = self.state.cage_on_time
        for f in dataclass_fields(SessionState):
            if f.name in LOCAL_ONLY_FIELDS:
                continue
            setattr(self.state, f.name, getattr(incoming, f.name))
        if not self.state.is_cage_on or self.state.cage_on_time != previous_start:
            self.state.pending_end = None

    def _same_content(self, incoming: SessionState) -> bool:
        return serialize_state(incoming) == serialize_state(self.state)

    def _settle(self) -> None:
        self.populated = True
        self.sync_state = SyncState.SYNCED
        self._notify()

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change()

    def _report(self, error: LockStateError) -> None:
        if self.on_error is not None:
            self.on_error(error)
