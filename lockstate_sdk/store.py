"""
lockstate_sdk/store.py - Document store adapters

The core needs four operations from a key-value document store:
- subscribe(doc_id, on_change) -> unsubscribe
- get_once(doc_id) -> dict | None
- merge_write(doc_id, fields)       top-level keys replaced, others kept
- create_if_absent(doc_id, defaults) -> bool (True when created)

Subscribers are called once with the current snapshot (None when missing)
and again after every committed write. Reads and writes are the only
suspension points of the core.

Adapters here are local. HttpDocumentStore lives in transport.py.
"""
import copy
import json
import logging
from datetime import UTC, datetime
from typing import Any, Callable, Dict, List, Optional, Protocol

from sqlalchemy import Column, DateTime, String, Text, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from .errors import StoreError

logger = logging.getLogger(__name__)

Snapshot = Optional[Dict[str, Any]]
ChangeListener = Callable[[Snapshot], None]
Unsubscribe = Callable[[], None]


class DocumentStore(Protocol):
    def subscribe(self, doc_id: str, on_change: ChangeListener) -> Unsubscribe: ...

    async def get_once(self, doc_id: str) -> Snapshot: ...

    async def merge_write(self, doc_id: str, fields: Dict[str, Any]) -> None: ...

    async def create_if_absent(self, doc_id: str, defaults: Dict[str, Any]) -> bool: ...


class _Subscribers:
    """In-process listener registry shared by the local adapters."""

    def __init__(self):
        self._listeners: Dict[str, List[ChangeListener]] = {}

    def add(self, doc_id: str, on_change: ChangeListener) -> Unsubscribe:
        self._listeners.setdefault(doc_id, []).append(on_change)

        def unsubscribe() -> None:
            listeners = self._listeners.get(doc_id, [])
            if on_change in listeners:
                listeners.remove(on_change)

        return unsubscribe

    def notify(self, doc_id: str, snapshot: Snapshot) -> None:
        for listener in list(self._listeners.get(doc_id, [])):
            try:
                listener(copy.deepcopy(snapshot))
            except Exception:
                logger.exception("Change listener failed for %s", doc_id)


class InMemoryDocumentStore:
    """Dict-backed store with synchronous push notifications."""

    def __init__(self, documents: Optional[Dict[str, Dict[str, Any]]] = None):
        self.documents: Dict[str, Dict[str, Any]] = copy.deepcopy(documents or {})
        self.writes: List[Dict[str, Any]] = []
        self._subscribers = _Subscribers()

    def subscribe(self, doc_id: str, on_change: ChangeListener) -> Unsubscribe:
        unsubscribe = self._subscribers.add(doc_id, on_change)
        on_change(copy.deepcopy(self.documents.get(doc_id)))
        return unsubscribe

    async def get_once(self, doc_id: str) -> Snapshot:
        return copy.deepcopy(self.documents.get(doc_id))

    async def merge_write(self, doc_id: str, fields: Dict[str, Any]) -> None:
        self.documents.setdefault(doc_id, {}).update(copy.deepcopy(fields))
        self.writes.append(copy.deepcopy(fields))
        self._subscribers.notify(doc_id, self.documents[doc_id])

    async def create_if_absent(self, doc_id: str, defaults: Dict[str, Any]) -> bool:
        if doc_id in self.documents:
            return False
        self.documents[doc_id] = copy.deepcopy(defaults)
        self._subscribers.notify(doc_id, self.documents[doc_id])
        return True

    def put_remote(self, doc_id: str, fields: Dict[str, Any]) -> None:
        """Simulate a write from another device."""
        self.documents.setdefault(doc_id, {}).update(copy.deepcopy(fields))
        self._subscribers.notify(doc_id, self.documents[doc_id])


Base = declarative_base()


class DocumentRow(Base):
    """One synced document per user."""
    __tablename__ = "documents"

    doc_id = Column(String(128), primary_key=True)
    body = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))


class SqlDocumentStore:
    """
    SQLAlchemy-backed store.

    Change notifications are in-process only: listeners registered on this
    instance hear about writes made through this instance.
    """

    def __init__(self, database_url: str):
        self.engine = create_engine(database_url)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine)
        self._subscribers = _Subscribers()

    def _read(self, doc_id: str) -> Snapshot:
        db = self.Session()
        try:
            row = db.get(DocumentRow, doc_id)
            if row is None:
                return None
            return json.loads(row.body)
        except SQLAlchemyError as e:
            raise StoreError(f"Read of {doc_id} failed", error_class=type(e).__name__, attempts=1, last_error=e) from e
        finally:
            db.close()

    def subscribe(self, doc_id: str, on_change: ChangeListener) -> Unsubscribe:
        unsubscribe = self._subscribers.add(doc_id, on_change)
        on_change(self._read(doc_id))
        return unsubscribe

    async def get_once(self, doc_id: str) -> Snapshot:
        return self._read(doc_id)

    async def merge_write(self, doc_id: str, fields: Dict[str, Any]) -> None:
        db = self.Session()
        try:
            row = db.get(DocumentRow, doc_id)
            body = json.loads(row.body) if row is not None else {}
            body.update(fields)
            if row is None:
                row = DocumentRow(doc_id=doc_id)
                db.add(row)
            row.body = json.dumps(body)
            row.updated_at = datetime.now(UTC)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"Write to {doc_id} failed", error_class=type(e).__name__, attempts=1, last_error=e) from e
        finally:
            db.close()
        self._subscribers.notify(doc_id, body)

    async def create_if_absent(self, doc_id: str, defaults: Dict[str, Any]) -> bool:
        db = self.Session()
        try:
            if db.get(DocumentRow, doc_id) is not None:
                return False
            db.add(DocumentRow(doc_id=doc_id, body=json.dumps(defaults)))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"Create of {doc_id} failed", error_class=type(e).__name__, attempts=1, last_error=e) from e
        finally:
            db.close()
        self._subscribers.notify(doc_id, defaults)
        return True
