"""Test configuration and fixtures."""

from datetime import UTC, datetime

import pytest

from lockstate_sdk.client import LockStateClient
from lockstate_sdk.clock import ManualClock
from lockstate_sdk.config import Settings
from lockstate_sdk.errors import StoreError
from lockstate_sdk.events import InMemoryEventLog
from lockstate_sdk.store import InMemoryDocumentStore

T0 = datetime(2024, 3, 1, 8, 0, 0, tzinfo=UTC)
DOC_ID = "user-1"


class FlakyDocumentStore(InMemoryDocumentStore):
    """In-memory store whose next `fail_writes` merge-writes raise StoreError."""

    def __init__(self, documents=None):
        super().__init__(documents)
        self.fail_writes = 0

    async def merge_write(self, doc_id, fields):
        if self.fail_writes > 0:
            self.fail_writes -= 1
            raise StoreError("Simulated outage", error_class="NETWORK_FAILURE", attempts=1)
        await super().merge_write(doc_id, fields)


@pytest.fixture
def settings():
    # Long tick intervals: tests drive ticks by hand.
    return Settings(
        SECRET_KEY="test-secret",
        TICK_INTERVAL_SECONDS=3600,
        POLL_INTERVAL_SECONDS=3600,
        _env_file=None,
    )


@pytest.fixture
def clock():
    return ManualClock(T0)


@pytest.fixture
def event_log():
    return InMemoryEventLog()


@pytest.fixture
def store():
    return FlakyDocumentStore()


@pytest.fixture
def client(store, settings, clock, event_log):
    """Client over an empty store, not yet loaded."""
    return LockStateClient(DOC_ID, store, settings=settings, clock=clock, event_log=event_log, editor="me@example.com")


@pytest.fixture
async def loaded_client(client):
    await client.load()
    yield client
    client.close()
