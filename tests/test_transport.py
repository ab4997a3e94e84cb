"""HTTP document store: retries, fail-fast on 4xx, polling subscriptions."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from lockstate_sdk.config import Settings
from lockstate_sdk.errors import StoreError
from lockstate_sdk.transport import HttpDocumentStore


class MockResponse:
    def __init__(self, status_code, json_data=None):
        self.status_code = status_code
        self.json_data = json_data or {}
        self.headers = {}

    def raise_for_status(self):
        if 400 <= self.status_code < 600:
            raise httpx.HTTPStatusError("Error", request=None, response=self)

    def json(self):
        return self.json_data


@pytest.fixture
def store():
    settings = Settings(MAX_RETRIES=3, RETRY_MIN_WAIT=0.0, RETRY_MAX_WAIT=0.0, _env_file=None)
    http_client = MagicMock()
    http_client.request = AsyncMock()
    return HttpDocumentStore(settings, http_client=http_client)


class TestRequests:
    async def test_get_once(self, store):
        store.http_client.request.return_value = MockResponse(200, {"is_cage_on": False})
        assert await store.get_once("u1") == {"is_cage_on": False}
        store.http_client.request.assert_awaited_once_with("GET", "/api/v1/documents/u1")

    async def test_get_missing_is_none(self, store):
        store.http_client.request.return_value = MockResponse(404, {"detail": "not found"})
        assert await store.get_once("u1") is None

    async def test_merge_write_patches(self, store):
        store.http_client.request.return_value = MockResponse(200)
        await store.merge_write("u1", {"is_paused": True})
        store.http_client.request.assert_awaited_once_with(
            "PATCH", "/api/v1/documents/u1", json={"is_paused": True}
        )

    async def test_create_if_absent(self, store):
        store.http_client.request.side_effect = [MockResponse(201), MockResponse(409)]
        assert await store.create_if_absent("u1", {"a": 1}) is True
        assert await store.create_if_absent("u1", {"a": 1}) is False
        method, path = store.http_client.request.call_args.args
        assert (method, path) == ("PUT", "/api/v1/documents/u1")
        assert store.http_client.request.call_args.kwargs["params"] == {"if_absent": "true"}


class TestRetry:
    async def test_server_error_retried_then_succeeds(self, store):
        store.http_client.request.side_effect = [MockResponse(500), MockResponse(503), MockResponse(200)]
        await store.merge_write("u1", {"a": 1})
        assert store.http_client.request.await_count == 3

    async def test_network_failure_exhausts_retries(self, store):
        store.http_client.request.side_effect = httpx.NetworkError("Net Down")
        with pytest.raises(StoreError) as exc:
            await store.merge_write("u1", {"a": 1})
        assert store.http_client.request.await_count == 3
        assert exc.value.error_class == "NETWORK_FAILURE"
        assert exc.value.attempts == 3

    async def test_timeout_classified(self, store):
        store.http_client.request.side_effect = httpx.ReadTimeout("slow")
        with pytest.raises(StoreError) as exc:
            await store.get_once("u1")
        assert exc.value.error_class == "TIMEOUT"

    async def test_client_error_fails_fast(self, store):
        store.http_client.request.return_value = MockResponse(403, {"detail": "forbidden"})
        with pytest.raises(StoreError) as exc:
            await store.merge_write("u1", {"a": 1})
        assert store.http_client.request.await_count == 1
        assert exc.value.error_class == "CLIENT_ERROR"
        assert exc.value.last_error == "HTTP 403: forbidden"


class TestPolling:
    async def test_poll_delivers_changes_only(self, store):
        seen = []
        store.subscribe("u1", seen.append)
        store.http_client.request.side_effect = [
            MockResponse(200, {"revision": 1}),
            MockResponse(200, {"revision": 1}),
            MockResponse(200, {"revision": 2}),
        ]

        assert await store.poll() == 1
        assert await store.poll() == 0
        assert await store.poll() == 1
        assert seen == [{"revision": 1}, {"revision": 2}]

    async def test_subscribe_does_not_deliver_immediately(self, store):
        seen = []
        store.subscribe("u1", seen.append)
        assert seen == []

    async def test_poll_failure_is_retried_next_time(self, store):
        seen = []
        store.subscribe("u1", seen.append)
        store.http_client.request.side_effect = [
            MockResponse(400, {"detail": "bad"}),
            MockResponse(200, {"revision": 3}),
        ]
        assert await store.poll() == 0
        assert await store.poll() == 1
        assert seen == [{"revision": 3}]

    async def test_unsubscribed_documents_not_polled(self, store):
        unsubscribe = store.subscribe("u1", lambda snapshot: None)
        unsubscribe()
        assert await store.poll() == 0
        store.http_client.request.assert_not_awaited()


class TestReconcilerOverHttp:
    async def test_load_reads_once_when_subscribe_is_silent(self, store):
        from lockstate_sdk.reconciler import SyncReconciler, SyncState

        store.http_client.request.return_value = MockResponse(200, {"is_cage_on": False, "revision": 3})
        reconciler = SyncReconciler("u1", store)
        assert await reconciler.load() == SyncState.SYNCED
        assert reconciler.state.revision == 3

    async def test_load_creates_missing_document(self, store):
        from lockstate_sdk.reconciler import SyncReconciler, SyncState

        store.http_client.request.side_effect = [MockResponse(404), MockResponse(201)]
        reconciler = SyncReconciler("u1", store)
        assert await reconciler.load() == SyncState.SYNCED
        method = store.http_client.request.call_args.args[0]
        assert method == "PUT"
