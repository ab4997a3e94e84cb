"""
lockstate_sdk/transport.py - HTTP document store with retry logic.

REQUIREMENTS:
- Exponential backoff (MAX_RETRIES attempts max)
- 4xx fails fast, timeouts/network/5xx are retried
- Persistent failure raises StoreError; the reconciler keeps local state
- Subscriptions are served by poll(), there is no push channel

Endpoints:
    GET   /api/v1/documents/{doc_id}                 404 -> missing
    PATCH /api/v1/documents/{doc_id}                 merge-write
    PUT   /api/v1/documents/{doc_id}?if_absent=true  201 created, 409 exists
"""

import asyncio
import copy
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .config import Settings
from .errors import StoreError
from .store import ChangeListener, Snapshot, Unsubscribe

logger = logging.getLogger(__name__)


async def request_with_retry(
    http_client: httpx.AsyncClient,
    method: str,
    path: str,
    max_retries: int = 5,
    min_wait: float = 1.0,
    max_wait: float = 10.0,
    accept_statuses: Tuple[int, ...] = (),
    **kwargs: Any,
) -> httpx.Response:
    """
    Send one request with exponential backoff.

    Statuses listed in `accept_statuses` are returned to the caller instead of
    being treated as errors (e.g. 404 on read, 409 on create).

    Raises:
        StoreError: on a 4xx, or after all retries are exhausted
    """
    attempt = 0
    last_error = None
    error_class = "UNKNOWN_ERROR"

    while attempt < max_retries:
        try:
            response = await http_client.request(method, path, **kwargs)
            if response.status_code in accept_statuses:
                return response
            response.raise_for_status()
            return response

        except httpx.TimeoutException as e:
            error_class = "TIMEOUT"
            last_error = str(e)

        except httpx.NetworkError as e:
            error_class = "NETWORK_FAILURE"
            last_error = str(e)

        except httpx.HTTPStatusError as e:
            if 400 <= e.response.status_code < 500:
                error_class = "CLIENT_ERROR"
                try:
                    error_msg = e.response.json().get("detail", str(e))
                except ValueError:
                    error_msg = str(e)
                last_error = f"HTTP {e.response.status_code}: {error_msg}"
                raise StoreError(
                    f"Client error (4xx) - {last_error}",
                    error_class=error_class,
                    attempts=attempt + 1,
                    last_error=last_error,
                ) from e
            error_class = "SERVER_ERROR"
            last_error = f"HTTP {e.response.status_code}"

        attempt += 1
        if attempt < max_retries:
            wait_time = min(min_wait * (2 ** attempt), max_wait)
            logger.warning(
                "Retry %s/%s for %s %s after %.1fs (%s)",
                attempt, max_retries, method, path, wait_time, error_class,
            )
            await asyncio.sleep(wait_time)

    raise StoreError(
        f"Failed after {max_retries} attempts. Last error: {error_class} - {last_error}",
        error_class=error_class,
        attempts=attempt,
        last_error=last_error,
    )


class HttpDocumentStore:
    """
    Remote document store over HTTP.

    Listeners are not called on subscribe; the first poll() delivers the
    current snapshot and later polls deliver changes only.
    """

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.max_retries = settings.MAX_RETRIES
        self.retry_min_wait = settings.RETRY_MIN_WAIT
        self.retry_max_wait = settings.RETRY_MAX_WAIT

        if http_client is None:
            http_client = httpx.AsyncClient(
                base_url=settings.SERVER_URL,
                timeout=settings.HTTP_TIMEOUT,
                headers={"Content-Type": "application/json"},
            )
            if settings.API_KEY:
                http_client.headers["Authorization"] = f"Bearer {settings.API_KEY}"
        self.http_client = http_client

        self._listeners: Dict[str, List[ChangeListener]] = {}
        self._last_seen: Dict[str, Snapshot] = {}

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        return await request_with_retry(
            self.http_client,
            method,
            path,
            self.max_retries,
            self.retry_min_wait,
            self.retry_max_wait,
            **kwargs,
        )

    def subscribe(self, doc_id: str, on_change: ChangeListener) -> Unsubscribe:
        self._listeners.setdefault(doc_id, []).append(on_change)
        self._last_seen.pop(doc_id, None)

        def unsubscribe() -> None:
            listeners = self._listeners.get(doc_id, [])
            if on_change in listeners:
                listeners.remove(on_change)

        return unsubscribe

    async def get_once(self, doc_id: str) -> Snapshot:
        response = await self._request("GET", f"/api/v1/documents/{doc_id}", accept_statuses=(404,))
        if response.status_code == 404:
            return None
        return response.json()

    async def merge_write(self, doc_id: str, fields: Dict[str, Any]) -> None:
        await self._request("PATCH", f"/api/v1/documents/{doc_id}", json=fields)

    async def create_if_absent(self, doc_id: str, defaults: Dict[str, Any]) -> bool:
        response = await self._request(
            "PUT",
            f"/api/v1/documents/{doc_id}",
            params={"if_absent": "true"},
            json=defaults,
            accept_statuses=(409,),
        )
        return response.status_code != 409

    async def poll(self) -> int:
        """
        Fetch every subscribed document and notify listeners of changes.

        Returns the number of documents that changed. Read failures are
        logged and retried on the next poll.
        """
        changed = 0
        for doc_id, listeners in list(self._listeners.items()):
            if not listeners:
                continue
            try:
                snapshot = await self.get_once(doc_id)
            except StoreError as e:
                logger.warning("Poll of %s failed: %s", doc_id, e)
                continue
            if doc_id in self._last_seen and self._last_seen[doc_id] == snapshot:
                continue
            self._last_seen[doc_id] = copy.deepcopy(snapshot)
            changed += 1
            for listener in list(listeners):
                try:
                    listener(copy.deepcopy(snapshot))
                except Exception:
                    logger.exception("Change listener failed for %s", doc_id)
        return changed

    async def aclose(self) -> None:
        await self.http_client.aclose()
