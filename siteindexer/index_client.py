"""Async Meilisearch REST client used by the document sender.

Only the handful of endpoints the sender needs are wrapped. Administrative
calls (create, settings, swap, delete) wait for their own task so callers
can treat them as synchronous; document additions return the task uid so
the sender can track them as pending handles.

Public API::

    from siteindexer.index_client import MeilisearchClient

    async with MeilisearchClient("http://localhost:7700", api_key="...") as client:
        task_uid = await client.add_documents("docs", [{"uid": "1"}])
        await client.wait_for_task(task_uid, timeout=15)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from .errors import IndexClientError, IndexTaskFailedError, IndexTaskTimeoutError

LOGGER = logging.getLogger(__name__)

TaskHandle = int

_FINISHED_OK = "succeeded"
_FINISHED_ERROR = ("failed", "canceled")


def _build_http_client(
    base_url: str,
    api_key: Optional[str],
    client_agents: Sequence[str],
    timeout: float,
) -> httpx.AsyncClient:
    headers = {
        "Accept": "application/json",
        "Content-Type": "application/json",
    }
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    if client_agents:
        headers["X-Meilisearch-Client"] = ";".join(client_agents)
    return httpx.AsyncClient(base_url=base_url.rstrip("/"), headers=headers, timeout=timeout)


def _error_from_response(response: httpx.Response) -> IndexClientError:
    error_code = None
    message = response.text
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error_code = body.get("code")
        message = body.get("message") or message
    return IndexClientError(
        f"Meilisearch API error: {response.status_code} - {message}",
        status_code=response.status_code,
        error_code=error_code,
    )


class MeilisearchClient:
    """Thin async wrapper over the Meilisearch HTTP API."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        *,
        client_agents: Sequence[str] = (),
        timeout: float = 30.0,
        task_timeout: float = 30.0,
        poll_interval: float = 0.05,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url
        self.task_timeout = task_timeout
        self.poll_interval = poll_interval
        self._owns_client = http_client is None
        self._client = http_client or _build_http_client(base_url, api_key, client_agents, timeout)

    async def __aenter__(self) -> "MeilisearchClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        allow_not_found: bool = False,
    ) -> Any:
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.RequestError as exc:
            raise IndexClientError(f"Request to Meilisearch failed: {exc}") from exc

        if allow_not_found and response.status_code == 404:
            return None
        if response.is_error:
            raise _error_from_response(response)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise IndexClientError(
                f"Meilisearch returned invalid JSON for {method} {path}",
                status_code=response.status_code,
            ) from exc

    async def _enqueue(self, method: str, path: str, json: Any = None) -> TaskHandle:
        data = await self._request(method, path, json=json)
        try:
            return int(data["taskUid"])
        except (KeyError, TypeError, ValueError) as exc:
            raise IndexClientError(f"Missing taskUid in response to {method} {path}") from exc

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def wait_for_task(self, task_uid: TaskHandle, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Poll ``/tasks/{uid}`` until the task finishes.

        Raises:
            IndexTaskFailedError: If the task ends as failed or canceled.
            IndexTaskTimeoutError: If it is still running after ``timeout`` seconds.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (self.task_timeout if timeout is None else timeout)
        while True:
            task = await self._request("GET", f"/tasks/{task_uid}")
            status = task.get("status")
            if status == _FINISHED_OK:
                return task
            if status in _FINISHED_ERROR:
                error = task.get("error") or {}
                raise IndexTaskFailedError(
                    f"Task {task_uid} {status}: {error.get('message', 'no details')}",
                    error_code=error.get("code"),
                )
            if loop.time() >= deadline:
                raise IndexTaskTimeoutError(f"Task {task_uid} still {status} after timeout")
            await asyncio.sleep(self.poll_interval)

    async def _run_task(self, method: str, path: str, json: Any = None) -> Dict[str, Any]:
        task_uid = await self._enqueue(method, path, json)
        return await self.wait_for_task(task_uid)

    # ------------------------------------------------------------------
    # Indexes
    # ------------------------------------------------------------------

    async def index_exists(self, uid: str) -> bool:
        return await self._request("GET", f"/indexes/{uid}", allow_not_found=True) is not None

    async def create_index(self, uid: str, primary_key: Optional[str] = None) -> None:
        payload: Dict[str, Any] = {"uid": uid}
        if primary_key:
            payload["primaryKey"] = primary_key
        await self._run_task("POST", "/indexes", payload)
        LOGGER.debug("Created index %s (primary key %s)", uid, primary_key)

    async def delete_index(self, uid: str) -> None:
        await self._run_task("DELETE", f"/indexes/{uid}")
        LOGGER.debug("Deleted index %s", uid)

    async def get_settings(self, uid: str) -> Dict[str, Any]:
        return await self._request("GET", f"/indexes/{uid}/settings")

    async def update_settings(self, uid: str, settings: Dict[str, Any]) -> None:
        await self._run_task("PATCH", f"/indexes/{uid}/settings", settings)

    async def swap_indexes(self, first: str, second: str) -> None:
        await self._run_task("POST", "/swap-indexes", [{"indexes": [first, second]}])
        LOGGER.info("Swapped indexes %s <-> %s", first, second)

    async def get_document_count(self, uid: str) -> int:
        stats = await self._request("GET", f"/indexes/{uid}/stats")
        return int(stats.get("numberOfDocuments", 0))

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def add_documents(
        self,
        uid: str,
        documents: List[Dict[str, Any]],
        primary_key: Optional[str] = None,
    ) -> TaskHandle:
        """Enqueue a document batch and return its task uid without waiting."""
        path = f"/indexes/{uid}/documents"
        if primary_key:
            path = f"{path}?primaryKey={primary_key}"
        return await self._enqueue("POST", path, documents)
