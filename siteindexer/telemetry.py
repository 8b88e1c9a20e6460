"""Crawl lifecycle reporting.

One sink instance is created per crawl and injected into the orchestrator and
the sender. Delivery is best effort: a sink must never raise into the crawl.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import httpx

from .config import CrawlConfig, RuntimeSettings

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProgressSnapshot:
    """Counters reported while a crawl is running."""

    pages_traversed: int = 0
    pages_extracted: int = 0
    documents_sent: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "nb_page_crawled": self.pages_traversed,
            "nb_page_indexed": self.pages_extracted,
            "nb_documents_sent": self.documents_sent,
        }


class TelemetrySink(Protocol):
    async def on_started(self, config: CrawlConfig) -> None: ...

    async def on_progress(self, config: CrawlConfig, snapshot: ProgressSnapshot) -> None: ...

    async def on_completed(self, config: CrawlConfig, total_documents: int) -> None: ...

    async def on_failed(self, config: CrawlConfig, error: BaseException) -> None: ...


class NullTelemetry:
    """Sink used when no webhook is configured."""

    async def on_started(self, config: CrawlConfig) -> None:
        return None

    async def on_progress(self, config: CrawlConfig, snapshot: ProgressSnapshot) -> None:
        return None

    async def on_completed(self, config: CrawlConfig, total_documents: int) -> None:
        return None

    async def on_failed(self, config: CrawlConfig, error: BaseException) -> None:
        return None


class WebhookTelemetry:
    """POST a JSON status document to ``webhook_url`` on every lifecycle event."""

    def __init__(
        self,
        url: str,
        *,
        token: Optional[str] = None,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.token = token
        self.timeout = timeout
        self._http_client = http_client

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _post(self, payload: Dict[str, Any]) -> None:
        try:
            if self._http_client is not None:
                response = await self._http_client.post(self.url, json=payload, headers=self._headers())
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=payload, headers=self._headers())
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            LOGGER.error(
                "Webhook %s rejected %s event: %s",
                self.url,
                payload.get("status"),
                exc.response.status_code,
            )
        except httpx.HTTPError as exc:
            LOGGER.error("Webhook %s unreachable for %s event: %s", self.url, payload.get("status"), exc)

    @staticmethod
    def _base_payload(config: CrawlConfig, status: str) -> Dict[str, Any]:
        return {
            "status": status,
            "date": datetime.now(timezone.utc).isoformat(),
            "meilisearch_url": config.meilisearch_url,
            "meilisearch_index_uid": config.meilisearch_index_uid,
            "webhook_payload": config.webhook_payload,
        }

    async def on_started(self, config: CrawlConfig) -> None:
        await self._post(self._base_payload(config, "started"))

    async def on_progress(self, config: CrawlConfig, snapshot: ProgressSnapshot) -> None:
        await self._post({**self._base_payload(config, "active"), **snapshot.to_dict()})

    async def on_completed(self, config: CrawlConfig, total_documents: int) -> None:
        await self._post({**self._base_payload(config, "completed"), "nb_documents_sent": total_documents})

    async def on_failed(self, config: CrawlConfig, error: BaseException) -> None:
        await self._post({**self._base_payload(config, "failed"), "error": str(error)})


def build_telemetry(config: CrawlConfig, settings: Optional[RuntimeSettings] = None) -> TelemetrySink:
    if not config.webhook_url:
        return NullTelemetry()
    settings = settings or RuntimeSettings.from_env()
    return WebhookTelemetry(config.webhook_url, token=settings.webhook_token)
