"""Batching document sender with an atomic staging-index swap.

Lifecycle::

    sender = Sender(config, client, telemetry)
    await sender.init()        # prepare the staging index
    sender.add(document)       # non-blocking, flushes in the background
    await sender.finish()      # drain, swap staging -> live, report

When the live index already exists, documents go to ``<live>_crawler_tmp``
and the two indexes are swapped only if the staging index ends up non-empty,
so a crawl that produced nothing never wipes a populated index.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from .config import CrawlConfig, RuntimeSettings
from .errors import BatchSendError, IndexClientError, SenderInitError, SenderStateError
from .index_client import MeilisearchClient, TaskHandle
from .telemetry import NullTelemetry, TelemetrySink

LOGGER = logging.getLogger(__name__)

STAGING_SUFFIX = "_crawler_tmp"


class SenderState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    DRAINING = "draining"
    PUBLISHED = "published"
    DISCARDED = "discarded"


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for batch submission.

    ``max_attempts`` counts retries after the first try, so a batch is
    submitted at most ``max_attempts + 1`` times.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0

    def delay(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    @classmethod
    def from_settings(cls, settings: RuntimeSettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )


class Sender:
    """Accumulate publish units and deliver them to the index in batches."""

    def __init__(
        self,
        config: CrawlConfig,
        client: MeilisearchClient,
        telemetry: Optional[TelemetrySink] = None,
        *,
        retry: Optional[RetryPolicy] = None,
        settings: Optional[RuntimeSettings] = None,
    ):
        settings = settings or RuntimeSettings.from_env()
        self.config = config
        self.client = client
        self.telemetry = telemetry or NullTelemetry()
        self.retry = retry or RetryPolicy.from_settings(settings)
        self.task_timeout = settings.task_wait_timeout
        self.pending_timeout = settings.task_wait_timeout_extended

        self.live_index = config.meilisearch_index_uid
        self.staging_index = config.meilisearch_index_uid
        self.state = SenderState.UNINITIALIZED
        self.documents_sent = 0

        self._queue: List[Dict[str, Any]] = []
        self._pending: List[TaskHandle] = []
        self._inflight: Set[asyncio.Task] = set()
        self._failure: Optional[BatchSendError] = None

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    @property
    def pending_tasks(self) -> Tuple[TaskHandle, ...]:
        return tuple(self._pending)

    def _require(self, *states: SenderState) -> None:
        if self.state not in states:
            allowed = ", ".join(state.value for state in states)
            raise SenderStateError(
                f"Sender is {self.state.value}; expected {allowed}",
                details={"state": self.state.value},
            )

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Prepare the index that will receive this crawl's documents.

        Raises:
            SenderInitError: If any index operation fails.
        """
        self._require(SenderState.UNINITIALIZED)
        if not self.live_index:
            raise SenderInitError("Index uid is empty")

        try:
            carried_settings: Optional[Dict[str, Any]] = None
            if await self.client.index_exists(self.live_index):
                if self.config.keep_settings:
                    try:
                        carried_settings = await self.client.get_settings(self.live_index)
                    except IndexClientError as exc:
                        LOGGER.warning("Could not read settings of %s: %s", self.live_index, exc)

                self.staging_index = f"{self.live_index}{STAGING_SUFFIX}"
                if await self.client.index_exists(self.staging_index):
                    LOGGER.info("Removing leftover staging index %s", self.staging_index)
                    await self.client.delete_index(self.staging_index)

            await self.client.create_index(self.staging_index, self.config.primary_key)

            settings = carried_settings if carried_settings is not None else self.config.meilisearch_settings
            if settings:
                await self.client.update_settings(self.staging_index, settings)
        except IndexClientError as exc:
            raise SenderInitError(
                f"Failed to prepare index {self.staging_index}: {exc}",
                details={"index_uid": self.staging_index},
            ) from exc

        self.state = SenderState.READY
        LOGGER.info("Sender ready: writing to %s (live index %s)", self.staging_index, self.live_index)

    # ------------------------------------------------------------------
    # Queueing
    # ------------------------------------------------------------------

    def raise_for_failure(self) -> None:
        """Re-raise a batch failure recorded by a background flush."""
        if self._failure is not None:
            raise self._failure

    def add(self, document: Dict[str, Any]) -> None:
        """Queue one publish unit; start a background flush at ``batch_size``.

        Never awaits. A batch that exhausted its retries in the background
        surfaces here (or in :meth:`finish`) as :class:`BatchSendError`.
        """
        self.raise_for_failure()
        self._require(SenderState.READY)

        payload = dict(document)
        if self.config.primary_key != "uid":
            payload.pop("uid", None)
        self._queue.append(payload)

        if len(self._queue) >= self.config.batch_size:
            batch, self._queue = self._queue, []
            task = asyncio.create_task(self._send_in_background(batch))
            self._inflight.add(task)
            task.add_done_callback(self._on_background_done)

    async def _send_in_background(self, batch: List[Dict[str, Any]]) -> None:
        handle = await self._flush(batch)
        if handle is not None:
            self._pending.append(handle)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None or self._failure is not None:
            return
        if isinstance(exc, BatchSendError):
            self._failure = exc
        else:
            self._failure = BatchSendError(f"Background flush failed: {exc}", queue_size=0, last_error=exc)
        LOGGER.error("Batch delivery failed: %s", self._failure)

    async def _flush(self, batch: List[Dict[str, Any]]) -> Optional[TaskHandle]:
        """Submit ``batch`` with retries; return its task handle."""
        if not batch:
            return None

        attempt = 0
        while True:
            try:
                handle = await self.client.add_documents(self.staging_index, batch, self.config.primary_key)
            except IndexClientError as exc:
                attempt += 1
                if attempt > self.retry.max_attempts:
                    raise BatchSendError(
                        f"Failed to send {len(batch)} documents to {self.staging_index} "
                        f"after {attempt} attempts: {exc}",
                        queue_size=len(batch),
                        last_error=exc,
                    ) from exc
                delay = self.retry.delay(attempt)
                LOGGER.warning(
                    "Sending batch of %d documents failed (retry %d/%d in %.1fs): %s",
                    len(batch),
                    attempt,
                    self.retry.max_attempts,
                    delay,
                    exc,
                )
                await asyncio.sleep(delay)
                continue

            self.documents_sent += len(batch)
            LOGGER.debug("Queued %d documents on %s as task %s", len(batch), self.staging_index, handle)
            return handle

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def _wait_quietly(self, handle: TaskHandle, timeout: float) -> None:
        try:
            await self.client.wait_for_task(handle, timeout=timeout)
        except IndexClientError as exc:
            LOGGER.error("Index task %s did not complete: %s", handle, exc)

    async def _staging_received_documents(self) -> bool:
        count = await self.client.get_document_count(self.staging_index)
        if count == 0 and self.documents_sent > 0:
            # Stats lag behind tasks that were still processing when the waits gave up.
            LOGGER.warning(
                "Staging index %s reports 0 documents after %d were sent; publishing anyway",
                self.staging_index,
                self.documents_sent,
            )
            return True
        return count > 0

    async def finish(self) -> None:
        """Drain all batches, publish the staging index and report completion.

        Raises:
            BatchSendError: If any batch could not be delivered.
            IndexClientError: If the final swap or cleanup fails.
        """
        self._require(SenderState.READY)
        self.state = SenderState.DRAINING

        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        self.raise_for_failure()

        batch, self._queue = self._queue, []
        final_handle = await self._flush(batch)
        if final_handle is not None:
            await self._wait_quietly(final_handle, self.task_timeout)

        if self._pending:
            await asyncio.gather(*(self._wait_quietly(handle, self.pending_timeout) for handle in self._pending))

        if self.staging_index == self.live_index:
            self.state = SenderState.PUBLISHED
        elif await self._staging_received_documents():
            await self.client.swap_indexes(self.live_index, self.staging_index)
            await self.client.delete_index(self.staging_index)
            self.state = SenderState.PUBLISHED
        else:
            LOGGER.warning(
                "Staging index %s is empty; leaving %s untouched",
                self.staging_index,
                self.live_index,
            )
            await self.client.delete_index(self.staging_index)
            self.state = SenderState.DISCARDED

        LOGGER.info("Sender finished: %d documents sent (%s)", self.documents_sent, self.state.value)
        await self.telemetry.on_completed(self.config, self.documents_sent)
