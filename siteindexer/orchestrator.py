"""Crawl orchestration: wire page loads to classification, features and sending."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional

from .classifier import UrlClassifier, is_file_url, normalize_url
from .config import CrawlConfig, RuntimeSettings
from .engine import EnqueueLinks, FetchEngine, PageLoad
from .errors import BatchSendError
from .features import FeaturePipeline
from .sender import Sender
from .telemetry import ProgressSnapshot, TelemetrySink

LOGGER = logging.getLogger(__name__)


def prepare_links(urls: Iterable[str]) -> List[str]:
    """Normalize discovered links and drop file assets, malformed URLs and repeats."""
    prepared: List[str] = []
    seen = set()
    for url in urls:
        if is_file_url(url):
            continue
        try:
            normalized = normalize_url(url)
        except ValueError:
            LOGGER.debug("Dropping malformed link %r", url)
            continue
        if normalized in seen:
            continue
        seen.add(normalized)
        prepared.append(normalized)
    return prepared


class CrawlOrchestrator:
    """Run one crawl: count pages, extract documents, report progress."""

    def __init__(
        self,
        config: CrawlConfig,
        sender: Sender,
        telemetry: TelemetrySink,
        *,
        classifier: Optional[UrlClassifier] = None,
        pipeline: Optional[FeaturePipeline] = None,
        progress_interval: Optional[float] = None,
    ):
        self.config = config
        self.sender = sender
        self.telemetry = telemetry
        self.classifier = classifier or UrlClassifier(config)
        self.pipeline = pipeline or FeaturePipeline(config)
        if progress_interval is None:
            progress_interval = RuntimeSettings.from_env().progress_interval
        self.progress_interval = progress_interval
        self.pages_traversed = 0
        self.pages_extracted = 0

    def snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            pages_traversed=self.pages_traversed,
            pages_extracted=self.pages_extracted,
            documents_sent=self.sender.documents_sent,
        )

    async def handle_page(self, page: PageLoad, enqueue_links: EnqueueLinks) -> None:
        """Process one page load event.

        Page-local failures are logged and contained. A batch that could not
        be delivered (:class:`BatchSendError`) aborts the crawl.
        """
        self.sender.raise_for_failure()
        self.pages_traversed += 1

        if self.classifier.is_extractable(page.url):
            try:
                await self._extract(page)
            except BatchSendError:
                raise
            except Exception as exc:
                LOGGER.error("Failed to extract %s: %s", page.url, exc)

        links = prepare_links(page.links)
        if links:
            enqueue_links(links, exclude=lambda url: not self.classifier.is_traversable(url))

    async def _extract(self, page: PageLoad) -> None:
        soup = page.soup
        if self.classifier.is_not_found_page(soup):
            LOGGER.info("Skipping soft-404 page %s", page.url)
            return

        self.pages_extracted += 1
        units = await self.pipeline.run(page.url, soup)
        for unit in units:
            self.sender.add(unit)
        LOGGER.debug("Extracted %d document(s) from %s", len(units), page.url)

    async def _report_progress(self) -> None:
        while True:
            await asyncio.sleep(self.progress_interval)
            await self.telemetry.on_progress(self.config, self.snapshot())

    async def run(self, engine: FetchEngine) -> ProgressSnapshot:
        """Run the crawl to completion and publish the result.

        Raises:
            Whatever aborted the crawl, after ``on_failed`` has been reported.
        """
        await self.telemetry.on_started(self.config)
        timer = asyncio.create_task(self._report_progress())
        try:
            await self.sender.init()
            await engine.run(self.handle_page)
            await self.telemetry.on_progress(self.config, self.snapshot())
            await self.sender.finish()
        except Exception as exc:
            LOGGER.error("Crawl of %s failed: %s", self.config.meilisearch_index_uid, exc)
            await self.telemetry.on_failed(self.config, exc)
            raise
        finally:
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass

        snapshot = self.snapshot()
        LOGGER.info(
            "Crawl finished: %d pages traversed, %d extracted, %d documents sent",
            snapshot.pages_traversed,
            snapshot.pages_extracted,
            snapshot.documents_sent,
        )
        return snapshot
