"""Fetch engine: drive Crawl4AI over a simple in-memory frontier.

The engine knows nothing about eligibility rules. It hands every fetched
page to a handler together with an ``enqueue_links`` callback; the handler
decides which discovered URLs are offered back to the frontier.
"""

from __future__ import annotations

import inspect
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, List, Optional, Protocol, Set
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from crawl4ai import AsyncWebCrawler, BrowserConfig, CrawlerRunConfig
from crawl4ai.async_dispatcher import SemaphoreDispatcher

from .markup import parse_html

LOGGER = logging.getLogger(__name__)


@dataclass
class PageLoad:
    """A successfully fetched page."""

    url: str
    html: str
    links: List[str] = field(default_factory=list)
    _soup: Optional[BeautifulSoup] = field(default=None, init=False, repr=False)

    @property
    def soup(self) -> BeautifulSoup:
        """Parsed DOM, built on first access."""
        if self._soup is None:
            self._soup = parse_html(self.html)
        return self._soup


EnqueueLinks = Callable[..., int]
PageHandler = Callable[[PageLoad, EnqueueLinks], Awaitable[None]]


class FetchEngine(Protocol):
    async def run(self, handler: PageHandler) -> None: ...


def final_url(result: Any) -> str:
    """URL a result was served from, after any redirects."""
    return str(getattr(result, "redirected_url", None) or getattr(result, "url", "") or "")


def extract_links(result: Any) -> List[str]:
    """Absolute hrefs from a Crawl4AI result's internal and external buckets."""
    links: Dict[str, List[Dict[str, Any]]] = getattr(result, "links", None) or {}
    base_url = final_url(result)
    seen: Set[str] = set()
    hrefs: List[str] = []
    for bucket in ("internal", "external"):
        for entry in links.get(bucket, []) or []:
            href = (entry or {}).get("href")
            if not href:
                continue
            absolute = urljoin(base_url, href)
            if absolute in seen:
                continue
            seen.add(absolute)
            hrefs.append(absolute)
    return hrefs


async def _iterate_results(result):
    """Iterate over crawl results, handling different result types."""
    from crawl4ai.models import CrawlResultContainer

    if isinstance(result, list):
        for item in result:
            if isinstance(item, CrawlResultContainer):
                for sub_item in item:
                    yield sub_item
            else:
                yield item
        return

    if isinstance(result, CrawlResultContainer):
        for item in result:
            yield item
        return

    if inspect.isasyncgen(result):
        async for item in result:
            yield item
        return

    if result is not None:
        yield result


class Crawl4aiEngine:
    """Breadth-first fetcher on top of ``AsyncWebCrawler.arun_many``."""

    def __init__(
        self,
        start_urls: Iterable[str],
        *,
        concurrency: int = 3,
        max_pages: Optional[int] = None,
        browser_config: Optional[BrowserConfig] = None,
        run_config: Optional[CrawlerRunConfig] = None,
    ):
        self.concurrency = max(1, concurrency)
        self.max_pages = max_pages
        self.browser_config = browser_config
        self.run_config = run_config or CrawlerRunConfig(stream=False)
        self.pages_fetched = 0
        self._frontier: Deque[str] = deque()
        self._seen: Set[str] = set()
        for url in start_urls:
            self._push(url)

    @property
    def frontier_size(self) -> int:
        return len(self._frontier)

    def _push(self, url: str) -> bool:
        if url in self._seen:
            return False
        self._seen.add(url)
        self._frontier.append(url)
        return True

    def enqueue_links(self, urls: Iterable[str], *, exclude: Optional[Callable[[str], bool]] = None) -> int:
        """Add unseen URLs to the frontier, skipping those ``exclude`` rejects."""
        added = 0
        for url in urls:
            if exclude is not None and exclude(url):
                continue
            if self._push(url):
                added += 1
        return added

    def _limit_reached(self) -> bool:
        return self.max_pages is not None and self.pages_fetched >= self.max_pages

    def _next_batch(self) -> List[str]:
        size = self.concurrency
        if self.max_pages is not None:
            size = min(size, self.max_pages - self.pages_fetched)
        batch: List[str] = []
        while self._frontier and len(batch) < size:
            batch.append(self._frontier.popleft())
        return batch

    async def run(self, handler: PageHandler) -> None:
        """Crawl until the frontier is empty or ``max_pages`` is reached.

        Exceptions raised by ``handler`` propagate and stop the crawl.
        """
        async with AsyncWebCrawler(config=self.browser_config) as crawler:
            while self._frontier and not self._limit_reached():
                batch = self._next_batch()
                dispatcher = SemaphoreDispatcher(semaphore_count=self.concurrency)
                results = await crawler.arun_many(urls=batch, config=self.run_config, dispatcher=dispatcher)

                async for result in _iterate_results(results):
                    url = str(getattr(result, "url", "") or "")
                    if not getattr(result, "success", False):
                        LOGGER.warning(
                            "Failed to fetch %s: %s",
                            url,
                            getattr(result, "error_message", None) or "unknown error",
                        )
                        continue
                    if self._limit_reached():
                        break

                    url = final_url(result)
                    self._seen.add(url)
                    self.pages_fetched += 1
                    page = PageLoad(url=url, html=result.html or "", links=extract_links(result))
                    await handler(page, self.enqueue_links)

        if self._limit_reached():
            LOGGER.info("Reached page limit of %d", self.max_pages)
