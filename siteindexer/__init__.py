"""Crawl a website and publish its pages to a Meilisearch index.

The crawl runs in three stages wired together by :class:`CrawlOrchestrator`:

- a Crawl4AI fetch engine walks the site from the seed URLs,
- the feature pipeline turns eligible pages into structured documents,
- the sender batches documents into a staging index and swaps it live.

Example usage:

    from siteindexer import crawl_and_index, load_crawl_config

    config = load_crawl_config({
        "meilisearch_index_uid": "docs",
        "meilisearch_url": "http://localhost:7700",
        "start_urls": ["https://docs.example.com/"],
        "features": {"block_split": {"activated": True}},
    })
    snapshot = crawl_and_index(config)
    print(snapshot.documents_sent)
"""

from __future__ import annotations

import asyncio
import dataclasses
from typing import Optional

from .ai import ChatClient
from .classifier import UrlClassifier
from .config import (
    CrawlConfig,
    RuntimeSettings,
    build_browser_config,
    build_crawl_run_config,
    load_crawl_config,
    load_crawl_config_file,
)
from .document import Block, PageDocument
from .engine import Crawl4aiEngine, PageLoad
from .errors import (
    BatchSendError,
    ConfigError,
    ErrorCode,
    IndexClientError,
    IndexerError,
    SenderInitError,
)
from .features import FeaturePipeline
from .index_client import MeilisearchClient
from .orchestrator import CrawlOrchestrator
from .sender import RetryPolicy, Sender, SenderState
from .telemetry import NullTelemetry, ProgressSnapshot, WebhookTelemetry, build_telemetry

__all__ = [
    # Configuration
    "CrawlConfig",
    "RuntimeSettings",
    "load_crawl_config",
    "load_crawl_config_file",
    # Documents
    "Block",
    "PageDocument",
    # Components
    "ChatClient",
    "Crawl4aiEngine",
    "CrawlOrchestrator",
    "FeaturePipeline",
    "MeilisearchClient",
    "PageLoad",
    "RetryPolicy",
    "Sender",
    "SenderState",
    "UrlClassifier",
    # Telemetry
    "NullTelemetry",
    "ProgressSnapshot",
    "WebhookTelemetry",
    "build_telemetry",
    # Errors
    "BatchSendError",
    "ConfigError",
    "ErrorCode",
    "IndexClientError",
    "IndexerError",
    "SenderInitError",
    # Entry points
    "crawl_and_index",
    "crawl_and_index_async",
]


async def crawl_and_index_async(
    config: CrawlConfig,
    *,
    max_pages: Optional[int] = None,
    concurrency: Optional[int] = None,
) -> ProgressSnapshot:
    """
    Crawl the configured site and publish the extracted documents.

    Args:
        config: Validated crawl configuration.
        max_pages: Override ``config.max_pages``.
        concurrency: Override ``config.max_concurrency``.

    Returns:
        The final ProgressSnapshot.

    Raises:
        IndexerError: If the index cannot be prepared or a batch is lost.
    """
    overrides = {}
    if max_pages is not None:
        overrides["max_pages"] = max_pages
    if concurrency is not None:
        overrides["max_concurrency"] = concurrency
    if overrides:
        config = dataclasses.replace(config, **overrides)

    settings = RuntimeSettings.from_env()
    telemetry = build_telemetry(config, settings)
    engine = Crawl4aiEngine(
        config.start_urls,
        concurrency=config.max_concurrency,
        max_pages=config.max_pages,
        browser_config=build_browser_config(config),
        run_config=build_crawl_run_config(),
    )

    async with MeilisearchClient(
        config.meilisearch_url,
        config.meilisearch_api_key,
        client_agents=config.user_agents,
    ) as client:
        sender = Sender(config, client, telemetry, settings=settings)
        orchestrator = CrawlOrchestrator(
            config,
            sender,
            telemetry,
            pipeline=FeaturePipeline(config, ChatClient.from_settings(settings)),
            progress_interval=settings.progress_interval,
        )
        return await orchestrator.run(engine)


def crawl_and_index(
    config: CrawlConfig,
    *,
    max_pages: Optional[int] = None,
    concurrency: Optional[int] = None,
) -> ProgressSnapshot:
    """Synchronous wrapper for crawl_and_index_async."""
    return asyncio.run(crawl_and_index_async(config, max_pages=max_pages, concurrency=concurrency))
