"""Feature pipeline: turn one parsed page into publish units.

Steps run in a fixed order::

    full page -> metadata -> custom selectors -> markdown -> schema
              -> AI extraction -> AI summary -> block split

Each enrichment step is gated by its feature config (activation flag plus
include/exclude page patterns). A step that raises is logged and skipped;
the document it received continues down the pipeline unchanged.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from bs4 import BeautifulSoup

from ..ai import ChatClient
from ..config import CrawlConfig
from ..document import PageDocument
from .ai import process_ai_extraction, process_ai_summary
from .base import FeatureContext, should_process_feature
from .block_split import split_blocks
from .custom_selectors import process_custom_selectors
from .full_page import process_full_page
from .markdown import process_markdown
from .metadata import process_metadata
from .schema import process_schema

LOGGER = logging.getLogger(__name__)

FeatureStep = Callable[[BeautifulSoup, PageDocument, FeatureContext], Awaitable[PageDocument]]

ENRICHMENT_STEPS: Tuple[Tuple[str, FeatureStep], ...] = (
    ("metadata", process_metadata),
    ("custom_selectors", process_custom_selectors),
    ("markdown", process_markdown),
    ("schema", process_schema),
    ("ai_extraction", process_ai_extraction),
    ("ai_summary", process_ai_summary),
)

__all__ = [
    "ENRICHMENT_STEPS",
    "FeatureContext",
    "FeaturePipeline",
    "should_process_feature",
    "split_blocks",
]


class FeaturePipeline:
    """Run the ordered feature steps for extraction-eligible pages."""

    def __init__(self, config: CrawlConfig, ai: Optional[ChatClient] = None):
        self.config = config
        self.context = FeatureContext(config=config, ai=ai)

    async def build_document(self, url: str, soup: BeautifulSoup) -> PageDocument:
        document = await process_full_page(soup, url)
        features = self.config.features
        for name, step in ENRICHMENT_STEPS:
            if not should_process_feature(getattr(features, name), url):
                continue
            try:
                document = await step(soup, document, self.context)
            except Exception as exc:
                LOGGER.warning("Feature %s failed for %s: %s", name, url, exc)
        return document

    async def run(self, url: str, soup: BeautifulSoup) -> List[Dict[str, Any]]:
        document = await self.build_document(url, soup)
        if should_process_feature(self.config.features.block_split, url):
            return split_blocks(document)
        return [document.to_dict()]
