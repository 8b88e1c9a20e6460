"""Collect ``<meta>`` tags (including OpenGraph and Twitter cards)."""

from __future__ import annotations

from dataclasses import replace
from typing import Dict

from bs4 import BeautifulSoup

from ..document import PageDocument
from .base import FeatureContext


async def process_metadata(soup: BeautifulSoup, document: PageDocument, context: FeatureContext) -> PageDocument:
    metadata: Dict[str, str] = {}
    for tag in soup.find_all("meta"):
        name = tag.get("name") or tag.get("property")
        content = tag.get("content")
        if name and content:
            metadata[name] = content
    return replace(document, metadata=metadata)
