"""Render the page's main content as markdown."""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import replace
from typing import List, Tuple

from bs4 import BeautifulSoup
from crawl4ai.markdown_generation_strategy import DefaultMarkdownGenerator

from ..document import PageDocument
from .base import FeatureContext

LOGGER = logging.getLogger(__name__)


def build_markdown_generator() -> DefaultMarkdownGenerator:
    """Plain markdown without links or images."""
    return DefaultMarkdownGenerator(
        options={
            "ignore_links": True,
            "ignore_images": True,
            "body_width": 0,
        },
    )


def html_to_markdown(html: str, base_url: str = "") -> str:
    if not html.strip():
        return ""
    generator = build_markdown_generator()
    generated = generator.generate_markdown(
        html,
        base_url=base_url,
        options=generator.options,
        citations=False,
    )
    return (getattr(generated, "raw_markdown", "") or "").strip()


# ---------------------------------------------------------------------------
# Section dedup
# ---------------------------------------------------------------------------


def _split_sections(markdown: str) -> List[str]:
    text = markdown.replace("\r\n", "\n").replace("\r", "\n").strip()
    if not text:
        return []
    sections: List[str] = []
    for chunk in re.split(r"\n\s*\n+", text):
        # A heading starts a new section even without a blank line before it.
        for sub in re.split(r"(?m)(?=^\s{0,3}#{1,6}\s+\S)", chunk):
            normalized = "\n".join(line.rstrip() for line in sub.split("\n")).strip()
            if normalized:
                sections.append(normalized)
    return sections


def dedup_sections(markdown: str) -> Tuple[str, int]:
    """Drop exact duplicate sections; the first occurrence wins.

    Returns the cleaned markdown and the number of removed sections.
    """
    seen = set()
    kept: List[str] = []
    removed = 0
    for section in _split_sections(markdown):
        fingerprint = hashlib.sha256(section.encode("utf-8")).hexdigest()
        if fingerprint in seen:
            removed += 1
            continue
        seen.add(fingerprint)
        kept.append(section)
    return "\n\n".join(kept), removed


async def process_markdown(soup: BeautifulSoup, document: PageDocument, context: FeatureContext) -> PageDocument:
    root = soup.find("main") or soup.find("body")
    if root is None:
        return replace(document, markdown="")

    markdown = html_to_markdown(str(root), base_url=document.url)
    if context.config.features.markdown.dedup:
        markdown, removed = dedup_sections(markdown)
        if removed:
            LOGGER.debug("Removed %d duplicate markdown sections from %s", removed, document.url)
    return replace(document, markdown=markdown)
