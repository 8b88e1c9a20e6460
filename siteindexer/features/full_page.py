"""Build the base PageDocument: title, URL facets and heading blocks."""

from __future__ import annotations

import re
from typing import Any, Dict, List
from urllib.parse import urlsplit

from bs4 import BeautifulSoup, Tag

from ..document import HEADING_LEVELS, Block, PageDocument

CONTENT_TAGS = HEADING_LEVELS + ("p", "td", "li", "span")
MAIN_CONTENT_SELECTOR = ", ".join(f"main {tag}" for tag in CONTENT_TAGS)
ANY_CONTENT_SELECTOR = ", ".join(CONTENT_TAGS)

_NEWLINES_RE = re.compile(r"[\r\n]+")
_SPACES_RE = re.compile(r"\s+")


def clean_text(text: str) -> str:
    text = _NEWLINES_RE.sub(" ", text or "")
    text = _SPACES_RE.sub(" ", text)
    return text.replace("# ", "", 1).strip()


def url_tags(url: str) -> tuple:
    """Path segments between the first and the last slash."""
    return tuple(urlsplit(url).path.split("/")[1:-1])


def build_blocks(elements: List[Tag]) -> List[Block]:
    """Group content elements into heading-delimited blocks.

    A heading closes the open block. The next block inherits the shallower
    headings, resets the deeper ones and takes its anchor from the heading id.
    Text of ``p``/``td``/``li``/``span`` elements is collected once per block.
    """
    blocks: List[Block] = []
    headings: Dict[str, Any] = {}
    texts: List[str] = []
    is_open = False

    def close() -> None:
        blocks.append(Block(**headings, p="\n".join(texts) if texts else None))

    for element in elements:
        name = element.name.lower()
        text = clean_text(element.get_text())

        if name in HEADING_LEVELS:
            level = HEADING_LEVELS.index(name)
            if is_open:
                close()
                headings = {h: headings.get(h) for h in HEADING_LEVELS[:level]}
                texts = []
            headings[name] = text
            element_id = element.get("id")
            headings["anchor"] = f"#{element_id}" if element_id else None
            for deeper in HEADING_LEVELS[level + 1:]:
                headings[deeper] = None
        elif text and text not in texts:
            texts.append(text)
        is_open = True

    if is_open:
        close()
    return blocks


async def process_full_page(soup: BeautifulSoup, url: str) -> PageDocument:
    elements = soup.select(MAIN_CONTENT_SELECTOR)
    if not elements:
        elements = soup.select(ANY_CONTENT_SELECTOR)

    title_tag = soup.find("title")
    return PageDocument(
        url=url,
        domain=urlsplit(url).hostname or "",
        title=title_tag.get_text().strip() if title_tag else "",
        urls_tags=url_tags(url),
        blocks=tuple(build_blocks(elements)),
    )
