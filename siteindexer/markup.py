"""BeautifulSoup helpers shared by the classifier and the feature steps.

None of the helpers mutate the soup they are given: a parsed page is shared
by every pipeline step, so anything destructive works on a re-parsed copy.
"""

from __future__ import annotations

import logging
import re
from typing import List

from bs4 import BeautifulSoup, Comment, Tag
from soupsieve import SelectorSyntaxError

LOGGER = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
_STRIPPED_TAGS = ("script", "style", "noscript")
_STRIPPED_ATTRIBUTES = ("class", "id", "style")
_VOID_TAGS = {"br", "hr", "img", "input", "meta", "link", "source", "area", "col", "embed", "wbr"}


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def select_safely(soup: BeautifulSoup, selector: str) -> List[Tag]:
    """Run a CSS selector, treating an invalid selector as matching nothing."""
    try:
        return soup.select(selector)
    except (SelectorSyntaxError, ValueError, NotImplementedError) as exc:
        LOGGER.warning("Ignoring invalid selector %r: %s", selector, exc)
        return []


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def visible_text(root: Tag, *, skip: tuple = ("script",)) -> str:
    """Concatenated text of ``root``, ignoring comments and ``skip`` subtrees."""
    parts: List[str] = []
    for node in root.find_all(string=True):
        if isinstance(node, Comment):
            continue
        if any(parent.name in skip for parent in node.parents if isinstance(parent, Tag)):
            continue
        parts.append(str(node))
    return "".join(parts)


def clean_html(soup: BeautifulSoup) -> str:
    """Return a compact HTML rendering suited to a language-model prompt.

    The page is re-parsed first; the cleaned copy drops class/id/style
    attributes, script and style elements, comments and empty elements, and
    collapses whitespace inside text nodes.
    """
    copy = parse_html(str(soup))

    for tag in copy.find_all(_STRIPPED_TAGS):
        tag.decompose()

    for comment in copy.find_all(string=lambda node: isinstance(node, Comment)):
        comment.extract()

    for tag in copy.find_all(True):
        for attribute in _STRIPPED_ATTRIBUTES:
            if attribute in tag.attrs:
                del tag.attrs[attribute]

    # Deepest elements first so that parents emptied by the pass are removed too.
    for tag in reversed(copy.find_all(True)):
        if tag.name in _VOID_TAGS or tag.name in ("html", "body"):
            continue
        if not tag.find(True) and not tag.get_text(strip=True):
            tag.decompose()

    for node in copy.find_all(string=True):
        text = str(node)
        if not text.strip():
            node.extract()
            continue
        collapsed = _WHITESPACE_RE.sub(" ", text)
        if collapsed != text:
            node.replace_with(collapsed)

    return str(copy).strip()
