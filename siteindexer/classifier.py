"""URL eligibility rules for traversal and extraction, plus soft-404 detection.

Two independent predicates decide what happens to a URL:

* *traversal* (``is_traversable``): may the crawler follow links to it?
  Seeds expanded to globs, minus the expanded ``urls_to_exclude``.
* *extraction* (``is_extractable``): should its content become documents?
  ``urls_to_index`` (seeds when unset), minus the expanded ``urls_to_not_index``.

Every configured URL expands like a seed, so excluding a page also excludes
everything below it.

In both cases an exclude match always wins over an include match.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import Iterable, List, Pattern, Sequence, Tuple
from urllib.parse import urlsplit, urlunsplit

from bs4 import BeautifulSoup

from .config import CrawlConfig
from .markup import select_safely, visible_text

LOGGER = logging.getLogger(__name__)

FILE_EXTENSIONS: Tuple[str, ...] = (
    # Data formats
    ".json", ".csv", ".yaml", ".yml", ".xml", ".sql", ".db", ".sqlite",
    # Documents
    ".md", ".markdown", ".txt", ".rtf", ".doc", ".docx", ".xls", ".xlsx",
    ".ppt", ".pptx", ".pdf",
    # Configuration and logs
    ".ini", ".config", ".log",
    # Archives
    ".zip", ".rar", ".tar", ".gz", ".tgz", ".7z", ".bz2",
    # Executables and disk images
    ".exe", ".bin", ".apk", ".ipa", ".dmg", ".iso",
    # Images
    ".jpg", ".jpeg", ".png", ".gif", ".svg",
    # Web assets
    ".css", ".js",
    # Media
    ".mp3", ".wav", ".mp4", ".avi", ".mkv", ".mov", ".flv", ".wmv", ".m4v",
    ".ogg", ".mpg", ".mpeg", ".swf",
)

NOT_FOUND_SELECTORS: Tuple[str, ...] = (
    'h1:-soup-contains("404")',
    'h1:-soup-contains("Page Not Found")',
    'title:-soup-contains("404")',
    'div:-soup-contains("404"), span:-soup-contains("404")',
    ".error-404",
    ".not-found",
    "#error-page",
    '[data-error="404"]',
    '[data-page-type="404"]',
)

NOT_FOUND_PHRASES: Tuple[str, ...] = (
    "page not found",
    "page doesn't exist",
    "page could not be found",
    "404 error",
)


# ---------------------------------------------------------------------------
# Glob matching
# ---------------------------------------------------------------------------


def generate_globs(urls: Iterable[str]) -> List[str]:
    """Expand each URL into itself plus a glob covering everything below it."""
    globs: List[str] = []
    for url in urls:
        globs.append(url)
        globs.append(f"{url}**" if url.endswith("/") else f"{url}/**")
    return globs


@lru_cache(maxsize=1024)
def glob_to_regex(pattern: str) -> Pattern[str]:
    """Translate a minimatch-style glob into a compiled regular expression.

    ``**`` matches across ``/``; ``*`` and ``?`` stay within one path
    segment; ``{a,b}`` is an alternation and ``[...]`` a character class.
    """
    out: List[str] = []
    i, n = 0, len(pattern)
    depth = 0
    while i < n:
        char = pattern[i]
        if char == "/" and pattern[i:] == "/**":
            out.append("(?:/.*)?")
            break
        if char == "*":
            j = i
            while j < n and pattern[j] == "*":
                j += 1
            if j - i >= 2:
                if j < n and pattern[j] == "/":
                    out.append("(?:.*/)?")
                    j += 1
                else:
                    out.append(".*")
            else:
                out.append("[^/]*")
            i = j
            continue
        if char == "?":
            out.append("[^/]")
        elif char == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(char))
            else:
                body = pattern[i + 1:end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = end
        elif char == "{":
            depth += 1
            out.append("(?:")
        elif char == "}" and depth:
            depth -= 1
            out.append(")")
        elif char == "," and depth:
            out.append("|")
        else:
            out.append(re.escape(char))
        i += 1
    return re.compile("".join(out) + "\\Z", re.DOTALL)


def match_globs(url: str, globs: Sequence[str]) -> bool:
    for pattern in globs:
        try:
            if glob_to_regex(pattern).match(url):
                return True
        except re.error as exc:
            LOGGER.warning("Ignoring invalid URL pattern %r: %s", pattern, exc)
    return False


# ---------------------------------------------------------------------------
# URL helpers
# ---------------------------------------------------------------------------


def normalize_url(url: str) -> str:
    """Strip query string and fragment.

    Raises:
        ValueError: For malformed or non-http(s) URLs.
    """
    parts = urlsplit(url.strip())
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError(f"Not an http(s) URL: {url!r}")
    return urlunsplit((parts.scheme, parts.netloc, parts.path or "/", "", ""))


def is_file_url(url: str) -> bool:
    path = url.split("#", 1)[0].split("?", 1)[0].lower()
    return path.endswith(FILE_EXTENSIONS)


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class UrlClassifier:
    """Pure, stateless classification rules derived from a CrawlConfig."""

    def __init__(self, config: CrawlConfig):
        self.config = config
        self._traverse_include = generate_globs(config.start_urls)
        self._traverse_exclude = generate_globs(config.urls_to_exclude)
        self._extract_include = (
            generate_globs(config.urls_to_index)
            if config.urls_to_index
            else list(self._traverse_include)
        )
        self._extract_exclude = generate_globs(config.urls_to_not_index)

    def is_traversable(self, url: str) -> bool:
        if match_globs(url, self._traverse_exclude):
            return False
        return match_globs(url, self._traverse_include)

    def is_extractable(self, url: str) -> bool:
        if match_globs(url, self._extract_exclude):
            return False
        return match_globs(url, self._extract_include)

    @staticmethod
    def is_file_url(url: str) -> bool:
        return is_file_url(url)

    def is_not_found_page(self, soup: BeautifulSoup) -> bool:
        """Detect pages that render normally but say "not found"."""
        if self.config.not_found_selectors:
            return any(select_safely(soup, selector) for selector in self.config.not_found_selectors)

        if any(select_safely(soup, selector) for selector in NOT_FOUND_SELECTORS):
            return True

        body = soup.body or soup
        text = visible_text(body).lower()
        return any(phrase in text for phrase in NOT_FOUND_PHRASES)
