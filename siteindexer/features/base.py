"""Shared types for feature steps."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from ..ai import ChatClient
from ..classifier import match_globs
from ..config import CrawlConfig, FeatureConfig

_PROTOCOL_RE = re.compile(r"^https?://")


@dataclass(frozen=True)
class FeatureContext:
    """Read-only collaborators handed to every step."""

    config: CrawlConfig
    ai: Optional[ChatClient] = None


def should_process_feature(feature: Optional[FeatureConfig], url: str) -> bool:
    """Gate a step on its activation flag and page filters.

    Page patterns are matched against the URL without its ``http(s)://``
    prefix; an exclude match wins.
    """
    if feature is None or not feature.activated:
        return False
    target = _PROTOCOL_RE.sub("", url)
    if not match_globs(target, feature.include_pages or ("**",)):
        return False
    return not match_globs(target, feature.exclude_pages)
