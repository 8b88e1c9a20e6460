"""Document data structures produced by the feature pipeline."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

HEADING_LEVELS: Tuple[str, ...] = ("h1", "h2", "h3", "h4", "h5", "h6")


@dataclass(frozen=True, slots=True)
class Block:
    """A heading-delimited section of a page."""

    h1: Optional[str] = None
    h2: Optional[str] = None
    h3: Optional[str] = None
    h4: Optional[str] = None
    h5: Optional[str] = None
    h6: Optional[str] = None
    anchor: Optional[str] = None
    p: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "h1": self.h1,
            "h2": self.h2,
            "h3": self.h3,
            "h4": self.h4,
            "h5": self.h5,
            "h6": self.h6,
            "anchor": self.anchor,
            "p": self.p,
        }


def new_uid() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True, slots=True)
class PageDocument:
    """Structured representation of one extracted page.

    Pipeline steps never mutate a document; they return a copy built with
    :func:`dataclasses.replace`.
    """

    url: str
    domain: str = ""
    title: Optional[str] = None
    urls_tags: Tuple[str, ...] = ()
    blocks: Tuple[Block, ...] = ()
    uid: str = field(default_factory=new_uid)
    metadata: Optional[Dict[str, str]] = None
    custom: Optional[Dict[str, Any]] = None
    markdown: Optional[str] = None
    schema: Optional[Dict[str, Any]] = None
    ai_extraction: Optional[Dict[str, Any]] = None
    ai_summary: Optional[str] = None

    def enrichments(self) -> Dict[str, Any]:
        """Optional enrichment fields that have been set."""
        values = {
            "metadata": self.metadata,
            "custom": self.custom,
            "markdown": self.markdown,
            "schema": self.schema,
            "ai_extraction": self.ai_extraction,
            "ai_summary": self.ai_summary,
        }
        return {key: value for key, value in values.items() if value is not None}

    def to_dict(self) -> Dict[str, Any]:
        """Full-page publish unit."""
        return {
            "uid": self.uid,
            "url": self.url,
            "domain": self.domain,
            "title": self.title,
            "urls_tags": list(self.urls_tags),
            "blocks": [block.to_dict() for block in self.blocks],
            **self.enrichments(),
        }
