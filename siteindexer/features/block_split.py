"""Split a page into one publish unit per heading block."""

from __future__ import annotations

from typing import Any, Dict, List

from ..document import PageDocument, new_uid


def split_blocks(document: PageDocument) -> List[Dict[str, Any]]:
    """Return one child dict per block, all sharing ``document.uid`` as parent.

    A page without blocks still yields a single child so that every
    extracted page is represented under exactly one parent id.
    """
    shared: Dict[str, Any] = {
        "title": document.title,
        "url": document.url,
        "domain": document.domain,
        "urls_tags": list(document.urls_tags),
        "meta": document.metadata,
        "custom": document.custom,
        "markdown": document.markdown,
        "schema": document.schema,
        "ai_extraction": document.ai_extraction,
        "ai_summary": document.ai_summary,
    }

    blocks = [block.to_dict() for block in document.blocks] or [{}]
    return [
        {
            "uid": new_uid(),
            "parent_document_id": document.uid,
            "page_block": index,
            **shared,
            **block,
        }
        for index, block in enumerate(blocks)
    ]
