"""Extract text for user-defined CSS selectors."""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, List

from bs4 import BeautifulSoup

from ..document import PageDocument
from ..markup import select_safely
from .base import FeatureContext


async def process_custom_selectors(
    soup: BeautifulSoup, document: PageDocument, context: FeatureContext
) -> PageDocument:
    custom: Dict[str, Any] = {}
    for key, selectors in context.config.features.custom_selectors.selectors.items():
        if isinstance(selectors, str):
            selectors = (selectors,)

        values: List[str] = []
        for selector in selectors:
            for element in select_safely(soup, selector):
                text = element.get_text().strip()
                if text:
                    values.append(text)

        if len(values) == 1:
            custom[key] = values[0]
        elif values:
            custom[key] = values
    return replace(document, custom=custom)
