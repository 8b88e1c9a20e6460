"""Extract schema.org data from JSON-LD, microdata or RDFa."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bs4 import BeautifulSoup

from ..document import PageDocument
from .base import FeatureContext

LOGGER = logging.getLogger(__name__)

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")


def _json_ld(soup: BeautifulSoup) -> Dict[str, Any]:
    script = soup.find("script", attrs={"type": "application/ld+json"})
    if script is None:
        return {}
    try:
        data = json.loads(script.string or script.get_text() or "{}")
    except json.JSONDecodeError as exc:
        LOGGER.error("Failed to parse JSON-LD schema: %s", exc)
        return {}
    if isinstance(data, list):
        data = next((item for item in data if isinstance(item, dict)), {})
    return data if isinstance(data, dict) else {}


def _scoped_properties(soup: BeautifulSoup, scope_attr: str, prop_attr: str, separator: str) -> Dict[str, Any]:
    schema: Dict[str, Any] = {}
    for element in soup.find_all(attrs={scope_attr: True}):
        item_type = (element.get(scope_attr) or "").split(separator)[-1]
        if not item_type:
            continue
        properties: Dict[str, Any] = {}
        for prop in element.find_all(attrs={prop_attr: True}):
            name = (prop.get(prop_attr) or "").split(":")[-1]
            if not name:
                continue
            content = prop.get("content") or prop.get_text().strip()
            if content:
                properties[name] = content
        if properties:
            schema["@type"] = item_type
            schema.update(properties)
    return schema


def extract_schema(soup: BeautifulSoup) -> Dict[str, Any]:
    """First non-empty source wins: JSON-LD, then microdata, then RDFa."""
    return (
        _json_ld(soup)
        or _scoped_properties(soup, "itemtype", "itemprop", "/")
        or _scoped_properties(soup, "typeof", "property", ":")
    )


def strip_schema_keywords(data: Any) -> Any:
    if isinstance(data, dict):
        return {
            key: strip_schema_keywords(value)
            for key, value in data.items()
            if key not in ("@context", "@type")
        }
    if isinstance(data, list):
        return [strip_schema_keywords(item) for item in data]
    return data


def _to_timestamp(value: str) -> Optional[int]:
    if not _ISO_DATE_RE.match(value):
        return None
    candidate = value.strip()
    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def convert_dates(data: Any) -> Any:
    """Replace ISO-8601 date strings with epoch milliseconds, recursively."""
    if isinstance(data, dict):
        return {key: convert_dates(value) for key, value in data.items()}
    if isinstance(data, list):
        return [convert_dates(item) for item in data]
    if isinstance(data, str):
        timestamp = _to_timestamp(data)
        return data if timestamp is None else timestamp
    return data


async def process_schema(soup: BeautifulSoup, document: PageDocument, context: FeatureContext) -> PageDocument:
    options = context.config.features.schema
    data = extract_schema(soup)
    if not data:
        return document
    if options.only_type and data.get("@type") != options.only_type:
        return document

    data = strip_schema_keywords(data)
    if options.convert_dates:
        data = convert_dates(data)
    return replace(document, schema=data)
