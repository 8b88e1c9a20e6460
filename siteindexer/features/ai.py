"""Language-model enrichments: structured extraction and page summary.

Both steps degrade to a pass-through: a missing key, a failed request or an
unparsable answer leaves the document as it was.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace

from bs4 import BeautifulSoup

from ..document import PageDocument
from ..errors import AIRequestError
from ..markup import clean_html
from .base import FeatureContext

LOGGER = logging.getLogger(__name__)

EXTRACTION_SYSTEM_PROMPT = (
    "You are a helpful assistant that extracts structured information from HTML content. "
    "Respond with valid JSON only."
)
SUMMARY_SYSTEM_PROMPT = "You are a helpful assistant that creates concise summaries of HTML content."
SUMMARY_USER_PROMPT = (
    "Please provide a concise summary of HTML content that will be then used to generate "
    "an embedding representation of the page."
)

EXTRACTION_TEMPERATURE = 0.1
SUMMARY_TEMPERATURE = 0.3
SUMMARY_MAX_TOKENS = 150


async def process_ai_extraction(
    soup: BeautifulSoup, document: PageDocument, context: FeatureContext
) -> PageDocument:
    client = context.ai
    if client is None or not client.configured:
        LOGGER.warning("OPENAI_API_KEY not set; skipping AI extraction for %s", document.url)
        return document

    prompt = context.config.features.ai_extraction.prompt
    if not prompt:
        LOGGER.warning("No prompt configured for AI extraction")
        return document

    html = client.truncate(clean_html(soup))
    try:
        answer = await client.complete(
            [
                {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
                {"role": "user", "content": f"{prompt}\n\nHTML content to analyze:\n{html}"},
            ],
            temperature=EXTRACTION_TEMPERATURE,
            response_format={"type": "json_object"},
        )
        result = json.loads(answer)
    except AIRequestError as exc:
        LOGGER.error("AI extraction failed for %s: %s", document.url, exc)
        return document
    except json.JSONDecodeError as exc:
        LOGGER.error("AI extraction for %s returned invalid JSON: %s", document.url, exc)
        return document

    return replace(document, ai_extraction={prompt: result})


async def process_ai_summary(
    soup: BeautifulSoup, document: PageDocument, context: FeatureContext
) -> PageDocument:
    client = context.ai
    if client is None or not client.configured:
        LOGGER.warning("OPENAI_API_KEY not set; skipping AI summary for %s", document.url)
        return document

    html = client.truncate(clean_html(soup))
    try:
        summary = await client.complete(
            [
                {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                {"role": "user", "content": f"{SUMMARY_USER_PROMPT} \n\n HTML:\n{html}"},
            ],
            temperature=SUMMARY_TEMPERATURE,
            max_tokens=SUMMARY_MAX_TOKENS,
        )
    except AIRequestError as exc:
        LOGGER.error("AI summary failed for %s: %s", document.url, exc)
        return document

    return replace(document, ai_summary=summary.strip())
