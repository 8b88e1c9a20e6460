"""Crawl configuration, runtime settings and Crawl4AI run-config factories.

A crawl is described by a JSON document (see ``load_crawl_config_file``)
that is validated once into an immutable :class:`CrawlConfig`. Process-level
tunables (retry limits, timeouts, API keys) come from the environment and are
read at call time through :meth:`RuntimeSettings.from_env`, so ``.env``
loading in the CLI and ``monkeypatch.setenv`` in tests both take effect.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union
from urllib.parse import urlparse

from crawl4ai import BrowserConfig, CrawlerRunConfig
from crawl4ai.async_configs import CacheMode

from .errors import ConfigError

LOGGER = logging.getLogger(__name__)

DEFAULT_MEILISEARCH_URL = "http://localhost:7700"
DEFAULT_BATCH_SIZE = 1000
DEFAULT_PRIMARY_KEY = "uid"
DEFAULT_MAX_CONCURRENCY = 3


# ---------------------------------------------------------------------------
# Feature configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FeatureConfig:
    """Activation flag and page filters shared by every feature."""

    activated: bool = False
    include_pages: Tuple[str, ...] = ("**",)
    exclude_pages: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CustomSelectorsFeature(FeatureConfig):
    selectors: Mapping[str, Union[str, Tuple[str, ...]]] = field(default_factory=dict)


@dataclass(frozen=True)
class MarkdownFeature(FeatureConfig):
    # Drop exact duplicate sections (repeated banners, footers in <main>).
    dedup: bool = False


@dataclass(frozen=True)
class SchemaFeature(FeatureConfig):
    only_type: Optional[str] = None
    convert_dates: bool = False


@dataclass(frozen=True)
class AIExtractionFeature(FeatureConfig):
    prompt: Optional[str] = None


@dataclass(frozen=True)
class FeatureSet:
    """Per-feature configuration, one slot per pipeline step."""

    block_split: FeatureConfig = field(default_factory=FeatureConfig)
    metadata: FeatureConfig = field(default_factory=FeatureConfig)
    custom_selectors: CustomSelectorsFeature = field(default_factory=CustomSelectorsFeature)
    markdown: MarkdownFeature = field(default_factory=MarkdownFeature)
    schema: SchemaFeature = field(default_factory=SchemaFeature)
    ai_extraction: AIExtractionFeature = field(default_factory=AIExtractionFeature)
    ai_summary: FeatureConfig = field(default_factory=FeatureConfig)


_FEATURE_TYPES: Dict[str, type] = {
    "block_split": FeatureConfig,
    "metadata": FeatureConfig,
    "custom_selectors": CustomSelectorsFeature,
    "markdown": MarkdownFeature,
    "schema": SchemaFeature,
    "ai_extraction": AIExtractionFeature,
    "ai_summary": FeatureConfig,
}


# ---------------------------------------------------------------------------
# Crawl configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CrawlConfig:
    """Validated, immutable description of one crawl job."""

    meilisearch_index_uid: str
    start_urls: Tuple[str, ...]
    meilisearch_url: str = DEFAULT_MEILISEARCH_URL
    meilisearch_api_key: Optional[str] = None
    urls_to_exclude: Tuple[str, ...] = ()
    urls_to_index: Optional[Tuple[str, ...]] = None
    urls_to_not_index: Tuple[str, ...] = ()
    features: FeatureSet = field(default_factory=FeatureSet)
    batch_size: int = DEFAULT_BATCH_SIZE
    keep_settings: bool = False
    meilisearch_settings: Optional[Dict[str, Any]] = None
    primary_key: str = DEFAULT_PRIMARY_KEY
    not_found_selectors: Tuple[str, ...] = ()
    webhook_url: Optional[str] = None
    webhook_payload: Optional[Dict[str, Any]] = None
    additional_request_headers: Dict[str, str] = field(default_factory=dict)
    user_agents: Tuple[str, ...] = ()
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    max_pages: Optional[int] = None


def _is_http_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _string_tuple(raw: Mapping[str, Any], key: str) -> Optional[Tuple[str, ...]]:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise ConfigError(f"'{key}' must be a list of strings", details={"field": key})
    if not all(isinstance(item, str) for item in value):
        raise ConfigError(f"'{key}' must only contain strings", details={"field": key})
    return tuple(value)


def _positive_int(raw: Mapping[str, Any], key: str, default: Optional[int]) -> Optional[int]:
    value = raw.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"'{key}' must be a positive integer", details={"field": key})
    return value


def _optional_mapping(raw: Mapping[str, Any], key: str) -> Optional[Dict[str, Any]]:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise ConfigError(f"'{key}' must be an object", details={"field": key})
    return dict(value)


def _parse_selectors(value: Any) -> Dict[str, Union[str, Tuple[str, ...]]]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError("'custom_selectors.selectors' must be an object")
    selectors: Dict[str, Union[str, Tuple[str, ...]]] = {}
    for key, selector in value.items():
        if isinstance(selector, str):
            selectors[key] = selector
        elif isinstance(selector, (list, tuple)) and all(isinstance(s, str) for s in selector):
            selectors[key] = tuple(selector)
        else:
            raise ConfigError(
                f"Selector for '{key}' must be a string or a list of strings",
                details={"field": f"custom_selectors.selectors.{key}"},
            )
    return selectors


def _parse_feature(name: str, raw: Any) -> FeatureConfig:
    if not isinstance(raw, Mapping):
        raise ConfigError(f"Feature '{name}' must be an object", details={"feature": name})

    kwargs: Dict[str, Any] = {"activated": bool(raw.get("activated", False))}
    include = _string_tuple(raw, "include_pages")
    if include is not None:
        kwargs["include_pages"] = include
    exclude = _string_tuple(raw, "exclude_pages")
    if exclude is not None:
        kwargs["exclude_pages"] = exclude

    if name == "custom_selectors":
        kwargs["selectors"] = _parse_selectors(raw.get("selectors"))
    elif name == "markdown":
        kwargs["dedup"] = bool(raw.get("dedup", False))
    elif name == "schema":
        only_type = raw.get("only_type")
        if only_type is not None and not isinstance(only_type, str):
            raise ConfigError("'schema.only_type' must be a string")
        kwargs["only_type"] = only_type
        kwargs["convert_dates"] = bool(raw.get("convert_dates", False))
    elif name == "ai_extraction":
        prompt = raw.get("prompt")
        if prompt is not None and not isinstance(prompt, str):
            raise ConfigError("'ai_extraction.prompt' must be a string")
        kwargs["prompt"] = prompt

    return _FEATURE_TYPES[name](**kwargs)


def _parse_features(raw: Any) -> FeatureSet:
    if raw is None:
        return FeatureSet()
    if not isinstance(raw, Mapping):
        raise ConfigError("'features' must be an object")
    unknown = sorted(set(raw) - set(_FEATURE_TYPES))
    if unknown:
        raise ConfigError(
            f"Unknown feature(s): {', '.join(unknown)}",
            details={"features": unknown},
        )
    return FeatureSet(**{name: _parse_feature(name, value) for name, value in raw.items()})


def load_crawl_config(raw: Mapping[str, Any]) -> CrawlConfig:
    """Validate a raw mapping into a :class:`CrawlConfig`.

    ``meilisearch_url`` and ``meilisearch_api_key`` fall back to the
    ``MEILISEARCH_URL`` / ``MEILISEARCH_API_KEY`` environment variables.

    Raises:
        ConfigError: If any field is missing or malformed.
    """
    if not isinstance(raw, Mapping):
        raise ConfigError("Crawl configuration must be an object")

    index_uid = raw.get("meilisearch_index_uid")
    if not isinstance(index_uid, str) or not index_uid.strip():
        raise ConfigError(
            "'meilisearch_index_uid' is required",
            details={"field": "meilisearch_index_uid"},
        )

    start_urls = _string_tuple(raw, "start_urls")
    if not start_urls:
        raise ConfigError("'start_urls' must contain at least one URL", details={"field": "start_urls"})
    invalid = [url for url in start_urls if not _is_http_url(url)]
    if invalid:
        raise ConfigError(
            f"Invalid start URL(s): {', '.join(invalid)}",
            details={"field": "start_urls", "invalid": invalid},
        )

    meilisearch_url = raw.get("meilisearch_url") or os.getenv("MEILISEARCH_URL") or DEFAULT_MEILISEARCH_URL
    if not _is_http_url(meilisearch_url):
        raise ConfigError(f"Invalid meilisearch_url: {meilisearch_url}", details={"field": "meilisearch_url"})

    webhook_url = raw.get("webhook_url")
    if webhook_url is not None and not _is_http_url(webhook_url):
        raise ConfigError(f"Invalid webhook_url: {webhook_url}", details={"field": "webhook_url"})

    headers = _optional_mapping(raw, "additional_request_headers") or {}
    primary_key = raw.get("primary_key") or DEFAULT_PRIMARY_KEY
    if not isinstance(primary_key, str):
        raise ConfigError("'primary_key' must be a string", details={"field": "primary_key"})

    return CrawlConfig(
        meilisearch_index_uid=index_uid,
        start_urls=start_urls,
        meilisearch_url=meilisearch_url,
        meilisearch_api_key=raw.get("meilisearch_api_key") or os.getenv("MEILISEARCH_API_KEY"),
        urls_to_exclude=_string_tuple(raw, "urls_to_exclude") or (),
        urls_to_index=_string_tuple(raw, "urls_to_index") or None,
        urls_to_not_index=_string_tuple(raw, "urls_to_not_index") or (),
        features=_parse_features(raw.get("features")),
        batch_size=_positive_int(raw, "batch_size", DEFAULT_BATCH_SIZE),
        keep_settings=bool(raw.get("keep_settings", False)),
        meilisearch_settings=_optional_mapping(raw, "meilisearch_settings"),
        primary_key=primary_key,
        not_found_selectors=_string_tuple(raw, "not_found_selectors") or (),
        webhook_url=webhook_url,
        webhook_payload=_optional_mapping(raw, "webhook_payload"),
        additional_request_headers={str(k): str(v) for k, v in headers.items()},
        user_agents=_string_tuple(raw, "user_agents") or (),
        max_concurrency=_positive_int(raw, "max_concurrency", DEFAULT_MAX_CONCURRENCY),
        max_pages=_positive_int(raw, "max_pages", None),
    )


def load_crawl_config_file(path: Union[str, Path]) -> CrawlConfig:
    """Read a JSON crawl configuration from disk and validate it."""
    config_path = Path(path)
    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {config_path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file {config_path} is not valid JSON: {exc}") from exc
    return load_crawl_config(raw)


# ---------------------------------------------------------------------------
# Runtime settings (environment)
# ---------------------------------------------------------------------------


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Ignoring non-numeric %s=%r; using %s.", name, value, default)
        return default


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, float(default)))


@dataclass(frozen=True)
class RuntimeSettings:
    """Process-level tunables that do not belong to a single crawl."""

    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0
    task_wait_timeout: float = 15.0
    task_wait_timeout_extended: float = 30.0
    progress_interval: float = 5.0
    ai_max_content_length: int = 4000
    ai_request_timeout: float = 30.0
    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"
    webhook_token: Optional[str] = None

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        return cls(
            retry_max_attempts=_env_int("SITEINDEXER_RETRY_MAX_ATTEMPTS", 3),
            retry_base_delay=_env_float("SITEINDEXER_RETRY_BASE_DELAY", 1.0),
            retry_max_delay=_env_float("SITEINDEXER_RETRY_MAX_DELAY", 10.0),
            task_wait_timeout=_env_float("SITEINDEXER_TASK_WAIT_TIMEOUT", 15.0),
            task_wait_timeout_extended=_env_float("SITEINDEXER_TASK_WAIT_TIMEOUT_EXTENDED", 30.0),
            progress_interval=_env_float("WEBHOOK_INTERVAL", 5.0),
            ai_max_content_length=_env_int("SITEINDEXER_AI_MAX_CONTENT_LENGTH", 4000),
            ai_request_timeout=_env_float("SITEINDEXER_AI_REQUEST_TIMEOUT", 30.0),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_base_url=os.getenv("OPENAI_BASE_URL") or "https://api.openai.com/v1",
            openai_model=os.getenv("OPENAI_MODEL") or "gpt-4o-mini",
            webhook_token=os.getenv("WEBHOOK_TOKEN") or None,
        )


# ---------------------------------------------------------------------------
# Crawl4AI factories
# ---------------------------------------------------------------------------


def build_browser_config(config: CrawlConfig) -> BrowserConfig:
    """Browser settings for the fetch engine (request headers only)."""
    return BrowserConfig(
        headless=True,
        use_persistent_context=False,
        headers=dict(config.additional_request_headers) or None,
    )


def build_crawl_run_config() -> CrawlerRunConfig:
    """RunConfig for the crawl loop: raw HTML plus links, no caching."""
    return CrawlerRunConfig(
        cache_mode=CacheMode.BYPASS,
        stream=False,
        verbose=False,
        exclude_external_links=False,
    )
