"""Tests for siteindexer.config module."""

import json

import pytest
from crawl4ai import BrowserConfig, CrawlerRunConfig
from crawl4ai.async_configs import CacheMode

from siteindexer.config import (
    AIExtractionFeature,
    CustomSelectorsFeature,
    FeatureConfig,
    RuntimeSettings,
    build_browser_config,
    build_crawl_run_config,
    load_crawl_config,
    load_crawl_config_file,
)
from siteindexer.errors import ConfigError, ErrorCode

MINIMAL = {"meilisearch_index_uid": "docs", "start_urls": ["https://x.test/"]}


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("MEILISEARCH_URL", "MEILISEARCH_API_KEY", "OPENAI_API_KEY", "WEBHOOK_INTERVAL"):
        monkeypatch.delenv(name, raising=False)


class TestLoadCrawlConfig:
    def test_defaults(self):
        config = load_crawl_config(MINIMAL)
        assert config.meilisearch_url == "http://localhost:7700"
        assert config.start_urls == ("https://x.test/",)
        assert config.batch_size == 1000
        assert config.primary_key == "uid"
        assert config.urls_to_index is None
        assert config.keep_settings is False
        assert config.features.metadata == FeatureConfig()

    def test_env_fallback(self, monkeypatch):
        monkeypatch.setenv("MEILISEARCH_URL", "http://meili.internal:7700")
        monkeypatch.setenv("MEILISEARCH_API_KEY", "master")
        config = load_crawl_config(MINIMAL)
        assert config.meilisearch_url == "http://meili.internal:7700"
        assert config.meilisearch_api_key == "master"

    def test_explicit_values_beat_env(self, monkeypatch):
        monkeypatch.setenv("MEILISEARCH_URL", "http://meili.internal:7700")
        config = load_crawl_config({**MINIMAL, "meilisearch_url": "https://search.x.test"})
        assert config.meilisearch_url == "https://search.x.test"

    def test_full_document(self):
        config = load_crawl_config(
            {
                **MINIMAL,
                "urls_to_exclude": ["https://x.test/private/**"],
                "urls_to_index": ["https://x.test/docs/"],
                "batch_size": 50,
                "primary_key": "url",
                "webhook_url": "https://hooks.x.test/crawl",
                "webhook_payload": {"job": 7},
                "additional_request_headers": {"X-Token": "abc"},
                "user_agents": ["docs-bot/2.0"],
                "features": {
                    "custom_selectors": {"activated": True, "selectors": {"price": [".a", ".b"]}},
                    "ai_extraction": {"activated": True, "prompt": "Get price"},
                },
            }
        )
        assert config.urls_to_index == ("https://x.test/docs/",)
        assert config.batch_size == 50
        assert config.webhook_payload == {"job": 7}
        assert config.additional_request_headers == {"X-Token": "abc"}
        assert config.features.custom_selectors == CustomSelectorsFeature(
            activated=True, selectors={"price": (".a", ".b")}
        )
        assert config.features.ai_extraction == AIExtractionFeature(activated=True, prompt="Get price")

    def test_feature_page_filters(self):
        config = load_crawl_config(
            {**MINIMAL, "features": {"metadata": {"activated": True, "exclude_pages": ["x.test/a/**"]}}}
        )
        assert config.features.metadata.include_pages == ("**",)
        assert config.features.metadata.exclude_pages == ("x.test/a/**",)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"meilisearch_index_uid": ""},
            {"start_urls": []},
            {"start_urls": "https://x.test/"},
            {"start_urls": ["x.test/no-scheme"]},
            {"meilisearch_url": "localhost:7700"},
            {"webhook_url": "not a url"},
            {"batch_size": 0},
            {"batch_size": True},
            {"features": {"unknown_feature": {"activated": True}}},
            {"features": {"metadata": True}},
            {"features": {"custom_selectors": {"selectors": {"price": 3}}}},
            {"meilisearch_settings": ["not", "an", "object"]},
        ],
    )
    def test_invalid(self, overrides):
        with pytest.raises(ConfigError) as exc_info:
            load_crawl_config({**MINIMAL, **overrides})
        assert exc_info.value.code is ErrorCode.CONFIG_INVALID

    def test_not_a_mapping(self):
        with pytest.raises(ConfigError):
            load_crawl_config(["docs"])


class TestLoadCrawlConfigFile:
    def test_reads_json(self, tmp_path):
        path = tmp_path / "crawl.json"
        path.write_text(json.dumps(MINIMAL), encoding="utf-8")
        assert load_crawl_config_file(path).meilisearch_index_uid == "docs"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Cannot read"):
            load_crawl_config_file(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "crawl.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigError, match="not valid JSON"):
            load_crawl_config_file(path)


class TestRuntimeSettings:
    def test_defaults(self):
        settings = RuntimeSettings.from_env()
        assert settings.retry_max_attempts == 3
        assert settings.task_wait_timeout == 15.0
        assert settings.task_wait_timeout_extended == 30.0
        assert settings.progress_interval == 5.0
        assert settings.openai_api_key is None

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("SITEINDEXER_RETRY_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("WEBHOOK_INTERVAL", "1.5")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        settings = RuntimeSettings.from_env()
        assert settings.retry_max_attempts == 5
        assert settings.progress_interval == 1.5
        assert settings.openai_api_key == "sk-test"

    def test_non_numeric_value_falls_back(self, monkeypatch):
        monkeypatch.setenv("SITEINDEXER_TASK_WAIT_TIMEOUT", "soon")
        assert RuntimeSettings.from_env().task_wait_timeout == 15.0


class TestCrawl4aiFactories:
    def test_browser_config_headers(self):
        config = load_crawl_config({**MINIMAL, "additional_request_headers": {"X-Token": "abc"}})
        browser = build_browser_config(config)
        assert isinstance(browser, BrowserConfig)
        assert browser.headless is True
        assert browser.headers == {"X-Token": "abc"}

    def test_run_config(self):
        run_config = build_crawl_run_config()
        assert isinstance(run_config, CrawlerRunConfig)
        assert run_config.cache_mode == CacheMode.BYPASS
        assert run_config.stream is False
