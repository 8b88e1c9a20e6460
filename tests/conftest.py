"""Shared fixtures and strict test-accounting guardrails."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import pytest

from siteindexer.config import CrawlConfig, RuntimeSettings, load_crawl_config
from siteindexer.engine import PageLoad
from siteindexer.errors import IndexClientError, IndexTaskTimeoutError
from siteindexer.sender import RetryPolicy


# ---------------------------------------------------------------------------
# In-memory collaborators
# ---------------------------------------------------------------------------


class FakeIndexClient:
    """Meilisearch stand-in that applies every task immediately."""

    def __init__(self) -> None:
        self.indexes: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []
        self.add_failures = 0
        self.add_attempts = 0
        self.fail_create = False
        self.slow_tasks: set = set()
        self.stale_counts = False
        self._task_uid = 0

    def seed_index(self, uid: str, documents: int = 0, settings: Optional[Dict[str, Any]] = None) -> None:
        self.indexes[uid] = {
            "primary_key": "uid",
            "settings": dict(settings or {}),
            "documents": [{"uid": str(i)} for i in range(documents)],
        }

    def documents(self, uid: str) -> List[Dict[str, Any]]:
        return self.indexes[uid]["documents"]

    async def index_exists(self, uid: str) -> bool:
        self.calls.append(("index_exists", (uid,)))
        return uid in self.indexes

    async def create_index(self, uid: str, primary_key: Optional[str] = None) -> None:
        self.calls.append(("create_index", (uid, primary_key)))
        if self.fail_create:
            raise IndexClientError("index_creation_failed", status_code=500)
        self.indexes.setdefault(uid, {"primary_key": primary_key, "settings": {}, "documents": []})

    async def delete_index(self, uid: str) -> None:
        self.calls.append(("delete_index", (uid,)))
        self.indexes.pop(uid, None)

    async def get_settings(self, uid: str) -> Dict[str, Any]:
        self.calls.append(("get_settings", (uid,)))
        return dict(self.indexes[uid]["settings"])

    async def update_settings(self, uid: str, settings: Dict[str, Any]) -> None:
        self.calls.append(("update_settings", (uid, settings)))
        self.indexes[uid]["settings"].update(settings)

    async def add_documents(
        self, uid: str, documents: List[Dict[str, Any]], primary_key: Optional[str] = None
    ) -> int:
        self.add_attempts += 1
        self.calls.append(("add_documents", (uid, len(documents), primary_key)))
        if self.add_failures:
            self.add_failures -= 1
            raise IndexClientError("service unavailable", status_code=503)
        self.indexes[uid]["documents"].extend(documents)
        self._task_uid += 1
        return self._task_uid

    async def wait_for_task(self, task_uid: int, timeout: Optional[float] = None) -> Dict[str, Any]:
        self.calls.append(("wait_for_task", (task_uid,)))
        if task_uid in self.slow_tasks:
            raise IndexTaskTimeoutError(f"Task {task_uid} still processing after timeout")
        return {"uid": task_uid, "status": "succeeded"}

    async def swap_indexes(self, first: str, second: str) -> None:
        self.calls.append(("swap_indexes", (first, second)))
        self.indexes[first], self.indexes[second] = self.indexes[second], self.indexes[first]

    async def get_document_count(self, uid: str) -> int:
        self.calls.append(("get_document_count", (uid,)))
        if self.stale_counts:
            return 0
        return len(self.indexes[uid]["documents"])

    def called(self, name: str) -> List[Tuple[Any, ...]]:
        return [args for call, args in self.calls if call == name]


class RecordingTelemetry:
    """Sink that remembers every lifecycle event."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, Any]] = []

    async def on_started(self, config):
        self.events.append(("started", None))

    async def on_progress(self, config, snapshot):
        self.events.append(("progress", snapshot))

    async def on_completed(self, config, total_documents):
        self.events.append(("completed", total_documents))

    async def on_failed(self, config, error):
        self.events.append(("failed", error))

    @property
    def statuses(self) -> List[str]:
        return [name for name, _ in self.events]


class FakeEngine:
    """Breadth-first engine over a fixed ``url -> (html, links)`` site map."""

    def __init__(self, site: Dict[str, Tuple[str, List[str]]], start_urls) -> None:
        self.site = site
        self.queue = deque(start_urls)
        self.seen = set(start_urls)
        self.visited: List[str] = []
        self.enqueued: List[str] = []

    def enqueue_links(self, urls, *, exclude=None) -> int:
        added = 0
        for url in urls:
            if exclude is not None and exclude(url):
                continue
            if url in self.seen:
                continue
            self.seen.add(url)
            self.queue.append(url)
            self.enqueued.append(url)
            added += 1
        return added

    async def run(self, handler) -> None:
        while self.queue:
            url = self.queue.popleft()
            if url not in self.site:
                continue
            html, links = self.site[url]
            self.visited.append(url)
            await handler(PageLoad(url=url, html=html, links=list(links)), self.enqueue_links)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_index() -> FakeIndexClient:
    return FakeIndexClient()


@pytest.fixture
def telemetry() -> RecordingTelemetry:
    return RecordingTelemetry()


@pytest.fixture
def runtime_settings() -> RuntimeSettings:
    return RuntimeSettings(progress_interval=3600.0)


@pytest.fixture
def no_delay_retry() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0)


@pytest.fixture
def make_config():
    def _make(**overrides: Any) -> CrawlConfig:
        raw: Dict[str, Any] = {
            "meilisearch_index_uid": "docs",
            "meilisearch_url": "http://meili.test:7700",
            "start_urls": ["https://x.test/"],
        }
        raw.update(overrides)
        return load_crawl_config(raw)

    return _make


@pytest.fixture
def fake_engine():
    return FakeEngine


# ---------------------------------------------------------------------------
# Test accounting guard
# ---------------------------------------------------------------------------


@dataclass
class _TestAccounting:
    deselected: int = 0
    skipped: int = 0
    xfailed: int = 0
    xpassed: int = 0


_ACCOUNTING = _TestAccounting()


def pytest_deselected(items):  # pragma: no cover - pytest hook
    _ACCOUNTING.deselected += len(items)


def pytest_runtest_logreport(report):  # pragma: no cover - pytest hook
    if report.when not in {"setup", "call"}:
        return
    if getattr(report, "wasxfail", False):
        if report.outcome == "skipped":
            _ACCOUNTING.xfailed += 1
        elif report.outcome == "passed":
            _ACCOUNTING.xpassed += 1
        return
    if report.outcome == "skipped":
        _ACCOUNTING.skipped += 1


def pytest_sessionfinish(session, exitstatus):  # pragma: no cover - pytest hook
    violations = [
        f"{name}={count}"
        for name, count in vars(_ACCOUNTING).items()
        if count
    ]
    if not violations:
        return

    reporter = session.config.pluginmanager.get_plugin("terminalreporter")
    if reporter:
        reporter.write_sep(
            "=",
            f"Strict guard failed: test accounting violations detected ({', '.join(violations)})",
        )
    session.exitstatus = 1
