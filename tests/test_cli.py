"""Tests for siteindexer.cli module."""

from __future__ import annotations

import json
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from siteindexer.cli import _load_config, _parse_args, main
from siteindexer.errors import BatchSendError
from siteindexer.telemetry import ProgressSnapshot


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "crawl.json"
    path.write_text(
        json.dumps({"meilisearch_index_uid": "docs", "start_urls": ["https://x.test/"]}),
        encoding="utf-8",
    )
    return path


class TestParseArgs:
    def test_defaults(self):
        args = _parse_args(["crawl.json"])
        assert args.config == "crawl.json"
        assert args.max_pages is None
        assert args.concurrency is None
        assert args.verbose is False

    def test_overrides(self):
        args = _parse_args(["crawl.json", "--max-pages", "20", "--concurrency", "5", "-v"])
        assert args.max_pages == 20
        assert args.concurrency == 5
        assert args.verbose is True


class TestLoadConfig:
    def test_local_env_found(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            env_file = Path(tmpdir) / ".env"
            env_file.write_text("MEILISEARCH_URL=http://test:7700")

            with patch("siteindexer.cli.Path.cwd", return_value=Path(tmpdir)):
                with patch("siteindexer.cli.load_dotenv") as mock_load:
                    _load_config()
                    mock_load.assert_called_once_with(env_file)

    def test_config_dir_env(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config_dir = Path(tmpdir) / ".config" / "siteindexer"
            config_dir.mkdir(parents=True)
            (config_dir / ".env").write_text("MEILISEARCH_URL=http://config:7700")

            with patch("siteindexer.cli.Path.cwd", return_value=Path("/nonexistent")):
                with patch("siteindexer.cli.CONFIG_ENV_FILE", config_dir / ".env"):
                    with patch("siteindexer.cli.load_dotenv") as mock_load:
                        _load_config()
                        mock_load.assert_called_once_with(config_dir / ".env")

    def test_copy_error_is_logged(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            env_target = Path(tmpdir) / ".env"
            with patch("siteindexer.cli.Path.cwd", return_value=Path("/nonexistent")):
                with patch("siteindexer.cli.CONFIG_ENV_FILE", env_target):
                    with patch("siteindexer.cli.CONFIG_DIR", Path(tmpdir) / "cfg"):
                        with patch("siteindexer.cli.shutil.copy", side_effect=OSError):
                            with patch("siteindexer.cli.load_dotenv") as mock_load:
                                _load_config()
            assert not env_target.exists()
            mock_load.assert_not_called()


class TestMain:
    def test_success_prints_snapshot(self, config_file, capsys):
        snapshot = ProgressSnapshot(pages_traversed=4, pages_extracted=3, documents_sent=9)
        with patch("siteindexer.cli._load_config"):
            with patch("siteindexer.crawl_and_index_async", new=AsyncMock(return_value=snapshot)) as crawl:
                assert main([str(config_file), "--max-pages", "10"]) == 0

        assert crawl.call_args.kwargs == {"max_pages": 10, "concurrency": None}
        assert crawl.call_args.args[0].meilisearch_index_uid == "docs"
        printed = json.loads(capsys.readouterr().out)
        assert printed == {"nb_page_crawled": 4, "nb_page_indexed": 3, "nb_documents_sent": 9}

    def test_indexer_error_returns_one(self, config_file):
        error = BatchSendError("lost batch", queue_size=5)
        with patch("siteindexer.cli._load_config"):
            with patch("siteindexer.crawl_and_index_async", new=AsyncMock(side_effect=error)):
                with patch("siteindexer.cli.logging.error") as mock_error:
                    assert main([str(config_file)]) == 1

        assert mock_error.call_args.args[1] == "SENDER_BATCH_FAILED"

    def test_invalid_config_returns_one(self, tmp_path):
        path = tmp_path / "crawl.json"
        path.write_text("{}", encoding="utf-8")
        with patch("siteindexer.cli._load_config"):
            assert main([str(path)]) == 1

    def test_keyboard_interrupt(self, config_file):
        def _interrupt(coro):
            coro.close()
            raise KeyboardInterrupt

        with patch("siteindexer.cli._load_config"):
            with patch("siteindexer.cli.asyncio.run", side_effect=_interrupt):
                assert main([str(config_file)]) == 130
