"""Command-line interface for crawling a site into a Meilisearch index."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import shutil
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .config import load_crawl_config_file
from .errors import IndexerError

# Configuration directory for global CLI usage
CONFIG_DIR = Path.home() / ".config" / "siteindexer"
CONFIG_ENV_FILE = CONFIG_DIR / ".env"


def _load_config() -> None:
    """Load .env configuration with fallback to user config directory.

    Search order:
    1. .env in current working directory
    2. ~/.config/siteindexer/.env

    If neither exists and .env.example ships next to the package, it is
    copied to ~/.config/siteindexer/.env as a starting point.
    """
    local_env = Path.cwd() / ".env"
    if local_env.is_file():
        load_dotenv(local_env)
        return

    if CONFIG_ENV_FILE.is_file():
        load_dotenv(CONFIG_ENV_FILE)
        return

    example_file = Path(__file__).parent.parent / ".env.example"
    if example_file.is_file():
        try:
            CONFIG_DIR.mkdir(parents=True, exist_ok=True)
            shutil.copy(example_file, CONFIG_ENV_FILE)
            logging.info(
                "Created config file at %s from .env.example. "
                "Please edit it with your MEILISEARCH_URL and MEILISEARCH_API_KEY.",
                CONFIG_ENV_FILE,
            )
            load_dotenv(CONFIG_ENV_FILE)
        except OSError as exc:
            logging.warning("Could not create %s: %s", CONFIG_ENV_FILE, exc)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="siteindexer",
        description="Crawl a website and publish its pages to a Meilisearch index.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Examples:
  # Crawl using a JSON job description
  siteindexer crawl.json

  # Try a job on the first 20 pages only
  siteindexer crawl.json --max-pages 20 -v
""",
    )
    parser.add_argument(
        "config",
        help="Path to the JSON crawl configuration",
    )
    parser.add_argument(
        "--max-pages",
        type=int,
        default=None,
        help="Stop after this many fetched pages (overrides max_pages)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Pages fetched in parallel (overrides max_concurrency)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    return parser.parse_args(argv)


async def _run_async(args: argparse.Namespace) -> int:
    from . import crawl_and_index_async

    config = load_crawl_config_file(args.config)
    logging.info(
        "Starting crawl of %s into index %s",
        ", ".join(config.start_urls),
        config.meilisearch_index_uid,
    )
    snapshot = await crawl_and_index_async(
        config,
        max_pages=args.max_pages,
        concurrency=args.concurrency,
    )
    print(json.dumps(snapshot.to_dict(), indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the siteindexer command."""
    args = _parse_args(argv)
    _setup_logging(args.verbose)
    _load_config()

    try:
        return asyncio.run(_run_async(args))
    except KeyboardInterrupt:
        logging.info("Interrupted")
        return 130
    except IndexerError as exc:
        logging.error("%s: %s", exc.code.value, exc)
        if args.verbose:
            logging.exception("Full traceback:")
        return 1


if __name__ == "__main__":
    sys.exit(main())
