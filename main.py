"""
Application entry points for the feed ingestion service.

Usage:
    # Run the worker pool (also keeps the periodic GatherSources job alive)
    python main.py worker

    # Run the APScheduler-driven source scan
    python main.py scheduler

    # Register a feed and queue an immediate fetch
    python main.py add-source https://example.com/feed.xml
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from feed_ingest.config import Settings, get_settings
from feed_ingest.logger import setup_logging
from feed_ingest.workers import SchedulerContext, create_ingestion_context
from feed_ingest.workers import run_scheduler as _run_scheduler
from feed_ingest.workers import run_worker as _run_worker

LOGGER = logging.getLogger("feed_ingest.main")


async def _worker_main(settings: Settings) -> None:
    context = SchedulerContext()
    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, context.stop_processing)
    await _run_worker(settings, context)


def run_worker() -> int:
    """Run the worker pool until SIGINT/SIGTERM."""
    settings = get_settings()
    setup_logging(settings)
    LOGGER.info(
        "Starting %s worker v%s (%s)",
        settings.app.name,
        settings.app.version,
        settings.app.environment.value,
    )
    try:
        asyncio.run(_worker_main(settings))
        return 0
    except KeyboardInterrupt:
        LOGGER.info("Interrupted by user")
        return 0
    except Exception as exc:
        LOGGER.exception("Fatal error: %s", exc)
        return 1


def run_scheduler() -> int:
    """Run the background source scan scheduler."""
    settings = get_settings()
    setup_logging(settings)
    LOGGER.info(
        "Starting %s scheduler v%s (%s)",
        settings.app.name,
        settings.app.version,
        settings.app.environment.value,
    )
    try:
        asyncio.run(_run_scheduler(settings))
        return 0
    except KeyboardInterrupt:
        LOGGER.info("Interrupted by user")
        return 0
    except Exception as exc:
        LOGGER.exception("Fatal error: %s", exc)
        return 1


async def _add_source(settings: Settings, url: str, home_url: str | None, strategy: str | None) -> int:
    async with create_ingestion_context(settings) as deps:
        if strategy:
            deps.registry.get(strategy)
        source = await deps.source_scheduler.register_source(url, home_url, strategy_type=strategy)
    print(f"Source {source.id} registered for {source.url}")
    return 0


def add_source(url: str, home_url: str | None, strategy: str | None) -> int:
    """Register a source and queue its first fetch."""
    settings = get_settings()
    setup_logging(settings)
    try:
        return asyncio.run(_add_source(settings, url, home_url, strategy))
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


def main() -> int:
    """Main entry point with subcommand routing."""
    parser = argparse.ArgumentParser(
        description="Feed Ingestion Service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("worker", help="Run the job worker pool")
    subparsers.add_parser("scheduler", help="Run the periodic source scan")

    add_parser = subparsers.add_parser("add-source", help="Register a feed source")
    add_parser.add_argument("url", help="Feed URL")
    add_parser.add_argument("--home-url", default=None, help="Site home page (defaults to the feed URL)")
    add_parser.add_argument(
        "--strategy",
        default=None,
        choices=["generic", "json", "scrape", "websub"],
        help="Pin a parsing strategy instead of detecting it",
    )

    args = parser.parse_args()

    if args.command == "worker":
        return run_worker()
    elif args.command == "scheduler":
        return run_scheduler()
    elif args.command == "add-source":
        return add_source(args.url, args.home_url, args.strategy)
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
