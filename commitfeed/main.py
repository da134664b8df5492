"""
main.py: Dependency Wiring (Composition Root)
---------------------------------------------
This file has ONE job: wire all the pieces together and run the app.

It does NOT contain any business logic. It just:
  1. Reads configuration from environment variables and CLI flags
  2. Creates concrete implementations of each interface
  3. Injects them into the classes that need them
  4. Calls the top-level use case (IngestApplicationService.execute)
  5. Reports the result and exits

Dependency graph (what depends on what):
                         main.py  (wires everything)
                            │
              ┌─────────────┼──────────────┐
              ▼             ▼              ▼
    IngestApplicationService│    PostgresCommitStorage
              │             │    (or InMemoryCommitStorage)
              ▼             ▼
       CommitIngestor   GitHubClient
              │
              ▼
        ICommitStorage

Usage:
    commitfeed ingest --query "fix typo author-date:>2015-09-01"
    commitfeed ingest --query "fix typo" --dry-run
    commitfeed recent --since 2015-09-02
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx
from psycopg2.pool import ThreadedConnectionPool

# Application layer
from commitfeed.application.ingest_service import IngestApplicationService
from commitfeed.application.orchestrator import CommitIngestor

# Domain layer
from commitfeed.domain.errors import EntityNotFoundError
from commitfeed.domain.interfaces import ICommitStorage

# Infrastructure layer
from commitfeed.infrastructure.github_client import GitHubClient
from commitfeed.infrastructure.memory_storage import InMemoryCommitStorage
from commitfeed.infrastructure.postgres_storage import PostgresCommitStorage

log = logging.getLogger("commitfeed")

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_SOURCE    = "github"
DEFAULT_POOL_SIZE = 8


@dataclass(frozen=True)
class Settings:
    database_url: str | None
    github_token: str | None
    source_name:  str
    pool_size:    int


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def read_settings(require_database: bool = True) -> Settings:
    """
    Read environment variables.
    Fails fast with a clear error if a required one is missing or invalid.
    """
    db_url = os.environ.get("DATABASE_URL")
    if require_database and not db_url:
        log.error("DATABASE_URL environment variable is required")
        sys.exit(1)

    raw_pool_size = os.environ.get("COMMITFEED_POOL_SIZE", str(DEFAULT_POOL_SIZE))
    try:
        pool_size = int(raw_pool_size)
    except ValueError:
        log.error("COMMITFEED_POOL_SIZE must be an integer, got %r", raw_pool_size)
        sys.exit(1)

    return Settings(
        database_url = db_url,
        github_token = os.environ.get("GITHUB_TOKEN") or None,
        source_name  = os.environ.get("COMMITFEED_SOURCE", DEFAULT_SOURCE),
        pool_size    = max(pool_size, 1),
    )


def _parse_date(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO date: {value!r}") from None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}") from None
    if parsed < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {parsed}")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="commitfeed",
        description="Ingest GitHub commit search results into PostgreSQL",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="search commits and store them")
    ingest.add_argument("--query", required=True, help="GitHub commit search query")
    ingest.add_argument(
        "--dry-run",
        action = "store_true",
        help   = "ingest into an in-memory store instead of PostgreSQL",
    )
    ingest.add_argument(
        "--max-concurrent",
        type    = _positive_int,
        default = None,
        help    = "items ingested in parallel (default: pool size)",
    )

    recent = sub.add_parser("recent", help="list commits authored after a date")
    recent.add_argument("--since", required=True, type=_parse_date, help="YYYY-MM-DD")
    return parser


# ---------------------------------------------------------------------------
# Dependency wiring
# ---------------------------------------------------------------------------

def _install_cancel_handler(cancel_event: asyncio.Event) -> None:
    """First Ctrl-C stops new items from starting; running ones finish."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except (NotImplementedError, RuntimeError):
        log.debug("Signal handlers unsupported here; Ctrl-C will abort immediately")


async def run_ingest(storage: ICommitStorage, settings: Settings, query: str, max_concurrent: int) -> int:
    """
    Wires the ingest use case around an already-built storage backend and
    executes it. Returns the process exit code.
    """
    try:
        source = storage.get_source(settings.source_name)
    except EntityNotFoundError:
        log.error("Unknown source %r (COMMITFEED_SOURCE); is it seeded in git_source?", settings.source_name)
        return 1

    cancel_event = asyncio.Event()
    _install_cancel_handler(cancel_event)

    async with httpx.AsyncClient() as client:
        github_client = GitHubClient(
            client = client,                  # injected, GitHubClient doesn't create this
            token  = settings.github_token,
        )
        ingestor = CommitIngestor(
            storage        = storage,         # injected ICommitStorage
            source         = source,
            max_concurrent = max_concurrent,
        )
        service = IngestApplicationService(
            fetcher  = github_client,         # injected ICommitFetcher
            ingestor = ingestor,
        )

        result = await service.execute(query, cancel_event)

    if result.status != "success":
        log.error("Failed | error: %s", result.error_message)
        return 1

    log.info(
        "Success | %d ok | %d failed | %d cancelled | %d total matches | %.1fs",
        result.succeeded,
        result.failed,
        result.cancelled,
        result.total_count,
        result.elapsed_secs,
    )
    for detail in result.errors:
        log.warning("  %s", detail)
    return 0 if result.failed == 0 else 2


def print_recent(storage: ICommitStorage, since: datetime) -> int:
    commits = sorted(storage.recent_commits(since), key=lambda c: c.date, reverse=True)
    for c in commits:
        headline = c.message.splitlines()[0] if c.message else ""
        username = c.author.username if c.author else "?"
        print(f"{c.date:%Y-%m-%d %H:%M}  {username:<20} {headline}  {c.url}")
    log.info("%d commits since %s", len(commits), since.date())
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    dry_run  = args.command == "ingest" and args.dry_run
    settings = read_settings(require_database=not dry_run)

    if dry_run:
        storage = InMemoryCommitStorage(sources=(settings.source_name,))
        return asyncio.run(
            run_ingest(storage, settings, args.query, args.max_concurrent or settings.pool_size)
        )

    pool = ThreadedConnectionPool(1, settings.pool_size, dsn=settings.database_url)
    try:
        storage = PostgresCommitStorage(pool=pool)   # injected, storage doesn't create the pool
        if args.command == "recent":
            return print_recent(storage, args.since)

        storage.ensure_schema()
        # more workers than pooled connections would only fail with PoolError
        max_concurrent = min(args.max_concurrent or settings.pool_size, settings.pool_size)
        return asyncio.run(run_ingest(storage, settings, args.query, max_concurrent))
    finally:
        # Always clean up connections, even if an exception occurred
        pool.closeall()


if __name__ == "__main__":
    sys.exit(main())
