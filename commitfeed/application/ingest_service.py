from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from commitfeed.domain.entities import IngestResult
from commitfeed.domain.interfaces import ICommitFetcher
from .orchestrator import CommitIngestor

log = logging.getLogger(__name__)


class IngestApplicationService:
    """
    The top-level use case: search GitHub for commits and persist them.

    Receives all dependencies via constructor injection.
    Knows about the sequence of operations but not the implementation details.

    Failure scope follows the error taxonomy: anything that goes wrong while
    fetching the page (GitHubAPIError, a malformed envelope, transport
    exhaustion) fails the whole run; item failures are counted by the
    ingestor and the run still succeeds.
    """

    def __init__(self, fetcher: ICommitFetcher, ingestor: CommitIngestor) -> None:
        self._fetcher  = fetcher
        self._ingestor = ingestor

    async def execute(self, query: str, cancel_event: asyncio.Event | None = None) -> IngestResult:
        """
        Run one search and ingest every item on the returned page.
        Returns an IngestResult describing what happened.
        """
        started_at = datetime.now(tz=timezone.utc)
        log.info("IngestApplicationService | query: %r", query)

        try:
            response = await self._fetcher.search_commits(query)
        except Exception as exc:
            elapsed = (datetime.now(tz=timezone.utc) - started_at).total_seconds()
            log.error("Fetch failed: %s", exc, exc_info=True)
            return IngestResult(
                query         = query,
                status        = "failed",
                total_count   = 0,
                succeeded     = 0,
                failed        = 0,
                elapsed_secs  = elapsed,
                error_message = str(exc),
            )

        report  = await self._ingestor.ingest_batch(response.items, cancel_event)
        elapsed = (datetime.now(tz=timezone.utc) - started_at).total_seconds()
        log.info(
            "Ingest complete | %d/%d items ok | %d failed | %.1fs",
            report.succeeded,
            len(response.items),
            report.failed,
            elapsed,
        )
        return IngestResult(
            query        = query,
            status       = "success",
            total_count  = response.total_count,
            succeeded    = report.succeeded,
            failed       = report.failed,
            cancelled    = report.cancelled,
            elapsed_secs = elapsed,
            errors       = report.errors,
        )
