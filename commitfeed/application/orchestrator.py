from __future__ import annotations
import asyncio
import logging
from typing import Any, Callable, Iterable, Mapping, TypeVar

from commitfeed.domain.entities import GitCommit, GitRepo, GitSource, GitUser, IngestionReport
from commitfeed.domain.errors import CommitFeedError, DuplicateEntityError
from commitfeed.domain.interfaces import ICommitStorage
from commitfeed.domain.search_results import CommitItem, decode_commit_item

log = logging.getLogger(__name__)

MAX_CONCURRENT    = 8
MAX_ERROR_DETAILS = 10

E = TypeVar("E", GitUser, GitRepo, GitCommit)


class CommitIngestor:
    """
    Turns raw commit search items into persisted rows.

    Each item goes through three gated phases:
      1. decode the item, build the GitUser and GitRepo
      2. get-or-create the user and the repo
      3. build the GitCommit from their resolved IDs and get-or-create it

    A failure in any phase stops that item only. Phase 3 never starts
    without both IDs, so no commit row can point at a missing user or repo.

    The storage backend is injected, and so is the source every row is
    tagged with; this class creates NOTHING itself.
    """

    def __init__(
        self,
        storage: ICommitStorage,
        source: GitSource,
        max_concurrent: int = MAX_CONCURRENT,
        max_error_details: int = MAX_ERROR_DETAILS,
    ) -> None:
        self._storage           = storage
        self._source            = source
        self._max_concurrent    = max_concurrent
        self._max_error_details = max_error_details

    # Phase 1 / 3 builders

    def build_user(self, item: CommitItem) -> GitUser:
        return GitUser(
            source_id  = self._source.id,
            username   = item.author.login,
            url        = item.author.url,
            avatar_url = item.author.avatar_url,
        )

    def build_repo(self, item: CommitItem) -> GitRepo:
        return GitRepo(
            source_id   = self._source.id,
            name        = item.repository.name,
            description = item.repository.description,
            url         = item.repository.url,
        )

    def build_commit(self, item: CommitItem, author: GitUser, repo: GitRepo) -> GitCommit:
        return GitCommit(
            source_id = self._source.id,
            author_id = author.id,
            repo_id   = repo.id,
            message   = item.commit.message,
            sha       = item.sha,
            url       = item.url,
            date      = item.commit.author.date,
        )

    @staticmethod
    def _get_or_create(
        kind: str,
        entity: E,
        get_or_create: Callable[[E], None],
        resolve: Callable[[E], None],
    ) -> E:
        """
        get-or-create with one retry of resolve after a lost race.

        DuplicateEntityError means another writer inserted the same URL
        between our resolve and our create; their row is visible now.
        If the second resolve fails too, that error surfaces.
        """
        try:
            get_or_create(entity)
        except DuplicateEntityError:
            log.info("Lost create race for %s %s, resolving again", kind, entity.url)
            resolve(entity)
        return entity

    def ingest_item(self, raw: Mapping[str, Any]) -> GitCommit:
        """
        Run all three phases for one raw item, synchronously.
        Returns the persisted commit; raises CommitFeedError on failure.
        """
        item = decode_commit_item(raw)

        user = self.build_user(item)
        repo = self.build_repo(item)
        s    = self._storage
        self._get_or_create("user", user, s.get_or_create_user, s.get_user_id)
        self._get_or_create("repo", repo, s.get_or_create_repo, s.get_repo_id)

        commit = self.build_commit(item, user, repo)
        self._get_or_create("commit", commit, s.get_or_create_commit, s.get_commit_id)

        log.debug("Ingested commit #%s %s (author #%s, repo #%s)", commit.id, commit.url, user.id, repo.id)
        return commit

    async def _ingest_one(
        self,
        index: int,
        raw: Mapping[str, Any],
        semaphore: asyncio.Semaphore,
        cancel_event: asyncio.Event | None,
    ) -> tuple[str, GitCommit | str | None]:
        async with semaphore:
            if cancel_event is not None and cancel_event.is_set():
                return "cancelled", None
            try:
                # storage calls block, so each item runs in a worker thread
                commit = await asyncio.to_thread(self.ingest_item, raw)
            except CommitFeedError as exc:
                log.warning("Item %d failed: %s", index, exc)
                return "failed", f"item {index}: {exc}"
            except Exception as exc:
                log.exception("Item %d failed unexpectedly", index)
                return "failed", f"item {index}: {exc!r}"
            return "ok", commit

    async def ingest_batch(
        self,
        items: Iterable[Mapping[str, Any]],
        cancel_event: asyncio.Event | None = None,
    ) -> IngestionReport:
        """
        Ingest every item, at most ``max_concurrent`` at a time.

        Items are independent: one failing never affects the others. Setting
        ``cancel_event`` stops items that have not started yet; they are
        counted as cancelled. Items already running finish all their phases.
        """
        semaphore = asyncio.Semaphore(self._max_concurrent)
        outcomes  = await asyncio.gather(
            *[self._ingest_one(i, raw, semaphore, cancel_event) for i, raw in enumerate(items)]
        )

        commits = tuple(value for status, value in outcomes if status == "ok")
        errors  = [value for status, value in outcomes if status == "failed"]
        report  = IngestionReport(
            succeeded = len(commits),
            failed    = len(errors),
            cancelled = sum(1 for status, _ in outcomes if status == "cancelled"),
            errors    = tuple(errors[: self._max_error_details]),
            commits   = commits,
        )
        log.info(
            "Batch done | %d ok | %d failed | %d cancelled",
            report.succeeded,
            report.failed,
            report.cancelled,
        )
        return report
