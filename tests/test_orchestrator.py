"""
tests/test_orchestrator.py

CommitIngestor against InMemoryCommitStorage: no database, no network.

Coverage
--------
- End-to-end single item, and re-ingesting it
- FK integrity of every created commit
- Per-item isolation (decode and storage failures)
- Race recovery, both simulated and with real worker threads
- Cancellation and error-detail capping
"""

from __future__ import annotations

import asyncio
import threading

import pytest

from commitfeed.application.orchestrator import CommitIngestor
from commitfeed.domain.entities import GitSource, GitUser
from commitfeed.domain.errors import DecodeError, DuplicateEntityError, EntityNotFoundError, StorageError
from commitfeed.infrastructure.memory_storage import InMemoryCommitStorage


def _row_counts(storage: InMemoryCommitStorage) -> tuple[int, int, int]:
    return len(storage.users), len(storage.repos), len(storage.commits)


# ---------------------------------------------------------------------------
# Single item
# ---------------------------------------------------------------------------


class TestIngestItem:
    def test_end_to_end(self, ingestor: CommitIngestor, storage: InMemoryCommitStorage, make_item) -> None:
        commit = ingestor.ingest_item(make_item(author_url="u1", repo_url="r1", commit_url="c1"))

        assert _row_counts(storage) == (1, 1, 1)
        assert commit.id == storage.commits["c1"].id
        assert commit.author_id == storage.users["u1"].id
        assert commit.repo_id == storage.repos["r1"].id

    def test_reingest_creates_nothing(self, ingestor: CommitIngestor, storage: InMemoryCommitStorage, make_item) -> None:
        item  = make_item(author_url="u1", repo_url="r1", commit_url="c1")
        first = ingestor.ingest_item(item)
        again = ingestor.ingest_item(item)

        assert _row_counts(storage) == (1, 1, 1)
        assert again.id == first.id
        assert again.author_id == first.author_id
        assert again.repo_id == first.repo_id

    def test_rows_are_tagged_with_source(self, ingestor: CommitIngestor, storage: InMemoryCommitStorage, source: GitSource, make_item) -> None:
        ingestor.ingest_item(make_item())

        assert {u.source_id for u in storage.users.values()} == {source.id}
        assert {r.source_id for r in storage.repos.values()} == {source.id}
        assert {c.source_id for c in storage.commits.values()} == {source.id}

    def test_maps_commit_fields(self, ingestor: CommitIngestor, make_item) -> None:
        commit = ingestor.ingest_item(make_item(message="Initial commit", sha="abc123"))

        assert commit.message == "Initial commit"
        assert commit.sha == "abc123"
        assert commit.date.year == 2015

    def test_decode_failure_touches_nothing(self, ingestor: CommitIngestor, storage: InMemoryCommitStorage) -> None:
        with pytest.raises(DecodeError):
            ingestor.ingest_item({"html_url": "c1"})
        assert _row_counts(storage) == (0, 0, 0)

    def test_resolve_failure_is_hard_and_stops_before_commit(self, source: GitSource, make_item) -> None:
        class FlakyUsers(InMemoryCommitStorage):
            def get_user_id(self, user: GitUser) -> None:
                raise StorageError("connection reset", entity="user", url=user.url)

        storage  = FlakyUsers()
        ingestor = CommitIngestor(storage=storage, source=source)

        with pytest.raises(StorageError):
            ingestor.ingest_item(make_item())
        assert storage.users == {}
        assert storage.commits == {}


# ---------------------------------------------------------------------------
# Race recovery
# ---------------------------------------------------------------------------


class TestRaceRecovery:
    def test_lost_race_resolves_to_winner(self, source: GitSource, make_item) -> None:
        class Contended(InMemoryCommitStorage):
            """Another writer inserts the same user right before our create."""

            def create_user(self, user: GitUser) -> None:
                winner = GitUser(
                    source_id  = user.source_id,
                    username   = "winner",
                    url        = user.url,
                    avatar_url = user.avatar_url,
                )
                super().create_user(winner)
                self.winner_id = winner.id
                super().create_user(user)

        storage  = Contended()
        ingestor = CommitIngestor(storage=storage, source=source)

        commit = ingestor.ingest_item(make_item(author_url="u1"))

        assert len(storage.users) == 1
        assert commit.author_id == storage.winner_id
        assert storage.users["u1"].username == "winner"

    def test_second_failure_surfaces(self, source: GitSource, make_item) -> None:
        class Vanishing(InMemoryCommitStorage):
            def create_user(self, user: GitUser) -> None:
                raise DuplicateEntityError("unique constraint on url", entity="user", url=user.url)

        ingestor = CommitIngestor(storage=Vanishing(), source=source)
        with pytest.raises(EntityNotFoundError):
            ingestor.ingest_item(make_item())

    def test_concurrent_writers_create_one_row(self, source: GitSource, make_item) -> None:
        class Barrier(InMemoryCommitStorage):
            """Both workers miss on resolve before either of them creates."""

            def __init__(self) -> None:
                super().__init__()
                self.barrier = threading.Barrier(2)
                self.local   = threading.local()

            def get_user_id(self, user: GitUser) -> None:
                try:
                    super().get_user_id(user)
                except EntityNotFoundError:
                    if not getattr(self.local, "waited", False):
                        self.local.waited = True
                        self.barrier.wait(timeout=5)
                    raise

        storage  = Barrier()
        ingestor = CommitIngestor(storage=storage, source=source, max_concurrent=2)
        items    = [
            make_item(author_url="u-new", commit_url="c1"),
            make_item(author_url="u-new", commit_url="c2"),
        ]

        report = asyncio.run(ingestor.ingest_batch(items))

        assert report.failed == 0
        assert report.succeeded == 2
        assert len(storage.users) == 1
        assert {c.author_id for c in report.commits} == {storage.users["u-new"].id}


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------


class TestIngestBatch:
    def test_bad_item_does_not_fail_siblings(self, ingestor: CommitIngestor, storage: InMemoryCommitStorage, make_item) -> None:
        broken = make_item(commit_url="c2")
        del broken["repository"]
        items  = [make_item(commit_url="c1"), broken, make_item(commit_url="c3")]

        report = asyncio.run(ingestor.ingest_batch(items))

        assert report.succeeded == 2
        assert report.failed == 1
        assert report.total == 3
        assert set(storage.commits) == {"c1", "c3"}
        assert len(report.errors) == 1
        assert report.errors[0].startswith("item 1:")

    def test_fk_integrity(self, ingestor: CommitIngestor, storage: InMemoryCommitStorage, make_item) -> None:
        items = [
            make_item(author_url=f"u{i % 3}", repo_url=f"r{i % 2}", commit_url=f"c{i}")
            for i in range(12)
        ]

        report = asyncio.run(ingestor.ingest_batch(items))

        user_ids = {u.id for u in storage.users.values()}
        repo_ids = {r.id for r in storage.repos.values()}
        assert report.succeeded == 12
        assert _row_counts(storage) == (3, 2, 12)
        for commit in storage.commits.values():
            assert commit.author_id in user_ids
            assert commit.repo_id in repo_ids

    def test_duplicate_items_in_one_batch(self, ingestor: CommitIngestor, storage: InMemoryCommitStorage, make_item) -> None:
        report = asyncio.run(ingestor.ingest_batch([make_item()] * 5))

        assert report.failed == 0
        assert _row_counts(storage) == (1, 1, 1)
        assert len({c.id for c in report.commits}) == 1

    def test_error_details_are_capped(self, storage: InMemoryCommitStorage, source: GitSource) -> None:
        ingestor = CommitIngestor(storage=storage, source=source, max_error_details=2)

        report = asyncio.run(ingestor.ingest_batch([{"bad": i} for i in range(5)]))

        assert report.failed == 5
        assert len(report.errors) == 2

    def test_cancelled_batch_writes_nothing(self, ingestor: CommitIngestor, storage: InMemoryCommitStorage, make_item) -> None:
        async def run():
            cancel = asyncio.Event()
            cancel.set()
            return await ingestor.ingest_batch([make_item(commit_url=f"c{i}") for i in range(3)], cancel)

        report = asyncio.run(run())

        assert report.cancelled == 3
        assert report.succeeded == 0
        assert _row_counts(storage) == (0, 0, 0)

    def test_empty_batch(self, ingestor: CommitIngestor) -> None:
        report = asyncio.run(ingestor.ingest_batch([]))
        assert report.total == 0
        assert report.errors == ()
