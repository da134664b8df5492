from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime
from itertools import count

from commitfeed.domain.entities import GitCommit, GitRepo, GitSource, GitUser, as_utc
from commitfeed.domain.errors import DuplicateEntityError, EntityNotFoundError, StorageError
from commitfeed.domain.interfaces import ICommitStorage

log = logging.getLogger(__name__)

DEFAULT_SOURCES = ("github",)


class InMemoryCommitStorage(ICommitStorage):
    """
    Dict-backed implementation of ICommitStorage.

    Keeps the same unique-URL semantics as the PostgreSQL tables: a second
    create for a URL raises DuplicateEntityError. Rows are stored as copies,
    so mutating an entity after create never changes what is "on disk".
    Used by ``--dry-run`` and as the storage double in tests.

    A threading.Lock guards every read and write because the orchestrator
    calls storage from worker threads.
    """

    def __init__(self, sources: tuple[str, ...] = DEFAULT_SOURCES) -> None:
        self._lock    = threading.Lock()
        self._ids     = count(1)
        self._sources = {name: GitSource(id=i, name=name) for i, name in enumerate(sources, start=1)}
        self.users:   dict[str, GitUser]   = {}
        self.repos:   dict[str, GitRepo]   = {}
        self.commits: dict[str, GitCommit] = {}

    # Generic helpers: every table is a dict keyed on the dedup URL.

    def _resolve(self, table: dict, entity, kind: str) -> None:
        with self._lock:
            row = table.get(entity.url)
        if row is None:
            raise EntityNotFoundError("no row", entity=kind, url=entity.url)
        entity.id = row.id

    def _insert(self, table: dict, entity, kind: str) -> int:
        with self._lock:
            if entity.url in table:
                raise DuplicateEntityError("unique constraint on url", entity=kind, url=entity.url)
            new_id = next(self._ids)
            table[entity.url] = replace(entity, id=new_id)
        entity.id = new_id
        log.debug("Created %s #%d %s", kind, new_id, entity.url)
        return new_id

    # ICommitStorage implementation

    def get_user_id(self, user: GitUser) -> None:
        self._resolve(self.users, user, "user")

    def create_user(self, user: GitUser) -> None:
        self._insert(self.users, user, "user")

    def get_repo_id(self, repo: GitRepo) -> None:
        self._resolve(self.repos, repo, "repo")

    def create_repo(self, repo: GitRepo) -> None:
        self._insert(self.repos, repo, "repo")

    def get_commit_id(self, commit: GitCommit) -> None:
        self._resolve(self.commits, commit, "commit")

    def create_commit(self, commit: GitCommit) -> None:
        with self._lock:
            known_authors = {u.id for u in self.users.values()}
            known_repos   = {r.id for r in self.repos.values()}
        if commit.author_id not in known_authors or commit.repo_id not in known_repos:
            raise StorageError(
                f"foreign key violation (author_id={commit.author_id}, repo_id={commit.repo_id})",
                entity="commit",
                url=commit.url,
            )
        commit.id = self._insert(self.commits, replace(commit, author=None), "commit")

    def get_source(self, name: str) -> GitSource:
        try:
            return self._sources[name]
        except KeyError:
            raise EntityNotFoundError(f"unknown source {name!r}") from None

    def recent_commits(self, since: datetime) -> list[GitCommit]:
        since = as_utc(since)
        with self._lock:
            authors = {u.id: u for u in self.users.values()}
            rows    = [c for c in self.commits.values() if c.date > since]
        return [replace(c, author=replace(authors[c.author_id])) for c in rows]
