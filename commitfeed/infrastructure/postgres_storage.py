from __future__ import annotations
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

import psycopg2
import psycopg2.errors

from commitfeed.domain.entities import GitCommit, GitRepo, GitSource, GitUser, as_utc
from commitfeed.domain.errors import DuplicateEntityError, EntityNotFoundError, StorageError
from commitfeed.domain.interfaces import ICommitStorage

log = logging.getLogger(__name__)

# Bootstrap DDL. Not a migration tool: it only creates what is missing.
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS git_source (
    id   SERIAL PRIMARY KEY,
    name TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS git_user (
    id         SERIAL PRIMARY KEY,
    source_id  INTEGER NOT NULL REFERENCES git_source (id),
    username   TEXT NOT NULL,
    url        TEXT NOT NULL UNIQUE,
    avatar_url TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS git_repo (
    id          SERIAL PRIMARY KEY,
    source_id   INTEGER NOT NULL REFERENCES git_source (id),
    name        TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    url         TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS git_commit (
    id        SERIAL PRIMARY KEY,
    source_id INTEGER NOT NULL REFERENCES git_source (id),
    author_id INTEGER NOT NULL REFERENCES git_user (id),
    repo_id   INTEGER NOT NULL REFERENCES git_repo (id),
    message   TEXT NOT NULL,
    sha       TEXT NOT NULL,
    url       TEXT NOT NULL UNIQUE,
    date      TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_git_commit_date ON git_commit (date);

INSERT INTO git_source (name) VALUES ('github') ON CONFLICT (name) DO NOTHING;
"""

RECENT_COMMITS_SQL = """
    SELECT
        c.id, c.source_id, c.author_id, c.repo_id,
        c.message, c.sha, c.url, c.date,

        u.id, u.source_id, u.username, u.url, u.avatar_url

    FROM git_commit c
    INNER JOIN git_user u ON u.id = c.author_id
    WHERE c.date > %s
"""


class PostgresCommitStorage(ICommitStorage):
    """
    Concrete implementation of ICommitStorage using PostgreSQL.

    Receives an already-built psycopg2 connection pool (injected), normally a
    ThreadedConnectionPool since the orchestrator calls in from worker
    threads. Each call borrows one connection, commits on success and rolls
    back on failure, so a failed statement never leaves a pooled connection
    stuck in an aborted transaction.
    """

    def __init__(self, pool) -> None:
        self._pool = pool

    @contextmanager
    def _cursor(self, entity: str | None = None, url: str | None = None) -> Iterator[Any]:
        """
        Borrow a connection and yield a cursor.

        Translates driver errors into the domain taxonomy:
          UniqueViolation   -> DuplicateEntityError
          any psycopg2.Error -> StorageError
          ValueError, TypeError from parameter adaptation (a NUL byte in a
          string, an unadaptable value) -> StorageError
        """
        try:
            conn = self._pool.getconn()
        except psycopg2.Error as exc:
            raise StorageError(f"could not get a connection: {exc}", entity=entity, url=url) from exc

        try:
            with conn.cursor() as cur:
                yield cur
            conn.commit()
        except psycopg2.errors.UniqueViolation as exc:
            conn.rollback()
            raise DuplicateEntityError(str(exc).strip(), entity=entity, url=url) from exc
        except psycopg2.Error as exc:
            conn.rollback()
            raise StorageError(str(exc).strip(), entity=entity, url=url) from exc
        except (ValueError, TypeError) as exc:
            conn.rollback()
            raise StorageError(f"cannot send parameters: {exc}", entity=entity, url=url) from exc
        except BaseException:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def _resolve(self, table: str, entity, kind: str) -> None:
        with self._cursor(kind, entity.url) as cur:
            cur.execute(f"SELECT id FROM {table} WHERE url = %s;", (entity.url,))
            row = cur.fetchone()
        if row is None:
            raise EntityNotFoundError("no row", entity=kind, url=entity.url)
        entity.id = row[0]

    def _insert(self, sql: str, params: dict, entity, kind: str) -> None:
        with self._cursor(kind, entity.url) as cur:
            cur.execute(sql, params)
            new_id = cur.fetchone()[0]
        entity.id = new_id
        log.debug("Created %s #%d %s", kind, entity.id, entity.url)

    def ensure_schema(self) -> None:
        """Create the four tables if missing and seed the github source."""
        with self._cursor() as cur:
            cur.execute(SCHEMA_SQL)
        log.info("Schema ready")

    # ------------------------------------------------------------------
    # Users

    def get_user_id(self, user: GitUser) -> None:
        self._resolve("git_user", user, "user")

    def create_user(self, user: GitUser) -> None:
        self._insert(
            """
            INSERT INTO git_user (source_id, username, url, avatar_url)
            VALUES (%(source_id)s, %(username)s, %(url)s, %(avatar_url)s)
            RETURNING id;
            """,
            {
                "source_id":  user.source_id,
                "username":   user.username,
                "url":        user.url,
                "avatar_url": user.avatar_url,
            },
            user,
            "user",
        )

    # ------------------------------------------------------------------
    # Repos

    def get_repo_id(self, repo: GitRepo) -> None:
        self._resolve("git_repo", repo, "repo")

    def create_repo(self, repo: GitRepo) -> None:
        self._insert(
            """
            INSERT INTO git_repo (source_id, name, description, url)
            VALUES (%(source_id)s, %(name)s, %(description)s, %(url)s)
            RETURNING id;
            """,
            {
                "source_id":   repo.source_id,
                "name":        repo.name,
                "description": repo.description,
                "url":         repo.url,
            },
            repo,
            "repo",
        )

    # ------------------------------------------------------------------
    # Commits

    def get_commit_id(self, commit: GitCommit) -> None:
        self._resolve("git_commit", commit, "commit")

    def create_commit(self, commit: GitCommit) -> None:
        if commit.author_id is None or commit.repo_id is None:
            raise StorageError(
                f"unresolved foreign key (author_id={commit.author_id}, repo_id={commit.repo_id})",
                entity="commit",
                url=commit.url,
            )
        self._insert(
            """
            INSERT INTO git_commit (source_id, author_id, repo_id, message, sha, url, date)
            VALUES (%(source_id)s, %(author_id)s, %(repo_id)s, %(message)s, %(sha)s, %(url)s, %(date)s)
            RETURNING id;
            """,
            {
                "source_id": commit.source_id,
                "author_id": commit.author_id,
                "repo_id":   commit.repo_id,
                "message":   commit.message,
                "sha":       commit.sha,
                "url":       commit.url,
                "date":      commit.date,
            },
            commit,
            "commit",
        )

    # ------------------------------------------------------------------
    # Reads

    def get_source(self, name: str) -> GitSource:
        with self._cursor("source", name) as cur:
            cur.execute("SELECT id, name FROM git_source WHERE name = %s;", (name,))
            row = cur.fetchone()
        if row is None:
            raise EntityNotFoundError(f"unknown source {name!r}")
        return GitSource(id=row[0], name=row[1])

    def recent_commits(self, since: datetime) -> list[GitCommit]:
        with self._cursor() as cur:
            cur.execute(RECENT_COMMITS_SQL, (as_utc(since),))
            rows = cur.fetchall()

        return [
            GitCommit(
                id        = r[0],
                source_id = r[1],
                author_id = r[2],
                repo_id   = r[3],
                message   = r[4],
                sha       = r[5],
                url       = r[6],
                date      = r[7],
                author    = GitUser(
                    id         = r[8],
                    source_id  = r[9],
                    username   = r[10],
                    url        = r[11],
                    avatar_url = r[12],
                ),
            )
            for r in rows
        ]
