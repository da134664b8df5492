from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(frozen=True)
class GitSource:
    """
    The hosting provider a row came from. Reference data: seeded out of
    band and looked up by name, never created by ingestion.
    """
    id:   int
    name: str


@dataclass
class GitUser:
    """
    A commit author on the hosting platform.

    Not frozen: storage fills in ``id`` once the row is resolved or created,
    and nothing else ever assigns it. ``url`` is the dedup key; username and
    avatar are whatever was seen first.
    """
    source_id:  int
    username:   str
    url:        str
    avatar_url: str
    id:         int | None = None


@dataclass
class GitRepo:
    """A repository. ``url`` is the dedup key."""
    source_id:   int
    name:        str
    url:         str
    description: str = ""
    id:          int | None = None


@dataclass
class GitCommit:
    """
    A single commit surfaced by a search.

    Links to its author and repo are plain foreign keys. ``author`` is only
    filled on the read path (``recent_commits``) where the join is done.
    """
    source_id: int
    author_id: int | None
    repo_id:   int | None
    message:   str
    sha:       str
    url:       str
    date:      datetime
    id:        int | None = None
    author:    GitUser | None = field(default=None, compare=False)


@dataclass(frozen=True)
class IngestionReport:
    """
    Outcome of one batch: how many items made it, how many did not, and
    the first few error details so failures are never silent.
    """
    succeeded: int
    failed:    int
    cancelled: int = 0
    errors:    tuple[str, ...] = ()
    commits:   tuple[GitCommit, ...] = ()

    @property
    def total(self) -> int:
        return self.succeeded + self.failed + self.cancelled


@dataclass(frozen=True)
class IngestResult:
    """
    Immutable value object summarising a completed ingestion run.
    Returned by the application service when the run finishes.
    """
    query:         str
    status:        str
    total_count:   int
    succeeded:     int
    failed:        int
    elapsed_secs:  float
    cancelled:     int = 0
    errors:        tuple[str, ...] = ()
    error_message: str | None = None


def as_utc(value: datetime) -> datetime:
    """Timestamps without a timezone are taken to be UTC."""
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
