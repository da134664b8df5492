"""
Domain Layer: Interfaces (Abstract Contracts)
---------------------------------------------
These are ABSTRACT definitions of what the infrastructure must provide.
The domain layer defines the shape; the infrastructure layer implements it.

The orchestrator receives an ICommitStorage and an ICommitFetcher through
its constructor, so tests can hand it an InMemoryCommitStorage and a fake
fetcher without touching PostgreSQL or the network.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from datetime import datetime

from .entities import GitCommit, GitRepo, GitSource, GitUser
from .errors import EntityNotFoundError
from .search_results import CommitSearchResponse


class ICommitFetcher(ABC):
    """
    Contract that any commit search client must fulfil.
    The application layer depends on THIS, not on the concrete GitHubClient.
    """

    @abstractmethod
    async def search_commits(self, query: str) -> CommitSearchResponse:
        """
        Fetch one page of commit search results.

        Raises GitHubAPIError when the remote answers with a non-success
        status, DecodeError when the envelope itself is malformed.
        """
        ...


class ICommitStorage(ABC):
    """
    Contract that any storage backend must fulfil.

    Each entity has the same trio, keyed on its unique ``url``:
      get_<e>_id     resolve: fill ``e.id`` or raise EntityNotFoundError
      create_<e>     insert:  fill ``e.id`` or raise DuplicateEntityError
      get_or_create  resolve, and create only on EntityNotFoundError

    get_or_create is a check-then-act and is NOT atomic. A concurrent writer
    can slip in between the two steps; the resulting DuplicateEntityError is
    raised to the caller, never swallowed here.
    """

    # --- Users ---

    @abstractmethod
    def get_user_id(self, user: GitUser) -> None:
        """Resolve ``user.id`` by ``user.url``."""
        ...

    @abstractmethod
    def create_user(self, user: GitUser) -> None:
        """Insert a new user row and set ``user.id``."""
        ...

    def get_or_create_user(self, user: GitUser) -> None:
        try:
            self.get_user_id(user)
        except EntityNotFoundError:
            self.create_user(user)

    # --- Repos ---

    @abstractmethod
    def get_repo_id(self, repo: GitRepo) -> None:
        """Resolve ``repo.id`` by ``repo.url``."""
        ...

    @abstractmethod
    def create_repo(self, repo: GitRepo) -> None:
        """Insert a new repo row and set ``repo.id``."""
        ...

    def get_or_create_repo(self, repo: GitRepo) -> None:
        try:
            self.get_repo_id(repo)
        except EntityNotFoundError:
            self.create_repo(repo)

    # --- Commits ---

    @abstractmethod
    def get_commit_id(self, commit: GitCommit) -> None:
        """Resolve ``commit.id`` by ``commit.url``."""
        ...

    @abstractmethod
    def create_commit(self, commit: GitCommit) -> None:
        """
        Insert a new commit row and set ``commit.id``.
        Must refuse a commit whose author_id or repo_id is unresolved.
        """
        ...

    def get_or_create_commit(self, commit: GitCommit) -> None:
        try:
            self.get_commit_id(commit)
        except EntityNotFoundError:
            self.create_commit(commit)

    # --- Reads ---

    @abstractmethod
    def get_source(self, name: str) -> GitSource:
        """Look up a hosting provider by name."""
        ...

    @abstractmethod
    def recent_commits(self, since: datetime) -> list[GitCommit]:
        """
        Every commit authored strictly after ``since``, with ``author``
        joined in. No ordering is promised; callers sort if they care.
        """
        ...
