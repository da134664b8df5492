from __future__ import annotations

from typing import Any, Callable

import pytest

from commitfeed.application.orchestrator import CommitIngestor
from commitfeed.domain.entities import GitSource
from commitfeed.infrastructure.memory_storage import InMemoryCommitStorage


def _raw_item(
    commit_url: str = "https://github.com/octo/hello/commit/c1",
    author_url: str = "https://github.com/octocat",
    repo_url: str = "https://github.com/octo/hello",
    login: str = "octocat",
    avatar_url: str = "https://avatars.githubusercontent.com/u/1",
    sha: str = "6dcb09b5b57875f334f61aebed695e2e4193db5e",
    message: str = "Fix all the bugs",
    date: str = "2015-09-03T10:00:00Z",
) -> dict[str, Any]:
    """One element of a /search/commits response, in GitHub's wire shape."""
    return {
        "html_url": commit_url,
        "sha": sha,
        "score": 1.0,
        "commit": {
            "message": message,
            "author": {"name": login, "date": date},
        },
        "author": {
            "login": login,
            "avatar_url": avatar_url,
            "html_url": author_url,
        },
        "repository": {
            "name": repo_url.rsplit("/", 1)[-1],
            "html_url": repo_url,
            "description": "My first repository",
            "owner": {
                "login": "octo",
                "avatar_url": "https://avatars.githubusercontent.com/u/2",
                "html_url": "https://github.com/octo",
            },
        },
    }


@pytest.fixture()
def make_item() -> Callable[..., dict[str, Any]]:
    """Factory for raw search items; override any field by keyword."""
    return _raw_item


@pytest.fixture()
def storage() -> InMemoryCommitStorage:
    return InMemoryCommitStorage()


@pytest.fixture()
def source(storage: InMemoryCommitStorage) -> GitSource:
    return storage.get_source("github")


@pytest.fixture()
def ingestor(storage: InMemoryCommitStorage, source: GitSource) -> CommitIngestor:
    return CommitIngestor(storage=storage, source=source, max_concurrent=4)
