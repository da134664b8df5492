"""
Domain Layer: Commit Search Results
-----------------------------------
The shape of one page of GitHub's ``GET /search/commits`` response, and
the translation from the raw JSON into it.

Items are kept raw on the response and decoded one by one: a single item
with a missing field must cost us that item only, not the whole page.
Field names on the dataclasses are ours; GitHub's names (``html_url``,
``total_count``) appear in the decode functions and nowhere else.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from .errors import DecodeError


@dataclass(frozen=True)
class RemoteUser:
    login:      str
    avatar_url: str
    url:        str


@dataclass(frozen=True)
class RemoteRepository:
    name:        str
    url:         str
    owner:       RemoteUser
    description: str = ""


@dataclass(frozen=True)
class AuthorInfo:
    date: datetime


@dataclass(frozen=True)
class CommitInfo:
    message: str
    author:  AuthorInfo


@dataclass(frozen=True)
class CommitItem:
    url:        str
    sha:        str
    commit:     CommitInfo
    author:     RemoteUser
    repository: RemoteRepository
    score:      float = 0.0


@dataclass(frozen=True)
class CommitSearchResponse:
    total_count: int
    items:       tuple[Mapping[str, Any], ...]


def parse_datetime(value: str) -> datetime:
    """Convert GitHub's ISO datetime string to Python datetime."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _require_str(data: Mapping[str, Any], key: str) -> str:
    value = data[key]
    if not isinstance(value, str):
        raise TypeError(f"{key!r} must be a string, got {type(value).__name__}")
    return value


def _optional_str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TypeError(f"{key!r} must be a string or null, got {type(value).__name__}")
    return value


def _decode_user(data: Mapping[str, Any]) -> RemoteUser:
    return RemoteUser(
        login      = _require_str(data, "login"),
        avatar_url = _require_str(data, "avatar_url"),
        url        = _require_str(data, "html_url"),
    )


def decode_commit_item(raw: Mapping[str, Any]) -> CommitItem:
    """
    Translate one raw search item into a CommitItem.

    Raises DecodeError for any missing key, wrong type or unparsable date;
    the caller treats that as fatal for this item only.
    """
    try:
        commit = raw["commit"]
        repo   = raw["repository"]
        return CommitItem(
            url    = _require_str(raw, "html_url"),
            sha    = _require_str(raw, "sha"),
            commit = CommitInfo(
                message = _require_str(commit, "message"),
                author  = AuthorInfo(
                    date = parse_datetime(_require_str(commit["author"], "date")),
                ),
            ),
            author     = _decode_user(raw["author"]),
            repository = RemoteRepository(
                name        = _require_str(repo, "name"),
                url         = _require_str(repo, "html_url"),
                owner       = _decode_user(repo["owner"]),
                description = _optional_str(repo, "description"),
            ),
            score = float(raw.get("score") or 0.0),
        )
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        url = raw.get("html_url") if isinstance(raw, Mapping) else None
        raise DecodeError(f"malformed commit item {url}: {exc!r}") from exc


def decode_search_response(payload: Any) -> CommitSearchResponse:
    """Decode the response envelope. Items stay raw until decode_commit_item."""
    try:
        items = payload["items"]
        if not isinstance(items, list):
            raise TypeError("'items' must be a list")
        return CommitSearchResponse(
            total_count = int(payload["total_count"]),
            items       = tuple(items),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise DecodeError(f"malformed commit search response: {exc!r}") from exc
