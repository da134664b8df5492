"""
Domain Layer: Error Taxonomy
----------------------------
Every failure the pipeline can produce is one of these types, so callers
can decide scope (skip the item, fail the run) by type alone:

  DecodeError           remote payload has the wrong shape     -> skip item
  GitHubAPIError        remote returned a non-success status   -> fail run
  EntityNotFoundError   resolve missed                         -> create
  DuplicateEntityError  create hit the unique URL constraint   -> resolve again
  StorageError          anything else the database did         -> skip item
"""

from __future__ import annotations

import json

UNDECODABLE_MESSAGE = "not able to unmarshal error response"


class CommitFeedError(Exception):
    """Base class for every error raised by commitfeed."""


class DecodeError(CommitFeedError):
    """The remote payload does not match the expected shape."""


class GitHubAPIError(CommitFeedError):
    """
    A non-success response from the GitHub API.

    The body is decoded for GitHub's ``{"message": ...}`` envelope. When the
    body is not a JSON object the message falls back to a fixed sentinel,
    but the URL and status code are always kept for diagnostics.
    """

    def __init__(self, url: str, data: bytes, status_code: int) -> None:
        self.url         = url
        self.status_code = status_code
        self.message     = self._decode_message(data)
        super().__init__(str(self))

    @staticmethod
    def _decode_message(data: bytes) -> str:
        try:
            payload = json.loads(data)
        except (TypeError, ValueError):
            return UNDECODABLE_MESSAGE
        if not isinstance(payload, dict):
            return UNDECODABLE_MESSAGE
        message = payload.get("message", "")
        return message if isinstance(message, str) else UNDECODABLE_MESSAGE

    def __str__(self) -> str:
        return f"github error {self.status_code}: {self.message} | URL: {self.url}"


class StorageError(CommitFeedError):
    """
    Opaque storage failure. Carries the entity type and dedup URL that were
    being processed so log lines can be traced back to a row.
    """

    def __init__(self, message: str, entity: str | None = None, url: str | None = None) -> None:
        self.entity = entity
        self.url    = url
        super().__init__(message)

    def __str__(self) -> str:
        message = super().__str__()
        if self.entity is None:
            return message
        return f"{self.entity} {self.url}: {message}"


class EntityNotFoundError(StorageError):
    """Resolve found no row for the given dedup key."""


class DuplicateEntityError(StorageError):
    """Create violated the unique URL constraint (another writer got there first)."""
