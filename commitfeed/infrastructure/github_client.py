from __future__ import annotations

import asyncio
import logging

import httpx

from commitfeed.domain.errors import DecodeError, GitHubAPIError
from commitfeed.domain.interfaces import ICommitFetcher
from commitfeed.domain.search_results import CommitSearchResponse, decode_search_response

log = logging.getLogger(__name__)

GITHUB_SEARCH_URL = "https://api.github.com/search/commits"
PAGE_SIZE         = 100
MAX_RETRIES       = 5
REQUEST_TIMEOUT   = 30.0


class GitHubClient(ICommitFetcher):
    """
    Concrete implementation of ICommitFetcher for GitHub's REST search API.

    The constructor receives an httpx.AsyncClient (injected) rather than
    creating one internally. This lets callers control the client lifecycle
    and makes testing trivial: pass a client built on httpx.MockTransport.

    Only transport failures (timeouts, resets) are retried. A non-success
    status is an answer, not a glitch, and is raised as GitHubAPIError.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        token: str | None = None,
        search_url: str = GITHUB_SEARCH_URL,
        retry_delay: float = 1.0,
    ) -> None:
        self._client      = client
        self._search_url  = search_url
        self._retry_delay = retry_delay
        self._headers     = {"Accept": "application/vnd.github+json"}
        if token:
            self._headers["Authorization"] = f"Bearer {token}"

    async def search_commits(self, query: str) -> CommitSearchResponse:
        """
        Fetch one page of commit search results with retry on transport errors.

        Raises:
            GitHubAPIError: the API answered with a non-2xx status
            DecodeError:    the body is not the expected search envelope
            RuntimeError:   every attempt failed at the transport level
        """
        params = {"q": query, "per_page": PAGE_SIZE}

        for attempt in range(MAX_RETRIES):
            try:
                response = await self._client.get(
                    self._search_url,
                    headers=self._headers,
                    params=params,
                    timeout=REQUEST_TIMEOUT,
                )
            except httpx.RequestError as exc:
                wait = self._retry_delay * 2 ** attempt
                log.warning("HTTP error attempt %d/%d: %s, retrying in %.1fs", attempt + 1, MAX_RETRIES, exc, wait)
                await asyncio.sleep(wait)
                continue

            if not response.is_success:
                raise GitHubAPIError(str(response.url), response.content, response.status_code)

            try:
                payload = response.json()
            except ValueError as exc:
                raise DecodeError(f"response from {response.url} is not JSON: {exc}") from exc

            result = decode_search_response(payload)
            log.info("Search %.60r | %d total | %d on this page", query, result.total_count, len(result.items))
            return result

        raise RuntimeError(f"Exhausted {MAX_RETRIES} retries for query: {query[:80]}")
