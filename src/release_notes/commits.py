"""Fetch commits in a time window from the GitHub REST API."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import TypeAdapter, ValidationError

from release_notes.errors import AuthorizationError, UpstreamUnavailable
from release_notes.models import CommitRecord, GitHubCommitItem, TimeWindow
from release_notes.tracing import Span

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
GITHUB_PAGE_CAP = 100

_COMMIT_LIST = TypeAdapter(list[GitHubCommitItem])


def build_github_client(access_token: str, timeout: float = 30.0) -> httpx.AsyncClient:
    """Create an authenticated async client for the GitHub REST API."""
    return httpx.AsyncClient(
        base_url=GITHUB_API_BASE,
        headers={
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        },
        timeout=timeout,
    )


class CommitFetcher:
    """Lists the commits of one repository inside a time window.

    The fetcher requests ``per_page`` commits and, when ``max_pages`` is
    greater than one, follows ``Link: rel="next"`` headers. With the default
    single page, a full page that has a successor is reported as truncated in
    the log rather than silently dropped.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        owner: str,
        repo: str,
        per_page: int = GITHUB_PAGE_CAP,
        max_pages: int = 1,
    ):
        if per_page < 1:
            raise ValueError("per_page must be positive")
        if max_pages < 1:
            raise ValueError("max_pages must be positive")
        self.client = client
        self.owner = owner
        self.repo = repo
        self.per_page = min(per_page, GITHUB_PAGE_CAP)
        self.max_pages = max_pages

    async def fetch_commits(self, window: TimeWindow, span: Span) -> list[CommitRecord]:
        """Return commits in provider order and record them on ``span``.

        Raises:
            AuthorizationError: If GitHub rejects the credentials.
            UpstreamUnavailable: On transport errors, timeouts, unexpected
                statuses, or payloads missing required fields.
        """
        span.log(
            input={
                "start_date": window.start,
                "end_date": window.end,
                "owner": self.owner,
                "repo": self.repo,
            }
        )

        url: str | None = f"/repos/{self.owner}/{self.repo}/commits"
        params: dict[str, Any] | None = {
            "since": window.start,
            "until": window.end,
            "per_page": self.per_page,
        }
        records: list[CommitRecord] = []
        seen: set[str] = set()
        pages = 0

        while url is not None and pages < self.max_pages:
            response = await self._get(url, params)
            pages += 1
            items = self._parse(response)
            for item in items:
                if item.sha in seen:
                    continue
                seen.add(item.sha)
                records.append(item.to_record())

            url = response.links.get("next", {}).get("url")
            # The next link already carries the query string.
            params = None

        if url is not None:
            logger.warning(
                "Commit list for %s/%s truncated after %d page(s) of %d; raise max_pages to fetch more",
                self.owner,
                self.repo,
                pages,
                self.per_page,
            )
            span.log(metadata={"truncated": True})

        logger.info("Fetched %d commits for %s/%s", len(records), self.owner, self.repo)
        span.log(output=[record.model_dump() for record in records], metadata={"pages": pages})
        return records

    async def _get(self, url: str, params: dict[str, Any] | None) -> httpx.Response:
        try:
            response = await self.client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"GitHub request failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise AuthorizationError(f"GitHub rejected credentials ({response.status_code}): {response.text}")
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise UpstreamUnavailable(f"GitHub error ({response.status_code}): {response.text}") from exc
        return response

    @staticmethod
    def _parse(response: httpx.Response) -> list[GitHubCommitItem]:
        try:
            return _COMMIT_LIST.validate_python(response.json())
        except (ValueError, ValidationError) as exc:
            raise UpstreamUnavailable(f"Unexpected GitHub commit payload: {exc}") from exc
