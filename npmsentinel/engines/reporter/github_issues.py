"""Async GitHub issue reporter — one issue per scanned ``name@version``."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx
import structlog

from npmsentinel.core.retry import RetryPolicy
from npmsentinel.engines.reporter.template import render_issue
from npmsentinel.exceptions import NpmSentinelError
from npmsentinel.models.scan import ScanResult

log = structlog.get_logger("npmsentinel.reporter")

GITHUB_API_URL = "https://api.github.com"
_MAX_RATE_LIMIT_WAIT = 300  # seconds


class GitHubRetryableError(NpmSentinelError):
    """5xx or rate-limited response from the GitHub API."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        super().__init__(f"GitHub API returned {response.status_code}")


GITHUB_RETRY = RetryPolicy(
    max_attempts=3,
    base_delay=1.0,
    retry_on=(GitHubRetryableError, httpx.TimeoutException),
)


class GitHubIssueReporter:
    """Create or update the tracking issue for a scan result.

    An existing issue is found by searching for the canonical id in the
    title; its body is replaced with the latest report instead of opening a
    duplicate.
    """

    def __init__(
        self,
        token: str,
        repository: str,
        *,
        base_url: str = GITHUB_API_URL,
        timeout: float = 30.0,
        retry: RetryPolicy = GITHUB_RETRY,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        owner, sep, repo = repository.partition("/")
        if not sep or not owner or not repo:
            raise ValueError(f"repository must be 'owner/repo', got {repository!r}")
        self.owner = owner
        self.repo = repo
        self._retry = retry
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "Authorization": f"token {token}",
            },
            timeout=timeout,
        )

    @classmethod
    def from_settings(
        cls, token: str | None, repository: str | None, **kwargs: Any
    ) -> GitHubIssueReporter | None:
        """Build a reporter, or return ``None`` when credentials are incomplete."""
        if not token or not repository:
            log.warning(
                "report.not_configured",
                has_token=bool(token),
                has_repository=bool(repository),
            )
            return None
        return cls(token, repository, **kwargs)

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GitHubIssueReporter:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── public ─────────────────────────────────────────────────────────────

    async def report(self, result: ScanResult) -> str | None:
        """File *result*; return the issue's html URL."""
        title, body, labels = render_issue(result)
        pkg = result.package

        existing = await self.find_existing_issue(pkg.name, pkg.version)
        if existing is not None:
            number = existing["number"]
            data = await self._request(
                "PATCH",
                f"/repos/{self.owner}/{self.repo}/issues/{number}",
                json={"body": body},
            )
            log.info("report.issue_updated", package=pkg.package_id, number=number)
        else:
            data = await self._request(
                "POST",
                f"/repos/{self.owner}/{self.repo}/issues",
                json={"title": title, "body": body, "labels": labels},
            )
            log.info("report.issue_created", package=pkg.package_id, number=data.get("number"))
        return data.get("html_url")

    async def find_existing_issue(self, name: str, version: str) -> dict[str, Any] | None:
        query = f'repo:{self.owner}/{self.repo} is:issue "{name}@{version}" in:title'
        data = await self._request("GET", "/search/issues", params={"q": query})
        items = data.get("items") or []
        return items[0] if items else None

    # ── internal ───────────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        async def _once() -> httpx.Response:
            resp = await self._client.request(method, path, params=params, json=json)
            if resp.status_code in (403, 429) and _is_rate_limited(resp):
                wait = _rate_limit_wait(resp)
                log.warning("github.rate_limit", path=path, wait_seconds=wait)
                await asyncio.sleep(wait)
                raise GitHubRetryableError(resp)
            if resp.status_code >= 500:
                log.warning("github.server_error", path=path, status=resp.status_code)
                raise GitHubRetryableError(resp)
            resp.raise_for_status()
            return resp

        resp = await self._retry.call(_once, operation=f"github {method} {path}")
        if not resp.content:
            return {}
        data = resp.json()
        return data if isinstance(data, dict) else {}


def _is_rate_limited(response: httpx.Response) -> bool:
    remaining = response.headers.get("X-RateLimit-Remaining")
    if remaining is not None:
        try:
            return int(remaining) == 0
        except ValueError:
            pass
    # Secondary (abuse) limits only send Retry-After.
    return "Retry-After" in response.headers


def _rate_limit_wait(response: httpx.Response) -> int:
    retry_after = response.headers.get("Retry-After")
    if retry_after is not None:
        try:
            return min(max(int(retry_after), 1), _MAX_RATE_LIMIT_WAIT)
        except ValueError:
            pass
    reset_ts = response.headers.get("X-RateLimit-Reset")
    if reset_ts is not None:
        try:
            return min(max(int(reset_ts) - int(time.time()), 1), _MAX_RATE_LIMIT_WAIT)
        except ValueError:
            pass
    return 60
