"""Shared httpx plumbing for the registry-facing clients."""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog

from npmsentinel.core.config import USER_AGENT
from npmsentinel.core.retry import RetryPolicy

log = structlog.get_logger("npmsentinel.http")

_MAX_RETRY_AFTER = 60  # seconds


class RetryableHTTPError(Exception):
    """5xx or 429 response; worth another attempt."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        self.status_code = response.status_code
        super().__init__(f"HTTP {response.status_code} from {response.request.url}")


HTTP_RETRY = RetryPolicy(
    max_attempts=3,
    base_delay=1.0,
    retry_on=(RetryableHTTPError, httpx.TransportError),
)


def build_client(
    *,
    timeout: float,
    headers: dict[str, str] | None = None,
    base_url: str = "",
) -> httpx.AsyncClient:
    merged = {"User-Agent": USER_AGENT, "Accept": "application/json"}
    merged.update(headers or {})
    return httpx.AsyncClient(
        base_url=base_url,
        headers=merged,
        timeout=timeout,
        follow_redirects=True,
    )


async def get_with_retry(
    client: httpx.AsyncClient,
    url: str,
    *,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    policy: RetryPolicy = HTTP_RETRY,
) -> httpx.Response:
    """GET *url*, retrying 5xx, 429 and transport errors under *policy*.

    Other 4xx responses are returned to the caller untouched, since only the
    caller knows whether e.g. a 404 is an error.
    """

    async def _once() -> httpx.Response:
        resp = await client.get(url, params=params, headers=headers)
        if resp.status_code == 429 or resp.status_code >= 500:
            if resp.status_code == 429:
                wait = _retry_after(resp)
                if wait:
                    log.warning("http.rate_limited", url=url, wait_seconds=wait)
                    await asyncio.sleep(wait)
            raise RetryableHTTPError(resp)
        return resp

    return await policy.call(_once, operation=f"GET {url}")


def _retry_after(response: httpx.Response) -> int | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return min(max(int(value), 1), _MAX_RETRY_AFTER)
    except (TypeError, ValueError):
        return None
