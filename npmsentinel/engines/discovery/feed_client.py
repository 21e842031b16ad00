"""Async client for the registry's replication change feed."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from npmsentinel.core.config import DEFAULT_FEED_URL
from npmsentinel.core.http import HTTP_RETRY, RetryableHTTPError, build_client, get_with_retry
from npmsentinel.core.retry import RetryPolicy
from npmsentinel.engines.discovery.models import FeedPage
from npmsentinel.exceptions import FeedError

log = structlog.get_logger("npmsentinel.discovery")

# The public replicate endpoint rejects requests without this opt-in header.
_FEED_HEADERS = {"npm-replication-opt-in": "true"}


class ChangesFeedClient:
    """Fetches pages of change-feed entries; holds no discovery state."""

    def __init__(
        self,
        feed_url: str = DEFAULT_FEED_URL,
        *,
        timeout: float = 30.0,
        retry: RetryPolicy = HTTP_RETRY,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.feed_url = feed_url
        self._retry = retry
        self._client = client or build_client(timeout=timeout)

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> ChangesFeedClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── public ─────────────────────────────────────────────────────────────

    async def fetch_page(self, since: int, limit: int) -> FeedPage:
        """Return feed entries after *since* (omitted when 0), at most *limit*.

        Raises :class:`FeedError` when the feed stays unreachable or answers
        with something that is not a feed page.
        """
        params: dict[str, Any] = {"limit": limit}
        if since > 0:
            params["since"] = since
        payload = await self._get_json(params)
        try:
            page = FeedPage.parse(payload)
        except ValueError as exc:
            raise FeedError(str(exc)) from exc
        log.info(
            "discovery.feed_page",
            since=since,
            entries=len(page.results),
            last_seq=page.last_seq,
            rejected=page.rejected,
        )
        return page

    async def current_sequence(self) -> int:
        """The feed's current high-water mark."""
        payload = await self._get_json({"descending": "true", "limit": 1})
        try:
            return int(payload.get("last_seq") or 0)
        except (AttributeError, TypeError, ValueError) as exc:
            raise FeedError(f"unparseable last_seq in feed response: {exc}") from exc

    # ── internal ───────────────────────────────────────────────────────────

    async def _get_json(self, params: dict[str, Any]) -> Any:
        try:
            resp = await get_with_retry(
                self._client,
                self.feed_url,
                params=params,
                headers=_FEED_HEADERS,
                policy=self._retry,
            )
            resp.raise_for_status()
            return resp.json()
        except (RetryableHTTPError, httpx.HTTPError) as exc:
            raise FeedError(f"change feed request failed: {exc}") from exc
        except ValueError as exc:
            raise FeedError(f"change feed returned invalid JSON: {exc}") from exc
