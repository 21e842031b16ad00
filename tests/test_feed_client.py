"""Tests for ChangesFeedClient and FeedPage decoding (httpx mocked)."""

from __future__ import annotations

import json

import httpx
import pytest

from npmsentinel.core.retry import RetryPolicy
from npmsentinel.engines.discovery.feed_client import ChangesFeedClient
from npmsentinel.engines.discovery.models import FeedEntry, FeedPage
from npmsentinel.exceptions import FeedError

FEED_URL = "https://replicate.example/registry/_changes"
FAST_RETRY = RetryPolicy(max_attempts=2, base_delay=0, jitter=False)


def _client(handler) -> ChangesFeedClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ChangesFeedClient(FEED_URL, retry=FAST_RETRY, client=http)


class TestFeedPage:
    def test_parse_drops_invalid_rows(self):
        page = FeedPage.parse(
            {
                "results": [
                    {"seq": 1, "id": "a"},
                    {"id": "no-seq"},
                    {"seq": "3", "id": "b", "deleted": True, "changes": []},
                ],
                "last_seq": 3,
            }
        )
        assert [e.id for e in page.results] == ["a", "b"]
        assert page.results[1].deleted is True
        assert page.rejected == 1
        assert page.last_seq == 3

    def test_parse_missing_last_seq(self):
        page = FeedPage.parse({"results": []})
        assert page.results == []
        assert page.last_seq is None

    def test_parse_rejects_non_object(self):
        with pytest.raises(ValueError):
            FeedPage.parse(["not", "a", "page"])

    def test_design_doc(self):
        assert FeedEntry(seq=1, id="_design/app").is_design_doc
        assert not FeedEntry(seq=1, id="lodash").is_design_doc


class TestFetchPage:
    @pytest.mark.anyio
    async def test_sends_cursor_limit_and_opt_in_header(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200, json={"results": [{"seq": 11, "id": "pkg"}], "last_seq": 11}
            )

        async with _client(handler) as feed:
            page = await feed.fetch_page(10, 500)

        assert page.last_seq == 11
        request = seen[0]
        assert request.url.params["since"] == "10"
        assert request.url.params["limit"] == "500"
        assert request.headers["npm-replication-opt-in"] == "true"

    @pytest.mark.anyio
    async def test_since_omitted_for_zero_cursor(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"results": []})

        async with _client(handler) as feed:
            await feed.fetch_page(0, 100)

        assert "since" not in seen[0].url.params

    @pytest.mark.anyio
    async def test_retries_server_error(self):
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(503)
            return httpx.Response(200, json={"results": [], "last_seq": 5})

        async with _client(handler) as feed:
            page = await feed.fetch_page(1, 10)

        assert calls["n"] == 2
        assert page.last_seq == 5

    @pytest.mark.anyio
    async def test_persistent_failure_raises_feed_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        async with _client(handler) as feed:
            with pytest.raises(FeedError):
                await feed.fetch_page(1, 10)

    @pytest.mark.anyio
    async def test_invalid_json_raises_feed_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"<html>")

        async with _client(handler) as feed:
            with pytest.raises(FeedError):
                await feed.fetch_page(1, 10)

    @pytest.mark.anyio
    async def test_client_error_raises_feed_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, content=json.dumps({"error": "forbidden"}).encode())

        async with _client(handler) as feed:
            with pytest.raises(FeedError):
                await feed.fetch_page(1, 10)


class TestCurrentSequence:
    @pytest.mark.anyio
    async def test_reads_last_seq_from_descending_query(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200, json={"results": [{"seq": 900, "id": "x"}], "last_seq": 900}
            )

        async with _client(handler) as feed:
            assert await feed.current_sequence() == 900

        assert seen[0].url.params["descending"] == "true"
        assert seen[0].url.params["limit"] == "1"
        assert seen[0].headers["npm-replication-opt-in"] == "true"
