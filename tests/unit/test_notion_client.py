"""Unit tests for notionsite.notion."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest
import respx

import notionsite.notion as notion_module
from notionsite.config import NotionSettings
from notionsite.errors import ErrorCode, NotionSiteError
from notionsite.notion import NotionClient, build_http_client, paginate

API = "https://api.notion.com/v1"

real_retry_delay = notion_module._retry_delay


@pytest.fixture(autouse=True)
def _no_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(notion_module, "_retry_delay", lambda attempt, retry_after: 0.0)


def _settings(**overrides: Any) -> NotionSettings:
    return NotionSettings(token="secret_test", page_size=50, **overrides)


class TestNotionClient:
    async def test_retrieve_page_sends_auth_headers(self) -> None:
        with respx.mock:
            route = respx.get(f"{API}/pages/p1").mock(
                return_value=httpx.Response(200, json={"object": "page", "id": "p1"})
            )
            async with httpx.AsyncClient() as client:
                result = await NotionClient(client, _settings()).retrieve_page("p1")

            assert result == {"object": "page", "id": "p1"}
            request = route.calls.last.request
            assert request.headers["authorization"] == "Bearer secret_test"
            assert request.headers["notion-version"] == "2022-06-28"

    async def test_query_database_body(self) -> None:
        with respx.mock:
            route = respx.post(f"{API}/databases/db/query").mock(
                return_value=httpx.Response(200, json={"results": [], "has_more": False})
            )
            async with httpx.AsyncClient() as client:
                await NotionClient(client, _settings()).query_database("db", start_cursor="c2")

            body = json.loads(route.calls.last.request.content)
            assert body == {"page_size": 50, "start_cursor": "c2"}

    async def test_list_block_children_params(self) -> None:
        with respx.mock:
            route = respx.get(f"{API}/blocks/b1/children").mock(
                return_value=httpx.Response(200, json={"results": [], "has_more": False})
            )
            async with httpx.AsyncClient() as client:
                await NotionClient(client, _settings()).list_block_children("b1")

            params = route.calls.last.request.url.params
            assert params["page_size"] == "50"
            assert "start_cursor" not in params

    async def test_missing_token_is_configuration_error(self) -> None:
        async with httpx.AsyncClient() as client:
            notion = NotionClient(client, NotionSettings())
            with pytest.raises(NotionSiteError) as exc_info:
                await notion.retrieve_block("b1")
        assert exc_info.value.code == ErrorCode.CONFIGURATION_MISSING
        assert exc_info.value.recoverable is False

    async def test_404_is_not_found(self) -> None:
        with respx.mock:
            respx.get(f"{API}/blocks/gone").mock(return_value=httpx.Response(404))
            async with httpx.AsyncClient() as client:
                with pytest.raises(NotionSiteError) as exc_info:
                    await NotionClient(client, _settings()).retrieve_block("gone")
        assert exc_info.value.code == ErrorCode.BACKEND_NOT_FOUND

    async def test_500_is_recoverable_failure(self) -> None:
        with respx.mock:
            respx.get(f"{API}/pages/p1").mock(return_value=httpx.Response(500))
            async with httpx.AsyncClient() as client:
                with pytest.raises(NotionSiteError) as exc_info:
                    await NotionClient(client, _settings()).retrieve_page("p1")
        assert exc_info.value.code == ErrorCode.BACKEND_REQUEST_FAILED
        assert exc_info.value.recoverable is True

    async def test_network_error_is_wrapped(self) -> None:
        with respx.mock:
            respx.get(f"{API}/pages/p1").mock(side_effect=httpx.ConnectError("refused"))
            async with httpx.AsyncClient() as client:
                with pytest.raises(NotionSiteError) as exc_info:
                    await NotionClient(client, _settings()).retrieve_page("p1")
        assert exc_info.value.code == ErrorCode.BACKEND_REQUEST_FAILED

    async def test_rate_limit_retried(self) -> None:
        with respx.mock:
            route = respx.get(f"{API}/pages/p1").mock(
                side_effect=[
                    httpx.Response(429, headers={"retry-after": "1"}),
                    httpx.Response(200, json={"object": "page", "id": "p1"}),
                ]
            )
            async with httpx.AsyncClient() as client:
                result = await NotionClient(client, _settings()).retrieve_page("p1")
        assert result["id"] == "p1"
        assert route.call_count == 2

    async def test_rate_limit_retries_exhausted(self) -> None:
        with respx.mock:
            route = respx.get(f"{API}/pages/p1").mock(return_value=httpx.Response(429))
            async with httpx.AsyncClient() as client:
                with pytest.raises(NotionSiteError) as exc_info:
                    await NotionClient(client, _settings(max_retries=2)).retrieve_page("p1")
        assert exc_info.value.code == ErrorCode.BACKEND_REQUEST_FAILED
        assert route.call_count == 3


class TestRetryDelay:
    def test_retry_after_is_a_floor(self) -> None:
        assert real_retry_delay(0, "5") >= 5.0

    def test_exponential_growth(self) -> None:
        assert real_retry_delay(3, None) >= 8.0

    def test_http_date_retry_after_ignored(self) -> None:
        delay = real_retry_delay(0, "Wed, 21 Oct 2015 07:28:00 GMT")
        assert 1.0 <= delay <= 1.5


class TestPaginate:
    async def test_follows_cursors_in_order(self) -> None:
        pages = {
            None: {"results": [1, 2], "has_more": True, "next_cursor": "c1"},
            "c1": {"results": [3], "has_more": True, "next_cursor": "c2"},
            "c2": {"results": [4], "has_more": False, "next_cursor": None},
        }
        seen: list[str | None] = []

        async def fetch(cursor: str | None) -> dict[str, Any]:
            seen.append(cursor)
            return pages[cursor]

        assert [item async for item in paginate(fetch)] == [1, 2, 3, 4]
        assert seen == [None, "c1", "c2"]

    async def test_has_more_without_cursor_stops(self) -> None:
        async def fetch(cursor: str | None) -> dict[str, Any]:
            return {"results": ["only"], "has_more": True, "next_cursor": None}

        assert [item async for item in paginate(fetch)] == ["only"]


async def test_build_http_client_user_agent() -> None:
    client = build_http_client(NotionSettings())
    try:
        assert client.headers["user-agent"].startswith("notionsite/")
    finally:
        await client.aclose()
