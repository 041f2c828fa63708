"""Notion API client.

All backend I/O goes through a single NotionClient shared by the route table,
the page resolver and the image proxy. The client receives an
httpx.AsyncClient via constructor injection; the app lifespan owns the client
lifecycle.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from notionsite import __version__
from notionsite.errors import ErrorCode, NotionSiteError, missing_configuration

if TYPE_CHECKING:
    from notionsite.config import NotionSettings

log = structlog.get_logger()

RETRY_BASE_DELAY_SECONDS = 1.0
RETRY_JITTER_MAX_SECONDS = 0.5


def build_http_client(settings: NotionSettings) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.timeout_seconds),
        headers={"User-Agent": f"notionsite/{__version__}"},
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        ),
    )


def _retry_delay(attempt: int, retry_after: str | None) -> float:
    """Exponential backoff with jitter, never shorter than ``Retry-After``."""
    delay = RETRY_BASE_DELAY_SECONDS * (2**attempt)
    if retry_after:
        try:
            delay = max(float(retry_after), delay)
        except ValueError:
            pass  # HTTP-date form; keep the computed backoff
    return delay + random.uniform(0, RETRY_JITTER_MAX_SECONDS)


async def paginate(
    fetch: Callable[[str | None], Awaitable[dict[str, Any]]],
) -> AsyncIterator[dict[str, Any]]:
    """Yield every result across cursor pages, in backend order."""
    cursor: str | None = None
    while True:
        response = await fetch(cursor)
        for result in response.get("results", []):
            yield result
        cursor = response.get("next_cursor") if response.get("has_more") else None
        if not cursor:
            return


class NotionClient:
    """Thin async wrapper over the Notion REST API implementing NotionClientProtocol."""

    def __init__(self, client: httpx.AsyncClient, settings: NotionSettings) -> None:
        self._client = client
        self._settings = settings

    def _headers(self) -> dict[str, str]:
        token = (self._settings.token or "").strip()
        if not token:
            raise missing_configuration("NOTIONSITE__NOTION__TOKEN")
        return {
            "Authorization": f"Bearer {token}",
            "Notion-Version": self._settings.api_version,
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send one request, retrying on HTTP 429.

        Raises NotionSiteError on network errors, non-2xx responses and
        exhausted retries.
        """
        headers = self._headers()
        url = f"{self._settings.api_base_url}{path}"

        try:
            for attempt in range(self._settings.max_retries + 1):
                response = await self._client.request(
                    method, url, headers=headers, params=params, json=json
                )

                if response.status_code == 429 and attempt < self._settings.max_retries:
                    delay = _retry_delay(attempt, response.headers.get("retry-after"))
                    log.warning("notion_rate_limited", path=path, attempt=attempt + 1, delay=delay)
                    await asyncio.sleep(delay)
                    continue

                if response.status_code == 404:
                    raise NotionSiteError(
                        code=ErrorCode.BACKEND_NOT_FOUND,
                        message=f"Notion returned 404 for {path}",
                        suggestion="Check that the id exists and is shared with the integration.",
                        recoverable=False,
                    )

                if not response.is_success:
                    raise NotionSiteError(
                        code=ErrorCode.BACKEND_REQUEST_FAILED,
                        message=f"Notion returned HTTP {response.status_code} for {path}",
                        suggestion="Notion may be unavailable or the token may lack access.",
                        recoverable=True,
                    )

                log.debug("notion_request_complete", method=method, path=path)
                return response.json()

        except NotionSiteError:
            raise
        except (httpx.HTTPError, ValueError) as exc:
            raise NotionSiteError(
                code=ErrorCode.BACKEND_REQUEST_FAILED,
                message=f"Request to Notion failed for {path}: {exc}",
                suggestion="Notion may be temporarily unavailable.",
                recoverable=True,
            ) from exc

        # Unreachable but satisfies the type checker
        raise NotionSiteError(
            code=ErrorCode.BACKEND_REQUEST_FAILED,
            message=f"Rate limit retries exhausted for {path}",
            suggestion="",
            recoverable=True,
        )

    async def query_database(
        self, database_id: str, *, start_cursor: str | None = None
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"page_size": self._settings.page_size}
        if start_cursor:
            body["start_cursor"] = start_cursor
        return await self._request("POST", f"/databases/{database_id}/query", json=body)

    async def retrieve_page(self, page_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/pages/{page_id}")

    async def list_block_children(
        self, block_id: str, *, start_cursor: str | None = None
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"page_size": self._settings.page_size}
        if start_cursor:
            params["start_cursor"] = start_cursor
        return await self._request("GET", f"/blocks/{block_id}/children", params=params)

    async def retrieve_block(self, block_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/blocks/{block_id}")
