"""Image proxy for Notion-hosted files.

Notion file URLs are signed and expire after about an hour, so rendered pages
point at ``/api/notion-image/<block id>`` instead. Each request re-reads the
block to get a fresh signed URL and streams the file back.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import structlog

from notionsite.errors import ErrorCode, NotionSiteError

if TYPE_CHECKING:
    from notionsite.protocols import NotionClientProtocol

log = structlog.get_logger()

IMAGE_PROXY_USER_AGENT = "notionsite-image-proxy/1.0"
IMAGE_CACHE_CONTROL = "public, s-maxage=3600, stale-while-revalidate=86400"


def _not_hosted(block_id: str) -> NotionSiteError:
    return NotionSiteError(
        code=ErrorCode.IMAGE_NOT_FOUND,
        message=f"Block {block_id} is not a Notion hosted image block.",
        suggestion="Only image blocks with an uploaded file can be proxied.",
        recoverable=False,
    )


async def resolve_image_url(notion: NotionClientProtocol, block_id: str) -> str:
    """Return the current signed file URL of an image block.

    Raises IMAGE_NOT_FOUND when the block is not an uploaded image. Backend
    failures propagate as the client's NotionSiteError.
    """
    block = await notion.retrieve_block(block_id)
    if block.get("object") != "block" or block.get("type") != "image":
        raise _not_hosted(block_id)

    image = block.get("image") or {}
    if image.get("type") != "file":
        raise _not_hosted(block_id)

    url = (image.get("file") or {}).get("url")
    if not url:
        raise _not_hosted(block_id)
    return url


async def open_image_stream(client: httpx.AsyncClient, url: str) -> httpx.Response:
    """Start streaming the upstream file. The caller must close the response."""
    request = client.build_request("GET", url, headers={"User-Agent": IMAGE_PROXY_USER_AGENT})
    try:
        response = await client.send(request, stream=True)
    except httpx.HTTPError as exc:
        raise NotionSiteError(
            code=ErrorCode.IMAGE_FETCH_FAILED,
            message=f"Failed to fetch image: {exc}",
            suggestion="The file host may be temporarily unavailable.",
            recoverable=True,
        ) from exc

    if not response.is_success:
        await response.aclose()
        raise NotionSiteError(
            code=ErrorCode.IMAGE_FETCH_FAILED,
            message=f"Image fetch failed with HTTP {response.status_code}",
            suggestion="The signed file URL may have expired; retry the request.",
            recoverable=True,
        )

    log.debug("image_stream_opened", status_code=response.status_code)
    return response


def proxy_headers(upstream: httpx.Response) -> dict[str, str]:
    headers = {
        "Cache-Control": IMAGE_CACHE_CONTROL,
        "X-Image-Proxy": "notion-block",
    }
    if content_type := upstream.headers.get("content-type"):
        headers["Content-Type"] = content_type
    if content_length := upstream.headers.get("content-length"):
        headers["Content-Length"] = content_length
    return headers
