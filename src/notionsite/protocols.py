"""Protocol interfaces for swappable components.

The route table, page resolver and image proxy reference these protocols,
not the concrete httpx client. This allows:
- Tests to use lightweight in-memory implementations
- Other backends to be swapped in without touching the cache/render core
"""

from __future__ import annotations

from typing import Any, Protocol


class NotionClientProtocol(Protocol):
    """The four Notion calls the site depends on.

    List endpoints return one raw response page:
    ``{"results": [...], "has_more": bool, "next_cursor": str | None}``.
    """

    async def query_database(
        self, database_id: str, *, start_cursor: str | None = None
    ) -> dict[str, Any]: ...

    async def retrieve_page(self, page_id: str) -> dict[str, Any]: ...

    async def list_block_children(
        self, block_id: str, *, start_cursor: str | None = None
    ) -> dict[str, Any]: ...

    async def retrieve_block(self, block_id: str) -> dict[str, Any]: ...
