"""Page resolution: slug → route → Notion page + block tree.

Pages are cached per slug with the same stale-while-revalidate and
single-flight policy as the route table. Unknown slugs are cached as ``None``
so repeated misses do not hit Notion. A refresh reuses the previous block tree
when the page's ``last_edited_time`` has not changed.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any

import structlog

from notionsite.cache import Clock, SingleFlight, TimedCache
from notionsite.errors import NotionSiteError
from notionsite.models.blocks import Block
from notionsite.models.page import PageRecord
from notionsite.notion import paginate
from notionsite.properties import extract_description, extract_title
from notionsite.slugs import compact_page_id, normalize_slug

if TYPE_CHECKING:
    from notionsite.config import Settings
    from notionsite.models.routes import RouteEntry
    from notionsite.protocols import NotionClientProtocol
    from notionsite.routes import RouteTable

log = structlog.get_logger()


class BlockTreeLoader:
    """Fetches a page's full block tree with bounded concurrency.

    The page's own children are listed first. Then, one depth at a time, every
    block reporting ``has_children`` goes into a shared queue drained by at
    most ``concurrency`` workers, each running one paginated children fetch at
    a time. Block order within each parent is kept exactly as Notion returns it.
    """

    def __init__(
        self,
        client: NotionClientProtocol,
        *,
        concurrency: int = 6,
        max_depth: int = 32,
    ) -> None:
        self._client = client
        self._concurrency = max(1, concurrency)
        self._max_depth = max_depth

    async def load(self, page_id: str) -> tuple[Block, ...]:
        top_level = await self.list_children(page_id)
        children_by_parent: dict[str, list[Block]] = {}

        pending = [block.id for block in top_level if block.has_children]
        depth = 1
        while pending:
            if depth > self._max_depth:
                log.warning("block_depth_limit_reached", page_id=page_id, max_depth=self._max_depth)
                break
            fetched = await self._fetch_level(pending)
            children_by_parent.update(fetched)
            pending = [
                child.id
                for parent_id in pending
                for child in fetched.get(parent_id, [])
                if child.has_children
            ]
            depth += 1

        return self._assemble(top_level, children_by_parent)

    async def list_children(self, block_id: str) -> list[Block]:
        """All immediate children of a block or page, across every cursor page."""

        async def fetch(cursor: str | None) -> dict[str, Any]:
            return await self._client.list_block_children(block_id, start_cursor=cursor)

        blocks: list[Block] = []
        async for raw in paginate(fetch):
            block = Block.from_api(raw)
            if block is not None:
                blocks.append(block)
        return blocks

    async def _fetch_level(self, parent_ids: list[str]) -> dict[str, list[Block]]:
        queue: asyncio.Queue[str] = asyncio.Queue()
        for parent_id in parent_ids:
            queue.put_nowait(parent_id)

        results: dict[str, list[Block]] = {}

        async def worker() -> None:
            while True:
                try:
                    parent_id = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                results[parent_id] = await self.list_children(parent_id)

        # The first failure cancels the remaining workers
        try:
            async with asyncio.TaskGroup() as group:
                for _ in range(min(self._concurrency, len(parent_ids))):
                    group.create_task(worker())
        except ExceptionGroup as failures:
            raise failures.exceptions[0] from None
        return results

    def _assemble(
        self, blocks: list[Block], children_by_parent: dict[str, list[Block]]
    ) -> tuple[Block, ...]:
        assembled: list[Block] = []
        for block in blocks:
            children = children_by_parent.get(block.id)
            if children:
                block = block.with_children(self._assemble(children, children_by_parent))
            assembled.append(block)
        return tuple(assembled)


class PageResolver:
    """Resolves slugs to cached PageRecords."""

    def __init__(
        self,
        client: NotionClientProtocol,
        routes: RouteTable,
        settings: Settings,
        *,
        clock: Clock = time.monotonic,
    ) -> None:
        self._client = client
        self._routes = routes
        self._settings = settings
        self._cache: TimedCache[str, PageRecord | None] = TimedCache(
            settings.cache.ttl_seconds, clock=clock
        )
        self._refreshes: SingleFlight[str, PageRecord | None] = SingleFlight("pages")
        self._blocks = BlockTreeLoader(
            client,
            concurrency=settings.notion.child_fetch_concurrency,
            max_depth=settings.notion.max_block_depth,
        )

    async def get_page_by_slug(self, slug_input: str) -> PageRecord | None:
        """Return the page for a slug, or None when no route maps to it."""
        slug = normalize_slug(slug_input)

        cached = self._cache.read_fresh(slug)
        if cached is not None:
            return cached.value

        stale = self._cache.read_stale(slug)
        if stale is not None:
            log.info("cache_hit", cache="pages", slug=slug, stale=True)
            self._refreshes.run(slug, lambda: self.refresh_page(slug))
            return stale.value

        log.info("cache_miss", cache="pages", slug=slug)
        return await self._refreshes.wait(slug, lambda: self.refresh_page(slug))

    async def refresh_page(self, slug: str) -> PageRecord | None:
        """Fetch a page from Notion and store the result (including "not found").

        With a stale entry present, any backend failure returns the stale
        value instead of raising.
        """
        stale_entry = self._cache.read_stale(slug)

        try:
            route = await self._routes.find(slug)
        except NotionSiteError:
            log.warning("page_routes_failed", slug=slug, exc_info=True)
            if stale_entry is not None:
                return stale_entry.value
            raise

        if route is None:
            log.info("page_not_found", slug=slug)
            self._cache.write(slug, None)
            return None

        try:
            page = await self._load_page(route, stale_entry.value if stale_entry else None)
        except NotionSiteError:
            log.warning("page_refresh_failed", slug=slug, page_id=route.page_id, exc_info=True)
            if stale_entry is not None:
                return stale_entry.value
            raise

        self._cache.write(slug, page)
        return page

    async def _load_page(self, route: RouteEntry, stale: PageRecord | None) -> PageRecord | None:
        if stale is not None and compact_page_id(stale.id) == compact_page_id(route.page_id):
            metadata = await self._client.retrieve_page(route.page_id)
            if metadata.get("object") != "page":
                return None

            if stale.last_edited_time == metadata.get("last_edited_time"):
                log.info("page_blocks_reused", slug=route.slug)
                blocks = stale.blocks
            else:
                blocks = await self._blocks.load(route.page_id)
        else:
            metadata, blocks = await asyncio.gather(
                self._client.retrieve_page(route.page_id),
                self._blocks.load(route.page_id),
            )
            if metadata.get("object") != "page":
                return None

        log.info("page_loaded", slug=route.slug, block_count=len(blocks))
        return PageRecord(
            id=metadata.get("id") or route.page_id,
            slug=route.slug,
            title=route.title or extract_title(metadata),
            description=(
                route.description
                or extract_description(metadata, self._settings.notion.description_property)
            ),
            last_edited_time=metadata.get("last_edited_time"),
            blocks=blocks,
        )

    def invalidate(self, slug: str | None = None) -> None:
        """Drop one page (by slug, normalised) or every page."""
        self._cache.invalidate(normalize_slug(slug) if slug is not None else None)
