"""Unit tests for notionsite.pages."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from notionsite.config import Settings
from notionsite.errors import NotionSiteError
from notionsite.pages import BlockTreeLoader, PageResolver
from notionsite.routes import RouteTable
from tests.fakes import PAGE_A, PAGE_B, raw_block

if TYPE_CHECKING:
    from pathlib import Path

    from tests.fakes import FakeClock, FakeNotion


def _resolver(
    fake_notion: FakeNotion, settings: Settings, clock: FakeClock | None = None
) -> PageResolver:
    kwargs = {"clock": clock} if clock is not None else {}
    routes = RouteTable(fake_notion, settings, **kwargs)
    return PageResolver(fake_notion, routes, settings, **kwargs)


# ---------------------------------------------------------------------------
# BlockTreeLoader
# ---------------------------------------------------------------------------


class TestBlockTreeLoader:
    async def test_nested_tree_in_order(self, fake_notion: FakeNotion) -> None:
        fake_notion.add_page(
            PAGE_A,
            "Home",
            [
                raw_block("b1", text="one", has_children=True),
                raw_block("b2", text="two"),
                raw_block("b3", text="three", has_children=True),
            ],
        )
        fake_notion.set_children("b1", [raw_block("b1a", text="1a", has_children=True)])
        fake_notion.set_children("b1a", [raw_block("b1a-i", text="1a-i")])
        fake_notion.set_children("b3", [raw_block("b3a", text="3a"), raw_block("b3b", text="3b")])

        blocks = await BlockTreeLoader(fake_notion).load(PAGE_A)

        assert [block.id for block in blocks] == ["b1", "b2", "b3"]
        assert [child.id for child in blocks[0].children] == ["b1a"]
        assert [child.id for child in blocks[0].children[0].children] == ["b1a-i"]
        assert blocks[1].children == ()
        assert [child.id for child in blocks[2].children] == ["b3a", "b3b"]
        assert blocks[2].children[1].plain_text == "3b"

    async def test_children_paginated(self, fake_notion: FakeNotion) -> None:
        fake_notion.page_size = 2
        fake_notion.add_page(PAGE_A, "Home", [raw_block(f"b{i}", text=str(i)) for i in range(5)])
        blocks = await BlockTreeLoader(fake_notion).load(PAGE_A)
        assert [block.plain_text for block in blocks] == ["0", "1", "2", "3", "4"]
        assert fake_notion.calls["list_block_children"] == 3

    async def test_partial_blocks_skipped(self, fake_notion: FakeNotion) -> None:
        fake_notion.add_page(PAGE_A, "Home", [{"object": "block", "id": "x"}, raw_block("ok")])
        blocks = await BlockTreeLoader(fake_notion).load(PAGE_A)
        assert [block.id for block in blocks] == ["ok"]

    async def test_concurrency_is_bounded(self, fake_notion: FakeNotion) -> None:
        fake_notion.delay = 0.005
        parents = [raw_block(f"p{i}", has_children=True) for i in range(12)]
        fake_notion.add_page(PAGE_A, "Home", parents)
        for i in range(12):
            fake_notion.set_children(f"p{i}", [raw_block(f"c{i}")])

        blocks = await BlockTreeLoader(fake_notion, concurrency=3).load(PAGE_A)

        assert fake_notion.max_concurrent_children == 3
        assert [block.children[0].id for block in blocks] == [f"c{i}" for i in range(12)]

    async def test_depth_cap(self, fake_notion: FakeNotion) -> None:
        fake_notion.add_page(PAGE_A, "Home", [raw_block("d0", has_children=True)])
        for depth in range(5):
            fake_notion.set_children(f"d{depth}", [raw_block(f"d{depth + 1}", has_children=True)])

        blocks = await BlockTreeLoader(fake_notion, max_depth=2).load(PAGE_A)

        assert blocks[0].children[0].id == "d1"
        assert blocks[0].children[0].children[0].id == "d2"
        assert blocks[0].children[0].children[0].children == ()

    async def test_failure_stops_remaining_fetches(self, fake_notion: FakeNotion) -> None:
        fake_notion.delay = 0.005
        parents = [raw_block(f"p{i}", has_children=True) for i in range(12)]
        fake_notion.add_page(PAGE_A, "Home", parents)
        for i in range(12):
            fake_notion.set_children(f"p{i}", [raw_block(f"c{i}")])
        fake_notion.failing_blocks.add("p0")

        with pytest.raises(NotionSiteError):
            await BlockTreeLoader(fake_notion, concurrency=3).load(PAGE_A)
        calls_at_failure = fake_notion.calls["list_block_children"]
        await asyncio.sleep(0.1)

        assert fake_notion.calls["list_block_children"] == calls_at_failure
        assert calls_at_failure < 1 + 12


# ---------------------------------------------------------------------------
# PageResolver
# ---------------------------------------------------------------------------


class TestPageResolver:
    async def test_resolves_page(self, fake_notion: FakeNotion, settings: Settings) -> None:
        fake_notion.add_page(PAGE_B, "About us", [raw_block("a1", text="hello")])
        resolver = _resolver(fake_notion, settings)

        page = await resolver.get_page_by_slug("https://aex.design/about/")

        assert page is not None
        assert page.slug == "/about"
        assert page.title == "About us"
        assert page.last_edited_time == "2026-01-01T00:00:00.000Z"
        assert [block.plain_text for block in page.blocks] == ["hello"]

    async def test_resolves_hidden_slug(self, fake_notion: FakeNotion, tmp_path: Path) -> None:
        path = tmp_path / "map.json"
        path.write_text(
            f'[{{"slug": "/typecheck-type-tester", "pageId": "{PAGE_B}"}}]', encoding="utf-8"
        )
        settings = Settings(site={"route_map_path": str(path)})
        fake_notion.add_page(PAGE_B, "Typecheck tester")
        resolver = _resolver(fake_notion, settings)

        page = await resolver.get_page_by_slug("/typecheck-type-tester")

        assert page is not None
        assert page.title == "Typecheck tester"

    async def test_route_title_wins(self, fake_notion: FakeNotion, tmp_path: Path) -> None:
        path = tmp_path / "map.json"
        path.write_text(
            f'[{{"slug": "/about", "pageId": "{PAGE_B}", "title": "Mapped", '
            f'"description": "From map"}}]',
            encoding="utf-8",
        )
        settings = Settings(site={"route_map_path": str(path)})
        fake_notion.add_page(PAGE_B, "From Notion")

        page = await _resolver(fake_notion, settings).get_page_by_slug("/about")

        assert page is not None
        assert page.title == "Mapped"
        assert page.description == "From map"

    async def test_unknown_slug_cached_as_none(
        self, fake_notion: FakeNotion, settings: Settings
    ) -> None:
        resolver = _resolver(fake_notion, settings)
        assert await resolver.get_page_by_slug("/missing") is None
        assert await resolver.get_page_by_slug("/missing/") is None
        assert fake_notion.calls["retrieve_page"] == 0

    async def test_fresh_hit_makes_no_backend_calls(
        self, fake_notion: FakeNotion, settings: Settings, clock: FakeClock
    ) -> None:
        fake_notion.add_page(PAGE_B, "About")
        resolver = _resolver(fake_notion, settings, clock)
        first = await resolver.get_page_by_slug("/about")
        clock.advance(10)
        second = await resolver.get_page_by_slug("about")
        assert first is second
        assert fake_notion.calls["retrieve_page"] == 1

    async def test_unchanged_fingerprint_reuses_block_tuple(
        self, fake_notion: FakeNotion, settings: Settings, clock: FakeClock
    ) -> None:
        fake_notion.add_page(PAGE_B, "About", [raw_block("a1", text="hello")])
        resolver = _resolver(fake_notion, settings, clock)
        first = await resolver.get_page_by_slug("/about")
        assert first is not None
        children_calls = fake_notion.calls["list_block_children"]

        clock.advance(301)
        refreshed = await resolver.refresh_page("/about")

        assert refreshed is not None
        assert refreshed is not first
        assert refreshed.blocks is first.blocks
        assert fake_notion.calls["list_block_children"] == children_calls

    async def test_changed_fingerprint_reloads_blocks(
        self, fake_notion: FakeNotion, settings: Settings, clock: FakeClock
    ) -> None:
        fake_notion.add_page(PAGE_B, "About", [raw_block("a1", text="hello")])
        resolver = _resolver(fake_notion, settings, clock)
        await resolver.get_page_by_slug("/about")

        fake_notion.set_children(PAGE_B, [raw_block("a1", text="updated")])
        fake_notion.touch(PAGE_B, "2026-02-01T00:00:00.000Z")
        clock.advance(301)
        refreshed = await resolver.refresh_page("/about")

        assert refreshed is not None
        assert [block.plain_text for block in refreshed.blocks] == ["updated"]
        assert refreshed.last_edited_time == "2026-02-01T00:00:00.000Z"

    async def test_stale_value_returned_when_backend_fails(
        self, fake_notion: FakeNotion, settings: Settings, clock: FakeClock
    ) -> None:
        fake_notion.add_page(PAGE_B, "About")
        resolver = _resolver(fake_notion, settings, clock)
        original = await resolver.get_page_by_slug("/about")

        fake_notion.failing.add("retrieve_page")
        clock.advance(301)

        assert await resolver.get_page_by_slug("/about") is original
        for _ in range(5):
            await asyncio.sleep(0)
        # The failed background refresh left the old entry in place
        assert await resolver.refresh_page("/about") is original

    async def test_stale_hits_share_one_background_refresh(
        self, fake_notion: FakeNotion, settings: Settings, clock: FakeClock
    ) -> None:
        fake_notion.add_page(PAGE_B, "About")
        resolver = _resolver(fake_notion, settings, clock)
        original = await resolver.get_page_by_slug("/about")

        fake_notion.touch(PAGE_B, "2026-02-01T00:00:00.000Z")
        clock.advance(301)

        first, second = await asyncio.gather(
            resolver.get_page_by_slug("/about"), resolver.get_page_by_slug("about/")
        )
        assert first is original
        assert second is original

        await asyncio.sleep(0.05)
        assert fake_notion.calls["retrieve_page"] == 2
        refreshed = await resolver.get_page_by_slug("/about")
        assert refreshed is not None
        assert refreshed.last_edited_time == "2026-02-01T00:00:00.000Z"
        assert fake_notion.calls["retrieve_page"] == 2

    async def test_uncached_failure_propagates(
        self, fake_notion: FakeNotion, settings: Settings
    ) -> None:
        fake_notion.add_page(PAGE_B, "About")
        fake_notion.failing.add("list_block_children")
        resolver = _resolver(fake_notion, settings)
        with pytest.raises(NotionSiteError):
            await resolver.get_page_by_slug("/about")

    async def test_concurrent_misses_share_one_load(
        self, fake_notion: FakeNotion, settings: Settings
    ) -> None:
        fake_notion.delay = 0.005
        fake_notion.add_page(PAGE_B, "About", [raw_block("a1", text="hello")])
        resolver = _resolver(fake_notion, settings)

        pages = await asyncio.gather(*(resolver.get_page_by_slug("/about") for _ in range(4)))

        assert all(page is pages[0] for page in pages)
        assert fake_notion.calls["retrieve_page"] == 1

    async def test_invalidate_one_slug(self, fake_notion: FakeNotion, settings: Settings) -> None:
        fake_notion.add_page(PAGE_B, "About")
        resolver = _resolver(fake_notion, settings)
        await resolver.get_page_by_slug("/about")
        resolver.invalidate("about/")
        await resolver.get_page_by_slug("/about")
        assert fake_notion.calls["retrieve_page"] == 2

    async def test_zero_ttl_fetches_every_time(
        self, fake_notion: FakeNotion, route_map_path: Path
    ) -> None:
        settings = Settings(
            site={"route_map_path": str(route_map_path)}, cache={"ttl_seconds": 0}
        )
        fake_notion.add_page(PAGE_B, "About")
        resolver = _resolver(fake_notion, settings)
        await resolver.get_page_by_slug("/about")
        await resolver.get_page_by_slug("/about")
        assert fake_notion.calls["retrieve_page"] == 2
