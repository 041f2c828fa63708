"""Integration test fixtures.

Provides the full Starlette app wired to an in-memory Notion backend. The
TestClient context runs the lifespan, so AppState is built exactly as in
production apart from the injected Notion client.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from starlette.testclient import TestClient

from notionsite.server import create_app
from tests.fakes import PAGE_A, PAGE_B, raw_block, rich

if TYPE_CHECKING:
    from collections.abc import Iterator

    from notionsite.config import Settings
    from tests.fakes import FakeNotion


@pytest.fixture()
def seeded_notion(fake_notion: FakeNotion) -> FakeNotion:
    """Home page linking to the about page, plus one hosted image."""
    fake_notion.add_page(
        PAGE_A,
        "Home",
        [
            raw_block("h1", "heading_1", "Welcome"),
            raw_block(PAGE_B.replace("-", ""), "child_page", title="About us"),
            raw_block(
                "img1",
                "image",
                type="file",
                file={"url": "https://files.example/cat.png"},
                caption=[rich("A cat")],
            ),
        ],
    )
    fake_notion.add_page(PAGE_B, "About us", [raw_block("p1", text="We make fonts.")])
    return fake_notion


@pytest.fixture()
def client(settings: Settings, seeded_notion: FakeNotion) -> Iterator[TestClient]:
    with TestClient(create_app(settings, notion_client=seeded_notion)) as test_client:
        yield test_client
