"""Shared test fixtures for the notionsite test suite."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from notionsite.config import Settings
from tests.fakes import PAGE_A, PAGE_B, FakeClock, FakeNotion

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture()
def fake_notion() -> FakeNotion:
    return FakeNotion()


@pytest.fixture()
def route_map_path(tmp_path: Path) -> Path:
    """Static route map with a home page and an about page."""
    path = tmp_path / "route-map.json"
    path.write_text(
        json.dumps(
            [
                {"slug": "/", "pageId": PAGE_A.replace("-", "")},
                {"slug": "/about", "pageId": PAGE_B},
            ]
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture()
def settings(route_map_path: Path) -> Settings:
    """Settings pinned to the temp route map, independent of any local notionsite.yaml."""
    return Settings(
        notion={"token": "secret_test"},
        site={"route_map_path": str(route_map_path), "revalidate_secret": "s3cret"},
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()
