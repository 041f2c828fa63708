from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict


class RouteEntry(BaseModel):
    """Maps a canonical slug to the Notion page that backs it."""

    model_config = ConfigDict(frozen=True)

    slug: str  # Canonical: leading slash, no trailing slash except "/"
    page_id: str  # Dashed Notion UUID
    title: str | None = None
    description: str | None = None
    source: Literal["database", "map"]
