from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from notionsite.models.blocks import Block


class PageRecord(BaseModel):
    """A resolved page. Never mutated: a refresh builds a new record."""

    model_config = ConfigDict(frozen=True)

    id: str
    slug: str
    title: str
    description: str | None = None
    last_edited_time: str | None = None  # Fingerprint for block-tree reuse
    blocks: tuple[Block, ...] = ()
