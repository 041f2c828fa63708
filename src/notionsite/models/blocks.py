from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class Annotations(BaseModel):
    model_config = ConfigDict(frozen=True)

    bold: bool = False
    italic: bool = False
    strikethrough: bool = False
    underline: bool = False
    code: bool = False
    color: str = "default"


class RichText(BaseModel):
    """One styled span of a rich-text line."""

    model_config = ConfigDict(frozen=True)

    plain_text: str = ""
    href: str | None = None
    annotations: Annotations = Annotations()


def join_plain_text(items: tuple[RichText, ...]) -> str:
    return "".join(item.plain_text for item in items)


class Block(BaseModel):
    """One node of a page's content tree.

    ``type`` selects the variant (``paragraph``, ``heading_1``, ``image``, ...).
    The variant payload Notion nests under the type key is split into the
    parsed ``rich_text`` / ``caption`` runs and the remaining raw ``content``.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    type: str
    has_children: bool = False
    rich_text: tuple[RichText, ...] = ()
    caption: tuple[RichText, ...] = ()
    content: dict[str, Any] = {}
    children: tuple[Block, ...] = ()

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> Block | None:
        """Build a block from a Notion API object. Partial objects yield ``None``."""
        block_type = raw.get("type")
        if raw.get("object") != "block" or not block_type or "id" not in raw:
            return None

        payload = raw.get(block_type) or {}
        return cls(
            id=raw["id"],
            type=block_type,
            has_children=bool(raw.get("has_children")),
            rich_text=tuple(payload.get("rich_text") or ()),
            caption=tuple(payload.get("caption") or ()),
            content={k: v for k, v in payload.items() if k not in ("rich_text", "caption")},
        )

    def with_children(self, children: tuple[Block, ...]) -> Block:
        return self.model_copy(update={"children": children})

    @property
    def plain_text(self) -> str:
        return join_plain_text(self.rich_text)

    @property
    def caption_text(self) -> str:
        return join_plain_text(self.caption)

    @property
    def checked(self) -> bool:
        return bool(self.content.get("checked"))

    @property
    def language(self) -> str:
        return self.content.get("language") or "plain text"

    @property
    def url(self) -> str:
        return self.content.get("url") or ""

    @property
    def title(self) -> str:
        return self.content.get("title") or ""

    @property
    def icon_emoji(self) -> str:
        icon = self.content.get("icon") or {}
        return icon.get("emoji", "") if icon.get("type") == "emoji" else ""

    @property
    def media_source(self) -> str:
        """``"external"`` or ``"file"`` for media blocks, ``""`` otherwise."""
        return self.content.get("type") or ""

    @property
    def media_url(self) -> str:
        source = self.media_source
        if not source:
            return ""
        return (self.content.get(source) or {}).get("url") or ""
