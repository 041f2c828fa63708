"""Reading Notion page properties.

Database schemas differ between workspaces, so each field is looked up by a
preferred name followed by fallback aliases. Names are tried strictly in list
order; for each name an exact key match wins over a case-insensitive one.
"""

from __future__ import annotations

from typing import Any

SLUG_ALIASES = ["slug", "Slug"]
PUBLISHED_ALIASES = ["published", "Published", "live", "Live"]
DESCRIPTION_ALIASES = ["description", "Description", "Summary", "Excerpt"]

_TRUTHY_TEXT = frozenset({"1", "true", "yes", "y", "published", "live"})


def plain_text(rich_text: list[dict[str, Any]] | None) -> str:
    if not rich_text:
        return ""
    return "".join(item.get("plain_text", "") for item in rich_text)


def find_property(
    properties: dict[str, Any], preferred_name: str, fallbacks: list[str]
) -> dict[str, Any] | None:
    for name in [preferred_name, *fallbacks]:
        if not name:
            continue
        if name in properties:
            return properties[name]
        lowered = name.lower()
        for key, value in properties.items():
            if key.lower() == lowered:
                return value
    return None


def property_text(prop: dict[str, Any] | None) -> str | None:
    """Text value of a property, or None when it is empty or of an unsupported type."""
    if not prop:
        return None

    match prop.get("type"):
        case "title":
            return plain_text(prop.get("title")).strip() or None
        case "rich_text":
            return plain_text(prop.get("rich_text")).strip() or None
        case "url" | "email" | "phone_number" as kind:
            return prop.get(kind) or None
        case "select" | "status" as kind:
            option = prop.get(kind) or {}
            return option.get("name") or None
        case "number":
            number = prop.get("number")
            if isinstance(number, bool) or not isinstance(number, int | float):
                return None
            return str(number)
        case _:
            return None


def property_checkbox(prop: dict[str, Any] | None, fallback: bool = True) -> bool:
    """Truthiness of a checkbox-like property. Missing properties count as ``fallback``."""
    if not prop:
        return fallback
    if prop.get("type") == "checkbox":
        return bool(prop.get("checkbox"))
    text = property_text(prop)
    if not text:
        return fallback
    return text.lower() in _TRUTHY_TEXT


def extract_title(page: dict[str, Any]) -> str:
    """First non-empty ``title`` property of a page, else ``"Untitled"``."""
    for prop in (page.get("properties") or {}).values():
        if isinstance(prop, dict) and prop.get("type") == "title":
            title = plain_text(prop.get("title")).strip()
            if title:
                return title
    return "Untitled"


def extract_description(page: dict[str, Any], preferred_name: str) -> str | None:
    properties = page.get("properties") or {}
    return property_text(find_property(properties, preferred_name, DESCRIPTION_ALIASES))
