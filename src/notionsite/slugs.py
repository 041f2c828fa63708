"""Slug and page-id normalisation.

Pure helpers shared by the route table, the page resolver and the renderer.
Every function here is total: malformed input produces a best-effort value,
never an exception.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

_SCHEME_HOST_RE = re.compile(r"^[a-z][a-z0-9+.-]*://[^/?#]*", re.IGNORECASE)
_QUERY_OR_FRAGMENT_RE = re.compile(r"[?#]")
_HIDDEN_SLUG_RE = re.compile(r"-type-tester$", re.IGNORECASE)
_COMPACT_ID_RE = re.compile(r"^[0-9a-f]{32}$", re.IGNORECASE)


def normalize_slug(raw: str) -> str:
    """Map any path-like string to its canonical slug.

    Steps (order matters):
      1. Strip surrounding whitespace
      2. Strip a ``scheme://host`` prefix
      3. Strip query string and fragment
      4. Drop empty segments

    ``"https://aex.design/foo/"``, ``"foo"`` and ``"//foo?x=1"`` all map to
    ``"/foo"``; anything without a segment maps to ``"/"``.
    """
    value = _SCHEME_HOST_RE.sub("", raw.strip())
    value = _QUERY_OR_FRAGMENT_RE.split(value, maxsplit=1)[0]
    return "/" + "/".join(segment for segment in value.split("/") if segment)


def slug_from_segments(segments: Sequence[str] | None) -> str:
    """Build a slug from catch-all route segments. No segments is the root."""
    if not segments:
        return "/"
    return normalize_slug("/".join(segments))


def slug_from_title(title: str) -> str:
    """Derive a fallback slug from a page title: ``"Design Pack #1"`` → ``"/design-pack-1"``."""
    normalized = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return normalize_slug(f"/{normalized}" if normalized else "/")


def is_hidden_slug(slug: str) -> bool:
    """Hidden routes back embeddable widgets.

    They resolve when requested directly but never show up in route tables,
    navigation or the sitemap.
    """
    return _HIDDEN_SLUG_RE.search(slug) is not None


def normalize_page_id(raw: str) -> str:
    """Return the dashed UUID form of a Notion id, or the trimmed input."""
    trimmed = raw.strip()
    compact = trimmed.replace("-", "")
    if not _COMPACT_ID_RE.match(compact):
        return trimmed
    compact = compact.lower()
    return f"{compact[:8]}-{compact[8:12]}-{compact[12:16]}-{compact[16:20]}-{compact[20:]}"


def compact_page_id(raw: str) -> str:
    """Return the dash-free lowercase form used as a lookup key."""
    return raw.strip().replace("-", "").lower()
