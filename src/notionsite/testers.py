"""Font-preview ("type tester") widgets.

Authors embed a tester in a Notion page in one of two ways:

- a paragraph whose whole text is a marker: ``[[tester: typecheck | caption]]``,
  ``{{tester: typecheck}}`` or bare ``tester: typecheck | caption``
  (``type-tester`` / ``type tester`` / ``typetester`` also work);
- an embed block pointing at one of the hidden ``/<font>-type-tester`` pages.

A marker without an alias uses the default tester of the page it sits on.
"""

from __future__ import annotations

import re
from urllib.parse import urljoin, urlsplit

from pydantic import BaseModel, ConfigDict


class TesterConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    font_family: str
    font_woff2: str
    font_woff: str | None = None
    font_size_px: int = 60
    line_height: float = 1.12
    text_color: str = "#fff"


class TesterMarker(BaseModel):
    model_config = ConfigDict(frozen=True)

    alias: str | None = None
    caption: str | None = None


class PlaygroundFont(TesterConfig):
    id: str
    name: str
    license_label: str
    license_href: str
    glyph_count: int
    release_year: int
    see_more_href: str


_CDN = "https://cdn.jsdelivr.net/gh/afzalaex"
_CC0 = "https://creativecommons.org/share-your-work/public-domain/cc0/"

TESTER_CONFIGS: dict[str, TesterConfig] = {
    "/typecheck-type-tester": TesterConfig(
        font_family="TypeCheck",
        font_woff2=f"{_CDN}/TypeCheck@main/TypeCheck.woff2",
        font_woff=f"{_CDN}/TypeCheck@main/TypeCheck.woff",
        font_size_px=60,
        line_height=1.12,
    ),
    "/aextract-type-tester": TesterConfig(
        font_family="Aextract",
        font_woff2=f"{_CDN}/Aextract@main/Aextract-Regular.woff2",
        font_woff=f"{_CDN}/Aextract@main/Aextract-Regular.woff",
        font_size_px=60,
        line_height=1.12,
    ),
    "/nounty-type-tester": TesterConfig(
        font_family="Nounty",
        font_woff2=f"{_CDN}/Nounty@main/Nounty.woff2",
        font_woff=f"{_CDN}/Nounty@main/Nounty.woff",
        font_size_px=56,
        line_height=1.1,
    ),
    "/aexpective-type-tester": TesterConfig(
        font_family="AEXPECTIVE",
        font_woff2=f"{_CDN}/AEXPECTIVE@main/AEXPECTIVE.woff2",
        font_woff=f"{_CDN}/AEXPECTIVE@main/AEXPECTIVE.woff",
        font_size_px=42,
        line_height=1.1,
    ),
    "/aextract36-type-tester": TesterConfig(
        font_family="AEXTRACT36",
        font_woff2=f"{_CDN}/AEXTRACT36@main/AEXTRACT36.woff2",
        font_woff=f"{_CDN}/AEXTRACT36@main/AEXTRACT36.woff",
        font_size_px=36,
        line_height=1.1,
    ),
}

TESTER_ALIASES: dict[str, str] = {
    "typecheck": "/typecheck-type-tester",
    "aextract": "/aextract-type-tester",
    "aextract36": "/aextract36-type-tester",
    "nounty": "/nounty-type-tester",
    "aexpective": "/aexpective-type-tester",
}

DEFAULT_TESTER_BY_PAGE_SLUG: dict[str, str] = {
    "/typecheck": "/typecheck-type-tester",
    "/aextract": "/aextract-type-tester",
    "/aextract36": "/aextract36-type-tester",
    "/nounty": "/nounty-type-tester",
    "/aexpective": "/aexpective-type-tester",
}


def _playground_font(
    font_id: str,
    name: str,
    *,
    license_label: str = "CC0",
    license_href: str = _CC0,
    glyph_count: int,
    release_year: int,
) -> PlaygroundFont:
    tester = TESTER_CONFIGS[TESTER_ALIASES[font_id]]
    return PlaygroundFont(
        **tester.model_dump(),
        id=font_id,
        name=name,
        license_label=license_label,
        license_href=license_href,
        glyph_count=glyph_count,
        release_year=release_year,
        see_more_href=f"https://aex.design/{font_id}",
    )


PLAYGROUND_FONTS: list[PlaygroundFont] = [
    _playground_font("typecheck", "TypeCheck", glyph_count=80, release_year=2023),
    _playground_font("nounty", "Nounty", glyph_count=89, release_year=2023),
    _playground_font("aexpective", "AEXPECTIVE", glyph_count=42, release_year=2022),
    _playground_font(
        "aextract",
        "Aextract",
        license_label="One",
        license_href="https://aex.design/license-one",
        glyph_count=98,
        release_year=2022,
    ),
    _playground_font("aextract36", "AEXTRACT36", glyph_count=36, release_year=2021),
]

_KEYWORD = r"(?:tester|type[-\s]?tester)"
_BRACKET_MARKER_RE = re.compile(
    r"^(?:\[\[|\{\{)\s*" + _KEYWORD + r"\s*(?::\s*([a-z0-9/_-]+))?"
    r"(?:\s*\|\s*([^}\]]+))?\s*(?:\]\]|\}\})$",
    re.IGNORECASE,
)
_INLINE_MARKER_RE = re.compile(
    r"^" + _KEYWORD + r"(?:\s*:\s*([a-z0-9/_-]+))?(?:\s*\|\s*(.+))?$",
    re.IGNORECASE,
)


def parse_tester_marker(text: str) -> TesterMarker | None:
    """Parse a marker that makes up the whole (trimmed) text, else None."""
    marker = text.strip()
    if not marker:
        return None

    match = _BRACKET_MARKER_RE.match(marker) or _INLINE_MARKER_RE.match(marker)
    if match is None:
        return None

    alias = (match.group(1) or "").strip().lower()
    caption = (match.group(2) or "").strip()
    return TesterMarker(alias=alias or None, caption=caption or None)


def tester_from_alias(alias: str) -> TesterConfig | None:
    """Alias table first, then treat the alias itself as a tester path."""
    normalized = alias.strip().lower()
    if not normalized:
        return None
    path = TESTER_ALIASES.get(normalized) or (
        normalized if normalized.startswith("/") else f"/{normalized}"
    )
    return TESTER_CONFIGS.get(path)


def tester_from_marker(marker: TesterMarker, page_slug: str | None) -> TesterConfig | None:
    if marker.alias:
        return tester_from_alias(marker.alias)
    if not page_slug:
        return None
    default_path = DEFAULT_TESTER_BY_PAGE_SLUG.get(page_slug)
    return TESTER_CONFIGS.get(default_path) if default_path else None


def _normalize_embed_path(path: str) -> str:
    collapsed = re.sub(r"/+", "/", path)
    if collapsed == "/":
        return collapsed
    return collapsed.rstrip("/")


def tester_from_url(raw_url: str, site_url: str) -> TesterConfig | None:
    """Tester for an embed URL pointing at a known tester path (any host)."""
    try:
        path = urlsplit(urljoin(f"{site_url}/", raw_url)).path
    except ValueError:
        return None
    return TESTER_CONFIGS.get(_normalize_embed_path(path))
