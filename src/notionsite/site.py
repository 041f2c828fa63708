"""Site-level assembly over the route table: navigation, sitemap, page metadata."""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from typing import TYPE_CHECKING
from urllib.parse import urljoin

from pydantic import BaseModel, ConfigDict, Field

from notionsite.slugs import is_hidden_slug, normalize_slug

if TYPE_CHECKING:
    from notionsite.config import SiteSettings
    from notionsite.models.page import PageRecord
    from notionsite.models.routes import RouteEntry

SITEMAP_NAMESPACE = "http://www.sitemaps.org/schemas/sitemap/0.9"

_CC0_HREF = "https://creativecommons.org/share-your-work/public-domain/cc0/"
_STORE = "https://store.aex.design/l"


class NavItem(BaseModel):
    slug: str
    label: str
    children: list[NavItem] = Field(default_factory=list)


class SitemapEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    loc: str
    changefreq: str = "weekly"
    priority: float


class PageAction(BaseModel):
    """A call-to-action link shown above a product page's header."""

    model_config = ConfigDict(frozen=True)

    label: str
    href: str
    css_class: str


class PageMetadata(BaseModel):
    title: str
    document_title: str
    description: str | None = None
    canonical_url: str
    og_type: str | None = None


PAGE_ACTIONS: dict[str, list[PageAction]] = {
    "/p5nels": [
        PageAction(label="CC0", href=_CC0_HREF, css_class="cc0"),
        PageAction(label="Get-Free", href=f"{_STORE}/p5nels", css_class="get-button"),
    ],
    "/typecheck": [
        PageAction(
            label="Mint NFT", href="https://opensea.io/collection/typecheck", css_class="mint-link"
        ),
        PageAction(label="Get-Free", href=f"{_STORE}/typecheck", css_class="get-button"),
    ],
    "/nounty": [
        PageAction(
            label="Mint NFT",
            href="https://opensea.io/collection/nounty-font",
            css_class="mint-link",
        ),
        PageAction(label="Get-Free", href=f"{_STORE}/nounty", css_class="get-button"),
    ],
    "/aexpective": [
        PageAction(
            label="Mint NFT",
            href="https://zora.co/collect/eth:0xa2b28076129f8cb404202077f3cbda8a513b62ed",
            css_class="mint-link",
        ),
        PageAction(label="Get-Free", href=f"{_STORE}/aexpective", css_class="get-button"),
    ],
    "/designassetpack2": [
        PageAction(
            label="License-one", href="https://aex.design/license-one", css_class="license-one"
        ),
        PageAction(label="Buy-$1", href=f"{_STORE}/designassetpack2", css_class="buy-button"),
    ],
    "/aextract": [
        PageAction(
            label="License-one", href="https://aex.design/license-one", css_class="license-one"
        ),
        PageAction(label="Buy-$1", href=f"{_STORE}/aextract", css_class="buy-button"),
    ],
    "/aextract36": [
        PageAction(label="CC0", href=_CC0_HREF, css_class="cc0"),
        PageAction(label="Get-Free", href=f"{_STORE}/aextract36", css_class="get-button"),
    ],
    "/designassetpack1": [
        PageAction(label="CC0", href=_CC0_HREF, css_class="cc0"),
        PageAction(label="Get-Free", href=f"{_STORE}/designassetpack1", css_class="get-button"),
    ],
}


def absolute_url(site_url: str, slug: str) -> str:
    return urljoin(f"{site_url}/", normalize_slug(slug))


def page_css_class(slug: str) -> str:
    """``index`` for the root, else the slug path with ``/`` as ``-``."""
    if slug == "/":
        return "index"
    return slug.lstrip("/").replace("/", "-")


def segment_label(segment: str) -> str:
    return re.sub(r"[-_]+", " ", segment).strip()


# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------


def build_navigation(routes: list[RouteEntry]) -> list[NavItem]:
    """Group routes by their first path segment.

    Top-level routes become items; deeper routes are listed under the item for
    their first segment, which is synthesized from the segment name when the
    section has no route of its own. The root and hidden routes are skipped.
    """
    items: dict[str, NavItem] = {}
    nested: list[RouteEntry] = []

    for route in sorted(routes, key=lambda route: route.slug):
        if route.slug == "/" or is_hidden_slug(route.slug):
            continue
        segments = [segment for segment in route.slug.split("/") if segment]
        if len(segments) == 1:
            items[route.slug] = NavItem(
                slug=route.slug, label=route.title or segment_label(segments[0])
            )
        else:
            nested.append(route)

    for route in nested:
        first = route.slug.split("/")[1]
        parent_slug = f"/{first}"
        parent = items.get(parent_slug)
        if parent is None:
            parent = items[parent_slug] = NavItem(slug=parent_slug, label=segment_label(first))
        remainder = route.slug[len(parent_slug) + 1 :]
        label = route.title or " / ".join(
            segment_label(segment) for segment in remainder.split("/") if segment
        )
        parent.children.append(NavItem(slug=route.slug, label=label))

    return sorted(items.values(), key=lambda item: item.slug)


# ---------------------------------------------------------------------------
# Sitemap
# ---------------------------------------------------------------------------


def build_sitemap(slugs: list[str], site: SiteSettings) -> list[SitemapEntry]:
    """One entry per public route plus the static pages, in route order."""
    seen: set[str] = set()
    entries: list[SitemapEntry] = []
    for raw in [*slugs, *site.static_paths]:
        slug = normalize_slug(raw)
        if slug in seen or is_hidden_slug(slug):
            continue
        seen.add(slug)
        entries.append(
            SitemapEntry(
                loc=absolute_url(site.url, slug),
                priority=1.0 if slug == "/" else 0.7,
            )
        )
    return entries


def render_sitemap_xml(entries: list[SitemapEntry]) -> bytes:
    urlset = ET.Element("urlset", xmlns=SITEMAP_NAMESPACE)
    for entry in entries:
        url = ET.SubElement(urlset, "url")
        ET.SubElement(url, "loc").text = entry.loc
        ET.SubElement(url, "changefreq").text = entry.changefreq
        ET.SubElement(url, "priority").text = f"{entry.priority:.1f}"
    return ET.tostring(urlset, encoding="utf-8", xml_declaration=True)


# ---------------------------------------------------------------------------
# Page metadata
# ---------------------------------------------------------------------------


def page_metadata(page: PageRecord, site: SiteSettings) -> PageMetadata:
    """Head metadata for a page. The root page also carries OpenGraph fields."""
    is_root = page.slug == "/"
    return PageMetadata(
        title=page.title,
        document_title=f"{page.title} | {site.name}" if page.title else site.name,
        description=page.description if is_root else None,
        canonical_url=absolute_url(site.url, page.slug),
        og_type="website" if is_root else None,
    )


def page_actions(slug: str) -> list[PageAction]:
    return PAGE_ACTIONS.get(slug, [])
