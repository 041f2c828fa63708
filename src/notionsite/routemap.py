"""Route-map maintenance: ``notionsite-routemap seed|fill``.

``seed`` builds a skeleton route map from a live sitemap; ``fill`` visits each
route on a live site and copies the Notion page id out of the rendered HTML.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urljoin, urlsplit

import httpx
import structlog

from notionsite import __version__
from notionsite.slugs import compact_page_id

log = structlog.get_logger()

DEFAULT_SITEMAP_URL = "https://aex.design/sitemap.xml"
DEFAULT_SITE_URL = "https://aex.design"
DEFAULT_ROUTE_MAP = "content/route-map.json"

_LOC_RE = re.compile(r"<loc>([^<]+)</loc>")
_ARTICLE_ID_RE = re.compile(r'article id="block-([a-f0-9]{32})"', re.IGNORECASE)
_ESCAPED_BLOCK_ID_RE = re.compile(r'\\"blockId\\":\\"([a-f0-9-]{36})\\"', re.IGNORECASE)
_BLOCK_ID_RE = re.compile(r'"blockId":"([a-f0-9-]{36})"', re.IGNORECASE)
_ESCAPED_NOTION_PAGE_RE = re.compile(r'\\"notionPage\\":\\"([a-f0-9]{32})\\"', re.IGNORECASE)
_NOTION_PAGE_RE = re.compile(r'"notionPage":"([a-f0-9]{32})"', re.IGNORECASE)


@dataclass
class FillResult:
    slug: str
    status: str  # "ok", "invalid", "no_match", "fetch_error" or "http_<code>"
    page_id: str = ""
    error: str | None = None


# ---------------------------------------------------------------------------
# seed
# ---------------------------------------------------------------------------


def extract_sitemap_slugs(xml: str) -> list[str]:
    """Unique, sorted paths of every ``<loc>``; ``/`` is always first."""
    slugs = sorted({urlsplit(loc.strip()).path or "/" for loc in _LOC_RE.findall(xml)})
    if "/" in slugs:
        slugs.remove("/")
    return ["/", *slugs]


async def seed_route_map(client: httpx.AsyncClient, sitemap_url: str) -> list[dict[str, str]]:
    response = await client.get(sitemap_url)
    response.raise_for_status()
    return [{"slug": slug, "pageId": ""} for slug in extract_sitemap_slugs(response.text)]


# ---------------------------------------------------------------------------
# fill
# ---------------------------------------------------------------------------


def extract_page_id(html: str, slug: str) -> str:
    """Find the Notion page id in a rendered page, compact form, or ``""``.

    Tried in order: the article element id, a ``blockId`` scoped to this
    slug's ``uri`` in the embedded page data, any ``blockId``, then the
    ``notionPage`` root id.
    """
    if match := _ARTICLE_ID_RE.search(html):
        return compact_page_id(match.group(1))

    uri_scoped = re.compile(
        r'\\"uri\\":\\"' + re.escape(slug) + r'\\"[\s\S]{0,5000}?\\"blockId\\":\\"([a-f0-9-]{36})\\"',
        re.IGNORECASE,
    )
    if match := uri_scoped.search(html):
        return compact_page_id(match.group(1))

    for pattern in (_ESCAPED_BLOCK_ID_RE, _BLOCK_ID_RE, _ESCAPED_NOTION_PAGE_RE, _NOTION_PAGE_RE):
        if match := pattern.search(html):
            return compact_page_id(match.group(1))

    return ""


async def fill_route_map(
    client: httpx.AsyncClient, site_url: str, routes: list[dict[str, Any]]
) -> list[FillResult]:
    """Set ``pageId`` on each route in place from the live site."""
    base = f"{site_url.rstrip('/')}/"
    results: list[FillResult] = []

    for route in routes:
        slug = route.get("slug") if isinstance(route, dict) else None
        if not isinstance(slug, str) or not slug.startswith("/"):
            results.append(FillResult(slug=str(slug), status="invalid"))
            continue

        try:
            response = await client.get(urljoin(base, slug))
        except httpx.HTTPError as exc:
            log.warning("route_fetch_failed", slug=slug, error=str(exc))
            results.append(FillResult(slug=slug, status="fetch_error", error=str(exc)))
            continue

        if not response.is_success:
            results.append(FillResult(slug=slug, status=f"http_{response.status_code}"))
            continue

        page_id = extract_page_id(response.text, slug)
        if not page_id:
            results.append(FillResult(slug=slug, status="no_match"))
            continue

        route["pageId"] = page_id
        results.append(FillResult(slug=slug, status="ok", page_id=page_id))

    return results


def write_route_map(path: Path, routes: list[Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(routes, indent=2) + "\n", encoding="utf-8")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _build_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(30.0),
        follow_redirects=True,
        headers={"User-Agent": f"notionsite-route-map-filler/{__version__}"},
    )


async def _seed(args: argparse.Namespace) -> int:
    async with _build_client() as client:
        routes = await seed_route_map(client, args.sitemap_url)
    output = Path(args.output).resolve()
    write_route_map(output, routes)
    print(f"Wrote {len(routes)} routes to {output}")
    return 0


async def _fill(args: argparse.Namespace) -> int:
    path = Path(args.route_map).resolve()
    routes = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(routes, list):
        raise SystemExit(f"Expected an array in {path}")

    async with _build_client() as client:
        results = await fill_route_map(client, args.site_url, routes)
    write_route_map(path, routes)

    failed = [result for result in results if result.status != "ok"]
    print(f"Filled {len(results) - len(failed)}/{len(results)} slugs in {path}")
    if failed:
        print("Slugs needing manual pageId:")
        for result in failed:
            print(f"- {result.slug} ({result.status})")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="notionsite-routemap", description=__doc__)
    subcommands = parser.add_subparsers(dest="command", required=True)

    seed = subcommands.add_parser("seed", help="Create a route map from a sitemap")
    seed.add_argument("sitemap_url", nargs="?", default=DEFAULT_SITEMAP_URL)
    seed.add_argument("-o", "--output", default=DEFAULT_ROUTE_MAP, help="Route map to write")
    seed.set_defaults(handler=_seed)

    fill = subcommands.add_parser("fill", help="Fill page ids from a live site")
    fill.add_argument("site_url", nargs="?", default=DEFAULT_SITE_URL)
    fill.add_argument("-m", "--route-map", default=DEFAULT_ROUTE_MAP, help="Route map to update")
    fill.set_defaults(handler=_fill)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return asyncio.run(args.handler(args))


if __name__ == "__main__":
    raise SystemExit(main())
