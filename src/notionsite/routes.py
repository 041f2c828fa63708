"""Route table: which slugs exist and which Notion page backs each one.

Routes come from a Notion database when one is configured and yields entries,
otherwise from the static route map JSON file. The table is cached with
stale-while-revalidate semantics and refreshed wholesale.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from notionsite.cache import Clock, SingleFlight, TimedCache
from notionsite.errors import NotionSiteError
from notionsite.models.routes import RouteEntry
from notionsite.notion import paginate
from notionsite.properties import (
    DESCRIPTION_ALIASES,
    PUBLISHED_ALIASES,
    SLUG_ALIASES,
    extract_title,
    find_property,
    property_checkbox,
    property_text,
)
from notionsite.slugs import is_hidden_slug, normalize_page_id, normalize_slug

if TYPE_CHECKING:
    from notionsite.config import NotionSettings, Settings
    from notionsite.protocols import NotionClientProtocol

log = structlog.get_logger()

ROUTES_KEY = "routes"


def dedupe_routes(routes: list[RouteEntry], *, include_hidden: bool = False) -> list[RouteEntry]:
    """First entry per slug wins; result sorted by slug.

    Hidden slugs are dropped unless ``include_hidden`` is set.
    """
    by_slug: dict[str, RouteEntry] = {}
    for route in routes:
        by_slug.setdefault(route.slug, route)
    return sorted(
        (
            route
            for route in by_slug.values()
            if include_hidden or not is_hidden_slug(route.slug)
        ),
        key=lambda route: route.slug,
    )


def load_static_routes(
    path: Path, home_page_id: str | None = None, *, include_hidden: bool = False
) -> list[RouteEntry]:
    """Load the route map file: a JSON list of ``{slug, pageId, title?, description?}``.

    Entries without a usable slug or page id are skipped. A missing or
    unreadable file yields an empty list (plus the synthesized home route).
    """
    raw_entries: list[Any] = []
    try:
        loaded = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(loaded, list):
            raw_entries = loaded
        else:
            log.warning("route_map_invalid", path=str(path), reason="not_a_list")
    except FileNotFoundError:
        log.warning("route_map_missing", path=str(path))
    except (OSError, ValueError):
        log.warning("route_map_invalid", path=str(path), reason="unreadable", exc_info=True)

    entries: list[RouteEntry] = []
    for raw in raw_entries:
        if not isinstance(raw, dict):
            continue
        slug = normalize_slug(raw["slug"]) if isinstance(raw.get("slug"), str) else ""
        page_id = raw["pageId"].strip() if isinstance(raw.get("pageId"), str) else ""
        if not slug or not page_id:
            continue
        entries.append(
            RouteEntry(
                slug=slug,
                page_id=normalize_page_id(page_id),
                title=raw["title"] if isinstance(raw.get("title"), str) else None,
                description=(
                    raw["description"] if isinstance(raw.get("description"), str) else None
                ),
                source="map",
            )
        )

    home_page_id = (home_page_id or "").strip()
    if home_page_id and not any(route.slug == "/" for route in entries):
        entries.insert(0, RouteEntry(slug="/", page_id=normalize_page_id(home_page_id), source="map"))

    return dedupe_routes(entries, include_hidden=include_hidden)


def _route_from_database_page(page: dict[str, Any], settings: NotionSettings) -> RouteEntry | None:
    """Build a route from one database row, or None when it is not publishable."""
    properties = page.get("properties") or {}

    slug_value = property_text(find_property(properties, settings.slug_property, SLUG_ALIASES))
    if not slug_value:
        return None

    slug = normalize_slug(slug_value)
    published = find_property(properties, settings.published_property, PUBLISHED_ALIASES)
    if not property_checkbox(published, True):
        return None

    description = find_property(properties, settings.description_property, DESCRIPTION_ALIASES)
    return RouteEntry(
        slug=slug,
        page_id=normalize_page_id(page["id"]),
        title=extract_title(page),
        description=property_text(description),
        source="database",
    )


async def load_database_routes(
    client: NotionClientProtocol, settings: NotionSettings, *, include_hidden: bool = False
) -> list[RouteEntry]:
    """Query every page of the routes database and keep the published ones."""
    database_id = (settings.database_id or "").strip()
    if not database_id:
        return []

    database_id = normalize_page_id(database_id)
    routes: list[RouteEntry] = []

    async def fetch(cursor: str | None) -> dict[str, Any]:
        return await client.query_database(database_id, start_cursor=cursor)

    async for result in paginate(fetch):
        if result.get("object") != "page" or "properties" not in result:
            continue
        route = _route_from_database_page(result, settings)
        if route is not None:
            routes.append(route)

    return dedupe_routes(routes, include_hidden=include_hidden)


def find_route(routes: list[RouteEntry], slug: str) -> RouteEntry | None:
    return next((route for route in routes if route.slug == slug), None)


class RouteTable:
    """Cached route table with single-flight, stale-while-revalidate refresh."""

    def __init__(
        self,
        client: NotionClientProtocol,
        settings: Settings,
        *,
        clock: Clock = time.monotonic,
    ) -> None:
        self._client = client
        self._settings = settings
        self._cache: TimedCache[str, list[RouteEntry]] = TimedCache(
            settings.cache.ttl_seconds, clock=clock
        )
        self._refreshes: SingleFlight[str, list[RouteEntry]] = SingleFlight("routes")

    async def get_routes(self) -> list[RouteEntry]:
        """Return the public route table, sorted by slug. Hidden slugs are left out."""
        return [route for route in await self._table() if not is_hidden_slug(route.slug)]

    async def find(self, slug: str) -> RouteEntry | None:
        """Look up one normalised slug, hidden slugs included."""
        return find_route(await self._table(), slug)

    async def _table(self) -> list[RouteEntry]:
        """The full table.

        Fresh cache hit: returned as is. Stale hit: returned immediately while
        one background refresh runs. Miss: awaits the shared refresh.
        """
        cached = self._cache.read_fresh(ROUTES_KEY)
        if cached is not None:
            return cached.value

        stale = self._cache.read_stale(ROUTES_KEY)
        if stale is not None:
            log.info("cache_hit", cache="routes", stale=True)
            self._refreshes.run(ROUTES_KEY, self.refresh)
            return stale.value

        log.info("cache_miss", cache="routes")
        return await self._refreshes.wait(ROUTES_KEY, self.refresh)

    async def all_slugs(self) -> list[str]:
        return [route.slug for route in await self.get_routes()]

    async def refresh(self) -> list[RouteEntry]:
        """Rebuild the full table from the database, falling back to the static map.

        Never raises for backend failures. An unexpected error keeps the stale
        table when there is one.
        """
        log.info("routes_refresh_started")
        try:
            routes, source = await self._load()
        except Exception:
            log.error("routes_refresh_failed", exc_info=True)
            stale = self._cache.read_stale(ROUTES_KEY)
            if stale is not None:
                return stale.value
            routes, source = self._load_static(), "map"

        self._cache.write(ROUTES_KEY, routes)
        log.info("routes_loaded", source=source, count=len(routes))
        return routes

    async def _load(self) -> tuple[list[RouteEntry], str]:
        if (self._settings.notion.database_id or "").strip():
            try:
                routes = await load_database_routes(
                    self._client, self._settings.notion, include_hidden=True
                )
            except NotionSiteError as exc:
                log.warning("database_routes_failed", code=exc.code, message=exc.message)
                routes = []
            if any(not is_hidden_slug(route.slug) for route in routes):
                return routes, "database"
            log.info("database_routes_empty_using_static")

        return self._load_static(), "map"

    def _load_static(self) -> list[RouteEntry]:
        return load_static_routes(
            Path(self._settings.site.route_map_path),
            self._settings.notion.home_page_id,
            include_hidden=True,
        )

    def invalidate(self) -> None:
        self._cache.invalidate()
