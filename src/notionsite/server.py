"""Web entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Create AppState in the Starlette lifespan
- Map requests onto the route table, page resolver and renderer
- Start uvicorn
"""

from __future__ import annotations

import logging
import secrets
import sys
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog
import uvicorn
from jinja2 import Environment, PackageLoader, select_autoescape
from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from starlette.routing import Route
from starlette.templating import Jinja2Templates

from notionsite import __version__
from notionsite.config import Settings
from notionsite.errors import ErrorCode, NotionSiteError
from notionsite.images import open_image_stream, proxy_headers, resolve_image_url
from notionsite.notion import NotionClient, build_http_client
from notionsite.pages import PageResolver
from notionsite.renderer import BlockRenderer, render_type_tester
from notionsite.routes import RouteTable
from notionsite.site import (
    absolute_url,
    build_navigation,
    build_sitemap,
    page_actions,
    page_css_class,
    page_metadata,
    render_sitemap_xml,
)
from notionsite.slugs import normalize_page_id, slug_from_segments
from notionsite.state import AppState
from notionsite.testers import PLAYGROUND_FONTS

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from starlette.requests import Request

    from notionsite.protocols import NotionClientProtocol

log = structlog.get_logger()

PLAYGROUND_FOOTER_LINKS = [
    ("Newsletter", "http://letter.aex.design/"),
    ("\N{MATHEMATICAL DOUBLE-STRUCK CAPITAL X}", "https://x.com/aexdesigns"),
    ("Instagram", "http://instagram.com/aex_designs"),
]


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def build_templates() -> Jinja2Templates:
    env = Environment(
        loader=PackageLoader("notionsite", "templates"),
        autoescape=select_autoescape(["html", "xml"]),
    )
    return Jinja2Templates(env=env)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _state(request: Request) -> AppState:
    return request.app.state.notionsite


def _base_context(state: AppState) -> dict[str, object]:
    return {"site": state.settings.site, "version": __version__}


async def _render_page(request: Request, slug: str) -> Response:
    state = _state(request)
    templates = state.templates

    try:
        page = await state.pages.get_page_by_slug(slug)
        routes = await state.routes.get_routes()
    except NotionSiteError as exc:
        log.warning("page_unavailable", slug=slug, code=exc.code, message=exc.message)
        return templates.TemplateResponse(
            request,
            "unavailable.html",
            {**_base_context(state), "error": exc},
            status_code=503,
        )

    if page is None:
        return templates.TemplateResponse(
            request, "not_found.html", _base_context(state), status_code=404
        )

    return templates.TemplateResponse(
        request,
        "page.html",
        {
            **_base_context(state),
            "page": page,
            "content": state.renderer.render(page.blocks, page.slug, routes),
            "meta": page_metadata(page, state.settings.site),
            "page_class": page_css_class(page.slug),
            "article_id": f"block-{page.id.replace('-', '')}",
            "actions": page_actions(page.slug),
            "navigation": build_navigation(routes),
        },
    )


async def home(request: Request) -> Response:
    return await _render_page(request, "/")


async def site_page(request: Request) -> Response:
    path: str = request.path_params["path"]
    return await _render_page(request, slug_from_segments(path.split("/")))


async def type_playground(request: Request) -> Response:
    state = _state(request)
    fonts = [
        {"font": font, "tester": render_type_tester(f"typeplayground-{font.id}", font)}
        for font in PLAYGROUND_FONTS
    ]
    return state.templates.TemplateResponse(
        request,
        "typeplayground.html",
        {
            **_base_context(state),
            "fonts": fonts,
            "footer_links": PLAYGROUND_FOOTER_LINKS,
            "canonical_url": absolute_url(state.settings.site.url, "/typeplayground"),
        },
    )


async def revalidate(request: Request) -> Response:
    """Drop cached content. Body ``{"slug": ...}`` limits it to one page."""
    state = _state(request)
    expected = (state.settings.site.revalidate_secret or "").strip()
    if not expected:
        return JSONResponse(
            {"ok": False, "error": "NOTIONSITE__SITE__REVALIDATE_SECRET is not configured."},
            status_code=500,
        )

    provided = request.headers.get("x-revalidate-secret") or request.query_params.get("secret")
    if provided is None or not secrets.compare_digest(provided.encode(), expected.encode()):
        log.warning("revalidate_unauthorized")
        return JSONResponse({"ok": False, "error": "Unauthorized."}, status_code=401)

    slug: str | None = None
    try:
        body = await request.json()
    except ValueError:
        body = None  # Body is optional
    if isinstance(body, dict) and isinstance(body.get("slug"), str) and body["slug"].strip():
        slug = body["slug"]

    state.invalidate(slug)
    scope = "slug" if slug else "all"
    log.info("cache_invalidated", scope=scope, slug=slug)

    return JSONResponse(
        {
            "ok": True,
            "revalidated": True,
            "scope": scope,
            "slug": slug,
            "at": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        }
    )


async def notion_image(request: Request) -> Response:
    state = _state(request)
    block_id = normalize_page_id(request.path_params["block_id"])
    if not block_id:
        return PlainTextResponse("Missing block id", status_code=400)

    try:
        image_url = await resolve_image_url(state.notion, block_id)
    except NotionSiteError as exc:
        if exc.code == ErrorCode.IMAGE_NOT_FOUND:
            return PlainTextResponse("Not a Notion hosted image block", status_code=404)
        log.warning("image_resolve_failed", block_id=block_id, code=exc.code, message=exc.message)
        return PlainTextResponse("Failed to resolve image source", status_code=502)

    try:
        upstream = await open_image_stream(state.http_client, image_url)
    except NotionSiteError as exc:
        log.warning("image_fetch_failed", block_id=block_id, message=exc.message)
        return PlainTextResponse("Failed to fetch image", status_code=502)

    return StreamingResponse(
        upstream.aiter_raw(),
        headers=proxy_headers(upstream),
        background=BackgroundTask(upstream.aclose),
    )


async def sitemap(request: Request) -> Response:
    state = _state(request)
    entries = build_sitemap(await state.routes.all_slugs(), state.settings.site)
    return Response(render_sitemap_xml(entries), media_type="application/xml")


async def not_found(request: Request, exc: Exception) -> Response:
    state = _state(request)
    return state.templates.TemplateResponse(
        request, "not_found.html", _base_context(state), status_code=404
    )


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Settings | None = None,
    *,
    notion_client: NotionClientProtocol | None = None,
) -> Starlette:
    """Build the ASGI app. ``notion_client`` replaces the real Notion client (tests)."""
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncGenerator[None, None]:
        log.info("server_starting", version=__version__)

        http_client = build_http_client(settings.notion)
        notion = notion_client or NotionClient(http_client, settings.notion)
        routes = RouteTable(notion, settings)

        app.state.notionsite = AppState(
            settings=settings,
            http_client=http_client,
            notion=notion,
            routes=routes,
            pages=PageResolver(notion, routes, settings),
            renderer=BlockRenderer(settings.site, max_depth=settings.notion.max_block_depth),
            templates=build_templates(),
        )

        log.info(
            "server_started",
            version=__version__,
            database_mode=bool((settings.notion.database_id or "").strip()),
            cache_ttl_seconds=settings.cache.ttl_seconds,
        )

        try:
            yield
        finally:
            await http_client.aclose()
            log.info("server_stopping")

    return Starlette(
        routes=[
            Route("/api/notion-revalidate", revalidate, methods=["POST"]),
            Route("/api/notion-image/{block_id}", notion_image, methods=["GET"]),
            Route("/sitemap.xml", sitemap, methods=["GET"]),
            Route("/typeplayground", type_playground, methods=["GET"]),
            Route("/", home, methods=["GET"]),
            Route("/{path:path}", site_page, methods=["GET"]),
        ],
        exception_handlers={404: not_found},
        lifespan=lifespan,
    )


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    settings = Settings()
    _setup_logging(settings)

    uvicorn.run(
        create_app(settings),
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,  # Disable uvicorn's default logging; structlog handles it
    )


if __name__ == "__main__":
    main()
