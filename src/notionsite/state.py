"""Application state container.

AppState is created once in the Starlette lifespan and reached from request
handlers through ``request.app.state.notionsite``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx
    from starlette.templating import Jinja2Templates

    from notionsite.config import Settings
    from notionsite.pages import PageResolver
    from notionsite.protocols import NotionClientProtocol
    from notionsite.renderer import BlockRenderer
    from notionsite.routes import RouteTable


@dataclass
class AppState:
    """Holds all shared runtime state. Passed to every request handler."""

    settings: Settings
    http_client: httpx.AsyncClient
    notion: NotionClientProtocol
    routes: RouteTable
    pages: PageResolver
    renderer: BlockRenderer
    templates: Jinja2Templates

    def invalidate(self, slug: str | None = None) -> None:
        """Drop cached pages (one slug or all) and the route table."""
        self.pages.invalidate(slug)
        self.routes.invalidate()
