"""Block tree → HTML.

``BlockRenderer.render`` is a pure function of the block tree, the slug of the
page being rendered and a route table snapshot. Output is ``markupsafe.Markup``
so it can be dropped straight into the Jinja templates; every piece of Notion
text goes through ``escape`` on the way in.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import quote, urljoin, urlsplit

from markupsafe import Markup, escape

from notionsite.models.blocks import Block, RichText
from notionsite.slugs import compact_page_id, is_hidden_slug, normalize_slug, slug_from_title
from notionsite.testers import (
    TesterConfig,
    parse_tester_marker,
    tester_from_marker,
    tester_from_url,
)

if TYPE_CHECKING:
    from notionsite.config import SiteSettings
    from notionsite.models.routes import RouteEntry

_VOID_TAGS = frozenset({"br", "hr", "img", "input"})
_EMPTY = Markup("")

PAGE_ICON_PATH = (
    "M4.35645 15.4678H11.6367C13.0996 15.4678 13.8584 14.6953 13.8584 13.2256V7.02539C13.8584 "
    "6.0752 13.7354 5.6377 13.1406 5.03613L9.55176 1.38574C8.97754 0.804688 8.50586 0.667969 "
    "7.65137 0.667969H4.35645C2.89355 0.667969 2.13477 1.44043 2.13477 2.91016V13.2256C2.13477 "
    "14.7021 2.89355 15.4678 4.35645 15.4678ZM4.46582 14.1279C3.80273 14.1279 3.47461 13.7793 "
    "3.47461 13.1436V2.99219C3.47461 2.36328 3.80273 2.00781 4.46582 2.00781H7.37793V5.75391C7.37793 "
    "6.73145 7.86328 7.20312 8.83398 7.20312H12.5186V13.1436C12.5186 13.7793 12.1836 14.1279 "
    "11.5205 14.1279H4.46582ZM8.95703 6.02734C8.67676 6.02734 8.56055 5.9043 8.56055 "
    "5.62402V2.19238L12.334 6.02734H8.95703ZM10.4336 9.00098H5.42969C5.16992 9.00098 4.98535 "
    "9.19238 4.98535 9.43164C4.98535 9.67773 5.16992 9.86914 5.42969 9.86914H10.4336C10.6797 "
    "9.86914 10.8643 9.67773 10.8643 9.43164C10.8643 9.19238 10.6797 9.00098 10.4336 "
    "9.00098ZM10.4336 11.2979H5.42969C5.16992 11.2979 4.98535 11.4893 4.98535 11.7354C4.98535 "
    "11.9746 5.16992 12.1592 5.42969 12.1592H10.4336C10.6797 12.1592 10.8643 11.9746 10.8643 "
    "11.7354C10.8643 11.4893 10.6797 11.2979 10.4336 11.2979Z"
)

IFRAME_SANDBOX = (
    "allow-scripts allow-popups allow-forms allow-same-origin "
    "allow-popups-to-escape-sandbox allow-top-navigation-by-user-activation"
)

TESTER_DEFAULT_TEXT = "Type Your Own"
TESTER_MIN_FONT_SIZE = 10
TESTER_MAX_FONT_SIZE = 100


# ---------------------------------------------------------------------------
# Markup helpers
# ---------------------------------------------------------------------------


def tag(name: str, attrs: dict[str, Any] | None = None, *children: Any) -> Markup:
    """Build one element. ``None``/``False`` attributes are omitted, ``True`` is bare."""
    rendered_attrs = ""
    for key, value in (attrs or {}).items():
        if value is None or value is False:
            continue
        if value is True:
            rendered_attrs += f" {key}"
        else:
            rendered_attrs += f' {key}="{escape(value)}"'

    if name in _VOID_TAGS:
        return Markup(f"<{name}{rendered_attrs}>")
    inner = Markup("").join(escape(child) for child in children if child is not None)
    return Markup(f"<{name}{rendered_attrs}>") + inner + Markup(f"</{name}>")


def _join(parts: Iterable[Markup]) -> Markup:
    return Markup("").join(parts)


def _url_link(url: str) -> Markup:
    """A link showing its own URL. Unsafe URLs render as plain text."""
    if not is_safe_href(url):
        return escape(url)
    return tag("a", {"href": url, "class": "notion-link link", "data-link-uri": url}, url)


def block_dom_id(block_id: str) -> str:
    return f"block-{block_id.replace('-', '')}"


def heading_anchor_id(block_id: str) -> str:
    return block_id.replace("-", "")


def child_page_dom_id(slug: str) -> str:
    path = slug.lstrip("/").replace("/", "-")
    return f"block-{path or 'home'}"


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------


_SAFE_HREF_SCHEMES = frozenset({"http", "https", "mailto", "tel"})
_HREF_SCHEME_RE = re.compile(r"^([a-z][a-z0-9+.-]*):", re.IGNORECASE)
_HREF_IGNORED_CHARS_RE = re.compile(r"[\x00-\x20\x7f]")


def is_safe_href(href: str) -> bool:
    """Relative references and http, https, mailto or tel URLs.

    Control characters and whitespace are ignored when reading the scheme, as
    browsers ignore them.
    """
    match = _HREF_SCHEME_RE.match(_HREF_IGNORED_CHARS_RE.sub("", href))
    return match is None or match.group(1).lower() in _SAFE_HREF_SCHEMES


def is_internal_href(href: str, hostnames: Iterable[str]) -> bool:
    """Bare paths and absolute URLs on one of the site's own hosts are internal."""
    if href.startswith("/"):
        return True
    try:
        parsed = urlsplit(href)
        hostname = parsed.hostname
    except ValueError:
        return False
    return bool(parsed.scheme) and hostname is not None and hostname in set(hostnames)


def to_internal_href(href: str) -> str:
    """Strip scheme and host, keeping path, query and fragment."""
    if href.startswith("/"):
        return href
    try:
        parsed = urlsplit(href)
    except ValueError:
        return href
    result = parsed.path or "/"
    if parsed.query:
        result += f"?{parsed.query}"
    if parsed.fragment:
        result += f"#{parsed.fragment}"
    return result


def normalize_embed_url(raw_url: str, site_url: str) -> str:
    """Resolve relative embed URLs against the site and upgrade http to https."""
    try:
        resolved = urljoin(f"{site_url}/", raw_url.strip())
    except ValueError:
        return raw_url
    if resolved.startswith("http://"):
        resolved = "https://" + resolved[len("http://") :]
    return resolved


def is_embeddable_url(url: str) -> bool:
    try:
        parsed = urlsplit(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


# ---------------------------------------------------------------------------
# Route context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChildRoute:
    slug: str
    label: str


@dataclass
class RouteRenderContext:
    """Lookups derived from one route table snapshot."""

    # compact page id → slug
    slug_by_page_id: dict[str, str] = field(default_factory=dict)

    # expandable section slug → its descendant routes, deduplicated and sorted
    child_routes_by_parent: dict[str, list[ChildRoute]] = field(default_factory=dict)


def _slug_key(raw: str) -> str:
    return re.sub(r"[^a-z0-9]", "", raw.lower())


def child_label_for_parent(parent_slug: str, child_slug: str, title: str | None = None) -> str:
    """Explicit title, else the child path below the parent with dashes as spaces."""
    if title and title.strip():
        return title.strip()

    prefix = f"{normalize_slug(parent_slug)}/"
    child = normalize_slug(child_slug)
    remainder = child[len(prefix) :] if child.startswith(prefix) else child.lstrip("/")
    return " / ".join(
        re.sub(r"[-_]+", " ", segment) for segment in remainder.split("/") if segment
    )


def build_route_context(
    routes: Iterable[RouteEntry], expandable_parents: Iterable[str]
) -> RouteRenderContext:
    expandable_keys = {_slug_key(parent) for parent in expandable_parents}
    context = RouteRenderContext()

    for route in routes:
        slug = normalize_slug(route.slug)
        if route.page_id.strip():
            context.slug_by_page_id[compact_page_id(route.page_id)] = slug

        if is_hidden_slug(slug):
            continue

        segments = [segment for segment in slug.split("/") if segment]
        if len(segments) < 2:
            continue

        parent_slug = f"/{segments[0]}"
        if _slug_key(parent_slug) not in expandable_keys:
            continue

        context.child_routes_by_parent.setdefault(parent_slug, []).append(
            ChildRoute(slug=slug, label=child_label_for_parent(parent_slug, slug, route.title))
        )

    for parent_slug, children in context.child_routes_by_parent.items():
        unique = {child.slug: child for child in children}
        context.child_routes_by_parent[parent_slug] = sorted(
            unique.values(), key=lambda child: child.slug
        )

    return context


# ---------------------------------------------------------------------------
# Renderer
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _RenderState:
    page_slug: str | None
    routes: RouteRenderContext


class BlockRenderer:
    """Maps Notion blocks to the site's ``notion-*`` markup."""

    def __init__(self, site: SiteSettings, *, max_depth: int = 32) -> None:
        self._site = site
        self._max_depth = max_depth
        self._handlers: dict[str, Callable[[Block, _RenderState, int], Markup]] = {
            "heading_1": self._heading,
            "heading_2": self._heading,
            "heading_3": self._heading,
            "paragraph": self._paragraph,
            "quote": self._quote,
            "bulleted_list_item": self._list_item,
            "numbered_list_item": self._list_item,
            "to_do": self._to_do,
            "toggle": self._toggle,
            "callout": self._callout,
            "divider": self._divider,
            "code": self._code,
            "image": self._image,
            "bookmark": self._bookmark,
            "embed": self._embed,
            "child_page": self._child_page,
        }

    def render(
        self,
        blocks: Iterable[Block],
        page_slug: str | None,
        routes: Iterable[RouteEntry] = (),
    ) -> Markup:
        state = _RenderState(
            page_slug=normalize_slug(page_slug) if page_slug is not None else None,
            routes=build_route_context(routes, self._site.expandable_parents),
        )
        return self._blocks(blocks, state, 0)

    def render_rich_text(self, items: Iterable[RichText]) -> Markup:
        return _join(self._rich_text_run(item) for item in items)

    # -- tree walk ----------------------------------------------------------

    def _blocks(self, blocks: Iterable[Block], state: _RenderState, depth: int) -> Markup:
        if depth > self._max_depth:
            return _EMPTY
        return _join(self._block(block, state, depth) for block in blocks)

    def _block(self, block: Block, state: _RenderState, depth: int) -> Markup:
        handler = self._handlers.get(block.type)
        if handler is None:
            return _EMPTY
        return handler(block, state, depth)

    def _children(self, block: Block, state: _RenderState, depth: int) -> Markup:
        if not block.children:
            return _EMPTY
        return self._blocks(block.children, state, depth + 1)

    # -- rich text ----------------------------------------------------------

    def _rich_text_run(self, item: RichText) -> Markup:
        visible = item.plain_text if item.plain_text.strip() else (item.href or "")
        node = Markup(tag("br")).join(escape(line) for line in visible.split("\n"))

        if item.href:
            node = self._link(item.href, node)

        # Fixed order, innermost first, so combined styles always nest the same way
        annotations = item.annotations
        if annotations.code:
            node = tag("code", None, node)
        if annotations.bold:
            node = tag("strong", None, node)
        if annotations.italic:
            node = tag("em", None, node)
        if annotations.strikethrough:
            node = tag("s", None, node)
        if annotations.underline:
            node = tag("u", None, node)

        return tag("span", None, node)

    def _link(self, href: str, content: Markup) -> Markup:
        if not is_safe_href(href):
            return content
        if is_internal_href(href, self._site.hostnames):
            internal = to_internal_href(href)
            return tag(
                "a",
                {
                    "href": internal,
                    "class": "notion-link link",
                    "data-server-link": "true",
                    "data-link-uri": internal,
                },
                content,
            )
        return tag(
            "a",
            {
                "href": href,
                "class": "notion-link link",
                "data-server-link": "false",
                "data-link-uri": href,
                "target": "_blank",
                "rel": "noopener noreferrer",
            },
            content,
        )

    # -- block variants -----------------------------------------------------

    def _heading(self, block: Block, state: _RenderState, depth: int) -> Markup:
        level = block.type.removeprefix("heading_")
        return _join(
            [
                tag("span", {"class": "notion-heading__anchor", "id": heading_anchor_id(block.id)}),
                tag(
                    f"h{level}",
                    {"id": block_dom_id(block.id), "class": "notion-heading notion-semantic-string"},
                    self.render_rich_text(block.rich_text),
                ),
                self._children(block, state, depth),
            ]
        )

    def _paragraph(self, block: Block, state: _RenderState, depth: int) -> Markup:
        marker = parse_tester_marker(block.plain_text)
        if marker is not None:
            tester = tester_from_marker(marker, state.page_slug)
            if tester is not None:
                return self._tester_figure(block_dom_id(block.id), tester, marker.caption)

        return _join(
            [
                tag(
                    "p",
                    {
                        "id": block_dom_id(block.id),
                        "class": "notion-text notion-text__content notion-semantic-string",
                    },
                    self.render_rich_text(block.rich_text),
                ),
                self._children(block, state, depth),
            ]
        )

    def _quote(self, block: Block, state: _RenderState, depth: int) -> Markup:
        return _join(
            [
                tag(
                    "blockquote",
                    {
                        "id": block_dom_id(block.id),
                        "class": "notion-quote notion-text notion-semantic-string",
                    },
                    self.render_rich_text(block.rich_text),
                ),
                self._children(block, state, depth),
            ]
        )

    def _list_item(self, block: Block, state: _RenderState, depth: int) -> Markup:
        if block.type == "numbered_list_item":
            wrapper, list_class = "ol", "notion-list notion-list-numbered"
        else:
            wrapper, list_class = "ul", "notion-list notion-list-disc"
        return tag(
            wrapper,
            {"class": list_class},
            tag(
                "li",
                {"id": block_dom_id(block.id), "class": "notion-text notion-semantic-string"},
                self.render_rich_text(block.rich_text),
                self._children(block, state, depth),
            ),
        )

    def _to_do(self, block: Block, state: _RenderState, depth: int) -> Markup:
        return _join(
            [
                tag(
                    "label",
                    {"id": block_dom_id(block.id), "class": "notion-to-do__content"},
                    tag("input", {"type": "checkbox", "checked": block.checked, "disabled": True}),
                    tag(
                        "span",
                        {"class": "notion-text notion-semantic-string"},
                        self.render_rich_text(block.rich_text),
                    ),
                ),
                self._children(block, state, depth),
            ]
        )

    def _toggle(self, block: Block, state: _RenderState, depth: int) -> Markup:
        if "not to be displayed" in block.plain_text.strip().lower():
            return _EMPTY

        summary = tag(
            "div",
            {"class": "notion-toggle__summary"},
            tag(
                "div",
                {"class": "notion-toggle__trigger"},
                tag("div", {"class": "notion-toggle__trigger_icon"}, tag("span", None, ">")),
            ),
            tag(
                "span",
                {"class": "notion-semantic-string"},
                self.render_rich_text(block.rich_text),
            ),
        )
        content = None
        if block.children:
            content = tag(
                "div", {"class": "notion-toggle__content"}, self._children(block, state, depth)
            )
        return tag(
            "div", {"id": block_dom_id(block.id), "class": "notion-toggle closed"}, summary, content
        )

    def _callout(self, block: Block, state: _RenderState, depth: int) -> Markup:
        return _join(
            [
                tag(
                    "div",
                    {"id": block_dom_id(block.id), "class": "notion-callout"},
                    tag(
                        "p",
                        {"class": "notion-text notion-semantic-string"},
                        tag("span", {"class": "notion-page__icon"}, block.icon_emoji),
                        tag("span", None, self.render_rich_text(block.rich_text)),
                    ),
                ),
                self._children(block, state, depth),
            ]
        )

    def _divider(self, block: Block, state: _RenderState, depth: int) -> Markup:
        return tag("hr", {"id": block_dom_id(block.id), "class": "notion-divider"})

    def _code(self, block: Block, state: _RenderState, depth: int) -> Markup:
        return tag(
            "div",
            {"id": block_dom_id(block.id), "class": "notion-code"},
            tag("pre", {"data-language": block.language}, tag("code", None, block.plain_text)),
        )

    def _image(self, block: Block, state: _RenderState, depth: int) -> Markup:
        if block.media_source == "external":
            src = block.media_url
        else:
            src = f"/api/notion-image/{quote(block.id, safe='')}"
        caption_text = block.caption_text.strip()

        caption = None
        if caption_text:
            caption = tag(
                "figcaption",
                {"class": "notion-caption notion-semantic-string"},
                self.render_rich_text(block.caption),
            )
        return tag(
            "figure",
            {"id": block_dom_id(block.id), "class": "notion-image page-width"},
            tag(
                "span",
                {"style": "display: contents"},
                tag("img", {"src": src, "alt": caption_text or "image", "loading": "lazy"}),
            ),
            caption,
        )

    def _bookmark(self, block: Block, state: _RenderState, depth: int) -> Markup:
        return tag(
            "p",
            {
                "id": block_dom_id(block.id),
                "class": "notion-text notion-text__content notion-semantic-string",
            },
            _url_link(block.url),
        )

    def _embed(self, block: Block, state: _RenderState, depth: int) -> Markup:
        dom_id = block_dom_id(block.id)
        embed_url = normalize_embed_url(block.url, self._site.url)
        caption = None
        if block.caption_text.strip():
            caption = self.render_rich_text(block.caption)

        tester = tester_from_url(embed_url, self._site.url)
        if tester is not None:
            return self._tester_figure(dom_id, tester, caption)

        figcaption = None
        if caption is not None:
            figcaption = tag(
                "figcaption", {"class": "notion-caption notion-semantic-string"}, caption
            )

        if is_embeddable_url(embed_url):
            iframe = tag(
                "iframe",
                {
                    "src": embed_url,
                    "title": embed_url,
                    "sandbox": IFRAME_SANDBOX,
                    "allowfullscreen": True,
                    "loading": "lazy",
                    "frameborder": "0",
                },
            )
            return tag(
                "figure",
                {
                    "id": dom_id,
                    "class": "notion-embed page-width notion-block aex-generic-embed",
                },
                tag(
                    "span",
                    {"class": "notion-embed__container__wrapper"},
                    tag("span", {"class": "notion-embed__container"}, iframe),
                ),
                figcaption,
            )

        return tag(
            "section",
            {"id": dom_id, "class": "notion-embed page-width notion-block"},
            tag(
                "p",
                {"class": "notion-text notion-text__content notion-semantic-string"},
                _url_link(embed_url),
            ),
            figcaption,
        )

    def _child_page(self, block: Block, state: _RenderState, depth: int) -> Markup:
        slug = state.routes.slug_by_page_id.get(compact_page_id(block.id)) or slug_from_title(
            block.title
        )
        if is_hidden_slug(slug):
            return _EMPTY

        title = tag("span", {"class": "notion-page__title notion-semantic-string"}, block.title)
        icon = tag("span", {"class": "notion-page__icon"}, _page_icon())
        expandable = state.routes.child_routes_by_parent.get(slug)

        if state.page_slug == "/" and expandable:
            parent = tag(
                "a",
                {
                    "href": slug,
                    "class": "notion-page notion-page-group__parent",
                    "data-server-link": "true",
                    "data-link-uri": slug,
                },
                icon,
                title,
            )
            children = _join(
                tag(
                    "a",
                    {
                        "href": child.slug,
                        "class": "notion-page notion-page-group__child",
                        "data-server-link": "true",
                        "data-link-uri": child.slug,
                    },
                    tag(
                        "span",
                        {"class": "notion-page__title notion-semantic-string"},
                        child.label,
                    ),
                )
                for child in expandable
            )
            return tag(
                "div",
                {"id": child_page_dom_id(slug), "class": "notion-page-group"},
                parent,
                tag("div", {"class": "notion-page-group__children"}, children),
            )

        return tag(
            "a",
            {
                "id": child_page_dom_id(slug),
                "href": slug,
                "class": "notion-page",
                "data-server-link": "true",
                "data-link-uri": slug,
            },
            icon,
            title,
        )

    # -- widgets ------------------------------------------------------------

    def _tester_figure(self, dom_id: str, tester: TesterConfig, caption: Any = None) -> Markup:
        figcaption = None
        if caption:
            figcaption = tag(
                "figcaption", {"class": "notion-caption notion-semantic-string"}, caption
            )
        return tag(
            "figure",
            {"id": dom_id, "class": "notion-embed page-width notion-block aex-inline-embed"},
            render_type_tester(dom_id, tester),
            figcaption,
        )


def _page_icon() -> Markup:
    return Markup(
        '<svg class="notion-icon notion-icon__page" viewBox="0 0 16 16" width="18" height="18" '
        'style="width: 20px; height: 20px; font-size: 20px; '
        'fill: var(--color-text-default-light)">'
        f'<path d="{PAGE_ICON_PATH}"></path></svg>'
    )


def _css_url(url: str) -> str:
    return quote(url, safe=":/@.-_~%")


def render_type_tester(widget_id: str, tester: TesterConfig) -> Markup:
    """Interactive font preview: size slider plus an editable sample line."""
    family = re.sub(r"[^a-zA-Z0-9_-]", "", tester.font_family)
    local_family = f"{family}-{re.sub(r'[^a-zA-Z0-9]', '', widget_id)[:8]}"

    sources = f"url('{_css_url(tester.font_woff2)}') format('woff2')"
    if tester.font_woff:
        sources += f", url('{_css_url(tester.font_woff)}') format('woff')"
    font_face = Markup(
        f"@font-face {{ font-family: '{local_family}'; src: {sources}; "
        "font-weight: normal; font-style: normal; font-display: swap; }"
    )

    size_input_id = f"aex-size-{widget_id}"
    return tag(
        "section",
        {"class": "aex-type-tester", "data-font-family": local_family},
        tag("style", None, font_face),
        tag(
            "div",
            {"class": "aex-type-tester__controls"},
            tag("label", {"for": size_input_id, "class": "aex-type-tester__label"}, "Size"),
            tag(
                "input",
                {
                    "id": size_input_id,
                    "class": "aex-type-tester__range",
                    "type": "range",
                    "min": str(TESTER_MIN_FONT_SIZE),
                    "max": str(TESTER_MAX_FONT_SIZE),
                    "step": "1",
                    "value": str(tester.font_size_px),
                },
            ),
            tag("span", {"class": "aex-type-tester__value"}, f"{tester.font_size_px}px"),
        ),
        tag(
            "div",
            {
                "class": "aex-type-tester__input",
                "contenteditable": "true",
                "spellcheck": "false",
                "role": "textbox",
                "aria-label": "Type tester input",
                "data-placeholder": TESTER_DEFAULT_TEXT,
                "style": (
                    f"font-family: '{local_family}', 'Space Mono', monospace; "
                    f"font-size: {tester.font_size_px}px; "
                    f"line-height: {tester.line_height}; color: {tester.text_color}"
                ),
            },
            TESTER_DEFAULT_TEXT,
        ),
        tag("div", {"class": "aex-type-tester__footer"}, "TypeTester"),
    )
