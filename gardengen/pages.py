"""Page components, the default page renderer and feed builders.

Emitters hand a ``PageData`` and a ``LayoutSlots`` to the renderer; every
component is a plain function ``(PageData) -> str`` looked up by name.
"""

from __future__ import annotations

import datetime as dt
import html
import json
import re
from dataclasses import dataclass, field
from typing import Callable, Optional

from .config import BuildContext, SiteConfig
from .content import count_words
from .document import Document
from .errors import ConfigError
from .explorer import FolderNode
from .graph import ContentGraph, Site
from .render import DEFAULT_TEMPLATE, page_href, render_template, root_for
from .utils import iso_date, join_url, rfc822_date, site_url

INTERNAL_LINK_RE = re.compile(r'href="[^"]*" class="internal" data-target="([^"]*)"(?: data-anchor="([^"]*)")?')
ASSET_REF_RE = re.compile(r'(src|href)="[^"]*" data-asset="([^"]*)"')
WORDS_PER_MINUTE = 200
SLOTS = ("before_body", "left", "right")


@dataclass
class PageData:
    slug: str
    title: str
    site: Site
    ctx: BuildContext
    document: Optional[Document] = None
    content: str = ""
    description: str = ""
    date: Optional[dt.datetime] = None

    @property
    def root(self) -> str:
        return root_for(self.slug)

    @property
    def graph(self) -> ContentGraph:
        return self.site.graph


def format_date(value: Optional[dt.datetime]) -> str:
    if value is None:
        return ""
    return value.strftime("%b %d, %Y")


def folder_href(root: str, path: str) -> str:
    return page_href(root, f"{path}/index" if path else "index")


def tag_href(root: str, graph: ContentGraph, tag: str) -> str:
    return page_href(root, f"tags/{graph.tag_slug(tag)}")


def breadcrumbs(page: PageData) -> str:
    if page.slug == "index":
        return ""
    parts = page.slug.split("/")
    if parts[-1] == "index":
        parts = parts[:-1]
    crumbs = [f'<a href="{page_href(page.root, "index")}">Home</a>']
    for depth in range(1, len(parts)):
        path = "/".join(parts[:depth])
        folder = page.site.explorer.find(path)
        label = folder.display_name if folder is not None else parts[depth - 1]
        crumbs.append(f'<a href="{folder_href(page.root, path)}">{html.escape(label)}</a>')
    crumbs.append(f"<span>{html.escape(page.title)}</span>")
    return f'<nav class="breadcrumbs">{" / ".join(crumbs)}</nav>'


def article_title(page: PageData) -> str:
    return f'<h1 class="article-title">{html.escape(page.title)}</h1>'


def content_meta(page: PageData) -> str:
    segments = []
    if page.date is not None:
        segments.append(f'<time datetime="{iso_date(page.date)}">{format_date(page.date)}</time>')
    if page.document is not None:
        words = count_words(str(page.document.meta.get("text") or ""))
        if words:
            minutes = max(1, round(words / WORDS_PER_MINUTE))
            segments.append(f"{minutes} min read")
    if not segments:
        return ""
    return f'<p class="content-meta">{", ".join(segments)}</p>'


def tag_list(page: PageData) -> str:
    if page.document is None or not page.document.tags:
        return ""
    items = "".join(
        f'<li><a class="tag-link" href="{tag_href(page.root, page.graph, tag)}">#{html.escape(tag)}</a></li>'
        for tag in page.document.tags
    )
    return f'<ul class="tags">{items}</ul>'


def page_title(page: PageData) -> str:
    title = html.escape(page.ctx.config.page_title)
    return f'<h2 class="page-title"><a href="{page_href(page.root, "index")}">{title}</a></h2>'


def render_tree(folder: FolderNode, page: PageData) -> str:
    items = []
    for child in folder.children:
        if child.is_folder:
            href = folder_href(page.root, child.path)
            items.append(
                f'<li class="folder"><span><a href="{href}">{html.escape(child.display_name)}</a></span>'
                f"{render_tree(child, page)}</li>"
            )
        else:
            active = ' class="active"' if child.slug == page.slug else ""
            href = page_href(page.root, child.slug)
            items.append(f'<li{active}><a href="{href}">{html.escape(child.display_name)}</a></li>')
    if not items:
        return ""
    return f"<ul>{''.join(items)}</ul>"


def explorer(page: PageData) -> str:
    return f'<nav class="explorer"><h3>Explorer</h3>{render_tree(page.site.explorer, page)}</nav>'


def table_of_contents(page: PageData) -> str:
    entries = (page.document.meta.get("toc") if page.document is not None else None) or []
    if not entries:
        return ""
    items = "".join(
        f'<li class="depth-{entry["depth"]}"><a href="#{html.escape(entry["slug"])}">'
        f'{html.escape(entry["text"])}</a></li>'
        for entry in entries
    )
    return f'<nav class="toc"><h3>Table of Contents</h3><ul>{items}</ul></nav>'


def backlinks(page: PageData) -> str:
    sources = page.graph.backlinks_of(page.slug)
    if sources:
        items = "".join(
            f'<li><a href="{page_href(page.root, slug)}" class="internal">'
            f"{html.escape(page.graph.documents[slug].title)}</a></li>"
            for slug in sources
        )
    else:
        items = "<li>No backlinks found</li>"
    return f'<div class="backlinks"><h3>Backlinks</h3><ul>{items}</ul></div>'


COMPONENTS: dict[str, Callable[[PageData], str]] = {
    "breadcrumbs": breadcrumbs,
    "article_title": article_title,
    "content_meta": content_meta,
    "tag_list": tag_list,
    "page_title": page_title,
    "explorer": explorer,
    "table_of_contents": table_of_contents,
    "backlinks": backlinks,
}


@dataclass(frozen=True)
class LayoutSlots:
    before_body: tuple = ()
    left: tuple = ()
    right: tuple = ()

    @classmethod
    def from_config(cls, kind: str, slots: dict) -> "LayoutSlots":
        values = {}
        for slot in SLOTS:
            names = slots.get(slot) or []
            if not isinstance(names, list):
                raise ConfigError(f"layout.{kind}.{slot} must be a list of component names")
            unknown = [name for name in names if name not in COMPONENTS]
            if unknown:
                raise ConfigError(f"Unknown component(s) in layout.{kind}.{slot}: {', '.join(map(str, unknown))}")
            values[slot] = tuple(names)
        return cls(**values)


def rewrite_internal_links(html_text: str, document: Document, graph: ContentGraph, root: str) -> str:
    def repl(match: re.Match) -> str:
        target = html.unescape(match.group(1))
        anchor = html.unescape(match.group(2) or "")
        slug = graph.resolve_link(document.slug, target)
        if slug is None:
            return match.group(0).replace('class="internal"', 'class="internal broken"', 1)
        href = html.escape(page_href(root, slug, anchor))
        return f'href="{href}" class="internal" data-slug="{html.escape(slug)}"'

    def asset_repl(match: re.Match) -> str:
        attr, target = match.group(1), html.unescape(match.group(2))
        path = graph.resolve_asset(document.slug, target)
        if path is None:
            return match.group(0)
        href = html.escape(f"{root}/{path}")
        return f'{attr}="{href}"'

    return ASSET_REF_RE.sub(asset_repl, INTERNAL_LINK_RE.sub(repl, html_text))


@dataclass
class PageRenderer:
    """Default theme: fills the page template with the layout's components."""

    config: SiteConfig
    template: str = DEFAULT_TEMPLATE
    layouts: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.layouts = {
            kind: LayoutSlots.from_config(kind, slots) for kind, slots in self.config.layout.items()
        }
        for kind in ("content", "list"):
            if kind not in self.layouts:
                raise ConfigError(f"layout.{kind} is required")

    def layout(self, kind: str) -> LayoutSlots:
        return self.layouts[kind]

    def render(self, page: PageData, layout: LayoutSlots) -> bytes:
        def slot(names: tuple) -> str:
            return "".join(COMPONENTS[name](page) for name in names)

        suffix = self.config.page_title_suffix
        html_doc = render_template(
            self.template,
            title=html.escape(f"{page.title}{suffix}"),
            description=html.escape(page.description),
            root=page.root,
            lang=html.escape(self.config.locale),
            slug=html.escape(page.slug),
            extra_head="",
            footer=html.escape(self.config.page_title),
            before_body=slot(layout.before_body),
            left=slot(layout.left),
            right=slot(layout.right),
            content=page.content,
        )
        return html_doc.encode("utf-8")

    def render_document(self, document: Document, site: Site, ctx: BuildContext) -> bytes:
        root = root_for(document.slug)
        page = PageData(
            slug=document.slug,
            title=document.title,
            site=site,
            ctx=ctx,
            document=document,
            content=rewrite_internal_links(document.html, document, site.graph, root),
            description=str(document.meta.get("description") or ""),
            date=site.graph.effective_date(document.slug),
        )
        return self.render(page, self.layout("content"))


def page_listing(root: str, slugs: list[str], graph: ContentGraph) -> str:
    if not slugs:
        return '<p class="listing-empty">Nothing here yet.</p>'
    items = []
    for slug in slugs:
        document = graph.documents[slug]
        date = format_date(graph.effective_date(slug))
        date_html = f'<span class="listing-date">{date}</span> ' if date else ""
        items.append(
            f'<li>{date_html}<a href="{page_href(root, slug)}" class="internal">{html.escape(document.title)}</a></li>'
        )
    return f'<ul class="page-listing">{"".join(items)}</ul>'


def folder_listing(folder: FolderNode, root: str, graph: ContentGraph) -> str:
    """Subfolders from the explorer, then the folder's members from the graph."""
    members = graph.folders.get(folder.path, [])
    items = []
    for child in folder.folders():
        items.append(
            f'<li class="folder"><a href="{folder_href(root, child.path)}">{html.escape(child.display_name)}/</a></li>'
        )
    if items:
        subfolders = f'<ul class="folder-listing">{"".join(items)}</ul>'
    else:
        subfolders = ""
    noun = "item" if len(members) == 1 else "items"
    return (
        f'<p class="listing-count">{len(members)} {noun} under this folder.</p>'
        f"{subfolders}{page_listing(root, members, graph)}"
    )


def alias_redirect_html(alias_slug: str, target_slug: str, title: str) -> str:
    href = html.escape(page_href(root_for(alias_slug), target_slug))
    return "\n".join(
        [
            "<!DOCTYPE html>",
            '<html lang="en">',
            "<head>",
            '<meta charset="utf-8">',
            f"<title>{html.escape(title)}</title>",
            f'<link rel="canonical" href="{href}">',
            '<meta name="robots" content="noindex">',
            f'<meta http-equiv="refresh" content="0; url={href}">',
            "</head>",
            "</html>",
        ]
    )


def build_sitemap(site: Site, base_url: str) -> str:
    base = site_url(base_url)
    items = []
    for slug in sorted(site.graph.documents):
        loc = join_url(base, f"{slug}.html")
        lastmod = site.graph.effective_date(slug)
        lines = ["<url>", f"<loc>{html.escape(loc)}</loc>"]
        if lastmod is not None:
            lines.append(f"<lastmod>{lastmod.date().isoformat()}</lastmod>")
        lines.append("</url>")
        items.append("\n".join(lines))
    return "\n".join(
        [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">',
            "\n".join(items),
            "</urlset>",
        ]
    )


def build_rss(site: Site, config: SiteConfig, limit: int) -> str:
    base = site_url(config.base_url)
    graph = site.graph
    items = []
    for slug in graph.timeline[:limit]:
        document = graph.documents[slug]
        link = join_url(base, f"{slug}.html")
        lines = [
            "<item>",
            f"<title>{html.escape(document.title)}</title>",
            f"<link>{html.escape(link)}</link>",
            f"<guid>{html.escape(link)}</guid>",
            f"<description>{html.escape(str(document.meta.get('description') or ''))}</description>",
        ]
        date = graph.effective_date(slug)
        if date is not None:
            lines.append(f"<pubDate>{rfc822_date(date)}</pubDate>")
        lines.append("</item>")
        items.append("\n".join(lines))
    channel = [
        "<channel>",
        f"<title>{html.escape(config.page_title)}</title>",
        f"<link>{html.escape(base)}/</link>",
        f"<description>{html.escape(f'Recent content on {config.page_title}')}</description>",
    ]
    newest = graph.effective_date(graph.timeline[0]) if graph.timeline else None
    if newest is not None:
        channel.append(f"<lastBuildDate>{rfc822_date(newest)}</lastBuildDate>")
    return "\n".join(
        [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<rss version="2.0">',
            *channel,
            "\n".join(items),
            "</channel>",
            "</rss>",
        ]
    )


def build_content_index(site: Site) -> str:
    graph = site.graph
    index = {}
    for slug in sorted(graph.documents):
        document = graph.documents[slug]
        date = graph.effective_date(slug)
        index[slug] = {
            "slug": slug,
            "filePath": document.path,
            "title": document.title,
            "links": graph.links_from(slug),
            "tags": document.tags,
            "content": str(document.meta.get("text") or ""),
            "description": str(document.meta.get("description") or ""),
            "date": iso_date(date) if date is not None else None,
        }
    return json.dumps(index, indent=2, ensure_ascii=True)
