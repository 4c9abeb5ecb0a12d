"""Emit stage plugins.

Emitters only read the shared ``Site``; none of them may rely on what another
emitter produced. Each returns artifacts; writing them is the output module's
job.
"""

from __future__ import annotations

import html
import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pygments.formatters import HtmlFormatter
from pygments.styles import get_style_by_name
from pygments.util import ClassNotFound

from .cache import hash_bytes, hash_file, list_files
from .config import BuildContext
from .document import Document
from .errors import ConfigError, DocumentError
from .graph import Site
from .pages import (
    PageData,
    PageRenderer,
    alias_redirect_html,
    build_content_index,
    build_rss,
    build_sitemap,
    folder_listing,
    page_listing,
    tag_href,
)
from .render import BASE_CSS, root_for
from .utils import natural_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Artifact:
    """One output file: either bytes to write or a file to copy.

    ``origin`` is the source-relative path of the document or asset the
    artifact was made from; generated pages have none.
    """

    path: str
    content: Optional[bytes] = None
    source: Optional[Path] = None
    origin: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.content is None) == (self.source is None):
            raise ValueError(f"Artifact {self.path} needs exactly one of content or source")
        if self.path.startswith("/") or ".." in self.path.split("/"):
            raise ValueError(f"Artifact path must stay inside the output directory: {self.path}")

    def digest(self) -> str:
        if self.content is not None:
            return hash_bytes(self.content)
        return hash_file(self.source)


class Emitter(ABC):
    name = ""

    @abstractmethod
    def emit(self, site: Site, ctx: BuildContext) -> list[Artifact]:
        ...


class DocumentEmitter(Emitter):
    """Emitter producing artifacts per document, run on the worker pool."""

    @abstractmethod
    def emit_document(self, document: Document, site: Site, ctx: BuildContext) -> list[Artifact]:
        ...

    def emit(self, site: Site, ctx: BuildContext) -> list[Artifact]:
        documents = site.documents

        def run(document: Document) -> list[Artifact]:
            return self.emit_document(document, site, ctx)

        workers = min(ctx.workers, len(documents)) if documents else 1
        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                batches = list(executor.map(run, documents))
        else:
            batches = [run(document) for document in documents]
        return [artifact for batch in batches for artifact in batch]


def renderer_for(ctx: BuildContext) -> PageRenderer:
    return ctx.renderer if ctx.renderer is not None else PageRenderer(ctx.config)


class ContentPage(DocumentEmitter):
    name = "ContentPage"

    def emit_document(self, document: Document, site: Site, ctx: BuildContext) -> list[Artifact]:
        renderer = renderer_for(ctx)
        page = renderer.render_document(document, site, ctx)
        return [Artifact(f"{document.slug}.html", page, origin=document.path)]


class AliasRedirects(Emitter):
    name = "AliasRedirects"

    def emit(self, site: Site, ctx: BuildContext) -> list[Artifact]:
        artifacts = []
        for alias, slug in sorted(site.graph.aliases.items()):
            document = site.graph.documents[slug]
            page = alias_redirect_html(alias, slug, document.title)
            artifacts.append(Artifact(f"{alias}.html", page.encode("utf-8"), origin=document.path))
        return artifacts


class FolderPage(Emitter):
    """Listing page for every folder that has no index document of its own."""

    name = "FolderPage"

    def emit(self, site: Site, ctx: BuildContext) -> list[Artifact]:
        renderer = renderer_for(ctx)
        artifacts = []
        for path in sorted(site.graph.folders):
            folder = site.explorer.find(path)
            if folder is None or folder.document is not None:
                continue
            page = PageData(
                slug=folder.slug,
                title=folder.display_name or ctx.config.page_title,
                site=site,
                ctx=ctx,
                content=folder_listing(folder, root_for(folder.slug), site.graph),
                description=f"Folder: {folder.path or '/'}",
            )
            artifacts.append(Artifact(f"{folder.slug}.html", renderer.render(page, renderer.layout("list"))))
        return artifacts


class TagPage(Emitter):
    name = "TagPage"

    def emit(self, site: Site, ctx: BuildContext) -> list[Artifact]:
        renderer = renderer_for(ctx)
        layout = renderer.layout("list")
        graph = site.graph
        tags = sorted(graph.tags, key=natural_key)
        artifacts = []

        index_root = root_for("tags/index")
        items = "".join(
            f'<li><a href="{tag_href(index_root, graph, tag)}" class="tag-link">#{html.escape(tag)}</a>'
            f' <span class="count">{len(graph.tags[tag])}</span></li>'
            for tag in tags
        )
        index_page = PageData(
            slug="tags/index",
            title="Tag Index",
            site=site,
            ctx=ctx,
            content=f'<ul class="tag-index">{items}</ul>' if items else "<p>No tags yet.</p>",
            description="All tags",
        )
        artifacts.append(Artifact("tags/index.html", renderer.render(index_page, layout)))

        for tag in tags:
            slug = f"tags/{graph.tag_slug(tag)}"
            page = PageData(
                slug=slug,
                title=f"Tag: {tag}",
                site=site,
                ctx=ctx,
                content=page_listing(root_for(slug), graph.tags[tag], graph),
                description=f"Pages tagged {tag}",
            )
            artifacts.append(Artifact(f"{slug}.html", renderer.render(page, layout)))
        return artifacts


class ContentIndex(Emitter):
    """Sitemap, RSS feed and the JSON content index."""

    name = "ContentIndex"

    def __init__(self, enable_sitemap: bool = True, enable_rss: bool = True, rss_limit: Optional[int] = None):
        self.enable_sitemap = enable_sitemap
        self.enable_rss = enable_rss
        self.rss_limit = rss_limit

    def emit(self, site: Site, ctx: BuildContext) -> list[Artifact]:
        config = ctx.config
        artifacts = []
        if (self.enable_sitemap or self.enable_rss) and not config.base_url:
            logger.warning("base_url is not set; skipping sitemap.xml and index.xml")
        elif config.base_url:
            if self.enable_sitemap:
                artifacts.append(Artifact("sitemap.xml", build_sitemap(site, config.base_url).encode("utf-8")))
            if self.enable_rss:
                limit = self.rss_limit or config.feed_limit
                artifacts.append(Artifact("index.xml", build_rss(site, config, limit).encode("utf-8")))
        artifacts.append(Artifact("static/contentIndex.json", build_content_index(site).encode("utf-8")))
        return artifacts


class ComponentResources(Emitter):
    name = "ComponentResources"

    def __init__(self, code_style: str = "default", css_class: str = "highlight") -> None:
        try:
            get_style_by_name(code_style)
        except ClassNotFound:
            raise ConfigError(f"ComponentResources: unknown Pygments style {code_style!r}") from None
        self.code_style = code_style
        self.css_class = css_class

    def emit(self, site: Site, ctx: BuildContext) -> list[Artifact]:
        code_css = HtmlFormatter(style=self.code_style).get_style_defs(f".{self.css_class}")
        return [Artifact("index.css", f"{BASE_CSS}\n{code_css}\n".encode("utf-8"))]


class Assets(Emitter):
    """Copy non-markdown files from the content tree."""

    name = "Assets"

    def emit(self, site: Site, ctx: BuildContext) -> list[Artifact]:
        return [
            Artifact(path, source=source, origin=source.relative_to(ctx.content_dir).as_posix())
            for source, path in site.assets
        ]


class Static(Emitter):
    name = "Static"

    def emit(self, site: Site, ctx: BuildContext) -> list[Artifact]:
        static_dir = ctx.static_dir
        if static_dir is None or not static_dir.is_dir():
            return []
        return [
            Artifact(f"static/{path.relative_to(static_dir).as_posix()}", source=path)
            for path in list_files(static_dir)
        ]


class NotFoundPage(Emitter):
    name = "NotFoundPage"

    def emit(self, site: Site, ctx: BuildContext) -> list[Artifact]:
        renderer = renderer_for(ctx)
        content = (
            '<div class="not-found">'
            "<p>Either this page is private or doesn't exist.</p>"
            '<a href="./index.html">Return to Homepage</a>'
            "</div>"
        )
        page = PageData(slug="404", title="404", site=site, ctx=ctx, content=content, description="Not found")
        return [Artifact("404.html", renderer.render(page, renderer.layout("list")))]


EMITTERS = {
    cls.name: cls
    for cls in (
        AliasRedirects,
        ComponentResources,
        ContentPage,
        FolderPage,
        TagPage,
        ContentIndex,
        Assets,
        Static,
        NotFoundPage,
    )
}


def sort_artifacts(artifacts: list[Artifact]) -> list[Artifact]:
    return sorted(artifacts, key=lambda artifact: artifact.path)


def resolve_collisions(named: list[tuple[str, Artifact]]) -> tuple[list[Artifact], list[DocumentError]]:
    """Keep one artifact per output path.

    Two generated artifacts on one path is a configuration error. Otherwise a
    generated artifact beats one made from content, and between two content
    artifacts the earlier emitter wins. Every loser is returned as an error
    against its source.
    """
    owners: dict[str, tuple[str, Artifact]] = {}
    dropped: list[DocumentError] = []
    for emitter_name, artifact in named:
        current = owners.get(artifact.path)
        if current is None:
            owners[artifact.path] = (emitter_name, artifact)
            continue
        owner_name, owner = current
        if owner.origin is None and artifact.origin is None:
            raise ConfigError(
                f"Output path {artifact.path!r} is produced by both {owner_name} and {emitter_name}"
            )
        if owner.origin is not None and artifact.origin is None:
            owners[artifact.path] = (emitter_name, artifact)
            winner_name, loser_name, loser = emitter_name, owner_name, owner
        else:
            winner_name, loser_name, loser = owner_name, emitter_name, artifact
        message = f"output {artifact.path!r} from {loser_name} is already produced by {winner_name}"
        dropped.append(DocumentError(loser.origin, message, stage="emit"))
    return [artifact for _, artifact in owners.values()], dropped
