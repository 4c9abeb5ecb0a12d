"""Transform stage plugins.

Every transformer takes one document snapshot and returns the next one. They
never look at other documents; anything cross-document happens in the graph
builder after the whole stage has finished.
"""

from __future__ import annotations

import datetime as dt
import html
import logging
import posixpath
import re
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
from urllib.parse import unquote

import markdown
from markdown.extensions.toc import slugify as heading_id
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

from .config import DATE_SOURCES, DATE_TYPES, BuildContext
from .content import (
    FrontMatterError,
    coerce_date,
    coerce_list,
    extract_title,
    has_dot_segments,
    is_markdown,
    map_outside_fences,
    normalize_list_spacing,
    parse_front_matter,
    plain_text,
    slugify_path,
    slugify_segment,
    truncate_words,
)
from .document import Document, Link
from .errors import ConfigError, DocumentError
from .utils import parse_bool

logger = logging.getLogger(__name__)

FRONTMATTER_DATE_KEYS = {
    "created": ("created", "date"),
    "modified": ("modified", "lastmod", "updated", "last-modified"),
    "published": ("published", "publishDate", "date"),
}
PHASES = ("markdown", "render", "html")
IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".bmp", ".avif"}
WIKILINK_RE = re.compile(r"(!?)\[\[([^\[\]|#]*)(#[^\[\]|]*)?(?:\|([^\[\]]*))?\]\]")
HIGHLIGHT_RE = re.compile(r"==([^=\n]+)==")
COMMENT_RE = re.compile(r"%%.*?%%", re.DOTALL)
INLINE_TAG_RE = re.compile(r"(?:(?<=\s)|^)#([\w][\w\-/]*)", re.MULTILINE | re.UNICODE)
CODE_BLOCK_RE = re.compile(r'<pre><code class="language-([\w+#.-]+)">(.*?)</code></pre>', re.DOTALL)
HEADING_RE = re.compile(r'<h([1-6]) id="([^"]+)">(.*?)</h\1>', re.DOTALL)
ANCHOR_RE = re.compile(r'<a href="([^"]*)"([^>]*)>(.*?)</a>', re.DOTALL)
IMAGE_SRC_RE = re.compile(r'<img\b([^>]*?)\ssrc="([^"]*)"')
SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")
ASSET_EXT_RE = re.compile(r"\.[A-Za-z][A-Za-z0-9]{0,4}")


class Transformer(ABC):
    """One step of the transform stage.

    ``phase`` is one of PHASES. The pipeline runs every markdown-phase
    transformer before the renderer and every html-phase one after it,
    keeping registration order within a phase.
    """

    name = ""
    phase = "markdown"
    needs_html = False

    @abstractmethod
    def apply(self, document: Document, ctx: BuildContext) -> Document:
        ...

    def fail(self, document: Document, message: str) -> DocumentError:
        return DocumentError(document.path, message, stage=self.name)


def clean_tags(values: list[str]) -> list[str]:
    tags: list[str] = []
    for value in values:
        tag = value.strip().lstrip("#").strip()
        tag = re.sub(r"\s+", "-", tag)
        if tag and tag not in tags:
            tags.append(tag)
    return tags


class FrontMatter(Transformer):
    name = "FrontMatter"

    def apply(self, document: Document, ctx: BuildContext) -> Document:
        try:
            meta, body = parse_front_matter(document.body)
        except FrontMatterError as exc:
            raise self.fail(document, str(exc)) from exc

        stem = posixpath.splitext(posixpath.basename(document.path))[0]
        title, body = extract_title(meta, body, fallback=stem)
        tags = clean_tags(coerce_list(meta.get("tags", meta.get("tag"))))
        aliases: list[str] = []
        for alias in coerce_list(meta.get("aliases", meta.get("alias"))):
            alias_slug = self.output_slug(document, alias, "alias")
            if alias_slug and alias_slug not in aliases:
                aliases.append(alias_slug)

        slug = document.slug
        override = meta.get("permalink") or meta.get("slug")
        if override:
            slug = self.output_slug(document, str(override), "slug override")
            if not slug:
                raise self.fail(document, f"unusable slug override {override!r}")
            if slug != document.slug and document.slug not in aliases:
                aliases.append(document.slug)

        return document.evolve(slug=slug, body=body).with_meta(
            frontmatter=meta,
            title=title,
            tags=tags,
            aliases=aliases,
            draft=parse_bool(meta.get("draft")),
            publish=parse_bool(meta.get("publish")),
        )

    def output_slug(self, document: Document, value: str, label: str) -> str:
        if has_dot_segments(value):
            raise self.fail(document, f"{label} {value!r} must not contain '.' or '..' segments")
        return slugify_path(value)


def git_last_modified(path: Path) -> Optional[dt.datetime]:
    try:
        completed = subprocess.run(
            ["git", "-C", str(path.parent), "log", "-1", "--format=%cI", "--", path.name],
            text=True,
            capture_output=True,
            check=False,
            timeout=30,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    value = completed.stdout.strip()
    if completed.returncode != 0 or not value:
        return None
    try:
        return coerce_date(value)
    except ValueError:
        return None


class CreatedModifiedDate(Transformer):
    """Resolve created/modified/published dates from an ordered list of sources.

    For each date kind the first source in ``priority`` that has a value wins.
    Sources: ``frontmatter``, ``git`` (modified only), ``filesystem``.
    """

    name = "CreatedModifiedDate"

    def __init__(self, priority: Optional[list] = None) -> None:
        if priority is not None:
            unknown = [source for source in priority if source not in DATE_SOURCES]
            if unknown or not priority:
                raise ConfigError(f"CreatedModifiedDate: invalid priority {priority!r}")
        self.priority = list(priority) if priority else None

    def apply(self, document: Document, ctx: BuildContext) -> Document:
        priority = self.priority or ctx.config.date_priority
        dates: dict[str, Optional[dt.datetime]] = {kind: None for kind in DATE_TYPES}
        for source in priority:
            found = self.lookup(source, document)
            for kind in DATE_TYPES:
                if dates[kind] is None and found.get(kind) is not None:
                    dates[kind] = found[kind]
        return document.with_meta(dates=dates)

    def lookup(self, source: str, document: Document) -> dict:
        if source == "frontmatter":
            return self.frontmatter_dates(document)
        if source == "git":
            if document.source is None:
                return {}
            return {"modified": git_last_modified(document.source)}
        if source == "filesystem":
            return self.filesystem_dates(document)
        return {}

    def frontmatter_dates(self, document: Document) -> dict:
        frontmatter = document.meta.get("frontmatter") or {}
        found = {}
        for kind, keys in FRONTMATTER_DATE_KEYS.items():
            for key in keys:
                if key not in frontmatter:
                    continue
                try:
                    value = coerce_date(frontmatter[key])
                except ValueError as exc:
                    logger.warning("%s: ignoring %s: %s", document.path, key, exc)
                    continue
                if value is not None:
                    found[kind] = value
                    break
        return found

    def filesystem_dates(self, document: Document) -> dict:
        if document.source is None:
            return {}
        try:
            stat = document.source.stat()
        except OSError:
            return {}
        created = getattr(stat, "st_birthtime", None) or stat.st_mtime
        return {
            "created": dt.datetime.fromtimestamp(created, tz=dt.timezone.utc),
            "modified": dt.datetime.fromtimestamp(stat.st_mtime, tz=dt.timezone.utc),
        }


class ObsidianFlavoredMarkdown(Transformer):
    name = "ObsidianFlavoredMarkdown"

    def __init__(self, wikilinks: bool = True, highlights: bool = True, comments: bool = True, tags: bool = True):
        self.wikilinks = wikilinks
        self.highlights = highlights
        self.comments = comments
        self.tags = tags

    def apply(self, document: Document, ctx: BuildContext) -> Document:
        found_tags: list[str] = []

        def rewrite(text: str) -> str:
            if self.comments:
                text = COMMENT_RE.sub("", text)
            if self.wikilinks:
                text = WIKILINK_RE.sub(self.wikilink, text)
            if self.highlights:
                text = HIGHLIGHT_RE.sub(r"<mark>\1</mark>", text)
            if self.tags:
                for match in INLINE_TAG_RE.finditer(text):
                    tag = match.group(1).rstrip("/")
                    if tag and not tag.isdigit():
                        found_tags.append(tag)
            return text

        body = map_outside_fences(document.body, rewrite)
        result = document.evolve(body=body)
        if found_tags:
            result = result.with_meta(tags=clean_tags(document.tags + found_tags))
        return result

    @staticmethod
    def wikilink(match: re.Match) -> str:
        embed, target, heading, alias = match.groups()
        target = (target or "").strip()
        heading = (heading or "").lstrip("#").strip()
        alias = (alias or "").strip()
        href = slugify_path(target) if target else ""
        if heading:
            href = f"{href}#{heading_id(heading, '-')}"
        if embed and posixpath.splitext(target)[1].lower() in IMAGE_EXTENSIONS:
            return f"![{alias or posixpath.basename(target)}]({href})"
        if alias:
            text = alias
        elif target and heading:
            text = f"{target} > {heading}"
        else:
            text = target or heading
        return f"[{text}]({href})"


class GitHubFlavoredMarkdown(Transformer):
    """Render the markdown body to HTML."""

    name = "GitHubFlavoredMarkdown"
    phase = "render"

    def __init__(self, extensions: Optional[list] = None) -> None:
        self.extensions = list(extensions or ["fenced_code", "tables", "toc", "footnotes"])

    def apply(self, document: Document, ctx: BuildContext) -> Document:
        md = markdown.Markdown(extensions=self.extensions)
        html_content = md.convert(normalize_list_spacing(document.body))
        md.reset()
        return document.evolve(html=html_content).with_meta(text=plain_text(html_content))


class SyntaxHighlighting(Transformer):
    name = "SyntaxHighlighting"
    phase = "html"
    needs_html = True

    def __init__(self, css_class: str = "highlight") -> None:
        self.css_class = css_class

    def apply(self, document: Document, ctx: BuildContext) -> Document:
        formatter = HtmlFormatter(cssclass=self.css_class)

        def repl(match: re.Match) -> str:
            try:
                lexer = get_lexer_by_name(match.group(1), stripall=True)
            except ClassNotFound:
                return match.group(0)
            return highlight(html.unescape(match.group(2)), lexer, formatter)

        return document.evolve(html=CODE_BLOCK_RE.sub(repl, document.html))


class TableOfContents(Transformer):
    name = "TableOfContents"
    phase = "html"
    needs_html = True

    def __init__(self, min_depth: int = 1, max_depth: int = 3, min_entries: int = 1) -> None:
        self.min_depth = min_depth
        self.max_depth = max_depth
        self.min_entries = min_entries

    def apply(self, document: Document, ctx: BuildContext) -> Document:
        headings = [
            (int(level), anchor, plain_text(inner))
            for level, anchor, inner in HEADING_RE.findall(document.html)
            if self.min_depth <= int(level) <= self.max_depth
        ]
        entries = []
        if len(headings) >= self.min_entries and headings:
            top = min(level for level, _, _ in headings)
            entries = [{"depth": level - top, "text": text, "slug": anchor} for level, anchor, text in headings]
        return document.with_meta(toc=entries)


def normalize_link_target(href: str) -> tuple[Optional[str], str]:
    """Split an internal href into (target, anchor).

    Returns ``None`` as target for links to non-markdown assets.
    """
    path, _, anchor = href.partition("#")
    path = unquote(path.split("?", 1)[0])
    prefix = "/" if path.startswith("/") else ""
    is_dir = path.endswith("/")
    segments = [segment for segment in path.strip("/").split("/") if segment]
    if segments:
        last = segments[-1]
        ext = posixpath.splitext(last)[1]
        if is_markdown(last) or ext.lower() in {".html", ".htm"}:
            segments[-1] = posixpath.splitext(last)[0]
        elif ext and ASSET_EXT_RE.fullmatch(ext):
            return None, anchor
    parts = [segment if segment in {".", ".."} else slugify_segment(segment) for segment in segments]
    target = prefix + "/".join(part for part in parts if part)
    if is_dir and parts:
        target += "/"
    return target, anchor


def normalize_asset_target(src: str) -> str:
    """Output-relative form of an asset reference; the extension is kept."""
    path = unquote(src.partition("#")[0].split("?", 1)[0])
    prefix = "/" if path.startswith("/") else ""
    segments = [segment for segment in path.strip("/").split("/") if segment]
    parts = [segment if segment in {".", ".."} else slugify_segment(segment) for segment in segments]
    return prefix + "/".join(part for part in parts if part)


class CrawlLinks(Transformer):
    """Collect outbound links and tag internal anchors and images for later rewriting."""

    name = "CrawlLinks"
    phase = "html"
    needs_html = True

    def __init__(self, external_new_tab: bool = False) -> None:
        self.external_new_tab = external_new_tab

    def apply(self, document: Document, ctx: BuildContext) -> Document:
        links: list[Link] = []
        seen: set[tuple] = set()

        def record(link: Link) -> None:
            key = (link.target, link.anchor, link.text, link.external, link.asset)
            if key not in seen:
                seen.add(key)
                links.append(link)

        def repl(match: re.Match) -> str:
            href_raw, rest, inner = match.groups()
            href = html.unescape(href_raw)
            text = plain_text(inner)
            if SCHEME_RE.match(href) or href.startswith("//"):
                record(Link(target=href, text=text, external=True))
                extra = ' target="_blank" rel="noopener noreferrer"' if self.external_new_tab else ""
                return f'<a href="{href_raw}" class="external"{extra}{rest}>{inner}</a>'
            if not href or href.startswith("#"):
                return match.group(0)
            target, anchor = normalize_link_target(href)
            if target is None:
                asset = normalize_asset_target(href)
                if not asset:
                    return match.group(0)
                record(Link(target=asset, text=text, asset=True))
                return f'<a href="{href_raw}" data-asset="{html.escape(asset)}"{rest}>{inner}</a>'
            if not target:
                return match.group(0)
            record(Link(target=target, text=text, anchor=anchor))
            data = f' class="internal" data-target="{html.escape(target)}"'
            if anchor:
                data += f' data-anchor="{html.escape(anchor)}"'
            return f'<a href="{href_raw}"{data}{rest}>{inner}</a>'

        def image(match: re.Match) -> str:
            attrs, src_raw = match.groups()
            src = html.unescape(src_raw)
            if not src or SCHEME_RE.match(src) or src.startswith("//"):
                return match.group(0)
            asset = normalize_asset_target(src)
            if not asset:
                return match.group(0)
            record(Link(target=asset, asset=True))
            return f'<img{attrs} src="{src_raw}" data-asset="{html.escape(asset)}"'

        rewritten = IMAGE_SRC_RE.sub(image, ANCHOR_RE.sub(repl, document.html))
        return document.evolve(html=rewritten, links=tuple(links))


class Description(Transformer):
    name = "Description"
    phase = "html"

    def __init__(self, length: Optional[int] = None) -> None:
        self.length = length

    def apply(self, document: Document, ctx: BuildContext) -> Document:
        frontmatter = document.meta.get("frontmatter") or {}
        description = str(frontmatter.get("description") or "").strip()
        if not description:
            text = document.meta.get("text") or (plain_text(document.html) if document.html else document.body)
            length = self.length or ctx.config.description_length
            description = truncate_words(" ".join(str(text).split()), length)
        return document.with_meta(description=description)


TRANSFORMERS = {
    cls.name: cls
    for cls in (
        FrontMatter,
        CreatedModifiedDate,
        ObsidianFlavoredMarkdown,
        GitHubFlavoredMarkdown,
        SyntaxHighlighting,
        TableOfContents,
        CrawlLinks,
        Description,
    )
}
