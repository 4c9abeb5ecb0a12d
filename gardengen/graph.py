"""Content graph: links, backlinks, folder/tag membership and feed ordering.

The graph is derived in one pass from the filtered document set after the
transform and filter stages are complete. It is never updated incrementally,
so it cannot point at a document that did not survive filtering.
"""

from __future__ import annotations

import datetime as dt
import logging
import posixpath
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from .content import slugify_path
from .document import Document
from .errors import DocumentError
from .explorer import FolderNode, folder_members

logger = logging.getLogger(__name__)

BROKEN = "broken"
AMBIGUOUS = "ambiguous"
RESERVED_TAG_SLUGS = frozenset({"index"})


@dataclass(frozen=True)
class LinkIssue:
    source: str
    target: str
    kind: str
    candidates: tuple[str, ...] = ()

    def __str__(self) -> str:
        detail = f" (candidates: {', '.join(self.candidates)})" if self.candidates else ""
        return f"{self.kind} link in {self.source}: {self.target}{detail}"


@dataclass
class ContentGraph:
    documents: dict[str, Document] = field(default_factory=dict)
    forward: dict[str, list[str]] = field(default_factory=dict)
    backlinks: dict[str, list[str]] = field(default_factory=dict)
    resolved: dict[str, dict[str, str]] = field(default_factory=dict)
    resolved_assets: dict[str, dict[str, str]] = field(default_factory=dict)
    aliases: dict[str, str] = field(default_factory=dict)
    folders: dict[str, list[str]] = field(default_factory=dict)
    tags: dict[str, list[str]] = field(default_factory=dict)
    tag_slugs: dict[str, str] = field(default_factory=dict)
    timeline: list[str] = field(default_factory=list)
    issues: list[LinkIssue] = field(default_factory=list)
    conflicts: list[DocumentError] = field(default_factory=list)
    date_type: str = "modified"

    def links_from(self, slug: str) -> list[str]:
        return self.forward.get(slug, [])

    def backlinks_of(self, slug: str) -> list[str]:
        return self.backlinks.get(slug, [])

    def resolve_link(self, source: str, target: str) -> Optional[str]:
        return self.resolved.get(source, {}).get(target)

    def resolve_asset(self, source: str, target: str) -> Optional[str]:
        return self.resolved_assets.get(source, {}).get(target)

    def effective_date(self, slug: str) -> Optional[dt.datetime]:
        return effective_date(self.documents[slug], self.date_type)

    def tag_slug(self, tag: str) -> str:
        return self.tag_slugs.get(tag) or slugify_path(tag)


def effective_date(document: Document, date_type: str) -> Optional[dt.datetime]:
    return document.date(date_type)


def temporal_order(documents: Iterable[Document], date_type: str) -> list[Document]:
    """Newest first by effective date; ties by slug; undated documents last."""
    ordered = sorted(documents, key=lambda doc: doc.slug)
    dated = [doc for doc in ordered if effective_date(doc, date_type) is not None]
    undated = [doc for doc in ordered if effective_date(doc, date_type) is None]
    # reverse=True keeps the slug order of equal dates
    dated.sort(key=lambda doc: effective_date(doc, date_type), reverse=True)
    return dated + undated


class LinkResolver:
    """Resolve link targets against the filtered slug set.

    ``exact``: ``/x`` is root-relative, anything else relative to the linking
    document's folder. ``shortest``: a bare name matches the unique document
    with that last segment; paths try root-relative first, then relative.
    """

    def __init__(self, slugs: Iterable[str], policy: str = "shortest") -> None:
        self.slugs = set(slugs)
        self.policy = policy
        self.by_name: dict[str, list[str]] = {}
        for slug in sorted(self.slugs):
            name = posixpath.basename(slug)
            if name == "index" and "/" in slug:
                self.by_name.setdefault(posixpath.basename(posixpath.dirname(slug)), []).append(slug)
            self.by_name.setdefault(name, []).append(slug)

    def lookup(self, candidate: Optional[str]) -> Optional[str]:
        if candidate is None:
            return None
        candidate = candidate.strip("/")
        if candidate in {"", "."}:
            return "index" if "index" in self.slugs else None
        if candidate in self.slugs:
            return candidate
        index = f"{candidate}/index"
        if index in self.slugs:
            return index
        return None

    @staticmethod
    def join(folder: str, target: str) -> Optional[str]:
        joined = posixpath.normpath(posixpath.join(folder or ".", target))
        if joined == ".." or joined.startswith("../"):
            return None
        return joined

    def exact(self, source_folder: str, target: str) -> Optional[str]:
        if target.startswith("/"):
            return self.lookup(posixpath.normpath(target))
        return self.lookup(self.join(source_folder, target))

    def resolve(self, source: Document, target: str) -> tuple[Optional[str], tuple[str, ...]]:
        """Return (resolved slug, ambiguous candidates)."""
        if self.policy == "exact" or target.startswith(("/", "./", "../")):
            return self.exact(source.folder, target), ()
        name = target.rstrip("/")
        if "/" not in name:
            matches = self.by_name.get(name, [])
            if len(matches) == 1:
                return matches[0], ()
            exact = self.exact(source.folder, target)
            if exact is not None or not matches:
                return exact, ()
            return None, tuple(matches)
        resolved = self.lookup(target) or self.exact(source.folder, target)
        return resolved, ()


def assign_tag_slugs(tags: Iterable[str]) -> dict[str, str]:
    """One distinct page slug per tag.

    Tags that slugify alike, or to the tag index itself, get a numeric suffix
    in sorted tag order.
    """
    used = set(RESERVED_TAG_SLUGS)
    slugs = {}
    for tag in sorted(tags):
        base = slugify_path(tag) or "tag"
        slug = base
        counter = 2
        while slug in used:
            slug = f"{base}-{counter}"
            counter += 1
        used.add(slug)
        slugs[tag] = slug
    return slugs


def build_graph(
    documents: Iterable[Document],
    tree: Optional[FolderNode] = None,
    *,
    resolution: str = "shortest",
    date_type: str = "modified",
    tag_order: Optional[Callable[[Document], object]] = None,
    assets: Iterable[str] = (),
) -> ContentGraph:
    """Derive the graph from filtered documents.

    ``assets`` are the output paths of copied files; asset links and image
    embeds resolve against them with the same policy as page links.
    """
    docs = sorted(documents, key=lambda doc: doc.slug)
    graph = ContentGraph(date_type=date_type)
    graph.documents = {doc.slug: doc for doc in docs}
    resolver = LinkResolver(graph.documents, resolution)
    asset_resolver = LinkResolver(assets, resolution)

    backlinks: dict[str, set[str]] = {}
    for doc in docs:
        targets: list[str] = []
        resolved: dict[str, str] = {}
        resolved_assets: dict[str, str] = {}
        for link in doc.links:
            if link.external:
                continue
            if link.asset:
                path, candidates = asset_resolver.resolve(doc, link.target)
                if path is None:
                    kind = AMBIGUOUS if candidates else BROKEN
                    graph.issues.append(LinkIssue(doc.slug, link.target, kind, candidates))
                else:
                    resolved_assets[link.target] = path
                continue
            slug, candidates = resolver.resolve(doc, link.target)
            if slug is None:
                kind = AMBIGUOUS if candidates else BROKEN
                graph.issues.append(LinkIssue(doc.slug, link.target, kind, candidates))
                continue
            resolved[link.target] = slug
            if slug not in targets:
                targets.append(slug)
                backlinks.setdefault(slug, set()).add(doc.slug)
        graph.forward[doc.slug] = targets
        graph.resolved[doc.slug] = resolved
        if resolved_assets:
            graph.resolved_assets[doc.slug] = resolved_assets
    graph.backlinks = {slug: sorted(sources) for slug, sources in sorted(backlinks.items())}

    # first document in slug order claims an alias; page slugs always win
    for doc in docs:
        for alias in doc.meta.get("aliases") or []:
            if alias == doc.slug:
                continue
            owner = alias if alias in graph.documents else graph.aliases.get(alias)
            if owner is not None:
                if owner != doc.slug:
                    graph.conflicts.append(
                        DocumentError(doc.path, f"alias {alias!r} is already used by {owner}", stage="graph")
                    )
                continue
            graph.aliases[alias] = doc.slug

    if tree is not None:
        graph.folders = folder_members(tree)

    ordered = temporal_order(docs, date_type)
    graph.timeline = [doc.slug for doc in ordered]
    tag_source = ordered if tag_order is None else sorted(docs, key=tag_order)
    seen: set[tuple[str, str]] = set()
    for doc in tag_source:
        for tag in doc.tags:
            parts = tag.split("/")
            for depth in range(1, len(parts) + 1):
                name = "/".join(parts[:depth])
                if (name, doc.slug) not in seen:
                    seen.add((name, doc.slug))
                    graph.tags.setdefault(name, []).append(doc.slug)
    graph.tag_slugs = assign_tag_slugs(graph.tags)

    for issue in graph.issues:
        logger.warning("%s", issue)
    logger.debug(
        "Graph: %d documents, %d edges, %d issues",
        len(docs),
        sum(len(targets) for targets in graph.forward.values()),
        len(graph.issues),
    )
    return graph


@dataclass
class Site:
    """Everything emitters may read: the filtered documents and what was derived from them."""

    documents: list[Document]
    graph: ContentGraph
    explorer: FolderNode
    assets: list = field(default_factory=list)
