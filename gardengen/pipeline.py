"""Discovery, the Transform -> Filter -> Emit runner and whole-build orchestration."""

from __future__ import annotations

import fnmatch
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Iterable, Optional, TypeVar

from .config import BuildContext, SiteConfig
from .content import is_markdown, slugify_path
from .document import Document, load_document
from .emitters import EMITTERS, Artifact, Emitter, resolve_collisions, sort_artifacts
from .errors import BuildReport, ConfigError, DocumentError
from .explorer import build_explorer, resolve_sort
from .filters import FILTERS, Filter
from .graph import Site, build_graph
from .output import check_output_dir, publish
from .pages import PageRenderer
from .render import DEFAULT_TEMPLATE, read_template
from .transformers import PHASES, TRANSFORMERS, Transformer

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")
Outcome = tuple[Optional[Document], Optional[DocumentError]]


def resolve_workers(requested: int) -> int:
    workers = requested if requested > 0 else (os.cpu_count() or 1)
    return max(1, min(workers, 32))


def is_ignored(rel: str, patterns: Iterable[str]) -> bool:
    segments = rel.split("/")
    for pattern in patterns:
        if fnmatch.fnmatchcase(rel, pattern):
            return True
        if any(fnmatch.fnmatchcase(segment, pattern) for segment in segments):
            return True
    return False


def discover(content_dir: Path, ignore_patterns: Iterable[str] = ()) -> tuple[list[Path], list[tuple[Path, str]]]:
    """Return (markdown sources, assets as (source, output path)) in path order."""
    patterns = list(ignore_patterns)
    sources: list[Path] = []
    assets: list[tuple[Path, str]] = []
    for path in sorted(content_dir.rglob("*"), key=lambda p: p.as_posix()):
        if not path.is_file():
            continue
        rel = path.relative_to(content_dir).as_posix()
        if is_ignored(rel, patterns):
            continue
        if is_markdown(rel):
            sources.append(path)
        else:
            assets.append((path, slugify_path(rel)))
    logger.debug("Discovered %d documents and %d assets in %s", len(sources), len(assets), content_dir)
    return sources, assets


def build_plugins(entries: list, registry: dict, kind: str) -> list:
    """Instantiate plugins from config entries: a name or ``{name = ..., **options}``."""
    plugins = []
    for entry in entries:
        if isinstance(entry, str):
            name, options = entry, {}
        elif isinstance(entry, dict) and isinstance(entry.get("name"), str):
            options = dict(entry)
            name = options.pop("name")
        else:
            raise ConfigError(f"Invalid {kind} entry: {entry!r}")
        cls = registry.get(name)
        if cls is None:
            raise ConfigError(f"Unknown {kind} {name!r}; available: {', '.join(sorted(registry))}")
        try:
            plugins.append(cls(**options))
        except TypeError as exc:
            raise ConfigError(f"Invalid options for {kind} {name!r}: {exc}") from exc
    return plugins


def order_transformers(transformers: list[Transformer]) -> list[Transformer]:
    """Group transformers by phase; the sort is stable, so registration order holds within a phase."""
    for transformer in transformers:
        if transformer.phase not in PHASES:
            raise ConfigError(f"Transformer {transformer.name} has unknown phase {transformer.phase!r}")
    if not any(transformer.phase == "render" for transformer in transformers):
        for transformer in transformers:
            if transformer.needs_html:
                raise ConfigError(f"Transformer {transformer.name} needs HTML but no renderer is configured")
    return sorted(transformers, key=lambda transformer: PHASES.index(transformer.phase))


class Pipeline:
    """Ordered transformer, filter and emitter lists plus the worker pool that runs them."""

    def __init__(
        self,
        transformers: list[Transformer],
        filters: list[Filter],
        emitters: list[Emitter],
        workers: int = 1,
        on_error: str = "skip",
    ) -> None:
        self.transformers = order_transformers(transformers)
        self.filters = list(filters)
        self.emitters = list(emitters)
        self.workers = max(1, workers)
        self.on_error = on_error

    @classmethod
    def from_config(cls, config: SiteConfig, workers: int = 1) -> "Pipeline":
        return cls(
            build_plugins(config.transformers, TRANSFORMERS, "transformer"),
            build_plugins(config.filters, FILTERS, "filter"),
            build_plugins(config.emitters, EMITTERS, "emitter"),
            workers=workers,
            on_error=config.on_error,
        )

    def map(self, fn: Callable[[T], R], items: list[T]) -> list[R]:
        workers = min(self.workers, len(items)) if items else 1
        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                return list(executor.map(fn, items))
        return [fn(item) for item in items]

    def collect(self, outcomes: list[Outcome], report: BuildReport) -> list[Document]:
        documents = []
        for document, error in outcomes:
            if error is None:
                documents.append(document)
            elif self.on_error == "abort":
                raise error
            else:
                report.add_error(error)
        return documents

    def load(self, sources: list[Path], ctx: BuildContext, report: BuildReport) -> list[Document]:
        def run(source: Path) -> Outcome:
            try:
                return load_document(source, ctx.content_dir), None
            except DocumentError as exc:
                return None, exc

        return self.collect(self.map(run, sources), report)

    def transform_one(self, document: Document, ctx: BuildContext) -> Document:
        for transformer in self.transformers:
            try:
                document = transformer.apply(document, ctx)
            except DocumentError:
                raise
            except Exception as exc:
                raise transformer.fail(document, f"{type(exc).__name__}: {exc}") from exc
        return document

    def transform(self, documents: list[Document], ctx: BuildContext, report: BuildReport) -> list[Document]:
        def run(document: Document) -> Outcome:
            try:
                return self.transform_one(document, ctx), None
            except DocumentError as exc:
                return None, exc

        return self.collect(self.map(run, documents), report)

    def include(self, document: Document, ctx: BuildContext) -> bool:
        return all(f.include(document, ctx) for f in self.filters)

    def filter(self, documents: list[Document], ctx: BuildContext, report: BuildReport) -> list[Document]:
        kept = []
        for document in documents:
            if self.include(document, ctx):
                kept.append(document)
            else:
                logger.debug("Excluded %s", document.slug)
                report.excluded.append(document.slug)
        return self.dedupe(kept, report)

    def dedupe(self, documents: list[Document], report: BuildReport) -> list[Document]:
        owners: dict[str, Document] = {}
        outcomes: list[Outcome] = []
        for document in sorted(documents, key=lambda doc: doc.path):
            owner = owners.get(document.slug)
            if owner is None:
                owners[document.slug] = document
                outcomes.append((document, None))
            else:
                error = DocumentError(
                    document.path, f"slug {document.slug!r} is already used by {owner.path}", stage="filter"
                )
                outcomes.append((None, error))
        return self.collect(outcomes, report)

    def drop_outputs(self, errors: list[DocumentError], report: BuildReport) -> None:
        for error in errors:
            if self.on_error == "abort":
                raise error
            report.add_conflict(error)

    def emit(self, site: Site, ctx: BuildContext, report: BuildReport) -> list[Artifact]:
        named: list[tuple[str, Artifact]] = []
        for emitter in self.emitters:
            artifacts = emitter.emit(site, ctx)
            logger.debug("%s produced %d artifacts", emitter.name, len(artifacts))
            named.extend((emitter.name, artifact) for artifact in artifacts)
        artifacts, dropped = resolve_collisions(named)
        self.drop_outputs(dropped, report)
        return sort_artifacts(artifacts)


def resolve_path(base: Path, value: str) -> Path:
    path = Path(value)
    return path if path.is_absolute() else base / path


def prepare(config: SiteConfig, project_root: Path) -> tuple[Pipeline, BuildContext, Path]:
    """Validate everything that can fail before a single document is read."""
    content_dir = resolve_path(project_root, config.content)
    if not content_dir.is_dir():
        raise ConfigError(f"Content directory not found: {content_dir}")
    output_dir = resolve_path(project_root, config.output)
    check_output_dir(output_dir, project_root, content_dir)

    template = DEFAULT_TEMPLATE
    if config.template:
        template_path = resolve_path(project_root, config.template)
        if not template_path.is_file():
            raise ConfigError(f"Template not found: {template_path}")
        template = read_template(template_path)

    workers = resolve_workers(config.build_workers)
    pipeline = Pipeline.from_config(config, workers)
    resolve_sort(config.explorer_sort)
    ctx = BuildContext(
        config=config,
        content_dir=content_dir,
        static_dir=resolve_path(project_root, config.static),
        workers=workers,
        renderer=PageRenderer(config, template),
    )
    return pipeline, ctx, output_dir


def build(pipeline: Pipeline, ctx: BuildContext, report: BuildReport) -> tuple[Site, list[Artifact]]:
    config = ctx.config
    sources, assets = discover(ctx.content_dir, config.ignore_patterns)
    report.discovered = len(sources)

    documents = pipeline.load(sources, ctx, report)
    documents = pipeline.transform(documents, ctx, report)
    documents = pipeline.filter(documents, ctx, report)
    documents = sorted(documents, key=lambda doc: doc.slug)

    explorer = build_explorer(documents, resolve_sort(config.explorer_sort))
    graph = build_graph(
        documents,
        explorer,
        resolution=config.link_resolution,
        date_type=config.default_date_type,
        assets=[path for _, path in assets],
    )
    pipeline.drop_outputs(graph.conflicts, report)
    report.link_issues = list(graph.issues)
    report.documents = len(documents)

    site = Site(documents=documents, graph=graph, explorer=explorer, assets=assets)
    artifacts = pipeline.emit(site, ctx, report)
    report.artifacts = len(artifacts)
    return site, artifacts


def build_site(config: SiteConfig, project_root: Optional[Path] = None) -> BuildReport:
    project_root = project_root or Path.cwd()
    pipeline, ctx, output_dir = prepare(config, project_root)
    report = BuildReport(output_dir=str(output_dir))
    _, artifacts = build(pipeline, ctx, report)
    report.published = publish(
        artifacts,
        output_dir,
        lock_path=resolve_path(project_root, config.lock_file),
        incremental=config.incremental,
        workers=ctx.workers,
    )
    return report
