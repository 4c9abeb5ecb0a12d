from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from .errors import ConfigError
from .utils import parse_bool, parse_int

try:
    import tomllib as toml
except ImportError:
    import tomli as toml

logger = logging.getLogger(__name__)

LINK_RESOLUTIONS = ("shortest", "exact")
DATE_SOURCES = ("frontmatter", "git", "filesystem")
DATE_TYPES = ("created", "modified", "published")
ERROR_POLICIES = ("skip", "abort")

DEFAULT_TRANSFORMERS = [
    "FrontMatter",
    "CreatedModifiedDate",
    "ObsidianFlavoredMarkdown",
    "GitHubFlavoredMarkdown",
    "SyntaxHighlighting",
    "TableOfContents",
    "CrawlLinks",
    "Description",
]
DEFAULT_FILTERS = ["RemoveDrafts"]
DEFAULT_EMITTERS = [
    "AliasRedirects",
    "ComponentResources",
    "ContentPage",
    "FolderPage",
    "TagPage",
    "ContentIndex",
    "Assets",
    "Static",
    "NotFoundPage",
]
DEFAULT_LAYOUT = {
    "content": {
        "before_body": ["breadcrumbs", "article_title", "content_meta", "tag_list"],
        "left": ["page_title", "explorer"],
        "right": ["table_of_contents", "backlinks"],
    },
    "list": {
        "before_body": ["breadcrumbs", "article_title", "content_meta"],
        "left": ["page_title", "explorer"],
        "right": [],
    },
}


@dataclass
class SiteConfig:
    page_title: str = "Garden"
    page_title_suffix: str = ""
    base_url: str = ""
    locale: str = "en-US"
    content: str = "content"
    output: str = "public"
    static: str = "static"
    template: str = ""
    ignore_patterns: list = field(default_factory=lambda: ["private", "templates", ".obsidian"])
    default_date_type: str = "modified"
    date_priority: list = field(default_factory=lambda: list(DATE_SOURCES))
    link_resolution: str = "shortest"
    explorer_sort: str = "default"
    transformers: list = field(default_factory=lambda: list(DEFAULT_TRANSFORMERS))
    filters: list = field(default_factory=lambda: list(DEFAULT_FILTERS))
    emitters: list = field(default_factory=lambda: list(DEFAULT_EMITTERS))
    layout: dict = field(default_factory=lambda: {k: dict(v) for k, v in DEFAULT_LAYOUT.items()})
    on_error: str = "skip"
    build_workers: int = 0
    description_length: int = 150
    feed_limit: int = 10
    incremental: bool = True
    lock_file: str = ".gardengen.lock.json"

    def validate(self) -> "SiteConfig":
        if self.link_resolution not in LINK_RESOLUTIONS:
            raise ConfigError(
                f"link_resolution must be one of {', '.join(LINK_RESOLUTIONS)}, got {self.link_resolution!r}"
            )
        if self.default_date_type not in DATE_TYPES:
            raise ConfigError(
                f"default_date_type must be one of {', '.join(DATE_TYPES)}, got {self.default_date_type!r}"
            )
        if self.on_error not in ERROR_POLICIES:
            raise ConfigError(f"on_error must be one of {', '.join(ERROR_POLICIES)}, got {self.on_error!r}")
        if not self.date_priority:
            raise ConfigError("date_priority must name at least one date source")
        unknown = [source for source in self.date_priority if source not in DATE_SOURCES]
        if unknown:
            raise ConfigError(f"Unknown date source(s) in date_priority: {', '.join(map(str, unknown))}")
        if len(set(self.date_priority)) != len(self.date_priority):
            raise ConfigError("date_priority must not repeat a date source")
        for key in ("transformers", "filters", "emitters", "ignore_patterns"):
            if not isinstance(getattr(self, key), list):
                raise ConfigError(f"{key} must be a list")
        if not isinstance(self.layout, dict):
            raise ConfigError("layout must be a mapping of page kind to slots")
        return self


def read_config_file(path: Path) -> dict:
    if not path.exists():
        return {}
    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    if suffix == ".toml":
        try:
            data = toml.loads(text)
        except toml.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid TOML in config file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"TOML config must be a mapping: {path}")
        return data
    if suffix in {".yml", ".yaml"}:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in config file {path}: {exc}") from exc
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"YAML config must be a mapping: {path}")
        return data
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"JSON config must be a mapping: {path}")
    return data


def config_from_mapping(data: dict) -> SiteConfig:
    known = {item.name: item for item in fields(SiteConfig)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
    defaults = SiteConfig()
    values: dict[str, Any] = {}
    for name in known:
        if name not in data or data[name] is None:
            continue
        value = data[name]
        default = getattr(defaults, name)
        if isinstance(default, bool):
            value = parse_bool(value)
        elif isinstance(default, int):
            value = parse_int(value, default)
        elif isinstance(default, str):
            value = str(value)
        elif name == "layout" and isinstance(value, dict):
            merged = {k: dict(v) for k, v in default.items()}
            for kind, slots in value.items():
                if not isinstance(slots, dict):
                    raise ConfigError(f"layout.{kind} must be a mapping of slot to components")
                merged.setdefault(kind, {}).update(slots)
            value = merged
        values[name] = value
    return SiteConfig(**values).validate()


def load_config(path: Path) -> SiteConfig:
    return config_from_mapping(read_config_file(path))


@dataclass(frozen=True)
class BuildContext:
    """Build-wide values handed explicitly to every stage call."""

    config: SiteConfig
    content_dir: Path
    static_dir: Optional[Path] = None
    workers: int = 1
    renderer: Any = None
