"""The document model every pipeline stage reads and produces."""

from __future__ import annotations

import dataclasses
import datetime as dt
import posixpath
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional

from .content import slugify_path
from .errors import DocumentError


@dataclass(frozen=True)
class Link:
    """One outbound reference found in a rendered document.

    ``target`` is the normalised path as written (no extension, no anchor);
    it may start with ``/``, ``./`` or ``../``. External links keep the URL.
    Asset links point at non-markdown files and keep their extension.
    """

    target: str
    text: str = ""
    anchor: str = ""
    external: bool = False
    asset: bool = False


@dataclass(frozen=True)
class Document:
    path: str
    slug: str
    raw: str
    source: Optional[Path] = None
    body: str = ""
    html: str = ""
    meta: Mapping[str, Any] = field(default_factory=dict)
    links: tuple[Link, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.meta, MappingProxyType):
            object.__setattr__(self, "meta", MappingProxyType(dict(self.meta)))
        object.__setattr__(self, "links", tuple(self.links))

    def evolve(self, **changes: Any) -> "Document":
        return dataclasses.replace(self, **changes)

    def with_meta(self, **values: Any) -> "Document":
        meta = dict(self.meta)
        meta.update(values)
        return self.evolve(meta=meta)

    @property
    def folder(self) -> str:
        return posixpath.dirname(self.slug)

    @property
    def name(self) -> str:
        return posixpath.basename(self.slug)

    @property
    def is_folder_index(self) -> bool:
        return self.name == "index"

    @property
    def title(self) -> str:
        return str(self.meta.get("title") or self.name)

    @property
    def tags(self) -> list[str]:
        return list(self.meta.get("tags") or [])

    def date(self, kind: str = "modified") -> Optional[dt.datetime]:
        dates = self.meta.get("dates") or {}
        return dates.get(kind)


def document_from_text(path: str, text: str, source: Optional[Path] = None) -> Document:
    path = path.replace("\\", "/").lstrip("/")
    return Document(path=path, slug=slugify_path(path), raw=text, source=source, body=text)


def load_document(source: Path, content_dir: Path) -> Document:
    rel = source.relative_to(content_dir).as_posix()
    try:
        text = source.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise DocumentError(rel, f"cannot read source: {exc}", stage="load") from exc
    return document_from_text(rel, text, source=source)
