from __future__ import annotations

from abc import ABC, abstractmethod

from .config import BuildContext
from .document import Document
from .utils import parse_bool


class Filter(ABC):
    """Predicate deciding whether a transformed document is published."""

    name = ""

    @abstractmethod
    def include(self, document: Document, ctx: BuildContext) -> bool:
        ...


class RemoveDrafts(Filter):
    name = "RemoveDrafts"

    def include(self, document: Document, ctx: BuildContext) -> bool:
        draft = document.meta.get("draft")
        if draft is None:
            draft = (document.meta.get("frontmatter") or {}).get("draft")
        return not parse_bool(draft)


class ExplicitPublish(Filter):
    name = "ExplicitPublish"

    def include(self, document: Document, ctx: BuildContext) -> bool:
        publish = document.meta.get("publish")
        if publish is None:
            publish = (document.meta.get("frontmatter") or {}).get("publish")
        return parse_bool(publish)


FILTERS = {cls.name: cls for cls in (RemoveDrafts, ExplicitPublish)}
