"""Error taxonomy and the per-build report."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)


class GardenError(Exception):
    """Base class for every error the generator raises on purpose."""


class ConfigError(GardenError):
    """Invalid configuration. Fatal; raised before any artifact is written."""


class DocumentError(GardenError):
    """A single document could not be processed."""

    def __init__(self, path: str, message: str, stage: str = "") -> None:
        self.path = path
        self.message = message
        self.stage = stage
        prefix = f"[{stage}] " if stage else ""
        super().__init__(f"{prefix}{path}: {message}")


class OutputError(GardenError):
    """The output directory could not be written."""

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        self.message = message
        super().__init__(f"Cannot write {path}: {message}")


@dataclass
class BuildReport:
    """Everything a build wants to tell the user once it is over."""

    discovered: int = 0
    document_errors: list[DocumentError] = field(default_factory=list)
    excluded: list[str] = field(default_factory=list)
    output_conflicts: list[DocumentError] = field(default_factory=list)
    link_issues: list = field(default_factory=list)
    documents: int = 0
    artifacts: int = 0
    published: bool = False
    output_dir: Optional[str] = None

    def add_error(self, error: DocumentError) -> None:
        logger.warning("Skipping %s", error)
        self.document_errors.append(error)

    def add_conflict(self, error: DocumentError) -> None:
        logger.warning("Dropping output: %s", error)
        self.output_conflicts.append(error)

    @property
    def success(self) -> bool:
        return not self.document_errors

    def summary_text(self) -> str:
        lines = [
            f"Documents: {self.documents} built, {len(self.excluded)} filtered, "
            f"{len(self.document_errors)} failed (of {self.discovered} discovered)",
            f"Artifacts: {self.artifacts}" + ("" if self.published else " (unchanged, not published)"),
        ]
        if self.document_errors:
            lines.append("Document errors:")
            lines.extend(f"  - {error}" for error in self.document_errors)
        if self.output_conflicts:
            lines.append(f"Output conflicts: {len(self.output_conflicts)}")
            lines.extend(f"  - {error}" for error in self.output_conflicts)
        if self.link_issues:
            lines.append(f"Link issues: {len(self.link_issues)}")
            lines.extend(f"  - {issue}" for issue in self.link_issues)
        return "\n".join(lines)
