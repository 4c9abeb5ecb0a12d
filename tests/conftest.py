"""Shared fixtures: content trees in tmp_path and in-memory documents."""

from __future__ import annotations

import datetime as dt
from pathlib import Path

import pytest

from gardengen.config import BuildContext, SiteConfig
from gardengen.document import Document, Link, document_from_text


def write_tree(root: Path, files: dict[str, str]) -> Path:
    for rel, text in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    return root


def make_doc(path: str, links: tuple = (), date: dt.datetime | None = None, **meta) -> Document:
    """A document as it looks after the transform stage, without running it."""
    doc = document_from_text(path, "")
    if date is not None:
        meta["dates"] = {"created": date, "modified": date, "published": None}
    return doc.evolve(links=tuple(Link(target) for target in links)).with_meta(**meta)


def utc(*args: int) -> dt.datetime:
    return dt.datetime(*args, tzinfo=dt.timezone.utc)


@pytest.fixture
def config() -> SiteConfig:
    return SiteConfig(date_priority=["frontmatter", "filesystem"])


@pytest.fixture
def content_dir(tmp_path: Path) -> Path:
    path = tmp_path / "content"
    path.mkdir()
    return path


@pytest.fixture
def ctx(config: SiteConfig, content_dir: Path) -> BuildContext:
    return BuildContext(config=config, content_dir=content_dir)


@pytest.fixture
def garden(tmp_path: Path) -> Path:
    """A small project: notes with links, a draft, a folder, tags and an asset."""
    write_tree(
        tmp_path / "content",
        {
            "index.md": "---\ntitle: Home\n---\nWelcome. Start with [[a]].\n",
            "a.md": (
                "---\ntitle: Alpha\ntags: [project/alpha]\naliases: [first]\n"
                "modified: 2024-03-01\n---\nAlpha links to [[b]] and [[missing]].\n"
            ),
            "b.md": "---\ntitle: Beta\ntags: [project]\nmodified: 2024-02-01\n---\n# Beta\n\nBack to [[a|Alpha]].\n",
            "c.md": "---\ndraft: true\n---\nSecret draft linking [[b]].\n",
            "notes/one.md": "---\ndate: 2023-12-24\n---\nOne note.\n",
            "notes/two.md": "Two note.\n",
            "img/pic.png": "not really a png",
            "private/hidden.md": "Never published.\n",
        },
    )
    write_tree(tmp_path / "static", {"extra.css": "body { color: red; }\n"})
    return tmp_path


@pytest.fixture
def garden_config() -> SiteConfig:
    return SiteConfig(
        page_title="Test Garden",
        date_priority=["frontmatter", "filesystem"],
        build_workers=2,
    )
