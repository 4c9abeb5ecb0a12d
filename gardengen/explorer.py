"""Folder/file navigation tree and the comparators that order it."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from functools import cmp_to_key
from typing import Callable, Iterable, Iterator, Optional, Union

from .document import Document
from .errors import ConfigError
from .utils import compare_keys, natural_key


@dataclass
class FileNode:
    display_name: str
    file_path: str
    slug: str
    document: Optional[Document] = None

    @property
    def is_folder(self) -> bool:
        return False


@dataclass
class FolderNode:
    name: str
    path: str
    display_name: str = ""
    children: list = field(default_factory=list)
    document: Optional[Document] = None

    @property
    def is_folder(self) -> bool:
        return True

    @property
    def slug(self) -> str:
        return f"{self.path}/index" if self.path else "index"

    def folders(self) -> list["FolderNode"]:
        return [child for child in self.children if child.is_folder]

    def files(self) -> list[FileNode]:
        return [child for child in self.children if not child.is_folder]

    def walk(self) -> Iterator["FolderNode"]:
        yield self
        for child in self.folders():
            yield from child.walk()

    def find(self, path: str) -> Optional["FolderNode"]:
        for folder in self.walk():
            if folder.path == path:
                return folder
        return None


Node = Union[FileNode, FolderNode]
SortFn = Callable[[Node, Node], int]


def default_sort(a: Node, b: Node) -> int:
    """Folders first, then natural, case-insensitive display name order."""
    if a.is_folder != b.is_folder:
        return -1 if a.is_folder else 1
    return compare_keys(natural_key(a.display_name), natural_key(b.display_name))


def trailing_token(node: Node) -> str:
    return node.file_path.split("-")[-1]


def newest_first_sort(a: Node, b: Node) -> int:
    """Folders first; files by the last dash-delimited token of their path, descending."""
    if a.is_folder != b.is_folder:
        return -1 if a.is_folder else 1
    if not a.is_folder:
        return compare_keys(natural_key(trailing_token(b)), natural_key(trailing_token(a)))
    return compare_keys(natural_key(a.display_name), natural_key(b.display_name))


SORT_FUNCTIONS = {
    "default": default_sort,
    "newest-first": newest_first_sort,
}


def resolve_sort(name: str) -> SortFn:
    try:
        return SORT_FUNCTIONS[name]
    except KeyError:
        raise ConfigError(
            f"Unknown explorer_sort {name!r}; expected one of {', '.join(sorted(SORT_FUNCTIONS))}"
        ) from None


def total_order(sort_fn: SortFn) -> SortFn:
    """Break comparator ties by kind and slug so sibling order never depends on input order."""

    def compare(a: Node, b: Node) -> int:
        result = sort_fn(a, b)
        if result:
            return -1 if result < 0 else 1
        return compare_keys((not a.is_folder, a.slug), (not b.is_folder, b.slug))

    return compare


def build_explorer(documents: Iterable[Document], sort_fn: Optional[SortFn] = None) -> FolderNode:
    root = FolderNode(name="", path="")
    folders = {"": root}

    def ensure(path: str) -> FolderNode:
        if path in folders:
            return folders[path]
        parent = ensure(posixpath.dirname(path))
        name = posixpath.basename(path)
        node = FolderNode(name=name, path=path, display_name=name)
        parent.children.append(node)
        folders[path] = node
        return node

    for document in sorted(documents, key=lambda doc: doc.slug):
        folder = ensure(document.folder)
        if document.is_folder_index:
            folder.document = document
            if folder is not root and document.meta.get("title"):
                folder.display_name = document.title
            continue
        folder.children.append(
            FileNode(
                display_name=document.title,
                file_path=document.path,
                slug=document.slug,
                document=document,
            )
        )

    key = cmp_to_key(total_order(sort_fn or default_sort))
    for folder in root.walk():
        folder.children.sort(key=key)
    return root


def folder_members(root: FolderNode) -> dict[str, list[str]]:
    """Direct file members of every folder, the root as ``""``, in explorer order."""
    return {folder.path: [child.slug for child in folder.files()] for folder in root.walk()}
