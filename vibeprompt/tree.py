"""Unified project tree built from local folders, uploaded archives or GitHub."""

from __future__ import annotations

import logging
import os
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Union

from vibeprompt.errors import DirectoryAccessUnsupported
from vibeprompt.ignore import IGNORE_FILE_NAME, is_path_system_ignored, is_system_ignored

logger = logging.getLogger(__name__)


class NodeKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"


@dataclass(frozen=True)
class NativeRef:
    path: Path


@dataclass(frozen=True)
class BlobRef:
    data: bytes = field(repr=False)


@dataclass(frozen=True)
class RemoteRef:
    url: str
    token: Optional[str] = field(default=None, repr=False)


ContentRef = Union[NativeRef, BlobRef, RemoteRef]


@dataclass(frozen=True)
class RemoteOrigin:
    remote_url: str
    auth_token: Optional[str] = field(default=None, repr=False)


@dataclass
class Node:
    id: str
    name: str
    kind: NodeKind
    path: str
    children: List["Node"] = field(default_factory=list)
    source: Optional[ContentRef] = None
    origin: Optional[RemoteOrigin] = None

    def __post_init__(self):
        if self.kind is NodeKind.FILE and self.children:
            raise ValueError(f"file node {self.path!r} cannot have children")

    @property
    def is_dir(self) -> bool:
        return self.kind is NodeKind.DIRECTORY

    @property
    def is_file(self) -> bool:
        return self.kind is NodeKind.FILE


@dataclass
class ProjectTree:
    root: Node
    # dotfiles never reach the tree, so the root ignore file is kept aside
    ignore_source: Optional[ContentRef] = None
    truncated: bool = False

    @property
    def name(self) -> str:
        return self.root.name

    def files(self) -> List[str]:
        return all_file_paths(self.root)

    def find(self, path: str) -> Optional[Node]:
        return find_node(self.root, path)


@dataclass(frozen=True)
class FlatEntry:
    """One uploaded file: a '/'-joined path whose first segment is the root."""
    path: str
    data: bytes = field(repr=False)


# ASCII punctuation and symbols in Unicode root-collation order; all of them
# sort before digits, and digits before letters.
_SYMBOL_ORDER = "_-,;:!?.'\"()[]{}@*/\\&#%`^+<=>|~$"
_SYMBOL_RANK = {c: i for i, c in enumerate(_SYMBOL_ORDER)}


def _base_letters(ch: str) -> str:
    decomposed = unicodedata.normalize("NFKD", ch.casefold())
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def _primary_weight(ch: str):
    if ch.isspace():
        return (0, 0)
    rank = _SYMBOL_RANK.get(ch)
    if rank is not None:
        return (1, rank)
    if ch.isdigit():
        return (2, unicodedata.digit(ch, ord(ch)))
    return (3, _base_letters(ch))


def collation_key(name: str):
    """Locale-style ordering: base letters first, then accents, then lowercase before uppercase."""
    return (
        tuple(_primary_weight(ch) for ch in name),
        name.casefold(),
        name.swapcase(),
    )


def node_sort_key(node: Node):
    return (0 if node.is_dir else 1, collation_key(node.name))


def sort_children(nodes: List[Node]) -> List[Node]:
    return sorted(nodes, key=node_sort_key)


def sort_recursive(node: Node) -> None:
    if node.is_dir:
        node.children = sort_children(node.children)
        for child in node.children:
            sort_recursive(child)


def iter_nodes(node: Node) -> Iterator[Node]:
    yield node
    for child in node.children:
        yield from iter_nodes(child)


def all_file_paths(node: Optional[Node]) -> List[str]:
    if node is None:
        return []
    return [n.path for n in iter_nodes(node) if n.is_file]


def find_node(node: Optional[Node], path: str) -> Optional[Node]:
    if node is None:
        return None
    for candidate in iter_nodes(node):
        if candidate.path == path:
            return candidate
    return None


def relative_path(root: Node, node: Node) -> str:
    if node.path == root.path:
        return ""
    prefix = root.path + "/"
    if node.path.startswith(prefix):
        return node.path[len(prefix):]
    return node.path


# ---------------------------------------------------------------------------
# native traversal


def _read_directory(directory: Path, parent: Node) -> None:
    children = []
    with os.scandir(directory) as entries:
        for entry in entries:
            if is_system_ignored(entry.name):
                continue
            path = f"{parent.path}/{entry.name}"
            if entry.is_dir(follow_symlinks=False):
                child = Node(id=path, name=entry.name, kind=NodeKind.DIRECTORY, path=path)
                _read_directory(Path(entry.path), child)
            elif entry.is_file():
                child = Node(
                    id=path,
                    name=entry.name,
                    kind=NodeKind.FILE,
                    path=path,
                    source=NativeRef(Path(entry.path)),
                )
            else:
                continue
            children.append(child)
    parent.children = sort_children(children)


def build_native_tree(root_dir: Union[str, Path]) -> ProjectTree:
    """Depth-first walk of a local directory."""
    root_dir = Path(root_dir)
    if not hasattr(os, "scandir") or not root_dir.is_dir():
        raise DirectoryAccessUnsupported(f"Directory access not supported for {root_dir}")

    root_dir = root_dir.resolve()
    name = root_dir.name
    root = Node(id=name, name=name, kind=NodeKind.DIRECTORY, path=name)
    _read_directory(root_dir, root)

    ignore_file = root_dir / IGNORE_FILE_NAME
    ignore_source = NativeRef(ignore_file) if ignore_file.is_file() else None
    logger.debug("Read %d files from %s", len(all_file_paths(root)), root_dir)
    return ProjectTree(root=root, ignore_source=ignore_source)


# ---------------------------------------------------------------------------
# flat list / manifest reconstruction


class PathIndexBuilder:
    """Builds an unsorted tree from '/'-joined paths via a path -> Node index."""

    def __init__(self, root: Node):
        self.root = root
        self.index: Dict[str, Node] = {root.path: root}

    def insert(self, parts: List[str], leaf_kind: NodeKind, source: Optional[ContentRef] = None,
               origin: Optional[RemoteOrigin] = None) -> None:
        current = self.root
        current_path = self.root.path
        for i, part in enumerate(parts):
            is_leaf = i == len(parts) - 1
            path = f"{current_path}/{part}"
            child = self.index.get(path)
            if child is None:
                kind = leaf_kind if is_leaf else NodeKind.DIRECTORY
                child = Node(
                    id=path,
                    name=part,
                    kind=kind,
                    path=path,
                    source=source if kind is NodeKind.FILE else None,
                    origin=origin if kind is NodeKind.FILE else None,
                )
                current.children.append(child)
                self.index[path] = child
            elif child.is_file and not is_leaf:
                # a file never gets children
                logger.warning("Skipping %s: %s is already a file", "/".join(parts), path)
                return
            current = child
            current_path = path

    def finish(self) -> Node:
        sort_recursive(self.root)
        return self.root


def build_flat_tree(entries: Iterable[FlatEntry]) -> Optional[ProjectTree]:
    entries = list(entries)
    if not entries:
        return None

    root_name = entries[0].path.split("/")[0]
    builder = PathIndexBuilder(Node(id=root_name, name=root_name, kind=NodeKind.DIRECTORY, path=root_name))
    ignore_source = None

    for entry in entries:
        parts = entry.path.split("/")
        if parts[1:] == [IGNORE_FILE_NAME]:
            ignore_source = BlobRef(entry.data)
        if is_path_system_ignored(entry.path):
            continue
        if len(parts) < 2:
            continue
        builder.insert(parts[1:], NodeKind.FILE, source=BlobRef(entry.data))

    return ProjectTree(root=builder.finish(), ignore_source=ignore_source)
