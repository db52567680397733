"""Discover Markdown documents and arrange them as a page tree.

A directory's `index.md` (or `README.md`) becomes the node for that
directory and every other document below it becomes its child. Without an
index file, the directory's documents are attached to the nearest enclosing
node instead. Trees are returned in pre-order: a node always precedes its
descendants, which is what page creation on the remote side relies on.
"""

from __future__ import annotations

import fnmatch
import logging
from collections.abc import Iterable, Iterator
from pathlib import Path

from .config import IGNORE_FILENAME, IGNORED_DIRECTORIES, INDEX_FILENAMES
from .frontmatter import parse_document
from .models import DocumentNode

log = logging.getLogger(__name__)


class SourceMissingError(Exception):
    """Raised when the sync root does not exist or is not a directory."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"Source directory not found: {path}")


class HierarchyResolver:
    """Builds an ordered forest of DocumentNode from a directory."""

    def __init__(self, ignored_directories: Iterable[str] = IGNORED_DIRECTORIES) -> None:
        self.ignored_directories = frozenset(ignored_directories)
        self.warnings: list[str] = []
        self.skipped: list[Path] = []

    def resolve(self, root: Path) -> list[DocumentNode]:
        """Resolve the document tree under root.

        Returns:
            Top-level nodes in pre-order. An empty list means the root exists
            but holds no documents.

        Raises:
            SourceMissingError: If root does not exist.
        """
        self.warnings = []
        self.skipped = []

        if not root.exists() or not root.is_dir():
            raise SourceMissingError(root)

        root = root.resolve()
        return self._resolve_directory(root, root, [])

    def _resolve_directory(
        self, directory: Path, root: Path, inherited_patterns: list[str]
    ) -> list[DocumentNode]:
        patterns = inherited_patterns + _read_ignore_file(directory / IGNORE_FILENAME)

        files: list[Path] = []
        subdirectories: list[Path] = []
        for entry in sorted(directory.iterdir(), key=lambda p: p.name.lower()):
            if entry.name.startswith("."):
                continue
            if _is_ignored(entry, root, patterns):
                log.debug("Ignoring %s (matched %s)", entry, IGNORE_FILENAME)
                continue
            if entry.is_dir():
                if entry.name.lower() not in self.ignored_directories:
                    subdirectories.append(entry)
            elif entry.suffix.lower() == ".md":
                files.append(entry)

        index_file = _find_index_file(files)

        children: list[DocumentNode] = []
        for md_file in files:
            if md_file == index_file:
                continue
            node = self._build_node(md_file, root)
            if node is not None:
                children.append(node)
        for subdirectory in subdirectories:
            children.extend(self._resolve_directory(subdirectory, root, patterns))

        if index_file is not None:
            index_node = self._build_node(index_file, root)
            if index_node is not None:
                index_node.children = children
                return [index_node]

        return children

    def _build_node(self, path: Path, root: Path) -> DocumentNode | None:
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            message = f"Could not read {path}: {e}"
            log.warning(message)
            self.warnings.append(message)
            return None

        parsed = parse_document(text, path)
        if parsed.warning:
            self.warnings.append(parsed.warning)

        if not parsed.metadata.synchronized:
            log.info("Skipping %s (synchronized: false)", path.relative_to(root))
            self.skipped.append(path)
            return None

        return DocumentNode(
            absolute_path=path,
            relative_path=path.relative_to(root).as_posix(),
            metadata=parsed.metadata,
            raw_content=parsed.content,
        )


def flatten_tree(nodes: Iterable[DocumentNode]) -> list[DocumentNode]:
    """Flatten a forest in pre-order, stamping each node's parent_source_path.

    Roots get None; every other node gets the absolute path of its parent,
    which always appears earlier in the returned list.
    """
    return list(_walk(nodes, None))


def _walk(nodes: Iterable[DocumentNode], parent: Path | None) -> Iterator[DocumentNode]:
    for node in nodes:
        node.parent_source_path = parent
        yield node
        yield from _walk(node.children, node.absolute_path)


def _find_index_file(files: list[Path]) -> Path | None:
    by_name = {f.name.lower(): f for f in files}
    for name in INDEX_FILENAMES:
        if name in by_name:
            return by_name[name]
    return None


def _read_ignore_file(path: Path) -> list[str]:
    if not path.is_file():
        return []
    patterns = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            patterns.append(line.rstrip("/"))
    return patterns


def _is_ignored(entry: Path, root: Path, patterns: list[str]) -> bool:
    if not patterns:
        return False
    relative = entry.relative_to(root).as_posix()
    return any(
        fnmatch.fnmatch(entry.name, pattern) or fnmatch.fnmatch(relative, pattern)
        for pattern in patterns
    )
