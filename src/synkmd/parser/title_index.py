"""Path-to-title and path-to-page-id tables for one synchronization run.

Keys are sync-root relative POSIX paths, lower-cased so that lookups from
links are case-insensitive.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import Path
from typing import NamedTuple

from ..models import DocumentNode

_FIRST_H1 = re.compile(r"^#[ \t]+(.+?)[ \t#]*$", re.MULTILINE)
_FENCED_BLOCK = re.compile(r"^(```|~~~).*?^\1[ \t]*$", re.MULTILINE | re.DOTALL)


class PageMappings(NamedTuple):
    """Lookup tables used by the link resolver."""

    titles: dict[str, str]
    page_ids: dict[str, str]


def mapping_key(relative_path: str) -> str:
    """Normalize a relative path to a mapping key."""
    key = relative_path.replace("\\", "/")
    while key.startswith("./"):
        key = key[2:]
    return key.lower()


def document_title(node: DocumentNode, prefix: str | None = None) -> str:
    """Title of the page a document becomes.

    Priority: frontmatter title, first level-1 heading, file stem.
    """
    title = node.metadata.title or first_heading(node.raw_content) or node.absolute_path.stem
    if prefix:
        title = f"{prefix}{title}"
    return title


def first_heading(content: str) -> str | None:
    """Text of the first `# ` heading outside fenced code, if any."""
    match = _FIRST_H1.search(_FENCED_BLOCK.sub("", content))
    return match.group(1).strip() if match else None


def build_page_mappings(
    nodes: Iterable[DocumentNode],
    title_prefix: str | None = None,
) -> PageMappings:
    """Build mapping tables from flattened document nodes.

    Args:
        nodes: Documents of this run (any order).
        title_prefix: Prefix prepended to every page title.

    Returns:
        PageMappings with titles for every node and page ids for nodes
        that already know theirs.
    """
    titles: dict[str, str] = {}
    page_ids: dict[str, str] = {}

    for node in nodes:
        key = mapping_key(node.relative_path)
        titles[key] = document_title(node, title_prefix)
        if node.metadata.page_id:
            page_ids[key] = node.metadata.page_id

    return PageMappings(titles, page_ids)


def relative_key(path: Path, root: Path) -> str | None:
    """Mapping key for an absolute path, or None when it lies outside root."""
    try:
        return mapping_key(path.resolve().relative_to(root.resolve()).as_posix())
    except ValueError:
        return None
