"""Frontmatter parsing and writing for synchronized documents.

Reading: a leading YAML block between `---` markers plus inline
`<!-- confluence-page-id: N -->` style comments. Unparsable YAML degrades to
empty metadata and a warning, it never aborts a run.

Writing: page-id write-back after upload, and YAML frontmatter for pages
downloaded from the remote system.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, NamedTuple

import frontmatter
import yaml
from pydantic import ValidationError

from .models import DocumentMetadata

log = logging.getLogger(__name__)

_YAML_HANDLER = frontmatter.YAMLHandler()

_FRONTMATTER_BLOCK = re.compile(
    r"\A---[ \t]*\r?\n(.*?)(?:\r?\n)?^---[ \t]*(?:\r?\n|\Z)", re.DOTALL | re.MULTILINE
)

_PAGE_ID_COMMENT = re.compile(
    r"<!--\s*confluence[-_]page[-_]id:\s*(\d+)\s*-->[ \t]*\n?", re.IGNORECASE
)
_SPACE_KEY_COMMENT = re.compile(
    r"<!--\s*confluence[-_]space[-_]key:\s*([A-Za-z0-9_~-]+)\s*-->[ \t]*\n?", re.IGNORECASE
)
_GENERATED_BY_COMMENT = re.compile(
    r"<!--\s*generated[-_]by:\s*(.*?)\s*-->[ \t]*\n?", re.IGNORECASE
)

# YAML key -> DocumentMetadata field
_KEY_ALIASES = {
    "title": "title",
    "page_id": "page_id",
    "confluence_page_id": "page_id",
    "space_key": "space_key",
    "confluence_space_key": "space_key",
    "tags": "tags",
    "labels": "tags",
    "synchronized": "synchronized",
    "generated_by": "generated_by",
    "layout": "layout",
}


class ParsedDocument(NamedTuple):
    """Metadata and body of one source document."""

    metadata: DocumentMetadata
    content: str  # frontmatter and synchronization comments removed
    warning: str | None = None  # set when the frontmatter could not be read


def parse_document(text: str, source: Path | str | None = None) -> ParsedDocument:
    """Split a document into metadata and body.

    Inline synchronization comments take precedence over YAML values.

    Args:
        text: Full document text.
        source: Path used in warnings only.

    Returns:
        ParsedDocument. `warning` is set (and logged) when the YAML block
        was present but unreadable; metadata is then empty apart from any
        inline comments.
    """
    values: dict[str, Any] = {}
    warning = None
    body = text

    match = _FRONTMATTER_BLOCK.match(text)
    if match:
        body = text[match.end():]
        try:
            data = _YAML_HANDLER.load(match.group(1))
            if data is None:
                data = {}
            if not isinstance(data, dict):
                raise ValueError(f"expected a mapping, got {type(data).__name__}")
            values = _normalize_keys(data, source)
        except (yaml.YAMLError, ValueError, TypeError) as e:
            warning = f"Could not parse frontmatter in {source or '<string>'}: {e}"
            log.warning(warning)
            values = {}

    page_id = _PAGE_ID_COMMENT.search(body)
    if page_id:
        values["page_id"] = page_id.group(1)
    space_key = _SPACE_KEY_COMMENT.search(body)
    if space_key:
        values["space_key"] = space_key.group(1)
    generated_by = _GENERATED_BY_COMMENT.search(body)
    if generated_by and "generated_by" not in values:
        values["generated_by"] = generated_by.group(1)

    for pattern in (_PAGE_ID_COMMENT, _SPACE_KEY_COMMENT, _GENERATED_BY_COMMENT):
        body = pattern.sub("", body)

    try:
        metadata = DocumentMetadata.model_validate(values)
    except ValidationError as e:
        warning = f"Invalid frontmatter values in {source or '<string>'}: {e.error_count()} error(s)"
        log.warning(warning)
        metadata = DocumentMetadata()

    return ParsedDocument(metadata, body.lstrip("\r\n"), warning)


def _normalize_keys(data: dict[str, Any], source: Path | str | None) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for key, value in data.items():
        field = _KEY_ALIASES.get(str(key).lower())
        if field is None:
            log.debug("Ignoring unrecognized frontmatter key %r in %s", key, source)
            continue
        if value is None:
            continue

        if field == "tags":
            if isinstance(value, str):
                value = [t.strip() for t in value.split(",") if t.strip()]
            elif isinstance(value, dict):
                raise ValueError(f"{key!r} must be a list or a comma-separated string")
            elif not isinstance(value, list):
                value = [value]
            values[field] = [str(t) for t in value]
        elif field == "layout":
            if isinstance(value, dict):
                values[field] = _flatten_layout(value)
        elif field == "synchronized":
            values[field] = value if isinstance(value, bool) else str(value).lower() != "false"
        elif isinstance(value, (dict, list)):
            raise ValueError(f"{key!r} must be a single value, got {type(value).__name__}")
        else:
            values[field] = str(value)
    return values


def _flatten_layout(layout: dict[str, Any], prefix: str = "") -> dict[str, str]:
    """Flatten nested layout keys: {"image": {"alignment": "center"}} -> image_alignment."""
    flat: dict[str, str] = {}
    for key, value in layout.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten_layout(value, f"{name}_"))
        elif value is not None:
            flat[name] = str(value)
    return flat


# ─────────────────────────────────────────────────────────────────────────────
# Write-back
# ─────────────────────────────────────────────────────────────────────────────


def write_back_page_id(text: str, page_id: str, space_key: str | None = None) -> str:
    """Record the remote page id (and space key) in a document.

    Existing comments are updated in place; otherwise they are inserted
    directly after the frontmatter block, or at the top of the file.
    """
    comments: list[str] = []

    page_comment = f"<!-- confluence-page-id: {page_id} -->"
    if _PAGE_ID_COMMENT.search(text):
        text = _PAGE_ID_COMMENT.sub(page_comment + "\n", text, count=1)
    else:
        comments.append(page_comment)

    if space_key:
        space_comment = f"<!-- confluence-space-key: {space_key} -->"
        if _SPACE_KEY_COMMENT.search(text):
            text = _SPACE_KEY_COMMENT.sub(space_comment + "\n", text, count=1)
        else:
            comments.append(space_comment)

    if not comments:
        return text

    insertion = "\n".join(comments) + "\n"
    match = _FRONTMATTER_BLOCK.match(text)
    if match:
        head = text[:match.end()]
        if not head.endswith("\n"):
            head += "\n"
        return head + insertion + text[match.end():]
    return insertion + text


# ─────────────────────────────────────────────────────────────────────────────
# Building frontmatter (download direction)
# ─────────────────────────────────────────────────────────────────────────────


def _yaml_quote_if_needed(value: str) -> str:
    """Quote a string value if it does not survive a YAML round trip as-is."""
    test_yaml = f"key: {value}"
    try:
        parsed = yaml.safe_load(test_yaml)
        if isinstance(parsed, dict) and parsed.get("key") == value:
            return value
    except yaml.YAMLError:
        pass
    dumped = yaml.safe_dump({"key": value}, default_flow_style=False, allow_unicode=True).strip()
    return dumped[5:]


def build_frontmatter(
    title: str,
    *,
    page_id: str | None = None,
    space_key: str | None = None,
    tags: list[str] | None = None,
) -> str:
    """Build a YAML frontmatter block for a downloaded page.

    Returns:
        Frontmatter including `---` delimiters and a trailing blank line.
    """
    parts = ["---", f"title: {_yaml_quote_if_needed(title)}"]

    if page_id:
        parts.append(f"page_id: {_yaml_quote_if_needed(str(page_id))}")
    if space_key:
        parts.append(f"space_key: {_yaml_quote_if_needed(space_key)}")
    if tags:
        parts.append("tags:")
        parts.append("\n".join(f"  - {_yaml_quote_if_needed(tag)}" for tag in tags))

    parts.append("---\n\n")
    return "\n".join(parts)
