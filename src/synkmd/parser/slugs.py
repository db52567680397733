"""Slug generation shared by heading anchors, link fragments and file names."""

import re


def slugify(text: str) -> str:
    """Convert text to an anchor slug.

    Lower-cases, turns runs of whitespace and underscores into single
    hyphens and drops every other non-alphanumeric character. Heading
    anchors and link fragments both go through this function so that
    `[x](page.md#My Section)` points at the anchor of `## My Section`.

    Examples:
        "My Section" -> "my-section"
        "What's new?" -> "whats-new"
        "Überblick" -> "überblick"
    """
    slug = text.strip().lower()
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"[^\w-]", "", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def file_slug(title: str) -> str:
    """Slug for a file or directory name; never empty."""
    return slugify(title) or "untitled"


_UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def sanitize_filename(name: str) -> str:
    """Replace characters that are invalid in file names with underscores."""
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", name).strip()
    return cleaned or "untitled"
