"""Markdown parsing, link resolution and slug helpers."""

from .links import LinkResolution, LinkResolver, LinkType, UrlBuilder
from .markdown import create_parser, parse_markdown, preprocess_admonitions
from .slugs import file_slug, sanitize_filename, slugify
from .title_index import PageMappings, build_page_mappings, document_title

__all__ = [
    "LinkResolution",
    "LinkResolver",
    "LinkType",
    "PageMappings",
    "UrlBuilder",
    "build_page_mappings",
    "create_parser",
    "document_title",
    "file_slug",
    "parse_markdown",
    "preprocess_admonitions",
    "sanitize_filename",
    "slugify",
]
