"""Markdown to storage format and back."""

from .languages import LANGUAGE_ALIASES, resolve_language
from .renderer import StorageFormatRenderer
from .reverse import MarkdownConverter, storage_to_markdown

__all__ = [
    "LANGUAGE_ALIASES",
    "MarkdownConverter",
    "StorageFormatRenderer",
    "resolve_language",
    "storage_to_markdown",
]
