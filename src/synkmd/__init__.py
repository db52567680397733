"""synkmd: Markdown to Confluence storage format synchronization."""

__version__ = "0.4.0"
