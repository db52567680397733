"""Remote API interface and HTTP client."""

from .api import (
    ConfluenceApi,
    ConfluenceApiError,
    ConfluenceClient,
    PageNotFoundError,
    PageResolution,
    ResolutionStatus,
    StaleVersionError,
)

__all__ = [
    "ConfluenceApi",
    "ConfluenceApiError",
    "ConfluenceClient",
    "PageNotFoundError",
    "PageResolution",
    "ResolutionStatus",
    "StaleVersionError",
]
