"""Remote API access.

`ConfluenceApi` is the interface the pipeline steps depend on;
`ConfluenceClient` implements it over HTTP with requests (REST v2 for pages,
spaces and properties, v1 for attachments and labels). Retries are not
attempted here: a failed request raises ConfluenceApiError and the calling
step decides what that means for the run.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from enum import Enum
from typing import Any, NamedTuple, Protocol
from urllib.parse import urlparse

import requests

from ..config import PAGE_LIMIT, REQUEST_TIMEOUT, require_remote_settings
from ..models import ConfluenceAttachment, ConfluencePage, ConfluenceSettings, ConfluenceSpace

log = logging.getLogger(__name__)


class ConfluenceApiError(Exception):
    """A request to the remote API failed."""

    def __init__(self, status_code: int | None, message: str):
        self.status_code = status_code
        self.message = message
        prefix = f"HTTP {status_code}: " if status_code else ""
        super().__init__(f"{prefix}{message}")


class StaleVersionError(ConfluenceApiError):
    """A page update carried an out-of-date version number."""


class PageNotFoundError(ConfluenceApiError):
    """A space or page does not exist."""

    def __init__(self, message: str):
        super().__init__(404, message)


class ResolutionStatus(Enum):
    FOUND_UNDER_PARENT = "found_under_parent"
    AMBIGUOUS = "ambiguous"
    CREATED = "created"


class PageResolution(NamedTuple):
    """Outcome of looking up (or creating) a titled page under a parent."""

    page: ConfluencePage | None
    status: ResolutionStatus
    total_matches: int
    matches_under_parent: int


class ConfluenceApi(Protocol):
    """Operations the load and ingestion steps need from the remote system."""

    def get_space_by_key(self, space_key: str) -> ConfluenceSpace: ...

    def get_page_by_id(self, page_id: str) -> ConfluencePage | None: ...

    def get_pages_by_title(self, title: str, space_id: str) -> list[ConfluencePage]: ...

    def get_child_pages(self, parent_id: str) -> Iterator[ConfluencePage]: ...

    def get_pages_in_space(self, space_id: str) -> Iterator[ConfluencePage]: ...

    def create_page(
        self, title: str, body: str, parent_id: str | None, space_id: str
    ) -> ConfluencePage: ...

    def update_page(self, page_id: str, title: str, body: str, version: int) -> ConfluencePage: ...

    def get_or_create_page_under_parent(
        self, title: str, parent_id: str, space_id: str
    ) -> PageResolution: ...

    def get_attachments(self, page_id: str) -> Iterator[ConfluenceAttachment]: ...

    def upload_attachment(
        self, page_id: str, file_name: str, data: bytes, mime_type: str
    ) -> None: ...

    def download_attachment(self, download_path: str) -> bytes: ...

    def get_labels(self, page_id: str) -> list[str]: ...

    def add_labels(self, page_id: str, labels: list[str]) -> None: ...

    def set_content_property(self, page_id: str, key: str, value: str) -> None: ...


# ─────────────────────────────────────────────────────────────────────────────
# Response parsing
# ─────────────────────────────────────────────────────────────────────────────


def _parse_page(data: dict[str, Any]) -> ConfluencePage:
    body = (data.get("body") or {}).get("storage") or {}
    version = (data.get("version") or {}).get("number", 1)
    return ConfluencePage(
        id=str(data["id"]),
        title=data.get("title", ""),
        space_id=str(data["spaceId"]) if data.get("spaceId") is not None else None,
        parent_id=str(data["parentId"]) if data.get("parentId") is not None else None,
        body=body.get("value"),
        version=int(version),
    )


def _parse_attachment(data: dict[str, Any]) -> ConfluenceAttachment:
    extensions = data.get("extensions") or {}
    metadata = data.get("metadata") or {}
    return ConfluenceAttachment(
        id=str(data["id"]),
        title=data.get("title", ""),
        media_type=extensions.get("mediaType")
        or metadata.get("mediaType")
        or data.get("mediaType")
        or "application/octet-stream",
        file_size=int(extensions.get("fileSize") or data.get("fileSize") or 0),
        download_link=(data.get("_links") or {}).get("download") or data.get("downloadLink"),
    )


# ─────────────────────────────────────────────────────────────────────────────
# HTTP client
# ─────────────────────────────────────────────────────────────────────────────


class ConfluenceClient:
    """requests-based client for Confluence Cloud.

    Args:
        settings: Connection settings; base URL, user email and API token
            are required.
        session: Optional pre-configured session (tests inject a mock).
    """

    def __init__(self, settings: ConfluenceSettings, session: requests.Session | None = None):
        settings = require_remote_settings(settings)
        parsed = urlparse(settings.base_url.strip())
        self.host = f"{parsed.scheme}://{parsed.netloc}"

        api_path = settings.api_path.strip().strip("/")
        base_path = parsed.path.strip("/")
        self.api_base = self.host + (f"/{api_path or base_path}" if (api_path or base_path) else "")
        self.v2 = f"{self.api_base}/api/{settings.api_version}"
        self.v1 = f"{self.api_base}/rest/api"

        self.session = session or requests.Session()
        self.session.auth = (settings.user_email or "", settings.api_token or "")
        self.session.headers.update({"Accept": "application/json"})

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> ConfluenceClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ─── Transport ──────────────────────────────────────────────────────

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", REQUEST_TIMEOUT)
        try:
            response = self.session.request(method, url, **kwargs)
        except requests.RequestException as e:
            raise ConfluenceApiError(None, f"{method} {url} failed: {e}") from e

        if response.status_code >= 400:
            message = response.text[:500] if response.text else response.reason
            raise ConfluenceApiError(response.status_code, f"{method} {url}: {message}")
        return response

    def _json(self, method: str, url: str, **kwargs) -> dict[str, Any]:
        response = self._request(method, url, **kwargs)
        if not response.content:
            return {}
        return response.json()

    def _absolute(self, path: str) -> str:
        """Resolve a `_links` style path against the API base."""
        if path.startswith(("http://", "https://")):
            return path
        api_prefix = urlparse(self.api_base).path
        if api_prefix and path.startswith(api_prefix + "/"):
            return self.host + path
        return self.api_base + path

    def _paginate(self, url: str, params: dict[str, Any] | None = None) -> Iterator[dict[str, Any]]:
        next_url: str | None = url
        while next_url is not None:
            data = self._json("GET", next_url, params=params)
            params = None  # the next link carries its own query
            yield from data.get("results", [])
            next_link = (data.get("_links") or {}).get("next")
            next_url = self._absolute(next_link) if next_link else None

    # ─── Spaces ─────────────────────────────────────────────────────────

    def get_space_by_key(self, space_key: str) -> ConfluenceSpace:
        log.debug("Fetching space with key '%s'", space_key)
        data = self._json("GET", f"{self.v2}/spaces", params={"keys": space_key})
        results = data.get("results", [])
        if not results:
            raise PageNotFoundError(f"Space '{space_key}' not found")
        space = results[0]
        homepage = space.get("homepageId")
        return ConfluenceSpace(
            id=str(space["id"]),
            key=space.get("key", space_key),
            name=space.get("name", ""),
            homepage_id=str(homepage) if homepage is not None else None,
        )

    # ─── Pages ──────────────────────────────────────────────────────────

    def get_page_by_id(self, page_id: str) -> ConfluencePage | None:
        log.debug("Fetching page %s", page_id)
        try:
            data = self._json(
                "GET", f"{self.v2}/pages/{page_id}", params={"body-format": "storage"}
            )
        except ConfluenceApiError as e:
            if e.status_code == 404:
                return None
            raise
        return _parse_page(data)

    def get_pages_by_title(self, title: str, space_id: str) -> list[ConfluencePage]:
        log.debug("Looking up page '%s' in space %s", title, space_id)
        data = self._json(
            "GET",
            f"{self.v2}/pages",
            params={"space-id": space_id, "title": title, "body-format": "storage"},
        )
        return [_parse_page(item) for item in data.get("results", [])]

    def get_page_by_title(self, title: str, space_id: str) -> ConfluencePage | None:
        matches = self.get_pages_by_title(title, space_id)
        return matches[0] if matches else None

    def get_child_pages(self, parent_id: str) -> Iterator[ConfluencePage]:
        for item in self._paginate(
            f"{self.v2}/pages/{parent_id}/children", {"limit": PAGE_LIMIT}
        ):
            yield _parse_page(item)

    def get_pages_in_space(self, space_id: str) -> Iterator[ConfluencePage]:
        for item in self._paginate(
            f"{self.v2}/spaces/{space_id}/pages",
            {"body-format": "storage", "limit": PAGE_LIMIT},
        ):
            yield _parse_page(item)

    def create_page(
        self, title: str, body: str, parent_id: str | None, space_id: str
    ) -> ConfluencePage:
        log.info("Creating page '%s' under parent %s", title, parent_id)
        payload: dict[str, Any] = {
            "spaceId": space_id,
            "status": "current",
            "title": title,
            "body": {"representation": "storage", "value": body},
        }
        if parent_id:
            payload["parentId"] = parent_id
        return _parse_page(self._json("POST", f"{self.v2}/pages", json=payload))

    def update_page(self, page_id: str, title: str, body: str, version: int) -> ConfluencePage:
        """Update a page to `version` (current version + 1).

        Raises:
            StaleVersionError: The remote page changed since it was read.
        """
        log.info("Updating page %s to version %d", page_id, version)
        payload = {
            "id": page_id,
            "status": "current",
            "title": title,
            "body": {"representation": "storage", "value": body},
            "version": {"number": version},
        }
        try:
            return _parse_page(self._json("PUT", f"{self.v2}/pages/{page_id}", json=payload))
        except ConfluenceApiError as e:
            if e.status_code == 409:
                raise StaleVersionError(409, f"Version {version} of page {page_id} is stale") from e
            raise

    def get_or_create_page_under_parent(
        self, title: str, parent_id: str, space_id: str
    ) -> PageResolution:
        matches = self.get_pages_by_title(title, space_id)
        under_parent = [page for page in matches if page.parent_id == parent_id]

        if len(under_parent) == 1:
            log.debug("Found page '%s' (%s) under parent %s", title, under_parent[0].id, parent_id)
            return PageResolution(
                under_parent[0], ResolutionStatus.FOUND_UNDER_PARENT, len(matches), 1
            )

        if len(under_parent) > 1 or (not under_parent and len(matches) > 1):
            log.warning(
                "Ambiguous page title '%s': %d matches, %d under parent %s",
                title,
                len(matches),
                len(under_parent),
                parent_id,
            )
            return PageResolution(
                None, ResolutionStatus.AMBIGUOUS, len(matches), len(under_parent)
            )

        if matches:
            log.info(
                "Page '%s' exists under parent %s, creating another under %s",
                title,
                matches[0].parent_id,
                parent_id,
            )
        created = self.create_page(title, "", parent_id, space_id)
        return PageResolution(created, ResolutionStatus.CREATED, len(matches), 0)

    # ─── Attachments ────────────────────────────────────────────────────

    def get_attachments(self, page_id: str) -> Iterator[ConfluenceAttachment]:
        for item in self._paginate(
            f"{self.v1}/content/{page_id}/child/attachment", {"expand": "version"}
        ):
            yield _parse_attachment(item)

    def upload_attachment(self, page_id: str, file_name: str, data: bytes, mime_type: str) -> None:
        existing = next(
            (att for att in self.get_attachments(page_id) if att.title == file_name), None
        )
        url = f"{self.v1}/content/{page_id}/child/attachment"
        if existing is not None:
            url += f"/{existing.id}/data"

        self._request(
            "POST",
            url,
            files={"file": (file_name, data, mime_type)},
            data={"minorEdit": "true"},
            headers={"X-Atlassian-Token": "nocheck"},
        )
        log.info(
            "%s attachment '%s' on page %s",
            "Updated" if existing is not None else "Uploaded",
            file_name,
            page_id,
        )

    def download_attachment(self, download_path: str) -> bytes:
        url = self._absolute(download_path)
        log.debug("Downloading attachment from %s", url)
        return self._request("GET", url).content

    # ─── Labels and properties ──────────────────────────────────────────

    def get_labels(self, page_id: str) -> list[str]:
        data = self._json("GET", f"{self.v1}/content/{page_id}/label")
        return [item.get("name", "") for item in data.get("results", [])]

    def add_labels(self, page_id: str, labels: list[str]) -> None:
        if not labels:
            return
        log.info("Adding %d label(s) to page %s", len(labels), page_id)
        payload = [{"prefix": "global", "name": label} for label in labels]
        self._request("POST", f"{self.v1}/content/{page_id}/label", json=payload)

    def get_content_property(self, page_id: str, key: str) -> str | None:
        data = self._json("GET", f"{self.v2}/pages/{page_id}/properties", params={"key": key})
        results = data.get("results", [])
        return results[0].get("value") if results else None

    def set_content_property(self, page_id: str, key: str, value: str) -> None:
        url = f"{self.v2}/pages/{page_id}/properties"
        try:
            self._request("POST", url, json={"key": key, "value": value})
            return
        except ConfluenceApiError as e:
            if e.status_code != 409:
                raise

        # Property exists: update it with the next version
        existing = self._json("GET", url, params={"key": key}).get("results", [])
        if not existing:
            return
        prop = existing[0]
        version = (prop.get("version") or {}).get("number", 1) + 1
        self._request(
            "PUT",
            f"{url}/{prop['id']}",
            json={"key": key, "value": value, "version": {"number": version}},
        )
