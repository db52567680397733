"""Shared test fixtures for the synkmd test suite.

Design:
- runner: CliRunner for command tests
- docs_root: builds a Markdown tree in a temp directory from a {path: text} mapping
- fake_api: in-memory stand-in for the remote API, recording every write
"""

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
from click.testing import CliRunner

from synkmd.confluence.api import (
    PageNotFoundError,
    PageResolution,
    ResolutionStatus,
    StaleVersionError,
)
from synkmd.models import ConfluenceAttachment, ConfluencePage, ConfluenceSpace


# ─────────────────────────────────────────────────────────────────────────────
# In-memory remote API
# ─────────────────────────────────────────────────────────────────────────────


class FakeConfluenceApi:
    """Keeps pages, attachments, labels and properties in dictionaries."""

    def __init__(self, space_key: str = "DOCS", homepage_id: str | None = "1"):
        self.space = ConfluenceSpace(id="100", key=space_key, name="Docs", homepage_id=homepage_id)
        self.pages: dict[str, ConfluencePage] = {}
        self.attachments: dict[str, list[ConfluenceAttachment]] = {}
        self.attachment_data: dict[str, bytes] = {}
        self.uploads: list[tuple[str, str, bytes, str]] = []
        self.labels: dict[str, list[str]] = {}
        self.properties: dict[tuple[str, str], str] = {}
        self.created: list[str] = []
        self.updated: list[str] = []
        self.stale_pages: set[str] = set()
        self._next_id = 1000
        if homepage_id:
            self.add_page(homepage_id, "Home")

    def add_page(
        self,
        page_id: str,
        title: str,
        parent_id: str | None = None,
        body: str = "",
        version: int = 1,
    ) -> ConfluencePage:
        page = ConfluencePage(
            id=page_id,
            title=title,
            space_id=self.space.id,
            parent_id=parent_id,
            body=body,
            version=version,
        )
        self.pages[page_id] = page
        return page

    def add_attachment(self, page_id: str, title: str, data: bytes) -> None:
        link = f"/download/attachments/{page_id}/{title}"
        attachment = ConfluenceAttachment(
            id=f"att-{page_id}-{title}", title=title, download_link=link
        )
        self.attachments.setdefault(page_id, []).append(attachment)
        self.attachment_data[link] = data

    def children_of(self, parent_id: str) -> list[ConfluencePage]:
        return [page for page in self.pages.values() if page.parent_id == parent_id]

    def __enter__(self) -> "FakeConfluenceApi":
        return self

    def __exit__(self, *exc_info) -> None:
        pass

    # ConfluenceApi

    def get_space_by_key(self, space_key: str) -> ConfluenceSpace:
        if space_key != self.space.key:
            raise PageNotFoundError(f"Space '{space_key}' not found")
        return self.space

    def get_page_by_id(self, page_id: str) -> ConfluencePage | None:
        page = self.pages.get(page_id)
        return page.model_copy() if page is not None else None

    def get_pages_by_title(self, title: str, space_id: str) -> list[ConfluencePage]:
        return [page.model_copy() for page in self.pages.values() if page.title == title]

    def get_child_pages(self, parent_id: str) -> Iterator[ConfluencePage]:
        return iter([page.model_copy() for page in self.children_of(parent_id)])

    def get_pages_in_space(self, space_id: str) -> Iterator[ConfluencePage]:
        return iter([page.model_copy() for page in self.pages.values()])

    def create_page(
        self, title: str, body: str, parent_id: str | None, space_id: str
    ) -> ConfluencePage:
        self._next_id += 1
        page_id = str(self._next_id)
        self.created.append(page_id)
        return self.add_page(page_id, title, parent_id, body).model_copy()

    def update_page(self, page_id: str, title: str, body: str, version: int) -> ConfluencePage:
        page = self.pages[page_id]
        if page_id in self.stale_pages or version != page.version + 1:
            raise StaleVersionError(409, f"Version {version} of page {page_id} is stale")
        page.title = title
        page.body = body
        page.version = version
        self.updated.append(page_id)
        return page.model_copy()

    def get_or_create_page_under_parent(
        self, title: str, parent_id: str, space_id: str
    ) -> PageResolution:
        matches = self.get_pages_by_title(title, space_id)
        under_parent = [page for page in matches if page.parent_id == parent_id]
        if len(under_parent) == 1:
            return PageResolution(
                under_parent[0], ResolutionStatus.FOUND_UNDER_PARENT, len(matches), 1
            )
        if len(under_parent) > 1 or (not under_parent and len(matches) > 1):
            return PageResolution(
                None, ResolutionStatus.AMBIGUOUS, len(matches), len(under_parent)
            )
        created = self.create_page(title, "", parent_id, space_id)
        return PageResolution(created, ResolutionStatus.CREATED, len(matches), 0)

    def get_attachments(self, page_id: str) -> Iterator[ConfluenceAttachment]:
        return iter(list(self.attachments.get(page_id, [])))

    def upload_attachment(self, page_id: str, file_name: str, data: bytes, mime_type: str) -> None:
        self.uploads.append((page_id, file_name, data, mime_type))

    def download_attachment(self, download_path: str) -> bytes:
        return self.attachment_data[download_path]

    def get_labels(self, page_id: str) -> list[str]:
        return list(self.labels.get(page_id, []))

    def add_labels(self, page_id: str, labels: list[str]) -> None:
        self.labels.setdefault(page_id, []).extend(labels)

    def set_content_property(self, page_id: str, key: str, value: str) -> None:
        self.properties[(page_id, key)] = value


# ─────────────────────────────────────────────────────────────────────────────
# Core Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def runner() -> CliRunner:
    """CLI runner with isolated environment."""
    return CliRunner()


@pytest.fixture
def docs_root(tmp_path: Path) -> Callable[[dict[str, str | bytes]], Path]:
    """Build a documentation tree.

    Usage:
        root = docs_root({"index.md": "# Home", "guide/setup.md": "# Setup"})
    """

    def build(files: dict[str, str | bytes]) -> Path:
        root = tmp_path / "docs"
        root.mkdir(exist_ok=True)
        for relative, content in files.items():
            path = root / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                path.write_bytes(content)
            else:
                path.write_text(content, encoding="utf-8")
        return root

    return build


@pytest.fixture
def fake_api() -> FakeConfluenceApi:
    """Empty space DOCS whose homepage is page 1."""
    return FakeConfluenceApi()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep connection settings from the developer's environment out of tests."""
    for name in (
        "CONFLUENCE_BASE_URL",
        "CONFLUENCE_USER_EMAIL",
        "CONFLUENCE_API_TOKEN",
        "CONFLUENCE_SPACE_KEY",
        "CONFLUENCE_API_PATH",
        "SYNKMD_QUIET",
    ):
        monkeypatch.delenv(name, raising=False)
