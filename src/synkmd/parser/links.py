"""Resolve links between synchronized documents.

A link such as `../guide/setup.md#First Steps` written in `docs/a/b.md` is
normalized against the sync root (`docs/guide/setup.md`), looked up in the
run's page mapping tables and turned into a target page title, page id and
anchor slug. Misses never raise: they come back as unresolved and are
reported through a callback so the caller can aggregate warnings.
"""

from __future__ import annotations

import posixpath
import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from urllib.parse import quote_plus, unquote

from ..config import DIAGNOSTIC_SAMPLE_LIMIT
from .slugs import slugify
from .title_index import PageMappings, mapping_key

_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")


class LinkType(Enum):
    EXTERNAL = "external"
    ANCHOR = "anchor"
    INTERNAL_PAGE = "internal_page"
    ATTACHMENT = "attachment"


@dataclass(frozen=True)
class LinkResolution:
    """Outcome of resolving one link target."""

    link_type: LinkType
    href: str
    resolved: bool = True
    title: str | None = None
    page_id: str | None = None
    anchor: str | None = None
    target_path: str | None = None  # sync-root relative, lower-cased
    file_name: str | None = None  # attachment links
    local_path: Path | None = None  # attachment links that exist on disk


class UrlBuilder:
    """Builds browsable page URLs for web-UI style links.

    Strategies:
        space-title: {base}/wiki/display/{SPACE}/{Title+With+Plus}
        page-id: {base}/wiki/pages/viewpage.action?pageId={id}, falling back
            to space-title when the page id is not known yet.
    """

    def __init__(self, base_url: str, space_key: str, strategy: str = "space-title") -> None:
        base = base_url.rstrip("/")
        if base.endswith("/wiki"):
            base = base[: -len("/wiki")]
        self.base_url = base
        self.space_key = space_key
        self.strategy = strategy
        self.fallback_count = 0
        self.fallback_samples: list[str] = []

    def page_url(self, title: str, page_id: str | None = None, anchor: str | None = None) -> str:
        if self.strategy == "page-id" and page_id:
            url = f"{self.base_url}/wiki/pages/viewpage.action?pageId={page_id}"
        else:
            if self.strategy == "page-id":
                self.fallback_count += 1
                if len(self.fallback_samples) < DIAGNOSTIC_SAMPLE_LIMIT:
                    self.fallback_samples.append(title)
            url = f"{self.base_url}/wiki/display/{quote_plus(self.space_key)}/{quote_plus(title)}"
        if anchor:
            url += f"#{anchor}"
        return url


class LinkResolver:
    """Resolves document-relative link targets against the run's page mappings."""

    def __init__(
        self,
        root: Path,
        mappings: PageMappings,
        on_unresolved: Callable[[Path | None, str], None] | None = None,
    ) -> None:
        self.root = root.resolve()
        self.mappings = mappings
        self.on_unresolved = on_unresolved

    @staticmethod
    def classify(href: str) -> LinkType:
        if href.startswith("#"):
            return LinkType.ANCHOR
        if href.startswith("//") or _SCHEME.match(href):
            return LinkType.EXTERNAL
        path = unquote(href.split("#", 1)[0])
        if path.lower().endswith(".md"):
            return LinkType.INTERNAL_PAGE
        return LinkType.ATTACHMENT

    def resolve(self, current_document: Path | None, href: str) -> LinkResolution:
        """Resolve href as written in current_document.

        Args:
            current_document: Absolute path of the document containing the link,
                or None for content that is not tied to a file.
            href: Link target as written.

        Returns:
            LinkResolution. `resolved` is False for internal pages that are not
            part of this run or that point outside the sync root.
        """
        link_type = self.classify(href)

        if link_type is LinkType.EXTERNAL:
            return LinkResolution(link_type, href)

        path_part, _, fragment = href.partition("#")
        anchor = slugify(unquote(fragment)) if fragment else None

        if link_type is LinkType.ANCHOR:
            return LinkResolution(link_type, href, anchor=anchor)

        candidates = self._candidates(current_document, unquote(path_part))

        if link_type is LinkType.ATTACHMENT:
            target = candidates[0] if candidates else None
            local_path = None
            if target is not None:
                on_disk = self.root / target
                if on_disk.is_file():
                    local_path = on_disk
            return LinkResolution(
                link_type,
                href,
                resolved=local_path is not None,
                anchor=anchor,
                target_path=target.lower() if target else None,
                file_name=posixpath.basename(unquote(path_part)),
                local_path=local_path,
            )

        for candidate in candidates:
            key = mapping_key(candidate)
            title = self.mappings.titles.get(key)
            if title is not None:
                return LinkResolution(
                    link_type,
                    href,
                    title=title,
                    page_id=self.mappings.page_ids.get(key),
                    anchor=anchor,
                    target_path=key,
                )

        if self.on_unresolved is not None:
            self.on_unresolved(current_document, href)
        return LinkResolution(
            link_type,
            href,
            resolved=False,
            title=posixpath.splitext(posixpath.basename(unquote(path_part)))[0] or None,
            anchor=anchor,
            target_path=mapping_key(candidates[0]) if candidates else None,
        )

    def _candidates(self, current_document: Path | None, path: str) -> list[str]:
        """Root-relative paths to try, most specific first. Paths escaping the root are dropped."""
        path = path.replace("\\", "/")
        if path.startswith("/"):
            joined = [posixpath.normpath(path.lstrip("/"))]
        else:
            base = ""
            if current_document is not None:
                try:
                    base = current_document.parent.resolve().relative_to(self.root).as_posix()
                except ValueError:
                    base = ""
                if base == ".":
                    base = ""
            joined = [posixpath.normpath(posixpath.join(base, path)), posixpath.normpath(path)]

        candidates: list[str] = []
        for candidate in joined:
            if candidate == ".." or candidate.startswith("../") or candidate == ".":
                continue
            if candidate not in candidates:
                candidates.append(candidate)
        return candidates
