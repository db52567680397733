"""Extract steps: local Markdown tree (upload/export) and remote page tree (download)."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator

from ..confluence.api import ConfluenceApi, ConfluenceApiError
from ..hierarchy import HierarchyResolver, SourceMissingError, flatten_tree
from ..models import RemotePage
from .core import BatchContext, CancellationToken, StepResult

log = logging.getLogger(__name__)


class MarkdownIngestionStep:
    """Discovers documents under `options.path` and flattens them in pre-order."""

    name = "MarkdownIngestion"

    def __init__(self, resolver: HierarchyResolver | None = None) -> None:
        self.resolver = resolver or HierarchyResolver()

    def execute(self, context: BatchContext, cancel: CancellationToken) -> StepResult:
        started = time.perf_counter()
        root = context.options.path
        log.info("Extracting Markdown files from '%s'", root)

        try:
            tree = self.resolver.resolve(root)
        except SourceMissingError as e:
            return StepResult.critical_error(
                self.name, str(e), e, duration=time.perf_counter() - started
            )

        context.document_tree = tree
        for warning in self.resolver.warnings:
            context.add_warning(warning)

        count = 0
        for node in flatten_tree(tree):
            cancel.raise_if_cancelled()
            context.extracted_nodes.append(node)
            count += 1
            log.debug("Extracted: %s", node.relative_path)

        duration = time.perf_counter() - started
        if count == 0:
            return StepResult.abort(self.name, f"No Markdown files found in '{root}'.", duration)

        if self.resolver.warnings:
            return StepResult.warning(
                self.name,
                count,
                len(self.resolver.warnings),
                duration,
                f"{count} document(s) extracted, {len(self.resolver.warnings)} warning(s).",
            )
        return StepResult.success(self.name, count, duration)


class ConfluenceIngestionStep:
    """Fetches the page tree below a root page, depth-first, with attachments.

    The root is `options.parent_id`, else `options.root_page` (a page id);
    without either, every page of the space is fetched without hierarchy.
    """

    name = "ConfluenceIngestion"

    def __init__(self, api: ConfluenceApi) -> None:
        self.api = api

    def execute(self, context: BatchContext, cancel: CancellationToken) -> StepResult:
        started = time.perf_counter()
        space_key = context.options.space_key

        try:
            if space_key:
                context.space = self.api.get_space_by_key(space_key)
                log.info("Extracting pages from space '%s' (%s)", space_key, context.space.id)

            root_id = context.options.parent_id or context.options.root_page
            if root_id:
                root = self._fetch(root_id)
                if root is None:
                    return StepResult.abort(
                        self.name,
                        f"Root page '{root_id}' not found.",
                        time.perf_counter() - started,
                    )
                root.has_children = True
                context.remote_pages.append(root)
                child_ids = [child.id for child in self.api.get_child_pages(root_id)]
                for page in self._subtree(root_id, child_ids, 1, cancel):
                    context.remote_pages.append(page)
            elif context.space is not None:
                for summary in self.api.get_pages_in_space(context.space.id):
                    cancel.raise_if_cancelled()
                    page = self._fetch(summary.id)
                    if page is not None:
                        context.remote_pages.append(page)
            else:
                return StepResult.abort(
                    self.name, "Neither a root page nor a space key was given."
                )
        except ConfluenceApiError as e:
            return StepResult.critical_error(
                self.name,
                f"Failed to extract pages: {e}",
                e,
                items_processed=len(context.remote_pages),
                duration=time.perf_counter() - started,
            )

        duration = time.perf_counter() - started
        count = len(context.remote_pages)
        if count == 0:
            return StepResult.abort(self.name, f"No pages found in space '{space_key}'.", duration)

        log.info("Extracted %d page(s)", count)
        return StepResult.success(self.name, count, duration)

    def _subtree(
        self, parent_id: str, child_ids: list[str], depth: int, cancel: CancellationToken
    ) -> Iterator[RemotePage]:
        for child_id in child_ids:
            cancel.raise_if_cancelled()
            grandchildren = [gc.id for gc in self.api.get_child_pages(child_id)]

            page = self._fetch(child_id)
            if page is not None:
                page.parent_page_id = parent_id
                page.depth = depth
                page.has_children = bool(grandchildren)
                yield page

            if grandchildren:
                yield from self._subtree(child_id, grandchildren, depth + 1, cancel)

    def _fetch(self, page_id: str) -> RemotePage | None:
        page = self.api.get_page_by_id(page_id)
        if page is None:
            log.warning("Page %s disappeared while fetching", page_id)
            return None
        attachments = list(self.api.get_attachments(page_id))
        log.debug("Fetched page '%s' (%s) with %d attachment(s)", page.title, page.id, len(attachments))
        return RemotePage(page=page, attachments=attachments)
