"""Load steps.

Upload direction: ConfluenceLoadStep (remote pages), LocalExportStep
(storage format files on disk) and WriteBackStep (page ids recorded in the
source documents). Download direction: FileSystemLoadStep.
"""

from __future__ import annotations

import logging
import mimetypes
import time
from collections import Counter
from pathlib import Path

from ..config import EXPORT_DIRNAME, EXPORT_SUFFIX, INDEX_FILENAMES, SOURCE_PATH_PROPERTY
from ..confluence.api import (
    ConfluenceApi,
    ConfluenceApiError,
    ResolutionStatus,
    StaleVersionError,
)
from ..frontmatter import write_back_page_id
from ..models import (
    AttachmentInfo,
    ConfluencePage,
    ConfluenceSpace,
    ConvertedDocument,
    MarkdownDocument,
)
from ..parser.slugs import file_slug, sanitize_filename
from .core import BatchContext, CancellationToken, StepResult

log = logging.getLogger(__name__)


class DuplicateTitleError(Exception):
    """Two documents map to the same page title."""

    def __init__(self, title: str, paths: list[str]):
        self.title = title
        self.paths = paths
        super().__init__(f"Duplicate page title '{title}': {', '.join(paths)}")


class AmbiguousPageError(Exception):
    """A title matches several remote pages and none can be chosen."""


def check_duplicate_titles(documents: list[ConvertedDocument]) -> None:
    """Raise DuplicateTitleError for the first title used more than once."""
    counts = Counter(doc.title for doc in documents)
    for title, count in counts.items():
        if count > 1:
            paths = [doc.relative_path or str(doc.source_path) for doc in documents if doc.title == title]
            raise DuplicateTitleError(title, paths)


def attachment_bytes(attachment: AttachmentInfo) -> bytes | None:
    if attachment.data is not None:
        return attachment.data
    if attachment.local_path is not None:
        return attachment.local_path.read_bytes()
    return None


def attachment_mime_type(attachment: AttachmentInfo) -> str:
    if attachment.mime_type:
        return attachment.mime_type
    guessed, _ = mimetypes.guess_type(attachment.file_name)
    return guessed or "application/octet-stream"


# ─────────────────────────────────────────────────────────────────────────────
# Remote upload
# ─────────────────────────────────────────────────────────────────────────────


class ConfluenceLoadStep:
    """Creates or updates one remote page per converted document.

    Documents arrive in pre-order, so a parent's page id is always in
    `context.page_id_cache` before its children are loaded.
    """

    name = "ConfluenceLoad"

    def __init__(self, api: ConfluenceApi) -> None:
        self.api = api

    def execute(self, context: BatchContext, cancel: CancellationToken) -> StepResult:
        started = time.perf_counter()
        documents = context.transformed_documents
        options = context.options

        space_key = options.space_key or (context.settings.space_key if context.settings else None)
        if not space_key:
            return StepResult.critical_error(self.name, "No space key configured.")

        try:
            check_duplicate_titles(documents)
        except DuplicateTitleError as e:
            return StepResult.critical_error(self.name, str(e), e)

        counts = Counter()
        try:
            space = self.api.get_space_by_key(space_key)
            context.space = space
            root_parent = self._resolve_root_parent(context, space)

            for doc in documents:
                cancel.raise_if_cancelled()
                parent_id = root_parent
                if options.keep_hierarchy and doc.parent_source_path is not None:
                    parent_id = context.page_id_cache.get(str(doc.parent_source_path), root_parent)

                page, action = self._upsert(doc, parent_id, space, options.skip_update)
                counts[action] += 1
                context.page_id_cache[str(doc.source_path)] = page.id

                self._upload_attachments(page.id, doc, context)
                if doc.metadata.tags:
                    self.api.add_labels(page.id, list(doc.metadata.tags))
                if doc.relative_path:
                    self.api.set_content_property(page.id, SOURCE_PATH_PROPERTY, doc.relative_path)

                context.loaded_count += 1
                log.info("%s '%s' (%s)", action.capitalize(), doc.title, page.id)
        except StaleVersionError as e:
            return StepResult.critical_error(
                self.name,
                f"Page was modified remotely while loading: {e}",
                e,
                items_processed=context.loaded_count,
                items_failed=1,
                duration=time.perf_counter() - started,
            )
        except (ConfluenceApiError, AmbiguousPageError) as e:
            return StepResult.critical_error(
                self.name,
                f"Failed to load pages: {e}",
                e,
                items_processed=context.loaded_count,
                items_failed=1,
                duration=time.perf_counter() - started,
            )

        return StepResult.success(
            self.name,
            context.loaded_count,
            time.perf_counter() - started,
            f"{counts['created']} created, {counts['updated']} updated, "
            f"{counts['skipped']} unchanged.",
        )

    def _resolve_root_parent(self, context: BatchContext, space: ConfluenceSpace) -> str | None:
        """Explicit parent id, else the root page title, else the space homepage."""
        options = context.options
        if options.parent_id:
            return options.parent_id

        if options.root_page:
            if space.homepage_id is None:
                page = self._find_or_create_top_level(options.root_page, "", space)
                return page.id
            resolution = self.api.get_or_create_page_under_parent(
                options.root_page, space.homepage_id, space.id
            )
            if resolution.status is ResolutionStatus.AMBIGUOUS or resolution.page is None:
                raise AmbiguousPageError(
                    f"Root page '{options.root_page}' is ambiguous: "
                    f"{resolution.total_matches} match(es), "
                    f"{resolution.matches_under_parent} under the space homepage"
                )
            return resolution.page.id

        return space.homepage_id

    def _find_or_create_top_level(self, title: str, body: str, space: ConfluenceSpace) -> ConfluencePage:
        matches = self.api.get_pages_by_title(title, space.id)
        if len(matches) > 1:
            raise AmbiguousPageError(f"Title '{title}' matches {len(matches)} pages")
        if matches:
            return matches[0]
        return self.api.create_page(title, body, None, space.id)

    def _upsert(
        self,
        doc: ConvertedDocument,
        parent_id: str | None,
        space: ConfluenceSpace,
        skip_update: bool,
    ) -> tuple[ConfluencePage, str]:
        existing = None
        if doc.metadata.page_id:
            existing = self.api.get_page_by_id(doc.metadata.page_id)
            if existing is None:
                log.warning(
                    "Page %s recorded in '%s' no longer exists, looking up by title",
                    doc.metadata.page_id,
                    doc.relative_path,
                )

        if existing is None:
            if parent_id is None:
                matches = self.api.get_pages_by_title(doc.title, space.id)
                if len(matches) > 1:
                    raise AmbiguousPageError(f"Title '{doc.title}' matches {len(matches)} pages")
                if not matches:
                    return self.api.create_page(doc.title, doc.body, None, space.id), "created"
                existing = matches[0]
            else:
                resolution = self.api.get_or_create_page_under_parent(doc.title, parent_id, space.id)
                if resolution.status is ResolutionStatus.AMBIGUOUS or resolution.page is None:
                    raise AmbiguousPageError(
                        f"Title '{doc.title}' matches {resolution.total_matches} page(s), "
                        f"{resolution.matches_under_parent} under parent {parent_id}"
                    )
                existing = resolution.page
                if resolution.status is ResolutionStatus.CREATED:
                    page = self.api.update_page(
                        existing.id, doc.title, doc.body, existing.version + 1
                    )
                    return page, "created"

        if skip_update and existing.body == doc.body and existing.title == doc.title:
            return existing, "skipped"

        page = self.api.update_page(existing.id, doc.title, doc.body, existing.version + 1)
        return page, "updated"

    def _upload_attachments(
        self, page_id: str, doc: ConvertedDocument, context: BatchContext
    ) -> None:
        for attachment in doc.attachments:
            try:
                data = attachment_bytes(attachment)
            except OSError as e:
                context.add_warning(f"'{doc.title}': cannot read {attachment.local_path}: {e}")
                continue
            if data is None:
                log.debug("No content for attachment %s, skipping", attachment.file_name)
                continue
            self.api.upload_attachment(
                page_id, attachment.file_name, data, attachment_mime_type(attachment)
            )


# ─────────────────────────────────────────────────────────────────────────────
# Local export
# ─────────────────────────────────────────────────────────────────────────────


class LocalExportStep:
    """Writes each converted document to `<root>/.confluence-export/`."""

    name = "LocalExport"

    def execute(self, context: BatchContext, cancel: CancellationToken) -> StepResult:
        started = time.perf_counter()
        root = context.options.path
        if root.is_file():
            root = root.parent
        export_dir = root / EXPORT_DIRNAME

        try:
            check_duplicate_titles(context.transformed_documents)
        except DuplicateTitleError as e:
            return StepResult.critical_error(self.name, str(e), e)

        written = failed = 0
        for doc in context.transformed_documents:
            cancel.raise_if_cancelled()
            name = sanitize_filename(doc.title)
            try:
                export_dir.mkdir(parents=True, exist_ok=True)
                target = export_dir / f"{name}{EXPORT_SUFFIX}"
                target.write_text(doc.body, encoding="utf-8")
                self._write_attachments(export_dir / "attachments" / name, doc)
            except OSError as e:
                failed += 1
                log.error("Failed to export '%s': %s", doc.title, e)
                context.add_warning(f"Failed to export '{doc.title}': {e}")
                continue
            written += 1
            context.loaded_count += 1
            log.debug("Exported %s", target)

        duration = time.perf_counter() - started
        if failed:
            return StepResult.warning(
                self.name, written, failed, duration, f"{written} exported, {failed} failed."
            )
        log.info("Exported %d document(s) to %s", written, export_dir)
        return StepResult.success(self.name, written, duration)

    @staticmethod
    def _write_attachments(directory: Path, doc: ConvertedDocument) -> None:
        for attachment in doc.attachments:
            data = attachment_bytes(attachment)
            if data is None:
                continue
            directory.mkdir(parents=True, exist_ok=True)
            (directory / sanitize_filename(attachment.file_name)).write_bytes(data)


# ─────────────────────────────────────────────────────────────────────────────
# Write-back
# ─────────────────────────────────────────────────────────────────────────────


class WriteBackStep:
    """Records the page id of each loaded document in its source file."""

    name = "WriteBack"

    def execute(self, context: BatchContext, cancel: CancellationToken) -> StepResult:
        started = time.perf_counter()
        if context.options.no_write_back:
            return StepResult.success(self.name, 0, 0.0, "Write-back disabled.")

        space_key = context.space.key if context.space is not None else None
        updated = failed = 0
        for doc in context.transformed_documents:
            cancel.raise_if_cancelled()
            page_id = context.page_id_cache.get(str(doc.source_path))
            if page_id is None:
                continue
            try:
                text = doc.source_path.read_text(encoding="utf-8")
                new_text = write_back_page_id(text, page_id, space_key)
                if new_text == text:
                    continue
                doc.source_path.write_text(new_text, encoding="utf-8")
            except OSError as e:
                failed += 1
                context.add_warning(f"Could not write page id to {doc.source_path}: {e}")
                continue
            updated += 1
            log.debug("Wrote page id %s to %s", page_id, doc.relative_path)

        duration = time.perf_counter() - started
        if failed:
            return StepResult.warning(
                self.name, updated, failed, duration, f"{updated} file(s) updated, {failed} failed."
            )
        return StepResult.success(self.name, updated, duration, f"{updated} file(s) updated.")


# ─────────────────────────────────────────────────────────────────────────────
# Download
# ─────────────────────────────────────────────────────────────────────────────


class FileSystemLoadStep:
    """Writes downloaded pages under `options.path`.

    A page whose source path was recorded at upload goes back to that path.
    Otherwise the layout follows the page tree: a page with children becomes
    `<slug>/index.md` and its children live in that directory. The download
    root itself is not written when it has no recorded source path; its
    children go directly into the output directory.
    """

    name = "FileSystemLoad"

    def __init__(self, api: ConfluenceApi | None = None, attachment_dir: str = "img") -> None:
        self.api = api
        self.attachment_dir = attachment_dir

    def execute(self, context: BatchContext, cancel: CancellationToken) -> StepResult:
        started = time.perf_counter()
        output = context.options.path.resolve()
        root_id = context.options.parent_id or context.options.root_page
        used: set[Path] = set()

        written = failed = 0
        for doc in context.markdown_documents:
            cancel.raise_if_cancelled()

            if doc.page_id == root_id and not doc.source_path:
                context.page_id_cache[doc.page_id] = str(output)
                log.debug("Root page '%s' is not written", doc.title)
                continue

            target = self._target_path(doc, output, context, used)
            used.add(target)
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(doc.content, encoding="utf-8")
            except OSError as e:
                failed += 1
                log.error("Failed to write '%s': %s", target, e)
                context.add_warning(f"Failed to write '{target}': {e}")
                continue

            written += 1
            context.loaded_count += 1
            log.info("Wrote %s", target.relative_to(output) if target.is_relative_to(output) else target)

            if context.options.download_attachments:
                self._download_attachments(doc, target.parent / self.attachment_dir, context)

        duration = time.perf_counter() - started
        if failed:
            return StepResult.warning(
                self.name, written, failed, duration, f"{written} file(s) written, {failed} failed."
            )
        return StepResult.success(self.name, written, duration)

    def _target_path(
        self, doc: MarkdownDocument, output: Path, context: BatchContext, used: set[Path]
    ) -> Path:
        if doc.source_path:
            candidate = (output / doc.source_path).resolve()
            if candidate.is_relative_to(output.resolve()) and candidate not in used:
                if doc.has_children:
                    if candidate.name.lower() in INDEX_FILENAMES:
                        context.page_id_cache[doc.page_id] = str(candidate.parent)
                    else:
                        context.page_id_cache[doc.page_id] = str(candidate.with_suffix(""))
                return candidate
            log.warning("Ignoring recorded source path '%s' for '%s'", doc.source_path, doc.title)

        parent_dir = Path(context.page_id_cache.get(doc.parent_page_id or "", str(output)))
        slug = file_slug(doc.title)
        suffix = 1
        while True:
            name = slug if suffix == 1 else f"{slug}-{suffix}"
            if doc.has_children:
                candidate = parent_dir / name / "index.md"
            else:
                candidate = parent_dir / f"{name}.md"
            if candidate not in used and (parent_dir / name) not in used:
                break
            suffix += 1

        if doc.has_children:
            context.page_id_cache[doc.page_id] = str(candidate.parent)
            used.add(candidate.parent)
        return candidate

    def _download_attachments(
        self, doc: MarkdownDocument, directory: Path, context: BatchContext
    ) -> None:
        if self.api is None:
            return
        for attachment in doc.attachments:
            if not attachment.download_link:
                continue
            try:
                data = self.api.download_attachment(attachment.download_link)
                directory.mkdir(parents=True, exist_ok=True)
                (directory / sanitize_filename(attachment.title)).write_bytes(data)
            except (ConfluenceApiError, OSError) as e:
                message = f"'{doc.title}': attachment {attachment.title} not downloaded: {e}"
                log.warning(message)
                context.add_warning(message)
