"""Transform steps.

StorageFormatTransformStep turns extracted documents into storage format
bodies with their attachments (upload/export). MarkdownTransformStep turns
fetched pages back into Markdown (download).
"""

from __future__ import annotations

import logging
import posixpath
import time

from pydantic import ValidationError

from ..config import METADATA_MACRO_TITLE, GENERATED_BY_MACRO_ID
from ..converter.renderer import StorageFormatRenderer, escape
from ..converter.reverse import MarkdownConverter
from ..diagrams import DiagramRenderer, DiagramRenderError
from ..frontmatter import build_frontmatter
from ..models import AttachmentInfo, ConvertedDocument, DocumentNode, MarkdownDocument, RemotePage
from ..parser.links import LinkResolver, UrlBuilder
from ..parser.title_index import build_page_mappings, document_title
from .core import BatchContext, CancellationToken, StepResult

log = logging.getLogger(__name__)


def apply_generated_by(template: str, relative_path: str) -> str:
    """Substitute %{filepath}, %{filename}, %{filedir} and %{filestem}."""
    path = relative_path.replace("\\", "/")
    file_name = posixpath.basename(path)
    return (
        template.replace("%{filepath}", path)
        .replace("%{filename}", file_name)
        .replace("%{filedir}", posixpath.dirname(path) or ".")
        .replace("%{filestem}", posixpath.splitext(file_name)[0])
    )


def metadata_macro(node: DocumentNode) -> str:
    """Hidden expand macro recording where a page came from."""
    file_name = posixpath.basename(node.relative_path)
    return (
        '<ac:structured-macro ac:name="expand">'
        f'<ac:parameter ac:name="title">{METADATA_MACRO_TITLE}</ac:parameter>'
        f"<ac:rich-text-body><p>source-file:{escape(file_name)}\n"
        f"source-path:{escape(node.relative_path)}</p></ac:rich-text-body>"
        "</ac:structured-macro>"
    )


def generated_by_macro(text: str) -> str:
    return (
        f'<ac:structured-macro ac:name="info" ac:macro-id="{GENERATED_BY_MACRO_ID}">'
        f"<ac:rich-text-body><p>{escape(text)}</p></ac:rich-text-body>"
        "</ac:structured-macro>"
    )


class StorageFormatTransformStep:
    """Renders every extracted document to storage format.

    Args:
        diagram_renderer: Renders diagram and formula sources to images.
            Without one, those attachments are left out and their image
            references stay broken.
    """

    name = "StorageFormatTransform"

    def __init__(self, diagram_renderer: DiagramRenderer | None = None) -> None:
        self.diagram_renderer = diagram_renderer

    def execute(self, context: BatchContext, cancel: CancellationToken) -> StepResult:
        started = time.perf_counter()
        options = context.converter_options

        mappings = build_page_mappings(context.extracted_nodes, options.title_prefix)
        log.debug(
            "Built page mappings: %d titles, %d page ids",
            len(mappings.titles),
            len(mappings.page_ids),
        )
        resolver = LinkResolver(
            context.options.path, mappings, on_unresolved=context.record_unresolved_link
        )
        url_builder = None
        if context.settings is not None and context.settings.base_url:
            url_builder = UrlBuilder(
                context.settings.base_url,
                context.options.space_key or context.settings.space_key or "",
                options.link_strategy,
            )

        succeeded = failed = 0
        warnings_before = len(context.warnings)
        for node in context.extracted_nodes:
            cancel.raise_if_cancelled()
            try:
                document = self._transform(node, context, resolver, url_builder)
            except Exception as e:
                failed += 1
                log.error("Failed to transform '%s': %s", node.relative_path, e)
                context.add_warning(f"{node.relative_path}: {e}")
                continue
            context.transformed_documents.append(document)
            succeeded += 1

        if url_builder is not None:
            context.url_fallback_count += url_builder.fallback_count
            context.url_fallback_samples.extend(url_builder.fallback_samples)

        duration = time.perf_counter() - started
        if succeeded == 0 and failed > 0:
            return StepResult.critical_error(
                self.name,
                f"All {failed} documents failed to transform.",
                items_failed=failed,
                duration=duration,
            )
        if failed > 0:
            return StepResult.warning(
                self.name,
                succeeded,
                failed,
                duration,
                f"{succeeded} documents transformed, {failed} failed.",
            )
        new_warnings = len(context.warnings) - warnings_before
        if new_warnings:
            return StepResult.warning(
                self.name,
                succeeded,
                0,
                duration,
                f"{succeeded} documents transformed with {new_warnings} warning(s).",
            )
        return StepResult.success(self.name, succeeded, duration)

    def _transform(
        self,
        node: DocumentNode,
        context: BatchContext,
        resolver: LinkResolver,
        url_builder: UrlBuilder | None,
    ) -> ConvertedDocument:
        log.debug("Transforming %s", node.relative_path)
        options = context.converter_options

        layout = context.layout_options
        if node.metadata.layout:
            try:
                layout = layout.merged(node.metadata.layout)
            except ValidationError as e:
                context.add_warning(
                    f"{node.relative_path}: invalid layout override ignored "
                    f"({e.error_count()} error(s))"
                )

        renderer = StorageFormatRenderer(
            options,
            layout,
            link_resolver=resolver,
            url_builder=url_builder,
            source_path=node.absolute_path,
        )
        body = renderer.render_markdown(node.raw_content) + metadata_macro(node)

        generated_by = node.metadata.generated_by or options.generated_by
        if generated_by:
            body = generated_by_macro(apply_generated_by(generated_by, node.relative_path)) + body

        title = document_title(node, options.title_prefix)
        attachments = self._attachments(renderer, title, context)

        log.debug(
            "Transformed '%s': %d chars, %d attachment(s)", title, len(body), len(attachments)
        )
        return ConvertedDocument(
            title=title,
            body=body,
            metadata=node.metadata,
            source_path=node.absolute_path,
            relative_path=node.relative_path,
            parent_source_path=node.parent_source_path,
            attachments=attachments,
        )

    def _attachments(
        self, renderer: StorageFormatRenderer, title: str, context: BatchContext
    ) -> list[AttachmentInfo]:
        attachments: list[AttachmentInfo] = []

        for item in renderer.attachments:
            if item.source_kind in ("image", "file"):
                if item.local_path is not None:
                    attachments.append(item)
                continue

            if self.diagram_renderer is None:
                log.debug("No diagram renderer, leaving out %s", item.file_name)
                continue
            # the attachment name fixes the requested format
            fmt = posixpath.splitext(item.file_name)[1].lstrip(".")
            try:
                data = self.diagram_renderer.render(item.source_kind, item.source, fmt)
            except DiagramRenderError as e:
                message = f"'{title}': could not render {item.file_name}: {e}"
                log.warning(message)
                context.add_warning(message)
                continue
            attachments.append(item.model_copy(update={"data": data}))

        return attachments


class MarkdownTransformStep:
    """Converts fetched pages to Markdown documents with frontmatter."""

    name = "MarkdownTransform"

    def __init__(self, attachment_dir: str = "img") -> None:
        self.attachment_dir = attachment_dir

    def execute(self, context: BatchContext, cancel: CancellationToken) -> StepResult:
        started = time.perf_counter()
        succeeded = failed = 0

        for remote in context.remote_pages:
            cancel.raise_if_cancelled()
            try:
                context.markdown_documents.append(self._transform(remote, context))
                succeeded += 1
            except Exception as e:
                failed += 1
                log.error(
                    "Failed to transform page '%s' (%s): %s", remote.page.title, remote.page.id, e
                )

        duration = time.perf_counter() - started
        if succeeded == 0 and failed > 0:
            return StepResult.critical_error(
                self.name,
                f"All {failed} pages failed to transform.",
                items_failed=failed,
                duration=duration,
            )
        if failed > 0:
            return StepResult.warning(
                self.name, succeeded, failed, duration, f"{succeeded} pages transformed, {failed} failed."
            )
        return StepResult.success(self.name, succeeded, duration)

    def _transform(self, remote: RemotePage, context: BatchContext) -> MarkdownDocument:
        page = remote.page
        converter = MarkdownConverter(attachment_dir=self.attachment_dir)
        markdown = converter.convert(page.body or "")

        header = build_frontmatter(
            page.title,
            page_id=page.id,
            space_key=context.space.key if context.space is not None else None,
        )
        if converter.generated_by:
            header += f"<!-- generated-by: {converter.generated_by} -->\n\n"

        referenced = set(converter.attachments)
        return MarkdownDocument(
            title=page.title,
            content=header + markdown,
            page_id=page.id,
            parent_page_id=remote.parent_page_id,
            has_children=remote.has_children,
            source_path=converter.source_path,
            attachments=[att for att in remote.attachments if att.title in referenced],
        )
