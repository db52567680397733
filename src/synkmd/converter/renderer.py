"""Markdown syntax tree to Confluence storage format.

StorageFormatRenderer walks a markdown-it SyntaxTreeNode and emits storage
format markup. Content that has to be attached to the page separately
(local images, diagram sources, formulas, linked files) is collected in
side-channel lists while rendering; no image generation happens here.

After `render()` the caller can inspect:
    images, diagrams, formulas, linked_files  side-channel artifacts
    first_heading_seen  a level-1 heading was encountered
    skip_active  a skip region was still open at end of document
    unresolved_links  internal links that did not resolve
"""

from __future__ import annotations

import hashlib
import logging
import mimetypes
import posixpath
import re
from pathlib import Path
from urllib.parse import unquote

from markdown_it.tree import SyntaxTreeNode

from ..config import DIAGNOSTIC_SAMPLE_LIMIT, FORMULA_OUTPUT_FORMAT
from ..models import AttachmentInfo, ConverterOptions, LayoutOptions
from ..parser.links import LinkResolution, LinkResolver, LinkType, UrlBuilder
from ..parser.markdown import parse_markdown
from ..parser.slugs import slugify
from ..parser.title_index import PageMappings
from .languages import resolve_language

log = logging.getLogger(__name__)

# GitHub alert keyword -> macro
GITHUB_ALERTS = {
    "NOTE": "info",
    "TIP": "tip",
    "IMPORTANT": "note",
    "WARNING": "warning",
    "CAUTION": "warning",
}

# GitLab paragraph prefix -> macro
GITLAB_ALERTS = {
    "FLAG": "note",
    "NOTE": "info",
    "WARNING": "note",
    "DISCLAIMER": "info",
}

# Fence language -> side-channel kind
DIAGRAM_FENCES = {
    "mermaid": "mermaid",
    "drawio": "drawio",
    "plantuml": "plantuml",
    "puml": "plantuml",
    "latex": "latex",
    "math": "latex",
}

_GITHUB_ALERT = re.compile(r"^\[!([A-Za-z]+)\][ \t]*(.*)$")
_SKIP_START = re.compile(r"<!--\s*confluence[-_]skip[-_]start\s*-->", re.IGNORECASE)
_SKIP_END = re.compile(r"<!--\s*confluence[-_]skip[-_]end\s*-->", re.IGNORECASE)
_HTML_COMMENT = re.compile(r"^\s*<!--.*?-->\s*$", re.DOTALL)
_DETAILS_OPEN = re.compile(r"^\s*<details[^>]*>", re.IGNORECASE)
_DETAILS_CLOSE = re.compile(r"</details\s*>\s*$", re.IGNORECASE)
_SUMMARY = re.compile(r"<summary[^>]*>(.*?)</summary>", re.IGNORECASE | re.DOTALL)
_DATE_INPUT = re.compile(
    r"<input\b[^>]*\btype=[\"']date[\"'][^>]*\bvalue=[\"']([^\"']+)[\"'][^>]*/?>", re.IGNORECASE
)
_CHECKBOX = re.compile(r"<input\b[^>]*task-list-item-checkbox[^>]*>", re.IGNORECASE)
_VOID_TAGS = re.compile(r"<(br|hr|img)(\b[^>]*?)\s*/?>", re.IGNORECASE)
_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")


def escape(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def escape_attr(text: str) -> str:
    return escape(text).replace('"', "&quot;")


def cdata(text: str) -> str:
    return "<![CDATA[" + text.replace("]]>", "]]]]><![CDATA[>") + "]]>"


def parameter(name: str, value: str) -> str:
    return f'<ac:parameter ac:name="{name}">{escape(value)}</ac:parameter>'


def anchor_macro(name: str) -> str:
    return (
        '<ac:structured-macro ac:name="anchor">'
        f"{parameter('', name)}"
        "</ac:structured-macro>"
    )


def short_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:8]


def convert_inline_html(html: str) -> str:
    """Map the raw HTML tags with a storage format equivalent."""
    html = _DATE_INPUT.sub(lambda m: f'<time datetime="{escape_attr(m.group(1))}"/>', html)
    html = re.sub(r"<(/?)ins\b([^>]*)>", r"<\1u\2>", html, flags=re.IGNORECASE)
    return _VOID_TAGS.sub(lambda m: f"<{m.group(1).lower()}{m.group(2)}/>", html)


class StorageFormatRenderer:
    """Renders one document's syntax tree to storage format.

    A renderer instance may be reused; every call to render() starts from a
    clean state, so rendering the same tree twice gives identical output and
    side-channel lists.
    """

    def __init__(
        self,
        options: ConverterOptions | None = None,
        layout: LayoutOptions | None = None,
        *,
        link_resolver: LinkResolver | None = None,
        url_builder: UrlBuilder | None = None,
        source_path: Path | None = None,
    ) -> None:
        self.options = options or ConverterOptions()
        self.layout = layout or LayoutOptions()
        self.source_path = source_path
        self.url_builder = url_builder
        if link_resolver is None:
            root = source_path.parent if source_path is not None else Path.cwd()
            link_resolver = LinkResolver(root, PageMappings({}, {}))
        self.link_resolver = link_resolver
        self._reset()

    def _reset(self) -> None:
        self.images: list[AttachmentInfo] = []
        self.diagrams: list[AttachmentInfo] = []
        self.formulas: list[AttachmentInfo] = []
        self.linked_files: list[AttachmentInfo] = []
        self.unresolved_links: list[str] = []
        self.missing_attachments: list[str] = []
        self.first_heading_seen = False
        self.skip_active = False
        self._parts: list[str] = []
        self._open_details = 0
        self._in_task_list = False

    @property
    def attachments(self) -> list[AttachmentInfo]:
        """All side-channel artifacts, first occurrence of each file name."""
        seen: set[str] = set()
        result = []
        for item in [*self.images, *self.diagrams, *self.formulas, *self.linked_files]:
            if item.file_name not in seen:
                seen.add(item.file_name)
                result.append(item)
        return result

    def render(self, tree: SyntaxTreeNode) -> str:
        """Render a parsed document and return the storage format text."""
        self._reset()
        self._render_children(tree)
        while self._open_details:
            self._close_details()

        if self.unresolved_links:
            label = self.source_path or "<document>"
            samples = ", ".join(self.unresolved_links[:DIAGNOSTIC_SAMPLE_LIMIT])
            log.warning("%s: %d unresolved link(s): %s", label, len(self.unresolved_links), samples)
        if self.missing_attachments:
            label = self.source_path or "<document>"
            log.warning(
                "%s: %d missing attachment(s): %s",
                label,
                len(self.missing_attachments),
                ", ".join(self.missing_attachments[:DIAGNOSTIC_SAMPLE_LIMIT]),
            )

        return "".join(self._parts)

    def render_markdown(self, text: str) -> str:
        """Parse and render Markdown text (frontmatter already removed)."""
        return self.render(parse_markdown(text))

    # ─────────────────────────────────────────────────────────────────────
    # Dispatch
    # ─────────────────────────────────────────────────────────────────────

    def _write(self, text: str) -> None:
        if not self.skip_active:
            self._parts.append(text)

    def _render_children(self, node: SyntaxTreeNode) -> None:
        for child in node.children:
            self._render_node(child)

    def _render_node(self, node: SyntaxTreeNode) -> None:
        if self.skip_active and not _is_top_level_html(node):
            return
        handler = getattr(self, f"_render_{node.type}", None)
        if handler is None:
            self._render_unknown(node)
        else:
            handler(node)

    def _render_unknown(self, node: SyntaxTreeNode) -> None:
        if node.children:
            self._render_children(node)
        elif node.content:
            self._write(escape(node.content))

    # ─────────────────────────────────────────────────────────────────────
    # Blocks
    # ─────────────────────────────────────────────────────────────────────

    def _render_inline(self, node: SyntaxTreeNode) -> None:
        self._render_children(node)

    def _render_paragraph(self, node: SyntaxTreeNode) -> None:
        inline_text = node.children[0].content.strip() if node.children else ""
        if inline_text == "[[_TOC_]]":
            self._write('<ac:structured-macro ac:name="toc"></ac:structured-macro>')
            return
        if inline_text == "[[_LISTING_]]":
            self._write(
                '<ac:structured-macro ac:name="children">'
                f"{parameter('all', 'true')}"
                "</ac:structured-macro>"
            )
            return

        if node.hidden:
            self._render_children(node)
            return
        self._write("<p>")
        self._render_children(node)
        self._write("</p>")

    def _render_heading(self, node: SyntaxTreeNode) -> None:
        level = int(node.tag[1:])
        is_title = level == 1 and not self.first_heading_seen
        if level == 1:
            self.first_heading_seen = True

        suppressed = is_title and self.options.skip_title_heading
        slug = slugify(_plain_text(node))
        if self.options.heading_anchors and slug and (not suppressed or self.options.title_anchor):
            self._write(anchor_macro(slug))
        if suppressed:
            return

        self._write(f"<h{level}>")
        self._render_children(node)
        self._write(f"</h{level}>")

    def _render_hr(self, node: SyntaxTreeNode) -> None:
        self._write("<hr/>")

    def _render_code_block(self, node: SyntaxTreeNode) -> None:
        self._write(self._code_macro("", node.content.rstrip("\n")))

    def _render_fence(self, node: SyntaxTreeNode) -> None:
        info = node.info.strip()
        language = info.split(maxsplit=1)[0] if info else ""
        code = node.content.rstrip("\n")

        kind = DIAGRAM_FENCES.get(language.lower())
        if kind == "latex" and self.options.render_latex:
            self._write(self._formula(code, block=True))
            return
        if kind is not None and kind != "latex" and self._diagram_enabled(kind):
            self._render_diagram(kind, code)
            return

        self._write(self._code_macro(language, code))

    def _code_macro(
        self, language: str, code: str, *, title: str | None = None, collapse: bool = False
    ) -> str:
        parts = ['<ac:structured-macro ac:name="code">']
        if language:
            parts.append(
                parameter("language", resolve_language(language, self.options.force_valid_language))
            )
        if title:
            parts.append(parameter("title", title))
        if collapse:
            parts.append(parameter("collapse", "true"))
        if self.options.code_line_numbers:
            parts.append(parameter("linenumbers", "true"))
        parts.append(f"<ac:plain-text-body>{cdata(code)}</ac:plain-text-body>")
        parts.append("</ac:structured-macro>")
        return "".join(parts)

    def _diagram_enabled(self, kind: str) -> bool:
        return {
            "mermaid": self.options.render_mermaid,
            "drawio": self.options.render_drawio,
            "plantuml": self.options.render_plantuml,
        }.get(kind, False)

    def _render_diagram(self, kind: str, source: str) -> None:
        extension = self.options.diagram_output_format
        file_name = f"{kind}-{short_hash(source)}.{extension}"
        self.diagrams.append(
            AttachmentInfo(
                file_name=file_name,
                source_kind=kind,
                source=source,
                mime_type=_mime_type(file_name),
            )
        )
        self._write(self._image_macro(f'<ri:attachment ri:filename="{escape_attr(file_name)}"/>'))
        if self.options.include_diagram_source:
            title = f"{kind.capitalize()} Source (auto-generated)"
            self._write(self._code_macro(kind, source, title=title, collapse=True))

    def _formula(self, source: str, *, block: bool) -> str:
        file_name = f"formula-{short_hash(source)}.{FORMULA_OUTPUT_FORMAT}"
        self.formulas.append(
            AttachmentInfo(
                file_name=file_name,
                source_kind="latex",
                source=source,
                mime_type=_mime_type(file_name),
            )
        )
        attachment = f'<ri:attachment ri:filename="{escape_attr(file_name)}"/>'
        if block:
            return f'<p><ac:image ac:align="center">{attachment}</ac:image></p>'
        return f"<ac:image>{attachment}</ac:image>"

    def _render_math_block(self, node: SyntaxTreeNode) -> None:
        source = node.content.strip()
        if self.options.render_latex:
            self._write(self._formula(source, block=True))
        else:
            self._write(self._code_macro("tex", source))

    _render_math_block_label = _render_math_block

    def _render_blockquote(self, node: SyntaxTreeNode) -> None:
        first = node.children[0] if node.children else None
        inline = first.children[0] if first is not None and first.type == "paragraph" and first.children else None
        lead = inline.children[0] if inline is not None and inline.children else None

        if lead is not None and lead.type == "text":
            match = _GITHUB_ALERT.match(lead.content)
            if match and match.group(1).upper() in GITHUB_ALERTS:
                alert = match.group(1).upper()
                title = match.group(2).strip() or None
                self._write_callout(GITHUB_ALERTS[alert], alert, title, node, _AlertLineSkipper())
                return

            prefix = lead.content.split(":", 1)[0]
            if ":" in lead.content and prefix.upper() in GITLAB_ALERTS and prefix.isupper():
                self._write_callout(
                    GITLAB_ALERTS[prefix], prefix, None, node, _PrefixStripper(prefix + ":")
                )
                return

        self._write("<blockquote>")
        self._render_children(node)
        self._write("</blockquote>")

    def _write_callout(
        self,
        macro: str,
        alert: str,
        title: str | None,
        node: SyntaxTreeNode,
        first_line: _AlertLineSkipper | _PrefixStripper,
    ) -> None:
        if self.options.use_panel:
            macro = "panel"
            title = title or alert.capitalize()
        self._write(f'<ac:structured-macro ac:name="{macro}">')
        if title:
            self._write(parameter("title", title))
        self._write("<ac:rich-text-body>")

        for index, child in enumerate(node.children):
            if index == 0:
                self._render_callout_paragraph(child, first_line)
            else:
                self._render_node(child)

        self._write("</ac:rich-text-body></ac:structured-macro>")

    def _render_callout_paragraph(
        self, paragraph: SyntaxTreeNode, first_line: _AlertLineSkipper | _PrefixStripper
    ) -> None:
        opening = len(self._parts)
        self._write("<p>")
        for child in paragraph.children:
            if child.type != "inline":
                self._render_node(child)
                continue
            for inline_child in child.children:
                text = first_line.filter(inline_child)
                if text is None:
                    continue
                if text is inline_child:
                    self._render_node(inline_child)
                else:
                    self._write(escape(text))
        if len(self._parts) == opening + 1:
            self._parts.pop()
        else:
            self._write("</p>")

    def _render_bullet_list(self, node: SyntaxTreeNode) -> None:
        if _is_task_list(node):
            self._render_task_list(node)
            return
        self._write("<ul>")
        self._render_children(node)
        self._write("</ul>")

    def _render_ordered_list(self, node: SyntaxTreeNode) -> None:
        if _is_task_list(node):
            self._render_task_list(node)
            return
        start = node.attrGet("start")
        self._write(f'<ol start="{start}">' if start not in (None, 1, "1") else "<ol>")
        self._render_children(node)
        self._write("</ol>")

    def _render_list_item(self, node: SyntaxTreeNode) -> None:
        self._write("<li>")
        self._render_children(node)
        self._write("</li>")

    def _render_task_list(self, node: SyntaxTreeNode) -> None:
        self._write("<ac:task-list>")
        for item in node.children:
            status = "complete" if _task_checked(item) else "incomplete"
            self._write(f"<ac:task><ac:task-status>{status}</ac:task-status><ac:task-body>")
            previous, self._in_task_list = self._in_task_list, True
            self._render_children(item)
            self._in_task_list = previous
            self._write("</ac:task-body></ac:task>")
        self._write("</ac:task-list>")

    def _render_table(self, node: SyntaxTreeNode) -> None:
        style = self._table_style()
        self._write(f'<table style="{style}">' if style else "<table>")
        self._render_children(node)
        self._write("</table>")

    def _table_style(self) -> str:
        rules = []
        if self.layout.table_width:
            rules.append(f"width: {self.layout.table_width}px;")
        if self.layout.alignment:
            rules.append(f"text-align: {self.layout.alignment};")
        mode = "fixed" if self.layout.table_display_mode == "fixed" else "auto"
        rules.append(f"table-layout: {mode};")
        return " ".join(rules)

    def _render_thead(self, node: SyntaxTreeNode) -> None:
        self._write("<thead>")
        self._render_children(node)
        self._write("</thead>")

    def _render_tbody(self, node: SyntaxTreeNode) -> None:
        self._write("<tbody>")
        self._render_children(node)
        self._write("</tbody>")

    def _render_tr(self, node: SyntaxTreeNode) -> None:
        self._write("<tr>")
        self._render_children(node)
        self._write("</tr>")

    def _render_th(self, node: SyntaxTreeNode) -> None:
        self._render_cell("th", node)

    def _render_td(self, node: SyntaxTreeNode) -> None:
        self._render_cell("td", node)

    def _render_cell(self, tag: str, node: SyntaxTreeNode) -> None:
        style = node.attrGet("style")
        self._write(f'<{tag} style="{escape_attr(str(style))}">' if style else f"<{tag}>")
        self._render_children(node)
        self._write(f"</{tag}>")

    def _render_html_block(self, node: SyntaxTreeNode) -> None:
        content = node.content
        # skip markers are honored between top-level blocks only
        if self.skip_active:
            if _SKIP_END.search(content):
                self.skip_active = False
            return
        if _SKIP_START.search(content) and _is_top_level_html(node):
            self.skip_active = True
            return
        if _HTML_COMMENT.match(content):
            return

        if _DETAILS_OPEN.match(content):
            summary = _SUMMARY.search(content)
            inner = _SUMMARY.sub("", _DETAILS_OPEN.sub("", content, count=1), count=1)
            self._write('<ac:structured-macro ac:name="expand">')
            if summary:
                self._write(parameter("title", _strip_tags(summary.group(1)).strip()))
            self._write("<ac:rich-text-body>")
            self._open_details += 1
            closes = _DETAILS_CLOSE.search(inner)
            if closes:
                inner = inner[: closes.start()]
            if inner.strip():
                self._write(convert_inline_html(inner.strip()))
            if closes:
                self._close_details()
            return

        if content.strip().lower().startswith("</details") and self._open_details:
            self._close_details()
            return

        self._write(convert_inline_html(content.rstrip("\n")))

    def _close_details(self) -> None:
        self._write("</ac:rich-text-body></ac:structured-macro>")
        self._open_details -= 1

    def _render_footnote_block(self, node: SyntaxTreeNode) -> None:
        self._write("<hr/><ol>")
        self._render_children(node)
        self._write("</ol>")

    def _render_footnote(self, node: SyntaxTreeNode) -> None:
        name = _footnote_name(node.meta)
        self._write("<li>")
        self._write(anchor_macro(f"footnote-def-{name}"))
        self._render_children(node)
        self._write("</li>")

    def _render_footnote_anchor(self, node: SyntaxTreeNode) -> None:
        name = _footnote_name(node.meta)
        sub_id = node.meta.get("subId", 0) or 0
        target = f"footnote-ref-{name}" + (f"-{sub_id}" if sub_id > 0 else "")
        self._write(
            f'<ac:link ac:anchor="{escape_attr(target)}">'
            f"<ac:link-body>{cdata('↩')}</ac:link-body></ac:link>"
        )

    # ─────────────────────────────────────────────────────────────────────
    # Inlines
    # ─────────────────────────────────────────────────────────────────────

    def _render_text(self, node: SyntaxTreeNode) -> None:
        self._write(escape(node.content))

    def _render_softbreak(self, node: SyntaxTreeNode) -> None:
        self._write("\n")

    def _render_hardbreak(self, node: SyntaxTreeNode) -> None:
        self._write("<br/>")

    def _render_code_inline(self, node: SyntaxTreeNode) -> None:
        self._write(f"<code>{escape(node.content)}</code>")

    def _render_strong(self, node: SyntaxTreeNode) -> None:
        self._wrap("strong", node)

    def _render_em(self, node: SyntaxTreeNode) -> None:
        self._wrap("em", node)

    def _render_s(self, node: SyntaxTreeNode) -> None:
        self._wrap("del", node)

    def _wrap(self, tag: str, node: SyntaxTreeNode) -> None:
        self._write(f"<{tag}>")
        self._render_children(node)
        self._write(f"</{tag}>")

    def _render_emoji(self, node: SyntaxTreeNode) -> None:
        self._write(node.content)

    def _render_html_inline(self, node: SyntaxTreeNode) -> None:
        content = node.content
        if _CHECKBOX.match(content):
            if not self._in_task_list:
                self._write("☑ " if 'checked="checked"' in content else "☐ ")
            return
        if content.startswith("<!--"):
            return
        self._write(convert_inline_html(content))

    def _render_math_inline(self, node: SyntaxTreeNode) -> None:
        if self.options.render_latex:
            self._write(self._formula(node.content, block=False))
        else:
            self._write(f"<code>{escape(node.content)}</code>")

    _render_math_inline_double = _render_math_inline

    def _render_footnote_ref(self, node: SyntaxTreeNode) -> None:
        name = _footnote_name(node.meta)
        sub_id = node.meta.get("subId", 0) or 0
        ref_id = f"footnote-ref-{name}" + (f"-{sub_id}" if sub_id > 0 else "")
        number = int(node.meta.get("id", 0)) + 1
        self._write(
            f"<sup>{anchor_macro(ref_id)}"
            f'<ac:link ac:anchor="footnote-def-{escape_attr(name)}">'
            f"<ac:link-body>{cdata(str(number))}</ac:link-body></ac:link></sup>"
        )

    def _render_link(self, node: SyntaxTreeNode) -> None:
        href = str(node.attrGet("href") or "")
        if node.markup == "autolink" or node.info == "auto":
            self._write(f'<a href="{escape_attr(href)}">')
            self._render_children(node)
            self._write("</a>")
            return

        resolution = self.link_resolver.resolve(self.source_path, href)

        if resolution.link_type is LinkType.EXTERNAL:
            self._write(f'<a href="{escape_attr(href)}">')
            self._render_children(node)
            self._write("</a>")
        elif resolution.link_type is LinkType.ANCHOR and not resolution.anchor:
            self._render_children(node)
        elif resolution.link_type is LinkType.ANCHOR:
            self._write(f'<ac:link ac:anchor="{escape_attr(resolution.anchor)}"><ac:link-body>')
            self._render_children(node)
            self._write("</ac:link-body></ac:link>")
        elif resolution.link_type is LinkType.ATTACHMENT:
            self._render_attachment_link(node, resolution)
        else:
            self._render_page_link(node, resolution)

    def _render_page_link(self, node: SyntaxTreeNode, resolution: LinkResolution) -> None:
        if not resolution.resolved:
            self.unresolved_links.append(resolution.href)
            strategy = self.options.unresolved_link_strategy
            if strategy == "text":
                self._render_children(node)
                return
            if strategy == "href" or not resolution.title:
                self._write(f'<a href="{escape_attr(resolution.href)}">')
                self._render_children(node)
                self._write("</a>")
                return

        title = resolution.title or ""
        if self.options.webui_links and self.url_builder is not None:
            url = self.url_builder.page_url(title, resolution.page_id, resolution.anchor)
            self._write(f'<a href="{escape_attr(url)}">')
            self._render_children(node)
            self._write("</a>")
            return

        anchor = f' ac:anchor="{escape_attr(resolution.anchor)}"' if resolution.anchor else ""
        self._write(
            f'<ac:link{anchor}><ri:page ri:content-title="{escape_attr(title)}"/><ac:link-body>'
        )
        self._render_children(node)
        self._write("</ac:link-body></ac:link>")

    def _render_attachment_link(self, node: SyntaxTreeNode, resolution: LinkResolution) -> None:
        if resolution.local_path is None or not resolution.file_name:
            self.missing_attachments.append(resolution.href)
            self._write(f'<a href="{escape_attr(resolution.href)}">')
            self._render_children(node)
            self._write("</a>")
            return

        self.linked_files.append(
            AttachmentInfo(
                file_name=resolution.file_name,
                source_kind="file",
                source=resolution.href,
                local_path=resolution.local_path,
                mime_type=_mime_type(resolution.file_name),
            )
        )
        self._write(
            f'<ac:link><ri:attachment ri:filename="{escape_attr(resolution.file_name)}"/>'
            "<ac:link-body>"
        )
        self._render_children(node)
        self._write("</ac:link-body></ac:link>")

    def _render_image(self, node: SyntaxTreeNode) -> None:
        src = str(node.attrGet("src") or "")
        alt = node.content or None

        if src.startswith("//") or _SCHEME.match(src):
            self._write(self._image_macro(f'<ri:url ri:value="{escape_attr(src)}"/>', alt))
            return

        path = unquote(src.split("#", 1)[0].split("?", 1)[0])
        file_name = posixpath.basename(path)
        local_path = self._local_file(path)

        if self.options.prefer_raster and file_name.lower().endswith(".svg") and local_path:
            raster = local_path.with_suffix(".png")
            if raster.is_file():
                local_path = raster
                file_name = file_name[:-4] + ".png"

        if local_path is None:
            self.missing_attachments.append(src)

        self.images.append(
            AttachmentInfo(
                file_name=file_name,
                source_kind="image",
                source=path,
                local_path=local_path,
                mime_type=_mime_type(file_name),
            )
        )
        self._write(
            self._image_macro(f'<ri:attachment ri:filename="{escape_attr(file_name)}"/>', alt)
        )

    def _image_macro(self, resource: str, alt: str | None = None) -> str:
        attrs = ""
        if self.layout.image_alignment:
            attrs += f' ac:align="{self.layout.image_alignment}"'
        if self.layout.image_max_width:
            attrs += f' ac:width="{self.layout.image_max_width}"'
        if alt:
            attrs += f' ac:alt="{escape_attr(alt)}"'
        return f"<ac:image{attrs}>{resource}</ac:image>"

    def _local_file(self, path: str) -> Path | None:
        if self.source_path is None:
            return None
        if path.startswith("/"):
            candidate = self.link_resolver.root / path.lstrip("/")
        else:
            candidate = self.source_path.parent / path
        return candidate.resolve() if candidate.is_file() else None


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


class _AlertLineSkipper:
    """Drops inline tokens up to and including the first line break."""

    def __init__(self) -> None:
        self.done = False

    def filter(self, node: SyntaxTreeNode) -> SyntaxTreeNode | None:
        if self.done:
            return node
        if node.type in ("softbreak", "hardbreak"):
            self.done = True
        return None


class _PrefixStripper:
    """Removes a leading `NOTE:` style prefix from the first text token."""

    def __init__(self, prefix: str) -> None:
        self.prefix = prefix
        self.done = False

    def filter(self, node: SyntaxTreeNode) -> SyntaxTreeNode | str | None:
        if self.done:
            return node
        self.done = True
        remaining = node.content[len(self.prefix):].lstrip()
        return remaining or None


def _plain_text(node: SyntaxTreeNode) -> str:
    parts = []
    for child in node.walk(include_self=False):
        if child.type in ("text", "code_inline", "emoji"):
            parts.append(child.content)
        elif child.type in ("softbreak", "hardbreak"):
            parts.append(" ")
    return "".join(parts)


def _strip_tags(html: str) -> str:
    return re.sub(r"<[^>]+>", "", html)


def _is_top_level_html(node: SyntaxTreeNode) -> bool:
    return node.type == "html_block" and node.parent is not None and node.parent.is_root


def _is_task_list(node: SyntaxTreeNode) -> bool:
    return bool(node.children) and all(
        str(item.attrGet("class") or "").startswith("task-list-item") for item in node.children
    )


def _task_checked(item: SyntaxTreeNode) -> bool:
    for child in item.walk(include_self=False):
        if child.type == "html_inline" and _CHECKBOX.match(child.content):
            return 'checked="checked"' in child.content
    return False


def _footnote_name(meta: dict) -> str:
    label = meta.get("label")
    if label:
        return slugify(str(label)) or str(label)
    return str(int(meta.get("id", 0)) + 1)


def _mime_type(file_name: str) -> str:
    return mimetypes.guess_type(file_name)[0] or "application/octet-stream"
