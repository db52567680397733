"""Storage format back to Markdown (download direction).

Covers the markup the forward renderer emits: headings, paragraphs, inline
formatting, lists, task lists, tables, code and diagram-source macros,
callout macros, expand sections, toc/children macros, page and attachment
links and images. Unknown macros are kept as an HTML comment followed by
their text.
"""

from __future__ import annotations

import html
import logging
import re

from bs4 import BeautifulSoup, NavigableString, Tag

from ..config import GENERATED_BY_MACRO_ID, METADATA_MACRO_TITLE
from ..parser.slugs import file_slug

log = logging.getLogger(__name__)

# Callout macro -> GitHub alert keyword
CALLOUT_ALERTS = {
    "info": "NOTE",
    "tip": "TIP",
    "note": "IMPORTANT",
    "warning": "WARNING",
}

_CDATA = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)
_EXCESS_NEWLINES = re.compile(r"\n{3,}")
_DIAGRAM_SOURCE_SUFFIX = "Source (auto-generated)"

_INLINE_WRAPPERS = {
    "strong": "**",
    "b": "**",
    "em": "*",
    "i": "*",
    "del": "~~",
    "s": "~~",
}


def _param(macro: Tag, name: str) -> str | None:
    found = macro.find("ac:parameter", attrs={"ac:name": name})
    return found.get_text() if found is not None else None


class MarkdownConverter:
    """Converts one page body to Markdown.

    After `convert()`:
        attachments  file names referenced by images and attachment links
        source_file, source_path  values from the hidden metadata macro
        generated_by  text of the generated-by notice, if present
    """

    def __init__(
        self,
        *,
        attachment_dir: str = "img",
        page_links: dict[str, str] | None = None,
    ) -> None:
        self.attachment_dir = attachment_dir.rstrip("/")
        self.page_links = page_links or {}
        self.attachments: list[str] = []
        self.source_file: str | None = None
        self.source_path: str | None = None
        self.generated_by: str | None = None

    def convert(self, body: str) -> str:
        self.attachments = []
        self.source_file = self.source_path = self.generated_by = None

        # html.parser has no CDATA support outside foreign content
        prepared = _CDATA.sub(lambda m: html.escape(m.group(1), quote=False), body)
        soup = BeautifulSoup(prepared, "html.parser")

        markdown = self._blocks(soup)
        markdown = _EXCESS_NEWLINES.sub("\n\n", markdown).strip()
        return markdown + "\n" if markdown else ""

    # ─────────────────────────────────────────────────────────────────────
    # Blocks
    # ─────────────────────────────────────────────────────────────────────

    def _blocks(self, parent: Tag) -> str:
        parts: list[str] = []
        for child in parent.children:
            if isinstance(child, NavigableString):
                if type(child) is NavigableString:
                    text = str(child)
                    if text.strip():
                        parts.append(_collapse(text))
                continue
            parts.append(self._element(child))
        return "".join(parts)

    def _element(self, el: Tag) -> str:
        name = el.name.lower()

        if name in ("h1", "h2", "h3", "h4", "h5", "h6"):
            return f"\n\n{'#' * int(name[1])} {self._inline(el).strip()}\n\n"
        if name == "p":
            text = self._inline(el).strip()
            return f"\n\n{text}\n\n" if text else ""
        if name in ("ul", "ol"):
            return f"\n\n{self._list(el, ordered=name == 'ol')}\n\n"
        if name == "ac:task-list":
            return f"\n\n{self._task_list(el)}\n\n"
        if name == "table":
            return f"\n\n{self._table(el)}\n\n"
        if name == "blockquote":
            return f"\n\n{_quote(self._blocks(el).strip())}\n\n"
        if name == "hr":
            return "\n\n---\n\n"
        if name == "pre":
            return f"\n\n```\n{el.get_text().rstrip()}\n```\n\n"
        if name == "ac:structured-macro":
            return self._macro(el)
        if name == "ac:image":
            if self._is_diagram_image(el):
                return ""
            return f"\n\n{self._image(el)}\n\n"
        if name in ("div", "section", "ac:layout", "ac:layout-section", "ac:layout-cell"):
            return self._blocks(el)
        return self._inline_element(el)

    def _list(self, el: Tag, *, ordered: bool) -> str:
        lines = []
        number = int(el.get("start", 1) or 1)
        for item in el.find_all("li", recursive=False):
            marker = f"{number}. " if ordered else "- "
            number += 1
            lines.append(_indent_item(marker, self._item_body(item)))
        return "\n".join(lines)

    def _task_list(self, el: Tag) -> str:
        lines = []
        for task in el.find_all("ac:task", recursive=False):
            status = task.find("ac:task-status")
            checked = status is not None and status.get_text().strip() == "complete"
            body = task.find("ac:task-body")
            text = self._item_body(body) if body is not None else ""
            lines.append(_indent_item("- [x] " if checked else "- [ ] ", text))
        return "\n".join(lines)

    def _item_body(self, item: Tag) -> str:
        text = self._blocks(item).strip()
        # tight list: one blank line between blocks inside an item is enough as a newline
        return _EXCESS_NEWLINES.sub("\n\n", text).replace("\n\n", "\n")

    def _table(self, el: Tag) -> str:
        rows = []
        for tr in el.find_all("tr"):
            cells = [
                self._inline(cell).strip().replace("|", "\\|").replace("\n", "<br>")
                for cell in tr.find_all(["th", "td"], recursive=False)
            ]
            if cells:
                rows.append(cells)
        if not rows:
            return ""

        width = max(len(row) for row in rows)
        rows = [row + [""] * (width - len(row)) for row in rows]
        lines = ["| " + " | ".join(rows[0]) + " |", "|" + "|".join(["---"] * width) + "|"]
        lines.extend("| " + " | ".join(row) + " |" for row in rows[1:])
        return "\n".join(lines)

    # ─────────────────────────────────────────────────────────────────────
    # Macros
    # ─────────────────────────────────────────────────────────────────────

    def _macro(self, macro: Tag) -> str:
        name = macro.get("ac:name", "")
        body = macro.find("ac:rich-text-body")

        if name == "code":
            return self._code(macro)
        if name == "anchor":
            return ""
        if name == "toc":
            return "\n\n[[_TOC_]]\n\n"
        if name == "children":
            return "\n\n[[_LISTING_]]\n\n"
        if name == "info" and macro.get("ac:macro-id") == GENERATED_BY_MACRO_ID:
            self.generated_by = body.get_text().strip() if body is not None else ""
            return ""
        if name in CALLOUT_ALERTS or name == "panel":
            alert = CALLOUT_ALERTS.get(name, "NOTE")
            title = _param(macro, "title")
            header = f"[!{alert}] {title}".rstrip() if title else f"[!{alert}]"
            inner = self._blocks(body).strip() if body is not None else ""
            content = f"{header}\n{inner}" if inner else header
            return f"\n\n{_quote(content)}\n\n"
        if name == "expand":
            title = _param(macro, "title") or ""
            if title == METADATA_MACRO_TITLE:
                self._read_metadata(body)
                return ""
            inner = self._blocks(body).strip() if body is not None else ""
            return f"\n\n<details><summary>{html.escape(title)}</summary>\n\n{inner}\n\n</details>\n\n"

        log.debug("Unknown macro %r, keeping its text", name)
        text = macro.get_text().strip()
        comment = f"<!-- confluence-macro: {name} -->"
        return f"\n\n{comment}\n{text}\n\n" if text else f"\n\n{comment}\n\n"

    def _code(self, macro: Tag) -> str:
        language = _param(macro, "language") or ""
        title = _param(macro, "title") or ""
        if title.endswith(_DIAGRAM_SOURCE_SUFFIX):
            language = title[: -len(_DIAGRAM_SOURCE_SUFFIX)].strip().lower()
        if language == "none":
            language = ""
        body = macro.find("ac:plain-text-body")
        code = body.get_text().strip("\n") if body is not None else ""
        return f"\n\n```{language}\n{code}\n```\n\n"

    def _read_metadata(self, body: Tag | None) -> None:
        if body is None:
            return
        for line in body.get_text("\n").splitlines():
            line = line.strip()
            if line.startswith("source-file:"):
                self.source_file = line[len("source-file:"):].strip() or None
            elif line.startswith("source-path:"):
                self.source_path = line[len("source-path:"):].strip() or None

    def _is_diagram_image(self, el: Tag) -> bool:
        """An attachment image directly followed by its generated source macro."""
        attachment = el.find("ri:attachment")
        following = el.find_next_sibling()
        if attachment is None or following is None:
            return False
        if following.name != "ac:structured-macro" or following.get("ac:name") != "code":
            return False
        title = _param(following, "title") or ""
        kind = title[: -len(_DIAGRAM_SOURCE_SUFFIX)].strip().lower()
        return title.endswith(_DIAGRAM_SOURCE_SUFFIX) and attachment.get(
            "ri:filename", ""
        ).startswith(f"{kind}-")

    # ─────────────────────────────────────────────────────────────────────
    # Inlines
    # ─────────────────────────────────────────────────────────────────────

    def _inline(self, parent: Tag) -> str:
        parts = []
        for child in parent.children:
            if isinstance(child, NavigableString):
                if type(child) is NavigableString:
                    parts.append(_collapse(str(child)))
            else:
                parts.append(self._inline_element(child))
        return "".join(parts)

    def _inline_element(self, el: Tag) -> str:
        name = el.name.lower()

        if name in _INLINE_WRAPPERS:
            marker = _INLINE_WRAPPERS[name]
            text = self._inline(el)
            return f"{marker}{text}{marker}" if text.strip() else text
        if name == "u":
            return f"<ins>{self._inline(el)}</ins>"
        if name == "code":
            return f"`{el.get_text()}`"
        if name == "br":
            return "  \n"
        if name == "a":
            return f"[{self._inline(el).strip()}]({el.get('href', '')})"
        if name == "time":
            return el.get("datetime", "") or el.get_text()
        if name == "ac:link":
            return self._link(el)
        if name == "ac:image":
            return self._image(el)
        if name == "ac:emoticon":
            return el.get("ac:emoji-fallback") or f":{el.get('ac:name', '')}:"
        if name == "ac:structured-macro":
            return self._macro(el).strip()
        if name in ("p", "ul", "ol", "table", "blockquote", "ac:task-list"):
            return self._element(el).strip()
        return self._inline(el)

    def _link(self, el: Tag) -> str:
        anchor = el.get("ac:anchor")
        body_el = el.find("ac:link-body") or el.find("ac:plain-text-link-body")
        body = self._inline(body_el).strip() if body_el is not None else ""

        page = el.find("ri:page")
        attachment = el.find("ri:attachment")
        if page is not None:
            title = page.get("ri:content-title", "")
            target = self.page_links.get(title) or f"{file_slug(title)}.md"
            if anchor:
                target += f"#{anchor}"
            return f"[{body or title}]({target})"
        if attachment is not None:
            file_name = attachment.get("ri:filename", "")
            self._reference(file_name)
            return f"[{body or file_name}]({self.attachment_dir}/{file_name})"
        if anchor:
            return f"[{body or anchor}](#{anchor})"
        return body

    def _image(self, el: Tag) -> str:
        alt = el.get("ac:alt", "")
        attachment = el.find("ri:attachment")
        if attachment is not None:
            file_name = attachment.get("ri:filename", "")
            self._reference(file_name)
            return f"![{alt}]({self.attachment_dir}/{file_name})"
        url = el.find("ri:url")
        if url is not None:
            return f"![{alt}]({url.get('ri:value', '')})"
        return ""

    def _reference(self, file_name: str) -> None:
        if file_name and file_name not in self.attachments:
            self.attachments.append(file_name)


def storage_to_markdown(body: str, **kwargs) -> str:
    """Convert a storage format body to Markdown with default settings."""
    return MarkdownConverter(**kwargs).convert(body)


def _collapse(text: str) -> str:
    return re.sub(r"\s+", " ", text)


def _quote(text: str) -> str:
    return "\n".join(f"> {line}".rstrip() for line in text.splitlines())


def _indent_item(marker: str, text: str) -> str:
    lines = text.splitlines() or [""]
    pad = " " * len(marker)
    rest = [f"{pad}{line}" if line else "" for line in lines[1:]]
    return "\n".join([marker + lines[0], *rest])
