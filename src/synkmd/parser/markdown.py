"""Markdown parsing into a markdown-it syntax tree.

The parser is CommonMark with tables, strikethrough, footnotes, dollar math,
task lists and emoji shortcodes. MkDocs `!!!` admonitions are rewritten to
GitHub alert block quotes before parsing so the transpiler only needs to
understand one callout syntax.
"""

from __future__ import annotations

import re

import emoji
from markdown_it import MarkdownIt
from markdown_it.rules_inline import StateInline
from markdown_it.tree import SyntaxTreeNode
from mdit_py_plugins.dollarmath import dollarmath_plugin
from mdit_py_plugins.footnote import footnote_plugin
from mdit_py_plugins.tasklists import tasklists_plugin

_parser: MarkdownIt | None = None

_EMOJI_PATTERN = re.compile(r":([A-Za-z0-9_+\-]+):")


def _emoji_rule(state: StateInline, silent: bool) -> bool:
    """Replace `:shortcode:` with its Unicode glyph when the code is known."""
    if state.src[state.pos] != ":":
        return False

    match = _EMOJI_PATTERN.match(state.src, state.pos, state.posMax)
    if not match:
        return False

    glyph = emoji.emojize(match.group(0), language="alias")
    if glyph == match.group(0):
        return False

    if not silent:
        token = state.push("emoji", "", 0)
        token.content = glyph
        token.markup = match.group(1)

    state.pos = match.end()
    return True


def create_parser() -> MarkdownIt:
    """Build a configured MarkdownIt instance."""
    md = (
        MarkdownIt("commonmark", {"html": True})
        .enable("table")
        .enable("strikethrough")
        .use(footnote_plugin)
        .use(dollarmath_plugin, allow_digits=False, double_inline=True)
        .use(tasklists_plugin)
    )
    md.inline.ruler.push("emoji", _emoji_rule)
    return md


def _get_parser() -> MarkdownIt:
    global _parser
    if _parser is None:
        _parser = create_parser()
    return _parser


def parse_markdown(text: str) -> SyntaxTreeNode:
    """Parse Markdown (frontmatter already stripped) into a syntax tree."""
    source = preprocess_admonitions(text)
    return SyntaxTreeNode(_get_parser().parse(source))


# ─────────────────────────────────────────────────────────────────────────────
# MkDocs admonitions
# ─────────────────────────────────────────────────────────────────────────────

# MkDocs admonition type -> GitHub alert keyword
ADMONITION_TYPES = {
    "note": "NOTE",
    "info": "NOTE",
    "todo": "NOTE",
    "abstract": "NOTE",
    "summary": "NOTE",
    "tldr": "NOTE",
    "question": "NOTE",
    "help": "NOTE",
    "faq": "NOTE",
    "example": "NOTE",
    "quote": "NOTE",
    "cite": "NOTE",
    "tip": "TIP",
    "hint": "TIP",
    "success": "TIP",
    "check": "TIP",
    "done": "TIP",
    "important": "IMPORTANT",
    "warning": "WARNING",
    "caution": "WARNING",
    "attention": "WARNING",
    "danger": "CAUTION",
    "error": "CAUTION",
    "failure": "CAUTION",
    "fail": "CAUTION",
    "missing": "CAUTION",
    "bug": "CAUTION",
}

_ADMONITION_START = re.compile(r'^(\s*)!!!\s+([A-Za-z]+)(?:\s+"([^"]*)")?\s*$')
_FENCE = re.compile(r"^\s*(```|~~~)")


def preprocess_admonitions(text: str) -> str:
    """Rewrite `!!! type "Title"` blocks into `> [!TYPE] Title` quotes.

    The admonition body is the following run of lines indented by at least
    four spaces (or a tab) plus blank lines between them. Fenced code blocks
    are left untouched.
    """
    if "!!!" not in text:
        return text

    lines = text.split("\n")
    result: list[str] = []
    in_fence = False
    i = 0

    while i < len(lines):
        line = lines[i]

        if _FENCE.match(line):
            in_fence = not in_fence
            result.append(line)
            i += 1
            continue

        match = None if in_fence else _ADMONITION_START.match(line)
        if not match:
            result.append(line)
            i += 1
            continue

        indent, kind, title = match.group(1), match.group(2).lower(), match.group(3)
        alert = ADMONITION_TYPES.get(kind, "NOTE")
        header = f"{indent}> [!{alert}]"
        if title:
            header += f" {title}"
        result.append(header)
        i += 1

        body_prefix = indent + "    "
        body: list[str] = []
        while i < len(lines):
            candidate = lines[i]
            if candidate.startswith(body_prefix):
                body.append(candidate[len(body_prefix):])
                i += 1
            elif candidate.startswith(indent + "\t"):
                body.append(candidate[len(indent) + 1:])
                i += 1
            elif not candidate.strip():
                # Blank line belongs to the body only if indented content follows
                j = i
                while j < len(lines) and not lines[j].strip():
                    j += 1
                if j < len(lines) and lines[j].startswith(body_prefix):
                    body.extend([""] * (j - i))
                    i = j
                else:
                    break
            else:
                break

        for body_line in body:
            result.append(f"{indent}> {body_line}".rstrip() if body_line else f"{indent}>")

    return "\n".join(result)
