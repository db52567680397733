"""Tests for the Markdown to storage format renderer.

Coverage:
- Blocks: paragraphs, headings and anchors, code, lists, task lists, tables
- Callouts: GitHub alerts, GitLab prefixes, MkDocs admonitions, panels
- Side channels: diagrams, formulas, images, linked files
- Links: page, anchor, external, attachment, unresolved strategies, web UI URLs
- Skip regions, details/summary, footnotes, inline HTML, emoji
"""

from pathlib import Path

import pytest

from synkmd.converter.renderer import StorageFormatRenderer, cdata, short_hash
from synkmd.models import ConverterOptions, LayoutOptions
from synkmd.parser.links import LinkResolver, UrlBuilder
from synkmd.parser.markdown import parse_markdown
from synkmd.parser.title_index import PageMappings


def render(text: str, **options) -> str:
    options.setdefault("heading_anchors", False)
    return StorageFormatRenderer(ConverterOptions(**options)).render_markdown(text)


def anchor(name: str) -> str:
    return (
        '<ac:structured-macro ac:name="anchor">'
        f'<ac:parameter ac:name="">{name}</ac:parameter>'
        "</ac:structured-macro>"
    )


# =============================================================================
# Basic blocks
# =============================================================================


class TestBasicBlocks:
    """Paragraphs, inline formatting and escaping."""

    def test_paragraph_with_formatting(self):
        assert render("Hello *world* and **bold** ~~gone~~") == (
            "<p>Hello <em>world</em> and <strong>bold</strong> <del>gone</del></p>"
        )

    def test_escaping(self):
        """Markup characters in text are escaped."""
        assert render("a < b & c") == "<p>a &lt; b &amp; c</p>"

    def test_inline_code(self):
        assert render("Use `x<y`") == "<p>Use <code>x&lt;y</code></p>"

    def test_hard_break_and_rule(self):
        assert render("line one  \nline two\n\n---") == "<p>line one<br/>line two</p><hr/>"

    def test_empty_document(self):
        assert render("") == ""

    def test_render_is_repeatable(self):
        """Rendering the same tree twice gives the same output and side channels."""
        renderer = StorageFormatRenderer(ConverterOptions())
        tree = parse_markdown("# T\n\n```mermaid\ngraph TD;\n```\n\n$$\nx^2\n$$\n")

        first = renderer.render(tree)
        first_attachments = [a.file_name for a in renderer.attachments]
        second = renderer.render(tree)

        assert first == second
        assert [a.file_name for a in renderer.attachments] == first_attachments
        assert len(renderer.diagrams) == 1
        assert len(renderer.formulas) == 1


class TestHeadings:
    """Heading anchors and title suppression."""

    def test_anchor_before_heading(self):
        result = render("## My Section", heading_anchors=True)

        assert result == anchor("my-section") + "<h2>My Section</h2>"

    @pytest.mark.parametrize(
        "heading,slug",
        [("## Überblick", "überblick"), ("## 日本語", "日本語")],
    )
    def test_non_ascii_anchor(self, heading, slug):
        heading_text = heading[3:]

        result = render(heading, heading_anchors=True)

        assert result == anchor(slug) + f"<h2>{heading_text}</h2>"

    def test_no_anchor_when_disabled(self):
        assert render("## My Section") == "<h2>My Section</h2>"

    def test_skip_title_heading_keeps_anchor(self):
        """The suppressed title still gets its anchor by default."""
        result = render("# Title\n\nBody", heading_anchors=True, skip_title_heading=True)

        assert result == anchor("title") + "<p>Body</p>"

    def test_skip_title_heading_without_anchor(self):
        result = render(
            "# Title\n\nBody",
            heading_anchors=True,
            skip_title_heading=True,
            title_anchor=False,
        )

        assert result == "<p>Body</p>"

    def test_only_first_h1_is_skipped(self):
        result = render("# One\n\n# Two", skip_title_heading=True)

        assert result == "<h1>Two</h1>"

    def test_first_heading_seen(self):
        renderer = StorageFormatRenderer(ConverterOptions())
        renderer.render_markdown("## Not a title")
        assert not renderer.first_heading_seen

        renderer.render_markdown("# Title")
        assert renderer.first_heading_seen


class TestCode:
    """Code macros."""

    def test_fence_with_alias(self):
        assert render("```python\nprint(1)\n```") == (
            '<ac:structured-macro ac:name="code">'
            '<ac:parameter ac:name="language">py</ac:parameter>'
            "<ac:plain-text-body><![CDATA[print(1)]]></ac:plain-text-body>"
            "</ac:structured-macro>"
        )

    def test_cdata_terminator_is_split(self):
        """]]> inside code cannot end the CDATA section early."""
        assert cdata("a]]>b") == "<![CDATA[a]]]]><![CDATA[>b]]>"
        assert "<![CDATA[x]]]]><![CDATA[>y]]>" in render("```\nx]]>y\n```")

    def test_unknown_language(self):
        assert '<ac:parameter ac:name="language">foolang</ac:parameter>' in render(
            "```foolang\nx\n```"
        )
        assert '<ac:parameter ac:name="language">none</ac:parameter>' in render(
            "```foolang\nx\n```", force_valid_language=True
        )

    def test_line_numbers(self):
        result = render("```js\nx\n```", code_line_numbers=True)

        assert '<ac:parameter ac:name="linenumbers">true</ac:parameter>' in result

    def test_indented_code_block(self):
        result = render("    indented code")

        assert "<![CDATA[indented code]]>" in result
        assert 'ac:name="language"' not in result


class TestDiagramsAndMath:
    """Diagram fences and formulas go to side channels."""

    def test_mermaid_diagram(self):
        source = "graph TD;\n  A-->B;"
        renderer = StorageFormatRenderer(ConverterOptions(heading_anchors=False))

        result = renderer.render_markdown(f"```mermaid\n{source}\n```")

        file_name = f"mermaid-{short_hash(source)}.png"
        assert result == f'<ac:image><ri:attachment ri:filename="{file_name}"/></ac:image>'
        assert len(renderer.diagrams) == 1
        diagram = renderer.diagrams[0]
        assert diagram.file_name == file_name
        assert diagram.source_kind == "mermaid"
        assert diagram.source == source

    def test_puml_alias_and_svg(self):
        renderer = StorageFormatRenderer(ConverterOptions(diagram_output_format="svg"))
        renderer.render_markdown("```puml\n@startuml\n@enduml\n```")

        assert renderer.diagrams[0].source_kind == "plantuml"
        assert renderer.diagrams[0].file_name.endswith(".svg")

    def test_disabled_diagram_is_code(self):
        renderer = StorageFormatRenderer(ConverterOptions(render_mermaid=False))

        result = renderer.render_markdown("```mermaid\ngraph TD;\n```")

        assert 'ac:name="code"' in result
        assert renderer.diagrams == []

    def test_diagram_source_block(self):
        result = render("```mermaid\ngraph TD;\n```", include_diagram_source=True)

        assert '<ac:parameter ac:name="title">Mermaid Source (auto-generated)</ac:parameter>' in result
        assert '<ac:parameter ac:name="collapse">true</ac:parameter>' in result

    def test_block_formula(self):
        renderer = StorageFormatRenderer(ConverterOptions())

        result = renderer.render_markdown("$$\nx^2\n$$")

        file_name = f"formula-{short_hash('x^2')}.svg"
        assert result == (
            f'<p><ac:image ac:align="center"><ri:attachment ri:filename="{file_name}"/>'
            "</ac:image></p>"
        )
        assert renderer.formulas[0].source_kind == "latex"

    def test_inline_formula(self):
        renderer = StorageFormatRenderer(ConverterOptions())

        result = renderer.render_markdown("Area is $r^2$ here")

        assert result.startswith("<p>Area is <ac:image><ri:attachment")
        assert renderer.formulas[0].source == "r^2"

    def test_latex_disabled(self):
        assert render("Area is $r^2$ here", render_latex=False) == (
            "<p>Area is <code>r^2</code> here</p>"
        )

    def test_latex_fence(self):
        renderer = StorageFormatRenderer(ConverterOptions())
        renderer.render_markdown("```latex\n\\frac{a}{b}\n```")

        assert renderer.formulas[0].source == "\\frac{a}{b}"


class TestCallouts:
    """Alerts and admonitions become callout macros."""

    def test_github_alert(self):
        assert render("> [!NOTE]\n> Be careful") == (
            '<ac:structured-macro ac:name="info"><ac:rich-text-body>'
            "<p>Be careful</p></ac:rich-text-body></ac:structured-macro>"
        )

    @pytest.mark.parametrize(
        "alert,macro",
        [("TIP", "tip"), ("IMPORTANT", "note"), ("WARNING", "warning"), ("CAUTION", "warning")],
    )
    def test_alert_mapping(self, alert, macro):
        assert render(f"> [!{alert}]\n> text").startswith(f'<ac:structured-macro ac:name="{macro}">')

    def test_alert_title(self):
        result = render("> [!WARNING] Heads up\n> Careful")

        assert '<ac:parameter ac:name="title">Heads up</ac:parameter>' in result
        assert "<p>Careful</p>" in result

    def test_gitlab_prefix(self):
        assert render("> NOTE: Remember this") == (
            '<ac:structured-macro ac:name="info"><ac:rich-text-body>'
            "<p>Remember this</p></ac:rich-text-body></ac:structured-macro>"
        )

    def test_mkdocs_admonition(self):
        result = render('!!! warning "Careful"\n    Body text\n')

        assert result.startswith('<ac:structured-macro ac:name="warning">')
        assert '<ac:parameter ac:name="title">Careful</ac:parameter>' in result
        assert "<p>Body text</p>" in result

    def test_panel(self):
        result = render("> [!TIP]\n> text", use_panel=True)

        assert result.startswith('<ac:structured-macro ac:name="panel">')
        assert '<ac:parameter ac:name="title">Tip</ac:parameter>' in result

    def test_plain_blockquote(self):
        assert render("> quoted") == "<blockquote><p>quoted</p></blockquote>"


class TestLists:
    """Bullet, ordered and task lists."""

    def test_bullet_list(self):
        assert render("- a\n- b") == "<ul><li>a</li><li>b</li></ul>"

    def test_ordered_list_start(self):
        assert render("3. x\n4. y") == '<ol start="3"><li>x</li><li>y</li></ol>'

    def test_ordered_list_default_start(self):
        assert render("1. x").startswith("<ol><li>")

    def test_task_list(self):
        result = render("- [x] done\n- [ ] todo")

        assert result.startswith("<ac:task-list><ac:task><ac:task-status>complete</ac:task-status>")
        assert "<ac:task-status>incomplete</ac:task-status>" in result
        assert "done" in result and "todo" in result
        assert "<input" not in result
        assert "<ul>" not in result


class TestTables:
    """GFM tables with layout options."""

    def test_table(self):
        result = render("| a | b |\n|---|:-:|\n| 1 | 2 |")

        assert result.startswith('<table style="table-layout: auto;"><thead><tr><th>a</th>')
        assert '<th style="text-align:center">b</th>' in result
        assert "<tbody><tr><td>1</td>" in result

    def test_table_layout(self):
        layout = LayoutOptions(table_width=800, table_display_mode="fixed", alignment="center")
        renderer = StorageFormatRenderer(ConverterOptions(), layout)

        result = renderer.render_markdown("| a |\n|---|\n| 1 |")

        assert result.startswith(
            '<table style="width: 800px; text-align: center; table-layout: fixed;">'
        )


class TestHtmlAndMacros:
    """Raw HTML handling, skip regions and placeholders."""

    def test_skip_region(self):
        text = (
            "Before\n\n<!-- confluence-skip-start -->\n\nSecret\n\n"
            "<!-- confluence-skip-end -->\n\nAfter"
        )

        result = render(text)

        assert result == "<p>Before</p><p>After</p>"

    def test_unterminated_skip_region(self):
        renderer = StorageFormatRenderer(ConverterOptions())

        result = renderer.render_markdown("Shown\n\n<!-- confluence-skip-start -->\n\nHidden")

        assert result == "<p>Shown</p>"
        assert renderer.skip_active

    def test_skip_marker_inside_container_is_ignored(self):
        """Markers nested in a quote or list never leave a tag unclosed."""
        text = (
            "> a\n>\n> <!-- confluence-skip-start -->\n\n"
            "hidden\n\n<!-- confluence-skip-end -->\n\nafter"
        )

        result = render(text)

        assert result == "<blockquote><p>a</p></blockquote><p>hidden</p><p>after</p>"

    def test_skip_region_spanning_list(self):
        text = (
            "<!-- confluence-skip-start -->\n\n- one\n- two\n\n"
            "<!-- confluence-skip-end -->\n\nAfter"
        )

        assert render(text) == "<p>After</p>"

    def test_html_comment_dropped(self):
        assert render("<!-- internal note -->\n\nText") == "<p>Text</p>"

    def test_details_become_expand(self):
        text = "<details>\n<summary>More</summary>\n\nHidden text\n\n</details>"

        assert render(text) == (
            '<ac:structured-macro ac:name="expand">'
            '<ac:parameter ac:name="title">More</ac:parameter>'
            "<ac:rich-text-body><p>Hidden text</p></ac:rich-text-body>"
            "</ac:structured-macro>"
        )

    def test_unclosed_details_closed_at_end(self):
        result = render("<details>\n<summary>More</summary>\n\nText")

        assert result.endswith("</ac:rich-text-body></ac:structured-macro>")

    def test_toc_and_listing(self):
        assert render("[[_TOC_]]") == '<ac:structured-macro ac:name="toc"></ac:structured-macro>'
        assert render("[[_LISTING_]]") == (
            '<ac:structured-macro ac:name="children">'
            '<ac:parameter ac:name="all">true</ac:parameter>'
            "</ac:structured-macro>"
        )

    def test_inline_html(self):
        assert render("an <ins>insert</ins>") == "<p>an <u>insert</u></p>"
        assert render('Due <input type="date" value="2024-05-01"> now') == (
            '<p>Due <time datetime="2024-05-01"/> now</p>'
        )

    def test_emoji(self):
        assert render("Nice :smile: work :not_an_emoji:") == (
            "<p>Nice \U0001f604 work :not_an_emoji:</p>"
        )

    @pytest.mark.parametrize(
        "shortcode,glyph",
        [(":+1:", "\U0001f44d"), (":hedgehog:", "\U0001f994"), (":tada:", "\U0001f389")],
    )
    def test_emoji_aliases(self, shortcode, glyph):
        assert render(f"Done {shortcode}") == f"<p>Done {glyph}</p>"

    def test_footnotes(self):
        result = render("Text[^1]\n\n[^1]: The note")

        assert "<sup>" + anchor("footnote-ref-1") in result
        assert '<ac:link ac:anchor="footnote-def-1">' in result
        assert "<hr/><ol><li>" + anchor("footnote-def-1") in result
        assert '<ac:link ac:anchor="footnote-ref-1">' in result
        assert "The note" in result


# =============================================================================
# Links and images
# =============================================================================


class TestLinks:
    """Link rendering through the resolver."""

    @pytest.fixture
    def make_renderer(self, tmp_path: Path):
        def make(titles=None, url_builder=None, **options):
            options.setdefault("heading_anchors", False)
            resolver = LinkResolver(tmp_path, PageMappings(titles or {}, {}))
            return StorageFormatRenderer(
                ConverterOptions(**options),
                link_resolver=resolver,
                url_builder=url_builder,
                source_path=tmp_path / "index.md",
            )

        return make

    def test_page_link(self, make_renderer):
        renderer = make_renderer({"b.md": "Page B"})

        result = renderer.render_markdown("[B](b.md#Intro)")

        assert result == (
            '<p><ac:link ac:anchor="intro"><ri:page ri:content-title="Page B"/>'
            "<ac:link-body>B</ac:link-body></ac:link></p>"
        )

    def test_anchor_link(self, make_renderer):
        result = make_renderer().render_markdown("[see](#some-part)")

        assert result == (
            '<p><ac:link ac:anchor="some-part"><ac:link-body>see</ac:link-body></ac:link></p>'
        )

    @pytest.mark.parametrize("fragment", ["日本語", "%E6%97%A5%E6%9C%AC%E8%AA%9E"])
    def test_non_ascii_anchor_link(self, make_renderer, fragment):
        result = make_renderer().render_markdown(f"[x](#{fragment})")

        assert result == (
            '<p><ac:link ac:anchor="日本語"><ac:link-body>x</ac:link-body></ac:link></p>'
        )

    def test_anchor_link_without_usable_slug(self, make_renderer):
        assert make_renderer().render_markdown("[x](#---)") == "<p>x</p>"

    def test_external_and_autolink(self, make_renderer):
        renderer = make_renderer()

        assert renderer.render_markdown("[x](https://example.com)") == (
            '<p><a href="https://example.com">x</a></p>'
        )
        assert renderer.render_markdown("<https://example.com>") == (
            '<p><a href="https://example.com">https://example.com</a></p>'
        )

    @pytest.mark.parametrize(
        "strategy,expected",
        [
            ("href", '<p><a href="missing.md">gone</a></p>'),
            ("text", "<p>gone</p>"),
            (
                "title",
                '<p><ac:link><ri:page ri:content-title="missing"/>'
                "<ac:link-body>gone</ac:link-body></ac:link></p>",
            ),
        ],
    )
    def test_unresolved_strategies(self, make_renderer, strategy, expected):
        renderer = make_renderer(unresolved_link_strategy=strategy)

        assert renderer.render_markdown("[gone](missing.md)") == expected
        assert renderer.unresolved_links == ["missing.md"]

    def test_webui_link(self, make_renderer):
        builder = UrlBuilder("https://example.atlassian.net", "DOCS")
        renderer = make_renderer({"b.md": "Page B"}, url_builder=builder, webui_links=True)

        result = renderer.render_markdown("[B](b.md#Intro)")

        assert result == (
            '<p><a href="https://example.atlassian.net/wiki/display/DOCS/Page+B#intro">B</a></p>'
        )

    def test_attachment_link(self, make_renderer, tmp_path):
        (tmp_path / "files").mkdir()
        (tmp_path / "files" / "manual.pdf").write_bytes(b"%PDF")
        renderer = make_renderer()

        result = renderer.render_markdown("[Manual](files/manual.pdf)")

        assert result == (
            '<p><ac:link><ri:attachment ri:filename="manual.pdf"/>'
            "<ac:link-body>Manual</ac:link-body></ac:link></p>"
        )
        assert [a.file_name for a in renderer.linked_files] == ["manual.pdf"]
        assert renderer.linked_files[0].source_kind == "file"

    def test_missing_attachment_link(self, make_renderer):
        renderer = make_renderer()

        result = renderer.render_markdown("[Manual](files/none.pdf)")

        assert result == '<p><a href="files/none.pdf">Manual</a></p>'
        assert renderer.missing_attachments == ["files/none.pdf"]


class TestImages:
    """Local and external images."""

    @pytest.fixture
    def doc_dir(self, tmp_path: Path) -> Path:
        (tmp_path / "img").mkdir()
        (tmp_path / "img" / "pic.png").write_bytes(b"png")
        return tmp_path

    def _renderer(self, doc_dir: Path, layout=None, **options):
        return StorageFormatRenderer(
            ConverterOptions(**options), layout, source_path=doc_dir / "index.md"
        )

    def test_local_image(self, doc_dir):
        renderer = self._renderer(doc_dir)

        result = renderer.render_markdown("![Alt text](img/pic.png)")

        assert result == (
            '<p><ac:image ac:alt="Alt text"><ri:attachment ri:filename="pic.png"/></ac:image></p>'
        )
        assert renderer.images[0].local_path == (doc_dir / "img" / "pic.png").resolve()

    def test_external_image(self, doc_dir):
        result = self._renderer(doc_dir).render_markdown("![](https://example.com/x.png)")

        assert result == '<p><ac:image><ri:url ri:value="https://example.com/x.png"/></ac:image></p>'

    def test_missing_image(self, doc_dir):
        renderer = self._renderer(doc_dir)
        renderer.render_markdown("![](img/none.png)")

        assert renderer.missing_attachments == ["img/none.png"]
        assert renderer.images[0].local_path is None

    def test_layout_attributes(self, doc_dir):
        layout = LayoutOptions(image_alignment="center", image_max_width=600)

        result = self._renderer(doc_dir, layout).render_markdown("![](img/pic.png)")

        assert '<ac:image ac:align="center" ac:width="600">' in result

    def test_prefer_raster(self, doc_dir):
        (doc_dir / "img" / "chart.svg").write_text("<svg/>")
        (doc_dir / "img" / "chart.png").write_bytes(b"png")
        renderer = self._renderer(doc_dir)

        result = renderer.render_markdown("![](img/chart.svg)")

        assert 'ri:filename="chart.png"' in result
        assert renderer.images[0].local_path.name == "chart.png"

    def test_prefer_raster_disabled(self, doc_dir):
        (doc_dir / "img" / "chart.svg").write_text("<svg/>")
        (doc_dir / "img" / "chart.png").write_bytes(b"png")

        result = self._renderer(doc_dir, prefer_raster=False).render_markdown("![](img/chart.svg)")

        assert 'ri:filename="chart.svg"' in result

    def test_duplicate_images_collected_once(self, doc_dir):
        renderer = self._renderer(doc_dir)
        renderer.render_markdown("![](img/pic.png)\n\n![](img/pic.png)")

        assert len(renderer.images) == 2
        assert [a.file_name for a in renderer.attachments] == ["pic.png"]
