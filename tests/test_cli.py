"""CLI tests for synkmd.

Covers each command with:
- One happy path against a temp tree (remote commands use the in-memory API)
- The error paths that map to exit codes 1 and 2

Design:
- Uses fixtures from conftest.py (runner, docs_root, fake_api)
- ConfluenceClient is patched where the command imports it
- Assertions use result.output, which carries stdout and stderr
"""

from unittest.mock import patch

import pytest

from synkmd import __version__ as SYNKMD_VERSION
from synkmd.cli import cli


@pytest.fixture
def remote_env(monkeypatch):
    monkeypatch.setenv("CONFLUENCE_BASE_URL", "https://example.atlassian.net")
    monkeypatch.setenv("CONFLUENCE_USER_EMAIL", "me@example.com")
    monkeypatch.setenv("CONFLUENCE_API_TOKEN", "secret")


@pytest.fixture
def patched_client(fake_api):
    with patch("synkmd.confluence.ConfluenceClient", return_value=fake_api) as client_class:
        yield client_class


# ─────────────────────────────────────────────────────────────────────────────
# Group
# ─────────────────────────────────────────────────────────────────────────────


class TestGroup:
    """Version and help output."""

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "synkmd" in result.output
        assert SYNKMD_VERSION in result.output

    @pytest.mark.parametrize("command", ["upload", "export", "download"])
    def test_command_help(self, runner, command):
        result = runner.invoke(cli, [command, "--help"])

        assert result.exit_code == 0
        assert "Examples:" in result.output


# ─────────────────────────────────────────────────────────────────────────────
# export
# ─────────────────────────────────────────────────────────────────────────────


class TestExport:
    """Tests for `synkmd export`."""

    def test_writes_storage_files(self, runner, docs_root):
        root = docs_root({"index.md": "# Home\n\nHello", "guide/setup.md": "# Setup"})

        result = runner.invoke(cli, ["export", str(root), "--no-diagrams"])

        assert result.exit_code == 0, result.output
        export_dir = root / ".confluence-export"
        assert "<p>Hello</p>" in (export_dir / "Home.csf.html").read_text()
        assert (export_dir / "Setup.csf.html").exists()
        assert "[Success] LocalExport" in result.output

    def test_converter_flags(self, runner, docs_root):
        root = docs_root({"index.md": "# Home\n\n## Part\n\nText"})

        result = runner.invoke(
            cli,
            ["export", str(root), "--no-diagrams", "--skip-title-heading", "--no-heading-anchors"],
        )

        assert result.exit_code == 0, result.output
        body = (root / ".confluence-export" / "Home.csf.html").read_text()
        assert body.startswith("<h2>Part</h2><p>Text</p>")
        assert 'ac:name="anchor"' not in body

    def test_project_config(self, runner, docs_root):
        root = docs_root(
            {
                ".synkmd.yaml": "converter:\n  skip_title_heading: true\n  heading_anchors: false\n",
                "index.md": "# Home\n\nText",
            }
        )

        result = runner.invoke(cli, ["export", str(root), "--no-diagrams"])

        assert result.exit_code == 0, result.output
        body = (root / ".confluence-export" / "Home.csf.html").read_text()
        assert body.startswith("<p>Text</p>")

    def test_invalid_project_config(self, runner, docs_root):
        root = docs_root({".synkmd.yaml": "converter:\n  diagram_output_format: gif\n", "a.md": "A"})

        result = runner.invoke(cli, ["export", str(root), "--no-diagrams"])

        assert result.exit_code == 1
        assert "Error: Invalid ConverterOptions settings" in result.output

    def test_empty_directory_aborts(self, runner, tmp_path):
        result = runner.invoke(cli, ["export", str(tmp_path), "--no-diagrams"])

        assert result.exit_code == 2
        assert "Error: No Markdown files found" in result.output

    def test_missing_directory_fails(self, runner, tmp_path):
        result = runner.invoke(cli, ["export", str(tmp_path / "missing"), "--no-diagrams"])

        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_quiet(self, runner, docs_root):
        root = docs_root({"a.md": "A"})

        result = runner.invoke(cli, ["-q", "export", str(root), "--no-diagrams"])

        assert result.exit_code == 0
        assert "[Success]" not in result.output


# ─────────────────────────────────────────────────────────────────────────────
# upload
# ─────────────────────────────────────────────────────────────────────────────


class TestUpload:
    """Tests for `synkmd upload`."""

    def test_missing_settings(self, runner, docs_root):
        root = docs_root({"a.md": "A"})

        result = runner.invoke(cli, ["upload", str(root)])

        assert result.exit_code == 1
        assert "Error: Missing Confluence settings" in result.output
        assert "CONFLUENCE_API_TOKEN" in result.output

    def test_publishes_tree(self, runner, docs_root, fake_api, remote_env, patched_client):
        root = docs_root({"index.md": "# Overview", "sub/child.md": "# Child"})

        result = runner.invoke(cli, ["upload", str(root), "--space", "DOCS"])

        assert result.exit_code == 0, result.output
        assert "2 created, 0 updated, 0 unchanged." in result.output
        assert fake_api.pages["1002"].parent_id == "1001"
        assert "<!-- confluence-page-id: 1001 -->" in (root / "index.md").read_text()
        settings = patched_client.call_args.args[0]
        assert settings.space_key == "DOCS"
        assert settings.api_token == "secret"

    def test_no_write_back(self, runner, docs_root, fake_api, remote_env, patched_client):
        root = docs_root({"index.md": "# Overview"})

        result = runner.invoke(cli, ["upload", str(root), "--space", "DOCS", "--no-write-back"])

        assert result.exit_code == 0, result.output
        assert (root / "index.md").read_text() == "# Overview"

    def test_flat_and_root_page(self, runner, docs_root, fake_api, remote_env, patched_client):
        root = docs_root({"index.md": "# Overview", "sub/child.md": "# Child"})

        result = runner.invoke(
            cli, ["upload", str(root), "--space", "DOCS", "--root-page", "Handbook", "--flat"]
        )

        assert result.exit_code == 0, result.output
        handbook = fake_api.pages["1001"]
        assert handbook.title == "Handbook"
        assert [p.title for p in fake_api.children_of(handbook.id)] == ["Overview", "Child"]

    def test_load_failure_exit_code(self, runner, docs_root, fake_api, remote_env, patched_client):
        root = docs_root({"a.md": "# Same", "b.md": "# Same"})

        result = runner.invoke(cli, ["upload", str(root), "--space", "DOCS"])

        assert result.exit_code == 1
        assert "Error: Duplicate page title 'Same'" in result.output
        assert fake_api.created == []


# ─────────────────────────────────────────────────────────────────────────────
# download
# ─────────────────────────────────────────────────────────────────────────────


class TestDownload:
    """Tests for `synkmd download`."""

    def test_writes_markdown(self, runner, tmp_path, fake_api, remote_env, patched_client):
        fake_api.add_page("10", "Guide", parent_id="1", body="<h1>Guide</h1><p>Hi</p>")
        output = tmp_path / "out"

        result = runner.invoke(
            cli, ["download", str(output), "--root-page", "1", "--space", "DOCS"]
        )

        assert result.exit_code == 0, result.output
        text = (output / "guide.md").read_text()
        assert text.startswith("---\ntitle: Guide\n")
        assert text.endswith("# Guide\n\nHi\n")
        assert not (output / "home.md").exists()

    def test_root_page_required(self, runner, tmp_path):
        result = runner.invoke(cli, ["download", str(tmp_path / "out")])

        assert result.exit_code == 2
        assert "--root-page" in result.output

    def test_missing_root(self, runner, tmp_path, fake_api, remote_env, patched_client):
        result = runner.invoke(
            cli, ["download", str(tmp_path / "out"), "--root-page", "999", "--space", "DOCS"]
        )

        assert result.exit_code == 2
        assert "Error: Root page '999' not found." in result.output
