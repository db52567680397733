#!/usr/bin/env python3
"""
synkmd: synchronize Markdown trees with Confluence

Usage:
    synkmd upload docs/ --space DOCS        # Publish a Markdown tree
    synkmd export docs/                     # Write storage format files locally
    synkmd download out/ --root-page 12345  # Pull a page tree back to Markdown
"""

from __future__ import annotations

import signal
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any, NoReturn

import click

from . import __version__ as SYNKMD_VERSION
from .config import (
    ConfigurationError,
    load_converter_options,
    load_layout_options,
    load_project_config,
    load_settings,
)
from .etl import (
    BatchContext,
    CancellationToken,
    PipelineBuilder,
    PipelineReport,
)
from .models import SyncOptions


def _handle_error(error: Exception, exit_code: int = 1) -> NoReturn:
    click.echo(f"Error: {error}", err=True)
    sys.exit(exit_code)


# ─────────────────────────────────────────────────────────────────────────────
# Shared options
# ─────────────────────────────────────────────────────────────────────────────

_CONVERTER_OPTIONS = [
    click.option("--no-heading-anchors", is_flag=True, help="Omit anchor macros before headings"),
    click.option(
        "--skip-title-heading",
        is_flag=True,
        help="Drop the first level-1 heading (it duplicates the page title)",
    ),
    click.option(
        "--force-valid-language", is_flag=True, help="Replace unknown code languages with 'none'"
    ),
    click.option("--code-line-numbers", is_flag=True, help="Number code lines"),
    click.option("--no-mermaid", is_flag=True, help="Keep mermaid fences as code"),
    click.option("--no-drawio", is_flag=True, help="Keep drawio fences as code"),
    click.option("--no-plantuml", is_flag=True, help="Keep plantuml fences as code"),
    click.option(
        "--no-latex", is_flag=True, help="Leave math as code instead of rendering formula images"
    ),
    click.option(
        "--diagram-format",
        "diagram_output_format",
        type=click.Choice(["png", "svg"]),
        default=None,
        help="Image format for rendered diagrams and formulas",
    ),
    click.option(
        "--include-diagram-source",
        is_flag=True,
        help="Add a collapsed source block after each diagram",
    ),
    click.option("--use-panel", is_flag=True, help="Render callouts as panels"),
    click.option(
        "--webui-links",
        is_flag=True,
        help="Render internal links as web UI URLs instead of page links",
    ),
    click.option(
        "--link-strategy",
        type=click.Choice(["space-title", "page-id"]),
        default=None,
        help="URL form used by --webui-links",
    ),
    click.option(
        "--unresolved-links",
        "unresolved_link_strategy",
        type=click.Choice(["href", "text", "title"]),
        default=None,
        help="Fallback for links to documents outside the tree",
    ),
    click.option("--title-prefix", default=None, help="Prefix for every page title"),
    click.option(
        "--generated-by",
        default=None,
        help="Notice prepended to each page (%{filepath}, %{filename}, %{filedir}, %{filestem})",
    ),
]

_LAYOUT_OPTIONS = [
    click.option(
        "--image-align",
        "image_alignment",
        type=click.Choice(["left", "center", "right"]),
        default=None,
    ),
    click.option("--image-max-width", type=int, default=None, help="Max image width in pixels"),
    click.option("--table-width", type=int, default=None, help="Table width in pixels"),
    click.option(
        "--table-display-mode",
        type=click.Choice(["responsive", "fixed"]),
        default=None,
    ),
]

# flag -> (ConverterOptions field, value when the flag is given)
_CONVERTER_FLAGS = {
    "no_heading_anchors": ("heading_anchors", False),
    "skip_title_heading": ("skip_title_heading", True),
    "force_valid_language": ("force_valid_language", True),
    "code_line_numbers": ("code_line_numbers", True),
    "no_mermaid": ("render_mermaid", False),
    "no_drawio": ("render_drawio", False),
    "no_plantuml": ("render_plantuml", False),
    "no_latex": ("render_latex", False),
    "include_diagram_source": ("include_diagram_source", True),
    "use_panel": ("use_panel", True),
    "webui_links": ("webui_links", True),
}
_CONVERTER_VALUES = (
    "diagram_output_format",
    "link_strategy",
    "unresolved_link_strategy",
    "title_prefix",
    "generated_by",
)
_LAYOUT_KEYS = ("image_alignment", "image_max_width", "table_width", "table_display_mode")


def converter_options(func: Callable) -> Callable:
    """Attach the converter and layout flags to a command."""
    for option in reversed(_CONVERTER_OPTIONS + _LAYOUT_OPTIONS):
        func = option(func)
    return func


def remote_options(func: Callable) -> Callable:
    """Attach connection flags. The API token is only read from the environment."""
    func = click.option("--user-email", default=None, help="Account email (CONFLUENCE_USER_EMAIL)")(func)
    func = click.option("--base-url", default=None, help="Site URL (CONFLUENCE_BASE_URL)")(func)
    func = click.option("--space", "space_key", default=None, help="Space key (CONFLUENCE_SPACE_KEY)")(func)
    return func


def _pop(kwargs: dict[str, Any], keys: tuple[str, ...]) -> dict[str, Any]:
    return {key: kwargs.pop(key, None) for key in keys}


def _converter_overrides(kwargs: dict[str, Any]) -> dict[str, Any]:
    overrides = _pop(kwargs, _CONVERTER_VALUES)
    for flag, (key, value) in _CONVERTER_FLAGS.items():
        if kwargs.pop(flag, False):
            overrides[key] = value
    return overrides


def _build_context(
    path: Path,
    mode: str,
    kwargs: dict[str, Any],
    *,
    project_config: dict[str, Any],
    **sync_options: Any,
) -> BatchContext:
    converter = load_converter_options(project_config, _converter_overrides(kwargs))
    layout = load_layout_options(project_config, _pop(kwargs, _LAYOUT_KEYS))
    settings = load_settings(
        base_url=kwargs.pop("base_url", None),
        user_email=kwargs.pop("user_email", None),
        space_key=kwargs.get("space_key"),
        project_config=project_config,
    )
    options = SyncOptions(
        mode=mode,
        path=path,
        space_key=kwargs.pop("space_key", None) or settings.space_key,
        **sync_options,
    )
    return BatchContext(
        options=options,
        converter_options=converter,
        layout_options=layout,
        settings=settings,
    )


def _run(builder: PipelineBuilder, context: BatchContext) -> PipelineReport:
    """Run with Ctrl-C mapped to cooperative cancellation."""
    cancel = CancellationToken()

    def on_interrupt(signum, frame):
        click.echo("Cancelling after the current item...", err=True)
        cancel.cancel()

    previous = signal.signal(signal.SIGINT, on_interrupt)
    try:
        return builder.run(context, cancel=cancel)
    finally:
        signal.signal(signal.SIGINT, previous)


def _finish(report: PipelineReport, context: BatchContext) -> None:
    quiet = click.get_current_context().find_root().obj.get("quiet", False)
    if not quiet:
        for result in report.results:
            click.echo(str(result))
        if context.warnings:
            click.echo(f"{len(context.warnings)} warning(s):")
            for warning in context.warnings:
                click.echo(f"  - {warning}")

    if report.cancelled:
        click.echo("Cancelled.", err=True)
    elif report.stopping_result is not None:
        click.echo(f"Error: {report.stopping_result.message}", err=True)
    sys.exit(report.exit_code)


# ─────────────────────────────────────────────────────────────────────────────
# Main CLI Group
# ─────────────────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(version=SYNKMD_VERSION, prog_name="synkmd")
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    envvar="SYNKMD_QUIET",
    help="Suppress progress output, show only errors",
)
@click.pass_context
def cli(ctx: click.Context, quiet: bool):
    """synkmd: synchronize Markdown documents with Confluence.

    \b
    Quick start:
      synkmd export docs/                       # Preview storage format locally
      synkmd upload docs/ --space DOCS          # Publish (token from CONFLUENCE_API_TOKEN)
      synkmd download out/ --root-page 12345    # Pull pages back as Markdown

    \b
    Settings are read from options, then CONFLUENCE_* environment
    variables, then the nearest .synkmd.yaml.
    """
    from ._logging import set_quiet_mode

    ctx.ensure_object(dict)
    ctx.obj["quiet"] = quiet
    set_quiet_mode(quiet)


@cli.command()
@click.argument("path", type=click.Path(path_type=Path))
@remote_options
@click.option("--parent-id", default=None, help="Create pages under this page id")
@click.option("--root-page", default=None, help="Create pages under this page title")
@click.option("--flat", is_flag=True, help="Create every page directly under the root parent")
@click.option("--skip-update", is_flag=True, help="Do not update pages whose body is unchanged")
@click.option("--no-write-back", is_flag=True, help="Do not record page ids in source files")
@converter_options
def upload(
    path: Path,
    parent_id: str | None,
    root_page: str | None,
    flat: bool,
    skip_update: bool,
    no_write_back: bool,
    **kwargs: Any,
):
    """Publish the Markdown tree at PATH.

    \b
    Examples:
      synkmd upload docs/ --space DOCS
      synkmd upload docs/ --space DOCS --root-page "Handbook" --skip-update
      synkmd upload docs/ --parent-id 12345 --no-write-back
    """
    from .confluence import ConfluenceClient
    from .diagrams import CommandDiagramRenderer
    from .etl import (
        ConfluenceLoadStep,
        MarkdownIngestionStep,
        StorageFormatTransformStep,
        WriteBackStep,
    )

    try:
        context = _build_context(
            path,
            "upload",
            kwargs,
            project_config=load_project_config(path if path.is_dir() else path.parent),
            parent_id=parent_id,
            root_page=root_page,
            keep_hierarchy=not flat,
            skip_update=skip_update,
            no_write_back=no_write_back,
        )
        client = ConfluenceClient(context.settings)
    except ConfigurationError as e:
        _handle_error(e)

    with client:
        builder = (
            PipelineBuilder()
            .add_extractor(MarkdownIngestionStep())
            .add_transformer(StorageFormatTransformStep(CommandDiagramRenderer()))
            .add_loader(ConfluenceLoadStep(client))
            .add_loader(WriteBackStep())
        )
        report = _run(builder, context)
    _finish(report, context)


@cli.command()
@click.argument("path", type=click.Path(path_type=Path))
@click.option("--base-url", default=None, help="Site URL, used by --webui-links")
@click.option("--space", "space_key", default=None, help="Space key, used by --webui-links")
@click.option("--no-diagrams", is_flag=True, help="Do not run diagram renderers")
@converter_options
def export(path: Path, no_diagrams: bool, **kwargs: Any):
    """Convert PATH and write storage format files to .confluence-export/.

    Nothing is sent to the remote system; use this to preview a run.

    \b
    Examples:
      synkmd export docs/
      synkmd export docs/ --skip-title-heading --no-diagrams
    """
    from .diagrams import CommandDiagramRenderer
    from .etl import LocalExportStep, MarkdownIngestionStep, StorageFormatTransformStep

    try:
        context = _build_context(
            path,
            "local-export",
            kwargs,
            project_config=load_project_config(path if path.is_dir() else path.parent),
        )
    except ConfigurationError as e:
        _handle_error(e)

    renderer = None if no_diagrams else CommandDiagramRenderer()
    builder = (
        PipelineBuilder()
        .add_extractor(MarkdownIngestionStep())
        .add_transformer(StorageFormatTransformStep(renderer))
        .add_loader(LocalExportStep())
    )
    _finish(_run(builder, context), context)


@cli.command()
@click.argument("output", type=click.Path(file_okay=False, path_type=Path))
@remote_options
@click.option("--root-page", required=True, help="Id of the page whose tree is downloaded")
@click.option("--no-attachments", is_flag=True, help="Skip attachment downloads")
def download(output: Path, root_page: str, no_attachments: bool, **kwargs: Any):
    """Download the page tree under --root-page into OUTPUT as Markdown.

    \b
    Examples:
      synkmd download out/ --root-page 12345
      synkmd download out/ --root-page 12345 --no-attachments
    """
    from .confluence import ConfluenceClient
    from .etl import ConfluenceIngestionStep, FileSystemLoadStep, MarkdownTransformStep

    try:
        context = _build_context(
            output,
            "download",
            kwargs,
            project_config=load_project_config(),
            root_page=root_page,
            download_attachments=not no_attachments,
        )
        client = ConfluenceClient(context.settings)
    except ConfigurationError as e:
        _handle_error(e)

    with client:
        builder = (
            PipelineBuilder()
            .add_extractor(ConfluenceIngestionStep(client))
            .add_transformer(MarkdownTransformStep())
            .add_loader(FileSystemLoadStep(client))
        )
        report = _run(builder, context)
    _finish(report, context)


def main():
    """Entry point for synkmd CLI."""
    from ._logging import configure_logging

    configure_logging()
    cli()


if __name__ == "__main__":
    main()
