"""Diagram and formula rendering.

The transpiler only collects diagram sources. Turning them into image bytes
is delegated to a DiagramRenderer, by default one external command per
kind (mermaid-cli, plantuml, draw.io desktop, MathJax tex2svg).
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import tempfile
from pathlib import Path
from typing import Protocol

from .config import DIAGRAM_COMMANDS, DIAGRAM_TIMEOUT

log = logging.getLogger(__name__)

# Source file suffix handed to commands that read an input file
_INPUT_SUFFIXES = {
    "mermaid": ".mmd",
    "plantuml": ".puml",
    "drawio": ".drawio",
    "latex": ".tex",
}


class DiagramRenderError(Exception):
    """A diagram could not be rendered."""


class DiagramRenderer(Protocol):
    """Turns diagram source text into image bytes."""

    def render(self, kind: str, source: str, fmt: str = "png") -> bytes: ...


def command_for(kind: str) -> str | None:
    """Command template for a diagram kind, honoring SYNKMD_<KIND>_COMMAND."""
    override = os.environ.get(f"SYNKMD_{kind.upper()}_COMMAND")
    if override:
        return override
    return DIAGRAM_COMMANDS.get(kind)


class CommandDiagramRenderer:
    """Renders diagrams by running an external command per kind.

    Placeholders in the command template:
        {input}   temp file holding the source
        {output}  temp file the command writes the image to
        {source}  the source text itself
        {format}  png or svg

    Without {output} the image is read from stdout. Without {input} or
    {source} the source is written to stdin.
    """

    def __init__(self, timeout: int = DIAGRAM_TIMEOUT, commands: dict[str, str] | None = None):
        self.timeout = timeout
        self.commands = commands or {}

    def render(self, kind: str, source: str, fmt: str = "png") -> bytes:
        template = self.commands.get(kind) or command_for(kind)
        if not template:
            raise DiagramRenderError(f"No renderer configured for {kind} diagrams")

        with tempfile.TemporaryDirectory(prefix=f"synkmd-{kind}-") as tmp:
            input_path = Path(tmp) / f"diagram{_INPUT_SUFFIXES.get(kind, '.txt')}"
            output_path = Path(tmp) / f"diagram.{fmt}"
            input_path.write_text(source, encoding="utf-8")

            uses_stdin = "{input}" not in template and "{source}" not in template
            args = [
                part.format(
                    input=input_path,
                    output=output_path,
                    source=source,
                    format=fmt,
                )
                for part in shlex.split(template)
            ]
            log.debug("Rendering %s diagram: %s", kind, args[0])

            try:
                result = subprocess.run(
                    args,
                    input=source.encode("utf-8") if uses_stdin else None,
                    capture_output=True,
                    timeout=self.timeout,
                )
            except subprocess.TimeoutExpired as e:
                raise DiagramRenderError(f"{kind} renderer timed out after {self.timeout}s") from e
            except OSError as e:
                raise DiagramRenderError(f"{kind} renderer could not be started: {e}") from e

            if result.returncode != 0:
                stderr = result.stderr.decode("utf-8", errors="replace").strip()
                raise DiagramRenderError(
                    f"{kind} renderer exited with {result.returncode}: {stderr[:500]}"
                )

            if "{output}" in template:
                if not output_path.exists():
                    raise DiagramRenderError(f"{kind} renderer produced no output file")
                data = output_path.read_bytes()
            else:
                data = result.stdout

        if not data:
            raise DiagramRenderError(f"{kind} renderer produced an empty image")
        return data
