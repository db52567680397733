"""Tests for external-command diagram rendering."""

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from synkmd.diagrams import CommandDiagramRenderer, DiagramRenderError, command_for


def completed(args, returncode=0, stdout=b"", stderr=b""):
    return subprocess.CompletedProcess(args, returncode, stdout, stderr)


class TestCommandFor:
    """Tests for command template lookup."""

    def test_default(self):
        assert command_for("mermaid") == "mmdc -i {input} -o {output}"
        assert command_for("unknown") is None

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("SYNKMD_MERMAID_COMMAND", "my-mermaid {input}")

        assert command_for("mermaid") == "my-mermaid {input}"


class TestCommandDiagramRenderer:
    """Tests for CommandDiagramRenderer.render with subprocess mocked out."""

    def test_stdin_and_stdout(self):
        renderer = CommandDiagramRenderer(commands={"plantuml": "plantuml -t{format} -pipe"})

        with patch("synkmd.diagrams.subprocess.run") as run:
            run.return_value = completed([], stdout=b"<svg/>")
            data = renderer.render("plantuml", "@startuml\n@enduml", "svg")

        assert data == b"<svg/>"
        args, kwargs = run.call_args
        assert args[0] == ["plantuml", "-tsvg", "-pipe"]
        assert kwargs["input"] == b"@startuml\n@enduml"
        assert kwargs["capture_output"] is True

    def test_input_and_output_files(self):
        renderer = CommandDiagramRenderer(commands={"mermaid": "mmdc -i {input} -o {output}"})
        seen = {}

        def fake_run(args, **kwargs):
            source = Path(args[2])
            seen["source"] = source.read_text(encoding="utf-8")
            seen["suffix"] = source.suffix
            seen["input"] = kwargs["input"]
            Path(args[4]).write_bytes(b"PNG")
            return completed(args)

        with patch("synkmd.diagrams.subprocess.run", side_effect=fake_run):
            data = renderer.render("mermaid", "graph TD\n A-->B")

        assert data == b"PNG"
        assert seen == {"source": "graph TD\n A-->B", "suffix": ".mmd", "input": None}

    def test_source_placeholder(self):
        renderer = CommandDiagramRenderer(commands={"latex": "tex2svg {source}"})

        with patch("synkmd.diagrams.subprocess.run") as run:
            run.return_value = completed([], stdout=b"<svg/>")
            renderer.render("latex", "x^2 + {y}", "svg")

        assert run.call_args.args[0] == ["tex2svg", "x^2 + {y}"]
        assert run.call_args.kwargs["input"] is None

    def test_nonzero_exit(self):
        renderer = CommandDiagramRenderer(commands={"plantuml": "plantuml -pipe"})

        with patch("synkmd.diagrams.subprocess.run") as run:
            run.return_value = completed([], returncode=2, stderr=b"syntax error")
            with pytest.raises(DiagramRenderError, match="exited with 2: syntax error"):
                renderer.render("plantuml", "bad")

    def test_timeout(self):
        renderer = CommandDiagramRenderer(timeout=5, commands={"plantuml": "plantuml -pipe"})

        with patch("synkmd.diagrams.subprocess.run") as run:
            run.side_effect = subprocess.TimeoutExpired("plantuml", 5)
            with pytest.raises(DiagramRenderError, match="timed out after 5s"):
                renderer.render("plantuml", "@startuml")

    def test_missing_executable(self):
        renderer = CommandDiagramRenderer(commands={"mermaid": "mmdc -i {input} -o {output}"})

        with patch("synkmd.diagrams.subprocess.run") as run:
            run.side_effect = FileNotFoundError("mmdc")
            with pytest.raises(DiagramRenderError, match="could not be started"):
                renderer.render("mermaid", "graph TD")

    def test_missing_output_file(self):
        renderer = CommandDiagramRenderer(commands={"mermaid": "mmdc -i {input} -o {output}"})

        with patch("synkmd.diagrams.subprocess.run") as run:
            run.return_value = completed([])
            with pytest.raises(DiagramRenderError, match="no output file"):
                renderer.render("mermaid", "graph TD")

    def test_empty_output(self):
        renderer = CommandDiagramRenderer(commands={"plantuml": "plantuml -pipe"})

        with patch("synkmd.diagrams.subprocess.run") as run:
            run.return_value = completed([], stdout=b"")
            with pytest.raises(DiagramRenderError, match="empty image"):
                renderer.render("plantuml", "@startuml")

    def test_unknown_kind(self):
        with pytest.raises(DiagramRenderError, match="No renderer configured"):
            CommandDiagramRenderer().render("graphviz", "digraph {}")
