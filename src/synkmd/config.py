"""Configuration management for synkmd.

Connection settings come from explicit arguments, then environment variables,
then a `.synkmd.yaml` file discovered by walking up from the working
directory. Magic numbers used across the codebase are documented here.
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .models import ConfluenceSettings, ConverterOptions, LayoutOptions

log = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""

    pass


# =============================================================================
# Project config discovery
# =============================================================================

CONFIG_FILENAME = ".synkmd.yaml"

# Environment variables, checked before the config file
ENV_BASE_URL = "CONFLUENCE_BASE_URL"
ENV_USER_EMAIL = "CONFLUENCE_USER_EMAIL"
ENV_API_TOKEN = "CONFLUENCE_API_TOKEN"
ENV_SPACE_KEY = "CONFLUENCE_SPACE_KEY"
ENV_API_PATH = "CONFLUENCE_API_PATH"


def _discover_project_config(start: Path | None = None) -> Path | None:
    """Walk up from start (default cwd) looking for .synkmd.yaml."""
    current = (start or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        candidate = directory / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def load_project_config(start: Path | None = None) -> dict[str, Any]:
    """Load the nearest .synkmd.yaml as a mapping.

    Returns:
        Parsed config, or an empty dict when no file is found.

    Raises:
        ConfigurationError: If the file exists but is not a YAML mapping.
    """
    config_path = _discover_project_config(start)
    if config_path is None:
        return {}

    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping")

    log.debug("Loaded project config from %s", config_path)
    return data


def load_settings(
    *,
    base_url: str | None = None,
    user_email: str | None = None,
    api_token: str | None = None,
    space_key: str | None = None,
    project_config: dict[str, Any] | None = None,
) -> ConfluenceSettings:
    """Build connection settings.

    Precedence per field: explicit argument, environment variable, then
    the project config file. The API token is never read from the file.
    """
    file_config = project_config if project_config is not None else load_project_config()

    def pick(explicit: str | None, env_name: str, file_key: str | None) -> str | None:
        if explicit:
            return explicit
        env_value = os.environ.get(env_name)
        if env_value:
            return env_value
        if file_key is not None:
            value = file_config.get(file_key)
            return str(value) if value is not None else None
        return None

    values: dict[str, Any] = {
        "base_url": pick(base_url, ENV_BASE_URL, "base_url") or "",
        "user_email": pick(user_email, ENV_USER_EMAIL, "user_email"),
        "api_token": pick(api_token, ENV_API_TOKEN, None),
        "space_key": pick(space_key, ENV_SPACE_KEY, "space_key"),
    }
    api_path = pick(None, ENV_API_PATH, "api_path")
    if api_path:
        values["api_path"] = api_path

    return ConfluenceSettings(**values)


def require_remote_settings(settings: ConfluenceSettings) -> ConfluenceSettings:
    """Validate that settings are complete enough to talk to the remote API.

    Raises:
        ConfigurationError: Listing every missing setting.
    """
    missing = []
    if not settings.base_url:
        missing.append(f"base URL ({ENV_BASE_URL})")
    if not settings.user_email:
        missing.append(f"user email ({ENV_USER_EMAIL})")
    if not settings.api_token:
        missing.append(f"API token ({ENV_API_TOKEN})")
    if not settings.space_key:
        missing.append(f"space key ({ENV_SPACE_KEY} or --space)")

    if missing:
        raise ConfigurationError(
            "Missing Confluence settings:\n" + "\n".join(f"  - {m}" for m in missing)
        )

    if not settings.base_url.startswith(("http://", "https://")):
        raise ConfigurationError(f"Base URL must be absolute: {settings.base_url}")

    return settings


def load_converter_options(
    project_config: dict[str, Any], overrides: dict[str, Any] | None = None
) -> ConverterOptions:
    """Merge the `converter` section of the project config with CLI overrides."""
    return _load_section(ConverterOptions, project_config.get("converter"), overrides)


def load_layout_options(
    project_config: dict[str, Any], overrides: dict[str, Any] | None = None
) -> LayoutOptions:
    """Merge the `layout` section of the project config with CLI overrides."""
    return _load_section(LayoutOptions, project_config.get("layout"), overrides)


def _load_section(model, section: Any, overrides: dict[str, Any] | None):
    data: dict[str, Any] = dict(section) if isinstance(section, dict) else {}
    data.update({k: v for k, v in (overrides or {}).items() if v is not None})
    try:
        return model.model_validate(data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        raise ConfigurationError(
            f"Invalid {model.__name__} settings:\n" + "\n".join(errors)
        ) from e


# =============================================================================
# Hierarchy discovery
# =============================================================================

# Directory names never scanned for documents
IGNORED_DIRECTORIES = frozenset(
    {"img", "images", "assets", ".git", "node_modules", "__pycache__", ".venv", "venv"}
)

# Per-directory ignore file (glob patterns, '#' comments)
IGNORE_FILENAME = ".mdignore"

# File names (case-insensitive) that stand for their directory
INDEX_FILENAMES = ("index.md", "readme.md")


# =============================================================================
# Transform / load
# =============================================================================

# Title of the hidden expand macro recording the source file of a page
METADATA_MACRO_TITLE = "__synkmd_metadata__"

# Macro id of the info macro carrying the generated-by notice
GENERATED_BY_MACRO_ID = "synkmd-generated-by"

# Local export output directory and file suffix
EXPORT_DIRNAME = ".confluence-export"
EXPORT_SUFFIX = ".csf.html"

# Content property holding the source path of an uploaded page
SOURCE_PATH_PROPERTY = "synkmd-source-path"

# Number of unresolved-link / URL-fallback samples kept for the run summary
DIAGNOSTIC_SAMPLE_LIMIT = 10


# =============================================================================
# Remote API
# =============================================================================

# Seconds before an HTTP request is abandoned
REQUEST_TIMEOUT = 30

# Page size for paginated endpoints
PAGE_LIMIT = 100


# =============================================================================
# Diagram rendering
# =============================================================================

# External commands per diagram kind. {input}/{output} name temp files,
# {source} is the diagram text and {format} is png or svg. Without {output}
# the image is read from stdout; without {input} or {source} the text goes to stdin.
# Override with SYNKMD_<KIND>_COMMAND (e.g. SYNKMD_MERMAID_COMMAND).
DIAGRAM_COMMANDS = {
    "mermaid": "mmdc -i {input} -o {output}",
    "plantuml": "plantuml -t{format} -pipe",
    "drawio": "drawio --export --format {format} --output {output} {input}",
    "latex": "tex2svg {source}",
}

# Formula attachments are SVG; the default latex command cannot write PNG
FORMULA_OUTPUT_FORMAT = "svg"

# Seconds before a diagram command is killed
DIAGRAM_TIMEOUT = 60
