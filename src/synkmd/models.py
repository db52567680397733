"""Pydantic models for documents, conversion options and remote pages."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

SyncMode = Literal["upload", "download", "local-export"]
AttachmentKind = Literal["image", "file", "mermaid", "drawio", "plantuml", "latex"]
Alignment = Literal["left", "center", "right"]


class LayoutOptions(BaseModel):
    """Layout applied to images and tables in the emitted storage format."""

    image_alignment: Alignment | None = None
    image_max_width: int | None = None  # pixels
    table_width: int | None = None  # pixels
    table_display_mode: Literal["responsive", "fixed"] = "responsive"
    alignment: Alignment | None = None  # content alignment for tables

    def merged(self, overrides: dict[str, str]) -> LayoutOptions:
        """Return a copy with per-document overrides (flattened frontmatter keys) applied."""
        known = {k: v for k, v in overrides.items() if k in type(self).model_fields}
        if not known:
            return self
        return type(self).model_validate({**self.model_dump(), **known})


class ConverterOptions(BaseModel):
    """Switches controlling how Markdown is transpiled."""

    heading_anchors: bool = True
    skip_title_heading: bool = False
    title_anchor: bool = True  # anchor for a suppressed title heading
    force_valid_language: bool = False
    code_line_numbers: bool = False
    render_mermaid: bool = True
    render_drawio: bool = True
    render_plantuml: bool = True
    render_latex: bool = True
    diagram_output_format: Literal["png", "svg"] = "png"
    include_diagram_source: bool = False
    prefer_raster: bool = True
    use_panel: bool = False
    webui_links: bool = False
    link_strategy: Literal["space-title", "page-id"] = "space-title"
    unresolved_link_strategy: Literal["href", "text", "title"] = "href"
    title_prefix: str | None = None
    generated_by: str | None = None


class DocumentMetadata(BaseModel):
    """Recognized frontmatter keys. Absent keys take these defaults."""

    model_config = ConfigDict(frozen=True)

    title: str | None = None
    page_id: str | None = None
    space_key: str | None = None
    tags: list[str] = Field(default_factory=list)  # become page labels
    synchronized: bool = True
    generated_by: str | None = None
    layout: dict[str, str] = Field(default_factory=dict)  # flattened as key_subkey


class DocumentNode(BaseModel):
    """One discovered document. Children are ordered; parents come first."""

    absolute_path: Path
    relative_path: str  # POSIX, relative to the sync root
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    raw_content: str = ""  # frontmatter stripped
    children: list[DocumentNode] = Field(default_factory=list)
    parent_source_path: Path | None = None  # stamped during flattening


class AttachmentInfo(BaseModel):
    """Side-channel artifact discovered during transpilation."""

    file_name: str
    source_kind: AttachmentKind
    source: str  # diagram/formula text, or the image path as written
    mime_type: str | None = None
    local_path: Path | None = None  # set for images that exist on disk
    data: bytes | None = None  # rendered diagram/formula image


class ConvertedDocument(BaseModel):
    """Result of transforming one document, consumed once by a load step."""

    title: str
    body: str  # storage format
    metadata: DocumentMetadata
    source_path: Path
    relative_path: str = ""
    parent_source_path: Path | None = None
    attachments: list[AttachmentInfo] = Field(default_factory=list)


class ConfluenceSettings(BaseModel):
    """Connection settings for the remote API."""

    base_url: str = ""
    user_email: str | None = None
    api_token: str | None = None
    space_key: str | None = None
    api_path: str = "/wiki"
    api_version: str = "v2"


class SyncOptions(BaseModel):
    """Options for one pipeline run."""

    mode: SyncMode = "upload"
    path: Path = Field(default_factory=Path.cwd)
    space_key: str | None = None
    parent_id: str | None = None
    root_page: str | None = None  # root page title (upload) or id (download)
    keep_hierarchy: bool = True
    skip_update: bool = False
    no_write_back: bool = False
    download_attachments: bool = True


# ─────────────────────────────────────────────────────────────────────────────
# Remote API objects
# ─────────────────────────────────────────────────────────────────────────────


class ConfluenceSpace(BaseModel):
    id: str
    key: str
    name: str = ""
    homepage_id: str | None = None


class ConfluencePage(BaseModel):
    id: str
    title: str
    space_id: str | None = None
    parent_id: str | None = None
    body: str | None = None  # storage format
    version: int = 1


class ConfluenceAttachment(BaseModel):
    id: str
    title: str
    media_type: str = "application/octet-stream"
    file_size: int = 0
    download_link: str | None = None


class RemotePage(BaseModel):
    """A fetched page with its attachments and position in the page tree."""

    page: ConfluencePage
    attachments: list[ConfluenceAttachment] = Field(default_factory=list)
    parent_page_id: str | None = None
    depth: int = 0
    has_children: bool = False


class MarkdownDocument(BaseModel):
    """A downloaded page converted back to Markdown."""

    title: str
    content: str  # Markdown including frontmatter
    page_id: str
    parent_page_id: str | None = None
    has_children: bool = False
    source_path: str | None = None  # relative path recorded when the page was uploaded
    attachments: list[ConfluenceAttachment] = Field(default_factory=list)
