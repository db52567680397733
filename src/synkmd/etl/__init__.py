"""Extract, transform and load steps plus the pipeline that runs them."""

from .core import (
    BatchContext,
    CancellationToken,
    CancelledError,
    PipelineBuilder,
    PipelineReport,
    PipelineRunner,
    PipelineStep,
    StepResult,
    StepStatus,
)
from .extract import ConfluenceIngestionStep, MarkdownIngestionStep
from .load import (
    ConfluenceLoadStep,
    DuplicateTitleError,
    FileSystemLoadStep,
    LocalExportStep,
    WriteBackStep,
)
from .transform import MarkdownTransformStep, StorageFormatTransformStep

__all__ = [
    "BatchContext",
    "CancellationToken",
    "CancelledError",
    "ConfluenceIngestionStep",
    "ConfluenceLoadStep",
    "DuplicateTitleError",
    "FileSystemLoadStep",
    "LocalExportStep",
    "MarkdownIngestionStep",
    "MarkdownTransformStep",
    "PipelineBuilder",
    "PipelineReport",
    "PipelineRunner",
    "PipelineStep",
    "StepResult",
    "StepStatus",
    "StorageFormatTransformStep",
    "WriteBackStep",
]
