"""Pipeline orchestration.

A run is an ordered list of steps sharing one BatchContext. Each step
returns a StepResult; the runner continues while `result.can_continue` and
stops at the first Abort or CriticalError. Cancellation is not a status:
it stops the run and is reported through `PipelineReport.cancelled`.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from ..config import DIAGNOSTIC_SAMPLE_LIMIT
from ..models import (
    ConfluenceSettings,
    ConfluenceSpace,
    ConvertedDocument,
    ConverterOptions,
    DocumentNode,
    LayoutOptions,
    MarkdownDocument,
    RemotePage,
    SyncOptions,
)

log = logging.getLogger(__name__)

_BANNER = "=" * 49


class StepStatus(Enum):
    SUCCESS = "Success"
    WARNING = "Warning"
    CRITICAL_ERROR = "CriticalError"
    ABORT = "Abort"


@dataclass(frozen=True)
class StepResult:
    """Outcome of one step execution."""

    status: StepStatus
    step_name: str
    items_processed: int = 0
    items_failed: int = 0
    duration: float = 0.0  # seconds
    message: str = ""
    cause: BaseException | None = None

    @property
    def can_continue(self) -> bool:
        return self.status in (StepStatus.SUCCESS, StepStatus.WARNING)

    @classmethod
    def success(
        cls, step_name: str, items_processed: int, duration: float, message: str | None = None
    ) -> StepResult:
        return cls(
            StepStatus.SUCCESS,
            step_name,
            items_processed,
            0,
            duration,
            message or f"Step '{step_name}' completed successfully ({items_processed} items).",
        )

    @classmethod
    def warning(
        cls,
        step_name: str,
        items_processed: int,
        items_failed: int,
        duration: float,
        message: str,
    ) -> StepResult:
        return cls(StepStatus.WARNING, step_name, items_processed, items_failed, duration, message)

    @classmethod
    def critical_error(
        cls,
        step_name: str,
        message: str,
        cause: BaseException | None = None,
        *,
        items_processed: int = 0,
        items_failed: int = 0,
        duration: float = 0.0,
    ) -> StepResult:
        return cls(
            StepStatus.CRITICAL_ERROR,
            step_name,
            items_processed,
            items_failed,
            duration,
            message,
            cause,
        )

    @classmethod
    def abort(cls, step_name: str, message: str, duration: float = 0.0) -> StepResult:
        return cls(StepStatus.ABORT, step_name, duration=duration, message=message)

    def __str__(self) -> str:
        return (
            f"[{self.status.value}] {self.step_name}: {self.message} "
            f"(Processed: {self.items_processed}, Failed: {self.items_failed}, "
            f"Duration: {self.duration * 1000:.0f}ms)"
        )


# ─────────────────────────────────────────────────────────────────────────────
# Cancellation
# ─────────────────────────────────────────────────────────────────────────────


class CancelledError(Exception):
    """Raised inside a step when cancellation was requested."""


class CancellationToken:
    """Thread-safe cancellation flag observed by steps between items."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancelledError("Cancellation requested")


# ─────────────────────────────────────────────────────────────────────────────
# Shared state
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class BatchContext:
    """State shared by the steps of one pipeline run.

    Steps run one after another; the lock only guards accumulation when a
    step processes its items concurrently.
    """

    options: SyncOptions
    converter_options: ConverterOptions = field(default_factory=ConverterOptions)
    layout_options: LayoutOptions = field(default_factory=LayoutOptions)
    settings: ConfluenceSettings | None = None

    # upload / export
    document_tree: list[DocumentNode] = field(default_factory=list)
    extracted_nodes: list[DocumentNode] = field(default_factory=list)  # pre-order
    transformed_documents: list[ConvertedDocument] = field(default_factory=list)

    # download
    remote_pages: list[RemotePage] = field(default_factory=list)  # depth-first
    markdown_documents: list[MarkdownDocument] = field(default_factory=list)

    # source path (upload) or page id (download) -> page id (upload) or directory (download)
    page_id_cache: dict[str, str] = field(default_factory=dict)
    space: ConfluenceSpace | None = None

    loaded_count: int = 0
    failed_count: int = 0
    warnings: list[str] = field(default_factory=list)
    step_results: list[StepResult] = field(default_factory=list)

    unresolved_link_count: int = 0
    unresolved_link_samples: list[str] = field(default_factory=list)
    url_fallback_count: int = 0
    url_fallback_samples: list[str] = field(default_factory=list)

    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def add_warning(self, message: str) -> None:
        with self._lock:
            self.warnings.append(message)

    def record_unresolved_link(self, source: object, href: str) -> None:
        with self._lock:
            self.unresolved_link_count += 1
            if len(self.unresolved_link_samples) < DIAGNOSTIC_SAMPLE_LIMIT:
                self.unresolved_link_samples.append(
                    f"source='{source or '<unknown>'}', link='{href}'"
                )


class PipelineStep(Protocol):
    """One extract, transform or load step."""

    name: str

    def execute(self, context: BatchContext, cancel: CancellationToken) -> StepResult: ...


# ─────────────────────────────────────────────────────────────────────────────
# Runner
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class PipelineReport:
    """Everything a caller needs after a run."""

    results: list[StepResult] = field(default_factory=list)
    stopping_result: StepResult | None = None
    cancelled: bool = False
    duration: float = 0.0

    @property
    def succeeded(self) -> bool:
        return not self.cancelled and self.stopping_result is None

    @property
    def aborted(self) -> bool:
        return self.stopping_result is not None and self.stopping_result.status is StepStatus.ABORT

    @property
    def failed(self) -> bool:
        return (
            self.stopping_result is not None
            and self.stopping_result.status is StepStatus.CRITICAL_ERROR
        )

    @property
    def items_processed(self) -> int:
        return sum(r.items_processed for r in self.results)

    @property
    def items_failed(self) -> int:
        return sum(r.items_failed for r in self.results)

    @property
    def exit_code(self) -> int:
        if self.cancelled:
            return 130
        if self.failed:
            return 1
        if self.aborted:
            return 2
        return 0


class PipelineRunner:
    """Executes steps strictly in order against one context."""

    def run(
        self,
        steps: Sequence[PipelineStep],
        context: BatchContext,
        cancel: CancellationToken | None = None,
    ) -> PipelineReport:
        cancel = cancel or CancellationToken()
        report = PipelineReport()
        started = time.perf_counter()

        if not steps:
            result = StepResult.abort("Pipeline", "No pipeline steps configured.")
            report.results.append(result)
            report.stopping_result = result
            return report

        log.info(_BANNER)
        log.info("Starting pipeline (%d steps)", len(steps))
        log.info(_BANNER)

        for step in steps:
            if cancel.cancelled:
                report.cancelled = True
                log.warning("Pipeline cancelled before step '%s'", step.name)
                break

            log.info(">>> Executing step: %s", step.name)
            try:
                result = step.execute(context, cancel)
            except CancelledError:
                report.cancelled = True
                log.warning("Pipeline cancelled during step '%s'", step.name)
                break
            except Exception as e:
                log.exception("Unhandled exception in step '%s'", step.name)
                result = StepResult.critical_error(
                    step.name, f"Unhandled exception in step '{step.name}': {e}", e
                )

            context.step_results.append(result)
            report.results.append(result)
            log.info(
                "    Step '%s' -> %s (%d processed, %d failed, %.0fms)",
                result.step_name,
                result.status.value,
                result.items_processed,
                result.items_failed,
                result.duration * 1000,
            )

            if not result.can_continue:
                report.stopping_result = result
                level = logging.WARNING if result.status is StepStatus.ABORT else logging.ERROR
                log.log(level, "Pipeline stopped at step '%s': %s", result.step_name, result.message)
                break

            if result.status is StepStatus.WARNING:
                log.warning("    Warning in step '%s': %s", result.step_name, result.message)
                context.add_warning(f"{result.step_name}: {result.message}")

        report.duration = time.perf_counter() - started
        if report.succeeded:
            self._log_summary(report, context)
        return report

    def _log_summary(self, report: PipelineReport, context: BatchContext) -> None:
        log.info(_BANNER)
        log.info("Pipeline completed")
        log.info("  Total items processed: %d", report.items_processed)
        log.info("  Total items failed:    %d", report.items_failed)
        log.info("  Total duration:        %.0fms", report.duration * 1000)
        log.info(
            "  Link diagnostics: %d unresolved link fallback(s), %d page-id URL fallback(s)",
            context.unresolved_link_count,
            context.url_fallback_count,
        )
        for sample in context.unresolved_link_samples:
            log.warning("    unresolved %s", sample)
        for sample in context.url_fallback_samples:
            log.info("    url fallback %s", sample)
        log.info(_BANNER)


class PipelineBuilder:
    """Collects steps by phase; build() always orders extract, transform, load."""

    def __init__(self) -> None:
        self._extractors: list[PipelineStep] = []
        self._transformers: list[PipelineStep] = []
        self._loaders: list[PipelineStep] = []

    def add_extractor(self, step: PipelineStep) -> PipelineBuilder:
        self._extractors.append(step)
        return self

    def add_transformer(self, step: PipelineStep) -> PipelineBuilder:
        self._transformers.append(step)
        return self

    def add_loader(self, step: PipelineStep) -> PipelineBuilder:
        self._loaders.append(step)
        return self

    def build(self) -> list[PipelineStep]:
        return [*self._extractors, *self._transformers, *self._loaders]

    def run(
        self,
        context: BatchContext,
        runner: PipelineRunner | None = None,
        cancel: CancellationToken | None = None,
    ) -> PipelineReport:
        return (runner or PipelineRunner()).run(self.build(), context, cancel)
