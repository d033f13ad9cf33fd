"""Runtime data models for pipeline execution.

These dataclasses carry the state of one pipeline instance: its per-stage
status records, aggregate metrics and error list.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from litestar_pipelines.core.types import (
    TERMINAL_PIPELINE_STATUSES,
    ErrorSeverity,
    PipelineStatus,
    Row,
)

__all__ = [
    "PipelineCheckpoint",
    "PipelineError",
    "PipelineInstance",
    "PipelineMetrics",
    "StageResult",
    "StageStatus",
    "utcnow",
]


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def elapsed_ms(start: datetime, end: datetime) -> float:
    """Milliseconds between two datetimes."""
    return (end - start).total_seconds() * 1000


@dataclass
class PipelineError:
    """A single error recorded against a stage or an instance.

    Attributes:
        error_code: Machine-readable code, e.g. ``STAGE_FAILED``.
        message: Human-readable message.
        severity: How serious the error is.
        timestamp: When it was recorded.
        stage_id: The stage it belongs to, if any.
        row_number: Offending row, for row-level errors reported by handlers.
        column: Offending column, for row-level errors reported by handlers.
        data: Extra context.
    """

    error_code: str
    message: str
    severity: ErrorSeverity = ErrorSeverity.ERROR
    timestamp: datetime = field(default_factory=utcnow)
    stage_id: str | None = None
    row_number: int | None = None
    column: str | None = None
    data: dict[str, Any] | None = None


@dataclass
class StageResult:
    """What a stage handler returns.

    Attributes:
        rows: Output rows handed to dependent stages.
        rows_read: Rows consumed.
        rows_written: Rows produced or persisted.
        rows_rejected: Rows refused.
        rows_filtered: Rows dropped on purpose.
        errors: Row-level or stage-level errors the handler chose to report.
        metadata: Free-form handler output.
    """

    rows: list[Row] = field(default_factory=list)
    rows_read: int = 0
    rows_written: int = 0
    rows_rejected: int = 0
    rows_filtered: int = 0
    errors: list[PipelineError] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def passthrough(cls, rows: list[Row]) -> StageResult:
        """Result that forwards ``rows`` unchanged."""
        return cls(rows=list(rows), rows_read=len(rows), rows_written=len(rows))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StageResult:
        """Build a result from a mapping with snake_case or camelCase keys."""

        def pick(*keys: str, default: Any = 0) -> Any:
            return next((data[key] for key in keys if key in data), default)

        return cls(
            rows=list(pick("rows", default=None) or []),
            rows_read=pick("rows_read", "rowsRead"),
            rows_written=pick("rows_written", "rowsWritten"),
            rows_rejected=pick("rows_rejected", "rowsRejected"),
            rows_filtered=pick("rows_filtered", "rowsFiltered"),
            errors=list(pick("errors", default=None) or []),
            metadata=dict(pick("metadata", default=None) or {}),
        )


@dataclass
class StageStatus:
    """Runtime record of one stage within one instance.

    Attributes:
        stage_id: The stage this record tracks.
        status: ``pending`` until the stage starts.
        started_at: When the stage started.
        completed_at: When the stage finished.
        rows_read: Rows consumed.
        rows_written: Rows produced.
        rows_rejected: Rows refused.
        rows_filtered: Rows dropped.
        errors: Errors recorded for the stage.
        throughput_rows_per_sec: ``rows_read / latency_ms * 1000``.
        latency_ms: Wall time of the stage.
        attempts: Handler invocations made.
    """

    stage_id: str
    status: PipelineStatus = PipelineStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    rows_read: int = 0
    rows_written: int = 0
    rows_rejected: int = 0
    rows_filtered: int = 0
    errors: list[PipelineError] = field(default_factory=list)
    throughput_rows_per_sec: float = 0.0
    latency_ms: float = 0.0
    attempts: int = 0

    def mark_running(self) -> None:
        self.status = PipelineStatus.RUNNING
        self.started_at = utcnow()

    def finish(self, status: PipelineStatus) -> None:
        """Move to a terminal status and compute latency and throughput."""
        self.status = status
        self.completed_at = utcnow()
        if self.started_at is None:
            self.started_at = self.completed_at
        self.latency_ms = elapsed_ms(self.started_at, self.completed_at)
        if self.latency_ms > 0 and self.rows_read > 0:
            self.throughput_rows_per_sec = self.rows_read / self.latency_ms * 1000

    def record(self, result: StageResult) -> None:
        """Copy counters and errors from a handler result."""
        self.rows_read = result.rows_read
        self.rows_written = result.rows_written
        self.rows_rejected = result.rows_rejected
        self.rows_filtered = result.rows_filtered
        self.errors = list(result.errors)


@dataclass
class PipelineMetrics:
    """Aggregate counters of an instance, summed over its stages."""

    total_rows_read: int = 0
    total_rows_written: int = 0
    total_rows_rejected: int = 0
    total_rows_filtered: int = 0
    total_stages: int = 0
    completed_stages: int = 0
    failed_stages: int = 0
    throughput_rows_per_sec: float = 0.0
    duration_ms: float = 0.0
    peak_memory_bytes: int = 0
    bytes_read: int = 0
    bytes_written: int = 0

    @property
    def total_rows_processed(self) -> int:
        return self.total_rows_read


@dataclass
class PipelineCheckpoint:
    """Recovery marker handed to stage handlers.

    The engine passes checkpoints through untouched and never persists them.
    """

    instance_id: str
    stage_id: str
    offset: int = 0
    timestamp: datetime = field(default_factory=utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class PipelineInstance:
    """One execution of a workflow definition.

    The engine is the only writer of an instance; once the status is terminal
    the instance no longer changes.

    Attributes:
        instance_id: Globally unique identifier.
        workflow_id: The workflow definition being executed.
        status: Current status, ``running`` from creation.
        started_at: When the instance was created.
        completed_at: When it reached a terminal state.
        parameters: Resolved parameter values.
        stage_statuses: One record per stage of the workflow.
        metrics: Aggregate metrics.
        errors: Instance-level errors, in the order they occurred.
        triggered_by: Who or what started the instance.
        checkpoint: Optional checkpoint passed to stage handlers.
        execution_order: Stage ids in the order they started.
    """

    instance_id: str
    workflow_id: str
    status: PipelineStatus = PipelineStatus.RUNNING
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    stage_statuses: dict[str, StageStatus] = field(default_factory=dict)
    metrics: PipelineMetrics = field(default_factory=PipelineMetrics)
    errors: list[PipelineError] = field(default_factory=list)
    triggered_by: str = "system"
    checkpoint: PipelineCheckpoint | None = None
    execution_order: list[str] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PIPELINE_STATUSES

    @property
    def duration_ms(self) -> float:
        end = self.completed_at or utcnow()
        return elapsed_ms(self.started_at, end)

    def recalculate_metrics(self) -> None:
        """Sum per-stage counters into :attr:`metrics`."""
        metrics = self.metrics
        statuses = list(self.stage_statuses.values())
        metrics.total_stages = len(statuses)
        metrics.total_rows_read = sum(s.rows_read for s in statuses)
        metrics.total_rows_written = sum(s.rows_written for s in statuses)
        metrics.total_rows_rejected = sum(s.rows_rejected for s in statuses)
        metrics.total_rows_filtered = sum(s.rows_filtered for s in statuses)
        metrics.completed_stages = sum(1 for s in statuses if s.status == PipelineStatus.COMPLETED)
        metrics.failed_stages = sum(1 for s in statuses if s.status == PipelineStatus.FAILED)
        metrics.duration_ms = self.duration_ms
        if metrics.duration_ms > 0 and metrics.total_rows_read > 0:
            metrics.throughput_rows_per_sec = metrics.total_rows_read / metrics.duration_ms * 1000
