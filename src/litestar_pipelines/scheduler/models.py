"""Schedule definitions and job instances."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from litestar_pipelines.core.definition import _pick
from litestar_pipelines.core.models import utcnow
from litestar_pipelines.core.types import TERMINAL_JOB_STATUSES, DependencyCondition, JobStatus, TriggerType

__all__ = ["JobInstance", "ScheduleDefinition", "ScheduleDependency", "ScheduleTrigger"]


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


@dataclass
class ScheduleTrigger:
    """When a schedule fires.

    Attributes:
        type: Trigger type. Only ``cron`` and ``interval`` fire on a tick.
        cron_expression: Five-field cron expression for ``cron`` triggers.
        interval_ms: Minimum time between firings for ``interval`` triggers.
        event_type: Event name for event-style triggers, carried as data.
        event_filter: Event filter for event-style triggers, carried as data.
        file_path: Watched path for ``file-arrival`` triggers, carried as data.
        file_pattern: Watched pattern for ``file-arrival`` triggers, carried as data.
    """

    type: TriggerType = TriggerType.MANUAL
    cron_expression: str | None = None
    interval_ms: float | None = None
    event_type: str | None = None
    event_filter: dict[str, Any] | None = None
    file_path: str | None = None
    file_pattern: str | None = None

    @classmethod
    def cron(cls, expression: str) -> ScheduleTrigger:
        return cls(type=TriggerType.CRON, cron_expression=expression)

    @classmethod
    def interval(cls, interval_ms: float) -> ScheduleTrigger:
        return cls(type=TriggerType.INTERVAL, interval_ms=interval_ms)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ScheduleTrigger:
        return cls(
            type=TriggerType(data.get("type", TriggerType.MANUAL)),
            cron_expression=_pick(data, "cron_expression", "cronExpression", "cron"),
            interval_ms=_pick(data, "interval_ms", "intervalMs"),
            event_type=_pick(data, "event_type", "eventType"),
            event_filter=_pick(data, "event_filter", "eventFilter"),
            file_path=_pick(data, "file_path", "filePath"),
            file_pattern=_pick(data, "file_pattern", "filePattern"),
        )


@dataclass
class ScheduleDependency:
    """Gate on the most recent job of another schedule.

    Attributes:
        schedule_id: The schedule depended upon.
        condition: What its most recent job must satisfy.
        timeout_ms: Informational.
    """

    schedule_id: str
    condition: DependencyCondition = DependencyCondition.SUCCEEDED
    timeout_ms: float | None = None

    def is_satisfied_by(self, job: JobInstance | None) -> bool:
        """Check the condition against the dependency's most recent job.

        ``completed`` accepts a job that completed or failed, ``succeeded``
        only a completed one, ``failed`` only a failed one, and ``any``
        accepts whatever exists. No job never satisfies.
        """
        if job is None:
            return False
        if self.condition == DependencyCondition.COMPLETED:
            return job.status in (JobStatus.COMPLETED, JobStatus.FAILED)
        if self.condition == DependencyCondition.SUCCEEDED:
            return job.status == JobStatus.COMPLETED
        if self.condition == DependencyCondition.FAILED:
            return job.status == JobStatus.FAILED
        return True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ScheduleDependency:
        return cls(
            schedule_id=_pick(data, "schedule_id", "scheduleId"),
            condition=DependencyCondition(data.get("condition", DependencyCondition.SUCCEEDED)),
            timeout_ms=_pick(data, "timeout_ms", "timeoutMs"),
        )


@dataclass
class ScheduleDefinition:
    """A workflow run plan: what to run, when, and under which gates.

    Attributes:
        id: Unique identifier.
        name: Human-readable name.
        workflow_id: The workflow the job executor should run.
        trigger: When the schedule fires.
        parameters: Parameter overrides passed to each job.
        dependencies: Gates on other schedules' most recent jobs.
        timeout_ms: Informational; executors enforce it if they wish.
        max_retries: Retries after the first attempt.
        retry_delay_ms: Base of the exponential retry backoff.
        priority: Higher priorities are evaluated first on each tick.
        concurrent: Whether a new job may start while one is running.
        max_concurrent_runs: Optional cap on running jobs.
        enabled: Disabled schedules never fire on a tick.
        start_date: Start of the validity window.
        end_date: End of the validity window.
        timezone: IANA timezone cron expressions are evaluated in.
        description: Human-readable description.
        tags: Free-form labels.
        metadata: Free-form metadata.

    Example:
        >>> nightly = ScheduleDefinition(
        ...     id="nightly-orders",
        ...     name="Nightly orders",
        ...     workflow_id="orders",
        ...     trigger=ScheduleTrigger.cron("0 2 * * *"),
        ... )
    """

    id: str
    name: str
    workflow_id: str
    trigger: ScheduleTrigger = field(default_factory=ScheduleTrigger)
    parameters: dict[str, Any] = field(default_factory=dict)
    dependencies: list[ScheduleDependency] = field(default_factory=list)
    timeout_ms: float | None = None
    max_retries: int = 0
    retry_delay_ms: float = 5000
    priority: int = 0
    concurrent: bool = False
    max_concurrent_runs: int | None = None
    enabled: bool = True
    start_date: datetime | None = None
    end_date: datetime | None = None
    timezone: str | None = None
    description: str = ""
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def is_active_at(self, now: datetime) -> bool:
        """Whether ``now`` lies inside the validity window.

        Naive datetimes are taken to be UTC.
        """
        now = _as_utc(now)
        if self.start_date is not None and _as_utc(self.start_date) > now:
            return False
        return not (self.end_date is not None and _as_utc(self.end_date) < now)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ScheduleDefinition:
        trigger = data.get("trigger") or {}
        return cls(
            id=data.get("id", ""),
            name=data.get("name") or data.get("id", ""),
            workflow_id=_pick(data, "workflow_id", "workflowId", "pipeline_id", "pipelineId", default=""),
            trigger=trigger if isinstance(trigger, ScheduleTrigger) else ScheduleTrigger.from_dict(trigger),
            parameters=dict(data.get("parameters") or {}),
            dependencies=[
                dep if isinstance(dep, ScheduleDependency) else ScheduleDependency.from_dict(dep)
                for dep in data.get("dependencies") or []
            ],
            timeout_ms=_pick(data, "timeout_ms", "timeout"),
            max_retries=int(_pick(data, "max_retries", "maxRetries", default=0)),
            retry_delay_ms=_pick(data, "retry_delay_ms", "retryDelayMs", default=5000),
            priority=int(data.get("priority", 0)),
            concurrent=bool(data.get("concurrent", False)),
            max_concurrent_runs=_pick(data, "max_concurrent_runs", "maxConcurrentRuns"),
            enabled=bool(data.get("enabled", True)),
            start_date=_parse_datetime(_pick(data, "start_date", "startDate")),
            end_date=_parse_datetime(_pick(data, "end_date", "endDate")),
            timezone=data.get("timezone"),
            description=data.get("description", ""),
            tags=list(data.get("tags") or []),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class JobInstance:
    """One firing of a schedule.

    Retries happen inside the same job: ``attempt`` grows, the record stays.

    Attributes:
        instance_id: Unique identifier.
        schedule_id: The schedule that fired.
        status: Current status, ``running`` from creation.
        scheduled_at: When the job was created.
        started_at: When the first attempt started.
        completed_at: When the job reached a terminal status.
        triggered_by: ``scheduler`` for tick firings, the caller otherwise.
        attempt: Current attempt, 1-indexed, at most ``max_retries + 1``.
        parameters: Parameters the job runs with.
        result: Executor result on success.
        error: Message of the last failed attempt.
        pipeline_instance_id: Correlated pipeline instance, if any.
        metadata: Free-form metadata.
    """

    instance_id: str
    schedule_id: str
    status: JobStatus = JobStatus.RUNNING
    scheduled_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    triggered_by: str = "system"
    attempt: int = 1
    parameters: dict[str, Any] = field(default_factory=dict)
    result: Any = None
    error: str | None = None
    pipeline_instance_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES
