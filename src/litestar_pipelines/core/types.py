"""Core type definitions for litestar-pipelines.

This module defines the enums and type aliases shared by the pipeline engine
and the job scheduler.
"""

from __future__ import annotations

import sys
from enum import Enum
from typing import Any, TypeAlias

# StrEnum backport for Python < 3.11
if sys.version_info >= (3, 11):
    from enum import StrEnum
else:

    class StrEnum(str, Enum):
        """String enumeration compatibility for Python < 3.11."""

        def __str__(self) -> str:
            return str(self.value)


__all__ = [
    "DependencyCondition",
    "ErrorSeverity",
    "ErrorStrategy",
    "ExecutionMode",
    "JobStatus",
    "ParameterType",
    "PipelineStatus",
    "Row",
    "TERMINAL_JOB_STATUSES",
    "TERMINAL_PIPELINE_STATUSES",
    "TriggerType",
]


class ExecutionMode(StrEnum):
    """How a workflow processes its data.

    Informational for the engine, which executes every mode the same way.
    """

    BATCH = "batch"
    STREAMING = "streaming"
    MICRO_BATCH = "micro-batch"
    HYBRID = "hybrid"


class PipelineStatus(StrEnum):
    """Status of a pipeline instance or of one of its stages.

    Attributes:
        PENDING: Stage has not started yet. Instances never hold this state.
        RUNNING: Executing.
        PAUSED: Instance is held at the next stage boundary.
        COMPLETED: Finished successfully.
        FAILED: Terminated due to an unrecovered error.
        CANCELLED: Manually cancelled.
    """

    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_PIPELINE_STATUSES = frozenset(
    {PipelineStatus.COMPLETED, PipelineStatus.FAILED, PipelineStatus.CANCELLED}
)


class ErrorStrategy(StrEnum):
    """Error-handling policy applied when a stage exhausts its retries.

    Only ``FAIL_FAST`` aborts the instance; every other strategy skips the
    failed stage and lets downstream stages continue with zero rows from it.
    """

    FAIL_FAST = "fail-fast"
    SKIP_ERROR = "skip-error"
    RETRY = "retry"
    DEAD_LETTER = "dead-letter"
    CUSTOM = "custom"


class ErrorSeverity(StrEnum):
    """Severity attached to a pipeline error record."""

    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"


class ParameterType(StrEnum):
    """Declared type of a workflow parameter."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    OBJECT = "object"


class TriggerType(StrEnum):
    """What causes a schedule to fire.

    Only ``CRON`` and ``INTERVAL`` fire from the scheduler tick. The others
    are carried as data and fire only through an explicit trigger call.
    """

    CRON = "cron"
    INTERVAL = "interval"
    EVENT = "event"
    FILE_ARRIVAL = "file-arrival"
    DATA_CHANGE = "data-change"
    API = "api"
    DEPENDENCY = "dependency"
    MANUAL = "manual"


class DependencyCondition(StrEnum):
    """Condition a schedule dependency's most recent job must satisfy.

    Attributes:
        COMPLETED: The job finished, whether it completed or failed.
        SUCCEEDED: The job completed successfully.
        FAILED: The job failed.
        ANY: Any job exists.
    """

    COMPLETED = "completed"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ANY = "any"


class JobStatus(StrEnum):
    """Status of a job instance."""

    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"
    WAITING = "waiting"
    TIMEOUT = "timeout"


TERMINAL_JOB_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED, JobStatus.SKIPPED, JobStatus.TIMEOUT}
)

Row: TypeAlias = dict[str, Any]
"""A single data row flowing between stages."""
