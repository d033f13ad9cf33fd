"""Core domain module for litestar-pipelines.

This module exports the building blocks of pipeline definitions and runtime
records: types, definitions, models, execution context, protocols and
lifecycle hooks.
"""

from __future__ import annotations

from litestar_pipelines.core.context import StageExecutionContext
from litestar_pipelines.core.definition import (
    NO_DEFAULT,
    ErrorHandling,
    ParameterDefinition,
    RetryPolicy,
    StageDefinition,
    WorkflowDefinition,
    backoff_delay,
)
from litestar_pipelines.core.events import LifecycleEvent, LifecycleHooks
from litestar_pipelines.core.models import (
    PipelineCheckpoint,
    PipelineError,
    PipelineInstance,
    PipelineMetrics,
    StageResult,
    StageStatus,
)
from litestar_pipelines.core.protocols import JobExecutor, StageHandler
from litestar_pipelines.core.types import (
    DependencyCondition,
    ErrorSeverity,
    ErrorStrategy,
    ExecutionMode,
    JobStatus,
    ParameterType,
    PipelineStatus,
    Row,
    TriggerType,
)

__all__ = [
    "NO_DEFAULT",
    "DependencyCondition",
    "ErrorHandling",
    "ErrorSeverity",
    "ErrorStrategy",
    "ExecutionMode",
    "JobExecutor",
    "JobStatus",
    "LifecycleEvent",
    "LifecycleHooks",
    "ParameterDefinition",
    "ParameterType",
    "PipelineCheckpoint",
    "PipelineError",
    "PipelineInstance",
    "PipelineMetrics",
    "PipelineStatus",
    "RetryPolicy",
    "Row",
    "StageDefinition",
    "StageExecutionContext",
    "StageHandler",
    "StageResult",
    "StageStatus",
    "TriggerType",
    "WorkflowDefinition",
    "backoff_delay",
]
