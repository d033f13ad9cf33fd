"""Litestar Pipelines - DAG pipeline orchestration for Litestar.

This package executes declarative multi-stage pipelines in dependency order
and schedules them with cron, interval and dependency-gated triggers.

Key Features:
    - DAG validation with cycle detection
    - Deterministic topological stage execution, optionally concurrent
    - Per-stage retry with exponential backoff and error-handling policies
    - Cooperative pause, resume and cancel
    - Cron and interval schedules gated on concurrency and other schedules
    - Litestar plugin with dependency injection

Example:
    >>> from litestar_pipelines import Orchestrator, WorkflowDefinition
    >>>
    >>> orchestrator = Orchestrator()
    >>> orchestrator.registry.register(
    ...     WorkflowDefinition.from_dict(
    ...         {"id": "p1", "name": "P1", "stages": [{"id": "a"}, {"id": "b", "deps": ["a"]}]}
    ...     )
    ... )
    >>> instance = await orchestrator.execute("p1", triggered_by="test")
    >>> instance.execution_order
    ['a', 'b']
"""

from __future__ import annotations

from litestar_pipelines.__metadata__ import __project__, __version__
from litestar_pipelines.config import OrchestratorConfig
from litestar_pipelines.core import (
    PipelineInstance,
    PipelineStatus,
    StageDefinition,
    StageResult,
    WorkflowDefinition,
)
from litestar_pipelines.engine import LocalPipelineEngine, PipelineRegistry
from litestar_pipelines.exceptions import (
    CronParseError,
    InstanceNotFoundError,
    InvalidTimezoneError,
    JobExecutionError,
    MissingParameterError,
    NoMatchError,
    NotFoundError,
    PipelineExecutionError,
    PipelinesError,
    ScheduleNotFoundError,
    StageExecutionError,
    ValidationError,
    WorkflowNotFoundError,
)
from litestar_pipelines.log import configure_logging
from litestar_pipelines.orchestrator import Orchestrator
from litestar_pipelines.plugin import PipelinesPlugin, PipelinesPluginConfig
from litestar_pipelines.scheduler import JobInstance, JobScheduler, ScheduleDefinition, ScheduleTrigger

__all__ = (
    "CronParseError",
    "InstanceNotFoundError",
    "InvalidTimezoneError",
    "JobExecutionError",
    "JobInstance",
    "JobScheduler",
    "LocalPipelineEngine",
    "MissingParameterError",
    "NoMatchError",
    "NotFoundError",
    "Orchestrator",
    "OrchestratorConfig",
    "PipelineExecutionError",
    "PipelineInstance",
    "PipelineRegistry",
    "PipelineStatus",
    "PipelinesError",
    "PipelinesPlugin",
    "PipelinesPluginConfig",
    "ScheduleDefinition",
    "ScheduleNotFoundError",
    "ScheduleTrigger",
    "StageDefinition",
    "StageExecutionError",
    "StageResult",
    "ValidationError",
    "WorkflowDefinition",
    "WorkflowNotFoundError",
    "__project__",
    "__version__",
    "configure_logging",
)
