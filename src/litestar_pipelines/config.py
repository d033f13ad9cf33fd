"""Orchestrator configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

    from litestar_pipelines.core.definition import WorkflowDefinition
    from litestar_pipelines.scheduler.models import ScheduleDefinition

__all__ = ["OrchestratorConfig"]


@dataclass
class OrchestratorConfig:
    """Configuration for an Orchestrator.

    Attributes:
        tick_interval: Seconds between scheduler ticks. Defaults to 60.
        max_parallel_stages: Stages of one instance allowed to run at once.
            Defaults to 1, which runs stages strictly one after another.
        default_triggered_by: ``triggered_by`` recorded for runs that do not
            name a trigger source. Defaults to "system".
        log_level: When set, install a loguru sink at this level on
            construction. When None, logging is left to the application.
        pipelines: Workflow definitions, or plain mappings, registered on
            construction.
        schedules: Schedule definitions, or plain mappings, registered on
            construction.
        stage_handlers: Stage handlers keyed by stage type.
    """

    tick_interval: float = 60.0
    max_parallel_stages: int = 1
    default_triggered_by: str = "system"
    log_level: str | None = None
    pipelines: list[WorkflowDefinition | Mapping[str, Any]] = field(default_factory=list)
    schedules: list[ScheduleDefinition | Mapping[str, Any]] = field(default_factory=list)
    stage_handlers: dict[str, Any] = field(default_factory=dict)
