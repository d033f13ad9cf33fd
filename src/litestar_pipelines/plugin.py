"""Litestar plugin for pipeline integration.

This module provides the PipelinesPlugin for running a litestar-pipelines
orchestrator inside a Litestar application.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from litestar.di import Provide
from litestar.plugins import InitPluginProtocol

from litestar_pipelines.engine.local import LocalPipelineEngine
from litestar_pipelines.orchestrator import Orchestrator
from litestar_pipelines.scheduler.scheduler import JobScheduler

if TYPE_CHECKING:
    from collections.abc import Mapping

    from litestar.config.app import AppConfig

    from litestar_pipelines.config import OrchestratorConfig
    from litestar_pipelines.core.definition import WorkflowDefinition
    from litestar_pipelines.core.protocols import StageHandler
    from litestar_pipelines.scheduler.models import ScheduleDefinition

__all__ = ["PipelinesPlugin", "PipelinesPluginConfig"]


@dataclass
class PipelinesPluginConfig:
    """Configuration for the PipelinesPlugin.

    Attributes:
        orchestrator: Optional pre-configured Orchestrator. If not provided,
            one is created from ``orchestrator_config``.
        orchestrator_config: Configuration for the orchestrator the plugin
            creates. Ignored when ``orchestrator`` is given.
        pipelines: Workflow definitions, or plain mappings, to register.
        schedules: Schedule definitions, or plain mappings, to register.
        stage_handlers: Stage handlers keyed by stage type.
        start_scheduler: Whether to start the scheduler tick loop on app
            startup and stop it on shutdown. Defaults to True.
        dependency_key_orchestrator: The key used for dependency injection of
            the Orchestrator. Defaults to "pipeline_orchestrator".
        dependency_key_engine: The key used for dependency injection of the
            pipeline engine. Defaults to "pipeline_engine".
        dependency_key_scheduler: The key used for dependency injection of
            the job scheduler. Defaults to "job_scheduler".
    """

    orchestrator: Orchestrator | None = None
    orchestrator_config: OrchestratorConfig | None = None
    pipelines: list[WorkflowDefinition | Mapping[str, Any]] = field(default_factory=list)
    schedules: list[ScheduleDefinition | Mapping[str, Any]] = field(default_factory=list)
    stage_handlers: dict[str, StageHandler] = field(default_factory=dict)
    start_scheduler: bool = True
    dependency_key_orchestrator: str = "pipeline_orchestrator"
    dependency_key_engine: str = "pipeline_engine"
    dependency_key_scheduler: str = "job_scheduler"


class PipelinesPlugin(InitPluginProtocol):
    """Litestar plugin for pipeline orchestration.

    This plugin registers the configured definitions, handlers and schedules
    on an Orchestrator, provides the orchestrator, its engine and its
    scheduler through dependency injection, and ties the scheduler tick loop
    to the application lifecycle.

    Example:
        Basic usage::

            from litestar import Litestar, post
            from litestar_pipelines import LocalPipelineEngine, PipelinesPlugin, PipelinesPluginConfig


            @post("/pipelines/{workflow_id:str}/run")
            async def run_pipeline(workflow_id: str, pipeline_engine: LocalPipelineEngine) -> dict:
                instance = await pipeline_engine.execute(workflow_id, triggered_by="api")
                return {"instance_id": instance.instance_id, "status": instance.status}


            app = Litestar(
                route_handlers=[run_pipeline],
                plugins=[
                    PipelinesPlugin(
                        config=PipelinesPluginConfig(
                            pipelines=[{"id": "orders", "name": "Orders", "stages": [{"id": "extract"}]}],
                            schedules=[
                                {
                                    "id": "nightly-orders",
                                    "workflow_id": "orders",
                                    "trigger": {"type": "cron", "cron_expression": "0 2 * * *"},
                                }
                            ],
                        )
                    )
                ],
            )
    """

    __slots__ = ("_config", "_orchestrator")

    def __init__(self, config: PipelinesPluginConfig | None = None) -> None:
        """Initialize the plugin.

        Args:
            config: Optional configuration for the plugin.
        """
        self._config = config or PipelinesPluginConfig()
        self._orchestrator: Orchestrator | None = None

    @property
    def orchestrator(self) -> Orchestrator:
        """Get the orchestrator.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._orchestrator is None:
            msg = "PipelinesPlugin has not been initialized. Access orchestrator after app initialization."
            raise RuntimeError(msg)
        return self._orchestrator

    def on_app_init(self, app_config: AppConfig) -> AppConfig:
        """Wire the orchestrator into the Litestar app configuration.

        This method:
        1. Creates or uses the provided Orchestrator
        2. Registers the configured stage handlers, pipelines and schedules
        3. Adds dependency providers to the app config
        4. Optionally hooks the scheduler into startup and shutdown

        Args:
            app_config: The Litestar application configuration.

        Returns:
            The modified application configuration.
        """
        orchestrator = self._config.orchestrator or Orchestrator(self._config.orchestrator_config)
        self._orchestrator = orchestrator

        for stage_type, handler in self._config.stage_handlers.items():
            orchestrator.register_stage_handler(stage_type, handler)
        orchestrator.load({"pipelines": self._config.pipelines, "schedules": self._config.schedules})

        def provide_orchestrator() -> Orchestrator:
            return orchestrator

        def provide_engine() -> LocalPipelineEngine:
            return orchestrator.engine

        def provide_scheduler() -> JobScheduler:
            return orchestrator.scheduler

        app_config.dependencies[self._config.dependency_key_orchestrator] = Provide(
            provide_orchestrator,
            sync_to_thread=False,
        )
        app_config.dependencies[self._config.dependency_key_engine] = Provide(
            provide_engine,
            sync_to_thread=False,
        )
        app_config.dependencies[self._config.dependency_key_scheduler] = Provide(
            provide_scheduler,
            sync_to_thread=False,
        )

        if self._config.start_scheduler:
            app_config.on_startup.append(orchestrator.start)
            app_config.on_shutdown.append(orchestrator.shutdown)

        return app_config
