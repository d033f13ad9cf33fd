"""The orchestrator: one engine and one scheduler sharing one registry.

Every registry lives on an Orchestrator instance rather than at module level,
so several independent orchestrators can coexist in one process and each can
be torn down cleanly.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from litestar_pipelines.config import OrchestratorConfig
from litestar_pipelines.core.definition import WorkflowDefinition
from litestar_pipelines.core.events import LifecycleHooks
from litestar_pipelines.core.models import utcnow
from litestar_pipelines.core.types import PipelineStatus
from litestar_pipelines.engine.local import LocalPipelineEngine
from litestar_pipelines.engine.registry import PipelineRegistry
from litestar_pipelines.exceptions import PipelineExecutionError
from litestar_pipelines.log import configure_logging, get_logger
from litestar_pipelines.scheduler.models import ScheduleDefinition
from litestar_pipelines.scheduler.scheduler import JobScheduler

if TYPE_CHECKING:
    from litestar_pipelines.core.models import PipelineInstance
    from litestar_pipelines.core.protocols import StageHandler
    from litestar_pipelines.engine.stage import SleepFunc
    from litestar_pipelines.scheduler.models import JobInstance

__all__ = ["Orchestrator"]

log = get_logger("orchestrator")


class Orchestrator:
    """Coordinator owning a registry, a pipeline engine and a job scheduler.

    The scheduler's job executor is wired to run the schedule's workflow
    through the engine. A pipeline instance that ends ``failed`` is reported
    to the scheduler as a failed attempt, so schedule retries and
    ``succeeded``/``failed`` dependency conditions follow the pipeline's
    outcome.

    Attributes:
        config: The orchestrator configuration.
        hooks: Lifecycle hooks shared by the engine and the scheduler.
        registry: Workflow definitions and stage handlers.
        engine: The pipeline engine.
        scheduler: The job scheduler.

    Example:
        >>> orchestrator = Orchestrator()
        >>> orchestrator.load(
        ...     {
        ...         "pipelines": [{"id": "p1", "name": "P1", "stages": [{"id": "a"}]}],
        ...         "schedules": [
        ...             {"id": "s1", "workflow_id": "p1", "trigger": {"type": "interval", "interval_ms": 60000}}
        ...         ],
        ...     }
        ... )
        >>> await orchestrator.start()
    """

    def __init__(self, config: OrchestratorConfig | None = None, sleep: SleepFunc | None = None) -> None:
        """Initialize the orchestrator and load the configured definitions.

        Args:
            config: Configuration; defaults apply when omitted.
            sleep: Awaitable sleep used for stage and job retry backoff.
        """
        self.config = config or OrchestratorConfig()
        if self.config.log_level:
            configure_logging(self.config.log_level)

        self.hooks = LifecycleHooks()
        self.registry = PipelineRegistry()
        self.engine = LocalPipelineEngine(
            registry=self.registry,
            hooks=self.hooks,
            max_parallel_stages=self.config.max_parallel_stages,
            sleep=sleep,
        )
        self.scheduler = JobScheduler(
            hooks=self.hooks,
            executor=self.run_scheduled_pipeline,
            sleep=sleep,
            tick_interval=self.config.tick_interval,
        )

        for stage_type, handler in self.config.stage_handlers.items():
            self.registry.register_stage_handler(stage_type, handler)
        self.load({"pipelines": self.config.pipelines, "schedules": self.config.schedules})

    def load(self, data: Mapping[str, Any]) -> None:
        """Register the ``pipelines`` and ``schedules`` of a plain configuration.

        Entries may be definition objects or mappings accepted by their
        ``from_dict`` loaders. Pipelines are registered before schedules.

        Raises:
            ValidationError: If a workflow definition is invalid.
            CronParseError: If a schedule carries a malformed cron expression.
        """
        for entry in data.get("pipelines") or []:
            definition = entry if isinstance(entry, WorkflowDefinition) else WorkflowDefinition.from_dict(entry)
            self.registry.register(definition)
        for entry in data.get("schedules") or []:
            schedule = entry if isinstance(entry, ScheduleDefinition) else ScheduleDefinition.from_dict(entry)
            self.scheduler.register_schedule(schedule)

    def register_stage_handler(self, stage_type: str, handler: StageHandler) -> None:
        self.registry.register_stage_handler(stage_type, handler)

    async def execute(
        self,
        workflow_id: str,
        parameters: dict[str, Any] | None = None,
        triggered_by: str | None = None,
    ) -> PipelineInstance:
        """Run a workflow to completion through the engine."""
        return await self.engine.execute(workflow_id, parameters, triggered_by or self.config.default_triggered_by)

    async def trigger(
        self,
        schedule_id: str,
        parameters: dict[str, Any] | None = None,
        triggered_by: str = "manual",
    ) -> JobInstance:
        """Run a schedule's job now, bypassing every scheduler gate."""
        return await self.scheduler.trigger(schedule_id, parameters, triggered_by)

    async def run_scheduled_pipeline(self, schedule: ScheduleDefinition, job: JobInstance) -> dict[str, Any]:
        """Job executor running the schedule's workflow through the engine.

        Job parameters are laid over the schedule's parameters.

        Raises:
            PipelineExecutionError: If the pipeline instance ends ``failed``.
        """
        parameters = {**schedule.parameters, **job.parameters}
        instance = await self.engine.execute(schedule.workflow_id, parameters, f"schedule:{schedule.id}")
        job.pipeline_instance_id = instance.instance_id

        if instance.status == PipelineStatus.FAILED:
            last = instance.errors[-1] if instance.errors else None
            raise PipelineExecutionError(
                instance.instance_id,
                last.message if last else "Pipeline failed",
                stage_id=last.stage_id if last else None,
            )

        return {
            "pipeline_instance_id": instance.instance_id,
            "status": str(instance.status),
            "rows_read": instance.metrics.total_rows_read,
            "rows_written": instance.metrics.total_rows_written,
        }

    async def start(self) -> None:
        """Start the scheduler tick loop."""
        await self.scheduler.start(self.config.tick_interval)

    async def stop(self) -> None:
        await self.scheduler.stop()

    async def shutdown(self) -> None:
        """Stop the scheduler, cancel unfinished instances and clear schedules."""
        await self.scheduler.shutdown()
        await self.engine.shutdown()
        log.info("Orchestrator shut down")

    def metrics(self) -> dict[str, Any]:
        """Summary counters for dashboards and health checks."""
        today = utcnow().date()
        rows_today = sum(
            instance.metrics.total_rows_processed
            for instance in self.engine.get_all_instances()
            if instance.started_at.date() == today
        )
        return {
            "pipelines": self.engine.pipeline_count,
            "active_instances": self.engine.active_count,
            "schedules": self.scheduler.schedule_count,
            "active_schedules": self.scheduler.active_schedule_count,
            "running_jobs": self.scheduler.running_job_count,
            "jobs_today": self.scheduler.jobs_today,
            "successful_jobs_today": self.scheduler.successful_jobs_today,
            "failed_jobs_today": self.scheduler.failed_jobs_today,
            "rows_processed_today": rows_today,
        }
