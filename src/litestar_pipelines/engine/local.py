"""Local in-memory async pipeline engine.

This module provides the in-process engine that executes pipeline instances
on the running event loop. Stages of one instance run in dependency order;
many instances may be in flight at once.
"""

from __future__ import annotations

import asyncio
import heapq
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from litestar_pipelines.core.events import LifecycleEvent, LifecycleHooks
from litestar_pipelines.core.models import PipelineError, PipelineInstance, StageStatus, utcnow
from litestar_pipelines.core.types import ErrorSeverity, PipelineStatus
from litestar_pipelines.engine.graph import PipelineGraph
from litestar_pipelines.engine.registry import PipelineRegistry
from litestar_pipelines.engine.stage import StageExecutor
from litestar_pipelines.exceptions import (
    InstanceNotFoundError,
    MissingParameterError,
    PipelineExecutionError,
    StageExecutionError,
)
from litestar_pipelines.log import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from litestar_pipelines.core.definition import StageDefinition, WorkflowDefinition
    from litestar_pipelines.core.models import PipelineCheckpoint
    from litestar_pipelines.core.protocols import StageHandler
    from litestar_pipelines.core.types import Row
    from litestar_pipelines.engine.stage import SleepFunc
    from litestar_pipelines.engine.validation import ValidationResult

__all__ = ["LocalPipelineEngine", "resolve_parameters"]

log = get_logger("engine")


def resolve_parameters(definition: WorkflowDefinition, provided: dict[str, Any] | None) -> dict[str, Any]:
    """Bind caller-supplied values to the workflow's declared parameters.

    For each declared parameter the supplied value wins, then the declared
    default. Undeclared supplied keys are carried through unchanged.

    Raises:
        MissingParameterError: If a required parameter has neither.
    """
    provided = provided or {}
    resolved: dict[str, Any] = {}

    for parameter in definition.parameters:
        if parameter.name in provided:
            resolved[parameter.name] = provided[parameter.name]
        elif parameter.has_default:
            resolved[parameter.name] = parameter.default
        elif parameter.required:
            raise MissingParameterError(definition.id, parameter.name)

    for key, value in provided.items():
        resolved.setdefault(key, value)
    return resolved


class LocalPipelineEngine:
    """In-memory async execution engine for pipelines.

    Execution walks the stage DAG in a deterministic topological order.
    ``pause``, ``resume`` and ``cancel`` are cooperative: they take effect at
    the next stage boundary and never interrupt a handler call in flight.

    By default stages of one instance run strictly one after another. With
    ``max_parallel_stages > 1`` independent stages run concurrently: a
    dependency-counted ready queue feeds a bounded pool, and ready stages are
    started in topological order so a pool of one behaves exactly like the
    sequential engine.

    Attributes:
        registry: Registry of workflow definitions and stage handlers.
        hooks: Lifecycle subscribers.
        max_parallel_stages: Pool size for concurrent stages within an instance.
        stage_executor: Runs individual stages.
        _instances: All instances created by this engine.
        _running: Background tasks of instances started with :meth:`start`.
        _resume_events: Events that wake instances held at a paused boundary.
    """

    def __init__(
        self,
        registry: PipelineRegistry | None = None,
        hooks: LifecycleHooks | None = None,
        max_parallel_stages: int = 1,
        sleep: SleepFunc | None = None,
    ) -> None:
        """Initialize the local pipeline engine.

        Args:
            registry: Registry to read definitions and handlers from.
            hooks: Lifecycle hooks to emit on; a private set otherwise.
            max_parallel_stages: Maximum stages of one instance running at once.
            sleep: Awaitable sleep used between stage retry attempts.
        """
        self.registry = registry or PipelineRegistry()
        self.hooks = hooks or LifecycleHooks()
        self.max_parallel_stages = max(1, max_parallel_stages)
        self.stage_executor = StageExecutor(self.registry, sleep=sleep)
        self._instances: dict[str, PipelineInstance] = {}
        self._running: dict[str, asyncio.Task[None]] = {}
        self._resume_events: dict[str, asyncio.Event] = {}

    # Registration

    def register_pipeline(self, definition: WorkflowDefinition) -> ValidationResult:
        """Validate and register a workflow definition.

        Raises:
            ValidationError: If the definition is invalid.
        """
        return self.registry.register(definition)

    def unregister_pipeline(self, workflow_id: str) -> None:
        self.registry.unregister(workflow_id)

    def get_pipeline(self, workflow_id: str) -> WorkflowDefinition:
        return self.registry.get_definition(workflow_id)

    def list_pipelines(self) -> list[WorkflowDefinition]:
        return self.registry.list_definitions()

    def register_stage_handler(self, stage_type: str, handler: StageHandler) -> None:
        self.registry.register_stage_handler(stage_type, handler)

    def unregister_stage_handler(self, stage_type: str) -> None:
        self.registry.unregister_stage_handler(stage_type)

    def validate(self, definition: WorkflowDefinition) -> ValidationResult:
        """Validate a definition without registering it."""
        return self.registry.validate(definition)

    # Callbacks

    def on_complete(self, callback: Callable[[PipelineInstance], Any], *, replace: bool = False) -> Callable[[], None]:
        """Subscribe to instance completion. Returns an unsubscribe function."""
        return self.hooks.subscribe(LifecycleEvent.PIPELINE_COMPLETED, callback, replace=replace)

    def on_failed(
        self,
        callback: Callable[[PipelineInstance, PipelineExecutionError], Any],
        *,
        replace: bool = False,
    ) -> Callable[[], None]:
        """Subscribe to instance failure. Returns an unsubscribe function."""
        return self.hooks.subscribe(LifecycleEvent.PIPELINE_FAILED, callback, replace=replace)

    def on_stage_complete(
        self,
        callback: Callable[[PipelineInstance, str], Any],
        *,
        replace: bool = False,
    ) -> Callable[[], None]:
        """Subscribe to stage completion. Returns an unsubscribe function."""
        return self.hooks.subscribe(LifecycleEvent.STAGE_COMPLETED, callback, replace=replace)

    # Execution

    async def execute(
        self,
        workflow_id: str,
        parameters: dict[str, Any] | None = None,
        triggered_by: str = "system",
        checkpoint: PipelineCheckpoint | None = None,
    ) -> PipelineInstance:
        """Execute a workflow to completion.

        Stage failures never raise out of this method: the returned instance
        carries a terminal status and, on failure, a populated error list.

        Args:
            workflow_id: The registered workflow to run.
            parameters: Caller-supplied parameter values.
            triggered_by: Who or what started the run.
            checkpoint: Optional checkpoint handed to stage handlers.

        Returns:
            The instance in a terminal state.

        Raises:
            WorkflowNotFoundError: If the workflow is not registered.
            MissingParameterError: If a required parameter cannot be resolved.

        Example:
            >>> instance = await engine.execute("orders", {"date": "2024-01-01"}, "admin")
            >>> instance.status
            <PipelineStatus.COMPLETED: 'completed'>
        """
        instance, definition = self._create_instance(workflow_id, parameters, triggered_by, checkpoint)
        await self._run_pipeline(instance, definition)
        return instance

    async def start(
        self,
        workflow_id: str,
        parameters: dict[str, Any] | None = None,
        triggered_by: str = "system",
        checkpoint: PipelineCheckpoint | None = None,
    ) -> PipelineInstance:
        """Start a workflow in the background and return its running instance.

        Lookup and parameter errors are raised before anything runs. Use
        :meth:`wait` to await the outcome.

        Example:
            >>> instance = await engine.start("orders")
            >>> engine.pause(instance.instance_id)
        """
        instance, definition = self._create_instance(workflow_id, parameters, triggered_by, checkpoint)
        task = asyncio.create_task(self._run_pipeline(instance, definition))
        self._running[instance.instance_id] = task
        task.add_done_callback(lambda _: self._running.pop(instance.instance_id, None))
        return instance

    async def wait(self, instance_id: str) -> PipelineInstance:
        """Wait for a background instance to finish and return it."""
        instance = self.get_instance(instance_id)
        task = self._running.get(instance_id)
        if task is not None:
            await asyncio.shield(task)
        return instance

    def _create_instance(
        self,
        workflow_id: str,
        parameters: dict[str, Any] | None,
        triggered_by: str,
        checkpoint: PipelineCheckpoint | None,
    ) -> tuple[PipelineInstance, WorkflowDefinition]:
        definition = self.registry.get_definition(workflow_id)
        resolved = resolve_parameters(definition, parameters)

        instance = PipelineInstance(
            instance_id=str(uuid4()),
            workflow_id=workflow_id,
            status=PipelineStatus.RUNNING,
            parameters=resolved,
            triggered_by=triggered_by,
            checkpoint=checkpoint,
        )
        for stage in definition.stages:
            instance.stage_statuses[stage.id] = StageStatus(stage_id=stage.id)
        instance.metrics.total_stages = len(instance.stage_statuses)

        self._instances[instance.instance_id] = instance
        log.info("Started instance {} of workflow '{}' (triggered by {})", instance.instance_id, workflow_id, triggered_by)
        return instance, definition

    async def _run_pipeline(self, instance: PipelineInstance, definition: WorkflowDefinition) -> None:
        """Run every stage of ``instance`` and settle its final status."""
        graph = PipelineGraph.from_definition(definition)
        pool_size = self.max_parallel_stages
        if definition.parallelism:
            pool_size = min(pool_size, definition.parallelism)

        try:
            if pool_size > 1:
                finished = await self._run_parallel(instance, definition, graph, pool_size)
            else:
                finished = await self._run_sequential(instance, definition, graph)
        except Exception as exc:  # noqa: BLE001
            await self._fail(instance, exc)
            return
        finally:
            self._resume_events.pop(instance.instance_id, None)

        if not finished:
            instance.recalculate_metrics()
            log.info("Instance {} of workflow '{}' cancelled", instance.instance_id, instance.workflow_id)
            return

        await self._complete(instance)

    async def _run_sequential(
        self,
        instance: PipelineInstance,
        definition: WorkflowDefinition,
        graph: PipelineGraph,
    ) -> bool:
        outputs: dict[str, list[Row]] = {}
        for stage_id in graph.topological_order():
            if not await self._at_boundary(instance):
                return False
            await self._run_stage(definition.get_stage(stage_id), outputs, instance, definition)
        return await self._at_boundary(instance)

    async def _run_parallel(
        self,
        instance: PipelineInstance,
        definition: WorkflowDefinition,
        graph: PipelineGraph,
        pool_size: int,
    ) -> bool:
        order = graph.topological_order()
        rank = {stage_id: index for index, stage_id in enumerate(order)}
        pending = {stage_id: len(set(graph.get_dependencies(stage_id)) & rank.keys()) for stage_id in order}
        ready = [(rank[stage_id], stage_id) for stage_id, count in pending.items() if count == 0]
        heapq.heapify(ready)

        outputs: dict[str, list[Row]] = {}
        running: dict[asyncio.Task[None], str] = {}
        failure: BaseException | None = None
        stopped = False

        while ready or running:
            while ready and len(running) < pool_size and failure is None and not stopped:
                if not await self._at_boundary(instance):
                    stopped = True
                    break
                _, stage_id = heapq.heappop(ready)
                stage = definition.get_stage(stage_id)
                task = asyncio.create_task(self._run_stage(stage, outputs, instance, definition))
                running[task] = stage_id

            if not running:
                break

            done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
            for task in sorted(done, key=lambda t: rank[running[t]]):
                stage_id = running.pop(task)
                error = task.exception()
                if error is not None:
                    failure = failure or error
                    continue
                for dependent in graph.get_dependents(stage_id):
                    pending[dependent] -= 1
                    if pending[dependent] == 0:
                        heapq.heappush(ready, (rank[dependent], dependent))

        if failure is not None:
            raise failure
        if stopped:
            return False
        return await self._at_boundary(instance)

    async def _run_stage(
        self,
        stage: StageDefinition,
        outputs: dict[str, list[Row]],
        instance: PipelineInstance,
        definition: WorkflowDefinition,
    ) -> None:
        instance.execution_order.append(stage.id)

        if not stage.enabled:
            instance.stage_statuses[stage.id].finish(PipelineStatus.COMPLETED)
            return

        rows: list[Row] = []
        for dependency in stage.dependencies:
            rows.extend(outputs.get(dependency, []))

        result = await self.stage_executor.execute(stage, rows, instance, definition)
        outputs[stage.id] = result.rows
        await self.hooks.emit(LifecycleEvent.STAGE_COMPLETED, instance, stage.id)

    async def _at_boundary(self, instance: PipelineInstance) -> bool:
        """Hold while paused; return whether execution may continue."""
        while instance.status == PipelineStatus.PAUSED:
            event = self._resume_events.setdefault(instance.instance_id, asyncio.Event())
            await event.wait()
        return instance.status == PipelineStatus.RUNNING

    async def _complete(self, instance: PipelineInstance) -> None:
        instance.status = PipelineStatus.COMPLETED
        instance.completed_at = utcnow()
        instance.recalculate_metrics()
        log.info(
            "Instance {} of workflow '{}' completed in {:.1f} ms ({} rows read)",
            instance.instance_id,
            instance.workflow_id,
            instance.metrics.duration_ms,
            instance.metrics.total_rows_read,
        )
        await self.hooks.emit(LifecycleEvent.PIPELINE_COMPLETED, instance)

    async def _fail(self, instance: PipelineInstance, exc: BaseException) -> None:
        if instance.is_terminal:
            return

        stage_id = exc.stage_id if isinstance(exc, StageExecutionError) else None
        message = exc.reason if isinstance(exc, StageExecutionError) else str(exc)

        instance.status = PipelineStatus.FAILED
        instance.completed_at = utcnow()
        instance.errors.append(
            PipelineError(
                error_code="PIPELINE_FAILED",
                message=message,
                severity=ErrorSeverity.FATAL,
                stage_id=stage_id,
            )
        )
        instance.recalculate_metrics()

        error = PipelineExecutionError(instance.instance_id, message, stage_id=stage_id)
        error.__cause__ = exc
        log.error("Instance {} of workflow '{}' failed: {}", instance.instance_id, instance.workflow_id, message)
        await self.hooks.emit(LifecycleEvent.PIPELINE_FAILED, instance, error)

    # Lifecycle control

    def pause(self, instance_id: str) -> bool:
        """Hold a running instance at its next stage boundary.

        Returns:
            True if the instance was running and is now paused.
        """
        instance = self.get_instance(instance_id)
        if instance.status != PipelineStatus.RUNNING:
            return False
        instance.status = PipelineStatus.PAUSED
        self._resume_events[instance_id] = asyncio.Event()
        log.info("Instance {} paused", instance_id)
        return True

    def resume(self, instance_id: str) -> bool:
        """Let a paused instance continue.

        Returns:
            True if the instance was paused and is now running.
        """
        instance = self.get_instance(instance_id)
        if instance.status != PipelineStatus.PAUSED:
            return False
        instance.status = PipelineStatus.RUNNING
        self._wake(instance_id)
        log.info("Instance {} resumed", instance_id)
        return True

    def cancel(self, instance_id: str) -> bool:
        """Cancel a running or paused instance at its next stage boundary.

        A stage already executing finishes first; remaining stages stay
        ``pending``.

        Returns:
            True if the instance is now cancelled.
        """
        instance = self.get_instance(instance_id)
        if instance.status not in (PipelineStatus.RUNNING, PipelineStatus.PAUSED):
            return False
        instance.status = PipelineStatus.CANCELLED
        instance.completed_at = utcnow()
        self._wake(instance_id)
        log.info("Instance {} cancelled", instance_id)
        return True

    def _wake(self, instance_id: str) -> None:
        event = self._resume_events.get(instance_id)
        if event is not None:
            event.set()

    async def shutdown(self) -> None:
        """Cancel every unfinished instance and wait for background runs to settle."""
        for instance in list(self._instances.values()):
            if not instance.is_terminal:
                self.cancel(instance.instance_id)
        tasks = list(self._running.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # Queries

    def get_instance(self, instance_id: str) -> PipelineInstance:
        """Retrieve a pipeline instance.

        Raises:
            InstanceNotFoundError: If the instance does not exist.
        """
        try:
            return self._instances[instance_id]
        except KeyError:
            raise InstanceNotFoundError(instance_id) from None

    def get_instances_by_workflow(self, workflow_id: str) -> list[PipelineInstance]:
        return [instance for instance in self._instances.values() if instance.workflow_id == workflow_id]

    def get_instances_by_status(self, status: PipelineStatus | str) -> list[PipelineInstance]:
        return [instance for instance in self._instances.values() if instance.status == status]

    def get_all_instances(self) -> list[PipelineInstance]:
        return list(self._instances.values())

    @property
    def pipeline_count(self) -> int:
        """Number of registered workflow definitions."""
        return len(self.registry)

    @property
    def active_count(self) -> int:
        """Number of instances currently running."""
        return len(self.get_instances_by_status(PipelineStatus.RUNNING))
