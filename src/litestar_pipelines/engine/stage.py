"""Execution of a single pipeline stage.

This module provides the StageExecutor, which runs one stage's handler with
its retry policy and applies the effective error-handling policy once the
retry budget is exhausted.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any

from litestar_pipelines.core.context import StageExecutionContext
from litestar_pipelines.core.definition import ErrorHandling, RetryPolicy
from litestar_pipelines.core.models import PipelineError, StageResult
from litestar_pipelines.core.types import ErrorSeverity, PipelineStatus
from litestar_pipelines.exceptions import StageExecutionError
from litestar_pipelines.log import get_logger

if TYPE_CHECKING:
    from litestar_pipelines.core.definition import StageDefinition, WorkflowDefinition
    from litestar_pipelines.core.models import PipelineInstance
    from litestar_pipelines.core.types import Row
    from litestar_pipelines.engine.registry import PipelineRegistry

__all__ = ["StageExecutor", "SleepFunc"]

log = get_logger("stage")

SleepFunc = Callable[[float], Awaitable[Any]]
"""Awaitable sleep taking seconds, ``asyncio.sleep`` by default."""

DEFAULT_RETRY_POLICY = RetryPolicy()
DEFAULT_ERROR_HANDLING = ErrorHandling()


def resolve_error_handling(stage: StageDefinition, definition: WorkflowDefinition) -> ErrorHandling:
    """Stage override, else the workflow policy, else fail-fast."""
    return stage.error_handling or definition.error_handling or DEFAULT_ERROR_HANDLING


def _coerce_result(value: Any, rows: list[Row]) -> StageResult:
    if isinstance(value, StageResult):
        return value
    if value is None:
        return StageResult.passthrough(rows)
    if isinstance(value, Mapping):
        return StageResult.from_dict(value)
    msg = f"Stage handler returned {type(value).__name__}, expected StageResult or mapping"
    raise TypeError(msg)


class StageExecutor:
    """Runs one stage of a pipeline instance.

    The executor owns the stage's status record for the duration of the call:
    it moves it from ``pending`` to ``running`` and then to ``completed`` or
    ``failed``, copying counters and computing latency and throughput.

    Stages whose type has no registered handler use a pass-through: input
    rows become output rows unchanged. This lets partially wired pipelines
    run end to end.

    Handlers may be sync or async and may return a StageResult, a mapping
    with the same keys, or None (pass-through). Failed attempts are retried
    per the stage's retry policy with exponential backoff; the sleep between
    attempts only suspends this instance.

    Attributes:
        registry: Registry the stage handlers are looked up in.
    """

    def __init__(self, registry: PipelineRegistry, sleep: SleepFunc | None = None) -> None:
        """Initialize the stage executor.

        Args:
            registry: Registry holding the stage handlers.
            sleep: Awaitable sleep in seconds; ``asyncio.sleep`` by default.
        """
        self.registry = registry
        self._sleep = sleep or asyncio.sleep

    async def execute(
        self,
        stage: StageDefinition,
        rows: list[Row],
        instance: PipelineInstance,
        definition: WorkflowDefinition,
    ) -> StageResult:
        """Execute ``stage`` on ``rows``.

        Args:
            stage: The stage to run.
            rows: Input rows gathered from the stage's dependencies.
            instance: The owning pipeline instance.
            definition: The workflow the stage belongs to.

        Returns:
            The handler's result or, when the stage failed under a non
            fail-fast policy, an empty result with every input row rejected.

        Raises:
            StageExecutionError: If the stage failed and the effective policy
                is fail-fast.
        """
        status = instance.stage_statuses[stage.id]
        status.mark_running()

        context = StageExecutionContext(
            workflow_id=definition.id,
            instance_id=instance.instance_id,
            stage_id=stage.id,
            stage_name=stage.name,
            parameters=instance.parameters,
            checkpoint=instance.checkpoint,
        )

        handler = self.registry.get_stage_handler(stage.type)
        if handler is None:
            result = StageResult.passthrough(rows)
            status.attempts = 1
            status.record(result)
            status.finish(PipelineStatus.COMPLETED)
            return result

        policy = stage.retry_policy or DEFAULT_RETRY_POLICY
        max_attempts = max(1, policy.max_attempts)
        last_error: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            context.attempt = attempt
            status.attempts = attempt
            try:
                outcome = handler(stage.config, rows, context)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
                result = _coerce_result(outcome, rows)
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                log.error(
                    "Stage '{}' of instance {} failed (attempt {}/{}): {}",
                    stage.id,
                    instance.instance_id,
                    attempt,
                    max_attempts,
                    exc,
                )
                if attempt < max_attempts:
                    await self._sleep(policy.delay_for(attempt) / 1000)
                continue

            status.record(result)
            status.finish(PipelineStatus.COMPLETED)
            return result

        status.errors.append(
            PipelineError(
                error_code="STAGE_FAILED",
                message=str(last_error) if last_error else "Unknown error",
                severity=ErrorSeverity.ERROR,
                stage_id=stage.id,
            )
        )
        status.finish(PipelineStatus.FAILED)

        error_handling = resolve_error_handling(stage, definition)
        if error_handling.is_fail_fast:
            raise StageExecutionError(stage.id, last_error, attempts=max_attempts) from last_error

        log.warning(
            "Stage '{}' of instance {} skipped under '{}' policy; {} row(s) rejected",
            stage.id,
            instance.instance_id,
            error_handling.strategy,
            len(rows),
        )
        status.rows_rejected = len(rows)
        return StageResult(rows=[], rows_rejected=len(rows), errors=list(status.errors))
