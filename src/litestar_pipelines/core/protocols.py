"""Core protocols for litestar-pipelines.

This module defines the Protocol-based contracts of the collaborators the
orchestration core consumes: stage handlers, which do the actual data work,
and job executors, which the scheduler calls when a schedule fires.

Timeouts declared on stages and schedules are advisory. The core never aborts
an in-flight handler or executor call; implementations that need hard
timeouts or cancellation must enforce them themselves (for example with
``asyncio.timeout`` around their own I/O) and should poll the instance status
to cooperate with ``pause``/``cancel``.
"""

from __future__ import annotations

from collections.abc import Awaitable
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from litestar_pipelines.core.context import StageExecutionContext
    from litestar_pipelines.core.models import StageResult
    from litestar_pipelines.core.types import Row
    from litestar_pipelines.scheduler.models import JobInstance, ScheduleDefinition

__all__ = ["JobExecutor", "StageHandler"]


@runtime_checkable
class StageHandler(Protocol):
    """Callable that performs the work of one stage type.

    A handler receives the stage's configuration payload, the rows produced by
    its direct dependencies (concatenated in dependency order) and the
    execution context. It may be a plain function or a coroutine function and
    may return a :class:`~litestar_pipelines.core.models.StageResult` or a
    mapping with the same keys. Raising an exception counts as a failed
    attempt.

    Example:
        >>> def uppercase(config, rows, context):
        ...     out = [{k: str(v).upper() for k, v in row.items()} for row in rows]
        ...     return StageResult(rows=out, rows_read=len(rows), rows_written=len(out))
    """

    def __call__(
        self,
        config: dict[str, Any],
        rows: list[Row],
        context: StageExecutionContext,
    ) -> StageResult | dict[str, Any] | Awaitable[StageResult | dict[str, Any]]:
        """Process ``rows`` for one stage."""
        ...


@runtime_checkable
class JobExecutor(Protocol):
    """Callable the scheduler invokes for every job attempt.

    The return value is stored as the job's result. A mapping that carries a
    ``pipeline_instance_id`` key correlates the job with a pipeline instance.
    Raising an exception counts as a failed attempt.
    """

    def __call__(self, schedule: ScheduleDefinition, job: JobInstance) -> Any | Awaitable[Any]:
        """Run the work of one job attempt."""
        ...
