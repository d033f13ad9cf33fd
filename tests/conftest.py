"""Shared test fixtures for litestar-pipelines test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import pytest

if TYPE_CHECKING:
    from litestar_pipelines.core.context import StageExecutionContext
    from litestar_pipelines.core.definition import WorkflowDefinition
    from litestar_pipelines.core.models import StageResult
    from litestar_pipelines.engine.local import LocalPipelineEngine
    from litestar_pipelines.engine.registry import PipelineRegistry
    from litestar_pipelines.scheduler.scheduler import JobScheduler


class SleepRecorder:
    """Stand-in for ``asyncio.sleep`` that records delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeClock:
    """Settable clock for the scheduler."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def passthrough_handler(config: dict[str, Any], rows: list[dict[str, Any]], context: StageExecutionContext) -> StageResult:
    """Stage handler returning its input unchanged with matching counters."""
    from litestar_pipelines.core.models import StageResult

    return StageResult(rows=list(rows), rows_read=len(rows), rows_written=len(rows))


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    """Sleep function that records requested delays."""
    return SleepRecorder()


@pytest.fixture
def clock() -> FakeClock:
    """Clock pinned to Monday 2024-06-17 09:00 UTC."""
    return FakeClock(datetime(2024, 6, 17, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def registry() -> PipelineRegistry:
    """Create an empty pipeline registry.

    Returns:
        PipelineRegistry instance
    """
    from litestar_pipelines.engine.registry import PipelineRegistry

    return PipelineRegistry()


@pytest.fixture
def engine(registry: PipelineRegistry, sleep_recorder: SleepRecorder) -> LocalPipelineEngine:
    """Create a sequential local engine that never really sleeps.

    Args:
        registry: Pipeline registry
        sleep_recorder: Recording sleep function

    Returns:
        LocalPipelineEngine instance
    """
    from litestar_pipelines.engine.local import LocalPipelineEngine

    return LocalPipelineEngine(registry=registry, sleep=sleep_recorder)


@pytest.fixture
def scheduler(sleep_recorder: SleepRecorder, clock: FakeClock) -> JobScheduler:
    """Create a job scheduler with a fake clock and no executor.

    Args:
        sleep_recorder: Recording sleep function
        clock: Fake clock

    Returns:
        JobScheduler instance
    """
    from litestar_pipelines.scheduler.scheduler import JobScheduler

    return JobScheduler(sleep=sleep_recorder, clock=clock)


@pytest.fixture
def two_stage_definition() -> WorkflowDefinition:
    """Workflow ``p1`` with stage ``b`` depending on stage ``a``."""
    from litestar_pipelines.core.definition import WorkflowDefinition

    return WorkflowDefinition.from_dict(
        {
            "id": "p1",
            "name": "Pipeline 1",
            "stages": [
                {"id": "a", "type": "copy", "deps": []},
                {"id": "b", "type": "copy", "deps": ["a"]},
            ],
        }
    )


@pytest.fixture
def diamond_definition() -> WorkflowDefinition:
    """Diamond ``a -> (b, c) -> d`` declared out of dependency order."""
    from litestar_pipelines.core.definition import WorkflowDefinition

    return WorkflowDefinition.from_dict(
        {
            "id": "diamond",
            "name": "Diamond",
            "stages": [
                {"id": "d", "type": "copy", "deps": ["b", "c"]},
                {"id": "b", "type": "copy", "deps": ["a"]},
                {"id": "c", "type": "copy", "deps": ["a"]},
                {"id": "a", "type": "source"},
            ],
        }
    )


# Pytest configuration
def pytest_configure(config: Any) -> None:
    """Configure pytest with custom markers.

    Args:
        config: Pytest config object
    """
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
