"""Tests for runtime models."""

from __future__ import annotations

from datetime import timedelta

import pytest


@pytest.mark.unit
class TestStageResult:
    """Tests for StageResult."""

    def test_passthrough(self) -> None:
        from litestar_pipelines.core.models import StageResult

        rows = [{"id": 1}, {"id": 2}]
        result = StageResult.passthrough(rows)

        assert result.rows == rows
        assert result.rows is not rows
        assert result.rows_read == 2
        assert result.rows_written == 2
        assert result.errors == []

    def test_from_dict_camel_case(self) -> None:
        from litestar_pipelines.core.models import StageResult

        result = StageResult.from_dict({"rows": [{"x": 1}], "rowsRead": 3, "rowsFiltered": 2})

        assert result.rows == [{"x": 1}]
        assert result.rows_read == 3
        assert result.rows_filtered == 2
        assert result.rows_written == 0


@pytest.mark.unit
class TestStageStatus:
    """Tests for StageStatus transitions."""

    def test_lifecycle(self) -> None:
        from litestar_pipelines.core.models import StageResult, StageStatus
        from litestar_pipelines.core.types import PipelineStatus

        status = StageStatus(stage_id="a")
        assert status.status == PipelineStatus.PENDING

        status.mark_running()
        assert status.status == PipelineStatus.RUNNING
        assert status.started_at is not None

        status.record(StageResult(rows_read=10, rows_written=8, rows_rejected=2))
        status.started_at -= timedelta(seconds=2)
        status.finish(PipelineStatus.COMPLETED)

        assert status.status == PipelineStatus.COMPLETED
        assert status.rows_written == 8
        assert status.latency_ms >= 2000
        assert status.throughput_rows_per_sec == pytest.approx(10 / status.latency_ms * 1000)

    def test_finish_without_start(self) -> None:
        from litestar_pipelines.core.models import StageStatus
        from litestar_pipelines.core.types import PipelineStatus

        status = StageStatus(stage_id="a")
        status.finish(PipelineStatus.COMPLETED)

        assert status.latency_ms == 0
        assert status.throughput_rows_per_sec == 0.0


@pytest.mark.unit
class TestPipelineInstance:
    """Tests for PipelineInstance metrics."""

    def test_recalculate_metrics(self) -> None:
        from litestar_pipelines.core.models import PipelineInstance, StageStatus
        from litestar_pipelines.core.types import PipelineStatus

        instance = PipelineInstance(instance_id="i1", workflow_id="p1")
        instance.started_at -= timedelta(seconds=1)
        instance.stage_statuses = {
            "a": StageStatus(stage_id="a", status=PipelineStatus.COMPLETED, rows_read=5, rows_written=5),
            "b": StageStatus(stage_id="b", status=PipelineStatus.FAILED, rows_read=5, rows_rejected=5),
            "c": StageStatus(stage_id="c"),
        }

        instance.recalculate_metrics()

        metrics = instance.metrics
        assert metrics.total_stages == 3
        assert metrics.total_rows_read == 10
        assert metrics.total_rows_processed == 10
        assert metrics.total_rows_written == 5
        assert metrics.total_rows_rejected == 5
        assert metrics.completed_stages == 1
        assert metrics.failed_stages == 1
        assert metrics.duration_ms >= 1000
        assert metrics.throughput_rows_per_sec > 0

    def test_is_terminal(self) -> None:
        from litestar_pipelines.core.models import PipelineInstance
        from litestar_pipelines.core.types import PipelineStatus

        instance = PipelineInstance(instance_id="i1", workflow_id="p1")
        assert not instance.is_terminal

        instance.status = PipelineStatus.CANCELLED
        assert instance.is_terminal


@pytest.mark.unit
class TestStageExecutionContext:
    """Tests for StageExecutionContext scratch metadata."""

    def test_get_set(self) -> None:
        from litestar_pipelines.core.context import StageExecutionContext

        context = StageExecutionContext(
            workflow_id="p1",
            instance_id="i1",
            stage_id="a",
            stage_name="A",
            parameters={"date": "2024-01-01"},
        )

        assert context.get("cursor") is None
        assert context.get("cursor", 0) == 0
        context.set("cursor", 42)
        assert context.get("cursor") == 42
        assert context.attempt == 1
