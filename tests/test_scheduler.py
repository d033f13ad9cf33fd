"""Tests for the tick-driven job scheduler."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import pytest

if TYPE_CHECKING:
    from litestar_pipelines.scheduler.models import JobInstance, ScheduleDefinition
    from litestar_pipelines.scheduler.scheduler import JobScheduler
    from tests.conftest import FakeClock, SleepRecorder

NINE_AM = datetime(2024, 6, 17, 9, 0, tzinfo=timezone.utc)


def make_schedule(schedule_id: str = "s1", **kwargs: Any) -> ScheduleDefinition:
    from litestar_pipelines.scheduler.models import ScheduleDefinition, ScheduleTrigger

    kwargs.setdefault("trigger", ScheduleTrigger.cron("* * * * *"))
    return ScheduleDefinition(id=schedule_id, name=schedule_id, workflow_id="p1", **kwargs)


class RecordingExecutor:
    """Job executor that records calls and fails for chosen schedules."""

    def __init__(self, failing: set[str] | None = None, failures: int | None = None) -> None:
        self.failing = failing or set()
        self.failures = failures
        self.calls: list[tuple[str, int]] = []

    async def __call__(self, schedule: ScheduleDefinition, job: JobInstance) -> dict[str, Any]:
        self.calls.append((schedule.id, job.attempt))
        if schedule.id in self.failing and (self.failures is None or len(self.calls) <= self.failures):
            msg = f"{schedule.id} exploded"
            raise RuntimeError(msg)
        return {"ok": True, "parameters": dict(job.parameters)}


class BlockingExecutor:
    """Job executor that holds every job until released."""

    def __init__(self) -> None:
        self.release = asyncio.Event()

    async def __call__(self, schedule: ScheduleDefinition, job: JobInstance) -> None:
        await self.release.wait()


async def _until(predicate: Any) -> None:
    while not predicate():
        await asyncio.sleep(0.01)


@pytest.mark.unit
@pytest.mark.asyncio
class TestTick:
    """Tests for trigger evaluation on a tick."""

    async def test_fires_without_executor(self, scheduler: JobScheduler) -> None:
        from litestar_pipelines.core.types import JobStatus

        completed: list[JobInstance] = []
        scheduler.on_job_complete(completed.append)
        scheduler.register_schedule(make_schedule(parameters={"region": "eu"}))

        fired = await scheduler.tick()
        await scheduler.drain()

        assert len(fired) == 1
        job = fired[0]
        assert job.schedule_id == "s1"
        assert job.triggered_by == "scheduler"
        assert job.scheduled_at == NINE_AM
        assert job.parameters == {"region": "eu"}
        assert job.status == JobStatus.COMPLETED
        assert job.result == {}
        assert job.is_terminal
        assert completed == []

    async def test_job_parameters_are_a_copy(self, scheduler: JobScheduler) -> None:
        schedule = make_schedule(parameters={"region": "eu"})
        scheduler.register_schedule(schedule)

        (job,) = await scheduler.tick()
        job.parameters["region"] = "us"

        assert schedule.parameters == {"region": "eu"}

    async def test_cron_matches_only_on_the_minute(self, scheduler: JobScheduler) -> None:
        from litestar_pipelines.scheduler.models import ScheduleTrigger

        scheduler.register_schedule(make_schedule(trigger=ScheduleTrigger.cron("0 9 * * *")))

        assert len(await scheduler.tick(NINE_AM)) == 1
        await scheduler.drain()
        assert await scheduler.tick(NINE_AM + timedelta(minutes=1)) == []

    async def test_cron_in_schedule_timezone(self, scheduler: JobScheduler) -> None:
        from litestar_pipelines.scheduler.models import ScheduleTrigger

        scheduler.register_schedule(
            make_schedule(trigger=ScheduleTrigger.cron("0 9 * * *"), timezone="America/New_York"),
        )

        assert await scheduler.tick(NINE_AM) == []
        # 13:00 UTC is 09:00 EDT in June.
        assert len(await scheduler.tick(datetime(2024, 6, 17, 13, 0, tzinfo=timezone.utc))) == 1

    async def test_interval_trigger(self, scheduler: JobScheduler, clock: FakeClock) -> None:
        from litestar_pipelines.scheduler.models import ScheduleTrigger

        scheduler.register_schedule(make_schedule(trigger=ScheduleTrigger.interval(60_000)))

        assert len(await scheduler.tick()) == 1
        await scheduler.drain()
        clock.advance(seconds=30)
        assert await scheduler.tick() == []
        clock.advance(seconds=30)
        assert len(await scheduler.tick()) == 1

    async def test_interval_accepts_naive_tick_time(self, scheduler: JobScheduler) -> None:
        from litestar_pipelines.scheduler.models import ScheduleTrigger

        scheduler.register_schedule(make_schedule(trigger=ScheduleTrigger.interval(1000)))

        await scheduler.tick(datetime(2024, 6, 17, 9, 0))
        await scheduler.drain()

        assert len(await scheduler.tick(NINE_AM + timedelta(seconds=1))) == 1

    @pytest.mark.parametrize("trigger_type", ["manual", "event", "file-arrival", "api"])
    async def test_other_trigger_types_never_fire(self, scheduler: JobScheduler, trigger_type: str) -> None:
        from litestar_pipelines.scheduler.models import ScheduleTrigger

        scheduler.register_schedule(make_schedule(trigger=ScheduleTrigger(type=trigger_type)))

        assert await scheduler.tick() == []

    async def test_disabled_schedule(self, scheduler: JobScheduler) -> None:
        scheduler.register_schedule(make_schedule())
        scheduler.disable_schedule("s1")

        assert await scheduler.tick() == []
        assert scheduler.active_schedule_count == 0

        scheduler.enable_schedule("s1")

        assert len(await scheduler.tick()) == 1

    @pytest.mark.parametrize(
        ("start_date", "end_date", "fires"),
        [
            (NINE_AM + timedelta(days=1), None, False),
            (None, NINE_AM - timedelta(days=1), False),
            (NINE_AM - timedelta(days=1), NINE_AM + timedelta(days=1), True),
            (NINE_AM, NINE_AM, True),
            (datetime(2024, 6, 18), None, False),
            (datetime(2024, 6, 1), datetime(2024, 7, 1), True),
        ],
    )
    async def test_validity_window(
        self,
        scheduler: JobScheduler,
        start_date: datetime | None,
        end_date: datetime | None,
        fires: bool,
    ) -> None:
        scheduler.register_schedule(make_schedule(start_date=start_date, end_date=end_date))

        assert bool(await scheduler.tick()) is fires

    async def test_higher_priority_fires_first(self, scheduler: JobScheduler) -> None:
        scheduler.register_schedule(make_schedule("low", priority=1))
        scheduler.register_schedule(make_schedule("none"))
        scheduler.register_schedule(make_schedule("high", priority=5))

        fired = await scheduler.tick()

        assert [job.schedule_id for job in fired] == ["high", "low", "none"]

    async def test_invalid_cron_rejected_at_registration(self, scheduler: JobScheduler) -> None:
        from litestar_pipelines.exceptions import CronParseError
        from litestar_pipelines.scheduler.models import ScheduleTrigger

        with pytest.raises(CronParseError):
            scheduler.register_schedule(make_schedule(trigger=ScheduleTrigger.cron("61 * * * *")))

        assert scheduler.schedule_count == 0

    async def test_unknown_timezone_rejected_at_registration(self, scheduler: JobScheduler) -> None:
        from litestar_pipelines.exceptions import InvalidTimezoneError

        with pytest.raises(InvalidTimezoneError, match="Mars/Olympus") as exc_info:
            scheduler.register_schedule(make_schedule("bad", timezone="Mars/Olympus"))

        assert exc_info.value.schedule_id == "bad"
        assert scheduler.schedule_count == 0

    async def test_broken_schedule_does_not_halt_tick(self, scheduler: JobScheduler) -> None:
        from litestar_pipelines.scheduler.models import ScheduleTrigger

        bad = make_schedule("bad", priority=10)
        scheduler.register_schedule(bad)
        scheduler.register_schedule(make_schedule("good", trigger=ScheduleTrigger.interval(1000)))
        bad.timezone = "Mars/Olympus"

        fired = await scheduler.tick(NINE_AM)

        assert [job.schedule_id for job in fired] == ["good"]
        assert scheduler.get_jobs_by_schedule("bad") == []

    async def test_failing_job_does_not_stop_other_jobs(self, scheduler: JobScheduler) -> None:
        from litestar_pipelines.core.types import JobStatus

        def broken_executor(schedule, job):
            if schedule.id == "a":
                msg = "executor bug"
                raise RuntimeError(msg)
            return {"ok": True}

        scheduler.set_executor(broken_executor)
        scheduler.register_schedule(make_schedule("a"))
        scheduler.register_schedule(make_schedule("b"))

        fired = await scheduler.tick()
        await scheduler.drain()

        statuses = {job.schedule_id: job.status for job in fired}
        assert statuses == {"a": JobStatus.FAILED, "b": JobStatus.COMPLETED}


@pytest.mark.unit
@pytest.mark.asyncio
class TestConcurrency:
    """Tests for the concurrency gate."""

    async def test_blocked_job_does_not_stall_other_schedules(self) -> None:
        from litestar_pipelines.core.types import JobStatus
        from litestar_pipelines.scheduler.scheduler import JobScheduler

        release = asyncio.Event()

        async def executor(schedule: ScheduleDefinition, job: JobInstance) -> dict[str, Any]:
            if schedule.id == "slow":
                if job.attempt == 1:
                    msg = "upstream timeout"
                    raise RuntimeError(msg)
                await release.wait()
            return {"ok": True}

        scheduler = JobScheduler(executor=executor, clock=lambda: NINE_AM)
        scheduler.register_schedule(make_schedule("slow", priority=10, max_retries=1, retry_delay_ms=2000))
        scheduler.register_schedule(make_schedule("fast"))

        fired = {job.schedule_id: job for job in await scheduler.tick()}
        await asyncio.wait_for(_until(lambda: fired["fast"].is_terminal), timeout=0.5)

        assert fired["fast"].status == JobStatus.COMPLETED
        assert fired["slow"].status == JobStatus.RUNNING

        release.set()
        await asyncio.wait_for(scheduler.drain(), timeout=5)
        assert fired["slow"].status == JobStatus.COMPLETED
        assert fired["slow"].attempt == 2

    async def test_non_concurrent_schedule_waits_for_running_job(
        self,
        scheduler: JobScheduler,
        clock: FakeClock,
    ) -> None:
        executor = BlockingExecutor()
        scheduler.set_executor(executor)
        scheduler.register_schedule(make_schedule())

        assert len(await scheduler.tick()) == 1
        clock.advance(minutes=1)
        assert await scheduler.tick() == []
        assert scheduler.running_job_count == 1

        executor.release.set()
        await scheduler.drain()
        clock.advance(minutes=1)

        assert len(await scheduler.tick()) == 1

    async def test_max_concurrent_runs(self, scheduler: JobScheduler, clock: FakeClock) -> None:
        executor = BlockingExecutor()
        scheduler.set_executor(executor)
        scheduler.register_schedule(make_schedule(concurrent=True, max_concurrent_runs=2))

        fired = []
        for _ in range(3):
            fired.extend(await scheduler.tick())
            clock.advance(minutes=1)

        assert len(fired) == 2
        assert scheduler.running_job_count == 2

        executor.release.set()
        await scheduler.drain()

        assert scheduler.running_job_count == 0

    async def test_concurrent_without_cap(self, scheduler: JobScheduler, clock: FakeClock) -> None:
        executor = BlockingExecutor()
        scheduler.set_executor(executor)
        scheduler.register_schedule(make_schedule(concurrent=True))

        for _ in range(4):
            await scheduler.tick()
            clock.advance(minutes=1)

        assert scheduler.running_job_count == 4

        executor.release.set()
        await scheduler.drain()


@pytest.mark.unit
@pytest.mark.asyncio
class TestDependencies:
    """Tests for inter-schedule dependency gates."""

    @pytest.mark.parametrize(
        ("condition", "upstream_fails", "fires"),
        [
            ("completed", False, True),
            ("completed", True, True),
            ("succeeded", False, True),
            ("succeeded", True, False),
            ("failed", False, False),
            ("failed", True, True),
            ("any", False, True),
            ("any", True, True),
        ],
    )
    async def test_condition_on_most_recent_job(
        self,
        scheduler: JobScheduler,
        condition: str,
        upstream_fails: bool,
        fires: bool,
    ) -> None:
        from litestar_pipelines.scheduler.models import ScheduleDependency, ScheduleTrigger

        scheduler.set_executor(RecordingExecutor(failing={"up"} if upstream_fails else set()))
        scheduler.register_schedule(make_schedule("up", trigger=ScheduleTrigger()))
        scheduler.register_schedule(
            make_schedule("down", dependencies=[ScheduleDependency(schedule_id="up", condition=condition)]),
        )
        await scheduler.trigger("up")

        fired = await scheduler.tick()

        assert [job.schedule_id for job in fired] == (["down"] if fires else [])

    @pytest.mark.parametrize("condition", ["completed", "succeeded", "failed", "any"])
    async def test_missing_upstream_never_satisfies(self, scheduler: JobScheduler, condition: str) -> None:
        from litestar_pipelines.scheduler.models import ScheduleDependency

        scheduler.register_schedule(
            make_schedule("down", dependencies=[ScheduleDependency(schedule_id="up", condition=condition)]),
        )

        assert await scheduler.tick() == []

    async def test_running_upstream_blocks_every_condition_but_any(self, scheduler: JobScheduler) -> None:
        from litestar_pipelines.scheduler.models import ScheduleDependency, ScheduleTrigger

        executor = BlockingExecutor()
        scheduler.set_executor(executor)
        scheduler.register_schedule(make_schedule("up", trigger=ScheduleTrigger.cron("0 9 * * *"), priority=10))
        scheduler.register_schedule(
            make_schedule("strict", dependencies=[ScheduleDependency(schedule_id="up", condition="completed")]),
        )
        scheduler.register_schedule(
            make_schedule("loose", dependencies=[ScheduleDependency(schedule_id="up", condition="any")]),
        )

        fired = await scheduler.tick()

        assert [job.schedule_id for job in fired] == ["up", "loose"]
        executor.release.set()
        await scheduler.drain()

    async def test_most_recent_job_decides(self, scheduler: JobScheduler) -> None:
        from litestar_pipelines.scheduler.models import ScheduleDependency, ScheduleTrigger

        executor = RecordingExecutor(failing={"up"}, failures=1)
        scheduler.set_executor(executor)
        scheduler.register_schedule(make_schedule("up", trigger=ScheduleTrigger()))
        scheduler.register_schedule(make_schedule("down", dependencies=[ScheduleDependency(schedule_id="up")]))

        await scheduler.trigger("up")
        assert await scheduler.tick() == []

        await scheduler.trigger("up")
        assert [job.schedule_id for job in await scheduler.tick()] == ["down"]


@pytest.mark.unit
@pytest.mark.asyncio
class TestJobExecution:
    """Tests for executor calls, retries and failure reporting."""

    async def test_retries_with_exponential_backoff(
        self,
        scheduler: JobScheduler,
        sleep_recorder: SleepRecorder,
    ) -> None:
        from litestar_pipelines.core.types import JobStatus
        from litestar_pipelines.exceptions import JobExecutionError

        failures: list[tuple[JobInstance, JobExecutionError]] = []
        executor = RecordingExecutor(failing={"s1"})
        scheduler.set_executor(executor)
        scheduler.on_job_failed(lambda job, error: failures.append((job, error)))
        scheduler.register_schedule(make_schedule(max_retries=2, retry_delay_ms=100))

        (job,) = await scheduler.tick()
        await scheduler.drain()

        assert executor.calls == [("s1", 1), ("s1", 2), ("s1", 3)]
        assert sleep_recorder.delays == pytest.approx([0.1, 0.2])
        assert job.status == JobStatus.FAILED
        assert job.attempt == 3
        assert job.error == "s1 exploded"
        assert job.completed_at is not None

        assert len(failures) == 1
        failed_job, error = failures[0]
        assert failed_job is job
        assert isinstance(error, JobExecutionError)
        assert error.schedule_id == "s1"
        assert error.job_id == job.instance_id
        assert error.attempts == 3
        assert error.message == "s1 exploded"
        assert isinstance(error.__cause__, RuntimeError)

    async def test_success_on_retry(self, scheduler: JobScheduler, sleep_recorder: SleepRecorder) -> None:
        from litestar_pipelines.core.types import JobStatus

        completed: list[JobInstance] = []
        scheduler.set_executor(RecordingExecutor(failing={"s1"}, failures=1))
        scheduler.on_job_complete(completed.append)
        scheduler.register_schedule(make_schedule(max_retries=3, retry_delay_ms=250))

        job = await scheduler.trigger("s1")

        assert job.status == JobStatus.COMPLETED
        assert job.attempt == 2
        assert job.error is None
        assert job.result == {"ok": True, "parameters": {}}
        assert sleep_recorder.delays == [0.25]
        assert completed == [job]

    async def test_no_retries_by_default(self, scheduler: JobScheduler, sleep_recorder: SleepRecorder) -> None:
        from litestar_pipelines.core.types import JobStatus

        executor = RecordingExecutor(failing={"s1"})
        scheduler.set_executor(executor)
        scheduler.register_schedule(make_schedule())

        job = await scheduler.trigger("s1")

        assert job.status == JobStatus.FAILED
        assert len(executor.calls) == 1
        assert sleep_recorder.delays == []

    @pytest.mark.parametrize("key", ["pipeline_instance_id", "pipelineInstanceId"])
    async def test_pipeline_instance_id_is_recorded(self, scheduler: JobScheduler, key: str) -> None:
        scheduler.set_executor(lambda schedule, job: {key: "pi-42", "status": "completed"})
        scheduler.register_schedule(make_schedule())

        job = await scheduler.trigger("s1")

        assert job.pipeline_instance_id == "pi-42"
        assert job.result["status"] == "completed"

    async def test_sync_executor(self, scheduler: JobScheduler) -> None:
        from litestar_pipelines.core.types import JobStatus

        scheduler.set_executor(lambda schedule, job: None)
        scheduler.register_schedule(make_schedule())

        job = await scheduler.trigger("s1")

        assert job.status == JobStatus.COMPLETED
        assert job.result is None

    async def test_raising_callback_is_ignored(self, scheduler: JobScheduler) -> None:
        from litestar_pipelines.core.types import JobStatus

        def broken(job):
            msg = "callback bug"
            raise RuntimeError(msg)

        scheduler.set_executor(RecordingExecutor())
        scheduler.on_job_complete(broken)
        scheduler.register_schedule(make_schedule())

        job = await scheduler.trigger("s1")

        assert job.status == JobStatus.COMPLETED


@pytest.mark.unit
@pytest.mark.asyncio
class TestManualTrigger:
    """Tests for JobScheduler.trigger."""

    async def test_unknown_schedule(self, scheduler: JobScheduler) -> None:
        from litestar_pipelines.exceptions import ScheduleNotFoundError

        with pytest.raises(ScheduleNotFoundError):
            await scheduler.trigger("missing")

    async def test_bypasses_every_gate(self, scheduler: JobScheduler) -> None:
        from litestar_pipelines.core.types import JobStatus
        from litestar_pipelines.scheduler.models import ScheduleDependency, ScheduleTrigger

        scheduler.register_schedule(
            make_schedule(
                trigger=ScheduleTrigger(),
                enabled=False,
                start_date=NINE_AM + timedelta(days=30),
                dependencies=[ScheduleDependency(schedule_id="never-ran")],
            )
        )

        job = await scheduler.trigger("s1")

        assert job.status == JobStatus.COMPLETED
        assert job.triggered_by == "manual"

    async def test_merges_parameters(self, scheduler: JobScheduler) -> None:
        executor = RecordingExecutor()
        scheduler.set_executor(executor)
        scheduler.register_schedule(make_schedule(parameters={"region": "eu", "limit": 10}))

        job = await scheduler.trigger("s1", {"limit": 50}, triggered_by="admin")

        assert job.parameters == {"region": "eu", "limit": 50}
        assert job.triggered_by == "admin"
        assert job.result["parameters"] == {"region": "eu", "limit": 50}


@pytest.mark.unit
@pytest.mark.asyncio
class TestLifecycle:
    """Tests for start, stop and shutdown."""

    async def test_start_ticks_immediately_and_is_idempotent(self, scheduler: JobScheduler) -> None:
        scheduler.register_schedule(make_schedule())

        await scheduler.start(tick_interval=3600)
        await scheduler.start()

        assert scheduler.is_started
        assert scheduler.tick_interval == 3600
        assert len(scheduler.get_jobs_by_schedule("s1")) == 1

        await scheduler.stop()
        await scheduler.stop()

        assert not scheduler.is_started

    async def test_background_loop_keeps_ticking(self, clock: FakeClock) -> None:
        from litestar_pipelines.scheduler.scheduler import JobScheduler

        scheduler = JobScheduler(clock=clock, tick_interval=0)
        scheduler.register_schedule(make_schedule(concurrent=True))

        await scheduler.start()
        for _ in range(20):
            await asyncio.sleep(0)
        await scheduler.shutdown()

        assert len(scheduler.get_job_history()) > 1

    async def test_shutdown_waits_for_jobs_and_clears_schedules(self, scheduler: JobScheduler) -> None:
        from litestar_pipelines.core.types import JobStatus

        executor = BlockingExecutor()
        scheduler.set_executor(executor)
        scheduler.register_schedule(make_schedule())
        (job,) = await scheduler.tick()

        shutdown = asyncio.create_task(scheduler.shutdown())
        await asyncio.sleep(0)
        assert not shutdown.done()
        executor.release.set()
        await shutdown

        assert job.status == JobStatus.COMPLETED
        assert scheduler.schedule_count == 0


@pytest.mark.unit
@pytest.mark.asyncio
class TestQueries:
    """Tests for job queries and counters."""

    async def test_history_newest_first(self, scheduler: JobScheduler, clock: FakeClock) -> None:
        from litestar_pipelines.scheduler.models import ScheduleTrigger

        scheduler.register_schedule(make_schedule("a"))
        scheduler.register_schedule(make_schedule("b", trigger=ScheduleTrigger()))

        first = await scheduler.trigger("a")
        second = await scheduler.trigger("b")
        clock.advance(minutes=1)
        third = await scheduler.trigger("a")

        assert scheduler.get_job_history() == [third, second, first]
        assert scheduler.get_job_history("a") == [third, first]
        assert scheduler.get_job_history(limit=1) == [third]
        assert scheduler.get_last_job("a") is third
        assert scheduler.get_last_job("missing") is None
        assert scheduler.get_job(second.instance_id) is second
        assert scheduler.get_job("missing") is None

    async def test_daily_counters(self, scheduler: JobScheduler, clock: FakeClock) -> None:
        scheduler.set_executor(RecordingExecutor(failing={"bad"}))
        scheduler.register_schedule(make_schedule("good"))
        scheduler.register_schedule(make_schedule("bad"))

        await scheduler.trigger("good")
        await scheduler.trigger("good")
        await scheduler.trigger("bad")

        assert scheduler.jobs_today == 3
        assert scheduler.successful_jobs_today == 2
        assert scheduler.failed_jobs_today == 1
        assert len(scheduler.get_jobs_by_status("failed")) == 1

        clock.advance(days=1)

        assert scheduler.jobs_today == 0

    async def test_schedule_registry(self, scheduler: JobScheduler) -> None:
        from litestar_pipelines.exceptions import ScheduleNotFoundError

        scheduler.register_schedule(make_schedule("a"))
        scheduler.register_schedule(make_schedule("b"))
        scheduler.unregister_schedule("a")
        scheduler.unregister_schedule("a")

        assert [schedule.id for schedule in scheduler.list_schedules()] == ["b"]
        assert scheduler.schedule_count == 1
        with pytest.raises(ScheduleNotFoundError):
            scheduler.get_schedule("a")
