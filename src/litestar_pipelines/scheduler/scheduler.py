"""Tick-driven job scheduler.

This module provides the JobScheduler, which owns schedule definitions and,
on every tick, decides which of them fire: cron and interval triggers are
evaluated, then concurrency limits and inter-schedule dependencies gate the
firing. Fired jobs run in the background through a pluggable job executor
with exponential-backoff retry.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Mapping
from datetime import timezone
from typing import TYPE_CHECKING, Any
from uuid import uuid4
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from litestar_pipelines.core.definition import backoff_delay
from litestar_pipelines.core.events import LifecycleEvent, LifecycleHooks
from litestar_pipelines.core.models import utcnow
from litestar_pipelines.core.types import JobStatus, TriggerType
from litestar_pipelines.exceptions import InvalidTimezoneError, JobExecutionError, ScheduleNotFoundError
from litestar_pipelines.log import get_logger
from litestar_pipelines.scheduler.cron import parse_cron_expression
from litestar_pipelines.scheduler.models import JobInstance, _as_utc

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import date, datetime

    from litestar_pipelines.core.protocols import JobExecutor
    from litestar_pipelines.engine.stage import SleepFunc
    from litestar_pipelines.scheduler.models import ScheduleDefinition

__all__ = ["DEFAULT_TICK_INTERVAL", "JOB_BACKOFF_MULTIPLIER", "JobScheduler"]

log = get_logger("scheduler")

DEFAULT_TICK_INTERVAL = 60.0
"""Seconds between scheduler ticks."""

JOB_BACKOFF_MULTIPLIER = 2
"""Multiplier of the job retry backoff."""


class JobScheduler:
    """Decides when schedules fire and runs their jobs.

    A tick walks the enabled schedules in descending priority and fires
    those whose validity window contains the tick time, whose trigger
    matches, and whose concurrency and dependency gates pass. Fired jobs run
    as background tasks; an exception escaping one job is logged and never
    stops the tick or other jobs.

    :meth:`trigger` is the separate, ungated entry point: it runs a job
    immediately, skipping the trigger, concurrency and dependency checks.

    Attributes:
        hooks: Lifecycle subscribers for job completion and failure.
        tick_interval: Seconds between ticks of the background loop.
        _schedules: Registered schedules, in registration order.
        _jobs: Every job created, in creation order.
        _tasks: Background tasks of jobs fired by a tick.
        _loop_task: The tick loop, while started.
    """

    def __init__(
        self,
        hooks: LifecycleHooks | None = None,
        executor: JobExecutor | None = None,
        sleep: SleepFunc | None = None,
        clock: Callable[[], datetime] | None = None,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
    ) -> None:
        """Initialize the scheduler.

        Args:
            hooks: Lifecycle hooks to emit on; a private set otherwise.
            executor: Job executor. Without one, jobs complete immediately
                and no completion callback runs.
            sleep: Awaitable sleep used between job retry attempts.
            clock: Returns the current time; aware UTC by default.
            tick_interval: Seconds between ticks once started.
        """
        self.hooks = hooks or LifecycleHooks()
        self.tick_interval = tick_interval
        self._executor = executor
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or utcnow
        self._schedules: dict[str, ScheduleDefinition] = {}
        self._jobs: dict[str, JobInstance] = {}
        self._tasks: set[asyncio.Task[JobInstance]] = set()
        self._loop_task: asyncio.Task[None] | None = None

    # Registration

    def register_schedule(self, schedule: ScheduleDefinition) -> None:
        """Register or replace a schedule.

        Raises:
            CronParseError: If a cron trigger carries a malformed expression.
            InvalidTimezoneError: If the schedule names an unknown timezone.
        """
        if schedule.trigger.type == TriggerType.CRON:
            parse_cron_expression(schedule.trigger.cron_expression or "")
        if schedule.timezone:
            try:
                ZoneInfo(schedule.timezone)
            except (ZoneInfoNotFoundError, ValueError):
                raise InvalidTimezoneError(schedule.id, schedule.timezone) from None
        self._schedules[schedule.id] = schedule
        log.debug("Registered schedule '{}' for workflow '{}'", schedule.id, schedule.workflow_id)

    def unregister_schedule(self, schedule_id: str) -> None:
        self._schedules.pop(schedule_id, None)

    def get_schedule(self, schedule_id: str) -> ScheduleDefinition:
        """Retrieve a schedule.

        Raises:
            ScheduleNotFoundError: If the schedule is not registered.
        """
        try:
            return self._schedules[schedule_id]
        except KeyError:
            raise ScheduleNotFoundError(schedule_id) from None

    def list_schedules(self) -> list[ScheduleDefinition]:
        return list(self._schedules.values())

    def enable_schedule(self, schedule_id: str) -> None:
        self.get_schedule(schedule_id).enabled = True

    def disable_schedule(self, schedule_id: str) -> None:
        self.get_schedule(schedule_id).enabled = False

    def set_executor(self, executor: JobExecutor | None) -> None:
        """Install the job executor; ``None`` restores no-op mode."""
        self._executor = executor

    # Callbacks

    def on_job_complete(self, callback: Callable[[JobInstance], Any], *, replace: bool = False) -> Callable[[], None]:
        """Subscribe to job completion. Returns an unsubscribe function."""
        return self.hooks.subscribe(LifecycleEvent.JOB_COMPLETED, callback, replace=replace)

    def on_job_failed(
        self,
        callback: Callable[[JobInstance, JobExecutionError], Any],
        *,
        replace: bool = False,
    ) -> Callable[[], None]:
        """Subscribe to job failure. Returns an unsubscribe function."""
        return self.hooks.subscribe(LifecycleEvent.JOB_FAILED, callback, replace=replace)

    # Tick loop

    @property
    def is_started(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def start(self, tick_interval: float | None = None) -> None:
        """Run one tick now, then keep ticking in the background.

        Calling ``start`` on a started scheduler does nothing.
        """
        if self.is_started:
            return
        if tick_interval is not None:
            self.tick_interval = tick_interval
        log.info("Scheduler started with {} schedule(s), ticking every {}s", len(self._schedules), self.tick_interval)
        await self._safe_tick()
        self._loop_task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        """Stop the tick loop. Jobs already running are left to finish."""
        task, self._loop_task = self._loop_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.info("Scheduler stopped")

    async def shutdown(self) -> None:
        """Stop ticking, wait for running jobs and drop every schedule."""
        await self.stop()
        await self.drain()
        self._schedules.clear()

    async def drain(self) -> None:
        """Wait until every job fired by a tick has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self.tick_interval)
            await self._safe_tick()

    async def _safe_tick(self) -> None:
        try:
            await self.tick()
        except Exception:  # noqa: BLE001
            log.opt(exception=True).error("Scheduler tick failed")

    async def tick(self, now: datetime | None = None) -> list[JobInstance]:
        """Evaluate every schedule once and fire those whose gates pass.

        Args:
            now: The tick time; the scheduler clock by default.

        Returns:
            The jobs fired by this tick. They keep running in the background;
            use :meth:`drain` to wait for them.
        """
        now = now or self._clock()
        fired: list[JobInstance] = []

        for schedule in sorted(self._schedules.values(), key=lambda s: -s.priority):
            try:
                if not self._should_fire(schedule, now):
                    continue
            except Exception:  # noqa: BLE001
                log.opt(exception=True).error("Schedule '{}' could not be evaluated", schedule.id)
                continue

            job = self._create_job(schedule, dict(schedule.parameters), "scheduler", now)
            task = asyncio.create_task(self._run_job_safely(schedule, job))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            fired.append(job)

        return fired

    def _should_fire(self, schedule: ScheduleDefinition, now: datetime) -> bool:
        if not schedule.enabled or not schedule.is_active_at(now):
            return False
        if not self._trigger_fires(schedule, now):
            return False
        if not self._concurrency_allows(schedule):
            log.debug("Schedule '{}' skipped: concurrency limit reached", schedule.id)
            return False
        if not self._dependencies_satisfied(schedule):
            log.debug("Schedule '{}' skipped: dependencies not satisfied", schedule.id)
            return False
        return True

    def _trigger_fires(self, schedule: ScheduleDefinition, now: datetime) -> bool:
        trigger = schedule.trigger
        if trigger.type == TriggerType.CRON:
            if not trigger.cron_expression:
                return False
            local = now
            if schedule.timezone:
                local = _as_utc(now).astimezone(ZoneInfo(schedule.timezone))
            return parse_cron_expression(trigger.cron_expression).matches(local)

        if trigger.type == TriggerType.INTERVAL:
            if trigger.interval_ms is None:
                return False
            last = self.get_last_job(schedule.id)
            if last is None:
                return True
            elapsed_ms = (_as_utc(now) - _as_utc(last.scheduled_at)).total_seconds() * 1000
            return elapsed_ms >= trigger.interval_ms

        return False

    def _concurrency_allows(self, schedule: ScheduleDefinition) -> bool:
        running = sum(1 for job in self.get_jobs_by_schedule(schedule.id) if job.status == JobStatus.RUNNING)
        if not schedule.concurrent and running > 0:
            return False
        return schedule.max_concurrent_runs is None or running < schedule.max_concurrent_runs

    def _dependencies_satisfied(self, schedule: ScheduleDefinition) -> bool:
        return all(
            dependency.is_satisfied_by(self.get_last_job(dependency.schedule_id))
            for dependency in schedule.dependencies
        )

    # Job execution

    async def trigger(
        self,
        schedule_id: str,
        parameters: dict[str, Any] | None = None,
        triggered_by: str = "manual",
    ) -> JobInstance:
        """Run a schedule's job now, bypassing every gate.

        Args:
            schedule_id: The schedule to run.
            parameters: Overrides merged over the schedule's parameters.
            triggered_by: Who or what asked for the run.

        Returns:
            The job in a terminal state.

        Raises:
            ScheduleNotFoundError: If the schedule is not registered.
        """
        schedule = self.get_schedule(schedule_id)
        job = self._create_job(schedule, {**schedule.parameters, **(parameters or {})}, triggered_by, self._clock())
        return await self._execute_job(schedule, job)

    def _create_job(
        self,
        schedule: ScheduleDefinition,
        parameters: dict[str, Any],
        triggered_by: str,
        scheduled_at: datetime,
    ) -> JobInstance:
        job = JobInstance(
            instance_id=str(uuid4()),
            schedule_id=schedule.id,
            status=JobStatus.RUNNING,
            scheduled_at=scheduled_at,
            triggered_by=triggered_by,
            parameters=parameters,
        )
        self._jobs[job.instance_id] = job
        log.info("Job {} of schedule '{}' fired (triggered by {})", job.instance_id, schedule.id, triggered_by)
        return job

    async def _run_job_safely(self, schedule: ScheduleDefinition, job: JobInstance) -> JobInstance:
        try:
            return await self._execute_job(schedule, job)
        except Exception:  # noqa: BLE001
            log.opt(exception=True).error("Job {} of schedule '{}' crashed", job.instance_id, schedule.id)
            return job

    async def _execute_job(self, schedule: ScheduleDefinition, job: JobInstance) -> JobInstance:
        job.started_at = self._clock()

        if self._executor is None:
            job.result = {}
            job.status = JobStatus.COMPLETED
            job.completed_at = self._clock()
            return job

        max_attempts = max(0, schedule.max_retries) + 1
        last_error: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            job.attempt = attempt
            try:
                outcome = self._executor(schedule, job)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                job.error = str(exc)
                log.warning(
                    "Job {} of schedule '{}' failed (attempt {}/{}): {}",
                    job.instance_id,
                    schedule.id,
                    attempt,
                    max_attempts,
                    exc,
                )
                if attempt < max_attempts:
                    delay_ms = backoff_delay(schedule.retry_delay_ms, JOB_BACKOFF_MULTIPLIER, attempt)
                    await self._sleep(delay_ms / 1000)
                continue

            if isinstance(outcome, Mapping):
                pipeline_instance_id = outcome.get("pipeline_instance_id") or outcome.get("pipelineInstanceId")
                if pipeline_instance_id:
                    job.pipeline_instance_id = pipeline_instance_id
            job.result = outcome
            job.error = None
            job.status = JobStatus.COMPLETED
            job.completed_at = self._clock()
            log.info("Job {} of schedule '{}' completed", job.instance_id, schedule.id)
            await self.hooks.emit(LifecycleEvent.JOB_COMPLETED, job)
            return job

        job.status = JobStatus.FAILED
        job.completed_at = self._clock()
        error = JobExecutionError(schedule.id, job.instance_id, job.error or "Unknown error", attempts=max_attempts)
        error.__cause__ = last_error
        log.error("Job {} of schedule '{}' failed after {} attempt(s)", job.instance_id, schedule.id, max_attempts)
        await self.hooks.emit(LifecycleEvent.JOB_FAILED, job, error)
        return job

    # Queries

    def get_job(self, job_id: str) -> JobInstance | None:
        return self._jobs.get(job_id)

    def get_jobs_by_schedule(self, schedule_id: str) -> list[JobInstance]:
        return [job for job in self._jobs.values() if job.schedule_id == schedule_id]

    def get_jobs_by_status(self, status: JobStatus | str) -> list[JobInstance]:
        return [job for job in self._jobs.values() if job.status == status]

    def get_last_job(self, schedule_id: str) -> JobInstance | None:
        """Most recently created job of a schedule."""
        return next((job for job in reversed(self._jobs.values()) if job.schedule_id == schedule_id), None)

    def get_job_history(self, schedule_id: str | None = None, limit: int = 100) -> list[JobInstance]:
        """Jobs newest first, optionally for one schedule."""
        jobs = list(reversed(self._jobs.values()))
        if schedule_id is not None:
            jobs = [job for job in jobs if job.schedule_id == schedule_id]
        return jobs[:limit]

    @property
    def schedule_count(self) -> int:
        return len(self._schedules)

    @property
    def active_schedule_count(self) -> int:
        return sum(1 for schedule in self._schedules.values() if schedule.enabled)

    @property
    def running_job_count(self) -> int:
        return len(self.get_jobs_by_status(JobStatus.RUNNING))

    def _jobs_on(self, day: date) -> list[JobInstance]:
        return [job for job in self._jobs.values() if _as_utc(job.scheduled_at).astimezone(timezone.utc).date() == day]

    def _today(self) -> date:
        return _as_utc(self._clock()).astimezone(timezone.utc).date()

    @property
    def jobs_today(self) -> int:
        return len(self._jobs_on(self._today()))

    @property
    def successful_jobs_today(self) -> int:
        return sum(1 for job in self._jobs_on(self._today()) if job.status == JobStatus.COMPLETED)

    @property
    def failed_jobs_today(self) -> int:
        return sum(1 for job in self._jobs_on(self._today()) if job.status == JobStatus.FAILED)
