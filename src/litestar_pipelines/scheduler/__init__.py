"""Trigger scheduling: cron evaluation, schedule models and the job scheduler."""

from __future__ import annotations

from litestar_pipelines.scheduler.cron import CronSchedule, matches, next_occurrence, parse_cron_expression
from litestar_pipelines.scheduler.models import JobInstance, ScheduleDefinition, ScheduleDependency, ScheduleTrigger
from litestar_pipelines.scheduler.scheduler import JobScheduler

__all__ = [
    "CronSchedule",
    "JobInstance",
    "JobScheduler",
    "ScheduleDefinition",
    "ScheduleDependency",
    "ScheduleTrigger",
    "matches",
    "next_occurrence",
    "parse_cron_expression",
]
