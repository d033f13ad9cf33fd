"""Five-field cron expressions.

Supports ``*``, comma lists, ranges (``a-b``) and steps (``*/s``, ``a/s`` and
``a-b/s``) in each of the minute, hour, day-of-month, month and day-of-week
fields. Day-of-week runs from 0 (Sunday) to 6 (Saturday). A timestamp matches
only when all five fields match; there is no special OR between day-of-month
and day-of-week.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache

from litestar_pipelines.exceptions import CronParseError, NoMatchError

__all__ = [
    "MAX_SEARCH_MINUTES",
    "CronSchedule",
    "matches",
    "next_occurrence",
    "parse_cron_expression",
]

MAX_SEARCH_MINUTES = 525_600
"""Search horizon of :func:`next_occurrence`: one year of minutes."""

# (name, minimum, maximum) per field, in expression order.
_FIELDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day-of-month", 1, 31),
    ("month", 1, 12),
    ("day-of-week", 0, 6),
)


@dataclass(frozen=True)
class CronSchedule:
    """Parsed cron expression as explicit sets of allowed values.

    Attributes:
        minute: Allowed minutes, 0-59.
        hour: Allowed hours, 0-23.
        day_of_month: Allowed days of the month, 1-31.
        month: Allowed months, 1-12.
        day_of_week: Allowed weekdays, 0-6 with 0 = Sunday.
        expression: The source expression.
    """

    minute: frozenset[int]
    hour: frozenset[int]
    day_of_month: frozenset[int]
    month: frozenset[int]
    day_of_week: frozenset[int]
    expression: str = ""

    def matches(self, timestamp: datetime) -> bool:
        return matches(timestamp, self)

    def next_after(self, start: datetime) -> datetime:
        return next_occurrence(self, start)


def _parse_int(expression: str, name: str, token: str) -> int:
    if not (token.isascii() and token.isdigit()):
        raise CronParseError(expression, f"invalid {name} value '{token}'")
    return int(token)


def _parse_field(expression: str, name: str, text: str, low: int, high: int) -> frozenset[int]:
    values: set[int] = set()

    for part in text.split(","):
        if not part:
            raise CronParseError(expression, f"empty list item in {name} field '{text}'")

        step = 1
        range_part = part
        if "/" in part:
            range_part, _, step_text = part.partition("/")
            step = _parse_int(expression, name, step_text)
            if step <= 0:
                raise CronParseError(expression, f"step must be positive in {name} field '{part}'")

        if range_part == "*":
            start, end = low, high
        elif "-" in range_part:
            start_text, _, end_text = range_part.partition("-")
            start = _parse_int(expression, name, start_text)
            end = _parse_int(expression, name, end_text)
            if start > end:
                raise CronParseError(expression, f"reversed range in {name} field '{part}'")
        else:
            start = _parse_int(expression, name, range_part)
            # ``a/s`` runs from ``a`` to the field maximum.
            end = high if "/" in part else start

        if start < low or end > high:
            raise CronParseError(expression, f"{name} value out of range {low}-{high} in '{part}'")

        values.update(range(start, end + 1, step))

    return frozenset(values)


@lru_cache(maxsize=256)
def parse_cron_expression(expression: str) -> CronSchedule:
    """Parse a five-field cron expression.

    Args:
        expression: Whitespace-separated ``minute hour day-of-month month day-of-week``.

    Returns:
        The parsed schedule. Results are cached per expression.

    Raises:
        CronParseError: If the field count is not five or a field is malformed.

    Example:
        >>> schedule = parse_cron_expression("*/15 9-17 * * 1-5")
        >>> sorted(schedule.minute)
        [0, 15, 30, 45]
    """
    parts = expression.split()
    if len(parts) != len(_FIELDS):
        raise CronParseError(expression, f"expected 5 fields, got {len(parts)}")

    minute, hour, day_of_month, month, day_of_week = (
        _parse_field(expression, name, text, low, high) for (name, low, high), text in zip(_FIELDS, parts)
    )
    return CronSchedule(
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month=month,
        day_of_week=day_of_week,
        expression=expression,
    )


def matches(timestamp: datetime, schedule: CronSchedule) -> bool:
    """Whether ``timestamp`` falls on the schedule.

    Fields are read from the timestamp as-is; convert aware datetimes to the
    intended timezone first.
    """
    return (
        timestamp.minute in schedule.minute
        and timestamp.hour in schedule.hour
        and timestamp.day in schedule.day_of_month
        and timestamp.month in schedule.month
        and timestamp.isoweekday() % 7 in schedule.day_of_week
    )


def next_occurrence(schedule: CronSchedule, start: datetime) -> datetime:
    """First matching minute strictly after ``start``.

    Scanning starts at ``start`` plus one minute with seconds and
    microseconds cleared, and stops after one year of minutes.

    Raises:
        NoMatchError: If nothing matches within the horizon, e.g. ``0 0 31 2 *``.

    Example:
        >>> next_occurrence(parse_cron_expression("0 0 1 1 *"), datetime(2024, 6, 15))
        datetime.datetime(2025, 1, 1, 0, 0)
    """
    candidate = (start + timedelta(minutes=1)).replace(second=0, microsecond=0)
    step = timedelta(minutes=1)
    for _ in range(MAX_SEARCH_MINUTES):
        if matches(candidate, schedule):
            return candidate
        candidate += step
    raise NoMatchError(schedule.expression or None)
