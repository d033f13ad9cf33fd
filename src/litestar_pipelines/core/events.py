"""Lifecycle callbacks for pipelines and jobs.

Each lifecycle event keeps an ordered list of subscribers. Subscribers run in
registration order; async subscribers are awaited. A subscriber that raises
is logged and skipped: callbacks can never corrupt engine state or turn a
successful execution into a failed one.

Pass ``replace=True`` when registering to get the single-slot behaviour where
the last registration wins.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from typing import Any

from litestar_pipelines.core.types import StrEnum
from litestar_pipelines.log import get_logger

__all__ = ["LifecycleEvent", "LifecycleHooks"]

log = get_logger("events")

Callback = Callable[..., Any]


class LifecycleEvent(StrEnum):
    """Lifecycle events and the arguments their subscribers receive.

    Attributes:
        PIPELINE_COMPLETED: ``(instance)``
        PIPELINE_FAILED: ``(instance, error)``
        STAGE_COMPLETED: ``(instance, stage_id)``
        JOB_COMPLETED: ``(job)``
        JOB_FAILED: ``(job, error)``
    """

    PIPELINE_COMPLETED = "pipeline_completed"
    PIPELINE_FAILED = "pipeline_failed"
    STAGE_COMPLETED = "stage_completed"
    JOB_COMPLETED = "job_completed"
    JOB_FAILED = "job_failed"


class LifecycleHooks:
    """Ordered subscriber lists keyed by lifecycle event."""

    def __init__(self) -> None:
        self._subscribers: dict[LifecycleEvent, list[Callback]] = {event: [] for event in LifecycleEvent}

    def subscribe(self, event: LifecycleEvent | str, callback: Callback, *, replace: bool = False) -> Callable[[], None]:
        """Register ``callback`` for ``event``.

        Args:
            event: The lifecycle event.
            callback: Sync or async callable.
            replace: Drop every previous subscriber of the event first.

        Returns:
            A function that removes this subscription.
        """
        subscribers = self._subscribers[LifecycleEvent(event)]
        if replace:
            subscribers.clear()
        subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in subscribers:
                subscribers.remove(callback)

        return unsubscribe

    def subscribers(self, event: LifecycleEvent | str) -> list[Callback]:
        return list(self._subscribers[LifecycleEvent(event)])

    def clear(self) -> None:
        for subscribers in self._subscribers.values():
            subscribers.clear()

    async def emit(self, event: LifecycleEvent | str, *args: Any) -> None:
        """Invoke every subscriber of ``event`` with ``args``."""
        for callback in self.subscribers(event):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # noqa: BLE001
                log.opt(exception=True).warning("Callback {!r} for '{}' raised; ignoring", callback, event)
