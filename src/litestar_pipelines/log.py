"""Logging helpers built on loguru.

The library only binds component names onto loguru's global logger; sinks are
left to the application unless :func:`configure_logging` is called.
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, Any

from loguru import logger

if TYPE_CHECKING:
    from loguru import Logger

__all__ = ["LOG_FORMAT", "configure_logging", "get_logger"]

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> | "
    "<level>{message}</level>"
)
"""Default format used by :func:`configure_logging`."""


def get_logger(component: str, **extra: Any) -> Logger:
    """Return the loguru logger bound to a component name.

    Args:
        component: Short name of the emitting component, e.g. ``engine``.
        **extra: Additional values to bind onto every record.

    Returns:
        A bound loguru logger.
    """
    return logger.bind(component=component, **extra)


def configure_logging(level: str = "INFO", sink: Any = None, fmt: str = LOG_FORMAT) -> int:
    """Install a loguru sink for litestar-pipelines records.

    Records without a ``component`` value are given ``-`` so the format never
    fails on messages logged by other libraries.

    Args:
        level: Minimum level to emit.
        sink: Any loguru sink. Defaults to ``sys.stderr``.
        fmt: Format string for the sink.

    Returns:
        The loguru handler id, usable with ``logger.remove``.
    """
    logger.configure(extra={"component": "-"})
    return logger.add(sink or sys.stderr, level=level, format=fmt, enqueue=False)
