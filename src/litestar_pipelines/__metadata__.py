"""Distribution metadata of litestar-pipelines, read from the installed package."""

from __future__ import annotations

import importlib.metadata

__all__ = ("__project__", "__version__")

_DISTRIBUTION = "litestar-pipelines"

__version__ = importlib.metadata.version(_DISTRIBUTION)
"""Installed version."""
__project__ = importlib.metadata.metadata(_DISTRIBUTION)["Name"]
"""Distribution name."""
