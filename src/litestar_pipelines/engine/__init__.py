"""Pipeline execution engine.

This module provides DAG validation, the stage graph, the registry of
definitions and stage handlers, and the local engine that executes pipeline
instances.
"""

from __future__ import annotations

from litestar_pipelines.engine.graph import PipelineGraph
from litestar_pipelines.engine.local import LocalPipelineEngine
from litestar_pipelines.engine.registry import PipelineRegistry
from litestar_pipelines.engine.stage import StageExecutor
from litestar_pipelines.engine.validation import PipelineValidator, ValidationResult

__all__ = [
    "LocalPipelineEngine",
    "PipelineGraph",
    "PipelineRegistry",
    "PipelineValidator",
    "StageExecutor",
    "ValidationResult",
]
