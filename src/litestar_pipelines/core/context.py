"""Stage execution context.

This module provides the StageExecutionContext dataclass handed to every
stage handler invocation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from litestar_pipelines.core.models import PipelineCheckpoint

__all__ = ["StageExecutionContext"]


@dataclass
class StageExecutionContext:
    """Context passed to a stage handler.

    A fresh context is built for each stage; ``metadata`` is scratch space the
    handler may use freely across its own retry attempts.

    Attributes:
        workflow_id: Identifier of the workflow definition.
        instance_id: Identifier of the running pipeline instance.
        stage_id: Identifier of the executing stage.
        stage_name: Name of the executing stage.
        parameters: Resolved workflow parameters.
        metadata: Scratch metadata, empty at stage start.
        checkpoint: The instance's last checkpoint, if any.
        attempt: Current attempt number, starting at 1.

    Example:
        >>> async def extract(config, rows, context):
        ...     context.set("cursor", 42)
        ...     day = context.parameters["date"]
        ...     return StageResult(rows=fetch(day))
    """

    workflow_id: str
    instance_id: str
    stage_id: str
    stage_name: str
    parameters: dict[str, Any]
    metadata: dict[str, Any] = field(default_factory=dict)
    checkpoint: PipelineCheckpoint | None = None
    attempt: int = 1

    def get(self, key: str, default: Any = None) -> Any:
        """Retrieve a value from the scratch metadata."""
        return self.metadata.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set a value in the scratch metadata."""
        self.metadata[key] = value
