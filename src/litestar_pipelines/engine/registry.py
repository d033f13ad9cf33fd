"""Pipeline registry for workflow definitions and stage handlers.

This module provides the registry the engine reads from: validated workflow
definitions keyed by id, and stage handlers keyed by stage type tag.
"""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING

from litestar_pipelines.engine.validation import PipelineValidator, ValidationResult
from litestar_pipelines.exceptions import ValidationError, WorkflowNotFoundError
from litestar_pipelines.log import get_logger

if TYPE_CHECKING:
    from litestar_pipelines.core.definition import WorkflowDefinition
    from litestar_pipelines.core.protocols import StageHandler

__all__ = ["PipelineRegistry"]

log = get_logger("registry")


class PipelineRegistry:
    """Registry for workflow definitions and stage handlers.

    Every mutation is a single dict insert or delete, so the registry can be
    read freely by instances running concurrently on the event loop.

    Attributes:
        validator: Validator applied on registration.
        _definitions: Map of workflow id to its registered definition.
        _handlers: Map of stage type tag to its handler.
    """

    def __init__(self, validator: PipelineValidator | None = None) -> None:
        """Initialize an empty registry.

        Args:
            validator: Optional validator; a default PipelineValidator otherwise.
        """
        self.validator = validator or PipelineValidator()
        self._definitions: dict[str, WorkflowDefinition] = {}
        self._handlers: dict[str, StageHandler] = {}

    def validate(self, definition: WorkflowDefinition) -> ValidationResult:
        """Validate a definition without registering it."""
        return self.validator.validate(definition)

    def register(self, definition: WorkflowDefinition) -> ValidationResult:
        """Validate and register a workflow definition.

        A definition with the same id is replaced wholesale. The registry
        keeps its own deep copy, so later changes to the caller's object do
        not leak into running or future instances.

        Args:
            definition: The workflow definition to register.

        Returns:
            The validation result, which may carry warnings.

        Raises:
            ValidationError: If the definition is structurally invalid. The
                registry is left unchanged.

        Example:
            >>> registry = PipelineRegistry()
            >>> registry.register(orders_definition)
        """
        result = self.validator.validate(definition)
        if not result.valid:
            log.warning("Rejected workflow '{}': {}", definition.id, "; ".join(result.errors))
            raise ValidationError(definition.id, result)

        for warning in result.warnings:
            log.warning("Workflow '{}': {}", definition.id, warning)

        self._definitions[definition.id] = copy.deepcopy(definition)
        log.debug("Registered workflow '{}' version {}", definition.id, definition.version)
        return result

    def unregister(self, workflow_id: str) -> None:
        """Remove a workflow definition. Unknown ids are ignored."""
        self._definitions.pop(workflow_id, None)

    def get_definition(self, workflow_id: str) -> WorkflowDefinition:
        """Retrieve a registered workflow definition.

        Raises:
            WorkflowNotFoundError: If the id is not registered.
        """
        try:
            return self._definitions[workflow_id]
        except KeyError:
            raise WorkflowNotFoundError(workflow_id) from None

    def has_workflow(self, workflow_id: str) -> bool:
        return workflow_id in self._definitions

    def list_definitions(self) -> list[WorkflowDefinition]:
        """All registered workflow definitions, in registration order."""
        return list(self._definitions.values())

    def register_stage_handler(self, stage_type: str, handler: StageHandler) -> None:
        """Register the handler for a stage type; replaces any previous one.

        Example:
            >>> registry.register_stage_handler("extract", extract_rows)
        """
        self._handlers[stage_type] = handler
        log.debug("Registered stage handler for type '{}'", stage_type)

    def unregister_stage_handler(self, stage_type: str) -> None:
        self._handlers.pop(stage_type, None)

    def get_stage_handler(self, stage_type: str) -> StageHandler | None:
        """Handler for ``stage_type``, or None to use the pass-through default."""
        return self._handlers.get(stage_type)

    @property
    def stage_types(self) -> list[str]:
        return list(self._handlers)

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, workflow_id: object) -> bool:
        return workflow_id in self._definitions
