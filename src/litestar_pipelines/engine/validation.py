"""Structural validation of workflow definitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from litestar_pipelines.engine.graph import PipelineGraph

if TYPE_CHECKING:
    from litestar_pipelines.core.definition import WorkflowDefinition

__all__ = ["PipelineValidator", "ValidationResult"]


@dataclass
class ValidationResult:
    """Outcome of validating a workflow definition.

    Attributes:
        valid: True when there are no errors. Warnings never invalidate.
        errors: Structural problems that block registration.
        warnings: Advisory findings.
    """

    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.valid


class PipelineValidator:
    """Checks workflow definitions for structural problems.

    Validation is a pure function of the definition. Each problem produces
    its own error message:

    - missing id or name
    - no stages
    - duplicate stage ids
    - a stage depending on itself
    - a dependency on an unknown stage
    - a dependency cycle

    A required parameter without a default is only a warning, since the
    caller may supply it at execution time.

    Example:
        >>> result = PipelineValidator().validate(definition)
        >>> if not result.valid:
        ...     print(result.errors)
    """

    def validate(self, definition: WorkflowDefinition) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []

        if not definition.id:
            errors.append("Workflow must have an ID.")
        if not definition.name:
            errors.append("Workflow must have a name.")
        if not definition.stages:
            errors.append("Workflow must have at least one stage.")

        seen: set[str] = set()
        for stage in definition.stages:
            if not stage.id:
                errors.append("Stage must have an ID.")
            elif stage.id in seen:
                errors.append(f"Duplicate stage ID: '{stage.id}'.")
            seen.add(stage.id)

        for stage in definition.stages:
            for dependency in stage.dependencies:
                if dependency == stage.id:
                    errors.append(f"Stage '{stage.id}' depends on itself.")
                elif dependency not in seen:
                    errors.append(f"Stage '{stage.id}' depends on unknown stage '{dependency}'.")

        # Self-dependencies are already reported above.
        cycle = PipelineGraph(definition).find_cycle(include_self_loops=False)
        if cycle:
            errors.append(f"Workflow has circular dependencies: {' -> '.join(cycle)}.")

        for parameter in definition.parameters:
            if not parameter.name:
                errors.append("Parameter must have a name.")
            elif parameter.required and not parameter.has_default:
                warnings.append(f"Required parameter '{parameter.name}' has no default value.")

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)
