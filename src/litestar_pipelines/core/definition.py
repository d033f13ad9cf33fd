"""Workflow and stage definition structures.

This module provides the declarative building blocks of a pipeline: stage
definitions connected by dependencies, parameter declarations, retry policies
and error-handling policies. Definitions are templates; runtime state lives
in :mod:`litestar_pipelines.core.models`.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from litestar_pipelines.core.types import ErrorStrategy, ExecutionMode, ParameterType

__all__ = [
    "NO_DEFAULT",
    "ErrorHandling",
    "ParameterDefinition",
    "RetryPolicy",
    "StageDefinition",
    "WorkflowDefinition",
    "backoff_delay",
]


class _NoDefault:
    """Sentinel type marking a parameter without a default value."""

    _instance: _NoDefault | None = None

    def __new__(cls) -> _NoDefault:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NO_DEFAULT"

    def __bool__(self) -> bool:
        return False

    def __deepcopy__(self, memo: dict[int, Any]) -> _NoDefault:
        return self


NO_DEFAULT: Any = _NoDefault()
"""Marks a parameter that declares no default (``None`` is a valid default)."""


def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the value of the first key present in ``data``."""
    for key in keys:
        if key in data:
            return data[key]
    return default


@dataclass
class RetryPolicy:
    """Per-stage retry policy.

    Attributes:
        max_attempts: Total number of attempts, including the first one.
        delay_ms: Delay before the second attempt, in milliseconds.
        backoff_multiplier: Factor applied to the delay for each further attempt.
    """

    max_attempts: int = 1
    delay_ms: float = 1000
    backoff_multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay in milliseconds to wait after failed attempt ``attempt`` (1-indexed).

        Example:
            >>> RetryPolicy(max_attempts=4, delay_ms=100, backoff_multiplier=3).delay_for(3)
            900
        """
        return backoff_delay(self.delay_ms, self.backoff_multiplier, attempt)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RetryPolicy:
        return cls(
            max_attempts=int(_pick(data, "max_attempts", "maxAttempts", default=1)),
            delay_ms=_pick(data, "delay_ms", "delayMs", default=1000),
            backoff_multiplier=_pick(data, "backoff_multiplier", "backoffMultiplier", default=2.0),
        )


def backoff_delay(base: float, multiplier: float, attempt: int) -> float:
    """Exponential backoff without jitter: ``base * multiplier ** (attempt - 1)``.

    This is the single backoff law used by both stage and job retries.
    """
    return base * multiplier ** (attempt - 1)


@dataclass
class ErrorHandling:
    """Error-handling policy for a workflow or a single stage.

    Attributes:
        strategy: What to do once a stage exhausts its retries.
        max_errors: Informational error budget for handlers.
        retry_attempts: Informational retry count for handlers.
        retry_delay_ms: Informational retry delay for handlers.
        dead_letter_target: Where ``dead-letter`` handlers should route rows.
        error_log_level: Level handlers should log row errors at.
    """

    strategy: ErrorStrategy = ErrorStrategy.FAIL_FAST
    max_errors: int | None = None
    retry_attempts: int | None = None
    retry_delay_ms: float | None = None
    dead_letter_target: str | None = None
    error_log_level: str | None = None

    @property
    def is_fail_fast(self) -> bool:
        return self.strategy == ErrorStrategy.FAIL_FAST

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ErrorHandling:
        return cls(
            strategy=ErrorStrategy(_pick(data, "strategy", default=ErrorStrategy.FAIL_FAST)),
            max_errors=_pick(data, "max_errors", "maxErrors"),
            retry_attempts=_pick(data, "retry_attempts", "retryAttempts"),
            retry_delay_ms=_pick(data, "retry_delay_ms", "retryDelayMs"),
            dead_letter_target=_pick(data, "dead_letter_target", "deadLetterTarget"),
            error_log_level=_pick(data, "error_log_level", "errorLogLevel"),
        )


@dataclass
class ParameterDefinition:
    """A runtime parameter a workflow accepts.

    Attributes:
        name: Parameter name.
        type: Declared type, informational.
        required: Whether execution fails when no value and no default exist.
        default: Default value, or :data:`NO_DEFAULT`.
        description: Human-readable description.
    """

    name: str
    type: ParameterType = ParameterType.STRING
    required: bool = False
    default: Any = NO_DEFAULT
    description: str = ""

    @property
    def has_default(self) -> bool:
        return self.default is not NO_DEFAULT

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ParameterDefinition:
        return cls(
            name=data.get("name", ""),
            type=ParameterType(data.get("type", ParameterType.STRING)),
            required=bool(data.get("required", False)),
            default=_pick(data, "default", "default_value", "defaultValue", default=NO_DEFAULT),
            description=data.get("description", ""),
        )


@dataclass
class StageDefinition:
    """One node in a workflow's DAG.

    Attributes:
        id: Identifier, unique within the workflow.
        name: Human-readable name.
        type: Tag selecting the registered stage handler.
        config: Type-specific configuration passed to the handler untouched.
        dependencies: Ids of stages that must finish before this one starts.
        description: Human-readable description.
        enabled: Disabled stages complete immediately without running.
        retry_policy: Optional retry policy; defaults to a single attempt.
        error_handling: Optional override of the workflow's error policy.
        parallelism: Informational hint for handlers.
        batch_size: Informational hint for handlers.
        timeout_ms: Informational; the engine never aborts a running handler.
        connector_id: Optional connector reference for handlers.

    Example:
        >>> extract = StageDefinition(id="extract", name="Extract", type="extract")
        >>> load = StageDefinition(id="load", name="Load", type="load", dependencies=["extract"])
    """

    id: str
    name: str
    type: str
    config: dict[str, Any] = field(default_factory=dict)
    dependencies: list[str] = field(default_factory=list)
    description: str = ""
    enabled: bool = True
    retry_policy: RetryPolicy | None = None
    error_handling: ErrorHandling | None = None
    parallelism: int | None = None
    batch_size: int | None = None
    timeout_ms: float | None = None
    connector_id: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StageDefinition:
        """Build a stage from a plain mapping.

        Accepts snake_case keys as well as the camelCase keys of exported
        configuration files.
        """
        retry = _pick(data, "retry_policy", "retryPolicy")
        error_handling = _pick(data, "error_handling", "errorHandling")
        stage_id = data.get("id", "")
        return cls(
            id=stage_id,
            name=data.get("name") or stage_id,
            type=data.get("type", "passthrough"),
            config=dict(data.get("config") or {}),
            dependencies=list(_pick(data, "dependencies", "deps", default=None) or []),
            description=data.get("description", ""),
            enabled=bool(data.get("enabled", True)),
            retry_policy=RetryPolicy.from_dict(retry) if isinstance(retry, Mapping) else retry,
            error_handling=(
                ErrorHandling.from_dict(error_handling) if isinstance(error_handling, Mapping) else error_handling
            ),
            parallelism=data.get("parallelism"),
            batch_size=_pick(data, "batch_size", "batchSize"),
            timeout_ms=_pick(data, "timeout_ms", "timeout"),
            connector_id=_pick(data, "connector_id", "connectorId"),
        )


@dataclass
class WorkflowDefinition:
    """Declarative pipeline structure.

    The definition is an immutable template once registered: re-registering
    the same id replaces it wholesale.

    Attributes:
        id: Unique identifier of the workflow.
        name: Human-readable name.
        stages: Stage definitions. Declaration order breaks ordering ties.
        version: Definition version.
        mode: Execution mode, informational.
        description: Human-readable description.
        parameters: Declared runtime parameters.
        error_handling: Workflow-level error policy; ``fail-fast`` when unset.
        parallelism: Upper bound for concurrently running stages when the
            engine is configured for parallel execution.
        batch_size: Informational hint for handlers.
        tags: Free-form labels.
        metadata: Free-form metadata.

    Example:
        >>> definition = WorkflowDefinition(
        ...     id="orders",
        ...     name="Orders ETL",
        ...     stages=[
        ...         StageDefinition(id="extract", name="Extract", type="extract"),
        ...         StageDefinition(id="load", name="Load", type="load", dependencies=["extract"]),
        ...     ],
        ... )
    """

    id: str
    name: str
    stages: list[StageDefinition] = field(default_factory=list)
    version: int = 1
    mode: ExecutionMode = ExecutionMode.BATCH
    description: str = ""
    parameters: list[ParameterDefinition] = field(default_factory=list)
    error_handling: ErrorHandling | None = None
    parallelism: int | None = None
    batch_size: int | None = None
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def stage_ids(self) -> list[str]:
        """Stage ids in declaration order."""
        return [stage.id for stage in self.stages]

    def get_stage(self, stage_id: str) -> StageDefinition:
        """Return the stage with the given id.

        Raises:
            KeyError: If no stage has that id.
        """
        for stage in self.stages:
            if stage.id == stage_id:
                return stage
        msg = f"Stage '{stage_id}' not found in workflow '{self.id}'"
        raise KeyError(msg)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WorkflowDefinition:
        """Build a workflow definition from a plain mapping."""
        error_handling = _pick(data, "error_handling", "errorHandling")
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            stages=[
                stage if isinstance(stage, StageDefinition) else StageDefinition.from_dict(stage)
                for stage in data.get("stages") or []
            ],
            version=data.get("version", 1),
            mode=ExecutionMode(data.get("mode", ExecutionMode.BATCH)),
            description=data.get("description", ""),
            parameters=[
                param if isinstance(param, ParameterDefinition) else ParameterDefinition.from_dict(param)
                for param in data.get("parameters") or []
            ],
            error_handling=(
                ErrorHandling.from_dict(error_handling) if isinstance(error_handling, Mapping) else error_handling
            ),
            parallelism=data.get("parallelism"),
            batch_size=_pick(data, "batch_size", "batchSize"),
            tags=list(data.get("tags") or []),
            metadata=dict(data.get("metadata") or {}),
        )
