"""Exception hierarchy for litestar-pipelines."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from litestar_pipelines.engine.validation import ValidationResult

__all__ = (
    "CronParseError",
    "InstanceNotFoundError",
    "InvalidTimezoneError",
    "JobExecutionError",
    "MissingParameterError",
    "NoMatchError",
    "NotFoundError",
    "PipelineExecutionError",
    "PipelinesError",
    "ScheduleNotFoundError",
    "StageExecutionError",
    "ValidationError",
    "WorkflowNotFoundError",
)


class PipelinesError(Exception):
    """Base exception for all litestar-pipelines errors.

    All exceptions raised by litestar-pipelines inherit from this class, so
    callers can catch every orchestration error with a single except clause.
    """


class ValidationError(PipelinesError):
    """Raised when a workflow definition fails structural validation.

    Raised at registration time only, never while executing an instance.

    Attributes:
        workflow_id: Identifier of the rejected definition.
        result: The full validation result, including warnings.
    """

    def __init__(self, workflow_id: str, result: ValidationResult) -> None:
        """Initialize the exception with the validation outcome.

        Args:
            workflow_id: Identifier of the rejected definition.
            result: The validation result that caused the rejection.
        """
        self.workflow_id = workflow_id
        self.result = result
        super().__init__(f"Workflow '{workflow_id}' is invalid: {'; '.join(result.errors)}")

    @property
    def errors(self) -> list[str]:
        """Validation error messages."""
        return self.result.errors


class NotFoundError(PipelinesError):
    """Raised when an execute, trigger or lookup references an unknown id.

    Attributes:
        kind: What was looked up (``workflow``, ``schedule``, ``instance``...).
        identifier: The identifier that was not found.
    """

    kind = "object"

    def __init__(self, identifier: str) -> None:
        """Initialize the exception with the missing identifier.

        Args:
            identifier: The identifier that was not found.
        """
        self.identifier = identifier
        super().__init__(f"{self.kind.capitalize()} '{identifier}' not found")


class WorkflowNotFoundError(NotFoundError):
    """Raised when a workflow definition is not registered."""

    kind = "workflow"


class ScheduleNotFoundError(NotFoundError):
    """Raised when a schedule is not registered."""

    kind = "schedule"


class InstanceNotFoundError(NotFoundError):
    """Raised when a pipeline instance or job instance does not exist."""

    kind = "instance"


class MissingParameterError(PipelinesError):
    """Raised when a required parameter has neither a value nor a default.

    Attributes:
        workflow_id: The workflow being executed.
        name: Name of the missing parameter.
    """

    def __init__(self, workflow_id: str, name: str) -> None:
        """Initialize the exception with parameter details.

        Args:
            workflow_id: The workflow being executed.
            name: Name of the missing parameter.
        """
        self.workflow_id = workflow_id
        self.name = name
        super().__init__(f"Required parameter '{name}' not provided for workflow '{workflow_id}'")


class StageExecutionError(PipelinesError):
    """Raised when a stage handler fails after exhausting its retry budget.

    Attributes:
        stage_id: The stage that failed.
        attempts: How many times the handler was invoked.
        cause: The exception raised by the last attempt.
    """

    def __init__(self, stage_id: str, cause: BaseException | None = None, attempts: int = 1) -> None:
        """Initialize the exception with stage execution details.

        Args:
            stage_id: The stage that failed.
            cause: The underlying exception, if any.
            attempts: Number of attempts made.
        """
        self.stage_id = stage_id
        self.cause = cause
        self.attempts = attempts
        msg = f"Stage '{stage_id}' failed"
        if cause:
            msg += f": {cause}"
        super().__init__(msg)

    @property
    def reason(self) -> str:
        """Message of the underlying failure."""
        return str(self.cause) if self.cause else "Unknown error"


class PipelineExecutionError(PipelinesError):
    """Fatal propagation of a fail-fast stage failure to the instance level.

    Attributes:
        instance_id: The pipeline instance that failed.
        stage_id: The stage whose failure aborted the instance, if known.
    """

    def __init__(self, instance_id: str, message: str, stage_id: str | None = None) -> None:
        """Initialize the exception with instance details.

        Args:
            instance_id: The pipeline instance that failed.
            message: Description of the failure.
            stage_id: The stage whose failure aborted the instance.
        """
        self.instance_id = instance_id
        self.stage_id = stage_id
        self.message = message
        super().__init__(f"Pipeline instance '{instance_id}' failed: {message}")


class JobExecutionError(PipelinesError):
    """Raised when a job executor call fails after exhausting schedule retries.

    Attributes:
        schedule_id: The schedule the job belongs to.
        job_id: The job instance identifier.
        attempts: Number of attempts made.
    """

    def __init__(self, schedule_id: str, job_id: str, message: str, attempts: int = 1) -> None:
        """Initialize the exception with job details.

        Args:
            schedule_id: The schedule the job belongs to.
            job_id: The job instance identifier.
            message: Message of the last failure.
            attempts: Number of attempts made.
        """
        self.schedule_id = schedule_id
        self.job_id = job_id
        self.message = message
        self.attempts = attempts
        super().__init__(f"Job '{job_id}' of schedule '{schedule_id}' failed after {attempts} attempt(s): {message}")


class CronParseError(PipelinesError, ValueError):
    """Raised when a cron expression is malformed.

    Attributes:
        expression: The offending expression.
        reason: What is wrong with it.
    """

    def __init__(self, expression: str, reason: str) -> None:
        """Initialize the exception with parse details.

        Args:
            expression: The offending expression.
            reason: What is wrong with it.
        """
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid cron expression '{expression}': {reason}")


class NoMatchError(PipelinesError):
    """Raised when a cron schedule has no occurrence within the search horizon."""

    def __init__(self, expression: str | None = None) -> None:
        """Initialize the exception.

        Args:
            expression: The cron expression searched, if known.
        """
        self.expression = expression
        msg = "No cron match found within 1 year"
        if expression:
            msg += f" for '{expression}'"
        super().__init__(msg)



class InvalidTimezoneError(PipelinesError, ValueError):
    """Raised when a schedule names a timezone that is not a known IANA key.

    Attributes:
        schedule_id: The schedule being registered.
        timezone: The unknown timezone name.
    """

    def __init__(self, schedule_id: str, timezone: str) -> None:
        self.schedule_id = schedule_id
        self.timezone = timezone
        super().__init__(f"Schedule '{schedule_id}' has unknown timezone '{timezone}'")
