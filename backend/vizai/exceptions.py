"""Custom exception hierarchy for VizAI.

Two families share one base class:

- domain errors (missing project, illegal phase change, bad selection) that
  surface to API callers with an HTTP status;
- pipeline errors raised while executing a generation step. These carry an
  explicit ``failure_kind`` so the failure classifier never has to guess.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    PROJECT_NOT_FOUND = "PROJECT_NOT_FOUND"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    INVALID_PHASE_TRANSITION = "INVALID_PHASE_TRANSITION"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Pipeline failures
    RATE_LIMITED = "RATE_LIMITED"
    BUDGET_EXHAUSTED = "BUDGET_EXHAUSTED"
    GENERATION_TIMEOUT = "GENERATION_TIMEOUT"
    STORAGE_TIMEOUT = "STORAGE_TIMEOUT"
    UNPARSEABLE_JSON = "UNPARSEABLE_JSON"
    SCHEMA_INVALID = "SCHEMA_INVALID"
    REPAIR_FAILED = "REPAIR_FAILED"
    PIPELINE_FAILED = "PIPELINE_FAILED"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class VizException(Exception):
    """
    Base exception for all VizAI errors.

    Provides structured error responses with:
    - Human-readable message
    - Machine-readable error code
    - HTTP status code
    - Optional additional details
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        return {
            "error": self.error_code.value,
            "message": self.message,
            "details": self.details
        }


class ProjectNotFoundError(VizException):
    """Project not found in database."""

    def __init__(self, project_id: str):
        super().__init__(
            f"Project not found: {project_id}",
            ErrorCode.PROJECT_NOT_FOUND,
            status_code=404,
            details={"project_id": project_id}
        )


class JobNotFoundError(VizException):
    """Job not found in database."""

    def __init__(self, job_id: str):
        super().__init__(
            f"Job not found: {job_id}",
            ErrorCode.JOB_NOT_FOUND,
            status_code=404,
            details={"job_id": job_id}
        )


class RateLimitNotFoundError(VizException):
    """Rate limit record missing for a user (records are created on first use)."""

    def __init__(self, user_id: str):
        super().__init__(
            f"No rate limit record for user: {user_id}",
            ErrorCode.INTERNAL_ERROR,
            status_code=500,
            details={"user_id": user_id}
        )


class InvalidPhaseTransitionError(VizException):
    """Requested phase change is not an edge of the pipeline state machine."""

    def __init__(self, project_id: str, current: str, requested: str):
        super().__init__(
            f"Project {project_id} cannot move from '{current}' to '{requested}'",
            ErrorCode.INVALID_PHASE_TRANSITION,
            status_code=409,
            details={"project_id": project_id, "current": current, "requested": requested}
        )


class ValidationError(VizException):
    """Validation failed for user input."""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(
            message,
            ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )


# ---------------------------------------------------------------------------
# Pipeline failures
# ---------------------------------------------------------------------------


class PipelineError(VizException):
    """A generation step failed. ``failure_kind`` names the recovery class."""

    failure_kind: str = "UNKNOWN"

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code, status_code=status_code, details=details)


class RateLimitExceededError(PipelineError):
    """The rate/budget guard denied a generation call."""

    def __init__(self, user_id: str, kind: str, retry_at: Optional[datetime] = None):
        self.failure_kind = kind
        self.user_id = user_id
        self.retry_at = retry_at
        budget = kind == "RATE_LIMIT_BUDGET"
        super().__init__(
            f"{'Daily budget exhausted' if budget else 'Requests per minute exceeded'} for user {user_id}",
            ErrorCode.BUDGET_EXHAUSTED if budget else ErrorCode.RATE_LIMITED,
            status_code=429,
            details={
                "user_id": user_id,
                "kind": kind,
                "retry_at": retry_at.isoformat() if retry_at else None,
            },
        )


class GenerationTimeoutError(PipelineError):
    """A generation call exceeded its timeout or its endpoint is unavailable."""

    failure_kind = "GENERATION_TIMEOUT"

    def __init__(self, message: str, timeout_seconds: Optional[float] = None):
        super().__init__(
            message,
            ErrorCode.GENERATION_TIMEOUT,
            status_code=504,
            details={"timeout_seconds": timeout_seconds} if timeout_seconds else {},
        )


class StorageTimeoutError(PipelineError):
    """A durable-store operation timed out."""

    failure_kind = "STORAGE_TIMEOUT"

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        details = {}
        if original_error:
            details["original_error"] = str(original_error)
        super().__init__(message, ErrorCode.STORAGE_TIMEOUT, status_code=503, details=details)


class ResponseValidationError(PipelineError):
    """Structured output could not be turned into a valid payload."""

    failure_kind = "UNPARSEABLE_JSON"

    def __init__(self, message: str, error_code: ErrorCode, errors: Optional[list[str]] = None):
        self.errors = errors or []
        super().__init__(
            message,
            error_code,
            status_code=502,
            details={"errors": self.errors[:10]} if self.errors else {},
        )


class UnparseableResponseError(ResponseValidationError):
    """Response is not structured data even after deterministic repair."""

    def __init__(self, message: str = "Response is not valid JSON after repair"):
        super().__init__(message, ErrorCode.UNPARSEABLE_JSON)


class SchemaInvalidError(ResponseValidationError):
    """Response parsed but violates the schema and no AI repair was available."""

    def __init__(self, errors: list[str]):
        super().__init__("Response does not match schema", ErrorCode.SCHEMA_INVALID, errors)


class RepairFailedError(ResponseValidationError):
    """The single AI-assisted repair still produced an invalid payload."""

    def __init__(self, errors: list[str]):
        super().__init__("AI-assisted repair did not produce a valid payload", ErrorCode.REPAIR_FAILED, errors)


class PermanentPipelineError(PipelineError):
    """Non-recoverable step failure. The project is marked failed."""

    failure_kind = "PERMANENT_FAILURE"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.PIPELINE_FAILED, status_code=500, details=details)
