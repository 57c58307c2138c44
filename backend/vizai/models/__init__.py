"""Database models."""

from .project import Project, GenerationContext, ProjectPhase, ProjectStatus
from .job import Job, JobStatus, JobFunction
from .rate_limit import RateLimitRecord
from .telemetry import TelemetryRecord

__all__ = [
    "Project", "GenerationContext", "ProjectPhase", "ProjectStatus",
    "Job", "JobStatus", "JobFunction",
    "RateLimitRecord",
    "TelemetryRecord",
]
