"""Data access layer."""

from .job_repository import JobRepository
from .project_repository import ProjectRepository, ContextRepository
from .rate_limit_repository import RateLimitRepository
from .telemetry_repository import TelemetryRepository

__all__ = [
    "JobRepository",
    "ProjectRepository",
    "ContextRepository",
    "RateLimitRepository",
    "TelemetryRepository",
]
