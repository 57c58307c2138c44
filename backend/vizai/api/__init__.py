"""API routes."""

from .projects import router as projects_router
from .jobs import router as jobs_router
from .telemetry import router as telemetry_router

__all__ = [
    "projects_router",
    "jobs_router",
    "telemetry_router",
]
