"""Pydantic schemas for API validation, plus step payload JSON Schemas."""

from .project import (
    ProjectCreate,
    GenerationRequest,
    ProjectResponse,
    StepOutcomeResponse,
    TokenUsage,
)
from .job import JobResponse
from .telemetry import TelemetrySummaryResponse, HealthReportResponse
from .step_payloads import ANALYSIS_SCHEMA, VISUALIZATION_SCHEMA, STEP_SCHEMAS

__all__ = [
    "ProjectCreate",
    "GenerationRequest",
    "ProjectResponse",
    "StepOutcomeResponse",
    "TokenUsage",
    "JobResponse",
    "TelemetrySummaryResponse",
    "HealthReportResponse",
    "ANALYSIS_SCHEMA",
    "VISUALIZATION_SCHEMA",
    "STEP_SCHEMAS",
]
