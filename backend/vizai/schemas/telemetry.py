"""Telemetry schemas."""

from pydantic import BaseModel
from datetime import datetime
from typing import Any, Dict, List


class TelemetrySummaryResponse(BaseModel):
    id: int
    project_id: str
    recorded_at: datetime
    summary: Dict[str, Any]


class HealthThresholds(BaseModel):
    min_success_rate: float
    max_avg_duration_seconds: float


class HealthReportResponse(BaseModel):
    """Aggregated pipeline health for a time window. No alerting side effects."""
    window_start: datetime
    window_end: datetime
    runs: int
    success_rate: float
    avg_duration_seconds: float
    p50_duration_seconds: float
    p95_duration_seconds: float
    total_input_tokens: int
    total_output_tokens: int
    total_cost_usd: float
    error_count: int
    thresholds: HealthThresholds
    breached: List[str]
    healthy: bool
