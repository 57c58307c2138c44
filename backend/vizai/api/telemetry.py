"""Health/metrics export: pull interface for an external alerting process."""

from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..core.config import settings
from ..database import get_db, utcnow
from ..exceptions import ValidationError
from ..schemas.telemetry import HealthReportResponse, TelemetrySummaryResponse
from ..services import TelemetryService

router = APIRouter(prefix="/api/telemetry", tags=["telemetry"])


def _window(since: Optional[datetime], until: Optional[datetime], hours: int) -> tuple:
    until = until or utcnow()
    since = since or until - timedelta(hours=hours)
    if since.tzinfo is None or until.tzinfo is None:
        raise ValidationError("Window bounds must include a timezone offset", field="since")
    if since > until:
        raise ValidationError("'since' must not be after 'until'", field="since")
    return since, until


@router.get("/summaries", response_model=List[TelemetrySummaryResponse])
def list_summaries(
    since: Optional[datetime] = Query(None),
    until: Optional[datetime] = Query(None),
    hours: int = Query(24, ge=1, le=24 * 31),
    project_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """Flushed run summaries in a window (default: the last 24 hours)."""
    since, until = _window(since, until, hours)
    return TelemetryService(db).summaries(since, until, project_id)


@router.get("/health", response_model=HealthReportResponse)
def health_report(
    since: Optional[datetime] = Query(None),
    until: Optional[datetime] = Query(None),
    hours: int = Query(24, ge=1, le=24 * 31),
    db: Session = Depends(get_db),
):
    """Success rate, latency percentiles and spend, with breached thresholds listed."""
    since, until = _window(since, until, hours)
    return TelemetryService(db).health_report(
        since,
        until,
        min_success_rate=settings.health_min_success_rate,
        max_avg_duration_seconds=settings.health_max_avg_duration_seconds,
    )
