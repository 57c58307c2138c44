"""Telemetry repository: append and windowed reads."""

from datetime import datetime
from typing import List, Optional

from ..models import TelemetryRecord
from ..exceptions import VizException, ErrorCode
from .base import BaseRepository


class TelemetryNotFoundError(VizException):
    def __init__(self, record_id: str):
        super().__init__(f"Telemetry record not found: {record_id}", ErrorCode.INTERNAL_ERROR, status_code=404)


class TelemetryRepository(BaseRepository[TelemetryRecord]):
    model_class = TelemetryRecord
    not_found_error = TelemetryNotFoundError

    def add(self, record: TelemetryRecord) -> TelemetryRecord:
        self.db.add(record)
        self.commit("write telemetry")
        return record

    def list_between(
        self,
        since: datetime,
        until: datetime,
        project_id: Optional[str] = None,
    ) -> List[TelemetryRecord]:
        query = self.db.query(TelemetryRecord).filter(
            TelemetryRecord.recorded_at >= since,
            TelemetryRecord.recorded_at <= until,
        )
        if project_id:
            query = query.filter(TelemetryRecord.project_id == project_id)
        return query.order_by(TelemetryRecord.recorded_at.asc()).all()
