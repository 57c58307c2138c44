"""Telemetry model: append-only per-run step log and summary."""

from sqlalchemy import Column, String, Integer, JSON, Index
from ..database import Base, UTCDateTime, utcnow


class TelemetryRecord(Base):
    """
    One flushed invocation of a project's pipeline.

    Written once by TelemetryCollector.flush(), never updated. Read only by
    aggregation (health report), never by control flow.
    """

    __tablename__ = "telemetry"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(50), nullable=False)
    events = Column(JSON, nullable=False, default=list)
    summary = Column(JSON, nullable=False, default=dict)
    recorded_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_telemetry_recorded_at", "recorded_at"),
    )
