"""Job model: a schedulable, retryable unit of pipeline work."""

from enum import Enum

from sqlalchemy import Column, String, Text, Integer, ForeignKey, Index
from ..database import Base, UTCDateTime, utcnow


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    FAILED = "failed"
    COMPLETED = "completed"


class JobFunction(str, Enum):
    """Named pipeline functions a job can execute."""
    ANALYZE = "analyze-csv"
    GENERATE = "generate-visualization"


class Job(Base):
    """
    One pipeline step execution bound to a project.

    Status transitions: pending -> running -> completed | pending (retry) | failed
    The pending -> running edge is only ever taken through the conditional
    update in JobRepository.update_if, so two workers cannot both claim it.
    Invariant: attempts <= max_attempts; a failed job has attempts == max_attempts.
    """

    __tablename__ = "jobs"

    id = Column(String(50), primary_key=True)
    project_id = Column(String(50), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    function_name = Column(String(50), nullable=False)

    # Allowed values: pending, running, failed, completed
    status = Column(String(20), nullable=False, default=JobStatus.PENDING.value)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)

    # Earliest time a worker may claim the job
    scheduled_at = Column(UTCDateTime, nullable=False, default=utcnow)
    last_error = Column(Text, nullable=True)
    last_failure_kind = Column(String(30), nullable=False, default="")

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    started_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("idx_jobs_status_scheduled", "status", "scheduled_at"),
        Index("idx_jobs_project_status", "project_id", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED.value, JobStatus.FAILED.value)
