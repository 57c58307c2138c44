"""Job repository: keyed reads plus the one atomic conditional update."""

from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func, update

from ..models import Job, JobStatus
from ..exceptions import JobNotFoundError
from .base import BaseRepository, storage_errors


class JobRepository(BaseRepository[Job]):
    """Repository for job rows.

    ``update_if`` is the only way a job changes status. It is a single
    ``UPDATE ... WHERE id = :id AND status = :expected`` statement, so a
    concurrent worker that already moved the row makes it match zero rows.
    """

    model_class = Job
    not_found_error = JobNotFoundError

    def create(self, job: Job) -> Job:
        self.db.add(job)
        self.commit("create job")
        self.db.refresh(job)
        return job

    def update_if(self, job_id: str, expected_status: str, new_status: str, **fields) -> bool:
        """Compare-and-set on ``status``.

        Args:
            job_id: Job to update.
            expected_status: Status the row must still have.
            new_status: Status to write.
            **fields: Additional column values written in the same statement.

        Returns:
            True if this caller won the update, False if the row was missing
            or another actor changed its status first.
        """
        values = dict(fields)
        values["status"] = new_status
        stmt = (
            update(Job)
            .where(Job.id == job_id, Job.status == expected_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with storage_errors(self.db, "conditional job update"):
            result = self.db.execute(stmt)
            self.db.commit()
        # Drop cached ORM state so the next read sees the new row.
        self.db.expire_all()
        return result.rowcount == 1

    def due_candidate_ids(self, now: datetime, limit: int = 5) -> List[str]:
        """IDs of pending jobs whose scheduled time has passed, oldest first."""
        with storage_errors(self.db, "list due jobs"):
            rows = (
                self.db.query(Job.id)
                .filter(Job.status == JobStatus.PENDING.value, Job.scheduled_at <= now)
                .order_by(Job.scheduled_at.asc(), Job.created_at.asc())
                .limit(limit)
                .all()
            )
        return [row[0] for row in rows]

    def stale_running(self, started_before: datetime) -> List[Job]:
        """Running jobs whose invocation must have been killed."""
        with storage_errors(self.db, "list stale jobs"):
            return (
                self.db.query(Job)
                .filter(Job.status == JobStatus.RUNNING.value, Job.started_at < started_before)
                .all()
            )

    def find_active(self, project_id: str, function_name: str) -> Optional[Job]:
        """A pending or running job for this project step, if any."""
        with storage_errors(self.db, "find active job"):
            return (
                self.db.query(Job)
                .filter(
                    Job.project_id == project_id,
                    Job.function_name == function_name,
                    Job.status.in_([JobStatus.PENDING.value, JobStatus.RUNNING.value]),
                )
                .order_by(Job.created_at.desc())
                .first()
            )

    def list_for_project(self, project_id: str, limit: int = 20) -> List[Job]:
        return (
            self.db.query(Job)
            .filter(Job.project_id == project_id)
            .order_by(Job.created_at.desc())
            .limit(limit)
            .all()
        )

    def list_recent(self, status: Optional[str] = None, limit: int = 20) -> List[Job]:
        query = self.db.query(Job)
        if status:
            query = query.filter(Job.status == status)
        return query.order_by(Job.created_at.desc()).limit(limit).all()

    def count_by_status(self) -> Dict[str, int]:
        with storage_errors(self.db, "count jobs"):
            rows = self.db.query(Job.status, func.count(Job.id)).group_by(Job.status).all()
        return {status: count for status, count in rows}
