"""Durable job queue and scheduler for pipeline steps."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from ..database import utcnow
from ..models import Job, JobStatus
from ..repositories import JobRepository
from .failure_classifier import FailureKind, classify
from .recovery_policy import RecoveryAction, RecoveryDecision, RecoveryPolicyTable

logger = logging.getLogger(__name__)

# Stored error text is clipped to this many characters.
MAX_ERROR_CHARS = 2000

# Due candidates examined per claim; losers of a race move on to the next.
CLAIM_CANDIDATES = 5


@dataclass(frozen=True)
class JobOutcome:
    """Result of running a job's step. ``error`` is None on success."""

    error: Optional[BaseException] = None
    kind: Optional[FailureKind] = None

    @property
    def success(self) -> bool:
        return self.error is None and self.kind is None


class JobQueue:
    """
    Owns the lifecycle of job rows.

    Jobs move pending -> running -> completed, back to pending for a retry,
    or to failed once the recovery policy escalates. Every status change goes
    through ``JobRepository.update_if`` so two workers polling at the same
    time can never both run a job, and a late writer never overwrites a
    transition someone else already made.
    """

    def __init__(self, db: Session, policy: RecoveryPolicyTable, max_attempts: int = 3):
        self.db = db
        self.repo = JobRepository(db)
        self.policy = policy
        self.max_attempts = max_attempts

    def enqueue(
        self,
        project_id: str,
        function_name: str,
        now: Optional[datetime] = None,
        delay_seconds: float = 0,
    ) -> Job:
        """
        Create a job for a project step, deduplicating active ones.

        If a pending or running job already exists for the same project and
        function, it is returned instead of creating a second one.
        """
        existing = self.repo.find_active(project_id, function_name)
        if existing:
            logger.info(f"Job already active for {project_id}/{function_name}: {existing.id}")
            return existing

        now = now or utcnow()
        job = Job(
            id=str(uuid.uuid4()),
            project_id=project_id,
            function_name=function_name,
            status=JobStatus.PENDING.value,
            attempts=0,
            max_attempts=self.max_attempts,
            scheduled_at=now + timedelta(seconds=delay_seconds),
            created_at=now,
        )
        self.repo.create(job)
        logger.info(
            f"Enqueued job {job.id} ({function_name}) for project {project_id}",
            extra={"job_id": job.id, "project_id": project_id},
        )
        return job

    def get(self, job_id: str) -> Job:
        return self.repo.get_by_id(job_id)

    def claim(self, job_id: str, now: Optional[datetime] = None, require_due: bool = True) -> Optional[Job]:
        """Claim one specific job. Returns None if it is not pending (or not yet due)."""
        now = now or utcnow()
        job = self.repo.get_by_id_optional(job_id)
        if job is None or job.status != JobStatus.PENDING.value:
            return None
        if require_due and job.scheduled_at > now:
            return None
        if not self.repo.update_if(job_id, JobStatus.PENDING.value, JobStatus.RUNNING.value, started_at=now):
            return None
        logger.info(f"Claimed job {job_id}", extra={"job_id": job_id})
        return self.repo.get_by_id(job_id)

    def claim_next_due(self, now: Optional[datetime] = None) -> Optional[Job]:
        """Claim the oldest due pending job, or None if there is none left to win."""
        now = now or utcnow()
        for job_id in self.repo.due_candidate_ids(now, limit=CLAIM_CANDIDATES):
            if self.repo.update_if(job_id, JobStatus.PENDING.value, JobStatus.RUNNING.value, started_at=now):
                logger.info(f"Claimed job {job_id}", extra={"job_id": job_id})
                return self.repo.get_by_id(job_id)
            logger.debug(f"Job {job_id} was claimed by another worker")
        return None

    def complete(
        self,
        job: Job,
        outcome: JobOutcome,
        now: Optional[datetime] = None,
    ) -> Optional[RecoveryDecision]:
        """
        Record the outcome of a claimed job.

        Success marks it completed. A failure is classified, the recovery
        policy decides, and the job is rescheduled or failed accordingly.

        Returns:
            The recovery decision for a failure, None for success. Also None
            if the job was no longer running (another actor moved it).
        """
        now = now or utcnow()
        if outcome.success:
            won = self.repo.update_if(job.id, JobStatus.RUNNING.value, JobStatus.COMPLETED.value, completed_at=now)
            if won:
                logger.info(f"Job {job.id} completed", extra={"job_id": job.id})
            else:
                logger.warning(f"Job {job.id} was no longer running at completion")
            return None

        kind = outcome.kind or classify(outcome.error)
        decision = self.policy.policy_for(
            kind, job.attempts or 0, job.max_attempts, now,
            window_reset_at=getattr(outcome.error, "retry_at", None),
        )
        message = str(outcome.error) if outcome.error is not None else kind.value
        if not self._apply(job, decision, JobStatus.RUNNING.value, message, now):
            return None
        return decision

    def requeue_stale(self, now: Optional[datetime], older_than_seconds: float) -> List[Tuple[Job, RecoveryDecision]]:
        """
        Recover running jobs abandoned by a killed invocation.

        A job still running after the invocation wall clock was cut off
        mid-call, which is a generation timeout from the policy's point of view.
        """
        now = now or utcnow()
        recovered = []
        for job in self.repo.stale_running(now - timedelta(seconds=older_than_seconds)):
            decision = self.policy.policy_for(
                FailureKind.GENERATION_TIMEOUT, job.attempts or 0, job.max_attempts, now
            )
            if self._apply(job, decision, JobStatus.RUNNING.value, "invocation abandoned while running", now):
                recovered.append((job, decision))
        if recovered:
            logger.warning(f"Recovered {len(recovered)} stale running job(s)")
        return recovered

    def _apply(self, job: Job, decision: RecoveryDecision, expected: str, message: str, now: datetime) -> bool:
        error_text = message[:MAX_ERROR_CHARS]
        job_id, attempts, max_attempts = job.id, job.attempts or 0, job.max_attempts

        if decision.action == RecoveryAction.ESCALATE:
            won = self.repo.update_if(
                job_id, expected, JobStatus.FAILED.value,
                attempts=max_attempts,
                last_error=error_text,
                last_failure_kind=decision.kind.value,
                completed_at=now,
            )
            if won:
                logger.warning(
                    f"Job {job_id} failed permanently: {error_text[:200]}",
                    extra={"job_id": job_id, "kind": decision.kind.value, "action": decision.action.value},
                )
        elif decision.action == RecoveryAction.FALLBACK:
            # The step continued on a fallback payload, so the job itself succeeded.
            won = self.repo.update_if(
                job_id, expected, JobStatus.COMPLETED.value,
                last_error=error_text,
                last_failure_kind=decision.kind.value,
                completed_at=now,
            )
        else:
            new_attempts = attempts + 1 if decision.consumes_attempt else attempts
            won = self.repo.update_if(
                job_id, expected, JobStatus.PENDING.value,
                attempts=new_attempts,
                scheduled_at=decision.retry_at or now,
                last_error=error_text,
                last_failure_kind=decision.kind.value,
                started_at=None,
            )
            if won:
                logger.info(
                    f"Job {job_id} rescheduled for {decision.retry_at} ({decision.reason})",
                    extra={"job_id": job_id, "kind": decision.kind.value, "action": decision.action.value,
                           "attempts": new_attempts},
                )

        if not won:
            logger.warning(f"Job {job_id} changed status concurrently; outcome dropped")
        return won

    def list_for_project(self, project_id: str, limit: int = 20) -> List[Job]:
        return self.repo.list_for_project(project_id, limit)

    def list_recent(self, status: Optional[str] = None, limit: int = 20) -> List[Job]:
        return self.repo.list_recent(status, limit)
