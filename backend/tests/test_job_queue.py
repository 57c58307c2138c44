"""Tests for the durable job queue."""

import random
from datetime import datetime, timedelta, timezone

import pytest

from vizai.database import SessionLocal
from vizai.exceptions import GenerationTimeoutError, RateLimitExceededError, StorageTimeoutError
from vizai.models import JobFunction, JobStatus
from vizai.repositories import JobRepository
from vizai.services.failure_classifier import FailureKind
from vizai.services.job_queue import JobOutcome, JobQueue
from vizai.services.rate_budget_guard import RateBudgetGuard
from vizai.services.recovery_policy import RecoveryAction, RecoveryPolicyTable

from conftest import make_project

NOW = datetime(2024, 3, 10, 12, 0, 0, tzinfo=timezone.utc)
ANALYZE = JobFunction.ANALYZE.value


@pytest.fixture()
def queue(db):
    return JobQueue(db, RecoveryPolicyTable(rng=random.Random(5)), max_attempts=3)


@pytest.fixture()
def project_id(orchestrator):
    return make_project(orchestrator, enqueue_analysis=False).id


class TestEnqueueAndClaim:
    def test_enqueue_deduplicates_active_jobs(self, queue, project_id):
        first = queue.enqueue(project_id, ANALYZE, now=NOW)
        second = queue.enqueue(project_id, ANALYZE, now=NOW)
        assert first.id == second.id
        assert first.status == JobStatus.PENDING.value
        assert first.attempts == 0

    def test_not_due_is_not_claimed(self, queue, project_id):
        queue.enqueue(project_id, ANALYZE, now=NOW, delay_seconds=30)
        assert queue.claim_next_due(NOW) is None
        claimed = queue.claim_next_due(NOW + timedelta(seconds=30))
        assert claimed.status == JobStatus.RUNNING.value
        assert claimed.started_at == NOW + timedelta(seconds=30)

    def test_claim_specific_job_once(self, queue, project_id):
        job = queue.enqueue(project_id, ANALYZE, now=NOW)
        assert queue.claim(job.id, now=NOW) is not None
        assert queue.claim(job.id, now=NOW) is None

    def test_two_workers_racing_for_one_job(self, db, project_id):
        JobQueue(db, RecoveryPolicyTable()).enqueue(project_id, ANALYZE, now=NOW)
        other = SessionLocal()
        try:
            repo_a, repo_b = JobRepository(db), JobRepository(other)
            # Both saw the same candidate before either claimed it.
            [job_id] = repo_a.due_candidate_ids(NOW)
            assert repo_b.due_candidate_ids(NOW) == [job_id]
            wins = [
                repo_a.update_if(job_id, "pending", "running", started_at=NOW),
                repo_b.update_if(job_id, "pending", "running", started_at=NOW),
            ]
            assert sorted(wins) == [False, True]
        finally:
            other.close()

    def test_second_worker_finds_nothing_to_claim(self, db, project_id):
        policy = RecoveryPolicyTable()
        JobQueue(db, policy).enqueue(project_id, ANALYZE, now=NOW)
        other = SessionLocal()
        try:
            assert JobQueue(db, policy).claim_next_due(NOW) is not None
            assert JobQueue(other, policy).claim_next_due(NOW) is None
        finally:
            other.close()


class TestComplete:
    def test_success_completes_and_is_never_reclaimed(self, queue, project_id):
        job = queue.enqueue(project_id, ANALYZE, now=NOW)
        job = queue.claim(job.id, now=NOW)
        assert queue.complete(job, JobOutcome(), now=NOW) is None
        assert queue.get(job.id).status == JobStatus.COMPLETED.value
        assert queue.claim_next_due(NOW + timedelta(days=1)) is None

    def test_generation_timeouts_back_off_then_fail(self, queue, project_id):
        job = queue.enqueue(project_id, ANALYZE, now=NOW)
        now = NOW
        delays = []
        for _ in range(3):
            job = queue.claim_next_due(now)
            decision = queue.complete(job, JobOutcome(error=GenerationTimeoutError("slow")), now=now)
            delays.append(decision.delay_ms)
            now = decision.retry_at or now

        job = queue.get(job.id)
        assert delays[:2] == [4000, 8000]
        assert decision.action == RecoveryAction.ESCALATE
        assert job.status == JobStatus.FAILED.value
        assert job.attempts == job.max_attempts == 3
        assert job.last_failure_kind == FailureKind.PERMANENT_FAILURE.value

    def test_budget_pause_keeps_attempts(self, queue, project_id):
        job = queue.claim(queue.enqueue(project_id, ANALYZE, now=NOW).id, now=NOW)
        error = RateLimitExceededError("user-1", "RATE_LIMIT_BUDGET", datetime(2024, 3, 11, tzinfo=timezone.utc))
        decision = queue.complete(job, JobOutcome(error=error), now=NOW)
        job = queue.get(job.id)
        assert decision.action == RecoveryAction.PAUSE
        assert job.status == JobStatus.PENDING.value
        assert job.attempts == 0
        assert job.scheduled_at == datetime(2024, 3, 11, tzinfo=timezone.utc)
        assert job.started_at is None

    def test_rpm_retry_lands_in_next_window(self, queue, project_id):
        job = queue.claim(queue.enqueue(project_id, ANALYZE, now=NOW).id, now=NOW)
        queue.complete(job, JobOutcome(error=RateLimitExceededError("user-1", "RATE_LIMIT_RPM")), now=NOW)
        job = queue.get(job.id)
        assert NOW + timedelta(minutes=1) <= job.scheduled_at <= NOW + timedelta(minutes=1, seconds=5)
        assert job.attempts == 1

    def test_rpm_retry_waits_for_the_guard_window_when_first_call_is_mid_minute(self, db, queue, project_id):
        guard = RateBudgetGuard(db, rpm_limit=5)
        half_past = datetime(2024, 3, 10, 12, 0, 30, tzinfo=timezone.utc)
        for _ in range(5):
            assert guard.admit_cost("user-1", 0.0, now=half_past).allowed
        denied = guard.admit_cost("user-1", 0.0, now=half_past)
        assert not denied.allowed

        job = queue.claim(queue.enqueue(project_id, ANALYZE, now=half_past).id, now=half_past)
        error = RateLimitExceededError("user-1", denied.kind.value, denied.retry_at)
        queue.complete(job, JobOutcome(error=error), now=half_past)
        job = queue.get(job.id)
        assert denied.retry_at <= job.scheduled_at <= denied.retry_at + timedelta(seconds=5)
        assert guard.admit_cost("user-1", 0.0, now=job.scheduled_at).allowed

    def test_storage_timeout_retries_after_short_delay(self, queue, project_id):
        job = queue.claim(queue.enqueue(project_id, ANALYZE, now=NOW).id, now=NOW)
        queue.complete(job, JobOutcome(error=StorageTimeoutError("db slow")), now=NOW)
        assert queue.get(job.id).scheduled_at == NOW + timedelta(seconds=5)

    def test_unknown_error_fails_immediately(self, queue, project_id):
        job = queue.claim(queue.enqueue(project_id, ANALYZE, now=NOW).id, now=NOW)
        queue.complete(job, JobOutcome(error=KeyError("metaphors")), now=NOW)
        job = queue.get(job.id)
        assert job.status == JobStatus.FAILED.value
        assert job.attempts == 3

    def test_fallback_completes_the_job(self, queue, project_id):
        job = queue.claim(queue.enqueue(project_id, ANALYZE, now=NOW).id, now=NOW)
        queue.complete(job, JobOutcome(kind=FailureKind.UNPARSEABLE_JSON), now=NOW)
        job = queue.get(job.id)
        assert job.status == JobStatus.COMPLETED.value
        assert job.last_failure_kind == FailureKind.UNPARSEABLE_JSON.value

    def test_late_completion_is_dropped(self, queue, project_id):
        job = queue.claim(queue.enqueue(project_id, ANALYZE, now=NOW).id, now=NOW)
        queue.complete(job, JobOutcome(), now=NOW)
        assert queue.complete(job, JobOutcome(error=GenerationTimeoutError("late")), now=NOW) is None
        assert queue.get(job.id).status == JobStatus.COMPLETED.value

    def test_error_text_is_clipped(self, queue, project_id):
        job = queue.claim(queue.enqueue(project_id, ANALYZE, now=NOW).id, now=NOW)
        queue.complete(job, JobOutcome(error=GenerationTimeoutError("x" * 5000)), now=NOW)
        assert len(queue.get(job.id).last_error) == 2000

    def test_attempts_never_exceed_max(self, queue, project_id):
        rng = random.Random(2)
        errors = [
            lambda: GenerationTimeoutError("slow"),
            lambda: StorageTimeoutError("db slow"),
            lambda: RateLimitExceededError("user-1", "RATE_LIMIT_RPM"),
            lambda: RateLimitExceededError("user-1", "RATE_LIMIT_BUDGET"),
        ]
        job = queue.enqueue(project_id, ANALYZE, now=NOW)
        now = NOW
        for _ in range(30):
            claimed = queue.claim(job.id, now=now, require_due=False)
            if claimed is None:
                break
            decision = queue.complete(claimed, JobOutcome(error=rng.choice(errors)()), now=now)
            current = queue.get(job.id)
            assert current.attempts <= current.max_attempts
            if current.status == JobStatus.FAILED.value:
                assert current.attempts == current.max_attempts
            now = decision.retry_at or now
        assert queue.get(job.id).status == JobStatus.FAILED.value


class TestStaleRecovery:
    def test_abandoned_running_job_is_rescheduled(self, queue, project_id):
        job = queue.claim(queue.enqueue(project_id, ANALYZE, now=NOW).id, now=NOW)
        assert queue.requeue_stale(NOW + timedelta(seconds=30), older_than_seconds=60) == []

        recovered = queue.requeue_stale(NOW + timedelta(seconds=61), older_than_seconds=60)
        assert len(recovered) == 1
        _, decision = recovered[0]
        job = queue.get(job.id)
        assert job.status == JobStatus.PENDING.value
        assert job.attempts == 1
        assert decision.kind == FailureKind.GENERATION_TIMEOUT

    def test_listing(self, queue, project_id):
        queue.enqueue(project_id, ANALYZE, now=NOW)
        queue.enqueue(project_id, JobFunction.GENERATE.value, now=NOW)
        assert len(queue.list_for_project(project_id)) == 2
        assert len(queue.list_recent(status="pending")) == 2
        assert queue.list_recent(status="failed") == []
