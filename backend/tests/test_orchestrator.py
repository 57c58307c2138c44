"""Tests for the pipeline orchestrator: phase flow, recovery and resume."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from vizai.exceptions import (
    GenerationTimeoutError,
    InvalidPhaseTransitionError,
    StorageTimeoutError,
    ValidationError,
)
from vizai.generation.pricing import ModelPricing
from vizai.models import GenerationContext, JobStatus
from vizai.services.orchestrator import (
    OUTCOME_ACCEPTED,
    OUTCOME_COMPLETED,
    OUTCOME_FAILED,
    OUTCOME_NOOP,
    OUTCOME_PAUSED,
)

from conftest import analysis_json, make_project, visualization_json

ANALYSIS_MARKER = "Profile every column"


def _jobs(orchestrator, project_id):
    return orchestrator.queue.list_for_project(project_id)


class TestHappyPath:
    def test_analysis_then_generation(self, orchestrator, generator):
        project = make_project(orchestrator)
        assert project.phase == "idle"
        assert len(_jobs(orchestrator, project.id)) == 1

        outcome = orchestrator.run_analysis_step(project.id)
        assert outcome.status == OUTCOME_COMPLETED
        assert outcome.phase == "selecting"
        project = orchestrator.get_project(project.id)
        assert project.progress == 40
        assert [m["id"] for m in project.suggested_metaphors] == [
            "organic-forest-1", "geometric-crystal-1", "flow-river-1",
        ]
        assert project.context.result_for("analysis") is not None

        outcome = orchestrator.run_generation_step(project.id, "flow-river-1")
        assert outcome.status == OUTCOME_COMPLETED
        project = orchestrator.get_project(project.id)
        assert project.phase == "completed"
        assert project.status == "completed"
        assert project.progress == 100
        assert project.visualization["metaphor_id"] == "flow-river-1"
        assert project.error_log == []
        assert project.input_tokens > 0
        assert generator.calls == 2
        assert all(j.status == JobStatus.COMPLETED.value for j in _jobs(orchestrator, project.id))

    def test_selection_by_index(self, orchestrator):
        project = make_project(orchestrator)
        orchestrator.run_analysis_step(project.id)
        orchestrator.run_generation_step(project.id, 1)
        assert orchestrator.get_project(project.id).selected_metaphor["id"] == "geometric-crystal-1"

    def test_repeated_trigger_is_a_noop(self, orchestrator, generator):
        project = make_project(orchestrator)
        first = orchestrator.run_analysis_step(project.id)
        calls = generator.calls
        again = orchestrator.run_analysis_step(project.id)
        assert again.status == OUTCOME_NOOP
        assert again.result == first.result
        assert generator.calls == calls

    def test_telemetry_is_flushed_per_job(self, orchestrator, db):
        from vizai.models import TelemetryRecord

        project = make_project(orchestrator)
        orchestrator.run_analysis_step(project.id)
        record = db.query(TelemetryRecord).filter_by(project_id=project.id).one()
        assert record.summary["steps"]["analysis"]["success"] is True


class TestSelection:
    def test_generation_before_analysis_is_rejected(self, orchestrator):
        project = make_project(orchestrator)
        with pytest.raises(InvalidPhaseTransitionError):
            orchestrator.run_generation_step(project.id, 0)

    @pytest.mark.parametrize("selection", ["no-such-metaphor", 7, None])
    def test_bad_selection(self, orchestrator, selection):
        project = make_project(orchestrator)
        orchestrator.run_analysis_step(project.id)
        with pytest.raises(ValidationError):
            orchestrator.run_generation_step(project.id, selection)
        assert orchestrator.get_project(project.id).phase == "selecting"

    def test_negative_row_count(self, orchestrator):
        with pytest.raises(ValidationError):
            make_project(orchestrator, row_count=-1)


class TestFallback:
    def test_unparseable_analysis_uses_fallback(self, orchestrator, generator):
        generator.queue("I am unable to comply.")
        project = make_project(orchestrator)
        outcome = orchestrator.run_analysis_step(project.id)

        assert outcome.status == OUTCOME_COMPLETED
        assert generator.calls == 1
        project = orchestrator.get_project(project.id)
        assert project.phase == "selecting"
        assert "analysis_fallback" in project.context.step_results
        assert "analysis" not in project.context.step_results
        assert project.context.result_for("analysis")["patterns"] == []
        [entry] = project.error_log
        assert (entry["kind"], entry["action"]) == ("UNPARSEABLE_JSON", "fallback")

    def test_schema_invalid_gets_one_repair_then_fallback(self, orchestrator, generator):
        generator.queue(analysis_json(metaphors=[]), analysis_json(metaphors=[]))
        project = make_project(orchestrator)
        orchestrator.run_analysis_step(project.id)
        assert generator.calls == 2
        assert "analysis_fallback" in orchestrator.get_project(project.id).context.step_results

    def test_successful_repair_is_stored_as_the_real_result(self, orchestrator, generator):
        generator.queue(analysis_json(metaphors=[]), analysis_json())
        project = make_project(orchestrator)
        orchestrator.run_analysis_step(project.id)
        results = orchestrator.get_project(project.id).context.step_results
        assert "analysis" in results and "analysis_fallback" not in results

    def test_visualization_fallback_completes_project(self, orchestrator, generator):
        project = make_project(orchestrator)
        orchestrator.run_analysis_step(project.id)
        generator.queue("```\nnot json\n```")
        outcome = orchestrator.run_generation_step(project.id, "organic-forest-1")
        assert outcome.status == OUTCOME_COMPLETED
        project = orchestrator.get_project(project.id)
        assert project.phase == "completed"
        assert project.visualization["metaphor_id"] == "organic-forest-1"


    def test_generator_parse_error_falls_back_and_advances(self, orchestrator, generator):
        generator.queue(json.JSONDecodeError("Expecting value", "", 0))
        project = make_project(orchestrator)
        outcome = orchestrator.run_analysis_step(project.id)

        assert outcome.status == OUTCOME_COMPLETED
        assert outcome.phase == "selecting"
        project = orchestrator.get_project(project.id)
        assert project.status == "processing"
        assert "analysis_fallback" in project.context.step_results
        assert len(project.suggested_metaphors) == 3
        [entry] = project.error_log
        assert (entry["kind"], entry["action"]) == ("UNPARSEABLE_JSON", "fallback")
        [job] = _jobs(orchestrator, project.id)
        assert job.status == JobStatus.COMPLETED.value
        assert job.last_failure_kind == "UNPARSEABLE_JSON"

        # The pipeline continues from the fallback analysis.
        outcome = orchestrator.run_generation_step(project.id, 0)
        assert outcome.status == OUTCOME_COMPLETED
        assert orchestrator.get_project(project.id).phase == "completed"

    def test_generator_parse_error_in_visualization_completes_project(self, orchestrator, generator):
        project = make_project(orchestrator)
        orchestrator.run_analysis_step(project.id)
        generator.queue(ValueError("Failed to parse model output"))
        outcome = orchestrator.run_generation_step(project.id, "geometric-crystal-1")

        assert outcome.status == OUTCOME_COMPLETED
        project = orchestrator.get_project(project.id)
        assert project.phase == "completed"
        assert "visualization_fallback" in project.context.step_results
        assert project.visualization["metaphor_id"] == "geometric-crystal-1"


class TestReservations:
    def test_failed_call_releases_its_estimate(self, orchestrator, generator, clock):
        generator.queue(GenerationTimeoutError("provider timed out"))
        project = make_project(orchestrator)
        orchestrator.run_analysis_step(project.id)
        state = orchestrator.guard.snapshot(project.user_id, now=clock())
        assert state.reserved_cost_usd == pytest.approx(0.0)
        assert state.daily_cost_usd == 0.0

    def test_successful_call_books_actual_cost(self, orchestrator, clock):
        project = make_project(orchestrator)
        orchestrator.run_analysis_step(project.id)
        state = orchestrator.guard.snapshot(project.user_id, now=clock())
        assert state.reserved_cost_usd == pytest.approx(0.0)
        assert state.daily_cost_usd == pytest.approx(orchestrator.get_project(project.id).cost_usd)


class TestBudgetPause:
    def test_pause_then_resume_after_reset(self, orchestrator, clock):
        project = make_project(orchestrator)
        orchestrator.guard.pricing = ModelPricing(input_per_million=10000.0, output_per_million=10000.0)
        orchestrator.guard.record(project.user_id, 48, 0, now=clock())

        outcome = orchestrator.run_analysis_step(project.id)
        assert outcome.status == OUTCOME_PAUSED
        assert outcome.retry_at == datetime(2024, 3, 11, tzinfo=timezone.utc)
        project = orchestrator.get_project(project.id)
        assert project.status == "paused"
        assert project.phase == "analyzing"
        entry = project.error_log[-1]
        assert (entry["kind"], entry["action"]) == ("RATE_LIMIT_BUDGET", "pause")
        [job] = _jobs(orchestrator, project.id)
        assert job.status == JobStatus.PENDING.value
        assert job.attempts == 0

        # Nothing is due before the reset.
        clock.advance(hours=6)
        assert orchestrator.run_next_due() is None

        orchestrator.guard.pricing = ModelPricing(input_per_million=0.075, output_per_million=0.30)
        clock.now = datetime(2024, 3, 11, 0, 0, 1, tzinfo=timezone.utc)
        outcome = orchestrator.run_next_due()
        assert outcome.status == OUTCOME_COMPLETED
        project = orchestrator.get_project(project.id)
        assert project.phase == "selecting"
        assert project.status == "processing"


class TestEscalation:
    def test_three_timeouts_fail_the_project(self, orchestrator, generator, clock):
        generator.queue(*(GenerationTimeoutError("provider timed out", 25.0) for _ in range(3)))
        project = make_project(orchestrator)

        outcome = orchestrator.run_analysis_step(project.id)
        assert outcome.status == OUTCOME_ACCEPTED
        assert outcome.retry_at == clock() + timedelta(seconds=4)

        clock.advance(seconds=4)
        assert orchestrator.run_next_due().status == OUTCOME_ACCEPTED
        clock.advance(seconds=8)
        outcome = orchestrator.run_next_due()
        assert outcome.status == OUTCOME_FAILED

        [job] = _jobs(orchestrator, project.id)
        assert job.status == JobStatus.FAILED.value
        assert job.attempts == 3
        project = orchestrator.get_project(project.id)
        assert project.phase == "failed"
        assert project.status == "error"
        assert project.needs_review is True
        kinds = [e["kind"] for e in project.error_log]
        assert kinds == ["GENERATION_TIMEOUT", "GENERATION_TIMEOUT", "PERMANENT_FAILURE"]
        assert project.error_log[-1]["cause"] == "GENERATION_TIMEOUT"

    def test_failed_project_rejects_further_steps(self, orchestrator, generator):
        generator.queue(KeyError("unexpected"))
        project = make_project(orchestrator)
        assert orchestrator.run_analysis_step(project.id).status == OUTCOME_FAILED
        assert orchestrator.run_analysis_step(project.id).status == OUTCOME_FAILED
        assert orchestrator.resume(project.id).status == OUTCOME_FAILED


class TestResume:
    def test_resume_from_generating_skips_analysis(self, orchestrator, generator, clock):
        project = make_project(orchestrator)
        orchestrator.run_analysis_step(project.id)
        generator.queue(GenerationTimeoutError("provider timed out"))
        assert orchestrator.run_generation_step(project.id, "flow-river-1").status == OUTCOME_ACCEPTED
        assert orchestrator.get_project(project.id).phase == "generating"

        seen = generator.calls
        clock.advance(seconds=4)
        outcome = orchestrator.resume(project.id)
        assert outcome.status == OUTCOME_COMPLETED
        assert outcome.phase == "completed"
        assert not any(ANALYSIS_MARKER in p for p in generator.prompts[seen:])

    def test_resume_uses_existing_checkpoint(self, orchestrator, generator, db):
        project = make_project(orchestrator)
        project.phase = "analyzing"
        context = db.get(GenerationContext, project.id)
        context.step_results = {"analysis": json.loads(analysis_json())}
        db.commit()

        outcome = orchestrator.resume(project.id)
        assert outcome.status == OUTCOME_COMPLETED
        assert outcome.phase == "selecting"
        assert generator.calls == 0

    def test_resume_while_selecting_waits_for_choice(self, orchestrator):
        project = make_project(orchestrator)
        orchestrator.run_analysis_step(project.id)
        assert orchestrator.resume(project.id).status == OUTCOME_NOOP

    def test_resume_before_retry_time_does_not_run(self, orchestrator, generator):
        generator.queue(GenerationTimeoutError("provider timed out"))
        project = make_project(orchestrator)
        orchestrator.run_analysis_step(project.id)
        outcome = orchestrator.resume(project.id)
        assert outcome.status == OUTCOME_ACCEPTED
        assert generator.calls == 1


class TestStorageTimeout:
    def test_checkpoint_is_persisted_and_retried(self, orchestrator, generator, clock, db):
        project = make_project(orchestrator)
        real_save = orchestrator.projects.save
        failed = []

        def flaky_save(obj, operation="save project"):
            if operation == "checkpoint analysis" and not failed:
                failed.append(operation)
                db.rollback()
                raise StorageTimeoutError("database is locked")
            return real_save(obj, operation)

        with patch.object(orchestrator.projects, "save", side_effect=flaky_save):
            outcome = orchestrator.run_analysis_step(project.id)
        assert outcome.status == OUTCOME_ACCEPTED
        assert outcome.retry_at == clock() + timedelta(seconds=5)
        project = orchestrator.get_project(project.id)
        assert project.phase == "analyzing"
        assert project.context.result_for("analysis") is not None
        assert project.error_log[-1]["kind"] == "STORAGE_TIMEOUT"

        calls = generator.calls
        clock.advance(seconds=5)
        assert orchestrator.run_next_due().status == OUTCOME_COMPLETED
        assert generator.calls == calls
        assert orchestrator.get_project(project.id).phase == "selecting"


class TestStaleJobs:
    def test_abandoned_job_counts_as_timeout(self, orchestrator, clock):
        project = make_project(orchestrator)
        [job] = _jobs(orchestrator, project.id)
        orchestrator.queue.claim(job.id, now=clock())

        clock.advance(seconds=61)
        assert orchestrator.recover_stale_jobs() == 1
        job = orchestrator.queue.get(job.id)
        assert job.status == JobStatus.PENDING.value
        assert job.attempts == 1
        entry = orchestrator.get_project(project.id).error_log[-1]
        assert entry["kind"] == "GENERATION_TIMEOUT"

    def test_run_next_due_returns_none_when_idle(self, orchestrator):
        assert orchestrator.run_next_due() is None


class TestVisualizationPayload:
    def test_scripted_visualization_is_exported(self, orchestrator, generator):
        project = make_project(orchestrator)
        orchestrator.run_analysis_step(project.id)
        generator.queue(visualization_json(title="Revenue Rivers"))
        orchestrator.run_generation_step(project.id, 2)
        assert orchestrator.get_project(project.id).visualization["title"] == "Revenue Rivers"
