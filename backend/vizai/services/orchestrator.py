"""
Pipeline orchestrator: drives one project through its generation steps.

Each step runs inside a claimed job:

    guard.admit -> generator.generate -> guard.record
        -> validation/repair
        -> checkpoint step result + phase advance in one commit

Failures are classified, the job queue applies the recovery policy to the
job row, and this module applies the matching effect to the project
(fallback checkpoint, pause, retry note, or permanent failure with review
flag). Every failure,
recovered or not, lands in ``project.error_log``.

Nothing is cached between invocations: every entry point re-reads the
project, its context and its jobs from the store.
"""

import logging
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from ..core.config import Settings
from ..core.logging_config import run_id_var
from ..database import utcnow
from ..exceptions import (
    InvalidPhaseTransitionError,
    PermanentPipelineError,
    RateLimitExceededError,
    ResponseValidationError,
    StorageTimeoutError,
    ValidationError,
)
from ..generation import Generator, build_generator, estimate_tokens
from ..generation.prompts import build_compact_summary, render_analysis_prompt, render_visualization_prompt
from ..models import GenerationContext, Job, JobFunction, Project, ProjectPhase, ProjectStatus
from ..repositories import ContextRepository, ProjectRepository
from ..schemas.step_payloads import ANALYSIS_SCHEMA, VISUALIZATION_SCHEMA
from . import phases
from .failure_classifier import FailureKind, classify
from .fallbacks import STEP_ANALYSIS, STEP_VISUALIZATION, fallback_for_project, fallback_key
from .job_queue import JobOutcome, JobQueue
from .rate_budget_guard import RateBudgetGuard
from .recovery_policy import RecoveryAction, RecoveryDecision, RecoveryPolicyTable
from .telemetry_service import TelemetryCollector
from .validation_repair import ValidationRepairEngine

logger = logging.getLogger(__name__)

ANALYSIS_TEMPERATURE = 0.7
VISUALIZATION_TEMPERATURE = 0.4
REPAIR_TEMPERATURE = 0.0

STEP_FOR_FUNCTION = {
    JobFunction.ANALYZE.value: STEP_ANALYSIS,
    JobFunction.GENERATE.value: STEP_VISUALIZATION,
}

OUTCOME_COMPLETED = "completed"
OUTCOME_ACCEPTED = "accepted"
OUTCOME_PAUSED = "paused"
OUTCOME_FAILED = "failed"
OUTCOME_NOOP = "noop"


@dataclass
class StepOutcome:
    """What a trigger or job run achieved.

    ``accepted`` and ``paused`` mean work is scheduled and will continue
    without the caller; ``failed`` is terminal; ``noop`` means the project
    was already past the requested step and ``result`` is the persisted one.
    """

    project_id: str
    status: str
    phase: str
    job_id: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    message: str = ""
    retry_at: Optional[datetime] = None


@dataclass
class _StepUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    calls: int = 0


@dataclass
class _PendingCheckpoint:
    key: str
    payload: Dict[str, Any]
    compact_summary: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


class PipelineOrchestrator:
    """Top-level driver per project.

    Args:
        db: Session for this invocation.
        settings: Application settings.
        generator: Generation collaborator; built from settings when omitted.
        clock: Source of "now" (UTC); injectable for tests.
        rng: Random source for RPM jitter.
    """

    def __init__(
        self,
        db: Session,
        settings: Settings,
        generator: Optional[Generator] = None,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.db = db
        self.settings = settings
        self.generator = build_generator(settings, generator)
        self.clock = clock
        self.projects = ProjectRepository(db)
        self.contexts = ContextRepository(db)
        self.guard = RateBudgetGuard.from_settings(db, settings, self.generator.model)
        self.policy = RecoveryPolicyTable.from_settings(settings, rng)
        self.queue = JobQueue(db, self.policy, max_attempts=settings.job_max_attempts)
        self._usage = _StepUsage()
        self._pending: Optional[_PendingCheckpoint] = None

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def create_project(
        self,
        user_id: str,
        filename: str,
        row_count: int,
        columns: List[str],
        column_count: Optional[int] = None,
        dataset_summary: str = "",
        enqueue_analysis: bool = True,
    ) -> Project:
        """Register a new run and, by default, queue its analysis job."""
        if row_count < 0:
            raise ValidationError("row_count must not be negative", field="row_count")
        project = Project(
            id=str(uuid.uuid4()),
            user_id=user_id,
            filename=filename,
            row_count=row_count,
            column_count=column_count if column_count is not None else len(columns),
            columns=list(columns),
            dataset_summary=dataset_summary or "",
            phase=ProjectPhase.IDLE.value,
            status=ProjectStatus.DRAFT.value,
            progress=0,
            error_log=[],
            created_at=self.clock(),
            updated_at=self.clock(),
        )
        self.projects.create(project)
        logger.info(f"Created project {project.id} for user {user_id}", extra={"project_id": project.id})
        if enqueue_analysis:
            self.queue.enqueue(project.id, JobFunction.ANALYZE.value, now=self.clock())
        return project

    def get_project(self, project_id: str) -> Project:
        return self.projects.get_by_id(project_id)

    def run_analysis_step(self, project_id: str) -> StepOutcome:
        """Run (or report) the analysis step. A no-op once the project is past it."""
        project = self.projects.get_by_id(project_id)
        if project.phase == ProjectPhase.FAILED.value:
            return self._outcome(project, OUTCOME_FAILED, message="project has failed")
        if phases.is_past(project.phase, ProjectPhase.ANALYZING):
            return self._outcome(project, OUTCOME_NOOP, result=self._result(project.id, STEP_ANALYSIS))
        return self._trigger(project, JobFunction.ANALYZE.value)

    def run_generation_step(self, project_id: str, selection: Union[str, int, None] = None) -> StepOutcome:
        """Select a metaphor and run the visualization step.

        Args:
            project_id: Project to advance.
            selection: Metaphor id, or index into the suggested metaphors.
                May be omitted only when a metaphor is already selected.

        Raises:
            InvalidPhaseTransitionError: analysis has not finished yet.
            ValidationError: the selection names no suggested metaphor.
        """
        project = self.projects.get_by_id(project_id)
        if project.phase == ProjectPhase.FAILED.value:
            return self._outcome(project, OUTCOME_FAILED, message="project has failed")
        if phases.is_past(project.phase, ProjectPhase.GENERATING):
            return self._outcome(project, OUTCOME_NOOP, result=project.visualization
                                 or self._result(project.id, STEP_VISUALIZATION))

        if project.phase == ProjectPhase.SELECTING.value:
            if selection is None:
                raise ValidationError("A metaphor selection is required", field="selection")
            project.selected_metaphor = self._resolve_selection(project, selection)
            phases.advance(project, ProjectPhase.GENERATING)
            self.projects.save(project, "select metaphor")
            logger.info(
                f"Project {project.id} selected metaphor {project.selected_metaphor.get('id')}",
                extra={"project_id": project.id},
            )
        elif project.phase != ProjectPhase.GENERATING.value:
            raise InvalidPhaseTransitionError(project.id, project.phase, ProjectPhase.GENERATING.value)
        elif selection is not None:
            chosen = self._resolve_selection(project, selection)
            if chosen.get("id") != (project.selected_metaphor or {}).get("id"):
                raise ValidationError("A different metaphor is already being generated", field="selection")

        return self._trigger(project, JobFunction.GENERATE.value)

    def resume(self, project_id: str) -> StepOutcome:
        """Re-enter the pipeline at the recorded phase, reusing checkpoints."""
        project = self.projects.get_by_id(project_id)
        phase = ProjectPhase(project.phase)
        if phase in (ProjectPhase.IDLE, ProjectPhase.ANALYZING):
            return self._trigger(project, JobFunction.ANALYZE.value)
        if phase in (ProjectPhase.GENERATING, ProjectPhase.EXPORTING):
            return self._trigger(project, JobFunction.GENERATE.value)
        if phase == ProjectPhase.SELECTING:
            return self._outcome(project, OUTCOME_NOOP, result=self._result(project.id, STEP_ANALYSIS),
                                 message="awaiting metaphor selection")
        if phase == ProjectPhase.FAILED:
            return self._outcome(project, OUTCOME_FAILED, message="project has failed")
        return self._outcome(project, OUTCOME_NOOP, result=project.visualization)

    def run_next_due(self) -> Optional[StepOutcome]:
        """One scheduler tick: recover abandoned jobs, then run at most one due job."""
        self.recover_stale_jobs()
        job = self.queue.claim_next_due(self.clock())
        if job is None:
            return None
        return self.process_job(job)

    def recover_stale_jobs(self) -> int:
        recovered = self.queue.requeue_stale(self.clock(), self.settings.invocation_wall_clock_seconds)
        for job, decision in recovered:
            self._apply_project_effects(
                job.project_id,
                STEP_FOR_FUNCTION.get(job.function_name, job.function_name),
                decision,
                FailureKind.GENERATION_TIMEOUT,
                "invocation abandoned while running",
                job.attempts,
            )
        return len(recovered)

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    def process_job(self, job: Job) -> StepOutcome:
        """Run a claimed job's step and settle the job and project."""
        job_id, project_id, function_name = job.id, job.project_id, job.function_name
        step = STEP_FOR_FUNCTION.get(function_name, function_name)
        token = run_id_var.set(project_id)
        telemetry = TelemetryCollector(project_id, clock=self.clock)
        self._usage = _StepUsage()
        self._pending = None
        try:
            project = self.projects.get_by_id(project_id)
            if phases.is_terminal(project.phase):
                self.queue.complete(job, JobOutcome(), now=self.clock())
                return self._outcome(project, OUTCOME_NOOP, job_id=job_id)
            if project.status == ProjectStatus.PAUSED.value:
                project.status = ProjectStatus.PROCESSING.value

            try:
                if function_name == JobFunction.ANALYZE.value:
                    result = self._run_analysis(project, telemetry)
                elif function_name == JobFunction.GENERATE.value:
                    result = self._run_generation(project, telemetry)
                else:
                    raise PermanentPipelineError(f"Unknown job function '{function_name}'")
            except Exception as e:
                return self._handle_failure(project_id, job, step, e, telemetry)

            self.queue.complete(job, JobOutcome(), now=self.clock())
            project = self.projects.get_by_id(project_id)
            return self._outcome(project, OUTCOME_COMPLETED, job_id=job_id, result=result)
        finally:
            self._flush_telemetry(telemetry)
            run_id_var.reset(token)

    def _run_analysis(self, project: Project, telemetry: TelemetryCollector) -> Dict[str, Any]:
        context = self.contexts.get_or_create(project.id)
        existing = context.result_for(STEP_ANALYSIS)
        if existing is not None:
            # Checkpoint survived an interrupted run; only the phase is behind.
            if project.phase == ProjectPhase.IDLE.value:
                phases.advance(project, ProjectPhase.ANALYZING)
            if project.phase == ProjectPhase.ANALYZING.value:
                project.suggested_metaphors = existing.get("metaphors")
                phases.advance(project, ProjectPhase.SELECTING)
                self.projects.save(project, "advance from checkpoint")
            return existing

        if project.phase == ProjectPhase.IDLE.value:
            phases.advance(project, ProjectPhase.ANALYZING)
            self.projects.save(project, "start analysis")

        telemetry.start_step(STEP_ANALYSIS)
        try:
            prompt = render_analysis_prompt(
                filename=project.filename,
                row_count=project.row_count,
                column_count=project.column_count,
                columns=project.columns or [],
                dataset_summary=project.dataset_summary or "",
                schema=ANALYSIS_SCHEMA,
            )
            payload = self._generate_validated(project, STEP_ANALYSIS, prompt, ANALYSIS_SCHEMA, ANALYSIS_TEMPERATURE)
            self._checkpoint_analysis(project, context, STEP_ANALYSIS, payload)
        except Exception:
            self._end_step(telemetry, STEP_ANALYSIS, success=False)
            raise
        self._end_step(telemetry, STEP_ANALYSIS, success=True)
        return payload

    def _checkpoint_analysis(
        self, project: Project, context: GenerationContext, key: str, payload: Dict[str, Any]
    ) -> None:
        """Commit an analysis payload together with the advance to selecting."""
        summary = build_compact_summary(payload.get("compact_summary", ""), self.settings.compact_summary_max_chars)
        self._pending = _PendingCheckpoint(key, payload, summary)
        self.contexts.stage_step_result(context, key, payload, compact_summary=summary)
        project.suggested_metaphors = payload["metaphors"]
        if project.phase == ProjectPhase.IDLE.value:
            phases.advance(project, ProjectPhase.ANALYZING)
        phases.advance(project, ProjectPhase.SELECTING)
        self.projects.save(project, "checkpoint analysis")
        self._pending = None
        logger.info(f"Analysis checkpointed for project {project.id} as '{key}'", extra={"project_id": project.id})

    def _run_generation(self, project: Project, telemetry: TelemetryCollector) -> Dict[str, Any]:
        context = self.contexts.get_or_create(project.id)
        if context.result_for(STEP_VISUALIZATION) is None:
            if project.phase != ProjectPhase.GENERATING.value or not project.selected_metaphor:
                raise PermanentPipelineError(
                    f"Project {project.id} is not ready for generation (phase '{project.phase}')"
                )
            telemetry.start_step(STEP_VISUALIZATION)
            try:
                summary = context.compact_summary or build_compact_summary(
                    (context.result_for(STEP_ANALYSIS) or {}).get("compact_summary", ""),
                    self.settings.compact_summary_max_chars,
                )
                prompt = render_visualization_prompt(summary, project.selected_metaphor, VISUALIZATION_SCHEMA)
                payload = self._generate_validated(project, STEP_VISUALIZATION, prompt, VISUALIZATION_SCHEMA,
                                                   VISUALIZATION_TEMPERATURE)
                self._checkpoint_visualization(project, context, STEP_VISUALIZATION, payload)
            except Exception:
                self._end_step(telemetry, STEP_VISUALIZATION, success=False)
                raise
            self._end_step(telemetry, STEP_VISUALIZATION, success=True)
        elif project.phase == ProjectPhase.GENERATING.value:
            phases.advance(project, ProjectPhase.EXPORTING)
            self.projects.save(project, "advance from checkpoint")

        return self._export(project, context)

    def _checkpoint_visualization(
        self, project: Project, context: GenerationContext, key: str, payload: Dict[str, Any]
    ) -> None:
        """Commit a visualization payload together with the advance to exporting."""
        self._pending = _PendingCheckpoint(key, payload)
        self.contexts.stage_step_result(context, key, payload)
        phases.advance(project, ProjectPhase.EXPORTING)
        self.projects.save(project, "checkpoint visualization")
        self._pending = None

    def _export(self, project: Project, context: GenerationContext) -> Dict[str, Any]:
        """Local step: publish the validated visualization as the project's artifact."""
        payload = context.result_for(STEP_VISUALIZATION)
        project.visualization = payload
        phases.advance(project, ProjectPhase.COMPLETED)
        self.projects.save(project, "export visualization")
        logger.info(f"Project {project.id} completed", extra={"project_id": project.id})
        return payload

    def _generate_validated(
        self,
        project: Project,
        step: str,
        prompt: str,
        schema: dict,
        temperature: float,
    ) -> Dict[str, Any]:
        """Generate and validate a step payload.

        Raises:
            ResponseValidationError: the output stayed unusable after repair;
                recovered through the policy table like any other failure.
        """
        raw = self._call_generator(project, prompt, schema, temperature)
        engine = ValidationRepairEngine(
            repairer=lambda repair_prompt, repair_schema: self._call_generator(
                project, repair_prompt, repair_schema, REPAIR_TEMPERATURE
            )
        )
        outcome = engine.validate_and_repair(raw, schema)
        if outcome.repair != "none":
            logger.info(f"Step {step} output needed {outcome.repair} repair", extra={"project_id": project.id})
        return outcome.payload

    def _call_generator(self, project: Project, prompt: str, schema: dict, temperature: float) -> str:
        """One gated generation call: admit, generate, reconcile cost."""
        user_id = project.user_id
        admission = self.guard.admit(
            user_id, estimate_tokens(prompt), self.settings.max_output_tokens, now=self.clock()
        )
        if not admission.allowed:
            raise RateLimitExceededError(user_id, admission.kind.value, admission.retry_at)

        try:
            result = self.generator.generate(prompt, schema, temperature)
        except Exception:
            self.guard.release(user_id, admission.estimated_cost, now=self.clock())
            raise
        cost = self.guard.record(
            user_id, result.input_tokens, result.output_tokens, now=self.clock(), reserved=admission.estimated_cost
        )
        self.projects.add_usage(project, result.input_tokens, result.output_tokens, cost)
        self._usage.input_tokens += result.input_tokens
        self._usage.output_tokens += result.output_tokens
        self._usage.cost_usd += cost
        self._usage.calls += 1
        return result.raw_text

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    def _handle_failure(
        self,
        project_id: str,
        job: Job,
        step: str,
        error: Exception,
        telemetry: TelemetryCollector,
    ) -> StepOutcome:
        kind = classify(error)
        telemetry.record_error(step, error, kind.value)
        logger.warning(
            f"Step {step} failed for project {project_id}: {kind.value}: {error}",
            extra={"project_id": project_id, "job_id": job.id, "kind": kind.value},
        )
        attempts_before = job.attempts or 0

        if self.policy.action_for(kind) == RecoveryAction.FALLBACK:
            try:
                result = self._substitute_fallback(project_id, step, kind, error)
            except Exception as fallback_error:
                logger.error(f"Fallback for {step} failed for project {project_id}: {fallback_error}")
                error, kind = fallback_error, classify(fallback_error)
                if self.policy.action_for(kind) == RecoveryAction.FALLBACK:
                    kind = FailureKind.PERMANENT_FAILURE
                telemetry.record_error(step, error, kind.value)
            else:
                self.queue.complete(job, JobOutcome(error=error, kind=kind), now=self.clock())
                project = self.projects.get_by_id(project_id)
                return self._outcome(project, OUTCOME_COMPLETED, job_id=job.id, result=result,
                                     message="fallback payload substituted")

        if kind == FailureKind.STORAGE_TIMEOUT:
            self._persist_partial(project_id)

        decision = self.queue.complete(job, JobOutcome(error=error, kind=kind), now=self.clock())
        if decision is None:
            project = self.projects.get_by_id(project_id)
            return self._outcome(project, OUTCOME_NOOP, job_id=job.id, message="job was settled elsewhere")

        attempts = attempts_before + 1 if decision.consumes_attempt else attempts_before
        project = self._apply_project_effects(project_id, step, decision, kind, str(error), attempts)

        if decision.action == RecoveryAction.ESCALATE:
            status = OUTCOME_FAILED
        elif decision.action == RecoveryAction.PAUSE:
            status = OUTCOME_PAUSED
        else:
            status = OUTCOME_ACCEPTED
        return self._outcome(project, status, job_id=job.id, message=decision.reason, retry_at=decision.retry_at)

    def _substitute_fallback(self, project_id: str, step: str, kind: FailureKind, error: Exception) -> Dict[str, Any]:
        """Checkpoint the step's fallback payload and continue the pipeline.

        Stored under the ``<step>_fallback`` key; the phase advances exactly
        as it would for a generated payload.
        """
        project = self.projects.get_by_id(project_id)
        context = self.contexts.get_or_create(project_id)
        payload = fallback_for_project(step, project)
        if isinstance(error, ResponseValidationError):
            detail = f"{error.error_code.value}: {error.message}"
        else:
            detail = str(error)
        self._append_error(project, step, kind, RecoveryAction.FALLBACK, detail, commit=False)
        logger.warning(
            f"Step {step} output unusable for project {project_id}; substituting fallback",
            extra={"project_id": project_id, "kind": kind.value, "action": RecoveryAction.FALLBACK.value},
        )
        if step == STEP_ANALYSIS:
            self._checkpoint_analysis(project, context, fallback_key(step), payload)
            return payload
        if step == STEP_VISUALIZATION:
            self._checkpoint_visualization(project, context, fallback_key(step), payload)
            return self._export(project, context)
        raise PermanentPipelineError(f"No fallback for step '{step}'")

    def _apply_project_effects(
        self,
        project_id: str,
        step: str,
        decision: RecoveryDecision,
        cause: FailureKind,
        message: str,
        attempts: int,
    ) -> Project:
        project = self.projects.get_by_id(project_id)
        extra = {"cause": cause.value, "attempts": attempts}
        if decision.retry_at:
            extra["retry_at"] = decision.retry_at.isoformat()

        if decision.action == RecoveryAction.ESCALATE:
            if not phases.is_terminal(project.phase):
                phases.advance(project, ProjectPhase.FAILED)
            project.needs_review = True
            logger.error(
                f"Project {project_id} failed permanently at {step}; flagged for review",
                extra={"project_id": project_id, "kind": decision.kind.value, "cause": cause.value},
            )
        elif decision.action == RecoveryAction.PAUSE:
            project.status = ProjectStatus.PAUSED.value
            logger.info(
                f"Project {project_id} paused until {decision.retry_at}",
                extra={"project_id": project_id, "kind": decision.kind.value},
            )

        self._append_error(project, step, decision.kind, decision.action, message, extra=extra)
        return project

    def _persist_partial(self, project_id: str) -> None:
        """Best effort: write a validated but uncommitted step result before rescheduling."""
        pending, self._pending = self._pending, None
        if pending is None:
            return
        try:
            context = self.contexts.get_or_create(project_id)
            if context.result_for(pending.key.replace("_fallback", "")) is None:
                self.contexts.stage_step_result(context, pending.key, pending.payload, pending.compact_summary)
                self.contexts.commit("persist partial checkpoint")
                logger.info(f"Persisted partial '{pending.key}' result for project {project_id}")
        except StorageTimeoutError as e:
            logger.warning(f"Could not persist partial state for project {project_id}: {e}")

    def _append_error(
        self,
        project: Project,
        step: str,
        kind: FailureKind,
        action: RecoveryAction,
        message: str,
        extra: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> None:
        entry = {
            "timestamp": self.clock().isoformat(),
            "step": step,
            "kind": kind.value,
            "action": action.value,
            "message": message[:500],
        }
        if extra:
            entry.update(extra)
        if commit:
            self.projects.append_error(project, entry)
        else:
            project.error_log = [*(project.error_log or []), entry]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _trigger(self, project: Project, function_name: str) -> StepOutcome:
        """Queue the step's job and run it now if this invocation can claim it."""
        job = self.queue.enqueue(project.id, function_name, now=self.clock())
        claimed = self.queue.claim(job.id, now=self.clock())
        if claimed is None:
            project = self.projects.get_by_id(project.id)
            status = OUTCOME_PAUSED if project.status == ProjectStatus.PAUSED.value else OUTCOME_ACCEPTED
            return self._outcome(project, status, job_id=job.id, message="job is scheduled or running")
        return self.process_job(claimed)

    def _resolve_selection(self, project: Project, selection: Union[str, int]) -> Dict[str, Any]:
        metaphors = project.suggested_metaphors or []
        if isinstance(selection, int) or (isinstance(selection, str) and selection.isdigit()):
            index = int(selection)
            if 0 <= index < len(metaphors):
                return metaphors[index]
        else:
            for metaphor in metaphors:
                if metaphor.get("id") == selection:
                    return metaphor
        raise ValidationError(f"Unknown metaphor selection: {selection}", field="selection")

    def _result(self, project_id: str, step: str) -> Optional[Dict[str, Any]]:
        context = self.contexts.get_by_id_optional(project_id)
        return context.result_for(step) if context else None

    def _end_step(self, telemetry: TelemetryCollector, step: str, success: bool) -> None:
        telemetry.end_step(
            step,
            success=success,
            input_tokens=self._usage.input_tokens,
            output_tokens=self._usage.output_tokens,
            cost_usd=self._usage.cost_usd,
            retries=max(0, self._usage.calls - 1),
        )
        self._usage = _StepUsage()

    def _flush_telemetry(self, telemetry: TelemetryCollector) -> None:
        try:
            telemetry.flush(self.db)
        except StorageTimeoutError as e:
            logger.warning(f"Telemetry flush failed for project {telemetry.project_id}: {e}")

    @staticmethod
    def _outcome(project: Project, status: str, job_id: Optional[str] = None,
                 result: Optional[Dict[str, Any]] = None, message: str = "",
                 retry_at: Optional[datetime] = None) -> StepOutcome:
        return StepOutcome(
            project_id=project.id,
            status=status,
            phase=project.phase,
            job_id=job_id,
            result=result,
            message=message,
            retry_at=retry_at,
        )
