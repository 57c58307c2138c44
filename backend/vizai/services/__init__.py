"""Pipeline services."""

from .failure_classifier import FailureKind, classify
from .job_queue import JobOutcome, JobQueue
from .orchestrator import PipelineOrchestrator, StepOutcome
from .rate_budget_guard import Admission, RateBudgetGuard
from .recovery_policy import RecoveryAction, RecoveryDecision, RecoveryPolicyTable
from .telemetry_service import TelemetryCollector, TelemetryService
from .validation_repair import ValidationRepairEngine

__all__ = [
    "Admission",
    "FailureKind",
    "JobOutcome",
    "JobQueue",
    "PipelineOrchestrator",
    "RateBudgetGuard",
    "RecoveryAction",
    "RecoveryDecision",
    "RecoveryPolicyTable",
    "StepOutcome",
    "TelemetryCollector",
    "TelemetryService",
    "ValidationRepairEngine",
    "classify",
]
