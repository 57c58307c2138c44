"""Job status endpoints and the timer-driven scheduler tick."""

import logging
from fastapi import APIRouter, Depends, Query, Response
from typing import List, Optional

from ..schemas.job import JobResponse
from ..schemas.project import StepOutcomeResponse
from ..services import PipelineOrchestrator
from .deps import get_orchestrator, outcome_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.get("", response_model=List[JobResponse])
def list_jobs(
    project_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None, pattern="^(pending|running|failed|completed)$"),
    limit: int = Query(20, ge=1, le=100),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """List jobs, optionally for one project or in one status."""
    if project_id:
        return orchestrator.queue.list_for_project(project_id, limit)
    return orchestrator.queue.list_recent(status, limit)


@router.get("/{job_id}", response_model=JobResponse)
def get_job(
    job_id: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """Get a specific job by ID."""
    return orchestrator.queue.get(job_id)


@router.post("/run-next", response_model=Optional[StepOutcomeResponse])
def run_next(
    response: Response,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """Claim and run at most one due job.

    For deployments where an external timer (cron, scheduled function)
    drives the queue instead of the polling worker. Returns 204 when no
    job was due.
    """
    outcome = orchestrator.run_next_due()
    if outcome is None:
        return Response(status_code=204)
    return outcome_response(outcome, response)
