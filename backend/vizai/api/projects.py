"""Project API endpoints: create a run and trigger its steps.

Endpoints are thin; PipelineOrchestrator owns the phase machine, the
job queue interaction and recovery.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response

from ..schemas.project import GenerationRequest, ProjectCreate, ProjectResponse, StepOutcomeResponse
from ..services import PipelineOrchestrator
from .deps import get_orchestrator, outcome_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["projects"])


@router.post("", response_model=ProjectResponse, status_code=202)
def create_project(
    project: ProjectCreate,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """Register an uploaded table and queue its analysis.

    Returns 202: the analysis job runs on the next worker tick, or
    immediately through ``POST /api/projects/{id}/analysis``.
    """
    return orchestrator.create_project(
        user_id=project.user_id,
        filename=project.filename,
        row_count=project.row_count,
        columns=project.columns,
        column_count=project.column_count,
        dataset_summary=project.dataset_summary,
    )


@router.get("", response_model=List[ProjectResponse])
def list_projects(
    user_id: str = Query(..., min_length=1),
    limit: int = Query(20, ge=1, le=100),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """List a user's projects, newest first."""
    return orchestrator.projects.list_for_user(user_id, limit)


@router.get("/{project_id}", response_model=ProjectResponse)
def get_project(
    project_id: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.get_project(project_id)


@router.post("/{project_id}/analysis", response_model=StepOutcomeResponse)
def run_analysis(
    project_id: str,
    response: Response,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """Run the analysis step. Idempotent once the project is past analysis."""
    return outcome_response(orchestrator.run_analysis_step(project_id), response)


@router.post("/{project_id}/generation", response_model=StepOutcomeResponse)
def run_generation(
    project_id: str,
    response: Response,
    request: Optional[GenerationRequest] = None,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """Select a metaphor and run the visualization step. Idempotent once past it."""
    selection = request.selection if request else None
    return outcome_response(orchestrator.run_generation_step(project_id, selection), response)


@router.post("/{project_id}/resume", response_model=StepOutcomeResponse)
def resume_project(
    project_id: str,
    response: Response,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """Re-enter the pipeline at the recorded phase, reusing checkpoints."""
    return outcome_response(orchestrator.resume(project_id), response)
