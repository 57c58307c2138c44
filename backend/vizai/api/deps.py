"""Shared FastAPI dependencies."""

from fastapi import Depends, Response
from sqlalchemy.orm import Session

from ..core.config import settings
from ..database import get_db
from ..services import PipelineOrchestrator, StepOutcome

# HTTP status per step outcome; accepted work continues without the caller.
_OUTCOME_STATUS = {
    "completed": 200,
    "noop": 200,
    "accepted": 202,
    "paused": 202,
    "failed": 500,
}


def get_orchestrator(db: Session = Depends(get_db)) -> PipelineOrchestrator:
    """One orchestrator per request, bound to the request's session."""
    return PipelineOrchestrator(db, settings)


def outcome_response(outcome: StepOutcome, response: Response) -> StepOutcome:
    response.status_code = _OUTCOME_STATUS.get(outcome.status, 200)
    return outcome
