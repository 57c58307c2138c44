"""Job schemas."""

from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class JobResponse(BaseModel):
    """Schema for job response."""
    id: str
    project_id: str
    function_name: str
    status: str
    attempts: int
    max_attempts: int
    scheduled_at: datetime
    last_error: Optional[str] = None
    last_failure_kind: str = ""
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
