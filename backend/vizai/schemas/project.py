"""Project schemas."""

from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import Any, Dict, List, Optional, Union


class ProjectCreate(BaseModel):
    """Schema for registering an uploaded table as a new generation run."""
    user_id: str = Field(..., min_length=1, max_length=50)
    filename: str = ""
    row_count: int = Field(..., ge=0)
    columns: List[str] = []
    column_count: Optional[int] = Field(None, ge=0)
    dataset_summary: str = ""  # Precomputed statistics text

    @field_validator('columns')
    @classmethod
    def strip_columns(cls, v: List[str]) -> List[str]:
        return [c.strip() for c in v if c and c.strip()]

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "user_id": "user-1",
                    "filename": "sales.csv",
                    "row_count": 1200,
                    "columns": ["date", "region", "revenue"],
                    "dataset_summary": "revenue: mean 412.5, 2% nulls; strong weekly seasonality",
                }
            ]
        }
    }


class GenerationRequest(BaseModel):
    """Metaphor selection: an id from suggested_metaphors or its index."""
    selection: Optional[Union[int, str]] = None


class TokenUsage(BaseModel):
    total_input: int
    total_output: int
    cost_usd: float


class ProjectResponse(BaseModel):
    """Schema for project response."""
    id: str
    user_id: str
    filename: str
    row_count: int
    column_count: int
    columns: List[str]
    phase: str
    status: str
    progress: int
    token_usage: TokenUsage
    suggested_metaphors: Optional[List[Dict[str, Any]]] = None
    selected_metaphor: Optional[Dict[str, Any]] = None
    visualization: Optional[Dict[str, Any]] = None
    error_log: List[Dict[str, Any]] = []
    needs_review: bool = False
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class StepOutcomeResponse(BaseModel):
    """Result of a step trigger. ``accepted``/``paused`` mean work continues in the background."""
    project_id: str
    status: str
    phase: str
    job_id: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    message: str = ""
    retry_at: Optional[datetime] = None

    class Config:
        from_attributes = True
