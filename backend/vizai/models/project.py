"""Project and GenerationContext models.

A Project is one end-to-end generation run for a user's uploaded table.
Its GenerationContext holds the validated output of every completed step
so an interrupted run resumes where it stopped instead of recomputing.
"""

from enum import Enum

from sqlalchemy import Column, String, Text, Integer, Boolean, Float, JSON, ForeignKey, Index
from sqlalchemy.orm import relationship
from ..database import Base, UTCDateTime, utcnow


class ProjectPhase(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    SELECTING = "selecting"
    GENERATING = "generating"
    EXPORTING = "exporting"
    COMPLETED = "completed"
    FAILED = "failed"


class ProjectStatus(str, Enum):
    """Coarse status shown to users; ``paused`` marks budget exhaustion."""
    DRAFT = "draft"
    PROCESSING = "processing"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


class Project(Base):
    """
    One generation run.

    Mutated only by the orchestrator and the job queue. ``progress`` never
    decreases unless the phase is ``failed``; ``phase`` only follows the
    edges in services.phases.
    """

    __tablename__ = "projects"

    id = Column(String(50), primary_key=True)
    user_id = Column(String(50), nullable=False)

    # Input descriptor
    filename = Column(String(255), nullable=False, default="")
    row_count = Column(Integer, nullable=False, default=0)
    column_count = Column(Integer, nullable=False, default=0)
    columns = Column(JSON, nullable=False, default=list)
    # Precomputed statistics text from the upload step, fed to the analysis prompt
    dataset_summary = Column(Text, nullable=False, default="")

    phase = Column(String(20), nullable=False, default=ProjectPhase.IDLE.value)
    status = Column(String(20), nullable=False, default=ProjectStatus.DRAFT.value)
    progress = Column(Integer, nullable=False, default=0)

    suggested_metaphors = Column(JSON, nullable=True)
    selected_metaphor = Column(JSON, nullable=True)
    # Exported artifact (validated visualization payload)
    visualization = Column(JSON, nullable=True)

    # Accumulated provider usage
    input_tokens = Column(Integer, nullable=False, default=0)
    output_tokens = Column(Integer, nullable=False, default=0)
    cost_usd = Column(Float, nullable=False, default=0.0)

    # Ordered audit trail: [{timestamp, step, kind, action, message}]
    error_log = Column(JSON, nullable=False, default=list)
    # Set when a permanent failure obliges an admin to look at the run
    needs_review = Column(Boolean, nullable=False, default=False)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    context = relationship(
        "GenerationContext",
        back_populates="project",
        uselist=False,
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_projects_user_status", "user_id", "status"),
    )

    @property
    def token_usage(self) -> dict:
        return {
            "total_input": self.input_tokens,
            "total_output": self.output_tokens,
            "cost_usd": round(self.cost_usd, 6),
        }


class GenerationContext(Base):
    """Checkpointed step results, one row per project.

    ``step_results`` maps a step name to its validated payload. A payload is
    written whole or not at all; fallback substitutions are stored under
    ``<step>_fallback``.
    """

    __tablename__ = "generation_contexts"

    project_id = Column(String(50), ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True)
    step_results = Column(JSON, nullable=False, default=dict)
    compact_summary = Column(Text, nullable=True)
    current_step = Column(String(50), nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    project = relationship("Project", back_populates="context")

    def result_for(self, step: str):
        """Validated or fallback payload for *step*, or None if it never completed."""
        results = self.step_results or {}
        if step in results:
            return results[step]
        return results.get(f"{step}_fallback")
