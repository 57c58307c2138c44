"""Project and generation-context repositories."""

from typing import Any, Dict, List, Optional

from ..models import Project, GenerationContext
from ..exceptions import ProjectNotFoundError
from .base import BaseRepository


class ProjectRepository(BaseRepository[Project]):
    """Repository for project rows."""

    model_class = Project
    not_found_error = ProjectNotFoundError

    def create(self, project: Project) -> Project:
        """Insert a project together with its empty generation context."""
        project.context = GenerationContext(project_id=project.id, step_results={})
        self.db.add(project)
        self.commit("create project")
        self.db.refresh(project)
        return project

    def save(self, project: Project, operation: str = "save project") -> Project:
        self.db.add(project)
        self.commit(operation)
        return project

    def refresh(self, project: Project) -> Project:
        """Re-read a project from the store, discarding cached state."""
        self.db.expire(project)
        return self.get_by_id(project.id)

    def append_error(self, project: Project, entry: Dict[str, Any]) -> None:
        """Append one audit entry to the project's error log.

        JSON columns are replaced, not mutated in place, so SQLAlchemy
        detects the change.
        """
        project.error_log = [*(project.error_log or []), entry]
        self.save(project, "append error log")

    def add_usage(self, project: Project, input_tokens: int, output_tokens: int, cost_usd: float) -> None:
        project.input_tokens = (project.input_tokens or 0) + input_tokens
        project.output_tokens = (project.output_tokens or 0) + output_tokens
        project.cost_usd = (project.cost_usd or 0.0) + cost_usd

    def list_for_user(self, user_id: str, limit: int = 20) -> List[Project]:
        return (
            self.db.query(Project)
            .filter(Project.user_id == user_id)
            .order_by(Project.created_at.desc())
            .limit(limit)
            .all()
        )


class ContextRepository(BaseRepository[GenerationContext]):
    """Repository for checkpointed step results."""

    model_class = GenerationContext
    id_column = "project_id"
    not_found_error = ProjectNotFoundError

    def get_or_create(self, project_id: str) -> GenerationContext:
        context = self.get_by_id_optional(project_id)
        if context is None:
            context = GenerationContext(project_id=project_id, step_results={})
            self.db.add(context)
            self.commit("create context")
        return context

    def stage_step_result(
        self,
        context: GenerationContext,
        step: str,
        payload: Dict[str, Any],
        compact_summary: Optional[str] = None,
    ) -> None:
        """Stage a validated payload on the session without committing.

        The caller commits it together with the phase advance so the
        checkpoint and the phase never disagree.
        """
        context.step_results = {**(context.step_results or {}), step: payload}
        context.current_step = step
        if compact_summary is not None:
            context.compact_summary = compact_summary
        self.db.add(context)
