"""Tests for the project phase state machine."""

import pytest

from vizai.exceptions import InvalidPhaseTransitionError
from vizai.models import Project, ProjectPhase
from vizai.services import phases


def _project(phase: ProjectPhase, progress: int = 0) -> Project:
    return Project(id="p1", user_id="u1", phase=phase.value, status="processing", progress=progress)


class TestTransitions:
    def test_happy_path_progress_is_monotonic(self):
        project = _project(ProjectPhase.IDLE)
        seen = [project.progress]
        for target in phases.ORDER[1:]:
            phases.advance(project, target)
            seen.append(project.progress)
        assert seen == sorted(seen)
        assert project.progress == 100
        assert project.status == "completed"

    @pytest.mark.parametrize("current, target", [
        (ProjectPhase.IDLE, ProjectPhase.SELECTING),
        (ProjectPhase.ANALYZING, ProjectPhase.GENERATING),
        (ProjectPhase.SELECTING, ProjectPhase.ANALYZING),
        (ProjectPhase.COMPLETED, ProjectPhase.FAILED),
        (ProjectPhase.FAILED, ProjectPhase.ANALYZING),
    ])
    def test_invalid_edges_raise(self, current, target):
        with pytest.raises(InvalidPhaseTransitionError):
            phases.advance(_project(current), target)

    @pytest.mark.parametrize("phase", [p for p in ProjectPhase if p not in (ProjectPhase.COMPLETED, ProjectPhase.FAILED)])
    def test_any_active_phase_can_fail(self, phase):
        project = _project(phase, progress=60)
        phases.advance(project, ProjectPhase.FAILED)
        assert project.phase == "failed"
        assert project.status == "error"
        assert project.progress == 60

    def test_progress_never_decreases(self):
        project = _project(ProjectPhase.IDLE, progress=35)
        phases.advance(project, ProjectPhase.ANALYZING)
        assert project.progress == 35


class TestQueries:
    def test_terminal(self):
        assert phases.is_terminal("completed")
        assert phases.is_terminal("failed")
        assert not phases.is_terminal("selecting")

    def test_is_past(self):
        assert phases.is_past("selecting", ProjectPhase.ANALYZING)
        assert not phases.is_past("analyzing", ProjectPhase.ANALYZING)
        assert not phases.is_past("failed", ProjectPhase.IDLE)

    def test_can_transition(self):
        assert phases.can_transition("generating", "exporting")
        assert not phases.can_transition("generating", "completed")
