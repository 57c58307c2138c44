"""Project phase state machine.

    idle -> analyzing -> selecting -> generating -> exporting -> completed
    any non-terminal phase -> failed

``completed`` and ``failed`` are terminal. Progress only moves forward.
"""

from ..exceptions import InvalidPhaseTransitionError
from ..models import Project, ProjectPhase, ProjectStatus

TRANSITIONS: dict[ProjectPhase, frozenset] = {
    ProjectPhase.IDLE: frozenset({ProjectPhase.ANALYZING, ProjectPhase.FAILED}),
    ProjectPhase.ANALYZING: frozenset({ProjectPhase.SELECTING, ProjectPhase.FAILED}),
    ProjectPhase.SELECTING: frozenset({ProjectPhase.GENERATING, ProjectPhase.FAILED}),
    ProjectPhase.GENERATING: frozenset({ProjectPhase.EXPORTING, ProjectPhase.FAILED}),
    ProjectPhase.EXPORTING: frozenset({ProjectPhase.COMPLETED, ProjectPhase.FAILED}),
    ProjectPhase.COMPLETED: frozenset(),
    ProjectPhase.FAILED: frozenset(),
}

PROGRESS: dict[ProjectPhase, int] = {
    ProjectPhase.IDLE: 0,
    ProjectPhase.ANALYZING: 10,
    ProjectPhase.SELECTING: 40,
    ProjectPhase.GENERATING: 60,
    ProjectPhase.EXPORTING: 90,
    ProjectPhase.COMPLETED: 100,
}

# Happy-path order
ORDER = [
    ProjectPhase.IDLE,
    ProjectPhase.ANALYZING,
    ProjectPhase.SELECTING,
    ProjectPhase.GENERATING,
    ProjectPhase.EXPORTING,
    ProjectPhase.COMPLETED,
]


def is_terminal(phase: str) -> bool:
    return not TRANSITIONS[ProjectPhase(phase)]


def can_transition(current: str, target: str) -> bool:
    return ProjectPhase(target) in TRANSITIONS[ProjectPhase(current)]


def is_past(phase: str, reference: ProjectPhase) -> bool:
    """True when *phase* lies strictly after *reference* on the happy path."""
    phase = ProjectPhase(phase)
    if phase == ProjectPhase.FAILED:
        return False
    return ORDER.index(phase) > ORDER.index(reference)


def advance(project: Project, target: ProjectPhase) -> None:
    """Move *project* to *target* in memory. The caller commits.

    Raises:
        InvalidPhaseTransitionError: *target* is not an edge from the
            current phase (including any move out of a terminal phase).
    """
    if not can_transition(project.phase, target):
        raise InvalidPhaseTransitionError(project.id, project.phase, target.value)

    project.phase = target.value
    if target == ProjectPhase.FAILED:
        project.status = ProjectStatus.ERROR.value
        return

    project.progress = max(project.progress or 0, PROGRESS[target])
    project.status = (
        ProjectStatus.COMPLETED.value if target == ProjectPhase.COMPLETED else ProjectStatus.PROCESSING.value
    )
