"""Deterministic fallback payloads for steps whose AI output was unusable.

``fallback_for`` is pure: it reads the project descriptor and any earlier
step results and returns a payload that satisfies the step's schema. It is
invoked only by the recovery path and never writes anything.
"""

from typing import Any, Optional

from ..generation.templates import DEFAULT_METAPHORS, build_analysis_payload, build_visualization_payload

STEP_ANALYSIS = "analysis"
STEP_VISUALIZATION = "visualization"
FALLBACK_SUFFIX = "_fallback"


def fallback_key(step: str) -> str:
    return f"{step}{FALLBACK_SUFFIX}"


def fallback_for(
    step: str,
    row_count: int = 0,
    columns: Optional[list[str]] = None,
    metaphor: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Fallback payload for *step*.

    Args:
        step: ``analysis`` or ``visualization``.
        row_count: Input row count from the project descriptor.
        columns: Header names from the project descriptor.
        metaphor: The selected metaphor (visualization only); the first
            default metaphor is used when absent.

    Raises:
        ValueError: Unknown step name.
    """
    columns = list(columns or [])
    if step == STEP_ANALYSIS:
        # No AI-detected patterns in a fallback; only the descriptor is known.
        return build_analysis_payload(row_count, columns, with_patterns=False)
    if step == STEP_VISUALIZATION:
        return build_visualization_payload(metaphor or DEFAULT_METAPHORS[0], columns)
    raise ValueError(f"No fallback defined for step '{step}'")


def fallback_for_project(step: str, project) -> dict[str, Any]:
    """Convenience wrapper reading the descriptor off a Project row."""
    return fallback_for(
        step,
        row_count=project.row_count or 0,
        columns=project.columns or [],
        metaphor=project.selected_metaphor,
    )
