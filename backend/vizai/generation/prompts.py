"""Prompt templates and prompt-size constants for the two generation stages.

Pure data plus string assembly. No I/O.
"""

import json
from typing import Any

# Column sample values included per column in the analysis prompt.
SAMPLE_VALUES_PER_COLUMN: int = 3

# Columns beyond this are summarized by count only; wide tables would
# otherwise dominate the prompt and the token bill.
PROMPT_COLUMN_LIMIT: int = 40

# Original response text echoed back in a repair prompt is clipped here.
REPAIR_ECHO_LIMIT: int = 6_000

SYSTEM_RULES = (
    "Respond with a single JSON value that conforms to the schema. "
    "No markdown fences, no commentary, no text before or after the JSON."
)


def _schema_block(schema: dict[str, Any]) -> str:
    return json.dumps(schema, indent=2, sort_keys=True)


def render_analysis_prompt(
    filename: str,
    row_count: int,
    column_count: int,
    columns: list[str],
    dataset_summary: str,
    schema: dict[str, Any],
) -> str:
    """Stage one: profile the table and propose three visual metaphors."""
    shown = columns[:PROMPT_COLUMN_LIMIT]
    hidden = max(0, len(columns) - len(shown))
    column_lines = "\n".join(f"  - {name}" for name in shown)
    if hidden:
        column_lines += f"\n  - ... and {hidden} more columns"

    return f"""You are a data visualization designer.

DATASET: {filename or "uploaded table"}
ROWS: {row_count}
COLUMNS ({column_count}):
{column_lines or "  (no header information)"}

PRECOMPUTED STATISTICS:
{dataset_summary or "(none)"}

TASKS:
1. Profile every column (detected type, null percentage, quality flags).
2. Identify up to 10 notable patterns (correlation, trend, clustering, outlier, distribution).
3. Propose exactly three visual metaphors, one per category: Organic, Geometric, Flow.
   Give each an innovation score from 0 to 10, a 3-8 colour hex palette and a D3 strategy.
4. Write a compact summary (under 800 characters) a later designer can work from
   without seeing the data.

OUTPUT SCHEMA:
{_schema_block(schema)}

{SYSTEM_RULES}
"""


def render_visualization_prompt(
    compact_summary: str,
    metaphor: dict[str, Any],
    schema: dict[str, Any],
) -> str:
    """Stage two: write the D3 code for the metaphor the user picked."""
    return f"""You are a D3.js engineer turning a visual metaphor into working code.

DATA SUMMARY:
{compact_summary}

CHOSEN METAPHOR:
{json.dumps(metaphor, indent=2, sort_keys=True)}

REQUIREMENTS:
- Self-contained IIFE that renders into '#viz-container'.
- Use the metaphor's colour palette; animate entry transitions.
- Read data from the global `vizData` array of row objects.

OUTPUT SCHEMA:
{_schema_block(schema)}

{SYSTEM_RULES}
"""


def render_repair_prompt(raw_response: str, schema: dict[str, Any], errors: list[str]) -> str:
    """One-shot repair: echo the invalid response with the schema and its violations."""
    clipped = raw_response[:REPAIR_ECHO_LIMIT]
    error_lines = "\n".join(f"- {e}" for e in errors[:20]) or "- (unknown)"
    return f"""The following JSON response does not conform to its schema.

RESPONSE:
{clipped}

VALIDATION ERRORS:
{error_lines}

SCHEMA:
{_schema_block(schema)}

Return the corrected JSON only. Keep every valid value unchanged.
{SYSTEM_RULES}
"""


def build_compact_summary(text: str, max_chars: int) -> str:
    """Clip *text* to the character budget on a word boundary."""
    text = " ".join((text or "").split())
    if len(text) <= max_chars:
        return text
    if max_chars <= 3:
        return text[:max_chars]
    cut = text[: max_chars - 3]
    if " " in cut:
        cut = cut.rsplit(" ", 1)[0]
    return cut + "..."
