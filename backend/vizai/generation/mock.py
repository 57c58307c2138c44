"""Deterministic generator used when no model is configured.

Answers from the prompt alone: the analysis stage reads the column list out
of the prompt, the visualization stage reads the chosen metaphor back out.
Same prompt, same response.
"""

import json
import logging
import re
from typing import Any

from ..schemas.step_payloads import ANALYSIS_SCHEMA, VISUALIZATION_SCHEMA
from .client import GenerationResult
from .pricing import estimate_tokens
from .templates import DEFAULT_METAPHORS, build_analysis_payload, build_visualization_payload

logger = logging.getLogger(__name__)

_ROWS_RE = re.compile(r"^ROWS: (\d+)$", re.MULTILINE)
_COLUMN_RE = re.compile(r"^  - (.+)$", re.MULTILINE)
_METAPHOR_MARKER = "CHOSEN METAPHOR:\n"


def _columns_from_prompt(prompt: str) -> list[str]:
    block = prompt.split("PRECOMPUTED STATISTICS:", 1)[0]
    return [c for c in _COLUMN_RE.findall(block) if not c.startswith("... and ")]


def _metaphor_from_prompt(prompt: str) -> dict[str, Any]:
    if _METAPHOR_MARKER not in prompt:
        return dict(DEFAULT_METAPHORS[0])
    tail = prompt.split(_METAPHOR_MARKER, 1)[1]
    try:
        metaphor, _ = json.JSONDecoder().raw_decode(tail)
    except json.JSONDecodeError:
        return dict(DEFAULT_METAPHORS[0])
    return metaphor if isinstance(metaphor, dict) else dict(DEFAULT_METAPHORS[0])


class MockGenerator:
    model = "mock"

    def generate(self, prompt: str, schema: dict[str, Any], temperature: float) -> GenerationResult:
        schema_id = schema.get("$id")
        if schema_id == ANALYSIS_SCHEMA["$id"]:
            match = _ROWS_RE.search(prompt)
            payload = build_analysis_payload(
                row_count=int(match.group(1)) if match else 0,
                columns=_columns_from_prompt(prompt),
            )
        elif schema_id == VISUALIZATION_SCHEMA["$id"]:
            payload = build_visualization_payload(_metaphor_from_prompt(prompt), columns=[])
        else:
            logger.warning("Mock generator has no canned answer for schema %s", schema_id)
            payload = {}

        raw_text = json.dumps(payload)
        return GenerationResult(
            raw_text=raw_text,
            input_tokens=estimate_tokens(prompt),
            output_tokens=estimate_tokens(raw_text),
            model=self.model,
        )
