"""
Validation and repair of structured generation output.

Bounded pipeline per response:

1. strict JSON parse; on failure one deterministic repair pass (markdown
   fences, smart quotes, trailing commas, unquoted keys, then json_repair)
   and one reparse. Still unparseable: UnparseableResponseError.
2. JSON Schema validation. Valid: return the payload.
3. Exactly one AI-assisted repair call with the response, the schema and
   the violations embedded in the prompt. Its answer goes through steps 1-2
   once more; still invalid: RepairFailedError.

There is no loop. Callers substitute a fallback payload on any
ResponseValidationError.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

import jsonschema
from json_repair import repair_json

from ..exceptions import RepairFailedError, SchemaInvalidError, UnparseableResponseError
from ..generation.prompts import render_repair_prompt

logger = logging.getLogger(__name__)

# (prompt, schema) -> raw response text
Repairer = Callable[[str, dict], str]

REPAIR_NONE = "none"
REPAIR_DETERMINISTIC = "deterministic"
REPAIR_AI = "ai"

_FENCE_OPEN_RE = re.compile(r"^```(?:json|JSON)?\s*\n?")
_FENCE_CLOSE_RE = re.compile(r"\n?```\s*$")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_UNQUOTED_KEY_RE = re.compile(r'([{,]\s*)([A-Za-z_$][A-Za-z0-9_$-]*)(\s*:)')
_SMART_QUOTES = str.maketrans({
    "“": '"', "”": '"', "„": '"', "″": '"',
    "‘": "'", "’": "'", "′": "'",
})


@dataclass
class ValidationOutcome:
    payload: Any
    repair: str = REPAIR_NONE
    errors_before_repair: list[str] = field(default_factory=list)


def strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = _FENCE_OPEN_RE.sub("", text)
        text = _FENCE_CLOSE_RE.sub("", text)
    return text.strip()


def deterministic_repair(text: str) -> str:
    """One textual repair pass. Pure; never raises."""
    text = strip_fences(text).translate(_SMART_QUOTES)
    text = _TRAILING_COMMA_RE.sub(r"\1", text)
    text = _UNQUOTED_KEY_RE.sub(r'\1"\2"\3', text)
    # json_repair closes brackets, fixes single quotes and drops stray prose.
    return repair_json(text)


def parse_structured(raw: str) -> tuple[Any, bool]:
    """Parse *raw*, repairing once if needed.

    Returns:
        (value, repaired) where repaired says whether the deterministic
        pass was needed.

    Raises:
        UnparseableResponseError: the repaired text is still not an object
            or array.
    """
    try:
        value = json.loads(raw)
        if isinstance(value, (dict, list)):
            return value, False
    except (json.JSONDecodeError, TypeError):
        pass

    try:
        value = json.loads(deterministic_repair(raw or ""))
    except json.JSONDecodeError as e:
        raise UnparseableResponseError(f"Response is not valid JSON after repair: {e}") from e
    if not isinstance(value, (dict, list)) or value in ({}, []):
        raise UnparseableResponseError()
    return value, True


def schema_errors(payload: Any, schema: dict) -> list[str]:
    """Human-readable schema violations, sorted by location."""
    validator = jsonschema.Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(payload), key=lambda e: list(e.path))
    messages = []
    for error in errors:
        path = "/".join(str(p) for p in error.path) or "<root>"
        messages.append(f"{path}: {error.message}")
    return messages


class ValidationRepairEngine:
    """Validate a raw response against a schema with bounded repair.

    Args:
        repairer: Issues the single AI-assisted repair call. Without one,
            schema violations fail immediately with SchemaInvalidError.
    """

    def __init__(self, repairer: Optional[Repairer] = None):
        self.repairer = repairer

    def validate_and_repair(self, raw: Union[str, dict, list], schema: dict) -> ValidationOutcome:
        if isinstance(raw, (dict, list)):
            payload, repaired = raw, False
        else:
            payload, repaired = parse_structured(raw)

        errors = schema_errors(payload, schema)
        if not errors:
            return ValidationOutcome(
                payload=payload,
                repair=REPAIR_DETERMINISTIC if repaired else REPAIR_NONE,
            )

        logger.info(
            "Response failed schema validation with %d error(s)",
            len(errors),
            extra={"schema_id": schema.get("$id"), "first_error": errors[0]},
        )
        if self.repairer is None:
            raise SchemaInvalidError(errors)

        original = raw if isinstance(raw, str) else json.dumps(raw)
        repaired_text = self.repairer(render_repair_prompt(original, schema, errors), schema)

        try:
            repaired_payload, _ = parse_structured(repaired_text)
        except UnparseableResponseError as e:
            raise RepairFailedError([f"<root>: {e.message}"]) from e

        remaining = schema_errors(repaired_payload, schema)
        if remaining:
            logger.warning(
                "AI-assisted repair still invalid",
                extra={"schema_id": schema.get("$id"), "first_error": remaining[0]},
            )
            raise RepairFailedError(remaining)

        return ValidationOutcome(payload=repaired_payload, repair=REPAIR_AI, errors_before_repair=errors)
