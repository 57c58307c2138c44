"""JSON Schemas for the structured output of each generation step.

These are the contracts the validation/repair engine enforces and the
schemas embedded in prompts. Keyed by step name.
"""

from typing import Any

METAPHOR_CATEGORIES = ("Organic", "Geometric", "Flow")
PATTERN_TYPES = ("correlation", "trend", "clustering", "outlier", "distribution")

_HEX_COLOR = {"type": "string", "pattern": "^#[0-9A-Fa-f]{6}$"}

METAPHOR_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["id", "title", "description", "category", "innovation_score", "color_palette", "d3_strategy"],
    "properties": {
        "id": {"type": "string", "minLength": 1, "maxLength": 80},
        "title": {"type": "string", "minLength": 1, "maxLength": 120},
        "description": {"type": "string", "minLength": 1},
        "category": {"enum": list(METAPHOR_CATEGORIES)},
        "innovation_score": {"type": "number", "minimum": 0, "maximum": 10},
        "color_palette": {"type": "array", "items": _HEX_COLOR, "minItems": 3, "maxItems": 8},
        "d3_strategy": {"type": "string", "minLength": 1},
    },
}

ANALYSIS_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "$id": "vizai:analysis",
    "type": "object",
    "required": ["column_profiles", "patterns", "metaphors", "compact_summary"],
    "properties": {
        "column_profiles": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "required": ["detected_type"],
                "properties": {
                    "detected_type": {"enum": ["numerical", "categorical", "temporal", "text", "unknown"]},
                    "null_percentage": {"type": "number", "minimum": 0, "maximum": 100},
                    "quality_flags": {"type": "array", "items": {"type": "string"}},
                },
            },
        },
        "patterns": {
            "type": "array",
            "maxItems": 10,
            "items": {
                "type": "object",
                "required": ["type", "description", "strength"],
                "properties": {
                    "type": {"enum": list(PATTERN_TYPES)},
                    "description": {"type": "string"},
                    "strength": {"type": "number", "minimum": 0, "maximum": 1},
                    "columns": {"type": "array", "items": {"type": "string"}},
                },
            },
        },
        "metaphors": {"type": "array", "items": METAPHOR_SCHEMA, "minItems": 3, "maxItems": 3},
        "compact_summary": {"type": "string", "minLength": 1},
    },
}

VISUALIZATION_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "$id": "vizai:visualization",
    "type": "object",
    "required": ["metaphor_id", "title", "code", "libraries"],
    "properties": {
        "metaphor_id": {"type": "string", "minLength": 1},
        "title": {"type": "string", "minLength": 1},
        "code": {"type": "string", "minLength": 20},
        "libraries": {
            "type": "array",
            "items": {"type": "string"},
            "minItems": 1,
            "maxItems": 5,
        },
    },
}

STEP_SCHEMAS: dict[str, dict[str, Any]] = {
    "analysis": ANALYSIS_SCHEMA,
    "visualization": VISUALIZATION_SCHEMA,
}
