"""Tests for bounded validation and repair of generation output."""

import json
from unittest.mock import MagicMock

import pytest

from vizai.exceptions import RepairFailedError, SchemaInvalidError, UnparseableResponseError
from vizai.schemas.step_payloads import ANALYSIS_SCHEMA, VISUALIZATION_SCHEMA
from vizai.services.validation_repair import (
    ValidationRepairEngine,
    deterministic_repair,
    parse_structured,
    schema_errors,
    strip_fences,
)

from conftest import analysis_json, visualization_json

BROKEN_VISUALIZATION = """{
  metaphor_id: "flow-river-1",
  title: "Data Rivers",
  description: "Revenue flowing through regions",
  code: "const svg = d3.select(body).append(svg);",
  libraries: ["d3@7",],
}"""


class TestParse:
    def test_strip_fences(self):
        assert strip_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_fences('{"a": 1}') == '{"a": 1}'

    def test_valid_json_is_not_repaired(self):
        value, repaired = parse_structured('{"a": [1, 2]}')
        assert value == {"a": [1, 2]}
        assert repaired is False

    def test_trailing_commas_and_unquoted_keys(self):
        value, repaired = parse_structured('{a: 1, b: [1, 2,],}')
        assert value == {"a": 1, "b": [1, 2]}
        assert repaired is True

    def test_smart_quotes(self):
        value, _ = parse_structured("{“title”: “Rivers”}")
        assert value == {"title": "Rivers"}

    def test_deterministic_repair_is_pure(self):
        text = '```json\n{a: 1,}\n```'
        assert deterministic_repair(text) == deterministic_repair(text)

    @pytest.mark.parametrize("raw", ["", "I could not produce a visualization.", "42"])
    def test_unparseable(self, raw):
        with pytest.raises(UnparseableResponseError):
            parse_structured(raw)


class TestValidationRepairEngine:
    def test_valid_payload_passes_through_unchanged(self):
        payload = json.loads(visualization_json())
        repairer = MagicMock()
        outcome = ValidationRepairEngine(repairer).validate_and_repair(payload, VISUALIZATION_SCHEMA)
        assert outcome.payload is payload
        assert outcome.repair == "none"
        repairer.assert_not_called()

    def test_valid_text_is_idempotent(self):
        engine = ValidationRepairEngine()
        first = engine.validate_and_repair(analysis_json(), ANALYSIS_SCHEMA)
        second = engine.validate_and_repair(first.payload, ANALYSIS_SCHEMA)
        assert first.payload == second.payload == json.loads(analysis_json())

    def test_deterministic_repair_without_ai_call(self):
        repairer = MagicMock()
        outcome = ValidationRepairEngine(repairer).validate_and_repair(BROKEN_VISUALIZATION, VISUALIZATION_SCHEMA)
        assert outcome.repair == "deterministic"
        assert outcome.payload["libraries"] == ["d3@7"]
        repairer.assert_not_called()

    def test_fenced_response(self):
        raw = f"```json\n{visualization_json()}\n```"
        outcome = ValidationRepairEngine().validate_and_repair(raw, VISUALIZATION_SCHEMA)
        assert outcome.payload["metaphor_id"] == "flow-river-1"

    def test_schema_violation_without_repairer(self):
        with pytest.raises(SchemaInvalidError) as exc_info:
            ValidationRepairEngine().validate_and_repair(visualization_json(code="short"), VISUALIZATION_SCHEMA)
        assert any(e.startswith("code:") for e in exc_info.value.errors)

    def test_single_ai_repair(self):
        repairer = MagicMock(return_value=visualization_json())
        outcome = ValidationRepairEngine(repairer).validate_and_repair(
            visualization_json(libraries=[]), VISUALIZATION_SCHEMA
        )
        assert outcome.repair == "ai"
        assert outcome.errors_before_repair
        repairer.assert_called_once()
        prompt, schema = repairer.call_args.args
        assert schema is VISUALIZATION_SCHEMA
        assert "libraries" in prompt

    def test_repair_still_invalid_fails_without_second_attempt(self):
        repairer = MagicMock(return_value=visualization_json(libraries=[]))
        with pytest.raises(RepairFailedError):
            ValidationRepairEngine(repairer).validate_and_repair(
                visualization_json(libraries=[]), VISUALIZATION_SCHEMA
            )
        assert repairer.call_count == 1

    def test_repair_returning_prose_fails(self):
        repairer = MagicMock(return_value="Sorry, I cannot help with that.")
        with pytest.raises(RepairFailedError):
            ValidationRepairEngine(repairer).validate_and_repair(
                analysis_json(metaphors=[]), ANALYSIS_SCHEMA
            )

    def test_unparseable_response_never_reaches_repairer(self):
        repairer = MagicMock()
        with pytest.raises(UnparseableResponseError):
            ValidationRepairEngine(repairer).validate_and_repair("no json here", ANALYSIS_SCHEMA)
        repairer.assert_not_called()


class TestSchemaErrors:
    def test_messages_carry_paths(self):
        payload = json.loads(analysis_json())
        payload["metaphors"] = payload["metaphors"][:2]
        errors = schema_errors(payload, ANALYSIS_SCHEMA)
        assert errors and errors[0].startswith("metaphors:")

    def test_no_errors_for_valid(self):
        assert schema_errors(json.loads(analysis_json()), ANALYSIS_SCHEMA) == []
