from __future__ import annotations

from typing import Any, Dict

from jsonschema import Draft202012Validator

NARRATION_PLAN_JSON_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["schema_version", "summary_lines", "used_fact_ids"],
    "properties": {
        "schema_version": {"const": "narration_plan_v1"},
        "summary_lines": {
            "type": "array",
            "minItems": 1,
            "maxItems": 4,
            "items": {"type": "string", "minLength": 1},
        },
        "used_fact_ids": {"type": "array", "items": {"type": "string", "minLength": 1}},
    },
    "additionalProperties": False,
}

_validator = Draft202012Validator(NARRATION_PLAN_JSON_SCHEMA)


def validate_narration_plan_payload(payload: Dict[str, Any]) -> list[str]:
    errors = sorted(_validator.iter_errors(payload), key=lambda item: list(item.path))
    messages: list[str] = []
    for item in errors:
        path = ".".join(str(part) for part in item.path)
        location = path if path else "$"
        messages.append(f"{location}: {item.message}")
    return messages
