from __future__ import annotations

from typing import Any, Dict

from jsonschema import Draft202012Validator

from .contracts import INTENT_NAMES

RULE_SECTIONS = ["accounts", "budgets", "goals", "recurring", "transactions", "income"]

INTENT_RULE_TABLE_JSON_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["version", "exact_match_bonus", "intents"],
    "properties": {
        "version": {"type": "string", "minLength": 1},
        "locale": {"type": "string"},
        "exact_match_bonus": {"type": "number", "minimum": 0.0, "maximum": 1.0},
        "intents": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["intent", "base_score", "patterns"],
                "properties": {
                    "intent": {"type": "string", "enum": [name for name in INTENT_NAMES if name != "UNKNOWN"]},
                    "base_score": {"type": "number", "minimum": 0.0, "maximum": 1.0},
                    "patterns": {"type": "array", "minItems": 1, "items": {"type": "string", "minLength": 1}},
                    "exact_phrases": {"type": "array", "items": {"type": "string", "minLength": 1}},
                    "context_boosts": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "required": ["section", "boost"],
                            "properties": {
                                "section": {"type": "string", "enum": RULE_SECTIONS},
                                "min_count": {"type": "integer", "minimum": 1},
                                "boost": {"type": "number", "minimum": 0.0, "maximum": 1.0},
                            },
                            "additionalProperties": False,
                        },
                    },
                },
                "additionalProperties": False,
            },
        },
    },
    "additionalProperties": False,
}

_validator = Draft202012Validator(INTENT_RULE_TABLE_JSON_SCHEMA)


def validate_intent_rule_table_payload(payload: Dict[str, Any]) -> list[str]:
    errors = sorted(_validator.iter_errors(payload), key=lambda item: list(item.path))
    messages: list[str] = []
    for item in errors:
        path = ".".join(str(part) for part in item.path)
        location = path if path else "$"
        messages.append(f"{location}: {item.message}")
    return messages
