from __future__ import annotations

from typing import Any, Dict, get_args

from jsonschema import Draft202012Validator

from ..contracts import ActionId

KNOWLEDGE_BASE_JSON_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["version", "items"],
    "properties": {
        "version": {"type": "string", "minLength": 1},
        "items": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["id", "question", "answer", "category", "keywords"],
                "properties": {
                    "id": {"type": "string", "minLength": 1},
                    "question": {"type": "string", "minLength": 1},
                    "answer": {"type": "string", "minLength": 1},
                    "category": {"type": "string", "minLength": 1},
                    "keywords": {"type": "array", "minItems": 1, "items": {"type": "string", "minLength": 1}},
                    "actions": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "required": ["id", "label"],
                            "properties": {
                                "id": {"type": "string", "enum": list(get_args(ActionId))},
                                "label": {"type": "string", "minLength": 1},
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

_validator = Draft202012Validator(KNOWLEDGE_BASE_JSON_SCHEMA)


def validate_knowledge_base_payload(payload: Dict[str, Any]) -> list[str]:
    errors = sorted(_validator.iter_errors(payload), key=lambda item: list(item.path))
    messages: list[str] = []
    for item in errors:
        path = ".".join(str(part) for part in item.path)
        location = path if path else "$"
        messages.append(f"{location}: {item.message}")
    return messages
