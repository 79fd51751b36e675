from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

from ..errors import RuleTableError
from .contracts import IntentRule
from .schemas import validate_intent_rule_table_payload

logger = logging.getLogger(__name__)

DEFAULT_RULES_PATH = Path(__file__).with_name("intent_rules.json")


@dataclass(frozen=True)
class CompiledIntentRule:
    rule: IntentRule
    patterns: tuple[re.Pattern[str], ...]
    exact_phrases: tuple[re.Pattern[str], ...]


@dataclass(frozen=True)
class IntentRuleTable:
    version: str
    exact_match_bonus: float
    rules: tuple[CompiledIntentRule, ...]

    @property
    def intents(self) -> list[str]:
        return [item.rule.intent for item in self.rules]


def _compile(pattern: str, *, location: str, errors: list[str]) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern, flags=re.IGNORECASE)
    except re.error as exc:
        errors.append(f"{location}: invalid regex ({exc})")
        return None


def parse_rule_table(payload: Dict[str, Any], *, source: str = "") -> IntentRuleTable:
    errors = validate_intent_rule_table_payload(payload)
    if errors:
        raise RuleTableError(errors, source=source)

    compiled: list[CompiledIntentRule] = []
    seen: set[str] = set()
    for index, raw in enumerate(payload["intents"]):
        rule = IntentRule.model_validate(raw)
        if rule.intent in seen:
            errors.append(f"intents.{index}.intent: duplicate intent {rule.intent}")
            continue
        seen.add(rule.intent)
        patterns = [
            _compile(pattern, location=f"intents.{index}.patterns.{position}", errors=errors)
            for position, pattern in enumerate(rule.patterns)
        ]
        phrases = [
            _compile(rf"\b{re.escape(phrase.lower())}\b", location=f"intents.{index}.exact_phrases.{position}", errors=errors)
            for position, phrase in enumerate(rule.exact_phrases)
        ]
        compiled.append(
            CompiledIntentRule(
                rule=rule,
                patterns=tuple(item for item in patterns if item is not None),
                exact_phrases=tuple(item for item in phrases if item is not None),
            )
        )
    if errors:
        raise RuleTableError(errors, source=source)

    return IntentRuleTable(
        version=str(payload["version"]),
        exact_match_bonus=float(payload["exact_match_bonus"]),
        rules=tuple(compiled),
    )


def load_rule_table(path: str | Path | None = None) -> IntentRuleTable:
    target = Path(path) if path else DEFAULT_RULES_PATH
    try:
        payload = json.loads(target.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise RuleTableError([f"$: unreadable rule table ({exc})"], source=str(target)) from exc
    if not isinstance(payload, dict):
        raise RuleTableError(["$: rule table must be a JSON object"], source=str(target))
    table = parse_rule_table(payload, source=str(target))
    logger.info("intent_rules_loaded version=%s intents=%s source=%s", table.version, len(table.rules), target)
    return table
