from .calibration import CalibrationParams, Calibrator, confidence_level
from .clarify import build_clarifying_question
from .contracts import (
    INTENT_NAMES,
    ClarifyingQuestion,
    IntentName,
    IntentScore,
    RouteDecision,
    ShadowRoute,
)
from .policy import IntentRouter, topic_override
from .rules import IntentRuleTable, load_rule_table, parse_rule_table

__all__ = [
    "INTENT_NAMES",
    "CalibrationParams",
    "Calibrator",
    "ClarifyingQuestion",
    "IntentName",
    "IntentRouter",
    "IntentRuleTable",
    "IntentScore",
    "RouteDecision",
    "ShadowRoute",
    "build_clarifying_question",
    "confidence_level",
    "load_rule_table",
    "parse_rule_table",
    "topic_override",
]
