from __future__ import annotations

import re

from ..config import MODEL_TOKENS_MINI, MODEL_TOKENS_PRO, MODEL_TOKENS_STD
from ..contracts import ModelTier, UsageSnapshot

TIER_ORDER: list[ModelTier] = ["mini", "std", "pro"]
TIER_MAX_TOKENS: dict[str, int] = {
    "mini": MODEL_TOKENS_MINI,
    "std": MODEL_TOKENS_STD,
    "pro": MODEL_TOKENS_PRO,
}
LOW_CONFIDENCE_UPGRADE = 0.5

_PRO_PATTERN = re.compile(r"\b(plan|planning|optimi[sz]e|strategy|invest\w*|analy[sz]e|recommend\w*)\b", flags=re.IGNORECASE)
_STD_PATTERN = re.compile(r"\b(forecast|trends?|patterns?|compare|comparison|projection)\b", flags=re.IGNORECASE)
_STD_INTENTS = {"FORECAST_SPEND", "GET_SPENDING_BREAKDOWN", "SPENDING_OVERVIEW"}


def pick_model_tier(
    question: str,
    intent: str,
    calibrated: float,
    usage: UsageSnapshot | None = None,
) -> ModelTier:
    if usage is not None and usage.exhausted:
        return "mini"
    if _PRO_PATTERN.search(question or ""):
        return "pro"
    if _STD_PATTERN.search(question or "") or intent in _STD_INTENTS:
        return "std"
    if calibrated < LOW_CONFIDENCE_UPGRADE:
        return "std"
    return "mini"


def escalation_allowed(tier: str, usage: UsageSnapshot | None = None) -> bool:
    if usage is not None and usage.exhausted:
        return False
    return tier != "pro"


def max_tokens_for(tier: str) -> int:
    return TIER_MAX_TOKENS.get(tier, MODEL_TOKENS_MINI)
