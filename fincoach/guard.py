from __future__ import annotations

import re
from typing import Literal

from .config import USEFULNESS_MIN_HIGH, USEFULNESS_MIN_LOW, USEFULNESS_MIN_MEDIUM
from .contracts import ChatResponse
from .normalize import content_tokens

QueryComplexity = Literal["low", "medium", "high"]

COMPLEX_INTENTS = {"FORECAST_SPEND", "SPENDING_OVERVIEW", "GET_SPENDING_BREAKDOWN", "CREATE_BUDGET"}
MAX_OVERLAP_POINTS = 3
_FIGURE_PATTERN = re.compile(r"\$\s?\d|\d+(\.\d+)?\s?%|\b\d{2,}\b")
_APOLOGY_PATTERN = re.compile(
    r"\b(i'?m not sure|i can'?t help|i don'?t know|unable to help|i'?m sorry,? but)\b", flags=re.IGNORECASE
)


def query_complexity(question: str, intent: str = "") -> QueryComplexity:
    text = str(question or "").strip()
    words = len(text.split())
    if words > 20 or len(text) > 150:
        return "high"
    if words > 10 or len(text) > 80 or intent in COMPLEX_INTENTS:
        return "medium"
    return "low"


def min_usefulness(complexity: QueryComplexity) -> float:
    return {
        "low": USEFULNESS_MIN_LOW,
        "medium": USEFULNESS_MIN_MEDIUM,
        "high": USEFULNESS_MIN_HIGH,
    }[complexity]


def score_usefulness(response: ChatResponse, question: str) -> float:
    """Heuristic 0-7 score: keyword overlap, actionable content, length."""
    text = response.full_text()
    overlap = content_tokens(question) & content_tokens(text)
    score = float(min(MAX_OVERLAP_POINTS, len(overlap)))

    if response.actions:
        score += 1.0
    if _FIGURE_PATTERN.search(text) or any(card.items for card in response.cards):
        score += 1.0

    length = len(response.message)
    if 40 <= length <= 1200:
        score += 1.0
    elif length < 20:
        score -= 1.0

    if _APOLOGY_PATTERN.search(text):
        score -= 2.0
    return max(0.0, score)


def is_useful(response: ChatResponse, question: str, intent: str = "") -> bool:
    return score_usefulness(response, question) >= min_usefulness(query_complexity(question, intent))


def answers_question(message: str, question: str) -> bool:
    """True when the message shares at least one non-trivial token with the question."""
    asked = content_tokens(question)
    if not asked:
        return True
    return bool(asked & content_tokens(message))
