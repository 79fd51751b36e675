from __future__ import annotations

from .contracts import ClarifyingQuestion, RouteDecision

INTENT_CHOICES: dict[str, str] = {
    "GET_BALANCE": "Check my account balances",
    "GET_BUDGET_STATUS": "Check my budget status",
    "LIST_SUBSCRIPTIONS": "List my subscriptions",
    "FORECAST_SPEND": "Forecast my spending this month",
    "CREATE_BUDGET": "Create a new budget",
    "GET_GOAL_PROGRESS": "See my goal progress",
    "GET_SPENDING_BREAKDOWN": "Show my spending breakdown",
    "CATEGORIZE_TX": "Categorize a transaction",
    "SPENDING_OVERVIEW": "Give me a spending overview",
    "GENERAL_QA": "Ask a money question",
}
DEFAULT_CHOICES = [
    "GET_BUDGET_STATUS",
    "GET_SPENDING_BREAKDOWN",
    "GET_GOAL_PROGRESS",
    "CREATE_BUDGET",
]


def build_clarifying_question(decision: RouteDecision | None = None, *, max_options: int = 4) -> ClarifyingQuestion:
    candidates: list[str] = []
    if decision is not None:
        candidates.extend(item.intent for item in decision.secondary if item.intent in INTENT_CHOICES)
    for intent in DEFAULT_CHOICES:
        if intent not in candidates:
            candidates.append(intent)

    if decision is not None and decision.secondary:
        question_id = "disambiguate_intent"
        question_text = "I want to get this right. Which of these did you mean?"
    else:
        question_id = "generic_intent"
        question_text = "I'm not sure what you're looking for yet. Here are some things I can help with:"
    return ClarifyingQuestion(
        question_id=question_id,
        question_text=question_text,
        options=[INTENT_CHOICES[intent] for intent in candidates[:max_options]],
    )
