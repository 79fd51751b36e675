from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .contracts import ActionId, ResponseAction
from .facts.contracts import FactPack

logger = logging.getLogger(__name__)

AnswerabilityLevel = Literal["high", "medium", "low", "none"]

MISSING_INCOME = "monthly income"
MISSING_TRANSACTIONS = "transactions"
MISSING_BUDGETS = "budget data"
MISSING_GOALS = "savings goals"
MISSING_RECURRING = "recurring expenses"
MISSING_BALANCES = "account balances"
MISSING_CLARIFICATION = "clarification"

_LEVEL_ORDER: list[AnswerabilityLevel] = ["none", "low", "medium", "high"]

# Ordered keyword -> setup action map; first keyword found in the missing item wins.
_SETUP_ACTIONS: list[tuple[str, ActionId, str]] = [
    ("income", "OPEN_INCOME_FORM", "Add monthly income"),
    ("recurring", "OPEN_RECURRING_FORM", "Add recurring bills"),
    ("bill", "OPEN_RECURRING_FORM", "Add recurring bills"),
    ("goal", "OPEN_GOAL_WIZARD", "Create a savings goal"),
    ("budget", "OPEN_BUDGET_WIZARD", "Set up a budget"),
    ("transaction", "OPEN_TRANSACTION_FORM", "Add transactions"),
    ("balance", "OPEN_ACCOUNTS", "Connect an account"),
]


class Answerability(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: AnswerabilityLevel
    missing: list[str] = Field(default_factory=list)
    reason: str = ""

    @property
    def degraded(self) -> bool:
        return self.level in {"none", "low"}


def _downgrade(level: AnswerabilityLevel) -> AnswerabilityLevel:
    index = _LEVEL_ORDER.index(level)
    return _LEVEL_ORDER[max(0, index - 1)]


def assess_answerability(intent: str, pack: FactPack) -> Answerability:
    counts = pack.section_counts()
    has_budgets = counts["budgets"] > 0
    has_goals = counts["goals"] > 0
    has_tx = counts["transactions"] > 0
    has_income = counts["income"] > 0
    has_recurring = counts["recurring"] > 0
    has_balances = counts["accounts"] > 0

    if intent == "UNKNOWN":
        return Answerability(level="none", missing=[MISSING_CLARIFICATION], reason="intent not recognized")
    if intent == "GENERAL_QA":
        return Answerability(level="medium", reason="general question; personal data optional")
    if intent == "CREATE_BUDGET":
        return Answerability(level="high", reason="budget creation works from defaults")

    missing: list[str] = []
    uses_transactions = False
    if intent == "GET_BALANCE":
        if has_balances:
            level: AnswerabilityLevel = "high"
        else:
            missing.append(MISSING_BALANCES)
            level = "low" if has_tx else "none"
            uses_transactions = True
    elif intent == "GET_BUDGET_STATUS":
        if has_budgets:
            level = "high"
        else:
            missing.append(MISSING_BUDGETS)
            level = "none"
    elif intent == "GET_GOAL_PROGRESS":
        if has_goals:
            level = "high"
        else:
            missing.append(MISSING_GOALS)
            level = "none"
    elif intent == "LIST_SUBSCRIPTIONS":
        if has_recurring:
            level = "high"
        else:
            missing.append(MISSING_RECURRING)
            level = "low" if has_tx else "none"
    elif intent == "FORECAST_SPEND":
        uses_transactions = True
        if not has_tx:
            missing.append(MISSING_TRANSACTIONS)
        if not has_income:
            missing.append(MISSING_INCOME)
        level = "none" if not has_tx else ("medium" if not has_income else "high")
    elif intent in {"GET_SPENDING_BREAKDOWN", "CATEGORIZE_TX"}:
        uses_transactions = True
        if has_tx:
            level = "high"
        else:
            missing.append(MISSING_TRANSACTIONS)
            level = "none"
    elif intent == "SPENDING_OVERVIEW":
        uses_transactions = True
        if not has_income:
            missing.append(MISSING_INCOME)
        if not has_tx:
            missing.append(MISSING_TRANSACTIONS)
        if not has_budgets:
            missing.append(MISSING_BUDGETS)
        if not has_tx and not has_budgets:
            level = "none"
        elif not has_tx:
            level = "low"
        elif missing:
            level = "medium"
        else:
            level = "high"
    else:
        logger.warning("answerability_unmapped_intent intent=%s", intent)
        return Answerability(level="medium", reason="no data requirements registered")

    reason = "required data present" if not missing else f"missing {', '.join(missing)}"
    if uses_transactions and has_tx and pack.metadata.freshness == "stale":
        level = _downgrade(level)
        reason = f"{reason}; transactions are stale"
    return Answerability(level=level, missing=missing, reason=reason)


def assess_all(intents: list[str], pack: FactPack) -> dict[str, Answerability]:
    return {intent: assess_answerability(intent, pack) for intent in intents}


def setup_actions_for(missing: list[str]) -> list[ResponseAction]:
    actions: list[ResponseAction] = []
    seen: set[str] = set()
    for item in missing:
        lowered = item.lower()
        if lowered == MISSING_CLARIFICATION:
            continue
        action_id: ActionId = "OPEN_SETUP_WIZARD"
        label = "Finish setup"
        for keyword, candidate, candidate_label in _SETUP_ACTIONS:
            if keyword in lowered:
                action_id, label = candidate, candidate_label
                break
        if action_id in seen:
            continue
        seen.add(action_id)
        actions.append(ResponseAction(id=action_id, label=label))
    return actions
