from __future__ import annotations

import math
from typing import TYPE_CHECKING

from ..answerability import Answerability, setup_actions_for
from ..contracts import ActionId, ChatResponse, ModelTier, ResponseAction, ResponseCard, ResponseCost, ResponseSource
from ..grounding.contracts import (
    BalanceFact,
    BudgetFact,
    BudgetSuggestionFact,
    CategorizeFact,
    Fact,
    ForecastFact,
    GoalFact,
    GroundedFacts,
    OverviewFact,
    SpendingFact,
    SubscriptionFact,
)
from ..normalize import fmt_money

if TYPE_CHECKING:
    from ..router.contracts import ClarifyingQuestion
    from ..session import PendingAction

DECLINE_MESSAGE = "No problem! What else can I help you with?"
ASK_HEADLINES: dict[str, str] = {
    "GET_BALANCE": "I can't see your account balances yet.",
    "GET_BUDGET_STATUS": "You don't have any budgets set up yet, so there's no budget status to show.",
    "LIST_SUBSCRIPTIONS": "I haven't found any recurring expenses or subscriptions yet.",
    "FORECAST_SPEND": "I need a bit more data before I can forecast your spending.",
    "GET_GOAL_PROGRESS": "You haven't created any savings goals yet, so there's no goal progress to track.",
    "GET_SPENDING_BREAKDOWN": "I can't break down your spending until some transactions are recorded.",
    "CATEGORIZE_TX": "There are no transactions to categorize yet.",
    "SPENDING_OVERVIEW": "I can't review your spending yet because some of your financial data is missing.",
}
DEFAULT_ASK_HEADLINE = "I need a little more information to personalize this."
_INTENT_ACTIONS: dict[str, tuple[ActionId, str]] = {
    "GET_BALANCE": ("OPEN_ACCOUNTS", "View accounts"),
    "GET_BUDGET_STATUS": ("OPEN_BUDGETS", "View budgets"),
    "LIST_SUBSCRIPTIONS": ("OPEN_SUBSCRIPTIONS", "View subscriptions"),
    "FORECAST_SPEND": ("OPEN_TRANSACTIONS", "View transactions"),
    "CREATE_BUDGET": ("OPEN_BUDGET_WIZARD", "Open budget setup"),
    "GET_GOAL_PROGRESS": ("OPEN_GOALS", "View goals"),
    "GET_SPENDING_BREAKDOWN": ("OPEN_TRANSACTIONS", "View transactions"),
    "CATEGORIZE_TX": ("OPEN_TRANSACTIONS", "View transactions"),
    "SPENDING_OVERVIEW": ("OPEN_BUDGETS", "View budgets"),
}
_GOAL_STATUS_TEXT = {
    "ahead": "ahead of schedule",
    "on_track": "on track",
    "behind": "behind schedule",
}


def estimate_tokens(text: str) -> int:
    return int(math.ceil(len(text or "") / 4))


def _budget_line(fact: BudgetFact) -> str:
    if fact.status == "over":
        return (
            f"{fact.name} is over budget: {fmt_money(fact.spent)} spent against {fmt_money(fact.limit)} "
            f"({fmt_money(-fact.remaining)} over)."
        )
    if fact.status == "at_limit":
        return (
            f"{fact.name} is nearly used up: {fmt_money(fact.remaining)} remaining of {fmt_money(fact.limit)} "
            f"({fact.utilization}% used)."
        )
    return f"{fact.name} has {fmt_money(fact.remaining)} remaining of {fmt_money(fact.limit)} ({fact.utilization}% used)."


def _goal_line(fact: GoalFact) -> str:
    line = (
        f"{fact.name}: {fmt_money(fact.current)} saved of {fmt_money(fact.target)} "
        f"({fact.progress}%), {_GOAL_STATUS_TEXT[fact.status]}"
    )
    if fact.days_remaining is not None and fact.days_remaining > 0:
        line = f"{line} with {fact.days_remaining} days left"
    return f"{line}."


def describe_fact(fact: Fact) -> str:
    """One-sentence rendering of a fact, shared by templates and narration prompts."""
    if isinstance(fact, BudgetFact):
        return _budget_line(fact)
    if isinstance(fact, GoalFact):
        return _goal_line(fact)
    if isinstance(fact, BalanceFact):
        count = len(fact.accounts)
        noun = "account" if count == 1 else "accounts"
        return f"Your total balance is {fmt_money(fact.total)} across {count} {noun}."
    if isinstance(fact, SpendingFact):
        line = f"You spent {fmt_money(fact.total_spent)} in {fact.period}, about {fmt_money(fact.average_daily)} a day."
        if fact.trend == "up":
            line = f"{line} That's more than the {fmt_money(fact.previous_total_spent)} you spent the period before."
        elif fact.trend == "down":
            line = f"{line} That's less than the {fmt_money(fact.previous_total_spent)} you spent the period before."
        return line
    if isinstance(fact, ForecastFact):
        line = (
            f"At your current pace of {fmt_money(fact.average_daily)} a day, you're on track to spend about "
            f"{fmt_money(fact.projected_month_spend)} this month."
        )
        if fact.monthly_income and fact.projected_leftover is not None:
            if fact.projected_leftover >= 0:
                line = f"{line} That would leave about {fmt_money(fact.projected_leftover)} of your {fmt_money(fact.monthly_income)} income."
            else:
                line = f"{line} That's {fmt_money(-fact.projected_leftover)} more than your {fmt_money(fact.monthly_income)} income."
        return line
    if isinstance(fact, SubscriptionFact):
        count = len(fact.items)
        noun = "recurring expense" if count == 1 else "recurring expenses"
        return f"You have {count} {noun} totaling about {fmt_money(fact.monthly_total)} a month."
    if isinstance(fact, OverviewFact):
        line = f"You've spent {fmt_money(fact.total_spent)} in {fact.period}."
        if fact.monthly_income:
            line = f"{line} Your monthly income is {fmt_money(fact.monthly_income)}."
        if fact.top_category is not None:
            line = f"{line} Your top spending category is {fact.top_category.category} at {fmt_money(fact.top_category.amount)}."
        if fact.budgets_over:
            line = f"{line} Over budget: {', '.join(fact.budgets_over)}."
        if fact.goals_behind:
            line = f"{line} Behind schedule: {', '.join(fact.goals_behind)}."
        return line
    if isinstance(fact, BudgetSuggestionFact):
        return f"Suggested {fact.category} budget: {fmt_money(fact.suggested_amount)} a month."
    if isinstance(fact, CategorizeFact):
        if fact.basis == "none":
            return f"I couldn't tell which category \"{fact.description}\" ({fmt_money(fact.amount)}) belongs to."
        return f"\"{fact.description}\" ({fmt_money(fact.amount)}) looks like {fact.suggested_category}."
    raise TypeError(f"unsupported fact type: {type(fact).__name__}")


def _insights(grounded: GroundedFacts) -> list[str]:
    insights: list[str] = []
    for fact in grounded.facts:
        if isinstance(fact, BudgetFact) and fact.status == "over":
            insights.append(f"{fact.name} is {fmt_money(-fact.remaining)} over budget.")
        elif isinstance(fact, BudgetFact) and fact.status == "at_limit":
            insights.append(f"{fact.name} is at {fact.utilization}% of its limit.")
        elif isinstance(fact, GoalFact) and fact.status == "behind":
            insights.append(f"{fact.name} needs {fmt_money(fact.remaining)} more to reach its target.")
        elif isinstance(fact, ForecastFact) and fact.projected_leftover is not None and fact.projected_leftover < 0:
            insights.append("Projected spending is higher than your monthly income.")
    return insights


def _headline(grounded: GroundedFacts) -> str:
    first = grounded.facts[0]
    if isinstance(first, BudgetFact):
        return f"Budget status for {grounded.period}:"
    if isinstance(first, GoalFact):
        return "Here's your goal progress:"
    if isinstance(first, SpendingFact):
        return "Here's your spending breakdown:"
    if isinstance(first, SubscriptionFact):
        return "Here are your recurring expenses:"
    if isinstance(first, OverviewFact):
        return f"Spending overview for {grounded.period}:"
    return ""


def _detail_items(grounded: GroundedFacts) -> list[str]:
    items: list[str] = []
    for fact in grounded.facts:
        if isinstance(fact, BalanceFact):
            items.extend(f"{account.name}: {fmt_money(account.balance)}" for account in fact.accounts)
        elif isinstance(fact, SpendingFact):
            items.extend(f"{item.category}: {fmt_money(item.amount)}" for item in fact.top_categories)
        elif isinstance(fact, SubscriptionFact):
            items.extend(f"{item.name}: {fmt_money(item.monthly_amount)}/month" for item in fact.items)
    return items


def fact_actions(grounded: GroundedFacts) -> list[ResponseAction]:
    first = grounded.facts[0]
    if isinstance(first, BudgetSuggestionFact):
        return [
            ResponseAction(
                id="CREATE_BUDGET",
                label=f"Create {first.category} budget",
                params={"category": first.category, "amount": first.suggested_amount, "period": "monthly"},
            )
        ]
    if isinstance(first, CategorizeFact) and first.basis != "none":
        return [
            ResponseAction(
                id="OPEN_TRANSACTIONS",
                label=f"Categorize as {first.suggested_category}",
                params={"transaction_id": first.transaction_id, "category": first.suggested_category},
            )
        ]
    mapped = _INTENT_ACTIONS.get(grounded.intent)
    if mapped is None:
        return []
    return [ResponseAction(id=mapped[0], label=mapped[1])]


def compose_from_facts(grounded: GroundedFacts, *, tier: ModelTier = "mini") -> ChatResponse:
    """Deterministic template response built only from grounded facts."""
    first = grounded.facts[0]
    lines = [describe_fact(fact) for fact in grounded.facts]
    if isinstance(first, BudgetSuggestionFact):
        basis = {
            "requested": "That's the amount you asked for.",
            "spending_history": f"That's based on the {fmt_money(first.recent_spend)} you spent on {first.category} recently.",
            "income_share": "That's about 10% of your monthly income.",
            "default": "It's a common starting point you can adjust anytime.",
        }[first.basis]
        message = f"Want me to create a {first.category} budget of {fmt_money(first.suggested_amount)} a month? {basis}"
    else:
        headline = _headline(grounded)
        message = " ".join([headline, *lines]) if headline else " ".join(lines)

    items = _detail_items(grounded)
    cards = [ResponseCard(type="summary", title="Details", items=items)] if items else []
    insights = _insights(grounded)
    return ChatResponse(
        message=message,
        cards=cards,
        actions=fact_actions(grounded),
        sources=[ResponseSource(kind="db", note=f"fact_pack:{grounded.fact_pack_hash[:12]}")],
        cost=ResponseCost(model=tier, est_tokens=0),
        confidence=grounded.confidence,
        insights=insights or None,
        rationale=f"Composed from your {grounded.period} data.",
    )


def compose_narrated(
    text: str,
    grounded: GroundedFacts,
    *,
    tier: ModelTier,
    tokens: int = 0,
) -> ChatResponse:
    template = compose_from_facts(grounded, tier=tier)
    return template.model_copy(
        update={
            "message": text,
            "sources": [*template.sources, ResponseSource(kind="gpt", note=f"narration:{tier}")],
            "cost": ResponseCost(model=tier, est_tokens=tokens or estimate_tokens(text)),
        }
    )


def compose_actionable_ask(
    answerability: Answerability,
    *,
    intent: str = "",
    base: ChatResponse | None = None,
) -> ChatResponse:
    missing = [item for item in answerability.missing if item != "clarification"]
    ask = f"To personalize this, I need: {', '.join(missing)}." if missing else ""
    setup = setup_actions_for(missing)
    checklist = [ResponseCard(type="checklist", title="What I need", items=missing)] if missing else []

    if base is None:
        return ChatResponse(
            message=ASK_HEADLINES.get(intent, DEFAULT_ASK_HEADLINE),
            details=ask or None,
            cards=checklist,
            actions=setup,
            sources=[ResponseSource(kind="cache", note="setup_prompt")],
            cost=ResponseCost(model="mini", est_tokens=0),
            confidence=0.95,
            rationale=answerability.reason or None,
        )

    details = "\n\n".join(part for part in [base.details or "", ask] if part)
    known = {action.id for action in base.actions}
    return base.model_copy(
        update={
            "details": details or None,
            "cards": [*base.cards, *checklist],
            "actions": [*base.actions, *[action for action in setup if action.id not in known]],
            "rationale": answerability.reason or base.rationale,
        }
    )


def clarification_response(question: ClarifyingQuestion) -> ChatResponse:
    return ChatResponse(
        message=question.question_text,
        cards=[ResponseCard(type="choices", title="Try one of these", items=list(question.options))],
        sources=[ResponseSource(kind="cache", note=f"clarify:{question.question_id}")],
        cost=ResponseCost(model="mini", est_tokens=0),
        confidence=0.5,
    )


def helpful_fallback(intent: str = "") -> ChatResponse:
    mapped = _INTENT_ACTIONS.get(intent)
    actions = [ResponseAction(id=mapped[0], label=mapped[1])] if mapped else [ResponseAction(id="OPEN_LEARN", label="Browse money basics")]
    return ChatResponse(
        message=(
            "I couldn't put a reliable answer together for that just now. "
            "I can help with your budgets, savings goals, spending breakdown and money basics like emergency funds or "
            "high-yield savings accounts."
        ),
        cards=[
            ResponseCard(
                type="choices",
                title="Try asking",
                items=["What's my budget status?", "Show my spending breakdown", "How do I build an emergency fund?"],
            )
        ],
        actions=actions,
        sources=[ResponseSource(kind="cache", note="fallback")],
        cost=ResponseCost(model="mini", est_tokens=0),
        confidence=0.3,
    )


def pending_action_confirmed(action: PendingAction) -> ChatResponse:
    return ChatResponse(
        message=f"Done! I'm setting that up for you: {action.label}.",
        actions=[ResponseAction(id=action.action, label=action.label, params=dict(action.params))],
        sources=[ResponseSource(kind="cache", note=f"pending_action:{action.action_id}")],
        cost=ResponseCost(model="mini", est_tokens=0),
        confidence=0.95,
    )


def pending_action_declined() -> ChatResponse:
    return ChatResponse(
        message=DECLINE_MESSAGE,
        sources=[ResponseSource(kind="cache", note="pending_action_declined")],
        cost=ResponseCost(model="mini", est_tokens=0),
        confidence=0.95,
    )
