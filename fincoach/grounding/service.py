from __future__ import annotations

import logging
import math
import re
from typing import Callable

from ..facts.contracts import FactPack
from ..normalize import normalize_text, parse_money_amounts
from .contracts import (
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

logger = logging.getLogger(__name__)

MAX_LISTED_ITEMS = 5
DAYS_PER_MONTH = 30
DEFAULT_BUDGET_AMOUNT = 300.0
INCOME_SHARE_FOR_NEW_BUDGET = 0.10
STALE_PENALTY = 0.15
COMMON_CATEGORIES = [
    "groceries",
    "dining",
    "restaurants",
    "coffee",
    "transportation",
    "gas",
    "entertainment",
    "shopping",
    "utilities",
    "rent",
    "housing",
    "travel",
    "health",
    "subscriptions",
    "personal care",
    "education",
    "gifts",
    "pets",
]
_MERCHANT_CATEGORIES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"kroger|safeway|whole foods|trader joe|aldi|costco|walmart grocery|grocery|market"), "Groceries"),
    (re.compile(r"starbucks|dunkin|coffee|cafe|peet"), "Coffee"),
    (re.compile(r"uber eats|doordash|grubhub|restaurant|pizza|burger|chipotle|mcdonald"), "Dining"),
    (re.compile(r"uber|lyft|metro|transit|parking|shell|chevron|exxon|\bbp\b|gas station"), "Transportation"),
    (re.compile(r"netflix|spotify|hulu|disney|youtube premium|apple music|prime video"), "Subscriptions"),
    (re.compile(r"amazon|target|best buy|ikea|etsy"), "Shopping"),
    (re.compile(r"comcast|verizon|at&t|t-mobile|electric|water|pg&e|utility"), "Utilities"),
    (re.compile(r"airbnb|delta|united|southwest|hotel|expedia|marriott"), "Travel"),
    (re.compile(r"cvs|walgreens|pharmacy|clinic|dental|doctor"), "Health"),
]


def _completeness(pack: FactPack, base: float) -> float:
    value = base - (STALE_PENALTY if pack.metadata.freshness == "stale" else 0.0)
    return round(max(0.0, min(1.0, value)), 2)


def _named(items: list, question: str, *attrs: str) -> list:
    text = normalize_text(question)
    matched = []
    for item in items:
        for attr in attrs:
            name = normalize_text(getattr(item, attr, "") or "")
            if name and re.search(rf"\b{re.escape(name)}\b", text):
                matched.append(item)
                break
    return matched


def _ground_budgets(pack: FactPack, question: str) -> tuple[list[Fact], float] | None:
    if not pack.budgets:
        return None
    named = _named(pack.budgets, question, "name", "category")
    chosen = named or sorted(pack.budgets, key=lambda item: (-item.utilization, item.name))[:MAX_LISTED_ITEMS]
    facts: list[Fact] = [
        BudgetFact(
            fact_id=f"budget.{budget.id}",
            name=budget.name,
            category=budget.category,
            spent=budget.spent,
            limit=budget.limit,
            remaining=budget.remaining,
            utilization=budget.utilization,
            status=budget.status,
        )
        for budget in chosen
    ]
    return facts, _completeness(pack, 0.95 if named else 0.9)


def _ground_goals(pack: FactPack, question: str) -> tuple[list[Fact], float] | None:
    if not pack.goals:
        return None
    named = _named(pack.goals, question, "name")
    chosen = named or pack.goals[:MAX_LISTED_ITEMS]
    facts: list[Fact] = [
        GoalFact(
            fact_id=f"goal.{goal.id}",
            name=goal.name,
            target=goal.target,
            current=goal.current,
            remaining=goal.remaining,
            progress=goal.progress,
            status=goal.status,
            deadline=goal.deadline,
            days_remaining=goal.days_remaining,
        )
        for goal in chosen
    ]
    return facts, _completeness(pack, 0.95 if named else 0.9)


def _ground_balance(pack: FactPack, question: str) -> tuple[list[Fact], float] | None:
    if not pack.balances:
        return None
    total = round(sum(item.balance for item in pack.balances), 2)
    return [BalanceFact(fact_id="balance.total", total=total, accounts=list(pack.balances))], _completeness(pack, 0.95)


def _ground_spending(pack: FactPack, question: str) -> tuple[list[Fact], float] | None:
    patterns = pack.spending_patterns
    if patterns.transaction_count <= 0:
        return None
    fact = SpendingFact(
        fact_id="spending.window",
        period=pack.time_window.period,
        total_spent=patterns.total_spent,
        average_daily=patterns.average_daily,
        top_categories=list(patterns.top_categories),
        previous_total_spent=patterns.previous_total_spent,
        trend=patterns.trend,
    )
    return [fact], _completeness(pack, 0.9 if patterns.transaction_count >= 5 else 0.7)


def _ground_forecast(pack: FactPack, question: str) -> tuple[list[Fact], float] | None:
    patterns = pack.spending_patterns
    if patterns.transaction_count <= 0:
        return None
    projected = round(patterns.average_daily * DAYS_PER_MONTH, 2)
    income = pack.user_profile.monthly_income
    fact = ForecastFact(
        fact_id="forecast.month",
        period=pack.time_window.period,
        average_daily=patterns.average_daily,
        projected_month_spend=projected,
        monthly_income=income,
        projected_leftover=round(income - projected, 2) if income else None,
    )
    confidence = 0.85 if patterns.transaction_count > 10 else 0.65
    return [fact], _completeness(pack, confidence)


def _ground_subscriptions(pack: FactPack, question: str) -> tuple[list[Fact], float] | None:
    if not pack.recurring:
        return None
    items = sorted(pack.recurring, key=lambda item: (-item.monthly_amount, item.name))
    total = round(sum(item.monthly_amount for item in items), 2)
    return [SubscriptionFact(fact_id="recurring.all", items=items, monthly_total=total)], _completeness(pack, 0.9)


def _ground_overview(pack: FactPack, question: str) -> tuple[list[Fact], float] | None:
    patterns = pack.spending_patterns
    if patterns.transaction_count <= 0 and not pack.budgets:
        return None
    fact = OverviewFact(
        fact_id="overview.window",
        period=pack.time_window.period,
        total_spent=patterns.total_spent,
        monthly_income=pack.user_profile.monthly_income,
        budgets_over=[item.name for item in pack.budgets if item.status == "over"],
        budgets_at_limit=[item.name for item in pack.budgets if item.status == "at_limit"],
        goals_behind=[item.name for item in pack.goals if item.status == "behind"],
        top_category=patterns.top_categories[0] if patterns.top_categories else None,
    )
    facts: list[Fact] = [fact]
    budget_slice = _ground_budgets(pack, question)
    if budget_slice is not None:
        facts.extend(budget_slice[0][:3])
    filled = sum(1 for present in [patterns.transaction_count > 0, bool(pack.budgets), bool(pack.user_profile.monthly_income)] if present)
    return facts, _completeness(pack, 0.5 + 0.15 * filled)


def _requested_category(pack: FactPack, question: str) -> str:
    text = normalize_text(question)
    known = [item.category for item in pack.spending_patterns.top_categories]
    known.extend(item.category for item in pack.budgets if item.category)
    for name in [*known, *COMMON_CATEGORIES]:
        lowered = normalize_text(name)
        if lowered and re.search(rf"\b{re.escape(lowered)}\b", text):
            return name.title() if name.islower() else name
    match = re.search(r"\bfor (?:my |the )?([a-z][a-z ]{2,20}?)(?: budget)?(?:[?.!,]|$)", text)
    if match:
        return match.group(1).strip().title()
    existing = {normalize_text(item.category or item.name) for item in pack.budgets}
    for item in pack.spending_patterns.top_categories:
        if normalize_text(item.category) not in existing:
            return item.category
    return "Groceries"


def _ground_budget_suggestion(pack: FactPack, question: str) -> tuple[list[Fact], float] | None:
    category = _requested_category(pack, question)
    requested = parse_money_amounts(question)
    recent = None
    for item in pack.spending_patterns.top_categories:
        if normalize_text(item.category) == normalize_text(category):
            recent = item.amount
            break
    if requested:
        amount, basis, confidence = requested[0], "requested", 0.95
    elif recent:
        amount, basis, confidence = float(math.ceil(recent / 10.0) * 10), "spending_history", 0.85
    elif pack.user_profile.monthly_income:
        amount = float(round(pack.user_profile.monthly_income * INCOME_SHARE_FOR_NEW_BUDGET / 10.0) * 10)
        basis, confidence = "income_share", 0.7
    else:
        amount, basis, confidence = DEFAULT_BUDGET_AMOUNT, "default", 0.6
    fact = BudgetSuggestionFact(
        fact_id="budget.suggestion",
        category=category,
        suggested_amount=amount,
        basis=basis,
        recent_spend=recent,
    )
    return [fact], _completeness(pack, confidence)


def suggest_category(description: str) -> str | None:
    text = normalize_text(description)
    for pattern, category in _MERCHANT_CATEGORIES:
        if pattern.search(text):
            return category
    return None


def _ground_categorize(pack: FactPack, question: str) -> tuple[list[Fact], float] | None:
    if not pack.recent_transactions:
        return None
    named = [tx for tx in pack.recent_transactions if tx.description and normalize_text(tx.description) in normalize_text(question)]
    uncategorized = [tx for tx in pack.recent_transactions if not tx.category or tx.category.lower() == "uncategorized"]
    candidates = named or uncategorized or pack.recent_transactions[:1]
    tx = candidates[0]
    suggested = suggest_category(tx.description)
    if suggested:
        basis, confidence = "merchant_keyword", 0.8
    elif tx.category and tx.category.lower() != "uncategorized":
        suggested, basis, confidence = tx.category, "existing_category", 0.6
    else:
        suggested, basis, confidence = "Uncategorized", "none", 0.3
    fact = CategorizeFact(
        fact_id=f"transaction.{tx.id}",
        transaction_id=tx.id,
        description=tx.description,
        amount=tx.amount,
        current_category=tx.category,
        suggested_category=suggested,
        basis=basis,
    )
    return [fact], _completeness(pack, confidence)


_GROUNDERS: dict[str, Callable[[FactPack, str], tuple[list[Fact], float] | None]] = {
    "GET_BALANCE": _ground_balance,
    "GET_BUDGET_STATUS": _ground_budgets,
    "LIST_SUBSCRIPTIONS": _ground_subscriptions,
    "FORECAST_SPEND": _ground_forecast,
    "CREATE_BUDGET": _ground_budget_suggestion,
    "GET_GOAL_PROGRESS": _ground_goals,
    "GET_SPENDING_BREAKDOWN": _ground_spending,
    "CATEGORIZE_TX": _ground_categorize,
    "SPENDING_OVERVIEW": _ground_overview,
}


def ground(intent: str, pack: FactPack, question: str = "") -> GroundedFacts | None:
    """Minimal fact slice for `intent`, or None when the pack cannot support an answer."""
    grounder = _GROUNDERS.get(intent)
    if grounder is None:
        return None
    result = grounder(pack, question)
    if result is None:
        logger.info("grounding_miss intent=%s", intent)
        return None
    facts, confidence = result
    if not facts:
        return None
    return GroundedFacts(
        intent=intent,
        facts=facts,
        confidence=confidence,
        period=pack.time_window.period,
        fact_pack_hash=pack.metadata.hash,
    )
