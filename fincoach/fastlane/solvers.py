from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Callable

from ..contracts import ActionId, ChatContext, ChatResponse, ResponseAction, ResponseCard, ResponseCost, ResponseSource
from ..normalize import fmt_money, normalize_text, parse_money_amounts, safe_float

DEFAULT_MONTHLY_ESSENTIALS = 3000.0
DEFAULT_COVERAGE_MONTHS = 3
DEFAULT_HORIZON_MONTHS = 12
MAX_HORIZON_MONTHS = 60
HYSA_APY_LOW = 0.045
HYSA_APY_HIGH = 0.05

_AMOUNT = r"\$?\s*([0-9][0-9,]*(?:\.[0-9]+)?)"


@dataclass(frozen=True)
class MicroSolver:
    key: str
    topic: str
    pattern: re.Pattern[str]
    solve: Callable[[str, ChatContext], ChatResponse | None]


def _answer(
    key: str,
    message: str,
    *,
    confidence: float,
    actions: list[ResponseAction] | None = None,
    cards: list[ResponseCard] | None = None,
    details: str | None = None,
) -> ChatResponse:
    return ChatResponse(
        message=message,
        details=details,
        cards=cards or [],
        actions=actions or [],
        sources=[ResponseSource(kind="localML", note=key)],
        cost=ResponseCost(model="mini", est_tokens=0),
        confidence=confidence,
    )


def _months_from(text: str, pattern: str) -> int | None:
    match = re.search(pattern, text)
    if not match:
        return None
    value = int(match.group(1))
    if match.group(2).startswith("year"):
        value *= 12
    return value


def _emergency_fund(text: str, context: ChatContext) -> ChatResponse | None:
    amounts = parse_money_amounts(text)
    recurring_total = sum(
        item.amount * {"weekly": 52 / 12, "biweekly": 26 / 12, "quarterly": 1 / 3, "yearly": 1 / 12}.get(item.frequency, 1.0)
        for item in context.recurring_expenses
    )
    if amounts:
        essentials = amounts[0]
    elif recurring_total > 0:
        essentials = round(recurring_total, 2)
    else:
        essentials = DEFAULT_MONTHLY_ESSENTIALS

    coverage_match = re.search(r"(\d+)[- ]months?(?:'s)? (?:of )?(?:expenses|essentials|coverage|cushion|emergency)", text)
    coverage = int(coverage_match.group(1)) if coverage_match else DEFAULT_COVERAGE_MONTHS
    horizon = _months_from(text, r"\b(?:in|within|over) (\d+) (months?|years?)\b") or DEFAULT_HORIZON_MONTHS
    horizon = max(1, min(MAX_HORIZON_MONTHS, horizon))
    saved = sum(goal.current_amount for goal in context.goals if "emergency" in goal.name.lower())

    target = round(essentials * coverage, 2)
    needed = max(0.0, target - saved)
    monthly = float(math.ceil(needed / horizon))
    calculation = ResponseCard(
        type="calculation",
        title="How I got this",
        items=[
            f"Monthly essentials: {fmt_money(essentials)}",
            f"Coverage: {coverage} months",
            f"Target: {fmt_money(target)}",
            f"Already saved: {fmt_money(saved)}",
            f"Timeline: {horizon} months",
        ],
    )
    if needed <= 0:
        message = f"You've already reached a {coverage}-month emergency fund of {fmt_money(target)}. Nice work!"
    else:
        message = (
            f"To build a {coverage}-month emergency fund of {fmt_money(target)}, set aside about "
            f"{fmt_money(monthly)} a month for {horizon} months."
        )
        if saved > 0:
            message = f"{message} That already counts the {fmt_money(saved)} you've saved."
    return _answer(
        "EF_MONTHLY_CONTRIBUTION",
        message,
        confidence=0.92,
        cards=[calculation],
        actions=[
            ResponseAction(
                id="OPEN_GOAL_WIZARD",
                label="Create emergency fund goal",
                params={"name": "Emergency fund", "target": target, "monthly": monthly},
            )
        ],
    )


def _hysa_interest(text: str, context: ChatContext) -> ChatResponse | None:
    amounts = parse_money_amounts(text)
    if not amounts:
        return None
    principal = amounts[0]
    low = principal * HYSA_APY_LOW
    high = principal * HYSA_APY_HIGH
    message = (
        f"At typical HYSA rates of about 4.5% to 5.0% APY, {fmt_money(principal)} would earn roughly "
        f"{fmt_money(round(low))} to {fmt_money(round(high))} in interest over a year, or about "
        f"{fmt_money(round(low / 12, 2))} to {fmt_money(round(high / 12, 2))} a month. "
        "Rates are variable, so check the current APY before you open an account."
    )
    return _answer(
        "HYSA_INTEREST_ESTIMATOR",
        message,
        confidence=0.9,
        actions=[ResponseAction(id="OPEN_HYSA_GUIDE", label="Compare HYSA options")],
    )


def _hysa_checklist(text: str, context: ChatContext) -> ChatResponse | None:
    items = [
        "FDIC or NCUA insured",
        "APY of at least 4%",
        "No monthly fees or minimum balance",
        "Fast, free transfers to your checking account",
    ]
    message = (
        "A good high-yield savings account (HYSA) should be FDIC or NCUA insured, pay an APY of at least 4%, "
        "charge no monthly fees or minimums, and make transfers to checking quick and free."
    )
    return _answer(
        "HYSA_CHECKLIST",
        message,
        confidence=0.88,
        cards=[ResponseCard(type="checklist", title="HYSA checklist", items=items)],
        actions=[ResponseAction(id="OPEN_HYSA_GUIDE", label="Compare HYSA options")],
    )


def _percent_of(text: str, context: ChatContext) -> ChatResponse | None:
    match = re.search(r"(\d+(?:\.\d+)?)\s*%\s*of\s*" + _AMOUNT, text)
    if not match:
        return None
    pct = safe_float(match.group(1))
    base = safe_float(match.group(2))
    result = round(base * pct / 100, 2)
    pct_text = f"{pct:g}%"
    message = f"{pct_text} of {fmt_money(base)} is {fmt_money(result)}. Quick check: {fmt_money(base)} x {pct / 100:g} = {fmt_money(result)}."
    return _answer(
        "QUICK_MATH_PERCENT",
        message,
        confidence=0.99,
        actions=[ResponseAction(id="SHOW_CALCULATION", label="Show calculation", params={"percent": pct, "base": base})],
    )


def _monthly_to_yearly(text: str, context: ChatContext) -> ChatResponse | None:
    match = re.search(_AMOUNT + r"\s*(?:a|per|each|every|/)\s*month\b", text)
    if not match:
        return None
    monthly = safe_float(match.group(1))
    message = (
        f"{fmt_money(monthly)} a month adds up to {fmt_money(monthly * 12)} a year, "
        f"and {fmt_money(monthly * 60)} over five years."
    )
    return _answer(
        "QUICK_MATH_MONTHLY_TO_YEARLY",
        message,
        confidence=0.98,
        actions=[ResponseAction(id="SHOW_CALCULATION", label="Show calculation", params={"monthly": monthly})],
    )


def _yearly_to_monthly(text: str, context: ChatContext) -> ChatResponse | None:
    match = re.search(_AMOUNT + r"\s*(?:a|per|each|every|/)\s*year\b", text)
    if not match:
        return None
    yearly = safe_float(match.group(1))
    message = (
        f"{fmt_money(yearly)} a year works out to about {fmt_money(round(yearly / 12, 2))} a month, "
        f"or {fmt_money(round(yearly / 52, 2))} a week."
    )
    return _answer(
        "QUICK_MATH_YEARLY_TO_MONTHLY",
        message,
        confidence=0.98,
        actions=[ResponseAction(id="SHOW_CALCULATION", label="Show calculation", params={"yearly": yearly})],
    )


def _budget_rule(text: str, context: ChatContext) -> ChatResponse | None:
    income = context.user_profile.monthly_income
    if income:
        message = (
            f"With the 50/30/20 rule, your {fmt_money(income)} monthly income splits into about "
            f"{fmt_money(round(income * 0.5))} for needs, {fmt_money(round(income * 0.3))} for wants and "
            f"{fmt_money(round(income * 0.2))} for savings and debt payoff."
        )
    else:
        message = (
            "The 50/30/20 rule splits take-home pay into 50% for needs like rent and groceries, 30% for wants, "
            "and 20% for savings and paying down debt. Add your monthly income and I can do the math for you."
        )
    actions = [ResponseAction(id="OPEN_BUDGET_WIZARD", label="Set up budgets")]
    if not income:
        actions.append(ResponseAction(id="OPEN_INCOME_FORM", label="Add monthly income"))
    return _answer("BUDGET_RULE_50_30_20", message, confidence=0.9, actions=actions)


def _navigation(key: str, message: str, action: ActionId, label: str) -> Callable[[str, ChatContext], ChatResponse | None]:
    def solve(text: str, context: ChatContext) -> ChatResponse | None:
        return _answer(key, message, confidence=0.95, actions=[ResponseAction(id=action, label=label)])

    return solve


def _investing_starter(text: str, context: ChatContext) -> ChatResponse | None:
    message = (
        "Investing basics: before you start investing, keep three to six months of expenses in an emergency fund "
        "and pay off high-interest debt. Many beginners then invest a fixed amount each month in low-cost, "
        "diversified index funds through a 401(k) or IRA, and leave it invested for the long term. "
        "This is general education, not personalized investment advice."
    )
    return _answer(
        "INVESTING_STARTER",
        message,
        confidence=0.85,
        actions=[ResponseAction(id="OPEN_LEARN", label="Learn investing basics")],
    )


def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, flags=re.IGNORECASE)


MICRO_SOLVERS: list[MicroSolver] = [
    MicroSolver("EF_MONTHLY_CONTRIBUTION", "savings", _compile(r"\bemergency (fund|savings)\b"), _emergency_fund),
    MicroSolver(
        "HYSA_INTEREST_ESTIMATOR",
        "savings",
        _compile(r"(\bhysa\b|high[- ]yield).*\b(interest|earn|make|get|grow)\b|\b(interest|earn)\b.*(\bhysa\b|high[- ]yield)"),
        _hysa_interest,
    ),
    MicroSolver("HYSA_CHECKLIST", "savings", _compile(r"\bhysa\b|high[- ]yield savings"), _hysa_checklist),
    MicroSolver("QUICK_MATH_PERCENT", "math", _compile(r"\d\s*%\s*of\s*\$?\s*\d"), _percent_of),
    MicroSolver(
        "QUICK_MATH_MONTHLY_TO_YEARLY",
        "math",
        _compile(r"\d\s*(a|per|each|every|/)\s*month\b.*\b(year|annual|annually|yearly)\b"),
        _monthly_to_yearly,
    ),
    MicroSolver(
        "QUICK_MATH_YEARLY_TO_MONTHLY",
        "math",
        _compile(r"\d\s*(a|per|each|every|/)\s*year\b.*\b(month|monthly)\b"),
        _yearly_to_monthly,
    ),
    MicroSolver(
        "BUDGET_RULE_50_30_20",
        "budgeting",
        _compile(r"50\s*/\s*30\s*/\s*20|50-30-20|how much should i (spend|save|budget)"),
        _budget_rule,
    ),
    MicroSolver(
        "APP_NAV_CREATE_BUDGET",
        "app_help",
        _compile(r"\b(how|where)\b.*\b(add|create|set up|make|start)\b.*\bbudget"),
        _navigation(
            "APP_NAV_CREATE_BUDGET",
            "To create a budget, open Budgets and tap \"New budget\". Pick a category, set a monthly limit, "
            "and your spending in that category is tracked against it automatically.",
            "OPEN_BUDGET_WIZARD",
            "Create a budget",
        ),
    ),
    MicroSolver(
        "APP_NAV_MARK_BILL_PAID",
        "app_help",
        _compile(r"\b(mark|record)\b.*\bbills?\b.*\bpaid\b|\bbills?\b.*\bas paid\b"),
        _navigation(
            "APP_NAV_MARK_BILL_PAID",
            "To mark a bill as paid, open Recurring bills, tap the bill, and choose \"Mark as paid\". "
            "The next due date moves forward automatically.",
            "OPEN_RECURRING_FORM",
            "Open recurring bills",
        ),
    ),
    MicroSolver(
        "APP_NAV_ADD_TRANSACTION",
        "app_help",
        _compile(r"\b(how|where)\b.*\b(add|log|enter|record)\b.*\b(transactions?|expenses?|purchases?)\b"),
        _navigation(
            "APP_NAV_ADD_TRANSACTION",
            "To add a transaction, open Transactions and tap \"Add\". Enter the amount, date and category, "
            "and it will count toward the matching budget right away.",
            "OPEN_TRANSACTION_FORM",
            "Add a transaction",
        ),
    ),
    MicroSolver(
        "APP_NAV_CREATE_GOAL",
        "app_help",
        _compile(r"\b(how|where)\b.*\b(add|create|set|make|start)\b.*\bgoals?\b"),
        _navigation(
            "APP_NAV_CREATE_GOAL",
            "To create a savings goal, open Goals and tap \"New goal\". Give it a name, a target amount "
            "and an optional deadline, and progress updates as you contribute.",
            "OPEN_GOAL_WIZARD",
            "Create a goal",
        ),
    ),
    MicroSolver(
        "APP_NAV_ADD_INCOME",
        "app_help",
        _compile(r"\b(how|where)\b.*\b(add|enter|update|set)\b.*\bincome\b"),
        _navigation(
            "APP_NAV_ADD_INCOME",
            "To add your income, open Profile and choose \"Monthly income\". Enter your take-home pay "
            "so forecasts and budget suggestions can use it.",
            "OPEN_INCOME_FORM",
            "Add monthly income",
        ),
    ),
    MicroSolver(
        "INVESTING_STARTER",
        "investing",
        _compile(r"\b(invest|investing|investment|stocks?|etfs?|index\s+funds?)\b"),
        _investing_starter,
    ),
]


def match_micro_solver(question: str, context: ChatContext) -> tuple[MicroSolver, ChatResponse] | None:
    """First solver whose pattern matches and that can produce an answer."""
    text = normalize_text(question)
    for solver in MICRO_SOLVERS:
        if not solver.pattern.search(text):
            continue
        response = solver.solve(text, context)
        if response is not None:
            return solver, response
    return None
