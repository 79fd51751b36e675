from __future__ import annotations

import datetime as dt

from ..errors import FactPackValidationError
from .calculator import (
    budget_remaining,
    budget_status,
    daily_average,
    days_until,
    fact_pack_hash,
    goal_progress_pct,
    goal_remaining,
    goal_status,
    monthly_amount,
    utilization_pct,
)
from .contracts import FactMismatch, FactPack

MONEY_TOLERANCE = 0.01


def _money_differs(expected: float, actual: float) -> bool:
    return abs(expected - actual) > MONEY_TOLERANCE


def _window_end(pack: FactPack) -> dt.datetime | None:
    try:
        return dt.datetime.fromisoformat(pack.time_window.end)
    except ValueError:
        return None


def validate_fact_pack(pack: FactPack, *, now: dt.datetime | None = None) -> list[FactMismatch]:
    """Re-derive every calculated field and report each disagreement.

    Nothing is corrected here. `now` defaults to the end of the pack's time window,
    which is the instant the builder used.
    """
    mismatches: list[FactMismatch] = []

    def check(path: str, expected, actual) -> None:
        mismatches.append(FactMismatch(path=path, expected=expected, actual=actual))

    for index, budget in enumerate(pack.budgets):
        path = f"budgets[{index}]"
        utilization = utilization_pct(budget.spent, budget.limit)
        if utilization != budget.utilization:
            check(f"{path}.utilization", utilization, budget.utilization)
        remaining = budget_remaining(budget.spent, budget.limit)
        if _money_differs(remaining, budget.remaining):
            check(f"{path}.remaining", remaining, budget.remaining)
        status = budget_status(utilization)
        if status != budget.status:
            check(f"{path}.status", status, budget.status)

    reference = now or _window_end(pack)
    if reference is None:
        check("time_window.end", "ISO-8601 timestamp", pack.time_window.end)

    for index, goal in enumerate(pack.goals):
        path = f"goals[{index}]"
        progress = goal_progress_pct(goal.current, goal.target)
        if progress != goal.progress:
            check(f"{path}.progress", progress, goal.progress)
        remaining = goal_remaining(goal.current, goal.target)
        if _money_differs(remaining, goal.remaining):
            check(f"{path}.remaining", remaining, goal.remaining)
        days_remaining = goal.days_remaining
        if goal.deadline and reference is not None:
            days_remaining = days_until(dt.date.fromisoformat(goal.deadline), reference)
            if days_remaining != goal.days_remaining:
                check(f"{path}.days_remaining", days_remaining, goal.days_remaining)
        status = goal_status(progress, days_remaining if goal.deadline else None)
        if status != goal.status:
            check(f"{path}.status", status, goal.status)

    for index, item in enumerate(pack.recurring):
        expected = monthly_amount(item.amount, item.frequency)
        if _money_differs(expected, item.monthly_amount):
            check(f"recurring[{index}].monthly_amount", expected, item.monthly_amount)

    patterns = pack.spending_patterns
    average = daily_average(patterns.total_spent, patterns.window_days)
    if _money_differs(average, patterns.average_daily):
        check("spending_patterns.average_daily", average, patterns.average_daily)

    digest = fact_pack_hash(pack.hashable_payload())
    if digest != pack.metadata.hash:
        check("metadata.hash", digest, pack.metadata.hash)
    return mismatches


def assert_fact_pack_valid(pack: FactPack, *, now: dt.datetime | None = None) -> FactPack:
    mismatches = validate_fact_pack(pack, now=now)
    if mismatches:
        raise FactPackValidationError(mismatches)
    return pack
