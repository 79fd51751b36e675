"""Pure derivations for every calculated FactPack field.

The builder and the validator share these functions so a stored pack can be
re-derived field by field.
"""
from __future__ import annotations

import datetime as dt
import hashlib
import json
import math
from typing import Any, Iterable

from .contracts import BudgetStatus, GoalStatus, SpendingTrend

GOAL_CURVE_DAYS = 30
GOAL_STATUS_MARGIN = 10
BUDGET_AT_LIMIT_PCT = 95
TREND_FLAT_BAND = 0.05
_MONTHLY_FACTORS = {
    "weekly": 52 / 12,
    "biweekly": 26 / 12,
    "monthly": 1.0,
    "quarterly": 1 / 3,
    "yearly": 1 / 12,
}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp_pct(value: int) -> int:
    return max(0, min(100, value))


def utilization_pct(spent: float, limit: float) -> int:
    if limit <= 0:
        return 0
    return _clamp_pct(round_half_up(spent / limit * 100))


def budget_remaining(spent: float, limit: float) -> float:
    return round(limit - spent, 2)


def budget_status(utilization: int) -> BudgetStatus:
    if utilization >= 100:
        return "over"
    if utilization >= BUDGET_AT_LIMIT_PCT:
        return "at_limit"
    return "under"


def goal_progress_pct(current: float, target: float) -> int:
    if target <= 0:
        return 0
    return _clamp_pct(round_half_up(current / target * 100))


def goal_remaining(current: float, target: float) -> float:
    return round(max(0.0, target - current), 2)


def days_until(deadline: dt.date, now: dt.datetime) -> int:
    deadline_at = dt.datetime.combine(deadline, dt.time.min, tzinfo=now.tzinfo)
    return math.ceil((deadline_at - now).total_seconds() / 86400)


def expected_goal_progress(days_remaining: int) -> float:
    return max(0.0, 100 - days_remaining / GOAL_CURVE_DAYS * 100)


def goal_status(progress: int, days_remaining: int | None) -> GoalStatus:
    if days_remaining is None:
        # Open-ended goals have no curve to compare against.
        return "ahead" if progress >= 100 else "on_track"
    if days_remaining <= 0:
        return "ahead" if progress >= 100 else "behind"
    expected = expected_goal_progress(days_remaining)
    if progress >= expected + GOAL_STATUS_MARGIN:
        return "ahead"
    if progress < expected - GOAL_STATUS_MARGIN:
        return "behind"
    return "on_track"


def daily_average(total: float, days: int) -> float:
    if days <= 0:
        return 0.0
    return round(total / days, 2)


def monthly_amount(amount: float, frequency: str) -> float:
    return round(amount * _MONTHLY_FACTORS.get(frequency, 1.0), 2)


def spending_trend(current: float, previous: float) -> SpendingTrend:
    if previous <= 0:
        return "unknown" if current <= 0 else "up"
    change = (current - previous) / previous
    if change > TREND_FLAT_BAND:
        return "up"
    if change < -TREND_FLAT_BAND:
        return "down"
    return "flat"


def top_categories(items: Iterable[tuple[str, float]], limit: int = 3) -> list[dict[str, Any]]:
    totals: dict[str, float] = {}
    for category, amount in items:
        key = category or "Uncategorized"
        totals[key] = totals.get(key, 0.0) + amount
    ranked = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    return [{"category": name, "amount": round(value, 2)} for name, value in ranked[:limit]]


def fact_pack_hash(payload: dict[str, Any]) -> str:
    body = {key: value for key, value in payload.items() if key != "metadata"}
    encoded = json.dumps(body, sort_keys=True, separators=(",", ":"), ensure_ascii=True, default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()
