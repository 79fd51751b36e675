from __future__ import annotations

import datetime as dt
import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..config import (
    FACTPACK_DATA_VERSION,
    FACTPACK_RECENT_TX_LIMIT,
    FACTPACK_STALE_DAYS,
    FACTPACK_WINDOW_DAYS,
)
from ..contracts import BudgetRecord, ChatContext, TransactionRecord
from ..normalize import normalize_text
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
    spending_trend,
    top_categories,
    utilization_pct,
)
from .contracts import (
    BalanceEntry,
    BudgetEntry,
    CategoryAmount,
    FactPack,
    FactPackMetadata,
    FactPackSource,
    GoalEntry,
    ProfileEntry,
    RecurringEntry,
    SpendingPatterns,
    TimeWindow,
    TransactionEntry,
)
from .validation import validate_fact_pack

logger = logging.getLogger(__name__)


def _resolve_timezone(name: str) -> dt.tzinfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("factpack_unknown_timezone timezone=%s fallback=UTC", name)
        return dt.timezone.utc


def _period_label(start: dt.datetime, end: dt.datetime) -> str:
    if start.year == end.year:
        return f"{start:%b} {start.day} - {end:%b} {end.day}, {end.year}"
    return f"{start:%b} {start.day}, {start.year} - {end:%b} {end.day}, {end.year}"


def _in_window(tx: TransactionRecord, start: dt.date, end: dt.date) -> bool:
    return start <= tx.date <= end


def _matches_budget(tx: TransactionRecord, budget: BudgetRecord) -> bool:
    category = normalize_text(tx.category)
    if not category:
        return False
    keys = {normalize_text(budget.category), normalize_text(budget.name)}
    keys.discard("")
    return category in keys


def _build_budget(budget: BudgetRecord, window_expenses: list[TransactionRecord], index: int) -> BudgetEntry:
    matching = [tx for tx in window_expenses if _matches_budget(tx, budget)]
    spent = budget.spent if budget.spent is not None else sum(tx.amount for tx in matching)
    spent = round(float(spent), 2)
    limit = round(float(budget.amount), 2)
    utilization = utilization_pct(spent, limit)
    return BudgetEntry(
        id=budget.id or f"budget_{index + 1}",
        name=budget.name,
        category=budget.category,
        period=budget.period,
        spent=spent,
        limit=limit,
        remaining=budget_remaining(spent, limit),
        utilization=utilization,
        status=budget_status(utilization),
        top_categories=[
            CategoryAmount(**item)
            for item in top_categories((tx.description or tx.category, tx.amount) for tx in matching)
        ],
    )


def build_fact_pack(
    context: ChatContext,
    *,
    now: dt.datetime | None = None,
    source: FactPackSource = "local",
    window_days: int = FACTPACK_WINDOW_DAYS,
) -> FactPack:
    tz = _resolve_timezone(context.timezone)
    current = (now or dt.datetime.now(dt.timezone.utc)).astimezone(tz)
    window_start = current - dt.timedelta(days=window_days)
    start_day = window_start.date()
    end_day = current.date()
    previous_start = start_day - dt.timedelta(days=window_days)

    window_tx = [tx for tx in context.transactions if _in_window(tx, start_day, end_day)]
    window_expenses = [tx for tx in window_tx if tx.type == "expense"]
    previous_expenses = [
        tx for tx in context.transactions if tx.type == "expense" and previous_start <= tx.date < start_day
    ]

    budgets = [_build_budget(budget, window_expenses, index) for index, budget in enumerate(context.budgets)]

    goals: list[GoalEntry] = []
    for index, goal in enumerate(context.goals):
        progress = goal_progress_pct(goal.current_amount, goal.target_amount)
        remaining_days = days_until(goal.deadline, current) if goal.deadline else None
        goals.append(
            GoalEntry(
                id=goal.id or f"goal_{index + 1}",
                name=goal.name,
                target=round(goal.target_amount, 2),
                current=round(goal.current_amount, 2),
                remaining=goal_remaining(goal.current_amount, goal.target_amount),
                progress=progress,
                status=goal_status(progress, remaining_days),
                deadline=goal.deadline.isoformat() if goal.deadline else None,
                days_remaining=remaining_days,
            )
        )

    balances = [
        BalanceEntry(
            account_id=account.id or f"account_{index + 1}",
            name=account.name,
            type=account.type,
            balance=round(account.balance, 2),
        )
        for index, account in enumerate(context.accounts)
    ]

    recurring = [
        RecurringEntry(
            id=item.id or f"recurring_{index + 1}",
            name=item.name,
            amount=round(item.amount, 2),
            frequency=item.frequency,
            category=item.category,
            next_due=item.next_due.isoformat() if item.next_due else None,
            monthly_amount=monthly_amount(item.amount, item.frequency),
        )
        for index, item in enumerate(context.recurring_expenses)
    ]

    ordered = sorted(context.transactions, key=lambda tx: (tx.date, tx.id), reverse=True)
    recent = [
        TransactionEntry(
            id=tx.id or f"tx_{index + 1}",
            date=tx.date.isoformat(),
            amount=round(tx.amount, 2),
            category=tx.category,
            description=tx.description,
            type=tx.type,
        )
        for index, tx in enumerate(ordered[:FACTPACK_RECENT_TX_LIMIT])
    ]

    total_spent = round(sum(tx.amount for tx in window_expenses), 2)
    previous_spent = round(sum(tx.amount for tx in previous_expenses), 2)
    patterns = SpendingPatterns(
        total_spent=total_spent,
        total_income=round(sum(tx.amount for tx in window_tx if tx.type == "income"), 2),
        average_daily=daily_average(total_spent, window_days),
        window_days=window_days,
        transaction_count=len(window_tx),
        top_categories=[CategoryAmount(**item) for item in top_categories((tx.category, tx.amount) for tx in window_expenses)],
        previous_total_spent=previous_spent,
        trend=spending_trend(total_spent, previous_spent) if previous_expenses else "unknown",
    )

    profile = ProfileEntry(
        monthly_income=context.user_profile.monthly_income,
        financial_goal=context.user_profile.financial_goal,
        risk_profile=context.user_profile.risk_profile,
    )

    freshness = "fresh"
    if ordered and (end_day - ordered[0].date).days > FACTPACK_STALE_DAYS:
        freshness = "stale"

    body = {
        "time_window": TimeWindow(
            start=window_start.isoformat(),
            end=current.isoformat(),
            timezone=str(getattr(tz, "key", "UTC")),
            period=_period_label(window_start, current),
        ),
        "balances": balances,
        "budgets": budgets,
        "goals": goals,
        "recurring": recurring,
        "recent_transactions": recent,
        "spending_patterns": patterns,
        "user_profile": profile,
    }
    draft = FactPack(
        **body,
        metadata=FactPackMetadata(
            generated_at=dt.datetime.now(dt.timezone.utc).isoformat(),
            data_version=FACTPACK_DATA_VERSION,
            hash="",
            source=source,
            freshness=freshness,
        ),
    )
    pack = draft.model_copy(
        update={"metadata": draft.metadata.model_copy(update={"hash": fact_pack_hash(draft.hashable_payload())})}
    )

    mismatches = validate_fact_pack(pack)
    if mismatches:
        # Served anyway from raw data; the mismatch list is the signal.
        logger.warning(
            "factpack_validation_failed count=%s paths=%s",
            len(mismatches),
            ",".join(item.path for item in mismatches[:5]),
        )
    return pack
