from __future__ import annotations

import datetime as dt
from typing import Any

from fincoach.contracts import ChatContext

NOW = dt.datetime(2024, 6, 15, 12, 0, tzinfo=dt.timezone.utc)
NOW_TS = NOW.timestamp()


def days_ago(days: int) -> str:
    return (NOW.date() - dt.timedelta(days=days)).isoformat()


def groceries_context(**overrides: Any) -> ChatContext:
    payload: dict[str, Any] = {
        "user_profile": {"user_id": "u-1", "monthly_income": 5000},
        "budgets": [{"id": "b1", "name": "Groceries", "category": "Groceries", "amount": 400, "spent": 200}],
    }
    payload.update(overrides)
    return ChatContext.model_validate(payload)


def full_context() -> ChatContext:
    return ChatContext.model_validate(
        {
            "user_profile": {"user_id": "u-2", "monthly_income": 4000, "financial_goal": "save more"},
            "accounts": [
                {"id": "a1", "name": "Checking", "type": "checking", "balance": 1250.5},
                {"id": "a2", "name": "Savings", "type": "savings", "balance": 3000},
            ],
            "budgets": [
                {"id": "b1", "name": "Groceries", "category": "Groceries", "amount": 400},
                {"id": "b2", "name": "Dining", "category": "Dining", "amount": 100},
            ],
            "goals": [
                {"id": "g1", "name": "Emergency Fund", "target_amount": 6000, "current_amount": 1500},
                {"id": "g2", "name": "Vacation", "target_amount": 2000, "current_amount": 1900, "deadline": "2024-07-05"},
            ],
            "transactions": [
                {"id": "t1", "amount": 120, "date": days_ago(2), "category": "Groceries", "description": "Whole Foods"},
                {"id": "t2", "amount": 80, "date": days_ago(10), "category": "Groceries", "description": "Trader Joe's"},
                {"id": "t3", "amount": 110, "date": days_ago(5), "category": "Dining", "description": "Pizza place"},
                {"id": "t4", "amount": -4000, "date": days_ago(14), "category": "Salary", "type": "income"},
                {"id": "t5", "amount": 60, "date": days_ago(45), "category": "Groceries", "description": "Safeway"},
            ],
            "recurring_expenses": [
                {"id": "r1", "name": "Netflix", "amount": 15.99, "frequency": "monthly", "category": "Entertainment"},
                {"id": "r2", "name": "Gym", "amount": 30, "frequency": "weekly", "category": "Health"},
            ],
        }
    )
