from __future__ import annotations

import datetime as dt
from typing import Any, Dict, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

SourceKind = Literal["cache", "localML", "db", "gpt"]
ModelTier = Literal["mini", "std", "pro"]
ActionId = Literal[
    "OPEN_BUDGETS",
    "CREATE_BUDGET",
    "OPEN_BUDGET_WIZARD",
    "OPEN_GOALS",
    "OPEN_GOAL_WIZARD",
    "OPEN_INCOME_FORM",
    "OPEN_RECURRING_FORM",
    "OPEN_SUBSCRIPTIONS",
    "OPEN_TRANSACTIONS",
    "OPEN_TRANSACTION_FORM",
    "OPEN_ACCOUNTS",
    "OPEN_SETUP_WIZARD",
    "OPEN_HYSA_GUIDE",
    "OPEN_LEARN",
    "SHOW_CALCULATION",
]
TransactionType = Literal["expense", "income"]
RecurringFrequency = Literal["weekly", "biweekly", "monthly", "quarterly", "yearly"]


class _InputRecord(BaseModel):
    # UI payloads may carry fields the engine does not use.
    model_config = ConfigDict(extra="ignore")


class UserProfile(_InputRecord):
    user_id: str = ""
    monthly_income: float | None = Field(default=None, ge=0)
    financial_goal: str = ""
    risk_profile: str = "unknown"


class AccountRecord(_InputRecord):
    id: str = ""
    name: str
    type: str = "checking"
    balance: float = 0.0


class BudgetRecord(_InputRecord):
    id: str = ""
    name: str
    category: str = ""
    amount: float
    spent: float | None = None
    period: str = "monthly"


class GoalRecord(_InputRecord):
    id: str = ""
    name: str
    target_amount: float
    current_amount: float = 0.0
    deadline: dt.date | None = None


class TransactionRecord(_InputRecord):
    id: str = ""
    amount: float
    date: dt.date
    category: str = ""
    description: str = ""
    type: TransactionType = "expense"

    @field_validator("amount")
    @classmethod
    def _non_negative_amount(cls, value: float) -> float:
        # Direction lives in `type`; signed amounts from bank feeds are folded to magnitude.
        return abs(float(value))


class RecurringExpenseRecord(_InputRecord):
    id: str = ""
    name: str
    amount: float = Field(ge=0)
    frequency: RecurringFrequency = "monthly"
    category: str = ""
    next_due: dt.date | None = None


class UsageSnapshot(_InputRecord):
    subscription_tier: str = "free"
    current_tokens: int = Field(default=0, ge=0)
    token_limit: int = Field(default=0, ge=0)

    @property
    def exhausted(self) -> bool:
        return self.token_limit > 0 and self.current_tokens >= self.token_limit


class ChatContext(_InputRecord):
    user_profile: UserProfile = Field(default_factory=UserProfile)
    accounts: list[AccountRecord] = Field(default_factory=list)
    budgets: list[BudgetRecord] = Field(default_factory=list)
    goals: list[GoalRecord] = Field(default_factory=list)
    transactions: list[TransactionRecord] = Field(default_factory=list)
    recurring_expenses: list[RecurringExpenseRecord] = Field(default_factory=list)
    locale: str = "en-US"
    currency: str = "USD"
    timezone: str = "UTC"
    current_usage: UsageSnapshot = Field(default_factory=UsageSnapshot)


class ResponseSource(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: SourceKind
    note: str | None = None


class ResponseCost(BaseModel):
    model_config = ConfigDict(extra="forbid")

    model: ModelTier = "mini"
    est_tokens: int = Field(default=0, ge=0)


class ResponseAction(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: ActionId
    label: str
    params: Dict[str, Any] = Field(default_factory=dict)


class ResponseCard(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["summary", "checklist", "choices", "calculation"]
    title: str
    items: list[str] = Field(default_factory=list)


class ChatResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    message: str = Field(min_length=1)
    details: str | None = None
    cards: list[ResponseCard] = Field(default_factory=list)
    actions: list[ResponseAction] = Field(default_factory=list)
    sources: list[ResponseSource] = Field(default_factory=list)
    cost: ResponseCost = Field(default_factory=ResponseCost)
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    insights: list[str] | None = None
    rationale: str | None = None

    @field_validator("message")
    @classmethod
    def _strip_message(cls, value: str) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("message must not be blank")
        return text

    def full_text(self) -> str:
        parts = [self.message]
        if self.details:
            parts.append(self.details)
        return "\n".join(parts)
