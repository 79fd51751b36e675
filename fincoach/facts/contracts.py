from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

BudgetStatus = Literal["under", "at_limit", "over"]
GoalStatus = Literal["behind", "on_track", "ahead"]
SpendingTrend = Literal["up", "down", "flat", "unknown"]
FactPackSource = Literal["local", "api", "cache"]
Freshness = Literal["fresh", "stale"]


class TimeWindow(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    start: str
    end: str
    timezone: str
    period: str


class CategoryAmount(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    category: str
    amount: float


class BalanceEntry(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    account_id: str
    name: str
    type: str
    balance: float


class BudgetEntry(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str
    name: str
    category: str = ""
    period: str = "monthly"
    spent: float
    limit: float
    remaining: float
    utilization: int = Field(ge=0, le=100)
    status: BudgetStatus
    top_categories: list[CategoryAmount] = Field(default_factory=list)


class GoalEntry(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str
    name: str
    target: float
    current: float
    remaining: float
    progress: int = Field(ge=0, le=100)
    status: GoalStatus
    deadline: str | None = None
    days_remaining: int | None = None


class RecurringEntry(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str
    name: str
    amount: float
    frequency: str
    category: str = ""
    next_due: str | None = None
    monthly_amount: float


class TransactionEntry(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str
    date: str
    amount: float
    category: str = ""
    description: str = ""
    type: str = "expense"


class SpendingPatterns(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    total_spent: float = 0.0
    total_income: float = 0.0
    average_daily: float = 0.0
    window_days: int = 30
    transaction_count: int = 0
    top_categories: list[CategoryAmount] = Field(default_factory=list)
    previous_total_spent: float = 0.0
    trend: SpendingTrend = "unknown"


class ProfileEntry(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    monthly_income: float | None = None
    financial_goal: str = ""
    risk_profile: str = "unknown"


class FactPackMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    generated_at: str
    data_version: str = "1.0.0"
    hash: str
    source: FactPackSource = "local"
    freshness: Freshness = "fresh"


class FactPack(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    time_window: TimeWindow
    balances: list[BalanceEntry] = Field(default_factory=list)
    budgets: list[BudgetEntry] = Field(default_factory=list)
    goals: list[GoalEntry] = Field(default_factory=list)
    recurring: list[RecurringEntry] = Field(default_factory=list)
    recent_transactions: list[TransactionEntry] = Field(default_factory=list)
    spending_patterns: SpendingPatterns = Field(default_factory=SpendingPatterns)
    user_profile: ProfileEntry = Field(default_factory=ProfileEntry)
    metadata: FactPackMetadata

    def hashable_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"metadata"})

    def section_counts(self) -> dict[str, int]:
        return {
            "accounts": len(self.balances),
            "budgets": len(self.budgets),
            "goals": len(self.goals),
            "recurring": len(self.recurring),
            "transactions": self.spending_patterns.transaction_count,
            "income": 1 if self.user_profile.monthly_income else 0,
        }


class FactMismatch(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    path: str
    expected: Any
    actual: Any
