from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from ..facts.contracts import BalanceEntry, BudgetStatus, CategoryAmount, GoalStatus, RecurringEntry, SpendingTrend


class _FactBase(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    fact_id: str


class BudgetFact(_FactBase):
    kind: Literal["budget"] = "budget"
    name: str
    category: str = ""
    spent: float
    limit: float
    remaining: float
    utilization: int
    status: BudgetStatus


class GoalFact(_FactBase):
    kind: Literal["goal"] = "goal"
    name: str
    target: float
    current: float
    remaining: float
    progress: int
    status: GoalStatus
    deadline: str | None = None
    days_remaining: int | None = None


class BalanceFact(_FactBase):
    kind: Literal["balance"] = "balance"
    total: float
    accounts: list[BalanceEntry] = Field(default_factory=list)


class SpendingFact(_FactBase):
    kind: Literal["spending"] = "spending"
    period: str
    total_spent: float
    average_daily: float
    top_categories: list[CategoryAmount] = Field(default_factory=list)
    previous_total_spent: float = 0.0
    trend: SpendingTrend = "unknown"


class ForecastFact(_FactBase):
    kind: Literal["forecast"] = "forecast"
    period: str
    average_daily: float
    projected_month_spend: float
    monthly_income: float | None = None
    projected_leftover: float | None = None


class SubscriptionFact(_FactBase):
    kind: Literal["subscriptions"] = "subscriptions"
    items: list[RecurringEntry] = Field(default_factory=list)
    monthly_total: float


class OverviewFact(_FactBase):
    kind: Literal["overview"] = "overview"
    period: str
    total_spent: float
    monthly_income: float | None = None
    budgets_over: list[str] = Field(default_factory=list)
    budgets_at_limit: list[str] = Field(default_factory=list)
    goals_behind: list[str] = Field(default_factory=list)
    top_category: CategoryAmount | None = None


class BudgetSuggestionFact(_FactBase):
    kind: Literal["budget_suggestion"] = "budget_suggestion"
    category: str
    suggested_amount: float
    basis: Literal["requested", "spending_history", "income_share", "default"]
    recent_spend: float | None = None


class CategorizeFact(_FactBase):
    kind: Literal["categorize"] = "categorize"
    transaction_id: str
    description: str
    amount: float
    current_category: str = ""
    suggested_category: str
    basis: Literal["merchant_keyword", "existing_category", "none"]


Fact = Annotated[
    Union[
        BudgetFact,
        GoalFact,
        BalanceFact,
        SpendingFact,
        ForecastFact,
        SubscriptionFact,
        OverviewFact,
        BudgetSuggestionFact,
        CategorizeFact,
    ],
    Field(discriminator="kind"),
]


class GroundedFacts(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    intent: str
    facts: list[Fact] = Field(min_length=1)
    confidence: float = Field(ge=0.0, le=1.0)
    period: str = ""
    fact_pack_hash: str = ""

    @property
    def fact_ids(self) -> list[str]:
        return [fact.fact_id for fact in self.facts]
