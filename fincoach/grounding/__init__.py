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
from .service import ground, suggest_category

__all__ = [
    "BalanceFact",
    "BudgetFact",
    "BudgetSuggestionFact",
    "CategorizeFact",
    "Fact",
    "ForecastFact",
    "GoalFact",
    "GroundedFacts",
    "OverviewFact",
    "SpendingFact",
    "SubscriptionFact",
    "ground",
    "suggest_category",
]
