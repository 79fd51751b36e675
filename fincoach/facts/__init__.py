from .builder import build_fact_pack
from .calculator import (
    budget_status,
    fact_pack_hash,
    goal_progress_pct,
    goal_status,
    utilization_pct,
)
from .contracts import (
    BudgetEntry,
    FactMismatch,
    FactPack,
    GoalEntry,
)
from .validation import assert_fact_pack_valid, validate_fact_pack

__all__ = [
    "BudgetEntry",
    "FactMismatch",
    "FactPack",
    "GoalEntry",
    "assert_fact_pack_valid",
    "budget_status",
    "build_fact_pack",
    "fact_pack_hash",
    "goal_progress_pct",
    "goal_status",
    "utilization_pct",
    "validate_fact_pack",
]
