from ..cache import TimedLRUCache
from .knowledge import KnowledgeBase, KnowledgeItem, KnowledgeMatch, default_knowledge_base
from .lane import FastAnswerLane, LaneOutcome, LaneRequest
from .solvers import MICRO_SOLVERS, MicroSolver, match_micro_solver
from .strategy import CascadeOutcome, StrategyResult, hit, miss, run_cascade

__all__ = [
    "CascadeOutcome",
    "FastAnswerLane",
    "KnowledgeBase",
    "KnowledgeItem",
    "KnowledgeMatch",
    "LaneOutcome",
    "LaneRequest",
    "MICRO_SOLVERS",
    "MicroSolver",
    "StrategyResult",
    "TimedLRUCache",
    "default_knowledge_base",
    "hit",
    "match_micro_solver",
    "miss",
    "run_cascade",
]
