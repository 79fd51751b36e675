"""Ordered answer strategies.

A strategy takes a request and returns a `StrategyResult`: either a value or the
reason it declined. `run_cascade` tries them in order and stops at the first hit.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StrategyResult:
    value: Any = None
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.value is not None


def hit(value: Any) -> StrategyResult:
    return StrategyResult(value=value)


def miss(reason: str) -> StrategyResult:
    return StrategyResult(reason=reason)


Strategy = Callable[[Any], StrategyResult]


@dataclass
class CascadeOutcome:
    strategy: str | None = None
    value: Any = None
    reasons: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.value is not None


def run_cascade(strategies: Sequence[tuple[str, Strategy]], request: Any) -> CascadeOutcome:
    outcome = CascadeOutcome()
    for name, strategy in strategies:
        try:
            result = strategy(request)
        except Exception as exc:  # noqa: BLE001
            logger.warning("cascade_strategy_failed strategy=%s error=%s", name, exc)
            outcome.reasons.append(f"{name}:error")
            continue
        if result.ok:
            outcome.strategy = name
            outcome.value = result.value
            return outcome
        outcome.reasons.append(f"{name}:{result.reason or 'miss'}")
    return outcome
