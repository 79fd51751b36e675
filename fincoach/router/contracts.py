from __future__ import annotations

from typing import Literal, get_args

from pydantic import BaseModel, ConfigDict, Field

IntentName = Literal[
    "GET_BALANCE",
    "GET_BUDGET_STATUS",
    "LIST_SUBSCRIPTIONS",
    "FORECAST_SPEND",
    "CREATE_BUDGET",
    "GET_GOAL_PROGRESS",
    "GET_SPENDING_BREAKDOWN",
    "CATEGORIZE_TX",
    "SPENDING_OVERVIEW",
    "GENERAL_QA",
    "UNKNOWN",
]
INTENT_NAMES: list[str] = list(get_args(IntentName))
ConfidenceLevel = Literal["low", "medium", "high"]
RouteType = Literal["grounded", "llm", "unknown"]


class IntentScore(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    intent: IntentName
    raw_probability: float = Field(ge=0.0, le=1.0)
    calibrated_probability: float = Field(ge=0.0, le=1.0)
    confidence_level: ConfidenceLevel


class ShadowRoute(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    alternative_intent: IntentName
    alternative_response: str
    delta: float


class RouteDecision(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    primary: IntentScore
    secondary: list[IntentScore] = Field(default_factory=list)
    route_type: RouteType
    shadow_route: ShadowRoute | None = None
    threshold: float = Field(ge=0.0, le=1.0)
    hysteresis_applied: bool = False
    calibration_version: str = ""
    decided_at_ms: int = 0


class ClarifyingQuestion(BaseModel):
    model_config = ConfigDict(extra="forbid")

    question_id: str
    question_text: str
    options: list[str] = Field(default_factory=list)


class IntentRuleBoost(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    section: str
    min_count: int = 1
    boost: float = Field(ge=0.0, le=1.0)


class IntentRule(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    intent: IntentName
    base_score: float = Field(ge=0.0, le=1.0)
    patterns: list[str] = Field(default_factory=list)
    exact_phrases: list[str] = Field(default_factory=list)
    context_boosts: list[IntentRuleBoost] = Field(default_factory=list)
