from __future__ import annotations

import logging
import re
import statistics
import time
from typing import TYPE_CHECKING

from ..config import (
    ROUTER_ENTER_THRESHOLD,
    ROUTER_EXIT_THRESHOLD,
    ROUTER_LLM_FLOOR,
    ROUTER_MIN_STABLE_MS,
    ROUTER_RULES_PATH,
    ROUTER_SECONDARY_MIN,
    ROUTER_SHADOW_MIN,
    ROUTER_STABILITY_MIN_SAMPLES,
    ROUTER_STABILITY_VARIANCE_MAX,
    ROUTER_STABILITY_WINDOW_MS,
    ROUTER_UNKNOWN_FLOOR,
)
from ..normalize import normalize_text
from .calibration import Calibrator, confidence_level
from .contracts import IntentScore, RouteDecision, RouteType, ShadowRoute
from .rules import IntentRuleTable, load_rule_table

if TYPE_CHECKING:
    from ..session import ConversationSession

logger = logging.getLogger(__name__)

UNKNOWN_RAW_SCORE = 0.5
_INVESTING_PATTERN = re.compile(r"\b(invest|investing|investment|stocks?|etfs?|index\s+funds?)\b", flags=re.IGNORECASE)
_TOPIC_OVERRIDE_INTENTS = {"GET_BUDGET_STATUS"}


def _now_ms() -> int:
    return int(time.time() * 1000)


def topic_override(utterance: str, intent: str) -> str | None:
    """Investing questions that happen to mention a budget belong in the fast lane."""
    if intent in _TOPIC_OVERRIDE_INTENTS and _INVESTING_PATTERN.search(utterance or ""):
        return "GENERAL_QA"
    return None


class IntentRouter:
    def __init__(
        self,
        rules: IntentRuleTable | None = None,
        calibrator: Calibrator | None = None,
        *,
        enter_threshold: float = ROUTER_ENTER_THRESHOLD,
        exit_threshold: float = ROUTER_EXIT_THRESHOLD,
        min_stable_ms: int = ROUTER_MIN_STABLE_MS,
        stability_window_ms: int = ROUTER_STABILITY_WINDOW_MS,
        stability_min_samples: int = ROUTER_STABILITY_MIN_SAMPLES,
        stability_variance_max: float = ROUTER_STABILITY_VARIANCE_MAX,
    ) -> None:
        self.rules = rules or load_rule_table(ROUTER_RULES_PATH or None)
        self.calibrator = calibrator or Calibrator()
        self.enter_threshold = enter_threshold
        self.exit_threshold = exit_threshold
        self.min_stable_ms = min_stable_ms
        self.stability_window_ms = stability_window_ms
        self.stability_min_samples = stability_min_samples
        self.stability_variance_max = stability_variance_max

    def _score(self, intent: str, raw: float) -> IntentScore:
        raw = max(0.0, min(1.0, raw))
        calibrated = self.calibrator.calibrate(raw)
        return IntentScore(
            intent=intent,
            raw_probability=round(raw, 4),
            calibrated_probability=round(calibrated, 4),
            confidence_level=confidence_level(calibrated),
        )

    def detect(self, utterance: str, section_counts: dict[str, int] | None = None) -> list[IntentScore]:
        """Score every intent whose rules match; best first."""
        text = normalize_text(utterance)
        counts = section_counts or {}
        raw_scores: dict[str, float] = {}
        if text:
            for compiled in self.rules.rules:
                rule = compiled.rule
                if not any(pattern.search(text) for pattern in compiled.patterns):
                    continue
                score = rule.base_score
                if any(phrase.search(text) for phrase in compiled.exact_phrases):
                    score += self.rules.exact_match_bonus
                for boost in rule.context_boosts:
                    if counts.get(boost.section, 0) >= boost.min_count:
                        score += boost.boost
                raw_scores[rule.intent] = max(raw_scores.get(rule.intent, 0.0), min(1.0, score))

        scores = [self._score(intent, raw) for intent, raw in raw_scores.items()]
        scores.sort(key=lambda item: (-item.calibrated_probability, -item.raw_probability, item.intent))
        if not scores or scores[0].calibrated_probability < ROUTER_UNKNOWN_FLOOR:
            # neutral score, not calibrated
            scores.insert(
                0,
                IntentScore(
                    intent="UNKNOWN",
                    raw_probability=UNKNOWN_RAW_SCORE,
                    calibrated_probability=UNKNOWN_RAW_SCORE,
                    confidence_level=confidence_level(UNKNOWN_RAW_SCORE),
                ),
            )
        return scores

    def _is_stable(self, session: ConversationSession, now_ms: int) -> bool:
        window = [
            sample.calibrated
            for sample in session.route_history
            if now_ms - sample.timestamp_ms <= self.stability_window_ms
        ]
        if len(window) < self.stability_min_samples:
            return False
        return statistics.pvariance(window) < self.stability_variance_max

    def _threshold(self, session: ConversationSession | None, now_ms: int) -> tuple[float, bool]:
        if session is None or session.last_route_at_ms is None:
            return self.enter_threshold, False
        if now_ms - session.last_route_at_ms < self.min_stable_ms:
            return self.exit_threshold, True
        if self._is_stable(session, now_ms):
            return self.exit_threshold, True
        return self.enter_threshold, False

    @staticmethod
    def _route_type(primary: IntentScore, threshold: float) -> RouteType:
        if primary.intent == "UNKNOWN":
            return "unknown"
        if primary.calibrated_probability >= threshold:
            return "grounded"
        if primary.calibrated_probability >= ROUTER_LLM_FLOOR:
            return "llm"
        return "unknown"

    def decide(
        self,
        utterance: str,
        section_counts: dict[str, int] | None = None,
        session: ConversationSession | None = None,
        *,
        now_ms: int | None = None,
    ) -> RouteDecision:
        """Route one utterance. Reads the session's history; never writes it."""
        current_ms = _now_ms() if now_ms is None else now_ms
        scores = self.detect(utterance, section_counts)
        primary = scores[0]
        secondary = [item for item in scores[1:] if item.calibrated_probability > ROUTER_SECONDARY_MIN]
        threshold, hysteresis_applied = self._threshold(session, current_ms)
        decision = RouteDecision(
            primary=primary,
            secondary=secondary,
            route_type=self._route_type(primary, threshold),
            threshold=threshold,
            hysteresis_applied=hysteresis_applied,
            calibration_version=self.calibrator.params.version,
            decided_at_ms=current_ms,
        )
        logger.info(
            "route_decided intent=%s calibrated=%.3f route_type=%s threshold=%.2f hysteresis=%s secondary=%s",
            primary.intent,
            primary.calibrated_probability,
            decision.route_type,
            threshold,
            hysteresis_applied,
            ",".join(item.intent for item in secondary),
        )
        return decision

    @staticmethod
    def shadow_candidate(decision: RouteDecision) -> IntentScore | None:
        for item in decision.secondary:
            if item.intent != decision.primary.intent and item.calibrated_probability >= ROUTER_SHADOW_MIN:
                return item
        return None

    @staticmethod
    def with_shadow(decision: RouteDecision, candidate: IntentScore, alternative_response: str) -> RouteDecision:
        shadow = ShadowRoute(
            alternative_intent=candidate.intent,
            alternative_response=alternative_response,
            delta=round(decision.primary.calibrated_probability - candidate.calibrated_probability, 4),
        )
        return decision.model_copy(update={"shadow_route": shadow})

    def update_calibration(self, expected_intent: str, actual_intent: str) -> float:
        return self.calibrator.update(expected_intent, actual_intent)
