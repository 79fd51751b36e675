"""Fast-answer lane: micro-solvers, then the knowledge base, then the mini model.

Nothing here mutates the session or the shared caches. `answer` returns what it
would write (`pattern_key`, `topic`, `cache_write`) and the caller applies it with
`commit` once the turn is final.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Hashable

from ..answerability import Answerability
from ..config import (
    KB_CONTEXT_MIN_SCORE,
    MINI_CACHE_MAX_ENTRIES,
    MINI_CACHE_TTL_SECONDS,
    REPEAT_WINDOW_SECONDS,
    SIMPLE_QA_MIN_SCORE,
)
from ..contracts import ChatContext, ChatResponse, ResponseCost, ResponseSource
from ..errors import REASON_MODEL_CALL_FAILED, REASON_REPEAT_SUPPRESSED, ModelCallFailure
from ..guard import score_usefulness
from ..normalize import normalize_text
from ..response.critic import forbidden_issues
from ..response.models import ModelClient
from ..response.renderer import compose_actionable_ask, estimate_tokens
from ..response.tiers import max_tokens_for
from ..session import ConversationSession
from ..cache import TimedLRUCache
from .knowledge import KnowledgeBase, KnowledgeMatch, default_knowledge_base
from .solvers import match_micro_solver
from .strategy import StrategyResult, hit, miss, run_cascade

logger = logging.getLogger(__name__)

LANE_INTENTS = {"GENERAL_QA", "UNKNOWN"}
_HOW_TO_PATTERN = re.compile(r"\b(how (do|can|should) i|where (do|can) i)\b", flags=re.IGNORECASE)
_FRUSTRATION_PATTERN = re.compile(r"\b(already|you told me|again|i have|i already)\b", flags=re.IGNORECASE)


@dataclass
class LaneRequest:
    question: str
    context: ChatContext
    session: ConversationSession
    now: float
    kb_matches: list[KnowledgeMatch] | None = None


@dataclass
class LaneAnswer:
    response: ChatResponse
    pattern_key: str
    topic: str | None = None
    cache_write: tuple[Hashable, ChatResponse] | None = None
    tokens: int = 0
    usefulness: float = 0.0


@dataclass
class LaneOutcome:
    response: ChatResponse | None = None
    strategy: str | None = None
    pattern_key: str | None = None
    topic: str | None = None
    cache_write: tuple[Hashable, ChatResponse] | None = None
    tokens: int = 0
    usefulness: float = 0.0
    reasons: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.response is not None


def _kb_context(matches: list[KnowledgeMatch]) -> str:
    return "\n".join(f"Q: {match.item.question}\nA: {match.item.answer}" for match in matches)


def _mini_prompt(question: str, kb_context: str) -> str:
    reference = f"Reference notes:\n{kb_context}\n" if kb_context else ""
    return (
        "You are a friendly personal-finance assistant for a budgeting app.\n"
        "Answer the question in 2 to 4 short, plain sentences of general guidance.\n"
        "You do not have the user's account data; do not state or guess their numbers.\n"
        "Never promise returns or tell the user to buy or sell specific investments.\n"
        f"{reference}"
        f"Question: {question}\n"
    )


class FastAnswerLane:
    def __init__(
        self,
        knowledge_base: KnowledgeBase | None = None,
        model_client: ModelClient | None = None,
        cache: TimedLRUCache | None = None,
        *,
        min_score: float = SIMPLE_QA_MIN_SCORE,
        repeat_window_seconds: float = REPEAT_WINDOW_SECONDS,
    ) -> None:
        self.knowledge_base = knowledge_base or default_knowledge_base()
        self.model_client = model_client
        self.cache = cache or TimedLRUCache(MINI_CACHE_MAX_ENTRIES, MINI_CACHE_TTL_SECONDS)
        self.min_score = min_score
        self.repeat_window_seconds = repeat_window_seconds

    def should_handle(self, question: str, intent: str, route_type: str, *, topic_overridden: bool = False) -> bool:
        if topic_overridden or intent in LANE_INTENTS or route_type != "grounded":
            return True
        return bool(_HOW_TO_PATTERN.search(question))

    def prefetch(self, question: str, *, focus: str | None = None) -> list[KnowledgeMatch]:
        return self.knowledge_base.search(question, focus=focus)

    def answer(self, request: LaneRequest) -> LaneOutcome:
        cascade = run_cascade(
            [
                ("micro_solver", self._micro_solver),
                ("knowledge_base", self._knowledge_base),
                ("mini_model", self._mini_model),
            ],
            request,
        )
        outcome = LaneOutcome(strategy=cascade.strategy, reasons=list(cascade.reasons))
        if cascade.ok:
            found: LaneAnswer = cascade.value
            outcome.response = found.response
            outcome.pattern_key = found.pattern_key
            outcome.topic = found.topic
            outcome.cache_write = found.cache_write
            outcome.tokens = found.tokens
            outcome.usefulness = found.usefulness
        logger.info(
            "fast_lane_result strategy=%s pattern=%s reasons=%s",
            outcome.strategy,
            outcome.pattern_key,
            ",".join(outcome.reasons),
        )
        return outcome

    def commit(self, outcome: LaneOutcome, session: ConversationSession, now: float) -> None:
        if outcome.cache_write is not None:
            key, value = outcome.cache_write
            self.cache.set(key, value)
        if outcome.pattern_key:
            session.mark_fast_lane(outcome.pattern_key, now)
        if outcome.topic:
            session.set_focus(outcome.topic, now)

    def graceful(self, outcome: LaneOutcome | None, answerability: Answerability, *, intent: str = "") -> ChatResponse:
        base = outcome.response if outcome is not None and outcome.ok else None
        return compose_actionable_ask(answerability, intent=intent, base=base)

    def _suppressed(self, request: LaneRequest, pattern_key: str) -> bool:
        if not request.session.repeated_fast_lane(pattern_key, request.now, self.repeat_window_seconds):
            return False
        return bool(_FRUSTRATION_PATTERN.search(request.question))

    def _accept(self, request: LaneRequest, found: LaneAnswer) -> StrategyResult:
        found.usefulness = score_usefulness(found.response, request.question)
        if found.usefulness < self.min_score:
            return miss("low_usefulness")
        return hit(found)

    def _micro_solver(self, request: LaneRequest) -> StrategyResult:
        matched = match_micro_solver(request.question, request.context)
        if matched is None:
            return miss("no_pattern")
        solver, response = matched
        if self._suppressed(request, solver.key):
            logger.info("fast_lane_repeat_suppressed pattern=%s", solver.key)
            return miss(REASON_REPEAT_SUPPRESSED)
        return self._accept(request, LaneAnswer(response=response, pattern_key=solver.key, topic=solver.topic))

    def _knowledge_base(self, request: LaneRequest) -> StrategyResult:
        matches = request.kb_matches
        if matches is None:
            matches = self.prefetch(request.question, focus=request.session.active_focus(request.now))
        if not matches:
            return miss("no_match")
        best = matches[0]
        pattern_key = f"kb:{normalize_text(best.item.question)}"
        if self._suppressed(request, pattern_key):
            logger.info("fast_lane_repeat_suppressed pattern=%s", pattern_key)
            return miss(REASON_REPEAT_SUPPRESSED)
        response = ChatResponse(
            message=best.item.answer,
            actions=list(best.item.actions),
            sources=[ResponseSource(kind="localML", note=f"kb:{best.item.id}")],
            cost=ResponseCost(model="mini", est_tokens=0),
            confidence=round(best.score, 2),
        )
        return self._accept(request, LaneAnswer(response=response, pattern_key=pattern_key, topic=best.item.category))

    def _mini_model(self, request: LaneRequest) -> StrategyResult:
        if self.model_client is None:
            return miss("model_unavailable")
        context_matches = self.knowledge_base.search(request.question, min_score=KB_CONTEXT_MIN_SCORE)
        kb_context = _kb_context(context_matches)
        cache_key = (request.context.locale, normalize_text(request.question), kb_context)
        cached = self.cache.get(cache_key)
        if cached is not None:
            response = cached.model_copy(
                update={
                    "sources": [ResponseSource(kind="cache", note="mini_model")],
                    "cost": ResponseCost(model="mini", est_tokens=0),
                }
            )
            return self._accept(request, LaneAnswer(response=response, pattern_key="mini_model"))

        prompt = _mini_prompt(request.question, kb_context)
        try:
            completion = self.model_client.complete(prompt, tier="mini", max_tokens=max_tokens_for("mini"))
        except ModelCallFailure as exc:
            logger.warning("fast_lane_model_failed reason=%s", exc.reason)
            return miss(f"{REASON_MODEL_CALL_FAILED}:{exc.reason}")

        text = completion.text.strip()
        issues = forbidden_issues(text)
        if issues:
            logger.warning("fast_lane_model_rejected issues=%s", ",".join(issues))
            return miss("forbidden_content")
        tokens = (completion.input_tokens + completion.output_tokens) or estimate_tokens(prompt + text)
        response = ChatResponse(
            message=text,
            actions=[action for match in context_matches[:1] for action in match.item.actions],
            sources=[ResponseSource(kind="gpt", note=completion.model_id or "mini")],
            cost=ResponseCost(model="mini", est_tokens=tokens),
            confidence=0.7,
        )
        return self._accept(
            request,
            LaneAnswer(response=response, pattern_key="mini_model", cache_write=(cache_key, response), tokens=tokens),
        )
