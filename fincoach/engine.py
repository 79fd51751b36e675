from __future__ import annotations

import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Literal

from .analytics import AnalyticsSink, default_sink, emit_event
from .answerability import Answerability
from .config import LOOKUP_MAX_WORKERS, LOOKUP_TIMEOUT_SECONDS, MODEL_ID_MINI, MODEL_ID_PRO, MODEL_ID_STD
from .contracts import ChatContext, ChatResponse
from .errors import REASON_PIPELINE_ERROR
from .fastlane import FastAnswerLane
from .graph import PipelineDeps, build_graph, initial_state
from .response.models import BedrockModelClient, ModelClient
from .response.renderer import helpful_fallback
from .router import IntentRouter, RouteDecision
from .session import ConversationSession

logger = logging.getLogger(__name__)

Outcome = Literal["helpful", "not_helpful", "rephrased", "abandoned"]


def default_model_client() -> ModelClient | None:
    """Bedrock client when at least one tier has a model id, otherwise no paid model at all."""
    if not any([MODEL_ID_MINI, MODEL_ID_STD, MODEL_ID_PRO]):
        return None
    return BedrockModelClient()


@dataclass
class EngineResult:
    response: ChatResponse
    trace_id: str
    route_decision: RouteDecision | None = None
    answerability: Answerability | None = None
    fact_pack_hash: str = ""
    reason_codes: list[str] = field(default_factory=list)
    trace: Dict[str, Any] = field(default_factory=dict)


class ChatEngine:
    """Answers one question at a time for a caller-owned `ConversationSession`."""

    def __init__(
        self,
        router: IntentRouter | None = None,
        lane: FastAnswerLane | None = None,
        model_client: ModelClient | None = None,
        sink: AnalyticsSink | None = None,
        *,
        use_default_model: bool = True,
        lookup_timeout: float = LOOKUP_TIMEOUT_SECONDS,
        max_workers: int = LOOKUP_MAX_WORKERS,
    ) -> None:
        if model_client is None and use_default_model:
            model_client = default_model_client()
        self.router = router or IntentRouter()
        self.model_client = model_client
        self.lane = lane or FastAnswerLane(model_client=model_client)
        self.sink = sink if sink is not None else default_sink()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="lookup")
        self._graph = build_graph(
            PipelineDeps(
                router=self.router,
                lane=self.lane,
                executor=self._executor,
                model_client=model_client,
                sink=self.sink,
                lookup_timeout=lookup_timeout,
            )
        )

    def run(
        self,
        question: str,
        context: ChatContext | Dict[str, Any] | None,
        session: ConversationSession,
        *,
        now: float | None = None,
    ) -> EngineResult:
        trace_id = f"trc_{uuid.uuid4().hex[:8]}"
        started = time.perf_counter()
        try:
            chat_context = context if isinstance(context, ChatContext) else ChatContext.model_validate(context or {})
            state = self._graph.invoke(
                initial_state(
                    trace_id=trace_id,
                    question=str(question or ""),
                    context=chat_context,
                    session=session,
                    now=time.time() if now is None else now,
                )
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("pipeline_failed trace_id=%s error=%s", trace_id, exc)
            emit_event(self.sink, "fallback_used", trace_id=trace_id, conversation_id=session.conversation_id, reason_codes=[REASON_PIPELINE_ERROR])
            return EngineResult(response=helpful_fallback(), trace_id=trace_id, reason_codes=[REASON_PIPELINE_ERROR])

        response = state.get("response") or helpful_fallback(state.get("intent", ""))
        pack = state.get("fact_pack")
        lane = state.get("lane")
        latency_ms = int((time.perf_counter() - started) * 1000)
        trace = {
            "path": state.get("path", ""),
            "intent": state.get("intent", ""),
            "lane_strategy": lane.strategy if lane is not None else None,
            "lane_reasons": list(lane.reasons) if lane is not None else [],
            "fast_lane_pattern": lane.pattern_key if lane is not None and state.get("lane_used") else None,
            "tier": response.cost.model,
            "escalated": state.get("escalated", False),
            "critic_issues": list(state.get("critic_issues", [])),
            "usefulness": state.get("usefulness", 0.0),
            "latency_ms": latency_ms,
        }
        logger.info(
            "chat_answered trace_id=%s path=%s intent=%s model=%s latency_ms=%s reasons=%s",
            trace_id,
            trace["path"],
            trace["intent"],
            trace["tier"],
            latency_ms,
            ",".join(state.get("reason_codes", [])),
        )
        return EngineResult(
            response=response,
            trace_id=trace_id,
            route_decision=state.get("route_decision"),
            answerability=state.get("answerability", {}).get(state.get("intent", "")),
            fact_pack_hash=pack.metadata.hash if pack is not None else "",
            reason_codes=list(state.get("reason_codes", [])),
            trace=trace,
        )

    def handle(
        self,
        question: str,
        context: ChatContext | Dict[str, Any] | None,
        session: ConversationSession,
        *,
        now: float | None = None,
    ) -> ChatResponse:
        return self.run(question, context, session, now=now).response

    def record_outcome(
        self,
        session: ConversationSession,
        *,
        outcome: Outcome,
        trace_id: str = "",
        expected_intent: str | None = None,
        actual_intent: str | None = None,
    ) -> float | None:
        """Log how the turn landed; with both intents known, nudge the calibration temperature."""
        emit_event(
            self.sink,
            "user_outcome",
            trace_id=trace_id,
            conversation_id=session.conversation_id,
            outcome=outcome,
            expected_intent=expected_intent,
            actual_intent=actual_intent,
        )
        if expected_intent and actual_intent:
            return self.router.update_calibration(expected_intent, actual_intent)
        return None

    def close(self) -> None:
        self._executor.shutdown(wait=False)
