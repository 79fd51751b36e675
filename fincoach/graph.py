from __future__ import annotations

import datetime as dt
import logging
import uuid
from concurrent.futures import Executor, Future, TimeoutError as FuturesTimeoutError, as_completed
from dataclasses import dataclass
from typing import Any, Dict, TypedDict

from langgraph.graph import END, StateGraph

from .analytics import AnalyticsSink, emit_event
from .answerability import Answerability, assess_all
from .config import LOOKUP_TIMEOUT_SECONDS, NARRATION_CONFIDENCE_MIN, ROUTER_SHADOW_ENABLED
from .contracts import ChatContext, ChatResponse
from .errors import (
    REASON_ANSWERABILITY_DEGRADED,
    REASON_CRITIC_REJECTED,
    REASON_ESCALATED,
    REASON_FACTPACK_INVALID,
    REASON_GROUNDING_MISS,
    REASON_LOW_USEFULNESS,
    REASON_MODEL_CALL_FAILED,
    REASON_OFF_TOPIC,
    REASON_TOPIC_OVERRIDE,
    FactPackValidationError,
)
from .facts import FactPack, assert_fact_pack_valid, build_fact_pack
from .fastlane import FastAnswerLane, LaneOutcome, LaneRequest
from .fastlane.lane import LANE_INTENTS
from .grounding import BudgetSuggestionFact, GroundedFacts, ground
from .guard import answers_question, is_useful, score_usefulness
from .response.critic import review
from .response.models import ModelClient
from .response.narration import narrate
from .response.renderer import (
    clarification_response,
    compose_actionable_ask,
    compose_from_facts,
    compose_narrated,
    fact_actions,
    helpful_fallback,
    pending_action_confirmed,
    pending_action_declined,
)
from .response.tiers import escalation_allowed, pick_model_tier
from .router import INTENT_NAMES, IntentRouter, RouteDecision, build_clarifying_question, topic_override
from .session import ConversationSession, PendingAction, detect_confirmation

logger = logging.getLogger(__name__)

GROUNDED_INTENTS = [intent for intent in INTENT_NAMES if intent not in LANE_INTENTS]


@dataclass
class PipelineDeps:
    router: IntentRouter
    lane: FastAnswerLane
    executor: Executor
    model_client: ModelClient | None = None
    sink: AnalyticsSink | None = None
    lookup_timeout: float = LOOKUP_TIMEOUT_SECONDS


class EngineState(TypedDict):
    trace_id: str
    question: str
    context: ChatContext
    session: ConversationSession
    now: float
    path: str
    pending_resolution: str
    fact_pack: FactPack | None
    answerability: Dict[str, Answerability]
    route_decision: RouteDecision | None
    intent: str
    kb_matches: list[Any] | None
    lane: LaneOutcome | None
    lane_used: bool
    grounded: GroundedFacts | None
    response: ChatResponse | None
    tier: str
    tokens: int
    escalated: bool
    critic_issues: list[str]
    usefulness: float
    reason_codes: list[str]


def initial_state(
    *,
    trace_id: str,
    question: str,
    context: ChatContext,
    session: ConversationSession,
    now: float,
) -> EngineState:
    return {
        "trace_id": trace_id,
        "question": question,
        "context": context,
        "session": session,
        "now": now,
        "path": "",
        "pending_resolution": "",
        "fact_pack": None,
        "answerability": {},
        "route_decision": None,
        "intent": "",
        "kb_matches": None,
        "lane": None,
        "lane_used": False,
        "grounded": None,
        "response": None,
        "tier": "mini",
        "tokens": 0,
        "escalated": False,
        "critic_issues": [],
        "usefulness": 0.0,
        "reason_codes": [],
    }


def _add_reason(state: EngineState, code: str) -> None:
    if code not in state["reason_codes"]:
        state["reason_codes"].append(code)


def _calibrated(state: EngineState) -> float:
    decision = state.get("route_decision")
    return decision.primary.calibrated_probability if decision is not None else 0.0


def _verdict(state: EngineState) -> Answerability | None:
    return state["answerability"].get(state["intent"])


def _lane_request(state: EngineState) -> LaneRequest:
    return LaneRequest(
        question=state["question"],
        context=state["context"],
        session=state["session"],
        now=state["now"],
        kb_matches=state.get("kb_matches"),
    )


def pending_action_check(state: EngineState, deps: PipelineDeps) -> EngineState:
    session = state["session"]
    action = session.pending_action
    if action is None:
        return state
    if action.expired(state["now"]):
        logger.info("pending_action_expired conversation_id=%s action=%s", session.conversation_id, action.action)
        state["pending_resolution"] = "expired"
        return state

    confirmation = detect_confirmation(state["question"])
    if confirmation == "affirm":
        state["response"] = pending_action_confirmed(action)
    elif confirmation == "decline":
        state["response"] = pending_action_declined()
    else:
        return state
    state["pending_resolution"] = confirmation
    state["path"] = "pending"
    logger.info("pending_action_resolved conversation_id=%s action=%s outcome=%s", session.conversation_id, action.action, confirmation)
    return state


def answerability(state: EngineState, deps: PipelineDeps) -> EngineState:
    now = dt.datetime.fromtimestamp(state["now"], tz=dt.timezone.utc)
    pack = build_fact_pack(state["context"], now=now)
    try:
        assert_fact_pack_valid(pack)
    except FactPackValidationError:
        _add_reason(state, REASON_FACTPACK_INVALID)
    state["fact_pack"] = pack
    state["answerability"] = assess_all(GROUNDED_INTENTS, pack)
    return state


def _shadow_message(intent: str, pack: FactPack, question: str) -> str:
    grounded = ground(intent, pack, question)
    if grounded is None:
        return helpful_fallback(intent).message
    return compose_from_facts(grounded).message


def route(state: EngineState, deps: PipelineDeps) -> EngineState:
    question = state["question"]
    session = state["session"]
    pack = state["fact_pack"]
    now_ms = int(state["now"] * 1000)

    decision = deps.router.decide(question, pack.section_counts(), session, now_ms=now_ms)
    primary = decision.primary.intent
    override = topic_override(question, primary)
    intent = override or primary
    if override:
        _add_reason(state, REASON_TOPIC_OVERRIDE)
        logger.info("topic_override from=%s to=%s", primary, override)
    state["intent"] = intent

    verdict = state["answerability"].get(intent)
    degraded = intent not in LANE_INTENTS and verdict is not None and verdict.degraded
    if degraded:
        state["path"] = "degrade"
    elif deps.lane.should_handle(question, intent, decision.route_type, topic_overridden=bool(override)):
        state["path"] = "fast_lane"
    else:
        state["path"] = "ground"

    futures: dict[Future, str] = {}
    candidate = deps.router.shadow_candidate(decision) if ROUTER_SHADOW_ENABLED else None
    if candidate is not None:
        futures[deps.executor.submit(_shadow_message, candidate.intent, pack, question)] = "shadow"
    if state["path"] in {"degrade", "fast_lane"}:
        focus = session.active_focus(state["now"])
        futures[deps.executor.submit(deps.lane.prefetch, question, focus=focus)] = "kb"

    try:
        for future in as_completed(futures, timeout=deps.lookup_timeout):
            name = futures[future]
            try:
                result = future.result()
            except Exception as exc:  # noqa: BLE001
                logger.warning("lookup_failed name=%s error=%s", name, exc)
                continue
            if name == "shadow" and candidate is not None:
                decision = deps.router.with_shadow(decision, candidate, result)
            elif name == "kb":
                state["kb_matches"] = result
    except FuturesTimeoutError:
        logger.warning("lookup_timeout pending=%s", ",".join(name for future, name in futures.items() if not future.done()))

    state["route_decision"] = decision
    return state


def degrade(state: EngineState, deps: PipelineDeps) -> EngineState:
    verdict = _verdict(state)
    outcome = deps.lane.answer(_lane_request(state))
    state["lane"] = outcome
    state["lane_used"] = outcome.ok
    state["response"] = deps.lane.graceful(outcome, verdict, intent=state["intent"])
    _add_reason(state, REASON_ANSWERABILITY_DEGRADED)
    logger.info(
        "answerability_degraded intent=%s level=%s missing=%s lane_hit=%s",
        state["intent"],
        verdict.level,
        ",".join(verdict.missing),
        outcome.ok,
    )
    return state


def fast_lane(state: EngineState, deps: PipelineDeps) -> EngineState:
    outcome = deps.lane.answer(_lane_request(state))
    state["lane"] = outcome
    if outcome.ok:
        state["response"] = outcome.response
        state["lane_used"] = True
        state["tokens"] = outcome.tokens
        state["usefulness"] = outcome.usefulness
    return state


def ground_facts(state: EngineState, deps: PipelineDeps) -> EngineState:
    intent = state["intent"]
    decision = state["route_decision"]
    grounded = ground(intent, state["fact_pack"], state["question"])
    if grounded is not None:
        state["grounded"] = grounded
        state["response"] = compose_from_facts(grounded)
        return state

    verdict = _verdict(state)
    if intent not in LANE_INTENTS:
        _add_reason(state, REASON_GROUNDING_MISS)
    if intent == "UNKNOWN" or decision.route_type == "unknown":
        state["response"] = clarification_response(build_clarifying_question(decision))
    elif verdict is not None and verdict.missing:
        state["response"] = compose_actionable_ask(verdict, intent=intent)
    else:
        state["response"] = helpful_fallback(intent)
    return state


def _narrate_with(state: EngineState, deps: PipelineDeps, tier: str, feedback: str = "") -> ChatResponse | None:
    grounded = state["grounded"]
    plan, errors, meta = narrate(state["question"], grounded, client=deps.model_client, tier=tier, corrective_feedback=feedback)
    if plan is None:
        if any(error.startswith("model_call_failed") for error in errors):
            _add_reason(state, REASON_MODEL_CALL_FAILED)
        logger.warning("narration_failed tier=%s errors=%s", tier, ";".join(errors[:3]))
        return None

    verdict = review(plan.text(), grounded)
    if not verdict.ok:
        state["critic_issues"] = list(verdict.issues)
        _add_reason(state, REASON_CRITIC_REJECTED)
        logger.warning("critic_rejected tier=%s issues=%s", tier, ",".join(verdict.issues))
        return None
    tokens = int(meta.get("input_tokens", 0)) + int(meta.get("output_tokens", 0))
    state["tokens"] += tokens
    return compose_narrated(verdict.text, grounded, tier=tier, tokens=tokens)


def narrate_facts(state: EngineState, deps: PipelineDeps) -> EngineState:
    calibrated = _calibrated(state)
    state["tier"] = pick_model_tier(state["question"], state["intent"], calibrated, state["context"].current_usage)
    if deps.model_client is None or calibrated < NARRATION_CONFIDENCE_MIN:
        state["tier"] = "mini"
        return state
    narrated = _narrate_with(state, deps, state["tier"])
    if narrated is not None:
        state["response"] = narrated
    else:
        state["response"] = compose_from_facts(state["grounded"], tier=state["tier"])
    return state


def escalate(state: EngineState, deps: PipelineDeps) -> EngineState:
    question = state["question"]
    current = state["response"]
    useful = is_useful(current, question, state["intent"])
    state["usefulness"] = score_usefulness(current, question)
    rejected = REASON_CRITIC_REJECTED in state["reason_codes"]
    if useful and not rejected:
        return state
    if not useful:
        _add_reason(state, REASON_LOW_USEFULNESS)

    verdict = _verdict(state)
    can_escalate = (
        deps.model_client is not None
        and not state["escalated"]
        and escalation_allowed(state["tier"], state["context"].current_usage)
    )
    candidate = None
    if can_escalate:
        state["escalated"] = True
        _add_reason(state, REASON_ESCALATED)
        logger.info("escalating tier_from=%s tier_to=pro useful=%s critic_rejected=%s", state["tier"], useful, rejected)
        candidate = _narrate_with(state, deps, "pro", feedback=",".join(state["critic_issues"]))

    if candidate is not None and is_useful(candidate, question, state["intent"]):
        state["response"] = candidate
        state["tier"] = "pro"
        state["usefulness"] = score_usefulness(candidate, question)
    elif not useful and verdict is not None and verdict.missing:
        state["response"] = compose_actionable_ask(verdict, intent=state["intent"], base=current)
    return state


def topicality(state: EngineState, deps: PipelineDeps) -> EngineState:
    response = state["response"]
    if state["lane_used"] or answers_question(response.message, state["question"]):
        return state
    _add_reason(state, REASON_OFF_TOPIC)
    rescue = deps.lane.answer(_lane_request(state))
    if rescue.ok and answers_question(rescue.response.message, state["question"]):
        logger.info("topicality_rescued strategy=%s pattern=%s", rescue.strategy, rescue.pattern_key)
        state["response"] = rescue.response
        state["lane"] = rescue
        state["lane_used"] = True
        state["grounded"] = None
    return state


def _register_budget_suggestion(state: EngineState) -> None:
    grounded = state["grounded"]
    if grounded is None or not isinstance(grounded.facts[0], BudgetSuggestionFact):
        return
    actions = fact_actions(grounded)
    if not actions:
        return
    action = actions[0]
    state["session"].register_pending_action(
        PendingAction(
            action_id=f"pa_{uuid.uuid4().hex[:8]}",
            action=action.id,
            label=action.label,
            params=dict(action.params),
            created_at=state["now"],
        ),
    )


def commit(state: EngineState, deps: PipelineDeps) -> EngineState:
    """Apply every staged session and cache write, then emit analytics."""
    session = state["session"]
    now = state["now"]
    decision = state["route_decision"]
    response = state["response"]

    if state["pending_resolution"]:
        session.clear_pending_action()
    if decision is not None:
        session.record_route(decision.primary.intent, decision.primary.calibrated_probability, int(now * 1000))
    outcome = state["lane"]
    if state["lane_used"] and outcome is not None:
        deps.lane.commit(outcome, session, now)
    _register_budget_suggestion(state)

    common = {"trace_id": state["trace_id"], "conversation_id": session.conversation_id}
    if decision is not None:
        emit_event(
            deps.sink,
            "route_decision",
            **common,
            intent=decision.primary.intent,
            effective_intent=state["intent"],
            calibrated=decision.primary.calibrated_probability,
            route_type=decision.route_type,
            threshold=decision.threshold,
            hysteresis_applied=decision.hysteresis_applied,
            path=state["path"],
            shadow=decision.shadow_route.model_dump() if decision.shadow_route else None,
        )
    if state["reason_codes"]:
        emit_event(deps.sink, "fallback_used", **common, path=state["path"], reason_codes=list(state["reason_codes"]))
    emit_event(
        deps.sink,
        "cost_summary",
        **common,
        model=response.cost.model,
        est_tokens=response.cost.est_tokens,
        escalated=state["escalated"],
        sources=[source.kind for source in response.sources],
    )
    return state


def build_graph(deps: PipelineDeps) -> Any:
    graph = StateGraph(EngineState)
    graph.add_node("pending_action_check", lambda state: pending_action_check(state, deps))
    graph.add_node("answerability", lambda state: answerability(state, deps))
    graph.add_node("route", lambda state: route(state, deps))
    graph.add_node("degrade", lambda state: degrade(state, deps))
    graph.add_node("fast_lane", lambda state: fast_lane(state, deps))
    graph.add_node("ground", lambda state: ground_facts(state, deps))
    graph.add_node("narrate", lambda state: narrate_facts(state, deps))
    graph.add_node("escalate", lambda state: escalate(state, deps))
    graph.add_node("topicality", lambda state: topicality(state, deps))
    graph.add_node("commit", lambda state: commit(state, deps))

    graph.set_entry_point("pending_action_check")
    graph.add_conditional_edges(
        "pending_action_check",
        lambda state: "commit" if state.get("response") else "answerability",
        {"commit": "commit", "answerability": "answerability"},
    )
    graph.add_edge("answerability", "route")
    graph.add_conditional_edges(
        "route",
        lambda state: state["path"],
        {"degrade": "degrade", "fast_lane": "fast_lane", "ground": "ground"},
    )
    graph.add_edge("degrade", "commit")
    graph.add_conditional_edges(
        "fast_lane",
        lambda state: "topicality" if state.get("response") else "ground",
        {"topicality": "topicality", "ground": "ground"},
    )
    graph.add_conditional_edges(
        "ground",
        lambda state: "narrate" if state.get("grounded") is not None else "topicality",
        {"narrate": "narrate", "topicality": "topicality"},
    )
    graph.add_edge("narrate", "escalate")
    graph.add_edge("escalate", "topicality")
    graph.add_edge("topicality", "commit")
    graph.add_edge("commit", END)
    return graph.compile()
