from __future__ import annotations

import json
import threading
import unittest
from typing import Any
from unittest.mock import patch

from fincoach.analytics import AnalyticsEvent
from fincoach.engine import ChatEngine
from fincoach.facts import build_fact_pack
from fincoach.response import ModelCompletion
from fincoach.router import IntentRouter
from fincoach.session import ConversationSession
from tests.fixtures import NOW, NOW_TS, groceries_context

HYSA_QUESTION = "How much interest would I earn if I put $5,000 in a HYSA?"


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[AnalyticsEvent] = []

    def send(self, event: AnalyticsEvent) -> None:
        self.events.append(event)

    def names(self) -> list[str]:
        return [event.name for event in self.events]


class ExplodingSink:
    def send(self, event: AnalyticsEvent) -> None:
        raise ConnectionError("analytics down")


class ScriptedModelClient:
    def __init__(self, text: str) -> None:
        self.text = text
        self.tiers: list[str] = []

    def complete(self, prompt: str, *, tier: str, max_tokens: int) -> ModelCompletion:
        self.tiers.append(tier)
        return ModelCompletion(text=self.text, tier=tier, model_id=f"scripted-{tier}", input_tokens=30, output_tokens=10)


class EngineTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.sink = RecordingSink()
        self.engine = ChatEngine(use_default_model=False, sink=self.sink)
        self.session = ConversationSession()

    def tearDown(self) -> None:
        self.engine.close()


class GroundedAnswerTests(EngineTestCase):
    def test_budget_status_from_facts(self) -> None:
        result = self.engine.run("How is my Groceries budget doing?", groceries_context(), self.session, now=NOW_TS)
        period = build_fact_pack(groceries_context(), now=NOW).time_window.period

        self.assertEqual(result.route_decision.primary.intent, "GET_BUDGET_STATUS")
        self.assertEqual(result.route_decision.route_type, "grounded")
        self.assertEqual(
            result.response.message, f"Budget status for {period}: Groceries has $200 remaining of $400 (50% used)."
        )
        self.assertEqual(result.response.sources[0].kind, "db")
        self.assertEqual(result.response.cost.model, "mini")
        self.assertEqual([action.id for action in result.response.actions], ["OPEN_BUDGETS"])
        self.assertEqual(result.trace["path"], "ground")
        self.assertEqual(result.trace["usefulness"], 5.0)
        self.assertEqual(result.reason_codes, [])
        self.assertEqual(result.answerability.level, "high")

    def test_commit_records_route_and_emits_events(self) -> None:
        result = self.engine.run("How is my Groceries budget doing?", groceries_context(), self.session, now=NOW_TS)
        self.assertEqual(self.session.last_route_intent, "GET_BUDGET_STATUS")
        self.assertEqual(self.session.last_route_at_ms, int(NOW_TS * 1000))
        self.assertEqual(self.sink.names(), ["route_decision", "cost_summary"])
        self.assertTrue(all(event.trace_id == result.trace_id for event in self.sink.events))
        self.assertEqual(self.sink.events[0].properties["path"], "ground")

    def test_same_input_same_answer(self) -> None:
        first = self.engine.run("How is my Groceries budget doing?", groceries_context(), ConversationSession(), now=NOW_TS)
        second = self.engine.run("How is my Groceries budget doing?", groceries_context(), ConversationSession(), now=NOW_TS)
        self.assertEqual(first.fact_pack_hash, second.fact_pack_hash)
        self.assertEqual(first.response.message, second.response.message)

    def test_plain_dict_context(self) -> None:
        payload = groceries_context().model_dump(mode="json")
        result = self.engine.run("How is my Groceries budget doing?", payload, self.session, now=NOW_TS)
        self.assertEqual(result.route_decision.primary.intent, "GET_BUDGET_STATUS")


class DegradedAnswerTests(EngineTestCase):
    def test_missing_data_gets_actionable_ask(self) -> None:
        result = self.engine.run("How's my spending?", {}, self.session, now=NOW_TS)
        self.assertEqual(result.trace["intent"], "SPENDING_OVERVIEW")
        self.assertEqual(result.trace["path"], "degrade")
        self.assertEqual(result.answerability.level, "none")
        self.assertEqual(
            result.response.message, "I can't review your spending yet because some of your financial data is missing."
        )
        self.assertEqual(
            result.response.details, "To personalize this, I need: monthly income, transactions, budget data."
        )
        self.assertEqual(
            [action.id for action in result.response.actions],
            ["OPEN_INCOME_FORM", "OPEN_TRANSACTION_FORM", "OPEN_BUDGET_WIZARD"],
        )
        self.assertIn("answerability_degraded", result.reason_codes)
        self.assertIn("fallback_used", self.sink.names())


class FastLaneTests(EngineTestCase):
    def test_investing_question_overrides_budget_intent(self) -> None:
        result = self.engine.run(
            "How is my budget doing if I start investing in index funds?", groceries_context(), self.session, now=NOW_TS
        )
        self.assertEqual(result.route_decision.primary.intent, "GET_BUDGET_STATUS")
        self.assertEqual(result.trace["intent"], "GENERAL_QA")
        self.assertEqual(result.trace["fast_lane_pattern"], "INVESTING_STARTER")
        self.assertIn("invest", result.response.message.lower())
        self.assertEqual(result.reason_codes, ["topic_override"])

    def test_frustrated_repeat_falls_back(self) -> None:
        first = self.engine.run(HYSA_QUESTION, {}, self.session, now=NOW_TS)
        self.assertEqual(first.trace["fast_lane_pattern"], "HYSA_INTEREST_ESTIMATOR")
        self.assertEqual(self.session.active_focus(NOW_TS + 1), "savings")

        second = self.engine.run(
            "I already have that. If I put $3000 in a HYSA, how much interest would I earn?",
            {},
            self.session,
            now=NOW_TS + 30,
        )
        self.assertIsNone(second.trace["fast_lane_pattern"])
        self.assertIn("micro_solver:repeat_suppressed", second.trace["lane_reasons"])
        self.assertTrue(second.response.message.startswith("I couldn't put a reliable answer together"))


class NarrationTests(unittest.TestCase):
    def test_rejected_narration_escalates_once_then_keeps_template(self) -> None:
        client = ScriptedModelClient(
            json.dumps(
                {
                    "schema_version": "narration_plan_v1",
                    "summary_lines": ["Your Groceries budget comes with guaranteed returns of $200 every month."],
                    "used_fact_ids": ["budget.b1"],
                }
            )
        )
        engine = ChatEngine(model_client=client, sink=RecordingSink())
        try:
            result = engine.run("How is my Groceries budget doing?", groceries_context(), ConversationSession(), now=NOW_TS)
        finally:
            engine.close()

        self.assertEqual(client.tiers, ["mini", "pro"])
        self.assertTrue(result.response.message.startswith("Budget status for"))
        self.assertTrue(result.trace["escalated"])
        self.assertIn("forbidden:guaranteed_return", result.trace["critic_issues"])
        self.assertIn("critic_rejected", result.reason_codes)
        self.assertIn("escalated_to_pro", result.reason_codes)

    def test_accepted_narration_replaces_template(self) -> None:
        text = "You have $200 left in your Groceries budget, so you've used 50% of the $400 limit."
        client = ScriptedModelClient(
            json.dumps({"schema_version": "narration_plan_v1", "summary_lines": [text], "used_fact_ids": ["budget.b1"]})
        )
        engine = ChatEngine(model_client=client, sink=RecordingSink())
        try:
            result = engine.run("How is my Groceries budget doing?", groceries_context(), ConversationSession(), now=NOW_TS)
        finally:
            engine.close()

        self.assertEqual(result.response.message, text)
        self.assertEqual([source.kind for source in result.response.sources], ["db", "gpt"])
        self.assertEqual(result.response.cost.est_tokens, 40)
        self.assertFalse(result.trace["escalated"])


class PendingActionTests(EngineTestCase):
    def _suggest(self) -> None:
        result = self.engine.run("Create a budget for dining", groceries_context(), self.session, now=NOW_TS)
        self.assertEqual(
            result.response.message,
            "Want me to create a Dining budget of $500 a month? That's about 10% of your monthly income.",
        )
        self.assertIsNotNone(self.session.pending_action)
        self.assertEqual(self.session.pending_action.action, "CREATE_BUDGET")

    def test_confirm(self) -> None:
        self._suggest()
        result = self.engine.run("yes", groceries_context(), self.session, now=NOW_TS + 10)
        self.assertEqual(result.trace["path"], "pending")
        self.assertEqual(result.response.message, "Done! I'm setting that up for you: Create Dining budget.")
        action = result.response.actions[0]
        self.assertEqual(action.id, "CREATE_BUDGET")
        self.assertEqual(action.params["amount"], 500.0)
        self.assertIsNone(self.session.pending_action)

    def test_decline(self) -> None:
        self._suggest()
        result = self.engine.run("no thanks", groceries_context(), self.session, now=NOW_TS + 10)
        self.assertEqual(result.response.message, "No problem! What else can I help you with?")
        self.assertIsNone(self.session.pending_action)

    def test_refusal_with_polite_words_declines(self) -> None:
        self._suggest()
        result = self.engine.run("ok no, please don't", groceries_context(), self.session, now=NOW_TS + 10)
        self.assertEqual(result.trace["path"], "pending")
        self.assertEqual(result.response.message, "No problem! What else can I help you with?")
        self.assertNotIn("CREATE_BUDGET", [action.id for action in result.response.actions])
        self.assertIsNone(self.session.pending_action)

    def test_unrelated_turn_keeps_pending_action(self) -> None:
        self._suggest()
        self.engine.run("How is my Groceries budget doing?", groceries_context(), self.session, now=NOW_TS + 10)
        self.assertIsNotNone(self.session.pending_action)

    def test_expired_action_is_not_confirmed(self) -> None:
        self._suggest()
        result = self.engine.run("yes", groceries_context(), self.session, now=NOW_TS + 700)
        self.assertNotEqual(result.trace["path"], "pending")
        self.assertFalse(result.response.message.startswith("Done!"))
        self.assertIsNone(self.session.pending_action)


class ShadowRouteTests(unittest.TestCase):
    QUESTION = "How is my budget doing compared to my spending breakdown?"

    def _run(self, **kwargs: Any):
        engine = ChatEngine(use_default_model=False, sink=RecordingSink(), **kwargs)
        try:
            return engine.run(self.QUESTION, groceries_context(), ConversationSession(), now=NOW_TS)
        finally:
            engine.close()

    def test_shadow_route_attached_when_lookup_succeeds(self) -> None:
        result = self._run()
        self.assertIsNotNone(result.route_decision.shadow_route)

    def test_failing_shadow_lookup_keeps_answer(self) -> None:
        with patch("fincoach.graph._shadow_message", side_effect=RuntimeError("grounding exploded")):
            result = self._run()
        self.assertNotIn("pipeline_error", result.reason_codes)
        self.assertTrue(result.response.message)
        self.assertIsNone(result.route_decision.shadow_route)

    def test_slow_shadow_lookup_times_out(self) -> None:
        release = threading.Event()

        def slow_shadow(*args: Any) -> str:
            release.wait(2.0)
            return "too late"

        try:
            with patch("fincoach.graph._shadow_message", side_effect=slow_shadow):
                result = self._run(lookup_timeout=0.05)
        finally:
            release.set()
        self.assertNotIn("pipeline_error", result.reason_codes)
        self.assertTrue(result.response.message)
        self.assertIsNone(result.route_decision.shadow_route)


class RobustnessTests(unittest.TestCase):
    def test_failing_sink_does_not_break_answers(self) -> None:
        engine = ChatEngine(use_default_model=False, sink=ExplodingSink())
        try:
            result = engine.run("How is my Groceries budget doing?", groceries_context(), ConversationSession(), now=NOW_TS)
        finally:
            engine.close()
        self.assertTrue(result.response.message.startswith("Budget status for"))

    def test_invalid_context_returns_fallback(self) -> None:
        engine = ChatEngine(use_default_model=False, sink=RecordingSink())
        try:
            result = engine.run("How is my budget?", {"budgets": "not-a-list"}, ConversationSession(), now=NOW_TS)
        finally:
            engine.close()
        self.assertEqual(result.reason_codes, ["pipeline_error"])
        self.assertEqual(result.response.sources[0].note, "fallback")

    def test_record_outcome_updates_calibration(self) -> None:
        sink = RecordingSink()
        engine = ChatEngine(router=IntentRouter(), use_default_model=False, sink=sink)
        session = ConversationSession()
        try:
            temperature = engine.record_outcome(
                session,
                outcome="rephrased",
                trace_id="trc_1",
                expected_intent="GET_SPENDING_BREAKDOWN",
                actual_intent="GET_BALANCE",
            )
            unlabeled = engine.record_outcome(session, outcome="helpful")
        finally:
            engine.close()
        self.assertAlmostEqual(temperature, 0.285)
        self.assertIsNone(unlabeled)
        self.assertEqual(sink.names(), ["user_outcome", "user_outcome"])
        self.assertEqual(sink.events[0].properties["outcome"], "rephrased")


if __name__ == "__main__":
    unittest.main()
