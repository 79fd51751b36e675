from __future__ import annotations

import unittest
from typing import Any

from fincoach.answerability import Answerability
from fincoach.contracts import ChatContext
from fincoach.errors import KnowledgeBaseError, ModelCallFailure
from fincoach.fastlane import (
    FastAnswerLane,
    KnowledgeBase,
    LaneRequest,
    TimedLRUCache,
    hit,
    match_micro_solver,
    miss,
    run_cascade,
)
from fincoach.fastlane.knowledge import score_item
from fincoach.response import ModelCompletion
from fincoach.session import ConversationSession
from tests.fixtures import NOW_TS, full_context, groceries_context

HYSA_QUESTION = "How much interest would I earn if I put $5,000 in a HYSA?"


def _kb_payload() -> dict[str, Any]:
    return {
        "version": "kb_test",
        "items": [
            {
                "id": "kb_credit",
                "question": "What is a credit score?",
                "answer": (
                    "A credit score is a number from 300 to 850 that lenders use to judge how likely you are "
                    "to repay. Paying on time and keeping balances low are what matter most."
                ),
                "category": "credit",
                "keywords": ["credit score", "fico"],
                "actions": [{"id": "OPEN_LEARN", "label": "Learn about credit"}],
            },
            {
                "id": "kb_budget",
                "question": "How do I start budgeting?",
                "answer": "List your income and fixed bills first, then set limits for flexible categories.",
                "category": "budgeting",
                "keywords": ["start budgeting", "budget"],
                "actions": [{"id": "OPEN_BUDGET_WIZARD", "label": "Create a budget"}],
            },
        ],
    }


class FakeClock:
    def __init__(self) -> None:
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


class StubModelClient:
    def __init__(self, text: str = "", *, failure: Exception | None = None) -> None:
        self.text = text
        self.failure = failure
        self.calls = 0

    def complete(self, prompt: str, *, tier: str, max_tokens: int) -> ModelCompletion:
        self.calls += 1
        if self.failure is not None:
            raise self.failure
        return ModelCompletion(text=self.text, tier=tier, model_id="stub-mini", input_tokens=40, output_tokens=12)


class TimedLRUCacheTests(unittest.TestCase):
    def test_lru_eviction(self) -> None:
        cache = TimedLRUCache(2, 10, clock=FakeClock())
        cache.set("a", 1)
        cache.set("b", 2)
        self.assertEqual(cache.get("a"), 1)
        cache.set("c", 3)
        self.assertIsNone(cache.get("b"))
        self.assertEqual(cache.get("a"), 1)
        self.assertEqual(len(cache), 2)

    def test_ttl_expiry(self) -> None:
        clock = FakeClock()
        cache = TimedLRUCache(4, 10, clock=clock)
        cache.set("a", 1)
        clock.value = 10.0
        self.assertEqual(cache.get("a"), 1)
        clock.value = 10.5
        self.assertIsNone(cache.get("a"))
        self.assertEqual(len(cache), 0)


class CascadeTests(unittest.TestCase):
    def test_first_hit_wins_and_reasons_accumulate(self) -> None:
        calls: list[str] = []

        def boom(request: Any):
            calls.append("boom")
            raise RuntimeError("broken")

        def declines(request: Any):
            calls.append("declines")
            return miss("no_pattern")

        def answers(request: Any):
            calls.append("answers")
            return hit(f"answer for {request}")

        def never(request: Any):
            calls.append("never")
            return hit("unused")

        outcome = run_cascade([("boom", boom), ("declines", declines), ("answers", answers), ("never", never)], "q")
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.strategy, "answers")
        self.assertEqual(outcome.value, "answer for q")
        self.assertEqual(outcome.reasons, ["boom:error", "declines:no_pattern"])
        self.assertEqual(calls, ["boom", "declines", "answers"])

    def test_all_miss(self) -> None:
        outcome = run_cascade([("only", lambda request: miss(""))], None)
        self.assertFalse(outcome.ok)
        self.assertIsNone(outcome.strategy)
        self.assertEqual(outcome.reasons, ["only:miss"])


class MicroSolverTests(unittest.TestCase):
    def test_emergency_fund_defaults(self) -> None:
        solver, response = match_micro_solver("How much should I save each month for an emergency fund?", ChatContext())
        self.assertEqual(solver.key, "EF_MONTHLY_CONTRIBUTION")
        self.assertEqual(
            response.message, "To build a 3-month emergency fund of $9,000, set aside about $750 a month for 12 months."
        )
        self.assertEqual(response.actions[0].id, "OPEN_GOAL_WIZARD")
        self.assertEqual(response.cards[0].type, "calculation")

    def test_emergency_fund_with_explicit_inputs(self) -> None:
        _, response = match_micro_solver(
            "I spend $2,000 a month on essentials. How do I build an emergency fund with 6 months of expenses in 2 years?",
            ChatContext(),
        )
        self.assertEqual(
            response.message, "To build a 6-month emergency fund of $12,000, set aside about $500 a month for 24 months."
        )

    def test_emergency_fund_counts_existing_savings(self) -> None:
        _, response = match_micro_solver("How big should my emergency fund be?", full_context())
        self.assertTrue(response.message.startswith("You've already reached a 3-month emergency fund"))

    def test_hysa_interest_estimate(self) -> None:
        solver, response = match_micro_solver(HYSA_QUESTION, ChatContext())
        self.assertEqual(solver.key, "HYSA_INTEREST_ESTIMATOR")
        self.assertEqual(solver.topic, "savings")
        self.assertIn("$5,000 would earn roughly $225 to $250", response.message)
        self.assertEqual(response.sources[0].kind, "localML")

    def test_hysa_without_amount_gets_checklist(self) -> None:
        solver, response = match_micro_solver("What should I look for in a HYSA?", ChatContext())
        self.assertEqual(solver.key, "HYSA_CHECKLIST")
        self.assertEqual(response.cards[0].type, "checklist")

    def test_quick_math(self) -> None:
        solver, response = match_micro_solver("What is 15% of $2,400?", ChatContext())
        self.assertEqual(solver.key, "QUICK_MATH_PERCENT")
        self.assertTrue(response.message.startswith("15% of $2,400 is $360."))

        solver, response = match_micro_solver("If I save $200 a month, how much is that a year?", ChatContext())
        self.assertEqual(solver.key, "QUICK_MATH_MONTHLY_TO_YEARLY")
        self.assertEqual(response.message, "$200 a month adds up to $2,400 a year, and $12,000 over five years.")

    def test_budget_rule_uses_income(self) -> None:
        solver, response = match_micro_solver("Explain the 50/30/20 rule", groceries_context())
        self.assertEqual(solver.key, "BUDGET_RULE_50_30_20")
        self.assertIn("$2,500 for needs, $1,500 for wants and $1,000 for savings", response.message)

    def test_navigation_and_investing(self) -> None:
        solver, response = match_micro_solver("Where do I mark a bill as paid?", ChatContext())
        self.assertEqual(solver.key, "APP_NAV_MARK_BILL_PAID")
        self.assertEqual(response.actions[0].id, "OPEN_RECURRING_FORM")

        solver, response = match_micro_solver("Should I invest in index funds?", ChatContext())
        self.assertEqual(solver.key, "INVESTING_STARTER")
        self.assertIn("invest", response.message)

    def test_no_match(self) -> None:
        self.assertIsNone(match_micro_solver("What's the weather like?", ChatContext()))


class KnowledgeBaseTests(unittest.TestCase):
    def setUp(self) -> None:
        self.kb = KnowledgeBase.from_payload(_kb_payload(), source="inline")
        self.credit = self.kb.items[0]

    def test_default_knowledge_base_loads(self) -> None:
        kb = KnowledgeBase.load()
        self.assertEqual(kb.version, "kb_v1")
        self.assertEqual(len(kb.items), 15)

    def test_unreadable_file(self) -> None:
        with self.assertRaises(KnowledgeBaseError):
            KnowledgeBase.load("/nonexistent/knowledge_base.json")

    def test_schema_and_duplicate_errors(self) -> None:
        payload = _kb_payload()
        payload["items"][0]["keywords"] = []
        with self.assertRaises(KnowledgeBaseError) as ctx:
            KnowledgeBase.from_payload(payload)
        self.assertTrue(ctx.exception.errors[0].startswith("items.0.keywords"))

        payload = _kb_payload()
        payload["items"][1]["id"] = "kb_credit"
        with self.assertRaises(KnowledgeBaseError) as ctx:
            KnowledgeBase.from_payload(payload)
        self.assertEqual(ctx.exception.errors, ["items.1.id: duplicate id kb_credit"])

        payload = _kb_payload()
        payload["items"][0]["actions"] = [{"id": "OPEN_CASINO", "label": "Nope"}]
        with self.assertRaises(KnowledgeBaseError):
            KnowledgeBase.from_payload(payload)

    def test_scoring(self) -> None:
        self.assertEqual(score_item(self.credit, "What is a credit score and why does it matter?"), 1.0)
        self.assertAlmostEqual(score_item(self.credit, "whats my fico"), 0.25)
        self.assertGreater(score_item(self.credit, "credit scroe"), score_item(self.credit, "credit banana"))
        self.assertEqual(score_item(self.credit, "weather tomorrow"), 0.0)

    def test_focus_boost(self) -> None:
        question = "tell me about fico numbers"
        self.assertAlmostEqual(
            score_item(self.credit, question, focus="credit") - score_item(self.credit, question), 0.1, places=4
        )

    def test_search_filters_and_orders(self) -> None:
        matches = self.kb.search("What is a credit score and why does it matter?")
        self.assertEqual([match.item.id for match in matches], ["kb_credit"])
        self.assertEqual(self.kb.search("What is a credit score and why does it matter?"), matches)
        self.assertEqual(self.kb.search("weather tomorrow"), [])
        low = self.kb.search("whats my fico", min_score=0.2)
        self.assertEqual([match.item.id for match in low], ["kb_credit"])


class FastAnswerLaneTests(unittest.TestCase):
    def setUp(self) -> None:
        self.kb = KnowledgeBase.from_payload(_kb_payload())
        self.session = ConversationSession()

    def _lane(self, client: Any = None, **kwargs: Any) -> FastAnswerLane:
        return FastAnswerLane(knowledge_base=self.kb, model_client=client, cache=TimedLRUCache(8, 60), **kwargs)

    def _request(self, question: str, now: float = NOW_TS) -> LaneRequest:
        return LaneRequest(question=question, context=ChatContext(), session=self.session, now=now)

    def test_should_handle(self) -> None:
        lane = self._lane()
        self.assertFalse(lane.should_handle("Show my balance", "GET_BALANCE", "grounded"))
        self.assertTrue(lane.should_handle("How do I add a budget?", "CREATE_BUDGET", "grounded"))
        self.assertTrue(lane.should_handle("What is APR?", "GENERAL_QA", "grounded"))
        self.assertTrue(lane.should_handle("Show my balance", "GET_BALANCE", "llm"))
        self.assertTrue(lane.should_handle("Show my balance", "GET_BALANCE", "grounded", topic_overridden=True))

    def test_micro_solver_answer_then_commit(self) -> None:
        lane = self._lane()
        outcome = lane.answer(self._request(HYSA_QUESTION))
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.strategy, "micro_solver")
        self.assertEqual(outcome.pattern_key, "HYSA_INTEREST_ESTIMATOR")
        self.assertGreaterEqual(outcome.usefulness, 3.0)
        self.assertIsNone(self.session.last_fast_lane_key)

        lane.commit(outcome, self.session, NOW_TS)
        self.assertEqual(self.session.last_fast_lane_key, "HYSA_INTEREST_ESTIMATOR")
        self.assertEqual(self.session.active_focus(NOW_TS + 1), "savings")

    def test_frustrated_repeat_is_suppressed(self) -> None:
        lane = self._lane()
        lane.commit(lane.answer(self._request(HYSA_QUESTION)), self.session, NOW_TS)

        calm = lane.answer(self._request(HYSA_QUESTION, NOW_TS + 30))
        self.assertEqual(calm.pattern_key, "HYSA_INTEREST_ESTIMATOR")

        frustrated = lane.answer(
            self._request("I already have that. If I put $3000 in a HYSA, how much interest would I earn?", NOW_TS + 30)
        )
        self.assertFalse(frustrated.ok)
        self.assertEqual(
            frustrated.reasons,
            ["micro_solver:repeat_suppressed", "knowledge_base:no_match", "mini_model:model_unavailable"],
        )

        later = lane.answer(
            self._request("I already have that. If I put $3000 in a HYSA, how much interest would I earn?", NOW_TS + 300)
        )
        self.assertEqual(later.pattern_key, "HYSA_INTEREST_ESTIMATOR")

    def test_knowledge_base_answer(self) -> None:
        outcome = self._lane().answer(self._request("What is a credit score and why does it matter?"))
        self.assertEqual(outcome.strategy, "knowledge_base")
        self.assertEqual(outcome.pattern_key, "kb:what is a credit score?")
        self.assertEqual(outcome.topic, "credit")
        self.assertEqual(outcome.response.sources[0].note, "kb:kb_credit")
        self.assertEqual(outcome.response.actions[0].id, "OPEN_LEARN")

    def test_low_usefulness_is_a_miss(self) -> None:
        outcome = self._lane(min_score=7.0).answer(self._request("What is a credit score and why does it matter?"))
        self.assertFalse(outcome.ok)
        self.assertIn("knowledge_base:low_usefulness", outcome.reasons)

    def test_mini_model_answer_is_cached_after_commit(self) -> None:
        client = StubModelClient(
            "A credit union is a member-owned nonprofit lender that often offers lower loan rates and fewer fees."
        )
        lane = self._lane(client)
        outcome = lane.answer(self._request("What is a credit union?"))
        self.assertEqual(outcome.strategy, "mini_model")
        self.assertEqual(outcome.response.sources[0].kind, "gpt")
        self.assertEqual(outcome.tokens, 52)
        self.assertIsNotNone(outcome.cache_write)
        self.assertEqual(len(lane.cache), 0)

        lane.commit(outcome, self.session, NOW_TS)
        cached = lane.answer(self._request("What is a credit union?"))
        self.assertEqual(cached.response.sources[0].kind, "cache")
        self.assertIsNone(cached.cache_write)
        self.assertEqual(client.calls, 1)

    def test_mini_model_rejections(self) -> None:
        forbidden = self._lane(
            StubModelClient("A credit union offers guaranteed returns on every deposit, so it cannot lose.")
        ).answer(self._request("What is a credit union?"))
        self.assertFalse(forbidden.ok)
        self.assertIn("mini_model:forbidden_content", forbidden.reasons)

        failed = self._lane(StubModelClient(failure=ModelCallFailure("throttled", tier="mini"))).answer(
            self._request("What is a credit union?")
        )
        self.assertIn("mini_model:model_call_failed:throttled", failed.reasons)

    def test_graceful_ask(self) -> None:
        lane = self._lane()
        answerability = Answerability(level="none", missing=["budget data"])
        ask = lane.graceful(None, answerability, intent="GET_BUDGET_STATUS")
        self.assertEqual(ask.message, "You don't have any budgets set up yet, so there's no budget status to show.")
        self.assertEqual(ask.actions[0].id, "OPEN_BUDGET_WIZARD")

        outcome = lane.answer(self._request("What is a credit score and why does it matter?"))
        merged = lane.graceful(outcome, answerability)
        self.assertEqual(merged.message, outcome.response.message)
        self.assertEqual([action.id for action in merged.actions], ["OPEN_LEARN", "OPEN_BUDGET_WIZARD"])


if __name__ == "__main__":
    unittest.main()
