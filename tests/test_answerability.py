from __future__ import annotations

import unittest

from fincoach.answerability import MISSING_BUDGETS, MISSING_INCOME, assess_all, assess_answerability, setup_actions_for
from fincoach.contracts import ChatContext
from fincoach.facts import build_fact_pack
from tests.fixtures import NOW, days_ago, full_context, groceries_context


def _pack(context: ChatContext):
    return build_fact_pack(context, now=NOW)


class AnswerabilityTests(unittest.TestCase):
    def test_spending_overview_without_any_data_is_none(self) -> None:
        verdict = assess_answerability("SPENDING_OVERVIEW", _pack(ChatContext()))
        self.assertEqual(verdict.level, "none")
        self.assertTrue(verdict.degraded)
        self.assertIn(MISSING_INCOME, verdict.missing)

    def test_spending_overview_with_budgets_but_no_transactions_is_low(self) -> None:
        verdict = assess_answerability("SPENDING_OVERVIEW", _pack(groceries_context()))
        self.assertEqual(verdict.level, "low")
        self.assertNotIn(MISSING_BUDGETS, verdict.missing)

    def test_full_data_is_high(self) -> None:
        verdicts = assess_all(["SPENDING_OVERVIEW", "GET_BUDGET_STATUS", "FORECAST_SPEND"], _pack(full_context()))
        self.assertEqual({intent: item.level for intent, item in verdicts.items()}, {
            "SPENDING_OVERVIEW": "high",
            "GET_BUDGET_STATUS": "high",
            "FORECAST_SPEND": "high",
        })

    def test_budget_status_without_budgets(self) -> None:
        verdict = assess_answerability("GET_BUDGET_STATUS", _pack(ChatContext()))
        self.assertEqual(verdict.level, "none")
        self.assertEqual(verdict.missing, [MISSING_BUDGETS])

    def test_stale_transactions_downgrade(self) -> None:
        context = ChatContext.model_validate(
            {"transactions": [{"id": "t1", "amount": 20, "date": days_ago(10), "category": "Dining"}]}
        )
        verdict = assess_answerability("GET_SPENDING_BREAKDOWN", _pack(context))
        self.assertEqual(verdict.level, "medium")
        self.assertIn("stale", verdict.reason)

    def test_create_budget_never_blocks(self) -> None:
        self.assertEqual(assess_answerability("CREATE_BUDGET", _pack(ChatContext())).level, "high")

    def test_setup_actions_follow_missing_items(self) -> None:
        actions = setup_actions_for(["monthly income", "recurring expenses", "savings goals", "mystery"])
        self.assertEqual(
            [action.id for action in actions],
            ["OPEN_INCOME_FORM", "OPEN_RECURRING_FORM", "OPEN_GOAL_WIZARD", "OPEN_SETUP_WIZARD"],
        )

    def test_setup_actions_skip_clarification_and_duplicates(self) -> None:
        actions = setup_actions_for(["clarification", "budget data", "budget data"])
        self.assertEqual([action.id for action in actions], ["OPEN_BUDGET_WIZARD"])


if __name__ == "__main__":
    unittest.main()
