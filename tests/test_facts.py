from __future__ import annotations

import copy
import datetime as dt
import unittest
from typing import Any

from pydantic import ValidationError

from fincoach.contracts import ChatContext
from fincoach.errors import FactPackValidationError
from fincoach.facts import assert_fact_pack_valid, build_fact_pack, validate_fact_pack
from fincoach.facts.calculator import (
    budget_status,
    days_until,
    fact_pack_hash,
    goal_progress_pct,
    goal_status,
    monthly_amount,
    round_half_up,
    spending_trend,
    utilization_pct,
)
from tests.fixtures import NOW, days_ago, full_context, groceries_context


def _leaf_paths(node: Any, prefix: tuple = ()):
    if isinstance(node, dict):
        for key, value in node.items():
            yield from _leaf_paths(value, prefix + (key,))
    elif isinstance(node, list):
        for index, value in enumerate(node):
            yield from _leaf_paths(value, prefix + (index,))
    else:
        yield prefix


def _mutate_leaf(payload: Any, path: tuple) -> None:
    parent = payload
    for part in path[:-1]:
        parent = parent[part]
    value = parent[path[-1]]
    if isinstance(value, bool):
        parent[path[-1]] = not value
    elif isinstance(value, (int, float)):
        parent[path[-1]] = value + 1
    elif isinstance(value, str):
        parent[path[-1]] = value + "x"
    else:
        parent[path[-1]] = "changed"


class CalculatorTests(unittest.TestCase):
    def test_round_half_up(self) -> None:
        self.assertEqual(round_half_up(2.5), 3)
        self.assertEqual(round_half_up(49.4), 49)

    def test_utilization_is_clamped_and_zero_for_empty_limit(self) -> None:
        self.assertEqual(utilization_pct(200, 400), 50)
        self.assertEqual(utilization_pct(600, 400), 100)
        self.assertEqual(utilization_pct(50, 0), 0)

    def test_budget_status_thresholds(self) -> None:
        self.assertEqual(budget_status(94), "under")
        self.assertEqual(budget_status(95), "at_limit")
        self.assertEqual(budget_status(100), "over")

    def test_goal_status_without_deadline(self) -> None:
        self.assertEqual(goal_status(40, None), "on_track")
        self.assertEqual(goal_status(100, None), "ahead")

    def test_goal_status_past_deadline(self) -> None:
        self.assertEqual(goal_status(60, 0), "behind")
        self.assertEqual(goal_status(100, -3), "ahead")

    def test_goal_progress_and_days_until(self) -> None:
        self.assertEqual(goal_progress_pct(1500, 6000), 25)
        self.assertEqual(days_until(dt.date(2024, 6, 20), NOW), 5)

    def test_monthly_amount_by_frequency(self) -> None:
        self.assertEqual(monthly_amount(30, "weekly"), 130.0)
        self.assertEqual(monthly_amount(120, "yearly"), 10.0)
        self.assertEqual(monthly_amount(15.99, "monthly"), 15.99)

    def test_spending_trend_band(self) -> None:
        self.assertEqual(spending_trend(104, 100), "flat")
        self.assertEqual(spending_trend(120, 100), "up")
        self.assertEqual(spending_trend(80, 100), "down")
        self.assertEqual(spending_trend(0, 0), "unknown")

    def test_hash_ignores_metadata_and_key_order(self) -> None:
        first = fact_pack_hash({"a": 1, "b": [1, 2], "metadata": {"generated_at": "x"}})
        second = fact_pack_hash({"b": [1, 2], "a": 1, "metadata": {"generated_at": "y"}})
        self.assertEqual(first, second)
        self.assertEqual(len(first), 64)

    def test_hash_changes_when_any_single_leaf_changes(self) -> None:
        payload = build_fact_pack(full_context(), now=NOW).hashable_payload()
        baseline = fact_pack_hash(payload)
        paths = list(_leaf_paths(payload))
        self.assertGreater(len(paths), 20)
        for path in paths:
            with self.subTest(path=".".join(str(part) for part in path)):
                mutated = copy.deepcopy(payload)
                _mutate_leaf(mutated, path)
                self.assertNotEqual(fact_pack_hash(mutated), baseline)

    def test_built_pack_hash_tracks_input_changes(self) -> None:
        base = build_fact_pack(groceries_context(), now=NOW)
        changed = build_fact_pack(
            groceries_context(budgets=[{"id": "b1", "name": "Groceries", "category": "Groceries", "amount": 400, "spent": 201}]),
            now=NOW,
        )
        self.assertNotEqual(base.metadata.hash, changed.metadata.hash)


class FactPackBuilderTests(unittest.TestCase):
    def test_budget_uses_recorded_spent(self) -> None:
        pack = build_fact_pack(groceries_context(), now=NOW)
        budget = pack.budgets[0]
        self.assertEqual(budget.spent, 200)
        self.assertEqual(budget.remaining, 200)
        self.assertEqual(budget.utilization, 50)
        self.assertEqual(budget.status, "under")

    def test_budget_spent_summed_from_window_transactions(self) -> None:
        pack = build_fact_pack(full_context(), now=NOW)
        groceries = next(item for item in pack.budgets if item.id == "b1")
        dining = next(item for item in pack.budgets if item.id == "b2")
        # t5 is outside the 30 day window.
        self.assertEqual(groceries.spent, 200)
        self.assertEqual(dining.spent, 110)
        self.assertEqual(dining.status, "over")
        self.assertEqual(dining.remaining, -10)

    def test_patterns_and_income(self) -> None:
        pack = build_fact_pack(full_context(), now=NOW)
        patterns = pack.spending_patterns
        self.assertEqual(patterns.total_spent, 310)
        self.assertEqual(patterns.total_income, 4000)
        self.assertEqual(patterns.average_daily, 10.33)
        self.assertEqual(patterns.top_categories[0].category, "Groceries")
        self.assertEqual(patterns.previous_total_spent, 60)
        self.assertEqual(patterns.trend, "up")

    def test_goals_and_recurring(self) -> None:
        pack = build_fact_pack(full_context(), now=NOW)
        vacation = next(item for item in pack.goals if item.id == "g2")
        self.assertEqual(vacation.progress, 95)
        self.assertEqual(vacation.remaining, 100)
        self.assertEqual(vacation.days_remaining, 20)
        gym = next(item for item in pack.recurring if item.id == "r2")
        self.assertEqual(gym.monthly_amount, 130.0)

    def test_section_counts(self) -> None:
        counts = build_fact_pack(full_context(), now=NOW).section_counts()
        self.assertEqual(counts["budgets"], 2)
        self.assertEqual(counts["goals"], 2)
        self.assertEqual(counts["recurring"], 2)
        self.assertEqual(counts["accounts"], 2)
        self.assertEqual(counts["income"], 1)
        self.assertGreater(counts["transactions"], 0)

    def test_same_inputs_give_same_hash(self) -> None:
        first = build_fact_pack(full_context(), now=NOW)
        second = build_fact_pack(full_context(), now=NOW)
        self.assertEqual(first.metadata.hash, second.metadata.hash)
        self.assertEqual(first.hashable_payload(), second.hashable_payload())

    def test_stale_when_newest_transaction_is_old(self) -> None:
        context = ChatContext.model_validate(
            {"transactions": [{"id": "t1", "amount": 20, "date": days_ago(12), "category": "Dining"}]}
        )
        self.assertEqual(build_fact_pack(context, now=NOW).metadata.freshness, "stale")

    def test_unknown_timezone_falls_back_to_utc(self) -> None:
        pack = build_fact_pack(groceries_context(timezone="Mars/Olympus"), now=NOW)
        self.assertEqual(pack.time_window.timezone, "UTC")

    def test_built_pack_validates(self) -> None:
        pack = build_fact_pack(full_context(), now=NOW)
        self.assertEqual(validate_fact_pack(pack), [])
        self.assertIs(assert_fact_pack_valid(pack), pack)


class FactPackValidationTests(unittest.TestCase):
    def test_tampered_budget_is_reported(self) -> None:
        pack = build_fact_pack(groceries_context(), now=NOW)
        budget = pack.budgets[0].model_copy(update={"remaining": 150.0})
        tampered = pack.model_copy(update={"budgets": [budget]})
        paths = [item.path for item in validate_fact_pack(tampered)]
        self.assertIn("budgets[0].remaining", paths)
        self.assertIn("metadata.hash", paths)

    def test_fact_pack_is_immutable(self) -> None:
        pack = build_fact_pack(groceries_context(), now=NOW)
        with self.assertRaises(ValidationError):
            pack.budgets[0].spent = 0.0
        with self.assertRaises(ValidationError):
            pack.metadata.hash = "forged"

    def test_assert_raises_with_mismatches(self) -> None:
        pack = build_fact_pack(groceries_context(), now=NOW)
        budget = pack.budgets[0].model_copy(update={"utilization": 10})
        tampered = pack.model_copy(update={"budgets": [budget]})
        with self.assertRaises(FactPackValidationError) as ctx:
            assert_fact_pack_valid(tampered)
        self.assertTrue(any(item.path == "budgets[0].utilization" for item in ctx.exception.mismatches))


if __name__ == "__main__":
    unittest.main()
