"""Tests for shared/recurrence.py rule evaluation and expansion."""

import unittest
from datetime import date, datetime

from shared.recurrence import (
    BeatPlan, Frequency, InvalidRuleError, RecurrenceRule,
    describe, expand, matching_dates, resolve_until, rule_from_dict, rule_to_dict, weekday_index,
)

RETAILERS = ["r1", "r2"]


def _expand(rule, anchor):
    return expand(rule, anchor, RETAILERS, "beat-1", "North Route")


def _dates(plans):
    return [p.plan_date for p in plans]


class TestFrequencies(unittest.TestCase):
    def test_daily_includes_both_ends(self):
        rule = RecurrenceRule(Frequency.DAILY, until=date(2024, 1, 5))
        self.assertEqual(_dates(_expand(rule, date(2024, 1, 1))),
                         [date(2024, 1, d) for d in range(1, 6)])

    def test_weekly_mondays_and_wednesdays(self):
        rule = RecurrenceRule(Frequency.WEEKLY, until=date(2024, 1, 14), weekdays=frozenset({1, 3}))
        self.assertEqual(_dates(_expand(rule, date(2024, 1, 1))),
                         [date(2024, 1, 1), date(2024, 1, 3), date(2024, 1, 8), date(2024, 1, 10)])

    def test_custom_interval_counts_from_anchor(self):
        rule = RecurrenceRule(Frequency.CUSTOM, until=date(2024, 1, 10), interval_days=3)
        self.assertEqual(_dates(_expand(rule, date(2024, 1, 1))),
                         [date(2024, 1, 1), date(2024, 1, 4), date(2024, 1, 7), date(2024, 1, 10)])

    def test_monthly_behaves_like_weekly(self):
        until = date(2024, 3, 31)
        monthly = RecurrenceRule(Frequency.MONTHLY, until=until, weekdays=frozenset({1}))
        weekly = RecurrenceRule(Frequency.WEEKLY, until=until, weekdays=frozenset({1}))
        self.assertEqual(_expand(monthly, date(2024, 1, 1)), _expand(weekly, date(2024, 1, 1)))
        # every Monday, not only the first Monday of each month
        self.assertEqual(len(_expand(monthly, date(2024, 1, 1))), 13)

    def test_sunday_is_weekday_zero(self):
        self.assertEqual(weekday_index(date(2024, 1, 7)), 0)
        self.assertEqual(weekday_index(date(2024, 1, 6)), 6)
        rule = RecurrenceRule(Frequency.WEEKLY, until=date(2024, 1, 14), weekdays=frozenset({0}))
        self.assertEqual(_dates(_expand(rule, date(2024, 1, 1))), [date(2024, 1, 7), date(2024, 1, 14)])


class TestExpandInvariants(unittest.TestCase):
    def test_zero_length_range_without_match_is_empty(self):
        # 2024-01-01 is a Monday
        rule = RecurrenceRule(Frequency.WEEKLY, until=date(2024, 1, 1), weekdays=frozenset({2}))
        self.assertEqual(_expand(rule, date(2024, 1, 1)), [])

    def test_zero_length_range_with_match(self):
        rule = RecurrenceRule(Frequency.DAILY, until=date(2024, 1, 1))
        self.assertEqual(_dates(_expand(rule, date(2024, 1, 1))), [date(2024, 1, 1)])

    def test_until_before_anchor_raises(self):
        rule = RecurrenceRule(Frequency.DAILY, until=date(2023, 12, 31))
        with self.assertRaises(InvalidRuleError):
            _expand(rule, date(2024, 1, 1))

    def test_unresolved_permanent_rule_raises(self):
        rule = RecurrenceRule(Frequency.DAILY, until="permanent")
        with self.assertRaises(InvalidRuleError):
            list(matching_dates(rule, date(2024, 1, 1)))

    def test_expand_is_idempotent(self):
        rule = RecurrenceRule(Frequency.CUSTOM, until=date(2024, 6, 30), interval_days=5)
        self.assertEqual(_expand(rule, date(2024, 1, 1)), _expand(rule, date(2024, 1, 1)))

    def test_plans_unique_sorted_and_in_range(self):
        end = date(2024, 12, 31)
        rules = [
            RecurrenceRule(Frequency.DAILY, until=end),
            RecurrenceRule(Frequency.WEEKLY, until=end, weekdays=frozenset({0, 2, 4, 6})),
            RecurrenceRule(Frequency.MONTHLY, until=end, weekdays=frozenset({5})),
            RecurrenceRule(Frequency.CUSTOM, until=end, interval_days=7),
        ]
        anchor = date(2024, 2, 15)
        for rule in rules:
            with self.subTest(frequency=rule.frequency):
                plans = _expand(rule, anchor)
                dates = _dates(plans)
                self.assertEqual(dates, sorted(dates))
                self.assertEqual(len({(p.beat_id, p.plan_date) for p in plans}), len(plans))
                self.assertTrue(all(anchor <= d <= end for d in dates))

    def test_datetime_anchor_is_normalized(self):
        rule = RecurrenceRule(Frequency.DAILY, until=datetime(2024, 1, 3, 18, 30))
        plans = _expand(rule, datetime(2024, 1, 1, 9, 15))
        self.assertEqual(_dates(plans), [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)])

    def test_retailer_snapshot_is_copied_in_order(self):
        ids = ["r3", "r1", "r2"]
        rule = RecurrenceRule(Frequency.DAILY, until=date(2024, 1, 2))
        plans = expand(rule, date(2024, 1, 1), ids, "b", "Beat")
        ids.append("r9")
        self.assertTrue(all(p.retailer_ids == ("r3", "r1", "r2") for p in plans))

    def test_plan_row_shape(self):
        plan = BeatPlan("b1", "North", date(2024, 1, 5), ("r1", "r2"))
        self.assertEqual(plan.to_row("u1"), {
            "user_id": "u1",
            "beat_id": "b1",
            "beat_name": "North",
            "plan_date": "2024-01-05",
            "beat_data": {"retailer_ids": ["r1", "r2"]},
        })


class TestRuleConstruction(unittest.TestCase):
    def test_permanent_resolves_to_one_year_horizon(self):
        rule = rule_from_dict({"frequency": "daily", "until": "permanent"})
        self.assertTrue(rule.is_permanent)
        resolved = resolve_until(rule, date(2024, 1, 1))
        self.assertEqual(resolved.until, date(2024, 12, 31))
        self.assertEqual(len(_expand(resolved, date(2024, 1, 1))), 366)

    def test_missing_until_means_permanent(self):
        self.assertTrue(rule_from_dict({"frequency": "daily"}).is_permanent)

    def test_rule_dict_round_trip(self):
        rule = rule_from_dict({"frequency": "weekly", "weekdays": [3, 1], "until": "2024-03-31"})
        self.assertEqual(rule.until, date(2024, 3, 31))
        self.assertEqual(rule_to_dict(rule), {"frequency": "weekly", "weekdays": [1, 3],
                                              "interval_days": None, "until": "2024-03-31"})
        self.assertEqual(rule_from_dict(rule_to_dict(rule)), rule)

    def test_invalid_rules_rejected(self):
        cases = [
            {"frequency": "weekly", "weekdays": []},
            {"frequency": "monthly"},
            {"frequency": "weekly", "weekdays": [7]},
            {"frequency": "weekly", "weekdays": ["mon"]},
            {"frequency": "custom"},
            {"frequency": "custom", "interval_days": 0},
            {"frequency": "custom", "interval_days": "x"},
            {"frequency": "yearly"},
            {"frequency": "daily", "until": "not-a-date"},
            {"frequency": "custom", "interval_days": 2.7},
            {"frequency": "custom", "interval_days": "2.7"},
            {"frequency": "custom", "interval_days": True},
            {"frequency": "weekly", "weekdays": [1.5]},
            {"frequency": "weekly", "weekdays": "13"},
            {"frequency": "weekly", "weekdays": 3},
            ["daily"],
            "daily",
            None,
        ]
        for data in cases:
            with self.subTest(data=data):
                with self.assertRaises(InvalidRuleError):
                    rule_from_dict(data)

    def test_whole_float_interval_accepted(self):
        self.assertEqual(rule_from_dict({"frequency": "custom", "interval_days": 3.0}).interval_days, 3)
        self.assertEqual(rule_from_dict({"frequency": "custom", "interval_days": "3"}).interval_days, 3)

    def test_start_date_key_is_ignored(self):
        rule = rule_from_dict({"frequency": "daily", "until": "2024-01-31", "start_date": "2024-01-01"})
        self.assertEqual(rule_to_dict(rule), {"frequency": "daily", "weekdays": [],
                                              "interval_days": None, "until": "2024-01-31"})

    def test_expand_records_schedule_on_plans(self):
        rule = rule_from_dict({"frequency": "custom", "interval_days": 7, "until": "2024-01-15"})
        plans = _expand(rule, date(2024, 1, 1))
        self.assertEqual(plans[0].schedule, {"frequency": "custom", "weekdays": [], "interval_days": 7,
                                             "until": "2024-01-15", "start_date": "2024-01-01"})
        self.assertEqual(plans[-1].to_row()["beat_data"]["schedule"]["start_date"], "2024-01-01")

    def test_missing_frequency_is_key_error(self):
        with self.assertRaises(KeyError):
            rule_from_dict({"weekdays": [1]})

    def test_describe(self):
        self.assertEqual(
            describe(rule_from_dict({"frequency": "weekly", "weekdays": [3, 1], "until": "2024-03-31"})),
            "Weekly on Mon, Wed until 2024-03-31")
        self.assertEqual(describe(rule_from_dict({"frequency": "custom", "interval_days": 2})),
                         "Every 2 day(s) permanently")
        self.assertEqual(describe(rule_from_dict({"frequency": "daily", "until": "2024-01-31"})),
                         "Daily until 2024-01-31")


if __name__ == "__main__":
    unittest.main()
