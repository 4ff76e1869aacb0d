"""Tests for shared helpers: connectivity probe, db_utils, beats_db SQL, plan validation report."""

import json
import unittest
import urllib.error
from datetime import date, datetime
from decimal import Decimal
from unittest.mock import patch

from shared import connectivity
from shared.beats_db import insert_beat_plan, update_beat
from shared.db_utils import api_response, parse_body, parse_date, request_method, request_path, to_json
from scripts.validate_beat_plans import check
from tests.fixtures import FakeConn, capture_stdout

PROBE = "http://backend.local/health"


class _Response:
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class TestConnectivity(unittest.TestCase):
    def test_force_offline_wins(self):
        self.assertIs(connectivity.is_online(PROBE, force_offline=True), False)

    def test_no_probe_url_means_online(self):
        self.assertIs(connectivity.is_online("", force_offline=False), True)

    def test_probe_success(self):
        with patch.object(connectivity.urllib.request, "urlopen", return_value=_Response()):
            self.assertIs(connectivity.is_online(PROBE, force_offline=False), True)

    def test_probe_http_error_counts_as_online(self):
        err = urllib.error.HTTPError(PROBE, 503, "Service Unavailable", None, None)
        with patch.object(connectivity.urllib.request, "urlopen", side_effect=err):
            self.assertIs(connectivity.is_online(PROBE, force_offline=False), True)

    def test_probe_unreachable(self):
        err = urllib.error.URLError("Name or service not known")
        with patch.object(connectivity.urllib.request, "urlopen", side_effect=err):
            self.assertIs(connectivity.is_online(PROBE, force_offline=False), False)


class TestDbUtils(unittest.TestCase):
    def test_api_response_serializes_dates_and_decimals(self):
        resp = api_response(200, {"d": date(2024, 1, 2), "amount": Decimal("10.5"), "ids": {"b"}})
        self.assertEqual(resp["statusCode"], 200)
        self.assertEqual(json.loads(resp["body"]), {"d": "2024-01-02", "amount": 10.5, "ids": ["b"]})

    def test_to_json_rejects_unknown_types(self):
        with self.assertRaises(TypeError):
            to_json({"x": object()})

    def test_parse_body_variants(self):
        self.assertEqual(parse_body({}), {})
        self.assertEqual(parse_body({"body": '{"a": 1}'}), {"a": 1})
        self.assertEqual(parse_body({"body": {"a": 2}}), {"a": 2})

    def test_request_method_and_path_for_function_urls(self):
        event = {"rawPath": "/api/sync", "requestContext": {"http": {"method": "POST"}}}
        self.assertEqual(request_method(event), "POST")
        self.assertEqual(request_path(event), "/api/sync")

    def test_parse_date(self):
        self.assertEqual(parse_date("2024-01-02T10:00:00"), date(2024, 1, 2))
        self.assertEqual(parse_date(datetime(2024, 1, 2, 23, 59)), date(2024, 1, 2))


class TestBeatsDb(unittest.TestCase):
    def test_insert_beat_plan_reports_conflict(self):
        row = {"user_id": "u1", "beat_id": "b1", "beat_name": "North",
               "plan_date": "2024-01-01", "beat_data": {"retailer_ids": ["r1"]}}
        self.assertIs(insert_beat_plan(FakeConn(), row), True)
        self.assertIs(insert_beat_plan(FakeConn(lambda sql, args: 0), row), False)

    def test_update_beat_ignores_unknown_columns(self):
        conn = FakeConn()
        self.assertEqual(update_beat(conn, "b1", {"id": "b2", "created_by": "x"}), 0)
        self.assertEqual(conn.executed, [])

        update_beat(conn, "b1", {"beat_name": "South", "recurrence": {"frequency": "daily"}, "created_by": "x"})
        sql, args = conn.executed[0]
        self.assertEqual(sql, "UPDATE beats SET beat_name = %s, recurrence = %s::jsonb WHERE id = %s")
        self.assertEqual(args, ["South", '{"frequency": "daily"}', "b1"])


class TestValidateBeatPlans(unittest.TestCase):
    def test_report_counts_errors(self):
        beats = {
            "b1": {"id": "b1", "beat_name": "North",
                   "recurrence": {"frequency": "weekly", "weekdays": [1], "until": "permanent"}},
        }
        plans = [
            {"beat_id": "b1", "plan_date": date(2024, 1, 1), "beat_data": {"retailer_ids": ["r1"]}},
            {"beat_id": "b1", "plan_date": date(2024, 1, 1), "beat_data": {"retailer_ids": ["r1"]}},  # duplicate
            {"beat_id": "b1", "plan_date": date(2024, 1, 2), "beat_data": {"retailer_ids": ["r1"]}},  # Tuesday
            {"beat_id": "gone", "plan_date": date(2024, 1, 8), "beat_data": {}},  # orphan, no retailers
        ]

        with capture_stdout() as out:
            errors = check(beats, plans)

        self.assertEqual(errors, 4)
        self.assertIn("off-rule", out.getvalue())

    def test_report_clean(self):
        beats = {"b1": {"id": "b1", "beat_name": "North",
                        "recurrence": {"frequency": "custom", "interval_days": 2, "until": "permanent"}}}
        plans = [{"beat_id": "b1", "plan_date": f"2024-01-0{d}", "beat_data": {"retailer_ids": ["r1"]}}
                 for d in (1, 3, 5)]
        with capture_stdout():
            self.assertEqual(check(beats, plans), 0)

    def test_plans_kept_from_previous_rule_are_valid(self):
        monday = {"frequency": "weekly", "weekdays": [1], "interval_days": None,
                  "until": "2024-01-31", "start_date": "2024-01-01"}
        tuesday = {"frequency": "weekly", "weekdays": [2], "interval_days": None,
                   "until": "2024-01-31", "start_date": "2024-01-10"}
        beats = {"b1": {"id": "b1", "beat_name": "North", "recurrence": tuesday}}
        plans = [
            {"beat_id": "b1", "plan_date": date(2024, 1, 1), "beat_data": {"retailer_ids": ["r1"], "schedule": monday}},
            {"beat_id": "b1", "plan_date": date(2024, 1, 8), "beat_data": {"retailer_ids": ["r1"], "schedule": monday}},
            {"beat_id": "b1", "plan_date": date(2024, 1, 16), "beat_data": {"retailer_ids": ["r1"], "schedule": tuesday}},
        ]
        with capture_stdout():
            self.assertEqual(check(beats, plans), 0)

        # a Monday plan claiming the Tuesday rule is still caught
        plans.append({"beat_id": "b1", "plan_date": date(2024, 1, 15),
                      "beat_data": {"retailer_ids": ["r1"], "schedule": tuesday}})
        with capture_stdout():
            self.assertEqual(check(beats, plans), 1)

    def test_custom_interval_counts_from_stored_start(self):
        beats = {"b1": {"id": "b1", "beat_name": "North",
                        "recurrence": {"frequency": "custom", "interval_days": 7,
                                       "until": "permanent", "start_date": "2024-01-01"}}}
        # first surviving plan is out of phase with the series that started on Jan 1
        plans = [{"beat_id": "b1", "plan_date": d, "beat_data": {"retailer_ids": ["r1"]}}
                 for d in ("2024-01-03", "2024-01-08", "2024-01-15")]
        with capture_stdout() as out:
            self.assertEqual(check(beats, plans), 1)
        self.assertIn("first 2024-01-03", out.getvalue())


if __name__ == "__main__":
    unittest.main()
