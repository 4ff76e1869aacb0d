"""
Calendar API Lambda Handler
Serves the per-day performance calendar for a sales rep.

Endpoint:
  GET /api/calendar?user_id=...&month=YYYY-MM   (month defaults to the current one)

Each day with a beat plan or a visit gets one entry:
  beat_names, planned_visits, planned_retailer_ids, completed_visits,
  productive_visits, revenue, productivity, is_holiday, is_leave

Planned counts come only from beat_plans.beat_data.retailer_ids.
"""

import calendar
import logging
from collections import defaultdict
from datetime import date, timedelta

from shared.config import COMPLETED_VISIT_STATUSES, PRODUCTIVE_VISIT_STATUS
from shared.db_utils import (
    get_db, fetchall, api_response, parse_date, request_method, request_path, rows_to_list, today,
)

logger = logging.getLogger()
logger.setLevel(logging.INFO)


# ─── Month range helper ────────────────────────────────────────────────────────

def _month_range(month_str):
    """Given '2026-02', returns (first_day, last_day) as dates."""
    year, mon = int(month_str[:4]), int(month_str[5:7])
    last = calendar.monthrange(year, mon)[1]
    return date(year, mon, 1), date(year, mon, last)


def _days(start: date, end: date):
    d = start
    while d <= end:
        yield d
        d += timedelta(days=1)


# ─── Lambda entry point ────────────────────────────────────────────────────────

def lambda_handler(event, context):
    method = request_method(event)
    path = request_path(event)
    logger.info(f"{method} {path}")

    if method == "OPTIONS":
        return api_response(200, {})

    query = event.get("queryStringParameters") or {}
    try:
        if "/api/calendar" in path:
            data = get_calendar(query["user_id"], query.get("month"))
        else:
            return api_response(404, {"error": f"Unknown path: {path}"})
    except KeyError as e:
        return api_response(400, {"error": f"Missing required parameter: {e}"})
    except ValueError as e:
        return api_response(400, {"error": str(e)})
    except Exception as e:
        logger.exception("Calendar API error")
        return api_response(500, {"error": str(e)})

    return api_response(200, data)


# ─── aggregation ──────────────────────────────────────────────────────────────

def aggregate_calendar(start: date, end: date, beat_plans, visits, orders,
                       holidays=(), leaves=()) -> dict:
    """
    Roll plan/visit/order rows up by day for [start, end].

    beat_plans: rows with plan_date, beat_name, beat_data.retailer_ids
    visits:     rows with id, planned_date, status
    orders:     rows with visit_id, total_amount
    holidays:   rows with date
    leaves:     approved rows with start_date, end_date (inclusive)
    """
    holiday_dates = {parse_date(h["date"]) for h in holidays}
    leave_dates = set()
    for lv in leaves:
        for d in _days(parse_date(lv["start_date"]), parse_date(lv["end_date"])):
            leave_dates.add(d)

    revenue_by_visit = defaultdict(float)
    for o in orders:
        revenue_by_visit[o["visit_id"]] += float(o.get("total_amount") or 0)

    days = {}

    def _day(d: date) -> dict:
        key = d.isoformat()
        if key not in days:
            days[key] = {
                "date": key,
                "beat_names": [],
                "planned_retailer_ids": [],
                "planned_visits": 0,
                "completed_visits": 0,
                "productive_visits": 0,
                "revenue": 0.0,
                "productivity": 0.0,
                "is_holiday": d in holiday_dates,
                "is_leave": d in leave_dates,
            }
        return days[key]

    for plan in beat_plans:
        d = parse_date(plan["plan_date"])
        if not start <= d <= end:
            continue
        entry = _day(d)
        if plan.get("beat_name") and plan["beat_name"] not in entry["beat_names"]:
            entry["beat_names"].append(plan["beat_name"])
        for rid in (plan.get("beat_data") or {}).get("retailer_ids") or []:
            if rid not in entry["planned_retailer_ids"]:
                entry["planned_retailer_ids"].append(rid)

    for v in visits:
        d = parse_date(v["planned_date"])
        if not start <= d <= end:
            continue
        entry = _day(d)
        status = (v.get("status") or "").lower()
        if status in COMPLETED_VISIT_STATUSES:
            entry["completed_visits"] += 1
        if status == PRODUCTIVE_VISIT_STATUS:
            entry["productive_visits"] += 1
        entry["revenue"] += revenue_by_visit.get(v["id"], 0.0)

    for entry in days.values():
        entry["planned_visits"] = len(entry["planned_retailer_ids"])
        if entry["completed_visits"]:
            entry["productivity"] = round(entry["productive_visits"] / entry["completed_visits"] * 100, 1)
        entry["revenue"] = round(entry["revenue"], 2)

    return dict(sorted(days.items()))


# ─── /api/calendar ────────────────────────────────────────────────────────────

def get_calendar(user_id: str, month: str = None) -> dict:
    start, end = _month_range(month or today().strftime("%Y-%m"))
    s, e = start.isoformat(), end.isoformat()

    conn = get_db()
    try:
        cur = conn.cursor()
        cur.execute(
            """
            SELECT plan_date, beat_name, beat_data FROM beat_plans
            WHERE user_id = %s AND plan_date >= %s AND plan_date <= %s
            """,
            (user_id, s, e))
        plans = rows_to_list(cur.fetchall())

        visits = rows_to_list(fetchall(conn,
            """
            SELECT id, planned_date, status FROM visits
            WHERE user_id = %s AND planned_date >= %s AND planned_date <= %s
            """,
            (user_id, s, e)))

        orders = []
        visit_ids = [v["id"] for v in visits]
        if visit_ids:
            orders = rows_to_list(fetchall(conn,
                "SELECT visit_id, total_amount FROM orders WHERE user_id = %s AND visit_id = ANY(%s)",
                (user_id, visit_ids)))

        holidays = rows_to_list(fetchall(conn,
            "SELECT date FROM holidays WHERE date >= %s AND date <= %s",
            (s, e)))

        leaves = rows_to_list(fetchall(conn,
            """
            SELECT start_date, end_date FROM leave_applications
            WHERE user_id = %s AND status = 'approved'
              AND start_date <= %s AND end_date >= %s
            """,
            (user_id, e, s)))
    finally:
        conn.close()

    days = aggregate_calendar(start, end, plans, visits, orders, holidays, leaves)
    totals = {
        "planned_visits": sum(d["planned_visits"] for d in days.values()),
        "completed_visits": sum(d["completed_visits"] for d in days.values()),
        "productive_visits": sum(d["productive_visits"] for d in days.values()),
        "revenue": round(sum(d["revenue"] for d in days.values()), 2),
    }
    logger.info(f"[CALENDAR] {user_id} {start:%Y-%m}: {len(days)} active day(s)")
    return {
        "success": True,
        "user_id": user_id,
        "month": start.strftime("%Y-%m"),
        "days": days,
        "totals": totals,
    }
