"""
Beat Actions Lambda Handler (PostgreSQL version, offline-aware)
Handles: create_beat, update_beat, set_beat_active, get_beats,
         preview_beat_plans, get_beat_plans, search_retailers

Routes (API Gateway proxy / Function URL):
  POST  /api/beats                      — create beat + materialize plans
  PATCH /api/beats/{id}                 — rename / change retailers / change rule
  POST  /api/beats/{id}/activate        — reactivate
  POST  /api/beats/{id}/deactivate      — deactivate
  GET   /api/beats?user_id=             — active beats
  POST  /api/beats/preview              — evaluate a rule without saving
  GET   /api/beat-plans?user_id=&start=&end=
  GET   /api/retailers/search?q=&user_id=
"""
import json
import logging
import re
import threading
import uuid

from rapidfuzz import fuzz, process as fuzz_process, utils as fuzz_utils

from shared.config import OFFLINE_DB_PATH, PERMANENT_HORIZON_DAYS
from shared.connectivity import is_online
from shared.db_utils import (
    get_db, fetchone, fetchall, api_response, parse_body, parse_date,
    request_method, request_path, rows_to_list, row_to_dict, today, now_iso,
)
from shared.beats_db import insert_beat, update_beat as update_beat_row
from shared.offline_queue import OfflineQueue, CREATE_BEAT, UPDATE_BEAT, STORE_BEATS, STORE_BEAT_PLANS
from shared.recurrence import (
    InvalidRuleError, describe, expand, resolve_until, rule_from_dict, rule_to_dict,
)
from beat_actions.materializer import persist_plans

logger = logging.getLogger()
logger.setLevel(logging.INFO)

FUZZY_MATCH_THRESHOLD = 70

_queue = None
_queue_lock = threading.Lock()


def get_queue() -> OfflineQueue:
    global _queue
    with _queue_lock:
        if _queue is None:
            _queue = OfflineQueue(OFFLINE_DB_PATH)
    return _queue


_BEAT_ID_ROUTE = re.compile(r"/api/beats/([^/]+?)(/activate|/deactivate)?/?$")


def lambda_handler(event, context):
    method = request_method(event)
    path = request_path(event)
    logger.info(f"{method} {path}")

    if method == "OPTIONS":
        return api_response(200, {})

    query = event.get("queryStringParameters") or {}

    try:
        body = parse_body(event)
        if path.endswith("/api/beats/preview") and method == "POST":
            data = preview_beat_plans(body)
        elif path.endswith("/api/beats") and method == "POST":
            data = create_beat(body)
        elif path.endswith("/api/beats") and method == "GET":
            data = get_beats(query["user_id"])
        elif "/api/beat-plans" in path:
            data = get_beat_plans(query["user_id"], query["start"], query["end"])
        elif "/api/retailers/search" in path:
            data = search_retailers(query.get("q", ""), query.get("user_id"), int(query.get("limit", 10)))
        elif _BEAT_ID_ROUTE.search(path):
            beat_id, action = _BEAT_ID_ROUTE.search(path).groups()
            if action == "/activate" and method == "POST":
                data = set_beat_active(beat_id, True)
            elif action == "/deactivate" and method == "POST":
                data = set_beat_active(beat_id, False)
            elif action is None and method == "PATCH":
                data = update_beat(beat_id, body)
            else:
                return api_response(405, {"error": f"{method} not allowed on {path}"})
        else:
            return api_response(404, {"error": f"Unknown path: {path}"})
    except KeyError as e:
        return api_response(400, {"error": f"Missing required parameter: {e}"})
    except json.JSONDecodeError as e:
        return api_response(400, {"error": f"Invalid JSON body: {e}"})
    except (InvalidRuleError, ValueError) as e:
        return api_response(400, {"error": str(e)})
    except LookupError as e:
        return api_response(404, {"error": str(e)})
    except Exception as e:
        logger.exception(f"Error in {method} {path}")
        return api_response(500, {"error": str(e)})

    status = 200 if data.get("success", True) else 500
    return api_response(status, data)


# ─── validation ───────────────────────────────────────────────────────────────

def _clean_retailer_ids(raw) -> list:
    ids = []
    for rid in raw or []:
        rid = str(rid).strip()
        if rid and rid not in ids:
            ids.append(rid)
    return ids


def _validate_beat_input(beat_name: str, retailer_ids: list):
    if not (beat_name or "").strip():
        raise ValueError("Beat Name Required: please enter a name for the beat")
    if not retailer_ids:
        raise ValueError("No Retailers Selected: please select at least one retailer for the beat")


def _check_window(rule, anchor):
    end = resolve_until(rule, anchor, PERMANENT_HORIZON_DAYS).until
    if end < anchor:
        raise InvalidRuleError(f"End date {end} is before start date {anchor}")


def _stored_recurrence(rule, anchor) -> dict:
    """Rule dict as kept on the beat row, with the anchor its series counts from."""
    return {**rule_to_dict(rule), "start_date": anchor.isoformat()}


def _materialize(beat_id, beat_name, recurrence, retailer_ids, user_id, anchor, online, not_before=None):
    """Expand from anchor; when not_before is given, only dates on or after it are persisted."""
    rule = resolve_until(rule_from_dict(recurrence), anchor, PERMANENT_HORIZON_DAYS)
    plans = expand(rule, anchor, retailer_ids, beat_id, beat_name)
    not_before = not_before or anchor
    plans = [p for p in plans if p.plan_date >= not_before]
    if not plans:
        logger.warning(f"[PLAN] Rule {describe(rule)!r} matched no dates from {not_before} for beat {beat_id}")
    result = persist_plans(plans, user_id, online=online, queue=get_queue(),
                           conn_factory=get_db, today=not_before)
    result["plans_generated"] = len(plans)
    return result


# ─── create_beat ──────────────────────────────────────────────────────────────

def create_beat(params: dict) -> dict:
    """
    Create a beat and materialize its plans from today.
    Expects: beat_name, retailer_ids, recurrence {frequency, weekdays, interval_days, until}, user_id
    """
    beat_name = (params.get("beat_name") or "").strip()
    retailer_ids = _clean_retailer_ids(params.get("retailer_ids"))
    _validate_beat_input(beat_name, retailer_ids)

    anchor = today()
    recurrence = params["recurrence"]
    # Validate before anything is written
    rule = rule_from_dict(recurrence)
    _check_window(rule, anchor)

    ts = now_iso()
    beat = {
        "id": str(uuid.uuid4()),
        "beat_name": beat_name,
        "created_by": params.get("user_id"),
        "is_active": True,
        "retailer_ids": retailer_ids,
        "recurrence": _stored_recurrence(rule, anchor),
        "created_at": ts,
        "updated_at": ts,
    }

    online = is_online()
    queue = get_queue()
    if online:
        conn = get_db()
        try:
            insert_beat(conn, beat)
            conn.commit()
        except Exception:
            logger.exception("Error creating beat")
            conn.rollback()
            raise
        finally:
            conn.close()
    else:
        queue.enqueue(CREATE_BEAT, beat)
    queue.cache_put(STORE_BEATS, beat["id"], beat)

    plan_result = _materialize(beat["id"], beat_name, beat["recurrence"], retailer_ids,
                               beat["created_by"], anchor, online)

    if not online:
        message = f'"{beat_name}" saved offline — it will be created when you are back online.'
    elif plan_result["success"]:
        message = f'"{beat_name}" created with {len(retailer_ids)} retailers and {plan_result["inserted"]} plan(s).'
    else:
        message = f'"{beat_name}" created, but saving plans stopped at {plan_result["failed_plan_date"]}.'

    return {
        "success": plan_result["success"],
        "offline": not online,
        "beat": beat,
        "schedule": describe(rule),
        "plans": plan_result,
        "message": message,
    }


# ─── update_beat ──────────────────────────────────────────────────────────────

def _load_beat(beat_id: str, online: bool) -> dict:
    if online:
        conn = get_db()
        try:
            row = fetchone(conn,
                """
                SELECT id, beat_name, created_by, is_active, retailer_ids, recurrence,
                       created_at, updated_at
                FROM beats WHERE id = %s
                """,
                (beat_id,))
        finally:
            conn.close()
        beat = row_to_dict(row)
    else:
        beat = get_queue().cache_get(STORE_BEATS, beat_id)
    if not beat:
        where = "database" if online else "offline storage"
        raise LookupError(f"Beat not found in {where}: {beat_id}")
    return beat


def _apply_update(beat_id: str, updates: dict, online: bool) -> None:
    if online:
        conn = get_db()
        try:
            update_beat_row(conn, beat_id, updates)
            conn.commit()
        except Exception:
            logger.exception(f"Error updating beat {beat_id}")
            conn.rollback()
            raise
        finally:
            conn.close()
    else:
        get_queue().enqueue(UPDATE_BEAT, {"id": beat_id, "updates": updates})


def update_beat(beat_id: str, params: dict) -> dict:
    """
    Rename a beat, change its retailers and/or its recurrence rule.
    A new rule starts a new series anchored today. A retailer-only change
    keeps the existing series and re-expands it from its stored start date.
    Either way only dates from today on are written, and dates that already
    have a plan keep it.
    """
    online = is_online()
    beat = _load_beat(beat_id, online)
    current = today()

    updates = {}
    if "beat_name" in params:
        updates["beat_name"] = (params["beat_name"] or "").strip()
    if "retailer_ids" in params:
        updates["retailer_ids"] = _clean_retailer_ids(params["retailer_ids"])
    if "recurrence" in params:
        rule = rule_from_dict(params["recurrence"])
        _check_window(rule, current)
        updates["recurrence"] = _stored_recurrence(rule, current)

    merged = {**beat, **updates}
    _validate_beat_input(merged["beat_name"], merged["retailer_ids"])
    if not updates:
        return {"success": True, "offline": not online, "beat": beat, "message": "Nothing to update"}

    updates["updated_at"] = now_iso()
    merged["updated_at"] = updates["updated_at"]
    _apply_update(beat_id, updates, online)
    get_queue().cache_put(STORE_BEATS, beat_id, merged)

    result = {"success": True, "offline": not online, "beat": merged}
    if ("recurrence" in updates or "retailer_ids" in updates) and merged.get("recurrence"):
        recurrence = merged["recurrence"]
        # Beats stored before start_date was recorded fall back to today
        anchor = parse_date(recurrence["start_date"]) if recurrence.get("start_date") else current
        plan_result = _materialize(beat_id, merged["beat_name"], recurrence, merged["retailer_ids"],
                                   merged.get("created_by"), anchor, online, not_before=current)
        result["plans"] = plan_result
        result["success"] = plan_result["success"]

    result["message"] = ("Changes will sync when you're back online." if not online
                         else "Beat has been updated successfully.")
    return result


# ─── set_beat_active ──────────────────────────────────────────────────────────

def set_beat_active(beat_id: str, active: bool) -> dict:
    online = is_online()
    beat = _load_beat(beat_id, online)
    updates = {"is_active": active, "updated_at": now_iso()}
    _apply_update(beat_id, updates, online)
    merged = {**beat, **updates}
    get_queue().cache_put(STORE_BEATS, beat_id, merged)
    state = "activated" if active else "deactivated"
    logger.info(f"Beat {beat_id} {state}{' (queued)' if not online else ''}")
    return {"success": True, "offline": not online, "beat": merged,
            "message": f"Beat {state}."}


# ─── get_beats ────────────────────────────────────────────────────────────────

def _cached_beats(user_id: str) -> list:
    return [
        b for b in get_queue().cache_all(STORE_BEATS)
        if b.get("is_active", True) and (not user_id or b.get("created_by") == user_id)
    ]


def get_beats(user_id: str) -> dict:
    """Active beats for a user. Served from the local cache when offline or on DB error."""
    if not is_online():
        beats = _cached_beats(user_id)
        return {"success": True, "offline": True, "beats": sorted(beats, key=lambda b: b["beat_name"])}

    try:
        conn = get_db()
        try:
            rows = rows_to_list(fetchall(conn,
                """
                SELECT id, beat_name, created_by, is_active, retailer_ids, recurrence,
                       created_at, updated_at
                FROM beats
                WHERE created_by = %s AND is_active = TRUE
                ORDER BY beat_name
                """,
                (user_id,)))
        finally:
            conn.close()
    except Exception:
        logger.exception("Error fetching beats — falling back to offline cache")
        return {"success": True, "offline": True, "beats": _cached_beats(user_id)}

    queue = get_queue()
    for b in rows:
        queue.cache_put(STORE_BEATS, b["id"], b)
    return {"success": True, "offline": False, "beats": rows}


# ─── preview_beat_plans ───────────────────────────────────────────────────────

def preview_beat_plans(params: dict) -> dict:
    """Evaluate a rule for the beat-creation screen without persisting anything."""
    anchor = parse_date(params["start_date"]) if params.get("start_date") else today()
    rule = resolve_until(rule_from_dict(params["recurrence"]), anchor, PERMANENT_HORIZON_DAYS)
    plans = expand(rule, anchor, _clean_retailer_ids(params.get("retailer_ids")),
                   params.get("beat_id", ""), params.get("beat_name", ""))
    dates = [p.plan_date.isoformat() for p in plans]
    result = {
        "success": True,
        "schedule": describe(rule),
        "start_date": anchor.isoformat(),
        "end_date": rule.until.isoformat(),
        "count": len(dates),
        "dates": dates,
    }
    if not dates:
        result["warning"] = "This schedule does not include any visit dates."
    return result


# ─── get_beat_plans ───────────────────────────────────────────────────────────

def get_beat_plans(user_id: str, start: str, end: str) -> dict:
    start_d, end_d = parse_date(start), parse_date(end)
    if end_d < start_d:
        raise ValueError(f"end ({end_d}) is before start ({start_d})")

    if not is_online():
        plans = [
            p for p in get_queue().cache_all(STORE_BEAT_PLANS)
            if start_d <= parse_date(p["plan_date"]) <= end_d
            and (not user_id or p.get("user_id") == user_id)
        ]
        plans.sort(key=lambda p: (p["plan_date"], p["beat_name"]))
        return {"success": True, "offline": True, "plans": plans}

    conn = get_db()
    try:
        rows = rows_to_list(fetchall(conn,
            """
            SELECT id, user_id, beat_id, beat_name, plan_date, beat_data
            FROM beat_plans
            WHERE user_id = %s AND plan_date >= %s AND plan_date <= %s
            ORDER BY plan_date, beat_name
            """,
            (user_id, start_d.isoformat(), end_d.isoformat())))
    finally:
        conn.close()
    return {"success": True, "offline": False, "plans": rows}


# ─── search_retailers ─────────────────────────────────────────────────────────

def search_retailers(query: str, user_id: str = None, limit: int = 10) -> dict:
    """Fuzzy-match retailers by name; phone numbers and categories match by prefix."""
    query = (query or "").strip()
    if not query:
        return {"success": True, "retailers": []}

    conn = get_db()
    try:
        if user_id:
            rows = fetchall(conn,
                "SELECT id, name, category, phone, address FROM retailers WHERE user_id = %s AND status = 'active'",
                (user_id,))
        else:
            rows = fetchall(conn,
                "SELECT id, name, category, phone, address FROM retailers WHERE status = 'active'")
    finally:
        conn.close()

    retailers = {r["id"]: dict(r) for r in rows}
    if not retailers:
        return {"success": True, "retailers": []}

    exact = [
        r for r in retailers.values()
        if (r.get("phone") or "").startswith(query) or (r.get("category") or "").lower() == query.lower()
    ]
    names = {rid: r["name"] for rid, r in retailers.items()}
    matches = fuzz_process.extract(query, names, scorer=fuzz.token_sort_ratio,
                                   processor=fuzz_utils.default_process, limit=limit)

    results = [{**r, "score": 100} for r in exact]
    seen = {r["id"] for r in exact}
    for name, score, rid in matches:
        if score >= FUZZY_MATCH_THRESHOLD and rid not in seen:
            results.append({**retailers[rid], "score": round(score)})
            seen.add(rid)
    return {"success": True, "retailers": results[:limit]}
