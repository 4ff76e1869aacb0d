"""
Sync Actions Lambda Handler
Handles: sync_pending, get_sync_status, purge_stale_items

Routes:
  POST /api/sync         — replay the offline queue against PostgreSQL
  GET  /api/sync/status  — what is still waiting to sync
  POST /api/sync/purge   — drop queue items older than SYNC_MAX_AGE_DAYS

Queued writes are replayed in enqueue order, one commit per item. The first
item that fails stays at the head of the queue with its retry count bumped.
"""
import logging
import threading

from shared.beats_db import insert_beat, insert_beat_plan, update_beat
from shared.config import OFFLINE_DB_PATH, SYNC_MAX_AGE_DAYS
from shared.connectivity import is_online
from shared.db_utils import get_db, api_response, parse_body, request_method, request_path
from shared.offline_queue import (
    OfflineQueue, ACTION_LABELS, CREATE_BEAT, UPDATE_BEAT, CREATE_BEAT_PLAN,
)

logger = logging.getLogger()
logger.setLevel(logging.INFO)

_queue = None
_queue_lock = threading.Lock()


def get_queue() -> OfflineQueue:
    global _queue
    with _queue_lock:
        if _queue is None:
            _queue = OfflineQueue(OFFLINE_DB_PATH)
    return _queue


def lambda_handler(event, context):
    method = request_method(event)
    path = request_path(event)
    logger.info(f"{method} {path}")

    if method == "OPTIONS":
        return api_response(200, {})

    try:
        if path.endswith("/api/sync/status"):
            data = get_sync_status()
        elif path.endswith("/api/sync/purge") and method == "POST":
            body = parse_body(event)
            data = purge_stale_items(int(body.get("max_age_days", SYNC_MAX_AGE_DAYS)))
        elif path.endswith("/api/sync") and method == "POST":
            data = sync_pending()
        else:
            return api_response(404, {"error": f"Unknown path: {path}"})
    except ValueError as e:
        return api_response(400, {"error": str(e)})
    except Exception as e:
        logger.exception(f"Error in {method} {path}")
        return api_response(500, {"error": str(e)})

    return api_response(200, data)


# ─── executor ─────────────────────────────────────────────────────────────────

def _apply(conn, action: str, payload: dict) -> None:
    if action == CREATE_BEAT:
        insert_beat(conn, payload)
    elif action == UPDATE_BEAT:
        update_beat(conn, payload["id"], payload["updates"])
    elif action == CREATE_BEAT_PLAN:
        if not insert_beat_plan(conn, payload):
            logger.info(f"[SYNC] Plan for {payload['beat_id']} on {payload['plan_date']} already exists")
    else:
        raise ValueError(f"Unknown sync action: {action}")


def make_executor(conn):
    """Bind a connection into an executor(action, payload) for OfflineQueue.replay."""
    def executor(action: str, payload: dict) -> None:
        try:
            _apply(conn, action, payload)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
    return executor


# ─── sync_pending ─────────────────────────────────────────────────────────────

def sync_pending() -> dict:
    queue = get_queue()
    pending = queue.size()
    if pending == 0:
        return {"success": True, "synced": 0, "remaining": 0, "message": "Nothing to sync"}

    if not is_online():
        logger.info(f"[SYNC] Still offline — {pending} item(s) waiting")
        return {"success": True, "offline": True, "synced": 0, "remaining": pending,
                "message": "Still offline, will retry on reconnect"}

    conn = get_db()
    try:
        result = queue.replay(make_executor(conn))
    finally:
        conn.close()

    result["success"] = result["failed"] is None
    result["offline"] = False
    result["message"] = (
        f"Synced {result['synced']} item(s)" if result["success"]
        else f"Synced {result['synced']} item(s); stopped at {ACTION_LABELS.get(result['failed']['action'], result['failed']['action'])}"
    )
    return result


# ─── get_sync_status ──────────────────────────────────────────────────────────

def _item_detail(action: str, payload: dict) -> str:
    if action == CREATE_BEAT:
        return payload.get("beat_name") or "New Beat"
    if action == CREATE_BEAT_PLAN:
        return f"{payload.get('beat_name') or 'Beat Plan'} — {payload.get('plan_date', '')}"
    if action == UPDATE_BEAT:
        return payload.get("updates", {}).get("beat_name") or payload.get("id", "")
    return ""


def get_sync_status() -> dict:
    items = get_queue().pending()
    return {
        "success": True,
        "pending": len(items),
        "items": [
            {
                "id": it["id"],
                "action": it["action"],
                "label": ACTION_LABELS.get(it["action"], it["action"]),
                "detail": _item_detail(it["action"], it["payload"]),
                "retry_count": it["retry_count"],
                "last_error": it["last_error"],
            }
            for it in items
        ],
    }


# ─── purge_stale_items ────────────────────────────────────────────────────────

def purge_stale_items(max_age_days: int = SYNC_MAX_AGE_DAYS) -> dict:
    if max_age_days < 0:
        raise ValueError("max_age_days must be >= 0")
    removed = get_queue().purge_stale(max_age_days)
    return {"success": True, "removed": removed, "remaining": get_queue().size()}
