"""
SQL for the beats and beat_plans tables.
Shared by the beat actions (direct writes) and the sync replay (queued writes),
so a queued operation lands exactly as it would have online.
"""

import json
import logging

from shared.db_utils import execute, _serialize

logger = logging.getLogger(__name__)

BEAT_COLUMNS = ("id", "beat_name", "created_by", "is_active", "retailer_ids", "recurrence",
                "created_at", "updated_at")
UPDATABLE_BEAT_COLUMNS = ("beat_name", "is_active", "retailer_ids", "recurrence", "updated_at")


def insert_beat(conn, beat: dict) -> None:
    execute(conn,
        """
        INSERT INTO beats (id, beat_name, created_by, is_active, retailer_ids, recurrence,
                           created_at, updated_at)
        VALUES (%s, %s, %s, %s, %s::jsonb, %s::jsonb, %s, %s)
        ON CONFLICT (id) DO NOTHING
        """,
        (beat["id"], beat["beat_name"], beat.get("created_by"), beat.get("is_active", True),
         json.dumps(beat.get("retailer_ids") or []),
         json.dumps(beat.get("recurrence") or {}, default=_serialize),
         beat["created_at"], beat["updated_at"]))


def update_beat(conn, beat_id: str, updates: dict) -> int:
    """Apply a partial update. Unknown keys are ignored. Returns rows affected."""
    cols = [c for c in UPDATABLE_BEAT_COLUMNS if c in updates]
    if not cols:
        return 0
    assignments = []
    args = []
    for c in cols:
        if c in ("retailer_ids", "recurrence"):
            assignments.append(f"{c} = %s::jsonb")
            args.append(json.dumps(updates[c], default=_serialize))
        else:
            assignments.append(f"{c} = %s")
            args.append(updates[c])
    args.append(beat_id)
    cur = execute(conn, f"UPDATE beats SET {', '.join(assignments)} WHERE id = %s", args)
    return cur.rowcount


def insert_beat_plan(conn, row: dict) -> bool:
    """
    Insert one beat_plans row. Returns False when a plan for the same
    (beat_id, plan_date) already exists.
    """
    cur = execute(conn,
        """
        INSERT INTO beat_plans (user_id, beat_id, beat_name, plan_date, beat_data,
                                created_at, updated_at)
        VALUES (%s, %s, %s, %s, %s::jsonb, NOW(), NOW())
        ON CONFLICT (beat_id, plan_date) DO NOTHING
        """,
        (row.get("user_id"), row["beat_id"], row["beat_name"], row["plan_date"],
         json.dumps(row.get("beat_data") or {})))
    return cur.rowcount == 1
