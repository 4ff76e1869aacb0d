"""
Persistence of materialized beat plans.

Online: one INSERT + COMMIT per plan, in date order. The sequence is
best-effort: a failure stops it and already-committed plans stay. The
caller gets back how far it got.
Offline: one CREATE_BEAT_PLAN queue item per plan, replayed later by sync_actions.
"""

import logging
from datetime import date
from typing import Callable, List, Optional

from shared.beats_db import insert_beat_plan
from shared.offline_queue import OfflineQueue, CREATE_BEAT_PLAN
from shared.recurrence import BeatPlan

logger = logging.getLogger(__name__)


def persist_plans(plans: List[BeatPlan], user_id: Optional[str], *, online: bool,
                  queue: OfflineQueue, conn_factory: Callable, today: date) -> dict:
    rows = [p.to_row(user_id) for p in plans]
    if not rows:
        return {"success": True, "offline": not online, "inserted": 0, "skipped": 0, "queued": 0}

    if not online:
        for row in rows:
            queue.enqueue(CREATE_BEAT_PLAN, row)
        queue.cache_upcoming_plans(rows, today)
        logger.info(f"[PLAN] Offline — queued {len(rows)} beat plan(s) for beat {rows[0]['beat_id']}")
        return {"success": True, "offline": True, "inserted": 0, "skipped": 0, "queued": len(rows)}

    inserted = 0
    skipped = 0
    conn = conn_factory()
    try:
        for row in rows:
            try:
                if insert_beat_plan(conn, row):
                    inserted += 1
                else:
                    skipped += 1
                conn.commit()
            except Exception as e:
                logger.exception(f"[PLAN] Insert failed for {row['beat_id']} on {row['plan_date']}")
                conn.rollback()
                return {
                    "success": False,
                    "offline": False,
                    "inserted": inserted,
                    "skipped": skipped,
                    "queued": 0,
                    "failed_plan_date": row["plan_date"],
                    "error": str(e),
                }
    finally:
        conn.close()

    queue.cache_upcoming_plans(rows, today)
    logger.info(f"[PLAN] Inserted {inserted} beat plan(s), skipped {skipped} existing")
    return {"success": True, "offline": False, "inserted": inserted, "skipped": skipped, "queued": 0}
