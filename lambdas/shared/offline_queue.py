"""
Offline write queue + local cache, backed by a SQLite file.

Writes made while the backend is unreachable are appended to sync_queue and
replayed strictly in enqueue order once connectivity returns. A small cache
(beats, upcoming beat plans) is kept alongside so reads still work offline.

One connection is shared by every thread of the process (the local API server
runs handlers on a worker pool), so each method holds the queue's lock.
"""

import json
import logging
import sqlite3
import threading
import time
from datetime import date, timedelta
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from shared.config import OFFLINE_DB_PATH, PLAN_CACHE_DAYS, SYNC_MAX_AGE_DAYS
from shared.db_utils import _serialize, parse_date

logger = logging.getLogger(__name__)

# ─── Queue actions ────────────────────────────────────────────────────────────
CREATE_BEAT      = "CREATE_BEAT"
UPDATE_BEAT      = "UPDATE_BEAT"
CREATE_BEAT_PLAN = "CREATE_BEAT_PLAN"

ACTION_LABELS = {
    CREATE_BEAT:      "Creating Beat",
    UPDATE_BEAT:      "Updating Beat",
    CREATE_BEAT_PLAN: "Creating Beat Plan",
}

# ─── Cache stores ─────────────────────────────────────────────────────────────
STORE_BEATS      = "beats"
STORE_BEAT_PLANS = "beat_plans"

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS sync_queue (
        id          INTEGER PRIMARY KEY AUTOINCREMENT,
        action      TEXT NOT NULL,
        payload     TEXT NOT NULL,
        created_at  REAL NOT NULL,
        retry_count INTEGER NOT NULL DEFAULT 0,
        last_error  TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_sync_queue_action ON sync_queue(action)",
    """
    CREATE TABLE IF NOT EXISTS cache (
        store      TEXT NOT NULL,
        key        TEXT NOT NULL,
        data       TEXT NOT NULL,
        updated_at REAL NOT NULL,
        PRIMARY KEY (store, key)
    )
    """,
]


class OfflineQueue:
    def __init__(self, path: str = OFFLINE_DB_PATH, clock: Callable[[], float] = time.time):
        self.path = str(path)
        self._clock = clock
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        for stmt in SCHEMA:
            self._conn.execute(stmt)
        self._conn.commit()
        logger.info(f"[OFFLINE] Local store ready at {self.path}")

    def close(self):
        with self._lock:
            self._conn.close()

    # ─── Sync queue ───────────────────────────────────────────────────────────

    def enqueue(self, action: str, payload: dict) -> int:
        """Append a pending write. Committed immediately so it survives restarts."""
        with self._lock:
            cur = self._conn.execute(
                "INSERT INTO sync_queue (action, payload, created_at) VALUES (?, ?, ?)",
                (action, json.dumps(payload, default=_serialize), self._clock()),
            )
            self._conn.commit()
        logger.info(f"[OFFLINE] Queued {action} (item {cur.lastrowid})")
        return cur.lastrowid

    def pending(self) -> List[dict]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, action, payload, created_at, retry_count, last_error FROM sync_queue ORDER BY id"
            ).fetchall()
        return [
            {
                "id": r["id"],
                "action": r["action"],
                "payload": json.loads(r["payload"]),
                "created_at": r["created_at"],
                "retry_count": r["retry_count"],
                "last_error": r["last_error"],
            }
            for r in rows
        ]

    def size(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM sync_queue").fetchone()[0]

    def delete(self, item_id: int) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM sync_queue WHERE id = ?", (item_id,))
            self._conn.commit()

    def record_failure(self, item_id: int, error: str) -> None:
        with self._lock:
            self._conn.execute(
                "UPDATE sync_queue SET retry_count = retry_count + 1, last_error = ? WHERE id = ?",
                (error, item_id),
            )
            self._conn.commit()

    def replay(self, executor: Callable[[str, dict], None]) -> dict:
        """
        Hand each queued item to executor(action, payload) in enqueue order.
        Successful items are removed. The first failure is recorded on its item
        and stops the replay so nothing later overtakes it.
        The lock is held for the whole pass, so two replays never interleave.
        """
        synced = 0
        failed = None
        with self._lock:
            for item in self.pending():
                try:
                    executor(item["action"], item["payload"])
                except Exception as e:
                    logger.exception(f"[SYNC] {item['action']} (item {item['id']}) failed")
                    self.record_failure(item["id"], str(e))
                    failed = {"id": item["id"], "action": item["action"], "error": str(e)}
                    break
                self.delete(item["id"])
                synced += 1

            remaining = self.size()
        logger.info(f"[SYNC] Replayed {synced} item(s), {remaining} remaining")
        return {"synced": synced, "failed": failed, "remaining": remaining}

    def purge_stale(self, max_age_days: int = SYNC_MAX_AGE_DAYS) -> int:
        """Drop queue items older than max_age_days. Returns the number removed."""
        cutoff = self._clock() - max_age_days * 24 * 60 * 60
        with self._lock:
            cur = self._conn.execute("DELETE FROM sync_queue WHERE created_at < ?", (cutoff,))
            self._conn.commit()
        if cur.rowcount:
            logger.warning(f"[OFFLINE] Purged {cur.rowcount} queue item(s) older than {max_age_days} days")
        return cur.rowcount

    # ─── Cache ────────────────────────────────────────────────────────────────

    def cache_put(self, store: str, key: str, record: dict) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO cache (store, key, data, updated_at) VALUES (?, ?, ?, ?)
                ON CONFLICT (store, key) DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at
                """,
                (store, str(key), json.dumps(record, default=_serialize), self._clock()),
            )
            self._conn.commit()

    def cache_get(self, store: str, key: str) -> Optional[dict]:
        with self._lock:
            row = self._conn.execute(
                "SELECT data FROM cache WHERE store = ? AND key = ?", (store, str(key))
            ).fetchone()
        return json.loads(row["data"]) if row else None

    def cache_all(self, store: str) -> List[dict]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT data FROM cache WHERE store = ? ORDER BY key", (store,)
            ).fetchall()
        return [json.loads(r["data"]) for r in rows]

    def cache_upcoming_plans(self, rows: Iterable[dict], today: date,
                             days: int = PLAN_CACHE_DAYS) -> int:
        """Cache only plan rows dated today .. today + days. Returns how many were kept."""
        last = today + timedelta(days=days)
        kept = 0
        for row in rows:
            plan_date = parse_date(row["plan_date"])
            if today <= plan_date <= last:
                self.cache_put(STORE_BEAT_PLANS, f"{row['beat_id']}:{plan_date.isoformat()}", row)
                kept += 1
        return kept
