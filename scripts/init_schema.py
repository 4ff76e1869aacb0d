#!/usr/bin/env python3
"""
Create the FieldForce Beats tables in PostgreSQL.
Safe to re-run: every statement is CREATE ... IF NOT EXISTS.

Usage:
    python scripts/init_schema.py            # create tables
    python scripts/init_schema.py --dry-run  # print the DDL only
"""

import argparse
import logging

from shared.db_utils import get_db

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
logger = logging.getLogger(__name__)

# ──────────── Schema definitions ────────────
# Each entry: (table_name, CREATE TABLE SQL)
# Ordered so that FK targets are created before referencing tables.

SCHEMA = [
    # ─── Master tables ───
    ("retailers", """
        CREATE TABLE IF NOT EXISTS retailers (
            id          TEXT PRIMARY KEY,
            user_id     TEXT,
            name        TEXT NOT NULL,
            category    TEXT,
            phone       TEXT,
            address     TEXT,
            status      TEXT DEFAULT 'active',
            created_at  TIMESTAMP DEFAULT NOW(),
            updated_at  TIMESTAMP DEFAULT NOW()
        )
    """),
    ("beats", """
        CREATE TABLE IF NOT EXISTS beats (
            id           TEXT PRIMARY KEY,
            beat_name    TEXT NOT NULL,
            created_by   TEXT,
            is_active    BOOLEAN DEFAULT TRUE,
            retailer_ids JSONB DEFAULT '[]'::jsonb,
            recurrence   JSONB DEFAULT '{}'::jsonb,
            created_at   TIMESTAMP DEFAULT NOW(),
            updated_at   TIMESTAMP DEFAULT NOW()
        )
    """),

    # ─── Plans (one per beat per day) ───
    ("beat_plans", """
        CREATE TABLE IF NOT EXISTS beat_plans (
            id          BIGSERIAL PRIMARY KEY,
            user_id     TEXT,
            beat_id     TEXT NOT NULL REFERENCES beats(id) ON DELETE CASCADE,
            beat_name   TEXT NOT NULL,
            plan_date   DATE NOT NULL,
            beat_data   JSONB DEFAULT '{}'::jsonb,
            created_at  TIMESTAMP DEFAULT NOW(),
            updated_at  TIMESTAMP DEFAULT NOW(),
            UNIQUE (beat_id, plan_date)
        )
    """),

    # ─── Activity tables read by the calendar ───
    ("visits", """
        CREATE TABLE IF NOT EXISTS visits (
            id            TEXT PRIMARY KEY,
            user_id       TEXT,
            retailer_id   TEXT REFERENCES retailers(id),
            planned_date  DATE NOT NULL,
            status        TEXT DEFAULT 'planned',
            created_at    TIMESTAMP DEFAULT NOW(),
            updated_at    TIMESTAMP DEFAULT NOW()
        )
    """),
    ("orders", """
        CREATE TABLE IF NOT EXISTS orders (
            id            TEXT PRIMARY KEY,
            user_id       TEXT,
            visit_id      TEXT REFERENCES visits(id),
            retailer_id   TEXT REFERENCES retailers(id),
            total_amount  NUMERIC(14, 2) DEFAULT 0,
            created_at    TIMESTAMP DEFAULT NOW()
        )
    """),
    ("holidays", """
        CREATE TABLE IF NOT EXISTS holidays (
            id    BIGSERIAL PRIMARY KEY,
            date  DATE NOT NULL,
            name  TEXT
        )
    """),
    ("leave_applications", """
        CREATE TABLE IF NOT EXISTS leave_applications (
            id          BIGSERIAL PRIMARY KEY,
            user_id     TEXT NOT NULL,
            start_date  DATE NOT NULL,
            end_date    DATE NOT NULL,
            status      TEXT DEFAULT 'pending'
        )
    """),
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_beat_plans_user_date ON beat_plans(user_id, plan_date)",
    "CREATE INDEX IF NOT EXISTS idx_beats_created_by ON beats(created_by)",
    "CREATE INDEX IF NOT EXISTS idx_visits_user_date ON visits(user_id, planned_date)",
    "CREATE INDEX IF NOT EXISTS idx_orders_visit ON orders(visit_id)",
    "CREATE INDEX IF NOT EXISTS idx_retailers_user ON retailers(user_id)",
]


def create_schema(conn):
    cur = conn.cursor()
    for name, ddl in SCHEMA:
        cur.execute(ddl)
        logger.info(f"  {name}: ok")
    for stmt in INDEXES:
        cur.execute(stmt)
    conn.commit()


def main():
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--dry-run", action="store_true", help="Print the DDL without executing")
    args = parser.parse_args()

    if args.dry_run:
        for _, ddl in SCHEMA:
            print(ddl.strip() + ";\n")
        for stmt in INDEXES:
            print(stmt + ";")
        return

    conn = get_db()
    try:
        logger.info("Creating tables...")
        create_schema(conn)
        logger.info(f"Done — {len(SCHEMA)} tables, {len(INDEXES)} indexes")
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


if __name__ == "__main__":
    main()
