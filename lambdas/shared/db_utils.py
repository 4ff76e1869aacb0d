"""
Shared PostgreSQL database utilities for FieldForce Beats Lambda functions.
Direct psycopg2 connections; callers own commit/rollback.
"""

import json
import logging
from datetime import datetime, date
from decimal import Decimal
from typing import Optional

import psycopg2
import psycopg2.extras

from shared.config import DB_HOST, DB_PORT, DB_NAME, DB_USER, DB_PASSWORD, DB_SSL
from shared.recurrence import normalize

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Content-Type": "application/json",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,POST,PATCH,OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type,Authorization",
}


# ─── Connection helper ────────────────────────────────────────────────────────

def get_db():
    """
    Get a new psycopg2 connection to PostgreSQL.
    Connection is NOT cached across invocations.
    autocommit=False; callers must explicitly commit/rollback.
    Cursor uses RealDictCursor so rows behave like dicts.
    """
    conn = psycopg2.connect(
        host=DB_HOST,
        port=DB_PORT,
        dbname=DB_NAME,
        user=DB_USER,
        password=DB_PASSWORD,
        sslmode=DB_SSL,
        connect_timeout=10,
        cursor_factory=psycopg2.extras.RealDictCursor,
    )
    conn.autocommit = False
    return conn


def fetchone(conn, sql, args=()):
    cur = conn.cursor()
    cur.execute(sql, args)
    return cur.fetchone()


def fetchall(conn, sql, args=()):
    cur = conn.cursor()
    cur.execute(sql, args)
    return cur.fetchall()


def execute(conn, sql, args=()):
    cur = conn.cursor()
    cur.execute(sql, args)
    return cur


# ─── Date helpers ─────────────────────────────────────────────────────────────

def today() -> date:
    """The one place the service reads the wall clock for a calendar date."""
    return date.today()


def now_iso() -> str:
    return datetime.utcnow().isoformat()


parse_date = normalize


# ─── Row helpers ──────────────────────────────────────────────────────────────

def row_to_dict(row) -> Optional[dict]:
    """Convert a psycopg2 RealDictRow (or None) to a plain dict."""
    if row is None:
        return None
    return dict(row)


def rows_to_list(rows) -> list:
    """Convert a list of psycopg2 RealDictRow objects to a list of dicts."""
    return [dict(r) for r in rows]


def _serialize(obj):
    """JSON serializer for types not serializable by default (dates, Decimals)."""
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Type {type(obj)} not serializable")


def to_json(data) -> str:
    return json.dumps(data, default=_serialize)


# ─── API Gateway response formatter ───────────────────────────────────────────

def api_response(status_code: int, data) -> dict:
    """Format a Lambda proxy response for API Gateway / Function URLs."""
    return {
        "statusCode": status_code,
        "headers": CORS_HEADERS,
        "body": to_json(data),
    }


def parse_body(event: dict) -> dict:
    """Decode the JSON request body of a proxy event ({} when absent)."""
    body = event.get("body")
    if not body:
        return {}
    if isinstance(body, dict):
        return body
    return json.loads(body)


def request_method(event: dict) -> str:
    return event.get("httpMethod", event.get("requestContext", {}).get("http", {}).get("method", "GET"))


def request_path(event: dict) -> str:
    return event.get("path", event.get("rawPath", ""))
