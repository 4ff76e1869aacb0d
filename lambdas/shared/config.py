"""
Centralized configuration for FieldForce Beats.
All connection settings, horizons and local-store paths in one place.
Values come from the environment; a project-root .env is loaded first for local runs.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parents[2]

load_dotenv(PROJECT_ROOT / ".env")

# ─── PostgreSQL ──────────────────────────────────────────────────────────────
DB_HOST     = os.environ.get("DB_HOST", "localhost")
DB_PORT     = int(os.environ.get("DB_PORT", "5432"))
DB_NAME     = os.environ.get("DB_NAME", "fieldforce")
DB_USER     = os.environ.get("DB_USER", "fieldforce")
DB_PASSWORD = os.environ.get("DB_PASSWORD", "")
DB_SSL      = os.environ.get("DB_SSL", "prefer")

# ─── Beat planning ───────────────────────────────────────────────────────────
# "Permanent" beats are materialized up to this many days past the anchor date
PERMANENT_HORIZON_DAYS = int(os.environ.get("PERMANENT_HORIZON_DAYS", "365"))

# ─── Offline store ───────────────────────────────────────────────────────────
OFFLINE_DB_PATH = os.environ.get(
    "OFFLINE_DB_PATH", str(PROJECT_ROOT / "data" / "offline.db")
)
# Only today + this many days of beat plans are kept in the local cache
PLAN_CACHE_DAYS = int(os.environ.get("PLAN_CACHE_DAYS", "3"))
# Queue items older than this are dropped by purge_stale()
SYNC_MAX_AGE_DAYS = int(os.environ.get("SYNC_MAX_AGE_DAYS", "3"))

# ─── Connectivity ────────────────────────────────────────────────────────────
CONNECTIVITY_PROBE_URL = os.environ.get("CONNECTIVITY_PROBE_URL", "")
CONNECTIVITY_TIMEOUT   = float(os.environ.get("CONNECTIVITY_TIMEOUT", "5"))
FORCE_OFFLINE          = os.environ.get("FORCE_OFFLINE", "").lower() in ("1", "true", "yes")

# ─── Local API server ────────────────────────────────────────────────────────
CORS_ORIGINS = [
    o.strip()
    for o in os.environ.get("CORS_ORIGINS", "http://localhost:5173,http://localhost:5174").split(",")
    if o.strip()
]
API_PORT = int(os.environ.get("API_PORT", "8000"))

# ─── Visit status groups (calendar rollups) ──────────────────────────────────
COMPLETED_VISIT_STATUSES = ("productive", "unproductive", "store_closed")
PRODUCTIVE_VISIT_STATUS = "productive"
