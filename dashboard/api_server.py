"""
Local API server for FieldForce Beats
Serves the same operations as the Lambda handlers on port 8000.
Vite dev server proxies /api/* -> http://localhost:8000/api/*

Run: python dashboard/api_server.py
"""
import logging
from typing import List, Optional

import uvicorn
from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from shared.config import API_PORT, CORS_ORIGINS, SYNC_MAX_AGE_DAYS
from shared.recurrence import InvalidRuleError
from beat_actions import handler as beats
from calendar_api import handler as calendar_api
from sync_actions import handler as sync

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="FieldForce Beats API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


class RecurrenceIn(BaseModel):
    frequency: str
    weekdays: List[int] = []
    interval_days: Optional[int] = None
    until: str = "permanent"


class BeatIn(BaseModel):
    beat_name: str
    retailer_ids: List[str]
    recurrence: RecurrenceIn
    user_id: Optional[str] = None


class BeatUpdateIn(BaseModel):
    beat_name: Optional[str] = None
    retailer_ids: Optional[List[str]] = None
    recurrence: Optional[RecurrenceIn] = None


class PreviewIn(BaseModel):
    recurrence: RecurrenceIn
    start_date: Optional[str] = None
    retailer_ids: List[str] = []


def _call(fn, *args):
    """Run a handler operation and map its errors the way the Lambda handlers do."""
    try:
        result = fn(*args)
    except KeyError as e:
        raise HTTPException(status_code=400, detail=f"Missing required parameter: {e}")
    except (InvalidRuleError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    if not result.get("success", True):
        raise HTTPException(status_code=500, detail=result)
    return result


@app.get("/healthz")
def healthcheck():
    return {"ok": True}


# ─── /api/beats ───────────────────────────────────────────────────────────────
@app.post("/api/beats/preview")
def preview_beat(payload: PreviewIn):
    return _call(beats.preview_beat_plans, payload.model_dump())


@app.post("/api/beats")
def create_beat(payload: BeatIn):
    return _call(beats.create_beat, payload.model_dump())


@app.get("/api/beats")
def list_beats(user_id: str = Query(...)):
    return _call(beats.get_beats, user_id)


@app.patch("/api/beats/{beat_id}")
def update_beat(beat_id: str, payload: BeatUpdateIn):
    return _call(beats.update_beat, beat_id, payload.model_dump(exclude_none=True))


@app.post("/api/beats/{beat_id}/activate")
def activate_beat(beat_id: str):
    return _call(beats.set_beat_active, beat_id, True)


@app.post("/api/beats/{beat_id}/deactivate")
def deactivate_beat(beat_id: str):
    return _call(beats.set_beat_active, beat_id, False)


# ─── /api/beat-plans ──────────────────────────────────────────────────────────
@app.get("/api/beat-plans")
def list_beat_plans(user_id: str = Query(...), start: str = Query(...), end: str = Query(...)):
    return _call(beats.get_beat_plans, user_id, start, end)


# ─── /api/retailers/search ────────────────────────────────────────────────────
@app.get("/api/retailers/search")
def search_retailers(q: str = Query(""), user_id: Optional[str] = None, limit: int = Query(10, ge=1, le=50)):
    return _call(beats.search_retailers, q, user_id, limit)


# ─── /api/calendar ────────────────────────────────────────────────────────────
@app.get("/api/calendar")
def get_calendar(user_id: str = Query(...), month: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}$")):
    return _call(calendar_api.get_calendar, user_id, month)


# ─── /api/sync ────────────────────────────────────────────────────────────────
@app.post("/api/sync")
def run_sync():
    return sync.sync_pending()


@app.get("/api/sync/status")
def sync_status():
    return sync.get_sync_status()


@app.post("/api/sync/purge")
def purge_sync(max_age_days: int = Body(SYNC_MAX_AGE_DAYS, embed=True)):
    return _call(sync.purge_stale_items, max_age_days)


if __name__ == "__main__":
    print(f"Starting FieldForce Beats API on http://localhost:{API_PORT}")
    uvicorn.run(app, host="0.0.0.0", port=API_PORT)
