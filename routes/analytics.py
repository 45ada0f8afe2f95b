import logging
from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from services.analytics_ingest import record_analytics_click, record_analytics_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cms")


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


def _has_event_name(evt: Any) -> bool:
    if not isinstance(evt, dict):
        return False
    # any truthy name passes; normalisation maps unusable ones to "event"
    return bool(evt.get("eventName"))


def _extract_events(payload: Any) -> List[Dict[str, Any]]:
    """Accept a single event object or an {"events": [...]} batch."""
    if isinstance(payload, dict) and isinstance(payload.get("events"), list):
        candidates = payload["events"]
    elif isinstance(payload, dict):
        candidates = [payload]
    else:
        candidates = []
    return [evt for evt in candidates if _has_event_name(evt)]


@router.post("/event")
async def ingest_analytics_event(request: Request):
    payload = await _read_json(request)
    events = _extract_events(payload)
    if not events:
        raise HTTPException(status_code=400, detail="Missing event name.")

    accepted = 0
    # One at a time: a malformed event must not block the rest of the batch
    for evt in events:
        stored = await run_in_threadpool(record_analytics_event, evt, request.headers)
        if stored is not None:
            accepted += 1

    if accepted < len(events):
        logger.info("Analytics batch: accepted %s of %s events", accepted, len(events))

    return {"ok": True, "accepted": accepted}


@router.post("/click")
async def ingest_analytics_click(request: Request):
    payload = await _read_json(request)
    if not isinstance(payload, dict):
        payload = {}

    label = payload.get("label")
    href = payload.get("href")
    if not label or not href or not isinstance(label, str) or not isinstance(href, str):
        raise HTTPException(status_code=400, detail="Missing click payload.")

    source = payload.get("source")
    await run_in_threadpool(
        record_analytics_click,
        source if isinstance(source, str) and source else "other",
        label,
        href,
        request.headers,
    )
    return {"ok": True}
