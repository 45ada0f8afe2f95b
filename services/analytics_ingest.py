# services/analytics_ingest.py
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Mapping, Optional

from services.analytics_events import (
    META_MAX_LENGTHS,
    AnalyticsEvent,
    normalize_event,
    normalize_source,
)
from services.analytics_store import append_event
from utils.geo import get_client_ip, lookup_geo_by_ip
from utils.sanitize import parse_host, sanitize_text, to_iso, utc_now

logger = logging.getLogger(__name__)


def _first_header(headers: Optional[Mapping[str, str]], *names: str) -> str:
    if not headers:
        return ""
    for name in names:
        value = headers.get(name)
        if value:
            return value
    return ""


def build_server_meta(headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """
    Metadata observed by the server itself. These values beat anything the
    client claims in its `meta` bag.
    """
    if not headers:
        return {
            "country": "",
            "city": "",
            "userAgent": "",
            "referrer": "",
            "referrerHost": "",
            "ip": "",
            "siteHost": "",
            "siteOrigin": "",
        }

    referrer = _first_header(headers, "referer")
    site_host = _first_header(headers, "x-forwarded-host", "host")
    proto = _first_header(headers, "x-forwarded-proto") or "https"

    return {
        "country": _first_header(headers, "x-vercel-ip-country", "cf-ipcountry", "x-country-code"),
        "city": _first_header(headers, "x-vercel-ip-city", "x-city"),
        "userAgent": _first_header(headers, "user-agent"),
        "referrer": referrer,
        "referrerHost": parse_host(referrer),
        "ip": get_client_ip(headers),
        "siteHost": site_host,
        "siteOrigin": f"{proto}://{site_host}" if site_host else "",
    }


def _pick(key: str, *candidates: Any, lower: bool = False) -> str:
    """First non-empty candidate after sanitising to the meta field's max length."""
    for candidate in candidates:
        value = sanitize_text(candidate, META_MAX_LENGTHS[key])
        if lower:
            value = value.lower()
        if value:
            return value
    return ""


def merge_meta(
    client_meta: Any,
    server_meta: Mapping[str, str],
    geo: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Field-by-field merge: server-observed > IP geo lookup > client-claimed."""
    client = dict(client_meta) if isinstance(client_meta, Mapping) else {}
    geo = geo or {}

    referrer = _pick("referrer", server_meta.get("referrer"), client.get("referrer"))

    merged = dict(client)
    merged.update(
        country=_pick("country", server_meta.get("country"), geo.get("country"), client.get("country")),
        city=_pick("city", server_meta.get("city"), geo.get("city"), client.get("city")),
        siteHost=_pick("siteHost", server_meta.get("siteHost"), client.get("siteHost"), lower=True),
        siteOrigin=_pick("siteOrigin", server_meta.get("siteOrigin"), client.get("siteOrigin"), lower=True),
        userAgent=_pick("userAgent", server_meta.get("userAgent"), client.get("userAgent")),
        referrer=referrer,
        referrerHost=parse_host(referrer) or _pick("referrerHost", client.get("referrerHost")),
    )
    # device is always reclassified from the resolved user-agent
    merged.pop("device", None)
    return merged


def _default(payload: Mapping[str, Any], key: str, fallback: Any) -> Any:
    value = payload.get(key)
    return fallback if value is None else value


def record_analytics_event(
    payload: Mapping[str, Any],
    headers: Optional[Mapping[str, str]] = None,
) -> Optional[AnalyticsEvent]:
    """
    Enrich, normalise and persist one client event.
    Returns the stored event, or None when the payload was dropped.
    """
    if not isinstance(payload, Mapping):
        return None

    server_meta = build_server_meta(headers)
    geo = lookup_geo_by_ip(server_meta["ip"])

    source = _default(payload, "source", "other")
    normalized = normalize_event(
        {
            "occurredAt": _default(payload, "occurredAt", to_iso(utc_now())),
            "eventName": payload.get("eventName"),
            "sessionId": _default(payload, "sessionId", str(uuid.uuid4())),
            "path": _default(payload, "path", "/"),
            "source": source,
            "sourceContext": _default(payload, "sourceContext", source),
            "label": _default(payload, "label", ""),
            "href": _default(payload, "href", ""),
            "section": _default(payload, "section", ""),
            "itemId": _default(payload, "itemId", ""),
            "itemType": _default(payload, "itemType", ""),
            "value": _default(payload, "value", 0),
            "durationMs": _default(payload, "durationMs", 0),
            "isBot": payload.get("isBot") is True,
            "meta": merge_meta(payload.get("meta"), server_meta, geo),
        }
    )

    if normalized is None:
        logger.debug("Dropped analytics event %r: invalid occurredAt", payload.get("eventName"))
        return None

    append_event(normalized)
    return normalized


def record_analytics_click(
    source: str,
    label: str,
    href: str,
    headers: Optional[Mapping[str, str]] = None,
) -> Optional[AnalyticsEvent]:
    """Legacy click beacon: a bare (source, label, href) triple."""
    return record_analytics_event(
        {
            "eventName": "click",
            "source": normalize_source(source),
            "sourceContext": source,
            "label": label,
            "href": href,
        },
        headers,
    )
