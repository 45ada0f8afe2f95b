# services/analytics_events.py
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from utils.sanitize import (
    round_half_up,
    safe_date,
    sanitize_text,
    to_finite_number,
    to_iso,
)
from utils.user_agent import classify_device

SOURCES = {
    "nav",
    "folder",
    "command",
    "gallery",
    "outbound",
    "section",
    "scroll",
    "performance",
    "system",
    "other",
}

VITAL_METRICS = {"LCP", "INP", "CLS"}

# duration_ms is a 32-bit INTEGER column
MAX_DURATION_MS = 2**31 - 1

# Max stored length per free-text field
MAX_LENGTHS = {
    "eventName": 64,
    "sessionId": 80,
    "path": 240,
    "sourceContext": 140,
    "label": 180,
    "href": 700,
    "section": 120,
    "itemId": 240,
    "itemType": 80,
}

META_MAX_LENGTHS = {
    "referrer": 700,
    "referrerHost": 180,
    "utmSource": 120,
    "utmMedium": 120,
    "utmCampaign": 120,
    "locale": 80,
    "timezone": 80,
    "country": 80,
    "city": 120,
    "siteHost": 180,
    "siteOrigin": 260,
    "userAgent": 300,
}


# -----------------------------
# Data shapes
# -----------------------------
@dataclass(frozen=True)
class EventMeta:
    referrer: str = ""
    referrer_host: str = ""
    utm_source: str = ""
    utm_medium: str = ""
    utm_campaign: str = ""
    locale: str = ""
    timezone: str = ""
    country: str = ""
    city: str = ""
    site_host: str = ""
    site_origin: str = ""
    user_agent: str = ""
    device: str = "unknown"
    metric_name: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "referrer": self.referrer,
            "referrerHost": self.referrer_host,
            "utmSource": self.utm_source,
            "utmMedium": self.utm_medium,
            "utmCampaign": self.utm_campaign,
            "locale": self.locale,
            "timezone": self.timezone,
            "country": self.country,
            "city": self.city,
            "siteHost": self.site_host,
            "siteOrigin": self.site_origin,
            "userAgent": self.user_agent,
            "device": self.device,
            "metricName": self.metric_name,
        }


@dataclass(frozen=True)
class AnalyticsEvent:
    """One normalised client or system occurrence. Never mutated after ingestion."""

    occurred_at: datetime
    event_name: str
    session_id: str
    path: str
    source: str
    source_context: str
    label: str
    href: str
    section: str
    item_id: str
    item_type: str
    value: float
    duration_ms: int
    is_bot: bool
    meta: EventMeta = field(default_factory=EventMeta)

    @property
    def occurred_at_iso(self) -> str:
        return to_iso(self.occurred_at)

    @property
    def day_key(self) -> str:
        return self.occurred_at_iso[:10]

    def to_dict(self) -> Dict[str, Any]:
        """camelCase JSON shape used on the wire and in the file store."""
        return {
            "occurredAt": self.occurred_at_iso,
            "eventName": self.event_name,
            "sessionId": self.session_id,
            "path": self.path,
            "source": self.source,
            "sourceContext": self.source_context,
            "label": self.label,
            "href": self.href,
            "section": self.section,
            "itemId": self.item_id,
            "itemType": self.item_type,
            "value": self.value,
            "durationMs": self.duration_ms,
            "isBot": self.is_bot,
            "meta": self.meta.to_dict(),
        }

    def to_row(self) -> Dict[str, Any]:
        """snake_case column mapping for the relational store."""
        row = asdict(self)
        row["meta"] = self.meta.to_dict()
        return row


# -----------------------------
# Normalisation
# -----------------------------
def normalize_source(value: Any) -> str:
    return value if isinstance(value, str) and value in SOURCES else "other"


def normalize_metric_name(value: Any) -> str:
    raw = sanitize_text(value, 12).upper()
    if raw in VITAL_METRICS:
        return raw
    return "OTHER" if raw else ""


def _text(raw: Mapping[str, Any], key: str) -> str:
    return sanitize_text(raw.get(key), MAX_LENGTHS[key])


def _meta_text(meta: Mapping[str, Any], key: str) -> str:
    return sanitize_text(meta.get(key), META_MAX_LENGTHS[key])


def normalize_meta(meta: Any) -> EventMeta:
    if not isinstance(meta, Mapping):
        meta = {}

    user_agent = _meta_text(meta, "userAgent")
    return EventMeta(
        referrer=_meta_text(meta, "referrer"),
        referrer_host=_meta_text(meta, "referrerHost"),
        utm_source=_meta_text(meta, "utmSource"),
        utm_medium=_meta_text(meta, "utmMedium"),
        utm_campaign=_meta_text(meta, "utmCampaign"),
        locale=_meta_text(meta, "locale"),
        timezone=_meta_text(meta, "timezone"),
        country=_meta_text(meta, "country"),
        city=_meta_text(meta, "city"),
        site_host=_meta_text(meta, "siteHost").lower(),
        site_origin=_meta_text(meta, "siteOrigin").lower(),
        user_agent=user_agent,
        # never trust a client-claimed device tag
        device=classify_device(user_agent),
        metric_name=normalize_metric_name(meta.get("metricName")),
    )


def normalize_event(raw: Any, now: Optional[datetime] = None) -> Optional[AnalyticsEvent]:
    """
    Turn a loosely-typed payload (camelCase keys, as it arrives over the wire
    or sits in the file store) into an AnalyticsEvent.

    Returns None when the payload is not a mapping or its occurredAt is
    missing/unparseable. Never raises for malformed input.
    """
    if not isinstance(raw, Mapping):
        return None

    occurred_at = safe_date(raw.get("occurredAt"), now=now)
    if occurred_at is None:
        return None
    # millisecond precision, same as the ISO form we persist
    occurred_at = occurred_at.replace(microsecond=occurred_at.microsecond // 1000 * 1000)

    meta = normalize_meta(raw.get("meta"))

    return AnalyticsEvent(
        occurred_at=occurred_at,
        event_name=_text(raw, "eventName") or "event",
        session_id=_text(raw, "sessionId"),
        path=_text(raw, "path") or "/",
        source=normalize_source(raw.get("source")),
        source_context=_text(raw, "sourceContext"),
        label=_text(raw, "label"),
        href=_text(raw, "href"),
        section=_text(raw, "section"),
        item_id=_text(raw, "itemId"),
        item_type=_text(raw, "itemType"),
        value=to_finite_number(raw.get("value")),
        duration_ms=min(MAX_DURATION_MS, max(0, round_half_up(to_finite_number(raw.get("durationMs"))))),
        is_bot=bool(raw.get("isBot") is True or meta.device == "bot"),
        meta=meta,
    )
