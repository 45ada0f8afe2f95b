# services/analytics_metrics.py
from __future__ import annotations

import math
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from services.analytics_events import AnalyticsEvent
from utils.config import SCHEDULING_DOMAINS
from utils.sanitize import utc_now

HOUR = timedelta(hours=1)
DAY = timedelta(days=1)

CASE_STUDY_PATH_RE = re.compile(r"^/(apps|website|sites|labs)(/|$)")


# ----------------------------
# Helpers
# ----------------------------
def percentile(values: Sequence[float], p: float) -> float:
    """
    Nearest-rank percentile: index ceil(p/100 * n) - 1 into the sorted values,
    clamped into bounds. No interpolation between neighbours.
    """
    if not values:
        return 0
    ordered = sorted(values)
    index = min(len(ordered) - 1, max(0, math.ceil((p / 100) * len(ordered)) - 1))
    return ordered[index]


def to_rate(numerator: float, denominator: float) -> float:
    if denominator <= 0:
        return 0
    return round((numerator / denominator) * 100, 2)


def safe_division(value: float, by: float) -> float:
    if by <= 0:
        return 0
    return value / by


def mean(values: Sequence[float]) -> float:
    return sum(values) / max(1, len(values))


def is_contact_href(href: str) -> bool:
    lower = (href or "").lower()
    return lower.startswith("mailto:") or any(domain in lower for domain in SCHEDULING_DOMAINS)


def is_public_path(path: str) -> bool:
    return not path.startswith("/admin") and not path.startswith("/api")


def is_click_like(event: AnalyticsEvent) -> bool:
    return "click" in event.event_name


def is_contact_click(event: AnalyticsEvent) -> bool:
    return event.event_name == "outbound_click" and is_contact_href(event.href)


def is_landing_view(event: AnalyticsEvent) -> bool:
    return event.event_name == "page_view" and event.path == "/"


def is_case_study_view(event: AnalyticsEvent) -> bool:
    if event.event_name == "page_view" and CASE_STUDY_PATH_RE.match(event.path):
        return True
    return event.event_name == "section_view" and event.section.lower() == "case-studies"


def is_contact_section_view(event: AnalyticsEvent) -> bool:
    return event.event_name == "section_view" and event.section.lower() == "contact"


# ----------------------------
# Labels
# ----------------------------
def day_label(d: date) -> str:
    return f"{d:%b} {d.day}"


def hour_label(dt: datetime) -> str:
    hour12 = dt.hour % 12 or 12
    return f"{hour12} {'AM' if dt.hour < 12 else 'PM'}"


def _start_of_day(d: date) -> datetime:
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


# ----------------------------
# Time series
# ----------------------------
def build_daily_series(
    events: Iterable[AnalyticsEvent],
    days: int,
    now: Optional[datetime] = None,
) -> List[Dict]:
    """
    Exactly `days` UTC calendar-day buckets ending today, zero-filled.
    """
    today = (now or utc_now()).astimezone(timezone.utc).date()
    start = today - timedelta(days=days - 1)
    keys = [start + timedelta(days=i) for i in range(days)]

    counts = {d.isoformat(): 0 for d in keys}
    for event in events:
        key = event.day_key
        if key in counts:
            counts[key] += 1

    return [{"label": day_label(d), "clicks": counts[d.isoformat()]} for d in keys]


def hourly_bucket_start(now: Optional[datetime] = None) -> datetime:
    now = (now or utc_now()).astimezone(timezone.utc)
    return (now - 23 * HOUR).replace(minute=0, second=0, microsecond=0)


def build_hourly_series(
    events: Iterable[AnalyticsEvent],
    now: Optional[datetime] = None,
) -> List[Dict]:
    """24 one-hour buckets; the last one is the current (partial) hour."""
    start = hourly_bucket_start(now)
    counts = [0] * 24

    for event in events:
        offset = event.occurred_at - start
        if offset < timedelta(0):
            continue
        index = int(offset // HOUR)
        if index < 24:
            counts[index] += 1

    return [
        {"label": hour_label(start + i * HOUR), "clicks": counts[i]}
        for i in range(24)
    ]


def build_weekly_trends(
    events: Sequence[AnalyticsEvent],
    now: Optional[datetime] = None,
    weeks: int = 8,
) -> List[Dict]:
    """
    Trailing 7-day windows, oldest first. The newest window ends at the end
    of today. Conversions are contact-destination outbound clicks.
    """
    today = (now or utc_now()).astimezone(timezone.utc).date()
    points = []

    for offset in range(weeks - 1, -1, -1):
        end_day = today - timedelta(days=offset * 7)
        start_day = end_day - timedelta(days=6)
        window_start = _start_of_day(start_day)
        window_end = _start_of_day(end_day) + DAY

        clicks = 0
        conversions = 0
        for event in events:
            if not (window_start <= event.occurred_at < window_end):
                continue
            if is_click_like(event):
                clicks += 1
            if is_contact_click(event):
                conversions += 1

        points.append({"label": day_label(start_day), "clicks": clicks, "conversions": conversions})

    return points
