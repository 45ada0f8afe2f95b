# services/analytics_summary.py
"""
Analytics summary for the admin dashboard.

Everything here is recomputed on each request from the retained event window
(`read_events`); nothing is cached or persisted. Bots and admin/API paths
are filtered out before almost every metric; bot stats and the content-impact
publish marker look at the unfiltered set.
"""
from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from services.analytics_events import AnalyticsEvent
from services.analytics_metrics import (
    DAY,
    build_daily_series,
    build_hourly_series,
    build_weekly_trends,
    is_case_study_view,
    is_click_like,
    is_contact_click,
    is_contact_section_view,
    is_landing_view,
    is_public_path,
    mean,
    percentile,
    safe_division,
    to_rate,
)
from services.analytics_store import read_events
from utils.config import (
    BOT_SHARE_ALERT_PCT,
    CONTACT_RATE_ALERT_PCT,
    CONTACT_RATE_MIN_SESSIONS,
    DEFAULT_SUMMARY_DAYS,
    MAX_STORED_EVENTS,
    MAX_SUMMARY_DAYS,
    MIN_SUMMARY_DAYS,
    POOR_CLS,
    POOR_INP_MS,
    POOR_LCP_MS,
    SPIKE_MIN_CLICKS,
    SPIKE_STDDEV_MULTIPLIER,
)
from utils.sanitize import to_iso, utc_now

logger = logging.getLogger(__name__)

REALTIME_WINDOW = timedelta(minutes=5)
TOP_N = 12
TOP_CONTENT_N = 20
RECENT_EVENTS_N = 40


def clamp_days(days: float) -> int:
    if days is None or not math.isfinite(days):
        days = DEFAULT_SUMMARY_DAYS
    return max(MIN_SUMMARY_DAYS, min(MAX_SUMMARY_DAYS, math.floor(days)))


def group_by_session(events: Sequence[AnalyticsEvent]) -> Dict[str, List[AnalyticsEvent]]:
    """Session id -> that session's events in chronological order."""
    sessions: Dict[str, List[AnalyticsEvent]] = defaultdict(list)
    for event in events:
        sessions[event.session_id].append(event)
    for session_events in sessions.values():
        session_events.sort(key=lambda e: e.occurred_at)
    return dict(sessions)


# --------------------------------------------------
# Clicks
# --------------------------------------------------
def summarize_targets(click_events: Sequence[AnalyticsEvent]) -> Dict[str, Any]:
    targets: Dict[tuple, Dict[str, Any]] = {}
    sources: Dict[str, int] = defaultdict(int)

    for event in click_events:
        key = (event.href, event.label)
        target = targets.get(key)
        if target is None:
            target = targets[key] = {
                "href": event.href,
                "label": event.label or event.href or event.source_context,
                "clicks": 0,
                "days": set(),
            }
        target["clicks"] += 1
        target["days"].add(event.day_key)

        sources[event.source_context or event.source] += 1

    top_targets = [
        {
            "href": t["href"],
            "label": t["label"],
            "clicks": t["clicks"],
            "uniqueDays": len(t["days"]),
        }
        for t in sorted(targets.values(), key=lambda t: t["clicks"], reverse=True)[:TOP_N]
    ]

    source_breakdown = sorted(
        ({"source": source, "clicks": clicks} for source, clicks in sources.items()),
        key=lambda row: row["clicks"],
        reverse=True,
    )[:TOP_N]

    return {
        "uniqueTargets": len(targets),
        "topTargets": top_targets,
        "sourceBreakdown": source_breakdown,
    }


# --------------------------------------------------
# Funnel
# --------------------------------------------------
def _first_at_or_after(
    events: Sequence[AnalyticsEvent],
    predicate: Callable[[AnalyticsEvent], bool],
    not_before: Optional[datetime],
) -> Optional[AnalyticsEvent]:
    for event in events:
        if not_before is not None and event.occurred_at < not_before:
            continue
        if predicate(event):
            return event
    return None


def session_funnel_stage(session_events: Sequence[AnalyticsEvent]) -> int:
    """
    How far one session got, in order:
    0 none, 1 landing, 2 case study, 3 contact section, 4 contact click.
    Each marker must occur no earlier than the previous one.
    """
    stage = 0
    not_before = None
    for predicate in (is_landing_view, is_case_study_view, is_contact_section_view, is_contact_click):
        marker = _first_at_or_after(session_events, predicate, not_before)
        if marker is None:
            break
        stage += 1
        not_before = marker.occurred_at
    return stage


def build_funnel(sessions: Dict[str, List[AnalyticsEvent]]) -> Dict[str, Any]:
    reached = [0, 0, 0, 0]
    for session_events in sessions.values():
        stage = session_funnel_stage(session_events)
        for i in range(stage):
            reached[i] += 1

    landing, case_study, contact_section, contact_click = reached
    return {
        "landingSessions": landing,
        "caseStudySessions": case_study,
        "contactSectionSessions": contact_section,
        "contactClickSessions": contact_click,
        "landingToCaseRate": to_rate(case_study, max(1, landing)),
        "caseToContactRate": to_rate(contact_section, max(1, case_study)),
        "contactToClickRate": to_rate(contact_click, max(1, contact_section)),
    }


# --------------------------------------------------
# Content, outbound, scroll, sections
# --------------------------------------------------
def build_top_content(
    sessions: Dict[str, List[AnalyticsEvent]],
    contact_sessions: set,
) -> List[Dict[str, Any]]:
    stats: Dict[str, Dict[str, Any]] = {}

    for session_id, session_events in sessions.items():
        for event in session_events:
            if event.event_name not in ("gallery_item_open", "gallery_item_view_time") or not event.item_id:
                continue

            item_type = event.item_type or "gallery"
            key = f"{item_type}::{event.item_id}"
            stat = stats.get(key)
            if stat is None:
                stat = stats[key] = {
                    "itemId": event.item_id,
                    "label": event.label or event.item_id,
                    "itemType": item_type,
                    "opens": 0,
                    "totalViewMs": 0,
                    "sessions": set(),
                }

            if event.event_name == "gallery_item_open":
                stat["opens"] += 1
            else:
                stat["totalViewMs"] += max(0, event.duration_ms)
            stat["sessions"].add(session_id)

    rows = []
    for stat in stats.values():
        follow_through = len(stat["sessions"] & contact_sessions)
        rows.append(
            {
                "itemId": stat["itemId"],
                "label": stat["label"],
                "itemType": stat["itemType"],
                "opens": stat["opens"],
                "avgViewSeconds": round(safe_division(stat["totalViewMs"], max(1, stat["opens"])) / 1000, 2),
                "contactFollowThroughRate": to_rate(follow_through, max(1, len(stat["sessions"]))),
            }
        )

    rows.sort(key=lambda row: row["opens"], reverse=True)
    return rows[:TOP_CONTENT_N]


def build_outbound_quality(events: Sequence[AnalyticsEvent]) -> List[Dict[str, Any]]:
    outbound: Dict[tuple, Dict[str, Any]] = {}
    for event in events:
        if event.event_name != "outbound_click":
            continue
        source_context = event.source_context or "unknown"
        row = outbound.setdefault(
            (event.href, source_context),
            {"href": event.href, "sourceContext": source_context, "clicks": 0, "contactClicks": 0},
        )
        row["clicks"] += 1
        if is_contact_click(event):
            row["contactClicks"] += 1

    return sorted(outbound.values(), key=lambda row: row["clicks"], reverse=True)[:TOP_CONTENT_N]


def build_scroll_depth(events: Sequence[AnalyticsEvent]) -> List[Dict[str, Any]]:
    # (session, path) -> deepest reported scroll
    max_depth: Dict[tuple, float] = {}
    for event in events:
        if event.event_name != "scroll_depth" or not event.path:
            continue
        key = (event.session_id, event.path)
        max_depth[key] = max(max_depth.get(key, 0), event.value)

    by_path: Dict[str, List[float]] = defaultdict(list)
    for (_, path), depth in max_depth.items():
        by_path[path].append(depth)

    rows = [
        {
            "path": path,
            "avgDepth": round(mean(values), 1),
            "p75Depth": round(percentile(values, 75), 1),
            "sessions": len(values),
        }
        for path, values in by_path.items()
    ]
    rows.sort(key=lambda row: row["sessions"], reverse=True)
    return rows[:TOP_CONTENT_N]


def build_section_visibility(
    events: Sequence[AnalyticsEvent],
    contact_sessions: set,
) -> List[Dict[str, Any]]:
    sections: Dict[str, Dict[str, Any]] = {}
    for event in events:
        if event.event_name != "section_view" or not event.section:
            continue
        stat = sections.setdefault(event.section.lower(), {"views": 0, "sessions": set()})
        stat["views"] += 1
        stat["sessions"].add(event.session_id)

    rows = []
    for section, stat in sections.items():
        drop_offs = len(stat["sessions"] - contact_sessions)
        rows.append(
            {
                "section": section,
                "views": stat["views"],
                "uniqueSessions": len(stat["sessions"]),
                "dropOffRate": to_rate(drop_offs, len(stat["sessions"])),
            }
        )

    rows.sort(key=lambda row: row["uniqueSessions"], reverse=True)
    return rows


# --------------------------------------------------
# Audience segments
# --------------------------------------------------
def _segment_rows(buckets: Dict[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
    rows = [
        {
            "label": label,
            "sessions": len(bucket["sessions"]),
            "clicks": bucket["clicks"],
            "contactClicks": bucket["contactClicks"],
        }
        for label, bucket in buckets.items()
    ]
    rows.sort(key=lambda row: row["sessions"], reverse=True)
    return rows[:TOP_N]


def build_audience_segments(sessions: Dict[str, List[AnalyticsEvent]]) -> Dict[str, Any]:
    """
    Sessions are bucketed by their first event's traffic source, device and
    country; the session's clicks and contact clicks count toward those buckets.
    """
    dimensions: Dict[str, Callable[[AnalyticsEvent], str]] = {
        "bySource": lambda e: e.meta.utm_source or e.meta.referrer_host or "direct",
        "byDevice": lambda e: e.meta.device or "unknown",
        "byCountry": lambda e: e.meta.country or "unknown",
    }
    buckets: Dict[str, Dict[str, Dict[str, Any]]] = {name: {} for name in dimensions}
    contact_by_hour: Dict[int, int] = defaultdict(int)

    for session_id, session_events in sessions.items():
        if not session_events:
            continue

        clicks = sum(1 for e in session_events if is_click_like(e))
        contact_clicks = [e for e in session_events if is_contact_click(e)]
        for event in contact_clicks:
            contact_by_hour[event.occurred_at.hour] += 1

        first = session_events[0]
        for name, label_of in dimensions.items():
            bucket = buckets[name].setdefault(
                label_of(first), {"sessions": set(), "clicks": 0, "contactClicks": 0}
            )
            bucket["sessions"].add(session_id)
            bucket["clicks"] += clicks
            bucket["contactClicks"] += len(contact_clicks)

    return {
        "byDevice": _segment_rows(buckets["byDevice"]),
        "bySource": _segment_rows(buckets["bySource"]),
        "byCountry": _segment_rows(buckets["byCountry"]),
        "byHour": [{"hour": f"{hour:02d}:00", "clicks": contact_by_hour.get(hour, 0)} for hour in range(24)],
    }


# --------------------------------------------------
# Content impact around the latest CMS publish
# --------------------------------------------------
def _landing_ctr(events: Sequence[AnalyticsEvent], start: datetime, end: datetime) -> float:
    landing_views = 0
    action_clicks = 0
    for event in events:
        if not (start <= event.occurred_at < end):
            continue
        if is_landing_view(event):
            landing_views += 1
        if event.event_name == "folder_tile_click" or is_contact_click(event):
            action_clicks += 1
    return safe_division(action_clicks, max(1, landing_views))


def build_content_impact(
    all_events: Sequence[AnalyticsEvent],
    public_events: Sequence[AnalyticsEvent],
    now: datetime,
) -> Dict[str, Any]:
    publishes = [e for e in all_events if e.event_name == "cms_publish"]
    if not publishes:
        return {"latestPublishAt": None, "beforeCtr": 0, "afterCtr": 0, "deltaPct": 0}

    published_at = max(e.occurred_at for e in publishes)
    window = 7 * DAY
    before = _landing_ctr(public_events, published_at - window, published_at)
    after = _landing_ctr(public_events, published_at, min(now, published_at + window))
    delta = round(((after - before) / before) * 100, 2) if before > 0 else 0

    return {
        "latestPublishAt": to_iso(published_at),
        "beforeCtr": round(before * 100, 2),
        "afterCtr": round(after * 100, 2),
        "deltaPct": delta,
    }


# --------------------------------------------------
# Web vitals vs. bounce
# --------------------------------------------------
def build_performance_vitals(
    events: Sequence[AnalyticsEvent],
    page_views_by_session: Dict[str, int],
    contact_sessions: set,
) -> Dict[str, Any]:
    def bounced(session_id: str) -> bool:
        return page_views_by_session.get(session_id, 0) <= 1 and session_id not in contact_sessions

    by_page: Dict[str, Dict[str, Any]] = {}
    # session -> worst observed value per metric
    session_vitals: Dict[str, Dict[str, float]] = {}

    for event in events:
        if event.event_name != "web_vital":
            continue
        metric = event.meta.metric_name
        page = by_page.setdefault(event.path or "/", {"LCP": [], "INP": [], "CLS": [], "sessions": set()})
        page["sessions"].add(event.session_id)

        worst = session_vitals.setdefault(event.session_id, {"LCP": 0, "INP": 0, "CLS": 0})
        if metric in ("LCP", "INP", "CLS"):
            page[metric].append(event.value)
            worst[metric] = max(worst[metric], event.value)

    rows = []
    for path, page in by_page.items():
        page_sessions = page["sessions"]
        rows.append(
            {
                "path": path,
                "lcp": round(mean(page["LCP"]), 2),
                "inp": round(mean(page["INP"]), 2),
                "cls": round(mean(page["CLS"]), 3),
                "samples": len(page_sessions),
                "bounceRate": to_rate(sum(1 for s in page_sessions if bounced(s)), max(1, len(page_sessions))),
            }
        )
    rows.sort(key=lambda row: row["samples"], reverse=True)

    poor, good = [], []
    for session_id, worst in session_vitals.items():
        is_poor = worst["LCP"] > POOR_LCP_MS or worst["INP"] > POOR_INP_MS or worst["CLS"] > POOR_CLS
        (poor if is_poor else good).append(session_id)

    return {
        "byPage": rows[:TOP_CONTENT_N],
        "correlation": {
            "poorVitalsBounceRate": to_rate(sum(1 for s in poor if bounced(s)), max(1, len(poor))),
            "goodVitalsBounceRate": to_rate(sum(1 for s in good if bounced(s)), max(1, len(good))),
        },
    }


# --------------------------------------------------
# Anomalies
# --------------------------------------------------
def detect_anomalies(
    hourly_clicks: Sequence[Dict[str, Any]],
    bot_share_pct: float,
    funnel: Dict[str, Any],
) -> List[str]:
    alerts = []

    values = [point["clicks"] for point in hourly_clicks]
    if len(values) >= 6:
        latest = values[-1]
        baseline = values[:-1]
        baseline_mean = mean(baseline)
        variance = sum((v - baseline_mean) ** 2 for v in baseline) / max(1, len(baseline))
        std_dev = math.sqrt(variance)
        if latest > baseline_mean + std_dev * SPIKE_STDDEV_MULTIPLIER and latest > SPIKE_MIN_CLICKS:
            alerts.append("Traffic spike detected in the latest hour compared with baseline.")

    if bot_share_pct > BOT_SHARE_ALERT_PCT:
        alerts.append("High bot share detected. Review filters before making traffic decisions.")

    if (
        funnel["contactToClickRate"] < CONTACT_RATE_ALERT_PCT
        and funnel["contactSectionSessions"] > CONTACT_RATE_MIN_SESSIONS
    ):
        alerts.append(f"Contact conversion from section view to click is below {CONTACT_RATE_ALERT_PCT:g}%.")

    return alerts


def recent_event_row(event: AnalyticsEvent) -> Dict[str, str]:
    return {
        "occurredAt": event.occurred_at_iso,
        "eventName": event.event_name,
        "sourceContext": event.source_context,
        "label": event.label,
        "href": event.href,
        "path": event.path,
    }


# --------------------------------------------------
# SUMMARY
# --------------------------------------------------
def get_analytics_summary(
    days: float = DEFAULT_SUMMARY_DAYS,
    events: Optional[Sequence[AnalyticsEvent]] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Full dashboard summary. `events` must be newest-first (the store's read
    order); when omitted the retained window is read from the store.
    """
    bounded_days = clamp_days(days)
    now = (now or utc_now()).astimezone(timezone.utc)
    if events is None:
        events = read_events(MAX_STORED_EVENTS)

    total_events = len(events)
    public_events = [e for e in events if not e.is_bot and is_public_path(e.path)]
    click_events = [e for e in public_events if is_click_like(e)]

    realtime_since = now - REALTIME_WINDOW
    realtime_sessions = {
        e.session_id
        for e in public_events
        if e.occurred_at >= realtime_since and e.event_name in ("page_view", "page_heartbeat")
    }
    last_24h_since = now - DAY
    last_24h_clicks = sum(1 for e in click_events if e.occurred_at >= last_24h_since)

    targets = summarize_targets(click_events)
    hourly_clicks = build_hourly_series(click_events, now=now)

    sessions = group_by_session(public_events)
    contact_sessions = {s for s, session_events in sessions.items() if any(is_contact_click(e) for e in session_events)}
    page_views_by_session = {
        s: sum(1 for e in session_events if e.event_name == "page_view")
        for s, session_events in sessions.items()
    }

    funnel = build_funnel(sessions)

    bot_events = sum(1 for e in events if e.is_bot)
    bot_share_pct = to_rate(bot_events, max(1, total_events))

    logger.debug(
        "Analytics summary over %s events (%s public, %s sessions, %s days)",
        total_events, len(public_events), len(sessions), bounded_days,
    )

    return {
        "generatedAt": to_iso(now),
        "realTimeViews": len(realtime_sessions),
        "totalEvents": total_events,
        "totalClicks": len(click_events),
        "last24hClicks": last_24h_clicks,
        "uniqueTargets": targets["uniqueTargets"],
        "topTargets": targets["topTargets"],
        "sourceBreakdown": targets["sourceBreakdown"],
        "dailyClicks": build_daily_series(click_events, bounded_days, now=now),
        "hourlyClicks": hourly_clicks,
        "weeklyTrends": build_weekly_trends(click_events, now=now),
        "conversionFunnel": funnel,
        "topContent": build_top_content(sessions, contact_sessions),
        "outboundQuality": build_outbound_quality(public_events),
        "scrollDepthByPage": build_scroll_depth(public_events),
        "sectionVisibility": build_section_visibility(public_events, contact_sessions),
        "audienceSegments": build_audience_segments(sessions),
        "contentImpact": build_content_impact(events, public_events, now),
        "performanceVitals": build_performance_vitals(public_events, page_views_by_session, contact_sessions),
        "anomalyAlerts": detect_anomalies(hourly_clicks, bot_share_pct, funnel),
        "botStats": {
            "filteredEvents": bot_events,
            "botSharePct": bot_share_pct,
        },
        "recentEvents": [recent_event_row(e) for e in public_events[:RECENT_EVENTS_N]],
    }
