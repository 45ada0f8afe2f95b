"""Pytest configuration and fixtures."""

import os
from datetime import datetime, timedelta, timezone

import pytest

# Set environment variables before imports
os.environ.pop("DATABASE_URL", None)
os.environ.pop("POSTGRES_URL", None)
os.environ["ANALYTICS_GEO_ENRICHMENT"] = "0"
os.environ["SESSION_SECRET"] = "test-secret"

NOW = datetime(2026, 10, 18, 12, 30, tzinfo=timezone.utc)

DESKTOP_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
BOT_UA = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"


@pytest.fixture(autouse=True)
def isolated_storage(tmp_path, monkeypatch):
    """Every test gets its own file store and no database."""
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("POSTGRES_URL", raising=False)
    monkeypatch.setenv("ANALYTICS_GEO_ENRICHMENT", "0")
    path = tmp_path / "analytics-events.json"
    monkeypatch.setenv("ANALYTICS_EVENTS_PATH", str(path))

    from utils.geo import clear_geo_cache

    clear_geo_cache()
    yield path
    clear_geo_cache()


@pytest.fixture
def make_event():
    """Build a normalised event relative to NOW (minutes_ago) from camelCase overrides."""
    from services.analytics_events import normalize_event

    def _make(event_name="click", minutes_ago=0.0, session_id="s1", **fields):
        meta = fields.pop("meta", {})
        meta.setdefault("userAgent", DESKTOP_UA)
        raw = {
            "occurredAt": (NOW - timedelta(minutes=minutes_ago)).isoformat(),
            "eventName": event_name,
            "sessionId": session_id,
            "path": "/",
            "meta": meta,
        }
        raw.update(fields)
        event = normalize_event(raw, now=NOW)
        assert event is not None
        return event

    return _make


@pytest.fixture
def summarize():
    """Run the summary over in-memory events in store order (newest first)."""
    from services.analytics_summary import get_analytics_summary

    def _summarize(events, days=14):
        ordered = sorted(events, key=lambda e: e.occurred_at, reverse=True)
        return get_analytics_summary(days, events=ordered, now=NOW)

    return _summarize


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from main import app

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
