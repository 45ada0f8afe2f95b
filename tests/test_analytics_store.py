"""Tests for the file and database event stores and their fallback."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from services.analytics_events import normalize_event
from services.analytics_store import (
    DatabaseEventStore,
    FileEventStore,
    active_backend,
    append_event,
    database_store,
    read_events,
)

from conftest import DESKTOP_UA, IPHONE_UA

# Well in the past so re-normalisation on read never clamps to the wall clock
BASE = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def _event(minutes=0, name="click", **fields):
    raw = {
        "occurredAt": (BASE + timedelta(minutes=minutes)).isoformat(),
        "eventName": name,
        "sessionId": "sess-1",
        "path": "/apps",
        "source": "outbound",
        "label": "Repo",
        "href": "https://github.com/example",
        "value": 12.5,
        "durationMs": 340,
        "meta": {"userAgent": DESKTOP_UA, "country": "US", "utmCampaign": "launch"},
    }
    raw.update(fields)
    return normalize_event(raw)


class TestFileEventStore:
    def test_round_trip(self, tmp_path):
        store = FileEventStore(tmp_path / "events.json")
        event = _event()

        store.append(event)

        assert store.read_all() == [event]

    def test_file_is_pretty_printed_camel_case(self, tmp_path):
        path = tmp_path / "events.json"
        FileEventStore(path).append(_event())

        text = path.read_text(encoding="utf-8")
        assert text.endswith("\n")
        entries = json.loads(text)
        assert entries[0]["eventName"] == "click"
        assert entries[0]["meta"]["utmCampaign"] == "launch"
        assert entries[0]["occurredAt"] == "2025-03-01T09:00:00.000Z"

    def test_newest_first(self, tmp_path):
        store = FileEventStore(tmp_path / "events.json")
        for minutes in range(3):
            store.append(_event(minutes=minutes))

        times = [e.occurred_at for e in store.read_all()]
        assert times == sorted(times, reverse=True)

    def test_limit(self, tmp_path):
        store = FileEventStore(tmp_path / "events.json")
        for minutes in range(5):
            store.append(_event(minutes=minutes))

        latest = store.read_all(limit=2)
        assert [e.occurred_at for e in latest] == [BASE + timedelta(minutes=4), BASE + timedelta(minutes=3)]
        assert store.read_all(limit=0) == []

    def test_retention_keeps_newest(self, tmp_path):
        path = tmp_path / "events.json"
        store = FileEventStore(path, max_events=3)
        for minutes in range(5):
            store.append(_event(minutes=minutes))

        assert len(json.loads(path.read_text(encoding="utf-8"))) == 3
        assert [e.occurred_at for e in store.read_all()][-1] == BASE + timedelta(minutes=2)

    def test_missing_file(self, tmp_path):
        assert FileEventStore(tmp_path / "nope" / "events.json").read_all() == []

    @pytest.mark.parametrize("body", ["{not json", '{"events": []}', ""])
    def test_corrupt_file_reads_as_empty(self, tmp_path, body):
        path = tmp_path / "events.json"
        path.write_text(body, encoding="utf-8")
        assert FileEventStore(path).read_all() == []

    def test_invalid_entries_are_skipped(self, tmp_path):
        path = tmp_path / "events.json"
        good = _event().to_dict()
        path.write_text(json.dumps([good, {"eventName": "x"}, "junk"]), encoding="utf-8")

        events = FileEventStore(path).read_all()
        assert len(events) == 1
        assert events[0].to_dict() == good

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "events.json"
        FileEventStore(path).append(_event())
        assert path.exists()


class TestDatabaseEventStore:
    def test_round_trip_sqlite(self, tmp_path):
        store = DatabaseEventStore(f"sqlite:///{tmp_path}/events.db")
        first = _event(minutes=0)
        second = _event(minutes=5, name="page_view", meta={"userAgent": IPHONE_UA, "city": "Lisbon"})

        store.append(first)
        store.append(second)

        assert store.read_all() == [second, first]

    def test_limit(self, tmp_path):
        store = DatabaseEventStore(f"sqlite:///{tmp_path}/events.db")
        for minutes in range(4):
            store.append(_event(minutes=minutes))

        latest = store.read_all(limit=1)
        assert len(latest) == 1
        assert latest[0].occurred_at == BASE + timedelta(minutes=3)


class TestBackendSelection:
    def test_file_when_no_database(self, isolated_storage):
        event = _event()

        assert active_backend() == "file"
        assert database_store() is None

        append_event(event)

        assert isolated_storage.exists()
        assert read_events() == [event]

    def test_database_when_configured(self, tmp_path, monkeypatch, isolated_storage):
        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path}/events.db")
        event = _event()

        assert active_backend() == "database"
        append_event(event)

        assert read_events() == [event]
        assert not isolated_storage.exists()

    def test_postgres_url_takes_precedence(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite:///ignored.db")
        monkeypatch.setenv("POSTGRES_URL", "postgres://user:pw@db.example.com/site")
        assert database_store().url == "postgres://user:pw@db.example.com/site"

    def test_unreachable_database_falls_back_to_file(self, monkeypatch, isolated_storage):
        monkeypatch.setenv("DATABASE_URL", "sqlite:////nonexistent-dir-xyz/sub/events.db")
        event = _event()

        append_event(event)

        assert isolated_storage.exists()
        assert read_events() == [event]

    def test_backend_is_chosen_per_call(self, tmp_path, monkeypatch, isolated_storage):
        file_event = _event(minutes=1)
        append_event(file_event)

        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path}/events.db")
        db_event = _event(minutes=2)
        append_event(db_event)
        assert read_events() == [db_event]

        monkeypatch.delenv("DATABASE_URL")
        assert read_events() == [file_event]
