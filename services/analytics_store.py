# services/analytics_store.py
"""
Append-only analytics event storage.

Two interchangeable backends sit behind the same small interface:

- DatabaseEventStore: one wide table (`cms_analytics_events`), created on
  first use, read newest-first through the occurred_at index.
- FileEventStore: a single JSON array document, rewritten on every append
  and trimmed to the retention cap.

`append_event` / `read_events` pick the backend on every call: the database
when a connection string is configured and reachable, the file otherwise.
A database outage therefore only downgrades the operation in flight.
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Set

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from database import get_engine, get_sessionmaker
from models import AnalyticsEventRow
from services.analytics_events import AnalyticsEvent, normalize_event
from utils.config import MAX_STORED_EVENTS, database_url, events_file_path

logger = logging.getLogger(__name__)


class EventStore(ABC):
    @abstractmethod
    def append(self, event: AnalyticsEvent) -> None:
        """Persist one normalised event."""

    @abstractmethod
    def read_all(self, limit: int = MAX_STORED_EVENTS) -> List[AnalyticsEvent]:
        """Return up to `limit` most recent events, newest first."""


# -------------------------------------------------------------------
# Relational backend
# -------------------------------------------------------------------
_tables_ready: Set[str] = set()


class DatabaseEventStore(EventStore):
    def __init__(self, url: str):
        self.url = url

    def ensure_table(self) -> None:
        if self.url in _tables_ready:
            return
        # checkfirst: CREATE TABLE / INDEX only when missing
        AnalyticsEventRow.__table__.create(bind=get_engine(self.url), checkfirst=True)
        _tables_ready.add(self.url)

    def append(self, event: AnalyticsEvent) -> None:
        self.ensure_table()
        with get_sessionmaker(self.url)() as db:
            db.add(AnalyticsEventRow(**event.to_row()))
            db.commit()

    def read_all(self, limit: int = MAX_STORED_EVENTS) -> List[AnalyticsEvent]:
        self.ensure_table()
        stmt = (
            select(AnalyticsEventRow)
            .order_by(AnalyticsEventRow.occurred_at.desc())
            .limit(limit)
        )
        with get_sessionmaker(self.url)() as db:
            rows = db.execute(stmt).scalars().all()

        events = []
        for row in rows:
            event = normalize_event(
                {
                    "occurredAt": row.occurred_at,
                    "eventName": row.event_name,
                    "sessionId": row.session_id,
                    "path": row.path,
                    "source": row.source,
                    "sourceContext": row.source_context,
                    "label": row.label,
                    "href": row.href,
                    "section": row.section,
                    "itemId": row.item_id,
                    "itemType": row.item_type,
                    "value": row.value,
                    "durationMs": row.duration_ms,
                    "isBot": row.is_bot,
                    "meta": row.meta,
                }
            )
            if event is not None:
                events.append(event)
        return events


# -------------------------------------------------------------------
# File backend
# -------------------------------------------------------------------
class FileEventStore(EventStore):
    def __init__(self, path: Path, max_events: int = MAX_STORED_EVENTS):
        self.path = Path(path)
        self.max_events = max_events

    def _load(self) -> List[AnalyticsEvent]:
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as e:
            logger.warning("[ANALYTICS] Unreadable event file %s: %r", self.path, e)
            return []

        if not isinstance(payload, list):
            return []

        events = []
        for entry in payload:
            event = normalize_event(entry)
            if event is not None:
                events.append(event)
        return events

    def append(self, event: AnalyticsEvent) -> None:
        events = self._load()
        events.append(event)
        events = events[-self.max_events:]

        self.path.parent.mkdir(parents=True, exist_ok=True)
        body = json.dumps([e.to_dict() for e in events], indent=2, ensure_ascii=False)
        self.path.write_text(body + "\n", encoding="utf-8")

    def read_all(self, limit: int = MAX_STORED_EVENTS) -> List[AnalyticsEvent]:
        if limit <= 0:
            return []
        events = self._load()[-limit:]
        events.reverse()
        return events


# -------------------------------------------------------------------
# Backend selection (evaluated per call, never cached)
# -------------------------------------------------------------------
def database_store() -> Optional[DatabaseEventStore]:
    url = database_url()
    return DatabaseEventStore(url) if url else None


def file_store() -> FileEventStore:
    return FileEventStore(events_file_path())


def active_backend() -> str:
    return "database" if database_url() else "file"


def append_event(event: AnalyticsEvent) -> None:
    """Persist `event`; database first, file on any database failure. Never raises."""
    db_store = database_store()
    if db_store is not None:
        try:
            db_store.append(event)
            return
        except (SQLAlchemyError, ImportError) as e:
            logger.warning("[ANALYTICS] DB write failed, falling back to file store: %r", e)

    try:
        file_store().append(event)
    except OSError:
        logger.exception("[ANALYTICS] File write failed; event dropped")


def read_events(limit: int = MAX_STORED_EVENTS) -> List[AnalyticsEvent]:
    """Most recent events, newest first; database first, file on failure."""
    db_store = database_store()
    if db_store is not None:
        try:
            return db_store.read_all(limit)
        except (SQLAlchemyError, ImportError) as e:
            logger.warning("[ANALYTICS] DB read failed, falling back to file store: %r", e)

    return file_store().read_all(limit)
