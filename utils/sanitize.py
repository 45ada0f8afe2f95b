# utils/sanitize.py
from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from urllib.parse import urlparse

# Client clocks drift; anything further ahead than this is clamped to "now"
MAX_FUTURE_SKEW = timedelta(minutes=5)


def sanitize_text(value: Any, max_length: int) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip()[:max_length]


def to_finite_number(value: Any) -> float:
    """
    Tolerant numeric parse: finite numbers pass through, numeric strings are
    parsed, everything else (bools, NaN, inf, junk) becomes 0.
    """
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            # ints past float range
            return 0
        return number if math.isfinite(number) else 0
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        try:
            parsed = float(text)
        except ValueError:
            return 0
        return parsed if math.isfinite(parsed) else 0
    return 0


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or datetime) into an aware UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        # offset pushes the instant outside the representable range
        return None


def safe_date(value: Any, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Returns None for anything unparseable; clamps timestamps claimed more than
    five minutes in the future to now.
    """
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    now = now or utc_now()
    if parsed > now + MAX_FUTURE_SKEW:
        return now
    return parsed


def to_iso(dt: datetime) -> str:
    """UTC ISO string with millisecond precision and a Z suffix."""
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_host(value: str) -> str:
    if not value:
        return ""
    try:
        return (urlparse(value).hostname or "").lower()
    except ValueError:
        return ""
