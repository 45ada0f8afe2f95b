import os
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


# -------------------------------------------------------------------
# Storage
# -------------------------------------------------------------------
MAX_STORED_EVENTS = _env_int("ANALYTICS_MAX_EVENTS", 25000)
DEFAULT_EVENTS_PATH = "data/analytics-events.json"


def database_url() -> Optional[str]:
    """
    Connection string for the relational backend, read on every call so the
    store never pins a backend for the process lifetime.
    POSTGRES_URL wins over DATABASE_URL.
    """
    url = (os.getenv("POSTGRES_URL") or os.getenv("DATABASE_URL") or "").strip()
    return url or None


def events_file_path() -> Path:
    return Path((os.getenv("ANALYTICS_EVENTS_PATH") or DEFAULT_EVENTS_PATH).strip())


# -------------------------------------------------------------------
# Geo enrichment
# -------------------------------------------------------------------
GEO_LOOKUP_URL = (os.getenv("ANALYTICS_GEO_LOOKUP_URL") or "https://ipwho.is").rstrip("/")
GEO_LOOKUP_TIMEOUT_SECONDS = _env_float("ANALYTICS_GEO_TIMEOUT_SECONDS", 1.2)
GEO_CACHE_TTL_SECONDS = _env_int("ANALYTICS_GEO_CACHE_TTL_SECONDS", 6 * 60 * 60)


def geo_enrichment_enabled() -> bool:
    return os.getenv("ANALYTICS_GEO_ENRICHMENT", "").strip() != "0"


# -------------------------------------------------------------------
# Aggregation
# -------------------------------------------------------------------
DEFAULT_SUMMARY_DAYS = 14
MIN_SUMMARY_DAYS = 7
MAX_SUMMARY_DAYS = 60

# Outbound hrefs pointing at these hosts count as "contact" conversions
SCHEDULING_DOMAINS: Tuple[str, ...] = tuple(
    d.strip().lower()
    for d in (os.getenv("ANALYTICS_SCHEDULING_DOMAINS") or "cal.com").split(",")
    if d.strip()
)

# Anomaly thresholds (env override friendly)
SPIKE_STDDEV_MULTIPLIER = _env_float("ANALYTICS_SPIKE_STDDEV_MULTIPLIER", 3.0)
SPIKE_MIN_CLICKS = _env_int("ANALYTICS_SPIKE_MIN_CLICKS", 20)
BOT_SHARE_ALERT_PCT = _env_float("ANALYTICS_BOT_SHARE_ALERT_PCT", 35.0)
CONTACT_RATE_ALERT_PCT = _env_float("ANALYTICS_CONTACT_RATE_ALERT_PCT", 10.0)
CONTACT_RATE_MIN_SESSIONS = _env_int("ANALYTICS_CONTACT_RATE_MIN_SESSIONS", 20)

# Web vitals "poor" thresholds
POOR_LCP_MS = 2500
POOR_INP_MS = 200
POOR_CLS = 0.1


# -------------------------------------------------------------------
# Admin session
# -------------------------------------------------------------------
SESSION_SECRET = os.getenv("SESSION_SECRET") or "fallbacksecret"
CMS_ADMIN_SESSION_KEY = os.getenv("CMS_ADMIN_SESSION_KEY", "cms_admin")
CMS_ADMIN_ROLES = {
    r.strip().lower()
    for r in (os.getenv("CMS_ADMIN_ROLES") or "admin,super,superuser").split(",")
    if r.strip()
}
