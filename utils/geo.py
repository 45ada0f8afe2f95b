# utils/geo.py
from __future__ import annotations

import ipaddress
import logging
import time
from typing import Dict, Mapping, Optional, Tuple
from urllib.parse import quote

import requests

from utils.config import (
    GEO_CACHE_TTL_SECONDS,
    GEO_LOOKUP_TIMEOUT_SECONDS,
    GEO_LOOKUP_URL,
    geo_enrichment_enabled,
)
from utils.sanitize import sanitize_text

logger = logging.getLogger(__name__)

# ip -> (country, city, expires_at); best effort, process-local
_geo_cache: Dict[str, Tuple[str, str, float]] = {}

_FORWARDED_HEADERS = ("x-forwarded-for", "x-vercel-forwarded-for")
_DIRECT_IP_HEADERS = ("x-real-ip", "cf-connecting-ip", "x-client-ip", "fastly-client-ip")


def _header(headers: Optional[Mapping[str, str]], name: str) -> str:
    if not headers:
        return ""
    return (headers.get(name) or "").strip()


def get_client_ip(headers: Optional[Mapping[str, str]]) -> str:
    """
    First non-empty entry of the forwarding chain, then the single-IP headers
    proxies and CDNs inject.
    """
    for name in _FORWARDED_HEADERS:
        forwarded = _header(headers, name)
        if forwarded:
            first = next((part.strip() for part in forwarded.split(",") if part.strip()), "")
            if first:
                return first
            break

    for name in _DIRECT_IP_HEADERS:
        value = _header(headers, name)
        if value:
            return value
    return ""


def is_private_or_local_ip(ip: str) -> bool:
    value = (ip or "").strip().lower()
    if not value or value == "localhost":
        return True
    try:
        addr = ipaddress.ip_address(value)
    except ValueError:
        # not an address we can geolocate
        return True
    return addr.is_private or addr.is_loopback or addr.is_link_local or addr.is_unspecified


def clear_geo_cache() -> None:
    _geo_cache.clear()


def _prune_geo_cache() -> None:
    now = time.time()
    for ip in [ip for ip, entry in _geo_cache.items() if entry[2] <= now]:
        _geo_cache.pop(ip, None)


def lookup_geo_by_ip(ip: str) -> Optional[Dict[str, str]]:
    """
    Returns {"country", "city"} or None. Never raises: timeouts, non-200s and
    malformed bodies all mean "no geo data".
    """
    if not ip or is_private_or_local_ip(ip) or not geo_enrichment_enabled():
        return None

    cached = _geo_cache.get(ip)
    if cached:
        if cached[2] > time.time():
            return {"country": cached[0], "city": cached[1]}
        _geo_cache.pop(ip, None)

    try:
        resp = requests.get(
            f"{GEO_LOOKUP_URL}/{quote(ip, safe='')}",
            headers={"accept": "application/json"},
            timeout=GEO_LOOKUP_TIMEOUT_SECONDS,
        )
        if not resp.ok:
            logger.debug("[GEO] lookup for %s returned %s", ip, resp.status_code)
            return None
        payload = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.debug("[GEO] lookup for %s failed: %r", ip, e)
        return None

    if not isinstance(payload, dict) or payload.get("success") is False:
        return None

    country_code = sanitize_text(payload.get("country_code"), 8).upper()
    country_name = sanitize_text(payload.get("country"), 80)
    city = sanitize_text(payload.get("city"), 120)
    country = country_code or country_name

    if not country and not city:
        return None

    _prune_geo_cache()
    _geo_cache[ip] = (country, city, time.time() + GEO_CACHE_TTL_SECONDS)
    return {"country": country, "city": city}
