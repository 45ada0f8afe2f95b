"""Tests for client IP extraction and IP geolocation."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from utils import geo
from utils.config import GEO_CACHE_TTL_SECONDS
from utils.geo import get_client_ip, is_private_or_local_ip, lookup_geo_by_ip


def _response(payload=None, ok=True, status_code=200):
    resp = MagicMock()
    resp.ok = ok
    resp.status_code = status_code
    resp.json.return_value = payload
    return resp


class TestGetClientIp:
    def test_first_forwarded_entry_wins(self):
        headers = {"x-forwarded-for": " 203.0.113.9 , 10.0.0.1", "x-real-ip": "8.8.4.4"}
        assert get_client_ip(headers) == "203.0.113.9"

    def test_vercel_forwarded_header(self):
        assert get_client_ip({"x-vercel-forwarded-for": "1.1.1.1"}) == "1.1.1.1"

    @pytest.mark.parametrize("name", ["x-real-ip", "cf-connecting-ip", "x-client-ip", "fastly-client-ip"])
    def test_single_ip_headers(self, name):
        assert get_client_ip({name: "9.9.9.9"}) == "9.9.9.9"

    def test_no_headers(self):
        assert get_client_ip({}) == ""
        assert get_client_ip(None) == ""


@pytest.mark.parametrize(
    "ip,expected",
    [
        ("", True),
        ("localhost", True),
        ("127.0.0.1", True),
        ("10.1.2.3", True),
        ("192.168.1.20", True),
        ("172.16.0.1", True),
        ("169.254.10.10", True),
        ("::1", True),
        ("fe80::1", True),
        ("fd00::1", True),
        ("garbage", True),
        ("8.8.8.8", False),
        ("172.32.0.1", False),
        ("2606:4700:4700::1111", False),
    ],
)
def test_is_private_or_local_ip(ip, expected):
    assert is_private_or_local_ip(ip) is expected


class TestLookupGeo:
    @pytest.fixture(autouse=True)
    def enable_geo(self, monkeypatch):
        monkeypatch.setenv("ANALYTICS_GEO_ENRICHMENT", "1")

    def test_success_is_cached(self):
        payload = {"success": True, "country_code": "fr", "country": "France", "city": "Paris"}
        with patch("utils.geo.requests.get", return_value=_response(payload)) as mock_get:
            first = lookup_geo_by_ip("8.8.8.8")
            second = lookup_geo_by_ip("8.8.8.8")

        assert first == {"country": "FR", "city": "Paris"}
        assert second == first
        assert mock_get.call_count == 1

    def test_falls_back_to_country_name(self):
        payload = {"success": True, "country": "France", "city": ""}
        with patch("utils.geo.requests.get", return_value=_response(payload)):
            assert lookup_geo_by_ip("8.8.8.8") == {"country": "France", "city": ""}

    def test_private_ip_is_never_looked_up(self):
        with patch("utils.geo.requests.get") as mock_get:
            assert lookup_geo_by_ip("192.168.0.5") is None
        mock_get.assert_not_called()

    def test_disabled_by_env(self, monkeypatch):
        monkeypatch.setenv("ANALYTICS_GEO_ENRICHMENT", "0")
        with patch("utils.geo.requests.get") as mock_get:
            assert lookup_geo_by_ip("8.8.8.8") is None
        mock_get.assert_not_called()

    def test_non_ok_response(self):
        with patch("utils.geo.requests.get", return_value=_response(ok=False, status_code=429)):
            assert lookup_geo_by_ip("8.8.8.8") is None

    def test_provider_reports_failure(self):
        with patch("utils.geo.requests.get", return_value=_response({"success": False})):
            assert lookup_geo_by_ip("8.8.8.8") is None

    def test_timeout(self):
        with patch("utils.geo.requests.get", side_effect=requests.Timeout("slow")):
            assert lookup_geo_by_ip("8.8.8.8") is None

    def test_invalid_json(self):
        resp = _response()
        resp.json.side_effect = ValueError("not json")
        with patch("utils.geo.requests.get", return_value=resp):
            assert lookup_geo_by_ip("8.8.8.8") is None

    def test_failures_are_not_cached(self):
        with patch("utils.geo.requests.get", side_effect=requests.ConnectionError("down")):
            assert lookup_geo_by_ip("8.8.8.8") is None

        payload = {"success": True, "country_code": "DE", "city": "Berlin"}
        with patch("utils.geo.requests.get", return_value=_response(payload)):
            assert lookup_geo_by_ip("8.8.8.8") == {"country": "DE", "city": "Berlin"}

    def test_stale_entry_is_refetched(self):
        payload = {"success": True, "country_code": "FR", "city": "Paris"}
        with patch("utils.geo.requests.get", return_value=_response(payload)) as mock_get:
            with patch("utils.geo.time.time", return_value=1000.0):
                lookup_geo_by_ip("8.8.8.8")
            with patch("utils.geo.time.time", return_value=1000.0 + GEO_CACHE_TTL_SECONDS + 1):
                assert lookup_geo_by_ip("8.8.8.8") == {"country": "FR", "city": "Paris"}

        assert mock_get.call_count == 2

    def test_expired_entries_are_evicted(self):
        payload = {"success": True, "country_code": "US", "city": ""}
        with patch("utils.geo.requests.get", return_value=_response(payload)):
            with patch("utils.geo.time.time", return_value=1000.0):
                lookup_geo_by_ip("8.8.8.8")
                lookup_geo_by_ip("1.1.1.1")
            assert set(geo._geo_cache) == {"8.8.8.8", "1.1.1.1"}

            with patch("utils.geo.time.time", return_value=1000.0 + GEO_CACHE_TTL_SECONDS + 1):
                lookup_geo_by_ip("9.9.9.9")

        assert set(geo._geo_cache) == {"9.9.9.9"}
