"""Tests for device and bot classification."""

import pytest

from utils.user_agent import classify_device, is_bot_user_agent

from conftest import BOT_UA, DESKTOP_UA, IPHONE_UA


@pytest.mark.parametrize(
    "user_agent,expected",
    [
        ("", "unknown"),
        (DESKTOP_UA, "desktop"),
        ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) Gecko/20100101 Firefox/121.0", "desktop"),
        ("Mozilla/5.0 (X11; Linux x86_64) Gecko/20100101 Firefox/121.0", "desktop"),
        (IPHONE_UA, "mobile"),
        ("Mozilla/5.0 (Linux; Android 14; Pixel 8) Chrome/120.0 Mobile Safari/537.36", "mobile"),
        ("Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X) Mobile/15E148", "tablet"),
        ("Mozilla/5.0 (Linux; Android 13; SM-T870) Chrome/120.0 Safari/537.36", "tablet"),
        (BOT_UA, "bot"),
        ("curl/8.4.0", "bot"),
        ("Mozilla/5.0 (X11; Linux x86_64) HeadlessChrome/120.0.0.0", "bot"),
        ("facebookexternalhit/1.1", "bot"),
        ("SomethingElse/1.0", "unknown"),
    ],
)
def test_classify_device(user_agent, expected):
    assert classify_device(user_agent) == expected


def test_bot_signature_wins_over_device_hints():
    """A crawler announcing a mobile UA is still a bot."""
    ua = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0) Mobile Safari (compatible; bingbot/2.0)"
    assert classify_device(ua) == "bot"


def test_is_bot_user_agent():
    assert is_bot_user_agent(BOT_UA) is True
    assert is_bot_user_agent("WhatsApp/2.23.20") is True
    assert is_bot_user_agent(DESKTOP_UA) is False
    assert is_bot_user_agent("") is False
