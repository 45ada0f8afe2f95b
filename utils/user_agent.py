# utils/user_agent.py
import re

# -----------------------------
# Patterns (checked in order)
# -----------------------------
BOT_RE = re.compile(
    r"bot|spider|crawl|headless|curl|wget|preview|monitor|uptime|slurp|facebookexternalhit|discordbot|whatsapp|telegram",
    re.I,
)
_TABLET_RE = re.compile(r"ipad|tablet|nexus 7|nexus 10|sm-t|kindle")
_MOBILE_RE = re.compile(r"iphone|android|mobile|ipod")
_DESKTOP_RE = re.compile(r"macintosh|windows|linux")


def is_bot_user_agent(user_agent: str) -> bool:
    return bool(user_agent and BOT_RE.search(user_agent))


def classify_device(user_agent: str) -> str:
    ua = (user_agent or "").lower()
    if not ua:
        return "unknown"
    if BOT_RE.search(ua):
        return "bot"
    if _TABLET_RE.search(ua):
        return "tablet"
    if _MOBILE_RE.search(ua):
        return "mobile"
    if _DESKTOP_RE.search(ua):
        return "desktop"
    return "unknown"
