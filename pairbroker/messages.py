from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


@dataclass(frozen=True, slots=True)
class Branding:
    bot_name: str
    owner: str
    timezone: str
    channel_url: str
    repo_url: str


def session_string_message(bot_name: str, session_string: str) -> str:
    return (
        f"{bot_name} Session String:\n\n"
        f"```{session_string}```\n\n"
        "*Copy this string and use it to connect your bot.*"
    )


def _local_now(timezone: str, now: Optional[datetime] = None) -> datetime:
    try:
        zone = ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        zone = ZoneInfo("UTC")
    if now is None:
        return datetime.now(zone)
    return now.astimezone(zone)


def welcome_message(branding: Branding, *, now: Optional[datetime] = None) -> str:
    local = _local_now(branding.timezone, now)
    time_text = local.strftime("%H:%M:%S")
    date_text = local.strftime("%d/%m/%Y")
    name = branding.bot_name
    return (
        "🟢  *BOT SUCCESSFULLY CONNECTED 🟢!*\n"
        "\n"
        f"╭━━ 『 {name} INITIALIZED 』\n"
        f"┃  ⚡ BOT NAME: {name}\n"
        f"┃  👑 OWNER: {branding.owner}\n"
        "┃  ⚙️ MODE: *private*\n"
        "┃  🎯 PREFIX: *.*\n"
        f"┃  ⏳ TIME: *{time_text}*\n"
        f"┃  📆 DATE: {date_text}\n"
        "╰━━━━━━━━━━━━━━━━━━━╯\n"
        "\n"
        "⚠️ REPORT ANY GLITCHES DIRECTLY TO THE OWNER.\n"
        "\n"
        "╭──────────────────★\n"
        f"│ POWERED BY {branding.owner}\n"
        "╰──────────────────★\n"
        f"📢 CHANNEL: {branding.channel_url}\n"
        f"🛠️ DEPLOY YOUR BOT: {branding.repo_url}\n"
        "\n"
        f"🔋  SYSTEM STATUS: {name} 100% 🧠 A.I READY • MULTI DEVICE • STABLE RELEASE\n"
    )


__all__ = ["Branding", "session_string_message", "welcome_message"]
