"""Lightweight configuration helpers for the pairing broker."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


DEFAULT_WA_WEB_URL = "http://waweb:9001"
DEFAULT_SESSIONS_DIR = "./sessions"
FALLBACK_SESSIONS_DIR = "/tmp/pair-sessions"
DEFAULT_SESSION_PREFIX = "RAHEEM-XMD-3>>>"
DEFAULT_CHANNEL_URL = "https://whatsapp.com/channel/0029VbAffhD2ZjChG9DX922r"
DEFAULT_REPO_URL = "https://github.com/Raheem-cm/RAHEEM-XMD-3"


def _coerce_int(value: str | None, default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(str(value).strip() or default)
    except ValueError:
        return default


def _normalize_wa_url(raw: str | None) -> str:
    if not raw:
        return DEFAULT_WA_WEB_URL
    cleaned = raw.strip()
    if not cleaned:
        return DEFAULT_WA_WEB_URL
    return cleaned.rstrip("/") or DEFAULT_WA_WEB_URL


def _parse_duration(raw: str | None, *, default: float) -> float:
    if not raw:
        return default
    cleaned = raw.strip().lower()
    if not cleaned:
        return default
    if cleaned.endswith("s"):
        cleaned = cleaned[:-1]
    try:
        value = float(cleaned)
    except ValueError:
        return default
    if value < 0:
        return default
    return value


def _env_text(name: str, default: str) -> str:
    return (os.getenv(name) or "").strip() or default


@dataclass(frozen=True, slots=True)
class BrokerConfig:
    sessions_dir: Path
    wa_web_url: str
    wa_web_token: str | None
    session_timeout: float
    pairing_code_delay: float
    open_settle_delay: float
    post_send_delay: float
    creds_poll_attempts: int
    creds_poll_interval: float
    session_prefix: str
    bot_name: str
    bot_owner: str
    timezone: str
    channel_url: str
    repo_url: str
    poll_interval: float
    http_timeout: float
    port: int


def _resolve_sessions_dir(raw: str | None) -> Path:
    candidate = Path(raw or DEFAULT_SESSIONS_DIR)
    try:
        candidate.mkdir(parents=True, exist_ok=True)
    except OSError:
        alt = Path(FALLBACK_SESSIONS_DIR)
        alt.mkdir(parents=True, exist_ok=True)
        return alt
    return candidate


def broker_config() -> BrokerConfig:
    sessions_dir = _resolve_sessions_dir(os.getenv("PAIR_SESSIONS_DIR"))
    token = (os.getenv("WA_WEB_TOKEN") or "").strip() or None
    attempts = _coerce_int(os.getenv("PAIR_CREDS_POLL_ATTEMPTS"), default=5)

    return BrokerConfig(
        sessions_dir=sessions_dir,
        wa_web_url=_normalize_wa_url(os.getenv("WA_WEB_URL")),
        wa_web_token=token,
        session_timeout=_parse_duration(os.getenv("PAIR_SESSION_TIMEOUT"), default=120.0),
        pairing_code_delay=_parse_duration(os.getenv("PAIR_CODE_DELAY"), default=1.5),
        open_settle_delay=_parse_duration(os.getenv("PAIR_OPEN_SETTLE_DELAY"), default=5.0),
        post_send_delay=_parse_duration(os.getenv("PAIR_POST_SEND_DELAY"), default=1.0),
        creds_poll_attempts=max(0, attempts),
        creds_poll_interval=_parse_duration(
            os.getenv("PAIR_CREDS_POLL_INTERVAL"), default=1.0
        ),
        session_prefix=_env_text("PAIR_SESSION_PREFIX", DEFAULT_SESSION_PREFIX),
        bot_name=_env_text("PAIR_BOT_NAME", "RAHEEM-XMD-3"),
        bot_owner=_env_text("PAIR_BOT_OWNER", "Raheem-cm"),
        timezone=_env_text("PAIR_TIMEZONE", "Africa/Dar_es_Salaam"),
        channel_url=_env_text("PAIR_CHANNEL_URL", DEFAULT_CHANNEL_URL),
        repo_url=_env_text("PAIR_REPO_URL", DEFAULT_REPO_URL),
        poll_interval=_parse_duration(os.getenv("WA_WEB_POLL_INTERVAL"), default=1.0),
        http_timeout=_parse_duration(os.getenv("PAIR_HTTP_TIMEOUT"), default=10.0),
        port=_coerce_int(os.getenv("PORT"), default=3000),
    )


__all__ = [
    "BrokerConfig",
    "DEFAULT_SESSION_PREFIX",
    "DEFAULT_WA_WEB_URL",
    "broker_config",
]
