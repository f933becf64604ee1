from __future__ import annotations

import logging
import re
from typing import Any, Optional, Union

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError

from config import broker_config

from .manager import PairingBroker
from .messages import Branding
from .snapshots import mask_phone
from .waweb import WawebGateway


logger = logging.getLogger("pairbroker.api")

PHONE_REQUIRED_MESSAGE = "Phone number is required."
SESSION_NOT_FOUND_MESSAGE = "Session not found."

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


class PairCodeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phone_number: Optional[Union[StrictStr, StrictInt]] = Field(default=None, alias="phoneNumber")


def normalize_phone(raw: Any) -> str:
    if raw is None:
        return ""
    return re.sub(r"[^0-9]", "", str(raw))


async def _read_body(request: Request) -> dict[str, Any]:
    content_type = request.headers.get("content-type", "")
    if any(kind in content_type for kind in FORM_CONTENT_TYPES):
        form = await request.form()
        return {key: value for key, value in form.items() if isinstance(value, str)}
    try:
        raw = await request.json()
    except ValueError:
        return {}
    return raw if isinstance(raw, dict) else {}


def _json(payload: dict[str, Any], status_code: int = 200) -> JSONResponse:
    return JSONResponse(payload, status_code=status_code, headers=dict(NO_STORE_HEADERS))


def create_app() -> FastAPI:
    cfg = broker_config()
    gateway = WawebGateway(
        cfg.wa_web_url,
        token=cfg.wa_web_token,
        http_timeout=cfg.http_timeout,
        poll_interval=cfg.poll_interval,
    )
    broker = PairingBroker(
        gateway,
        cfg.sessions_dir,
        branding=Branding(
            bot_name=cfg.bot_name,
            owner=cfg.bot_owner,
            timezone=cfg.timezone,
            channel_url=cfg.channel_url,
            repo_url=cfg.repo_url,
        ),
        session_prefix=cfg.session_prefix,
        session_timeout=cfg.session_timeout,
        pairing_code_delay=cfg.pairing_code_delay,
        open_settle_delay=cfg.open_settle_delay,
        post_send_delay=cfg.post_send_delay,
        creds_poll_attempts=cfg.creds_poll_attempts,
        creds_poll_interval=cfg.creds_poll_interval,
    )
    logger.info(
        "stage=broker_configured sessions_dir=%s waweb_url=%s token_present=%s",
        cfg.sessions_dir,
        cfg.wa_web_url,
        "true" if cfg.wa_web_token else "false",
    )

    app = FastAPI(title="pairbroker")
    app.state.broker = broker
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def _startup() -> None:  # pragma: no cover - wiring
        await broker.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:  # pragma: no cover - wiring
        await broker.shutdown()

    @app.post("/api/pair-code")
    async def pair_code(request: Request):
        raw = await _read_body(request)
        try:
            payload = PairCodeRequest.model_validate(raw)
        except ValidationError:
            return _json({"success": False, "message": PHONE_REQUIRED_MESSAGE}, 400)

        phone_number = normalize_phone(payload.phone_number)
        if not phone_number:
            logger.info("stage=pair_code_rejected reason=phone_missing")
            return _json({"success": False, "message": PHONE_REQUIRED_MESSAGE}, 400)

        logger.info("stage=pair_code_request phone=%s", mask_phone(phone_number))
        outcome = await broker.begin(phone_number)
        return _json(outcome.to_payload(), outcome.status_code)

    @app.get("/api/pair-code/{session_id}")
    async def pair_code_status(session_id: str):
        snapshot = broker.status(session_id)
        if snapshot is None:
            return _json({"success": False, "message": SESSION_NOT_FOUND_MESSAGE}, 404)
        return _json(snapshot.to_payload())

    @app.get("/health")
    async def health():
        stats = broker.stats_snapshot()
        return {
            "ok": True,
            "sessions": int(stats.get("live", 0) or 0),
            "pending": int(stats.get("pending", 0) or 0),
            "awaiting_code": int(stats.get("registered-awaiting-code", 0) or 0),
            "open": int(stats.get("open", 0) or 0),
        }

    @app.get("/metrics")
    async def metrics():
        data = generate_latest()
        return PlainTextResponse(data.decode("utf-8"), media_type=CONTENT_TYPE_LATEST)

    return app


__all__ = ["PairCodeRequest", "create_app", "normalize_phone"]
