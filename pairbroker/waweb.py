"""Protocol gateway backed by the WA web sidecar HTTP API."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import httpx

from .gateway import CONNECTION_CLOSE, ConnectionUpdate, GatewayError, UpdateListener


LOGGER = logging.getLogger("pairbroker.waweb")

MAX_POLL_FAILURES = 3


def _extract_self_id(data: Dict[str, Any]) -> Optional[str]:
    me = data.get("me")
    if isinstance(me, dict):
        value = me.get("id")
        if value:
            return str(value)
    return None


def _extract_disconnect(data: Dict[str, Any]) -> tuple[Optional[int], Optional[str]]:
    last = data.get("lastDisconnect")
    if not isinstance(last, dict):
        return None, None
    status_code: Optional[int] = None
    raw_code = last.get("statusCode")
    if raw_code is not None:
        try:
            status_code = int(raw_code)
        except (TypeError, ValueError):
            status_code = None
    error = last.get("error")
    return status_code, (str(error) if error else None)


class WawebGateway:
    """Open pairing connections through the sidecar at ``base_url``."""

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        http_timeout: float = 10.0,
        poll_interval: float = 1.0,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = (token or "").strip() or None
        self._poll_interval = poll_interval
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=http_timeout)

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["X-Auth-Token"] = self._token
        return headers

    async def request(
        self,
        method: str,
        session_id: str,
        action: str,
        *,
        payload: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        url = f"{self._base_url}/session/{session_id}/{action}"
        try:
            response = await self._http.request(
                method, url, json=payload, headers=self._headers()
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise GatewayError(
                f"{action}_http_{exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise GatewayError(f"{action}_failed: {exc}") from exc
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise GatewayError(f"{action}_invalid_json") from exc
        if not isinstance(data, dict):
            raise GatewayError(f"{action}_invalid_payload")
        return data

    async def open(self, session_id: str, auth_dir: Path) -> "WawebConnection":
        data = await self.request(
            "POST", session_id, "start", payload={"authDir": str(auth_dir)}
        )
        LOGGER.info(
            "stage=sidecar_start session_id=%s registered=%s",
            session_id,
            bool(data.get("registered")),
        )
        return WawebConnection(
            self,
            session_id,
            registered=bool(data.get("registered")),
            self_id=_extract_self_id(data),
        )

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()


class WawebConnection:
    """One sidecar session; status changes are polled and pushed to a listener."""

    def __init__(
        self,
        gateway: WawebGateway,
        session_id: str,
        *,
        registered: bool,
        self_id: Optional[str] = None,
    ) -> None:
        self._gateway = gateway
        self._session_id = session_id
        self._registered = registered
        self._self_id = self_id
        self._listener: Optional[UpdateListener] = None
        self._poll_task: Optional[asyncio.Task[Any]] = None
        self._closed = False

    @property
    def registered(self) -> bool:
        return self._registered

    @property
    def self_id(self) -> Optional[str]:
        return self._self_id

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: UpdateListener) -> None:
        self._listener = listener
        if self._poll_task is None and not self._closed:
            self._poll_task = asyncio.get_running_loop().create_task(self._poll())

    async def request_pairing_code(self, phone_number: str) -> str:
        data = await self._gateway.request(
            "POST", self._session_id, "pair", payload={"phoneNumber": phone_number}
        )
        code = str(data.get("code") or "").strip()
        if not code:
            raise GatewayError("pairing_code_missing")
        return code

    async def send_message(self, recipient: str, text: str) -> None:
        await self._gateway.request(
            "POST", self._session_id, "send", payload={"to": recipient, "text": text}
        )
        LOGGER.info("stage=send_ok session_id=%s", self._session_id)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        task, self._poll_task = self._poll_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        try:
            await self._gateway.request("POST", self._session_id, "close")
        except GatewayError as exc:
            LOGGER.warning(
                "stage=sidecar_close_failed session_id=%s error=%s",
                self._session_id,
                exc,
            )

    def _emit(self, update: ConnectionUpdate) -> None:
        if self._listener is not None:
            self._listener(update)

    async def _poll(self) -> None:
        failures = 0
        last_connection: Optional[str] = None
        while not self._closed:
            await asyncio.sleep(self._gateway.poll_interval)
            try:
                data = await self._gateway.request("GET", self._session_id, "status")
            except GatewayError as exc:
                failures += 1
                LOGGER.warning(
                    "stage=status_poll_failed session_id=%s failures=%s error=%s",
                    self._session_id,
                    failures,
                    exc,
                )
                if failures >= MAX_POLL_FAILURES:
                    self._emit(ConnectionUpdate(CONNECTION_CLOSE, error=str(exc)))
                    return
                continue
            failures = 0
            self_id = _extract_self_id(data)
            if self_id:
                self._self_id = self_id
            connection = str(data.get("connection") or "").strip().lower()
            if not connection or connection == last_connection:
                continue
            last_connection = connection
            status_code, error = _extract_disconnect(data)
            self._emit(ConnectionUpdate(connection, status_code=status_code, error=error))
            if connection == CONNECTION_CLOSE:
                return


__all__ = ["MAX_POLL_FAILURES", "WawebConnection", "WawebGateway"]
