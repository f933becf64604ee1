from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from conftest import wait_for
from pairbroker.gateway import ConnectionUpdate, GatewayError
from pairbroker.waweb import MAX_POLL_FAILURES, WawebGateway


pytestmark = pytest.mark.anyio

BASE_URL = "http://waweb.test"


class SidecarStub:
    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.registered = False
        self.code: str | None = "K7PQ-2XZM"
        self.statuses: list[dict] = []
        self.status_error = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        action = request.url.path.rsplit("/", 1)[-1]
        if action == "start":
            return httpx.Response(200, json={"registered": self.registered})
        if action == "pair":
            return httpx.Response(200, json={"code": self.code})
        if action == "status":
            if self.status_error:
                return httpx.Response(503)
            if self.statuses:
                return httpx.Response(200, json=self.statuses.pop(0))
            return httpx.Response(200, json={"connection": "connecting"})
        if action in {"send", "close"}:
            return httpx.Response(200, json={"ok": True})
        return httpx.Response(404)

    def actions(self) -> list[str]:
        return [request.url.path.rsplit("/", 1)[-1] for request in self.requests]


def _gateway(stub: SidecarStub, **kwargs) -> WawebGateway:
    http = httpx.AsyncClient(transport=httpx.MockTransport(stub))
    return WawebGateway(BASE_URL, token="secret", poll_interval=0.0, http=http, **kwargs)


async def test_open_passes_auth_dir_and_token(tmp_path: Path):
    stub = SidecarStub()
    stub.registered = True
    gateway = _gateway(stub)

    connection = await gateway.open("Ab3dE", tmp_path)

    assert connection.registered is True
    request = stub.requests[0]
    assert request.url.path == "/session/Ab3dE/start"
    assert request.headers["X-Auth-Token"] == "secret"
    assert json.loads(request.content) == {"authDir": str(tmp_path)}


async def test_request_pairing_code(tmp_path: Path):
    stub = SidecarStub()
    gateway = _gateway(stub)
    connection = await gateway.open("Ab3dE", tmp_path)

    code = await connection.request_pairing_code("255712345678")

    assert code == "K7PQ-2XZM"
    assert json.loads(stub.requests[-1].content) == {"phoneNumber": "255712345678"}


async def test_missing_pairing_code_raises(tmp_path: Path):
    stub = SidecarStub()
    stub.code = None
    gateway = _gateway(stub)
    connection = await gateway.open("Ab3dE", tmp_path)

    with pytest.raises(GatewayError):
        await connection.request_pairing_code("255712345678")


async def test_http_error_becomes_gateway_error(tmp_path: Path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    gateway = WawebGateway(BASE_URL, http=http)

    with pytest.raises(GatewayError, match="start_http_500"):
        await gateway.open("Ab3dE", tmp_path)


async def test_status_changes_are_delivered_in_order(tmp_path: Path):
    stub = SidecarStub()
    stub.statuses = [
        {"connection": "connecting"},
        {"connection": "open", "me": {"id": "255712345678:3@s.whatsapp.net"}},
        {"connection": "open"},
        {"connection": "close", "lastDisconnect": {"statusCode": 401, "error": "logged out"}},
    ]
    gateway = _gateway(stub)
    connection = await gateway.open("Ab3dE", tmp_path)
    updates: list[ConnectionUpdate] = []

    connection.subscribe(updates.append)
    await wait_for(lambda: any(update.connection == "close" for update in updates))

    assert [update.connection for update in updates] == ["connecting", "open", "close"]
    assert updates[-1].status_code == 401
    assert updates[-1].auth_rejected is True
    assert connection.self_id == "255712345678:3@s.whatsapp.net"
    await connection.close()


async def test_repeated_poll_failures_report_transient_close(tmp_path: Path):
    stub = SidecarStub()
    stub.status_error = True
    gateway = _gateway(stub)
    connection = await gateway.open("Ab3dE", tmp_path)
    updates: list[ConnectionUpdate] = []

    connection.subscribe(updates.append)
    await wait_for(lambda: bool(updates))

    assert stub.actions().count("status") == MAX_POLL_FAILURES
    assert updates[0].connection == "close"
    assert updates[0].status_code is None
    assert updates[0].retryable is True
    await connection.close()


async def test_send_and_close(tmp_path: Path):
    stub = SidecarStub()
    gateway = _gateway(stub)
    connection = await gateway.open("Ab3dE", tmp_path)
    connection.subscribe(lambda update: None)

    await connection.send_message("255712345678@s.whatsapp.net", "hello")
    await connection.close()
    await connection.close()

    assert connection.closed is True
    assert stub.actions().count("close") == 1
    send = next(r for r in stub.requests if r.url.path.endswith("/send"))
    assert json.loads(send.content) == {"to": "255712345678@s.whatsapp.net", "text": "hello"}
