from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Callable, Optional

import pytest

ROOT_DIR = Path(__file__).resolve().parents[2]
if str(ROOT_DIR) not in sys.path:  # pragma: no cover - path setup
    sys.path.insert(0, str(ROOT_DIR))

from pairbroker.credentials import CREDENTIALS_FILENAME
from pairbroker.gateway import ConnectionUpdate, UpdateListener
from pairbroker.manager import PairingBroker
from pairbroker.messages import Branding


SESSION_PREFIX = "TEST-BOT>>>"
SELF_ID = "255712345678:1@s.whatsapp.net"
BRANDING = Branding(
    bot_name="TEST-BOT",
    owner="tester",
    timezone="Africa/Dar_es_Salaam",
    channel_url="https://example.com/channel",
    repo_url="https://example.com/repo",
)


class FakeConnection:
    def __init__(
        self,
        session_id: str,
        auth_dir: Path,
        *,
        registered: bool = False,
        code: str = "ABCD1234",
        self_id: Optional[str] = SELF_ID,
        journal: Optional[list[str]] = None,
    ) -> None:
        self.session_id = session_id
        self.auth_dir = auth_dir
        self.registered = registered
        self.self_id = self_id
        self.code = code
        self.listener: Optional[UpdateListener] = None
        self.pair_requests: list[str] = []
        self.sent: list[tuple[str, str]] = []
        self.close_calls = 0
        self.pair_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self.pair_gate: Optional[asyncio.Event] = None
        self.close_gate: Optional[asyncio.Event] = None
        self.journal = journal if journal is not None else []

    def subscribe(self, listener: UpdateListener) -> None:
        self.listener = listener

    async def request_pairing_code(self, phone_number: str) -> str:
        self.pair_requests.append(phone_number)
        if self.pair_gate is not None:
            await self.pair_gate.wait()
        if self.pair_error is not None:
            raise self.pair_error
        return self.code

    async def send_message(self, recipient: str, text: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((recipient, text))

    async def close(self) -> None:
        self.close_calls += 1
        if self.close_gate is not None:
            await self.close_gate.wait()
        self.journal.append(f"close:{self.session_id}")

    def emit(self, connection: str, *, status_code: Optional[int] = None, error: Optional[str] = None) -> None:
        assert self.listener is not None, "connection was never subscribed"
        self.listener(ConnectionUpdate(connection, status_code=status_code, error=error))

    def write_credentials(self, blob: bytes) -> Path:
        path = self.auth_dir / CREDENTIALS_FILENAME
        path.write_bytes(blob)
        return path


class FakeGateway:
    def __init__(self) -> None:
        self.connections: list[FakeConnection] = []
        self.registered = False
        self.open_error: Optional[Exception] = None
        self.configure: Optional[Callable[[FakeConnection], None]] = None
        self.closed = False
        self.journal: list[str] = []

    async def open(self, session_id: str, auth_dir: Path) -> FakeConnection:
        if self.open_error is not None:
            raise self.open_error
        connection = FakeConnection(
            session_id, auth_dir, registered=self.registered, journal=self.journal
        )
        if self.configure is not None:
            self.configure(connection)
        self.connections.append(connection)
        return connection

    async def aclose(self) -> None:
        self.closed = True
        self.journal.append("aclose")

    def connection_for(self, session_id: str) -> FakeConnection:
        for connection in self.connections:
            if connection.session_id == session_id:
                return connection
        raise KeyError(session_id)


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def sessions_dir(tmp_path: Path) -> Path:
    return tmp_path / "sessions"


@pytest.fixture
def make_broker(gateway: FakeGateway, sessions_dir: Path) -> Callable[..., PairingBroker]:
    def _make(**overrides: Any) -> PairingBroker:
        options: dict[str, Any] = {
            "branding": BRANDING,
            "session_prefix": SESSION_PREFIX,
            "session_timeout": 5.0,
            "pairing_code_delay": 0.0,
            "open_settle_delay": 0.0,
            "post_send_delay": 0.0,
            "creds_poll_attempts": 0,
            "creds_poll_interval": 0.01,
        }
        options.update(overrides)
        return PairingBroker(gateway, sessions_dir, **options)

    return _make
