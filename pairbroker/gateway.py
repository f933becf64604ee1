"""Interface of the external messaging-protocol collaborator."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Protocol


CONNECTION_OPEN = "open"
CONNECTION_CLOSE = "close"

# Status code reported when the account logged the linked device out.
LOGGED_OUT_STATUS = 401


class GatewayError(Exception):
    """Raised when the protocol collaborator rejects or fails an operation."""


@dataclass(frozen=True, slots=True)
class ConnectionUpdate:
    connection: str
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def auth_rejected(self) -> bool:
        return self.connection == CONNECTION_CLOSE and self.status_code == LOGGED_OUT_STATUS

    @property
    def retryable(self) -> bool:
        return (
            self.connection == CONNECTION_CLOSE
            and self.error is not None
            and self.status_code != LOGGED_OUT_STATUS
        )


UpdateListener = Callable[[ConnectionUpdate], None]


class ProtocolConnection(Protocol):
    @property
    def registered(self) -> bool: ...

    @property
    def self_id(self) -> Optional[str]: ...

    def subscribe(self, listener: UpdateListener) -> None: ...

    async def request_pairing_code(self, phone_number: str) -> str: ...

    async def send_message(self, recipient: str, text: str) -> None: ...

    async def close(self) -> None: ...


class ProtocolGateway(Protocol):
    async def open(self, session_id: str, auth_dir: Path) -> ProtocolConnection: ...

    async def aclose(self) -> None: ...


__all__ = [
    "CONNECTION_CLOSE",
    "CONNECTION_OPEN",
    "ConnectionUpdate",
    "GatewayError",
    "LOGGED_OUT_STATUS",
    "ProtocolConnection",
    "ProtocolGateway",
    "UpdateListener",
]
