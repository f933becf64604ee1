from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Dict, Optional, Set

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .manager import Session


class SessionExistsError(Exception):
    """Raised when a session identifier is already live in the store."""


class SessionStore:
    """Process-wide mapping of live session identifiers to sessions.

    Teardown is two-phase. :meth:`claim` marks a live session as being torn
    down and hands it to exactly one caller; the entry stays visible until
    that caller finishes and calls :meth:`release`. Claimed identifiers are
    never handed out twice.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, "Session"] = {}
        self._claimed: Set[str] = set()
        self._lock = asyncio.Lock()

    async def add(self, session: "Session") -> None:
        async with self._lock:
            if session.session_id in self._sessions:
                raise SessionExistsError(session.session_id)
            self._sessions[session.session_id] = session

    def get(self, session_id: str) -> Optional["Session"]:
        return self._sessions.get(session_id)

    async def claim(
        self, session_id: str, *, expected: Optional["Session"] = None
    ) -> Optional["Session"]:
        async with self._lock:
            current = self._sessions.get(session_id)
            if current is None or session_id in self._claimed:
                return None
            if expected is not None and current is not expected:
                return None
            self._claimed.add(session_id)
            return current

    def claimed(self, session_id: str) -> bool:
        return session_id in self._claimed

    async def release(self, session: "Session") -> bool:
        async with self._lock:
            if self._sessions.get(session.session_id) is not session:
                return False
            del self._sessions[session.session_id]
            self._claimed.discard(session.session_id)
            return True

    def sessions(self) -> list["Session"]:
        return list(self._sessions.values())

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


__all__ = ["SessionExistsError", "SessionStore"]
