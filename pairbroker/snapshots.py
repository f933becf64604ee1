from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .manager import Session


def mask_phone(phone_number: str) -> str:
    digits = phone_number or ""
    if len(digits) <= 4:
        return "*" * len(digits)
    return "*" * (len(digits) - 4) + digits[-4:]


@dataclass(slots=True)
class SessionSnapshot:
    """Lightweight snapshot of a live pairing session."""

    session_id: str
    status: str
    phone: str
    responded: bool
    created_at_ms: int
    age_seconds: float

    @classmethod
    def from_session(cls, session: "Session", *, now: Optional[float] = None) -> "SessionSnapshot":
        current = time.time() if now is None else now
        return cls(
            session_id=session.session_id,
            status=session.status,
            phone=mask_phone(session.phone_number),
            responded=bool(session.responded),
            created_at_ms=int(session.created_at * 1000),
            age_seconds=round(max(current - session.created_at, 0.0), 3),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": True,
            "sessionId": self.session_id,
            "status": self.status,
            "phoneNumber": self.phone,
            "responded": self.responded,
            "createdAt": self.created_at_ms,
            "ageSeconds": self.age_seconds,
        }


__all__ = ["SessionSnapshot", "mask_phone"]
