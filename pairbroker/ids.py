from __future__ import annotations

import secrets
import string


SESSION_ID_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits
SESSION_ID_LENGTH = 5


def make_session_id(length: int = SESSION_ID_LENGTH) -> str:
    """Return a short random alphanumeric session identifier."""

    return "".join(secrets.choice(SESSION_ID_ALPHABET) for _ in range(length))


__all__ = ["SESSION_ID_ALPHABET", "SESSION_ID_LENGTH", "make_session_id"]
