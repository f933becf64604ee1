from __future__ import annotations

import base64
import binascii
from pathlib import Path


CREDENTIALS_FILENAME = "creds.json"


def read_credentials(path: Path) -> bytes:
    return path.read_bytes()


def package_credentials(blob: bytes, prefix: str) -> str:
    """Turn a raw credential blob into ``<prefix><base64>``."""

    return f"{prefix}{base64.b64encode(blob).decode('ascii')}"


def unpack_credentials(token: str, prefix: str) -> bytes:
    if not token.startswith(prefix):
        raise ValueError("session_prefix_mismatch")
    payload = token[len(prefix):]
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("session_payload_invalid") from exc


__all__ = [
    "CREDENTIALS_FILENAME",
    "package_credentials",
    "read_credentials",
    "unpack_credentials",
]
