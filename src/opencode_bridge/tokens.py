"""Opaque continuation tokens: async request handles and page cursors.

Both tokens are compact JSON objects tagged with a version, encoded as
base64url without padding so they survive URLs and tool arguments unchanged.
"""

from __future__ import annotations

import base64
import binascii
import json
import re
from dataclasses import dataclass
from typing import Any

from .errors import InvalidCursorError, InvalidHandleError, TokenDecodeError

TOKEN_VERSION = 1
_TOKEN_TEXT = re.compile(r"[A-Za-z0-9_-]+")


@dataclass(frozen=True, slots=True)
class AsyncRequestHandle:
    session_id: str
    message_id: str
    submitted_at_ms: int


def _encode(payload: dict[str, Any]) -> str:
    raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _decode(token: str, error_type: type[TokenDecodeError], label: str) -> dict[str, Any]:
    if not isinstance(token, str) or not token.strip():
        raise error_type(f"{label} must be a non-empty string")

    text = token.strip()
    if not _TOKEN_TEXT.fullmatch(text):
        raise error_type(f"{label} is not url-safe base64")

    padded = text + "=" * (-len(text) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        payload = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError) as error:
        raise error_type(f"{label} could not be decoded") from error

    if not isinstance(payload, dict):
        raise error_type(f"{label} does not encode an object")
    if payload.get("v") != TOKEN_VERSION:
        raise error_type(f"{label} has unsupported version {payload.get('v')!r}")
    return payload


def _non_negative_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def encode_handle(session_id: str, message_id: str, submitted_at_ms: int) -> str:
    return _encode({"v": TOKEN_VERSION, "sid": session_id, "mid": message_id, "ts": submitted_at_ms})


def decode_handle(token: str) -> AsyncRequestHandle:
    payload = _decode(token, InvalidHandleError, "async_request_id")

    session_id = payload.get("sid")
    message_id = payload.get("mid")
    submitted_at_ms = payload.get("ts")
    if not isinstance(session_id, str) or not session_id:
        raise InvalidHandleError("async_request_id is missing a session id")
    if not isinstance(message_id, str) or not message_id:
        raise InvalidHandleError("async_request_id is missing a message id")
    if not _non_negative_int(submitted_at_ms):
        raise InvalidHandleError("async_request_id is missing a submission timestamp")

    return AsyncRequestHandle(session_id=session_id, message_id=message_id, submitted_at_ms=submitted_at_ms)


def encode_cursor(offset: int) -> str:
    if not _non_negative_int(offset):
        raise ValueError("cursor offset must be a non-negative integer")
    return _encode({"v": TOKEN_VERSION, "offset": offset})


def decode_cursor(token: str | None) -> int:
    """Return the offset a cursor points at; no cursor means the start of history."""
    if token is None or (isinstance(token, str) and not token.strip()):
        return 0

    payload = _decode(token, InvalidCursorError, "cursor")
    offset = payload.get("offset")
    if not _non_negative_int(offset):
        raise InvalidCursorError("cursor offset must be a non-negative integer")
    return offset
