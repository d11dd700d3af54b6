"""Configuration helpers for the opencode bridge."""

from __future__ import annotations

import base64
import os
from dataclasses import dataclass, field
from typing import Any, Literal

DEFAULT_BASE_URL = "http://localhost:8848"
DEFAULT_USERNAME = "opencode"
DEFAULT_AUTH_TYPE = "basic"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_PORT = 3000
DEFAULT_LOG_LEVEL = "INFO"

AuthType = Literal["basic", "bearer", "none"]
_AUTH_TYPES = {"basic", "bearer", "none"}


@dataclass(slots=True)
class ClientConfig:
    base_url: str = DEFAULT_BASE_URL
    username: str = ""
    password: str = ""
    token: str = ""
    auth_type: AuthType = DEFAULT_AUTH_TYPE
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "ClientConfig":
        base_url = normalize_base_url(os.getenv("OPENCODE_URL"))
        timeout_ms = _parse_positive_int(os.getenv("OPENCODE_TIMEOUT_MS"))
        timeout_seconds = (timeout_ms / 1000.0) if timeout_ms else DEFAULT_TIMEOUT_SECONDS

        return cls(
            base_url=base_url,
            username=_trim_or_default(os.getenv("OPENCODE_USERNAME"), ""),
            password=os.getenv("OPENCODE_PASSWORD", ""),
            token=_trim_or_default(os.getenv("OPENCODE_TOKEN"), ""),
            auth_type=normalize_auth_type(os.getenv("OPENCODE_AUTH_TYPE")),
            timeout_seconds=timeout_seconds,
        )

    def auth_headers(self) -> dict[str, str]:
        return build_auth_headers(
            auth_type=self.auth_type,
            username=self.username,
            password=self.password,
            token=self.token,
        )

    def request_headers(self) -> dict[str, str]:
        return {**self.auth_headers(), **self.headers}


@dataclass(slots=True)
class ServerSettings:
    port: int = DEFAULT_PORT
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def from_env(cls) -> "ServerSettings":
        port = _parse_positive_int(os.getenv("PORT")) or DEFAULT_PORT
        log_level = _trim_or_default(os.getenv("OPENCODE_BRIDGE_LOG_LEVEL"), DEFAULT_LOG_LEVEL).upper()
        return cls(port=port, log_level=log_level)


def build_auth_headers(*, auth_type: str, username: str, password: str, token: str) -> dict[str, str]:
    headers: dict[str, str] = {}
    normalized = normalize_auth_type(auth_type)

    if normalized == "bearer":
        secret = token or password
        if secret:
            headers["Authorization"] = f"Bearer {secret}"
    elif normalized == "basic":
        # opencode serve uses the fixed "opencode" user unless overridden.
        if password:
            user = username or DEFAULT_USERNAME
            credentials = base64.b64encode(f"{user}:{password}".encode("utf-8")).decode("ascii")
            headers["Authorization"] = f"Basic {credentials}"

    return headers


def normalize_base_url(value: str | None) -> str:
    trimmed = _trim_or_default(value, DEFAULT_BASE_URL)
    return trimmed.rstrip("/") or DEFAULT_BASE_URL


def normalize_auth_type(value: str | None) -> AuthType:
    normalized = (value or "").strip().lower()
    if normalized in _AUTH_TYPES:
        return normalized  # type: ignore[return-value]
    # Unknown values behave like "none" rather than guessing a credential scheme.
    return "none" if normalized else DEFAULT_AUTH_TYPE


def _trim_or_default(value: Any, fallback: str) -> str:
    if not isinstance(value, str):
        return fallback
    trimmed = value.strip()
    return trimmed if trimmed else fallback


def _parse_positive_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str):
        try:
            parsed = int(value)
        except ValueError:
            return None
        return parsed if parsed > 0 else None
    return None
