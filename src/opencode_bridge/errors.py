"""Error hierarchy for the opencode bridge."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(slots=True)
class RequestDetails:
    operation: str
    method: str
    path: str
    status_code: int | None = None
    response_body: Any | None = None


class OpencodeBridgeError(Exception):
    """Base class for all bridge errors."""


class TransportError(OpencodeBridgeError):
    """Raised on network/transport failures."""


class ClientTimeoutError(TransportError):
    """Raised when an HTTP request times out."""


class UnexpectedResponseError(OpencodeBridgeError):
    """Raised when a 2xx response lacks a field the bridge depends on."""


class ApiError(OpencodeBridgeError):
    """Raised when the remote agent answers with a non-2xx status."""

    def __init__(self, message: str, *, details: RequestDetails) -> None:
        super().__init__(message)
        self.details = details

    @property
    def status_code(self) -> int | None:
        return self.details.status_code


class AuthError(ApiError):
    """Raised for authentication/authorization failures."""


class ValidationError(ApiError):
    """Raised for invalid request payloads."""


class NotFoundError(ApiError):
    """Raised when the requested session or question does not exist."""


class ConflictError(ApiError):
    """Raised when the request conflicts with current session state."""


class ServerError(ApiError):
    """Raised for server-side failures."""


class TokenDecodeError(OpencodeBridgeError, ValueError):
    """Raised when an opaque token cannot be decoded."""


class InvalidHandleError(TokenDecodeError):
    """Raised for a malformed async request handle."""


class InvalidCursorError(TokenDecodeError):
    """Raised for a malformed pagination cursor."""


def _body_excerpt(body: Any, limit: int = 500) -> str:
    if body is None:
        return ""
    text = body if isinstance(body, str) else repr(body)
    return text if len(text) <= limit else f"{text[:limit]}..."


def classify_api_error(details: RequestDetails) -> ApiError:
    status = details.status_code or 0
    message = f"{details.operation} failed with status {status}"
    excerpt = _body_excerpt(details.response_body)
    if excerpt:
        message = f"{message} - {excerpt}"

    if status in (401, 403):
        return AuthError(message, details=details)
    if status == 400:
        return ValidationError(message, details=details)
    if status == 404:
        return NotFoundError(message, details=details)
    if status == 409:
        return ConflictError(message, details=details)
    if status >= 500:
        return ServerError(message, details=details)

    return ApiError(message, details=details)


def is_retryable_poll_error(error: Exception) -> bool:
    """Whether a failed poll is worth repeating at the next interval."""
    if isinstance(error, TransportError):
        return True
    if isinstance(error, ServerError):
        return True
    if isinstance(error, ApiError):
        return error.status_code in (408, 429)
    return False
