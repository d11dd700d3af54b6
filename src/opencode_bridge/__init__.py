"""opencode bridge: MCP tools over an opencode agent server.

This module uses lazy exports so lightweight utilities (for example the token
codecs) can be imported without immediately importing transport dependencies.
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any

__all__ = [
    "ApiError",
    "AsyncMessagePager",
    "AsyncOpencodeClient",
    "AsyncReplyCorrelator",
    "AsyncRequestHandle",
    "AuthError",
    "ClientConfig",
    "ClientTimeoutError",
    "ConflictError",
    "InvalidCursorError",
    "InvalidHandleError",
    "MessagePager",
    "NotFoundError",
    "OpencodeBridgeError",
    "OpencodeClient",
    "PageResult",
    "ReplyBlocked",
    "ReplyCorrelator",
    "ReplyResolved",
    "ReplyTimedOut",
    "ServerError",
    "SubmitReceipt",
    "TokenDecodeError",
    "TransportError",
    "UnexpectedResponseError",
    "ValidationError",
    "decode_cursor",
    "decode_handle",
    "encode_cursor",
    "encode_handle",
]

_EXPORTS: dict[str, tuple[str, str]] = {
    "AsyncOpencodeClient": (".client", "AsyncOpencodeClient"),
    "OpencodeClient": (".client", "OpencodeClient"),
    "ClientConfig": (".config", "ClientConfig"),
    "ApiError": (".errors", "ApiError"),
    "AuthError": (".errors", "AuthError"),
    "ClientTimeoutError": (".errors", "ClientTimeoutError"),
    "ConflictError": (".errors", "ConflictError"),
    "InvalidCursorError": (".errors", "InvalidCursorError"),
    "InvalidHandleError": (".errors", "InvalidHandleError"),
    "NotFoundError": (".errors", "NotFoundError"),
    "OpencodeBridgeError": (".errors", "OpencodeBridgeError"),
    "ServerError": (".errors", "ServerError"),
    "TokenDecodeError": (".errors", "TokenDecodeError"),
    "TransportError": (".errors", "TransportError"),
    "UnexpectedResponseError": (".errors", "UnexpectedResponseError"),
    "ValidationError": (".errors", "ValidationError"),
    "AsyncReplyCorrelator": (".correlator", "AsyncReplyCorrelator"),
    "ReplyBlocked": (".correlator", "ReplyBlocked"),
    "ReplyCorrelator": (".correlator", "ReplyCorrelator"),
    "ReplyResolved": (".correlator", "ReplyResolved"),
    "ReplyTimedOut": (".correlator", "ReplyTimedOut"),
    "SubmitReceipt": (".correlator", "SubmitReceipt"),
    "AsyncMessagePager": (".pagination", "AsyncMessagePager"),
    "MessagePager": (".pagination", "MessagePager"),
    "PageResult": (".pagination", "PageResult"),
    "AsyncRequestHandle": (".tokens", "AsyncRequestHandle"),
    "decode_cursor": (".tokens", "decode_cursor"),
    "decode_handle": (".tokens", "decode_handle"),
    "encode_cursor": (".tokens", "encode_cursor"),
    "encode_handle": (".tokens", "encode_handle"),
}

if TYPE_CHECKING:
    from .client import AsyncOpencodeClient, OpencodeClient
    from .config import ClientConfig
    from .correlator import (
        AsyncReplyCorrelator,
        ReplyBlocked,
        ReplyCorrelator,
        ReplyResolved,
        ReplyTimedOut,
        SubmitReceipt,
    )
    from .errors import (
        ApiError,
        AuthError,
        ClientTimeoutError,
        ConflictError,
        InvalidCursorError,
        InvalidHandleError,
        NotFoundError,
        OpencodeBridgeError,
        ServerError,
        TokenDecodeError,
        TransportError,
        UnexpectedResponseError,
        ValidationError,
    )
    from .pagination import AsyncMessagePager, MessagePager, PageResult
    from .tokens import AsyncRequestHandle, decode_cursor, decode_handle, encode_cursor, encode_handle


def __getattr__(name: str) -> Any:
    module_info = _EXPORTS.get(name)
    if module_info is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module_name, attribute = module_info
    module = import_module(module_name, __name__)
    value = getattr(module, attribute)
    globals()[name] = value
    return value
