"""Top-level opencode clients (sync + async)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .api import GlobalApi, PermissionsApi, QuestionsApi, SessionScope, SessionsApi
from .config import ClientConfig
from .correlator import AsyncReplyCorrelator, ReplyCorrelator
from .pagination import AsyncMessagePager, MessagePager
from .protocols import AsyncRequestExecutor, SyncRequestExecutor
from .transport import AsyncTransport, SyncTransport

logger = logging.getLogger(__name__)


def _normalize_path(path: str) -> str:
    if not path:
        return "/"
    return path if path.startswith("/") else f"/{path}"


class OpencodeClient:
    """Synchronous opencode client."""

    def __init__(
        self,
        *,
        config: ClientConfig | None = None,
        http_client: httpx.Client | None = None,
        request_executor: SyncRequestExecutor | None = None,
    ) -> None:
        self.client_config = config or ClientConfig()
        self._client = http_client or httpx.Client(
            base_url=self.client_config.base_url,
            timeout=self.client_config.timeout_seconds,
            headers=self.client_config.request_headers(),
        )
        self._executor = request_executor or SyncTransport(self._client)

        self.global_ = GlobalApi(self._request)
        self.sessions = SessionsApi(self._request)
        self.questions = QuestionsApi(self._request)
        self.permissions = PermissionsApi(self._request)
        self.replies = ReplyCorrelator(self.sessions, self.questions, self.permissions)
        self.pages = MessagePager(self.sessions)

    @classmethod
    def from_env(cls) -> "OpencodeClient":
        return cls(config=ClientConfig.from_env())

    def session(self, session_id: str) -> SessionScope:
        return SessionScope(self.sessions, session_id)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "OpencodeClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        query: dict[str, Any] | None = None,
        json_body: Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        logger.debug("%s %s %s", operation, method.upper(), path)
        return self._executor.request(
            operation=operation,
            method=method.upper(),
            path=_normalize_path(path),
            query=dict(query or {}),
            json_body=json_body,
            headers=dict(headers or {}) or None,
        )


class AsyncOpencodeClient:
    """Asynchronous opencode client."""

    def __init__(
        self,
        *,
        config: ClientConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        request_executor: AsyncRequestExecutor | None = None,
    ) -> None:
        self.client_config = config or ClientConfig()
        self._client = http_client or httpx.AsyncClient(
            base_url=self.client_config.base_url,
            timeout=self.client_config.timeout_seconds,
            headers=self.client_config.request_headers(),
        )
        self._executor = request_executor or AsyncTransport(self._client)

        self.global_ = GlobalApi(self._request)
        self.sessions = SessionsApi(self._request)
        self.questions = QuestionsApi(self._request)
        self.permissions = PermissionsApi(self._request)
        self.replies = AsyncReplyCorrelator(self.sessions, self.questions, self.permissions)
        self.pages = AsyncMessagePager(self.sessions)

    @classmethod
    def from_env(cls) -> "AsyncOpencodeClient":
        return cls(config=ClientConfig.from_env())

    def session(self, session_id: str) -> SessionScope:
        return SessionScope(self.sessions, session_id)

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "AsyncOpencodeClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        query: dict[str, Any] | None = None,
        json_body: Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        logger.debug("%s %s %s", operation, method.upper(), path)
        return await self._executor.request(
            operation=operation,
            method=method.upper(),
            path=_normalize_path(path),
            query=dict(query or {}),
            json_body=json_body,
            headers=dict(headers or {}) or None,
        )
