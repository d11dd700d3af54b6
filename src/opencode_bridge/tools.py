"""Tool handlers exposed over MCP.

Handlers return JSON-ready dicts. Remote failures come back as structured
`{"error": ...}` results; malformed handles and cursors raise so the tool call
itself fails.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .client import AsyncOpencodeClient
from .errors import ApiError, TransportError, UnexpectedResponseError
from .models import parse_message, questions_for_session

logger = logging.getLogger(__name__)


def _error_payload(error: ApiError | TransportError | UnexpectedResponseError) -> dict[str, Any]:
    payload: dict[str, Any] = {"error": str(error), "error_type": type(error).__name__}
    if isinstance(error, ApiError):
        payload["status_code"] = error.status_code
        payload["operation"] = error.details.operation
    return payload


def structured_errors(
    handler: Callable[..., Awaitable[dict[str, Any]]],
) -> Callable[..., Awaitable[dict[str, Any]]]:
    @functools.wraps(handler)
    async def wrapper(*args: Any, **kwargs: Any) -> dict[str, Any]:
        try:
            return await handler(*args, **kwargs)
        except (ApiError, TransportError, UnexpectedResponseError) as error:
            logger.warning("%s failed: %s", handler.__name__, error)
            return _error_payload(error)

    return wrapper


def _session_summary(session: Any) -> dict[str, Any]:
    if not isinstance(session, dict):
        return {"raw": session}
    time_info = session.get("time") if isinstance(session.get("time"), dict) else {}
    return {
        "id": session.get("id"),
        "title": session.get("title") or "Untitled",
        "directory": session.get("directory"),
        "created": time_info.get("created"),
        "updated": time_info.get("updated"),
    }


class BridgeTools:
    """Async tool surface over an `AsyncOpencodeClient`."""

    def __init__(self, client: AsyncOpencodeClient) -> None:
        self._client = client

    @structured_errors
    async def chat(self, message: str, session_id: str | None = None, directory: str | None = None) -> dict[str, Any]:
        created = False
        if not session_id:
            session = await self._client.sessions.create(directory=directory)
            session_id = session.get("id") if isinstance(session, dict) else None
            if not session_id:
                raise UnexpectedResponseError("session create response missing id")
            created = True

        response = await self._client.sessions.send_message(session_id=session_id, text=message, directory=directory)
        reply = parse_message(response)
        return {
            "session_id": session_id,
            "created_session": created,
            "message_id": reply.info.id if reply else None,
            "text": reply.text if reply else None,
            "response": response,
        }

    @structured_errors
    async def chat_async(
        self,
        message: str,
        session_id: str | None = None,
        directory: str | None = None,
    ) -> dict[str, Any]:
        result = await self._client.replies.submit(message=message, session_id=session_id, directory=directory)
        return result.to_dict()

    @structured_errors
    async def await_reply(
        self,
        async_request_id: str,
        timeout_seconds: float = 30.0,
        poll_interval_ms: int = 500,
        poll_limit: int = 200,
    ) -> dict[str, Any]:
        result = await self._client.replies.await_reply(
            async_request_id,
            timeout_seconds=timeout_seconds,
            poll_interval_ms=poll_interval_ms,
            poll_limit=poll_limit,
        )
        return result.to_dict()

    @structured_errors
    async def get_messages(
        self,
        session_id: str,
        limit: int = 50,
        cursor: str | None = None,
        max_output_tokens: int = 5000,
        fields: list[str] | None = None,
    ) -> dict[str, Any]:
        page = await self._client.pages.get_page(
            session_id=session_id,
            limit=limit,
            cursor=cursor,
            max_output_tokens=max_output_tokens,
            fields=fields,
        )
        return page.to_dict()

    @structured_errors
    async def create_session(self, title: str | None = None, directory: str | None = None) -> dict[str, Any]:
        session = await self._client.sessions.create(title=title, directory=directory)
        return {"session": _session_summary(session)}

    @structured_errors
    async def list_sessions(self, directory: str | None = None, limit: int | None = None) -> dict[str, Any]:
        sessions = await self._client.sessions.list(directory=directory, limit=limit)
        summaries = [_session_summary(session) for session in sessions] if isinstance(sessions, list) else []
        return {"count": len(summaries), "sessions": summaries}

    @structured_errors
    async def get_session(self, session_id: str) -> dict[str, Any]:
        return {"session": await self._client.sessions.get(session_id=session_id)}

    @structured_errors
    async def check_health(self) -> dict[str, Any]:
        health = await self._client.global_.health()
        body = health if isinstance(health, dict) else {}
        return {
            "healthy": bool(body.get("healthy")),
            "version": body.get("version"),
            "url": self._client.client_config.base_url,
        }

    @structured_errors
    async def list_questions(self, session_id: str | None = None) -> dict[str, Any]:
        questions = questions_for_session(await self._client.questions.list(), session_id)
        return {
            "count": len(questions),
            "questions": [question.model_dump(mode="json", exclude_none=True) for question in questions],
        }

    @structured_errors
    async def answer_question(self, request_id: str, answers: list[Any]) -> dict[str, Any]:
        result = await self._client.questions.reply(request_id=request_id, answers=answers)
        return {"request_id": request_id, "status": "answered", "result": result}

    @structured_errors
    async def reject_question(self, request_id: str) -> dict[str, Any]:
        result = await self._client.questions.reject(request_id=request_id)
        return {"request_id": request_id, "status": "rejected", "result": result}
