"""Domain APIs for the opencode agent server.

Each API wraps a request callable; the same classes serve the sync and async
clients because they return whatever the request callable returns.
"""

from __future__ import annotations

from typing import Any, Callable

from .transport import path_segment

RequestFn = Callable[..., Any]


def text_parts(text: str) -> list[dict[str, str]]:
    return [{"type": "text", "text": text}]


class GlobalApi:
    def __init__(self, request: RequestFn) -> None:
        self._request = request

    def health(self) -> Any:
        return self._request("global.health", "GET", "/global/health")


class SessionsApi:
    def __init__(self, request: RequestFn) -> None:
        self._request = request

    def create(self, *, title: str | None = None, directory: str | None = None) -> Any:
        return self._request(
            "sessions.create",
            "POST",
            "/session",
            query={"directory": directory},
            json_body={"title": title} if title else None,
        )

    def list(self, *, directory: str | None = None, limit: int | None = None) -> Any:
        return self._request(
            "sessions.list",
            "GET",
            "/session",
            query={"directory": directory, "limit": limit},
        )

    def get(self, *, session_id: str) -> Any:
        return self._request("sessions.get", "GET", f"/session/{path_segment(session_id)}")

    def status(self) -> Any:
        return self._request("sessions.status", "GET", "/session/status")

    def messages(self, *, session_id: str, limit: int | None = None) -> Any:
        return self._request(
            "sessions.messages",
            "GET",
            f"/session/{path_segment(session_id)}/message",
            query={"limit": limit},
        )

    def send_message(self, *, session_id: str, text: str, directory: str | None = None) -> Any:
        return self._request(
            "sessions.send_message",
            "POST",
            f"/session/{path_segment(session_id)}/message",
            query={"directory": directory},
            json_body={"parts": text_parts(text)},
        )

    def prompt_async(
        self,
        *,
        session_id: str,
        message_id: str,
        text: str,
        directory: str | None = None,
    ) -> Any:
        return self._request(
            "sessions.prompt_async",
            "POST",
            f"/session/{path_segment(session_id)}/prompt_async",
            query={"directory": directory},
            json_body={"messageID": message_id, "parts": text_parts(text)},
        )


class QuestionsApi:
    def __init__(self, request: RequestFn) -> None:
        self._request = request

    def list(self) -> Any:
        return self._request("questions.list", "GET", "/question")

    def reply(self, *, request_id: str, answers: list[Any]) -> Any:
        return self._request(
            "questions.reply",
            "POST",
            f"/question/{path_segment(request_id)}/reply",
            json_body={"answers": answers},
        )

    def reject(self, *, request_id: str) -> Any:
        return self._request("questions.reject", "POST", f"/question/{path_segment(request_id)}/reject")


class PermissionsApi:
    def __init__(self, request: RequestFn) -> None:
        self._request = request

    def list(self) -> Any:
        return self._request("permissions.list", "GET", "/permission")


class SessionScope:
    """Session-bound convenience wrapper around `SessionsApi`."""

    def __init__(self, sessions: SessionsApi, session_id: str) -> None:
        self._sessions = sessions
        self.session_id = session_id

    def get(self) -> Any:
        return self._sessions.get(session_id=self.session_id)

    def messages(self, *, limit: int | None = None) -> Any:
        return self._sessions.messages(session_id=self.session_id, limit=limit)

    def send_message(self, text: str, *, directory: str | None = None) -> Any:
        return self._sessions.send_message(session_id=self.session_id, text=text, directory=directory)
