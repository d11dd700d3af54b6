"""Protocol contracts for the bridge's injection points."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class SyncRequestExecutor(Protocol):
    def request(
        self,
        *,
        operation: str,
        method: str,
        path: str,
        query: dict[str, Any] | None = None,
        json_body: Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any: ...


@runtime_checkable
class AsyncRequestExecutor(Protocol):
    async def request(
        self,
        *,
        operation: str,
        method: str,
        path: str,
        query: dict[str, Any] | None = None,
        json_body: Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any: ...


class SessionsBackend(Protocol):
    """The slice of the sessions API the correlator and pager depend on.

    Async clients satisfy it with coroutine-returning methods.
    """

    def create(self, *, title: str | None = None, directory: str | None = None) -> Any: ...

    def status(self) -> Any: ...

    def messages(self, *, session_id: str, limit: int | None = None) -> Any: ...

    def prompt_async(
        self,
        *,
        session_id: str,
        message_id: str,
        text: str,
        directory: str | None = None,
    ) -> Any: ...


class QuestionsBackend(Protocol):
    def list(self) -> Any: ...


class PermissionsBackend(Protocol):
    def list(self) -> Any: ...
