"""Async submission and reply correlation for opencode sessions.

`submit` posts a prompt without waiting and returns an opaque handle;
`await_reply` polls the session until the assistant message whose parent is
the submitted message appears, a pending question blocks the session, or the
deadline passes.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
import time
from dataclasses import dataclass, field
from typing import Any, Literal

from .errors import OpencodeBridgeError, UnexpectedResponseError, is_retryable_poll_error
from .models import (
    Message,
    PendingQuestion,
    SessionStatus,
    parse_messages,
    permissions_for_session,
    questions_for_session,
    status_for_session,
)
from .protocols import PermissionsBackend, QuestionsBackend, SessionsBackend
from .tokens import AsyncRequestHandle, decode_handle, encode_handle

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_POLL_INTERVAL_MS = 500
MIN_POLL_INTERVAL_MS = 300
DEFAULT_POLL_LIMIT = 200
MAX_POLL_LIMIT = 200
PREVIEW_CHARS = 200

_ID_ALPHABET = string.ascii_lowercase + string.digits

Outcome = Literal["resolved", "blocked", "timeout"]


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def generate_message_id(submitted_at_ms: int) -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(8))
    return f"msg_async_{submitted_at_ms}_{suffix}"


@dataclass(slots=True)
class PollSettings:
    timeout_seconds: float
    interval_seconds: float
    poll_limit: int

    @classmethod
    def create(
        cls,
        *,
        timeout_seconds: float | None = None,
        poll_interval_ms: int | None = None,
        poll_limit: int | None = None,
    ) -> "PollSettings":
        timeout = DEFAULT_TIMEOUT_SECONDS if timeout_seconds is None else float(timeout_seconds)
        if timeout <= 0:
            raise ValueError("timeout_seconds must be > 0")
        interval_ms = DEFAULT_POLL_INTERVAL_MS if poll_interval_ms is None else int(poll_interval_ms)
        limit = DEFAULT_POLL_LIMIT if poll_limit is None else int(poll_limit)
        return cls(
            timeout_seconds=timeout,
            interval_seconds=max(interval_ms, MIN_POLL_INTERVAL_MS) / 1000.0,
            poll_limit=max(1, min(limit, MAX_POLL_LIMIT)),
        )


@dataclass(slots=True)
class SubmitReceipt:
    session_id: str
    message_id: str
    submitted_at_ms: int
    async_request_id: str
    created_session: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "submitted",
            "session_id": self.session_id,
            "message_id": self.message_id,
            "submitted_at_ms": self.submitted_at_ms,
            "async_request_id": self.async_request_id,
            "created_session": self.created_session,
        }


@dataclass(slots=True)
class ReplyBlocked:
    session_id: str
    questions: list[PendingQuestion]
    async_request_id: str | None = None
    message_id: str | None = None
    elapsed_ms: int = 0

    outcome: Outcome = field(default="blocked", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "blocked",
            "session_id": self.session_id,
            "async_request_id": self.async_request_id,
            "message_id": self.message_id,
            "pending_questions": [question.summary() for question in self.questions],
            "elapsed_ms": self.elapsed_ms,
            "hint": "Answer or reject the pending questions, then call await again with the same handle.",
        }


@dataclass(slots=True)
class ReplyResolved:
    session_id: str
    message_id: str
    async_request_id: str
    reply: dict[str, Any]
    reply_message_id: str
    text: str
    streaming: bool
    session_status: SessionStatus | None
    elapsed_ms: int
    timeout_ms: int
    attempts: int

    outcome: Outcome = field(default="resolved", init=False)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": "streaming" if self.streaming else "resolved",
            "session_id": self.session_id,
            "message_id": self.message_id,
            "async_request_id": self.async_request_id,
            "reply_message_id": self.reply_message_id,
            "streaming": self.streaming,
            "text": self.text,
            "reply": self.reply,
            "session_status": _status_payload(self.session_status),
            "elapsed_ms": self.elapsed_ms,
            "timeout_ms": self.timeout_ms,
            "attempts": self.attempts,
        }
        if self.streaming:
            payload["hint"] = "The reply is still being generated; call await again with the same handle."
        return payload


@dataclass(slots=True)
class TimeoutDiagnostics:
    assistant_messages_seen: int
    matching_parent_count: int
    latest_assistant_preview: str | None
    latest_assistant_parent_id: str | None
    pending_permissions: int
    pending_questions: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "assistant_messages_seen": self.assistant_messages_seen,
            "matching_parent_count": self.matching_parent_count,
            "latest_assistant_preview": self.latest_assistant_preview,
            "latest_assistant_parent_id": self.latest_assistant_parent_id,
            "pending_permissions": self.pending_permissions,
            "pending_questions": self.pending_questions,
        }


@dataclass(slots=True)
class ReplyTimedOut:
    session_id: str
    message_id: str
    async_request_id: str
    elapsed_ms: int
    timeout_ms: int
    attempts: int
    partial_reply: dict[str, Any] | None = None
    session_status: SessionStatus | None = None
    diagnostics: TimeoutDiagnostics | None = None
    diagnostics_error: str | None = None
    last_poll_error: str | None = None

    outcome: Outcome = field(default="timeout", init=False)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": "timeout",
            "session_id": self.session_id,
            "message_id": self.message_id,
            "async_request_id": self.async_request_id,
            "partial_reply": self.partial_reply,
            "session_status": _status_payload(self.session_status),
            "diagnostics": self.diagnostics.to_dict() if self.diagnostics else None,
            "elapsed_ms": self.elapsed_ms,
            "timeout_ms": self.timeout_ms,
            "attempts": self.attempts,
            "hint": "No reply yet; call await again with the same handle.",
        }
        if self.diagnostics_error:
            payload["diagnostics_error"] = self.diagnostics_error
        if self.last_poll_error:
            payload["last_poll_error"] = self.last_poll_error
        return payload


AwaitResult = ReplyResolved | ReplyBlocked | ReplyTimedOut


def _status_payload(status: SessionStatus | None) -> dict[str, Any] | None:
    if status is None:
        return None
    return status.model_dump(exclude_none=True)


def find_reply(messages: Any, message_id: str) -> tuple[Message, dict[str, Any]] | None:
    """Newest assistant message whose parent is `message_id`."""
    for message, raw in reversed(parse_messages(messages)):
        if message.info.role == "assistant" and message.info.parent_id == message_id:
            return message, raw
    return None


def _preview(text: str) -> str:
    collapsed = " ".join(text.split())
    return collapsed if len(collapsed) <= PREVIEW_CHARS else f"{collapsed[:PREVIEW_CHARS]}..."


def build_diagnostics(
    messages: Any,
    *,
    session_id: str,
    message_id: str,
    permissions: Any,
    questions: Any,
) -> TimeoutDiagnostics:
    assistants = [message for message, _ in parse_messages(messages) if message.info.role == "assistant"]
    latest = assistants[-1] if assistants else None
    return TimeoutDiagnostics(
        assistant_messages_seen=len(assistants),
        matching_parent_count=sum(1 for message in assistants if message.info.parent_id == message_id),
        latest_assistant_preview=_preview(latest.text) if latest is not None else None,
        latest_assistant_parent_id=latest.info.parent_id if latest is not None else None,
        pending_permissions=len(permissions_for_session(permissions, session_id)),
        pending_questions=len(questions_for_session(questions, session_id)),
    )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _resolved(
    handle: AsyncRequestHandle,
    token: str,
    match: tuple[Message, dict[str, Any]],
    status: SessionStatus | None,
    *,
    start: float,
    settings: PollSettings,
    attempts: int,
) -> ReplyResolved:
    message, raw = match
    return ReplyResolved(
        session_id=handle.session_id,
        message_id=handle.message_id,
        async_request_id=token,
        reply=raw,
        reply_message_id=message.info.id,
        text=message.text,
        streaming=status is not None and status.is_streaming,
        session_status=status,
        elapsed_ms=_elapsed_ms(start),
        timeout_ms=int(settings.timeout_seconds * 1000),
        attempts=attempts,
    )


def _blocked(
    session_id: str,
    questions: list[PendingQuestion],
    *,
    token: str | None = None,
    message_id: str | None = None,
    start: float | None = None,
) -> ReplyBlocked:
    return ReplyBlocked(
        session_id=session_id,
        questions=questions,
        async_request_id=token,
        message_id=message_id,
        elapsed_ms=_elapsed_ms(start) if start is not None else 0,
    )


def _check_poll_error(error: OpencodeBridgeError, handle: AsyncRequestHandle, attempts: int) -> None:
    if not is_retryable_poll_error(error):
        raise error
    logger.warning(
        "poll %d for session %s failed, retrying next interval: %s",
        attempts,
        handle.session_id,
        error,
    )


class ReplyCorrelator:
    """Synchronous submit/await helpers for opencode async prompts."""

    def __init__(
        self,
        sessions_api: SessionsBackend,
        questions_api: QuestionsBackend,
        permissions_api: PermissionsBackend,
    ) -> None:
        self._sessions = sessions_api
        self._questions = questions_api
        self._permissions = permissions_api

    def pending_questions(self, session_id: str) -> list[PendingQuestion]:
        return questions_for_session(self._questions.list(), session_id)

    def submit(
        self,
        *,
        message: str,
        session_id: str | None = None,
        directory: str | None = None,
    ) -> SubmitReceipt | ReplyBlocked:
        created = False
        if session_id:
            questions = self.pending_questions(session_id)
            if questions:
                logger.info("session %s has %d pending questions; not submitting", session_id, len(questions))
                return _blocked(session_id, questions)
        else:
            session_id = _session_id(self._sessions.create(directory=directory))
            created = True

        submitted_at_ms = now_ms()
        message_id = generate_message_id(submitted_at_ms)
        self._sessions.prompt_async(session_id=session_id, message_id=message_id, text=message, directory=directory)
        return SubmitReceipt(
            session_id=session_id,
            message_id=message_id,
            submitted_at_ms=submitted_at_ms,
            async_request_id=encode_handle(session_id, message_id, submitted_at_ms),
            created_session=created,
        )

    def await_reply(
        self,
        async_request_id: str,
        *,
        timeout_seconds: float | None = None,
        poll_interval_ms: int | None = None,
        poll_limit: int | None = None,
    ) -> AwaitResult:
        handle = decode_handle(async_request_id)
        settings = PollSettings.create(
            timeout_seconds=timeout_seconds,
            poll_interval_ms=poll_interval_ms,
            poll_limit=poll_limit,
        )

        start = time.monotonic()
        deadline = start + settings.timeout_seconds
        attempts = 0
        succeeded = False
        last_error: OpencodeBridgeError | None = None

        while True:
            attempts += 1
            try:
                outcome = self._poll_once(handle, async_request_id, settings, start=start, attempts=attempts)
                succeeded = True
            except OpencodeBridgeError as error:
                _check_poll_error(error, handle, attempts)
                last_error = error
                outcome = None

            if outcome is not None:
                logger.debug("await %s finished as %s after %d polls", handle.message_id, outcome.outcome, attempts)
                return outcome

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            time.sleep(min(settings.interval_seconds, remaining))

        if not succeeded and last_error is not None:
            raise last_error
        return self._timed_out(handle, async_request_id, settings, start=start, attempts=attempts, last_error=last_error)

    def _poll_once(
        self,
        handle: AsyncRequestHandle,
        token: str,
        settings: PollSettings,
        *,
        start: float,
        attempts: int,
    ) -> AwaitResult | None:
        messages = self._sessions.messages(session_id=handle.session_id, limit=settings.poll_limit)
        match = find_reply(messages, handle.message_id)
        if match is not None:
            status = status_for_session(self._sessions.status(), handle.session_id)
            if status is not None and status.type == "idle":
                refreshed = self._sessions.messages(session_id=handle.session_id, limit=settings.poll_limit)
                match = find_reply(refreshed, handle.message_id) or match
            return _resolved(handle, token, match, status, start=start, settings=settings, attempts=attempts)

        questions = self.pending_questions(handle.session_id)
        if questions:
            return _blocked(handle.session_id, questions, token=token, message_id=handle.message_id, start=start)
        return None

    def _timed_out(
        self,
        handle: AsyncRequestHandle,
        token: str,
        settings: PollSettings,
        *,
        start: float,
        attempts: int,
        last_error: OpencodeBridgeError | None,
    ) -> ReplyTimedOut:
        result = ReplyTimedOut(
            session_id=handle.session_id,
            message_id=handle.message_id,
            async_request_id=token,
            elapsed_ms=_elapsed_ms(start),
            timeout_ms=int(settings.timeout_seconds * 1000),
            attempts=attempts,
            last_poll_error=str(last_error) if last_error else None,
        )
        try:
            messages = self._sessions.messages(session_id=handle.session_id, limit=settings.poll_limit)
            status = status_for_session(self._sessions.status(), handle.session_id)
            permissions = self._permissions.list()
            questions = self._questions.list()
        except OpencodeBridgeError as error:
            logger.debug("timeout diagnostics for session %s unavailable: %s", handle.session_id, error)
            result.diagnostics_error = str(error)
            return result

        _fill_timeout(result, handle, messages, status, permissions, questions)
        return result


class AsyncReplyCorrelator:
    """Asynchronous submit/await helpers for opencode async prompts."""

    def __init__(
        self,
        sessions_api: SessionsBackend,
        questions_api: QuestionsBackend,
        permissions_api: PermissionsBackend,
    ) -> None:
        self._sessions = sessions_api
        self._questions = questions_api
        self._permissions = permissions_api

    async def pending_questions(self, session_id: str) -> list[PendingQuestion]:
        return questions_for_session(await self._questions.list(), session_id)

    async def submit(
        self,
        *,
        message: str,
        session_id: str | None = None,
        directory: str | None = None,
    ) -> SubmitReceipt | ReplyBlocked:
        created = False
        if session_id:
            questions = await self.pending_questions(session_id)
            if questions:
                logger.info("session %s has %d pending questions; not submitting", session_id, len(questions))
                return _blocked(session_id, questions)
        else:
            session_id = _session_id(await self._sessions.create(directory=directory))
            created = True

        submitted_at_ms = now_ms()
        message_id = generate_message_id(submitted_at_ms)
        await self._sessions.prompt_async(
            session_id=session_id, message_id=message_id, text=message, directory=directory
        )
        return SubmitReceipt(
            session_id=session_id,
            message_id=message_id,
            submitted_at_ms=submitted_at_ms,
            async_request_id=encode_handle(session_id, message_id, submitted_at_ms),
            created_session=created,
        )

    async def await_reply(
        self,
        async_request_id: str,
        *,
        timeout_seconds: float | None = None,
        poll_interval_ms: int | None = None,
        poll_limit: int | None = None,
    ) -> AwaitResult:
        handle = decode_handle(async_request_id)
        settings = PollSettings.create(
            timeout_seconds=timeout_seconds,
            poll_interval_ms=poll_interval_ms,
            poll_limit=poll_limit,
        )

        start = time.monotonic()
        deadline = start + settings.timeout_seconds
        attempts = 0
        succeeded = False
        last_error: OpencodeBridgeError | None = None

        while True:
            attempts += 1
            try:
                outcome = await self._poll_once(handle, async_request_id, settings, start=start, attempts=attempts)
                succeeded = True
            except OpencodeBridgeError as error:
                _check_poll_error(error, handle, attempts)
                last_error = error
                outcome = None

            if outcome is not None:
                logger.debug("await %s finished as %s after %d polls", handle.message_id, outcome.outcome, attempts)
                return outcome

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            await asyncio.sleep(min(settings.interval_seconds, remaining))

        if not succeeded and last_error is not None:
            raise last_error
        return await self._timed_out(
            handle, async_request_id, settings, start=start, attempts=attempts, last_error=last_error
        )

    async def _poll_once(
        self,
        handle: AsyncRequestHandle,
        token: str,
        settings: PollSettings,
        *,
        start: float,
        attempts: int,
    ) -> AwaitResult | None:
        messages = await self._sessions.messages(session_id=handle.session_id, limit=settings.poll_limit)
        match = find_reply(messages, handle.message_id)
        if match is not None:
            status = status_for_session(await self._sessions.status(), handle.session_id)
            if status is not None and status.type == "idle":
                refreshed = await self._sessions.messages(session_id=handle.session_id, limit=settings.poll_limit)
                match = find_reply(refreshed, handle.message_id) or match
            return _resolved(handle, token, match, status, start=start, settings=settings, attempts=attempts)

        questions = await self.pending_questions(handle.session_id)
        if questions:
            return _blocked(handle.session_id, questions, token=token, message_id=handle.message_id, start=start)
        return None

    async def _timed_out(
        self,
        handle: AsyncRequestHandle,
        token: str,
        settings: PollSettings,
        *,
        start: float,
        attempts: int,
        last_error: OpencodeBridgeError | None,
    ) -> ReplyTimedOut:
        result = ReplyTimedOut(
            session_id=handle.session_id,
            message_id=handle.message_id,
            async_request_id=token,
            elapsed_ms=_elapsed_ms(start),
            timeout_ms=int(settings.timeout_seconds * 1000),
            attempts=attempts,
            last_poll_error=str(last_error) if last_error else None,
        )
        try:
            messages = await self._sessions.messages(session_id=handle.session_id, limit=settings.poll_limit)
            status = status_for_session(await self._sessions.status(), handle.session_id)
            permissions = await self._permissions.list()
            questions = await self._questions.list()
        except OpencodeBridgeError as error:
            logger.debug("timeout diagnostics for session %s unavailable: %s", handle.session_id, error)
            result.diagnostics_error = str(error)
            return result

        _fill_timeout(result, handle, messages, status, permissions, questions)
        return result


def _fill_timeout(
    result: ReplyTimedOut,
    handle: AsyncRequestHandle,
    messages: Any,
    status: SessionStatus | None,
    permissions: Any,
    questions: Any,
) -> None:
    match = find_reply(messages, handle.message_id)
    result.partial_reply = match[1] if match is not None else None
    result.session_status = status
    result.diagnostics = build_diagnostics(
        messages,
        session_id=handle.session_id,
        message_id=handle.message_id,
        permissions=permissions,
        questions=questions,
    )


def _session_id(payload: Any) -> str:
    session_id = payload.get("id") if isinstance(payload, dict) else None
    if not isinstance(session_id, str) or not session_id:
        raise UnexpectedResponseError("session create response missing id")
    return session_id
