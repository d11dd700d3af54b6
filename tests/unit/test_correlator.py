from __future__ import annotations

import re
from typing import Any

import pytest

from opencode_bridge.correlator import (
    AsyncReplyCorrelator,
    PollSettings,
    ReplyBlocked,
    ReplyCorrelator,
    ReplyResolved,
    ReplyTimedOut,
    SubmitReceipt,
    find_reply,
    generate_message_id,
)
from opencode_bridge.errors import (
    InvalidHandleError,
    NotFoundError,
    RequestDetails,
    ServerError,
    TransportError,
)
from opencode_bridge.tokens import decode_handle, encode_handle


def _user(message_id: str) -> dict[str, Any]:
    return {"info": {"id": message_id, "role": "user", "sessionID": "ses_1"}, "parts": [{"type": "text", "text": "ping"}]}


def _assistant(message_id: str, parent_id: str, text: str = "pong") -> dict[str, Any]:
    return {
        "info": {"id": message_id, "role": "assistant", "sessionID": "ses_1", "parentID": parent_id},
        "parts": [{"type": "text", "text": text}],
    }


def _question(request_id: str, session_id: str = "ses_1") -> dict[str, Any]:
    return {
        "id": request_id,
        "sessionID": session_id,
        "questions": [
            {"question": "Which database?", "header": "Database"},
            {"question": "Run migrations?", "header": "Migrations"},
        ],
    }


class _Sessions:
    def __init__(
        self,
        *,
        windows: list[Any] | None = None,
        statuses: list[Any] | None = None,
    ) -> None:
        self.windows = list(windows or [[]])
        self.statuses = list(statuses or [{}])
        self.message_calls: list[dict[str, Any]] = []
        self.status_calls = 0
        self.created: list[dict[str, Any]] = []
        self.prompts: list[dict[str, Any]] = []

    @staticmethod
    def _next(script: list[Any]) -> Any:
        value = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(value, Exception):
            raise value
        return value

    def messages(self, *, session_id: str, limit: int | None = None) -> Any:
        self.message_calls.append({"session_id": session_id, "limit": limit})
        return self._next(self.windows)

    def status(self) -> Any:
        self.status_calls += 1
        return self._next(self.statuses)

    def create(self, *, title: str | None = None, directory: str | None = None) -> Any:
        self.created.append({"title": title, "directory": directory})
        return {"id": "ses_new"}

    def prompt_async(self, *, session_id: str, message_id: str, text: str, directory: str | None = None) -> Any:
        self.prompts.append({"session_id": session_id, "message_id": message_id, "text": text, "directory": directory})
        return None


class _Listing:
    def __init__(self, payload: Any = None) -> None:
        self.payload = [] if payload is None else payload
        self.calls = 0

    def list(self) -> Any:
        self.calls += 1
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class _AsyncSessions(_Sessions):
    async def messages(self, *, session_id: str, limit: int | None = None) -> Any:  # type: ignore[override]
        return super().messages(session_id=session_id, limit=limit)

    async def status(self) -> Any:  # type: ignore[override]
        return super().status()

    async def create(self, *, title: str | None = None, directory: str | None = None) -> Any:  # type: ignore[override]
        return super().create(title=title, directory=directory)

    async def prompt_async(self, **kwargs: Any) -> Any:  # type: ignore[override]
        return super().prompt_async(**kwargs)


class _AsyncListing(_Listing):
    async def list(self) -> Any:  # type: ignore[override]
        return super().list()


def _server_error() -> ServerError:
    return ServerError(
        "sessions.messages failed with status 502",
        details=RequestDetails(operation="sessions.messages", method="GET", path="/session/ses_1/message", status_code=502),
    )


HANDLE = encode_handle("ses_1", "msg_async_1000_abc", 1000)


def test_message_ids_are_unique_and_prefixed() -> None:
    ids = {generate_message_id(1000) for _ in range(200)}
    assert len(ids) == 200
    assert all(re.fullmatch(r"msg_async_1000_[a-z0-9]{8}", value) for value in ids)


def test_poll_settings_enforce_floor_and_cap() -> None:
    settings = PollSettings.create(poll_interval_ms=10, poll_limit=5000)
    assert settings.interval_seconds == pytest.approx(0.3)
    assert settings.poll_limit == 200
    defaults = PollSettings.create()
    assert defaults.timeout_seconds == 30.0
    assert defaults.interval_seconds == pytest.approx(0.5)
    with pytest.raises(ValueError):
        PollSettings.create(timeout_seconds=0)


def test_find_reply_prefers_latest_matching_assistant() -> None:
    window = [
        _user("msg_async_1000_abc"),
        _assistant("m2", "msg_async_1000_abc", "first"),
        _assistant("m3", "msg_other"),
        _assistant("m4", "msg_async_1000_abc", "second"),
        _user("m5"),
    ]
    match = find_reply(window, "msg_async_1000_abc")
    assert match is not None
    assert match[0].info.id == "m4"
    assert match[1] is window[3]


def test_submit_posts_prompt_and_returns_decodable_handle() -> None:
    sessions = _Sessions()
    correlator = ReplyCorrelator(sessions, _Listing(), _Listing())

    receipt = correlator.submit(message="ping", session_id="ses_1", directory="/work")

    assert isinstance(receipt, SubmitReceipt)
    assert sessions.prompts == [
        {"session_id": "ses_1", "message_id": receipt.message_id, "text": "ping", "directory": "/work"}
    ]
    handle = decode_handle(receipt.async_request_id)
    assert (handle.session_id, handle.message_id, handle.submitted_at_ms) == (
        "ses_1",
        receipt.message_id,
        receipt.submitted_at_ms,
    )
    assert receipt.to_dict()["status"] == "submitted"


def test_submit_creates_session_when_missing() -> None:
    sessions = _Sessions()
    questions = _Listing([_question("que_1", session_id="ses_new")])
    receipt = ReplyCorrelator(sessions, questions, _Listing()).submit(message="ping")

    assert isinstance(receipt, SubmitReceipt)
    assert receipt.session_id == "ses_new"
    assert receipt.created_session is True
    assert questions.calls == 0


def test_submit_refuses_blocked_session() -> None:
    sessions = _Sessions()
    questions = _Listing([_question("que_1"), _question("que_2", session_id="ses_other")])

    result = ReplyCorrelator(sessions, questions, _Listing()).submit(message="ping", session_id="ses_1")

    assert isinstance(result, ReplyBlocked)
    assert sessions.prompts == []
    summaries = result.to_dict()["pending_questions"]
    assert summaries == [{"request_id": "que_1", "question_count": 2, "headers": ["Database", "Migrations"]}]


def test_await_resolves_settled_reply_after_one_poll() -> None:
    sessions = _Sessions(
        windows=[
            [_user("msg_async_1000_abc")],
            [_user("msg_async_1000_abc"), _assistant("m2", "msg_async_1000_abc")],
        ],
        statuses=[{"ses_1": {"type": "idle"}}],
    )
    correlator = ReplyCorrelator(sessions, _Listing(), _Listing())

    result = correlator.await_reply(HANDLE, timeout_seconds=5, poll_interval_ms=300)

    assert isinstance(result, ReplyResolved)
    assert result.reply_message_id == "m2"
    assert result.streaming is False
    assert result.text == "pong"
    payload = result.to_dict()
    assert payload["status"] == "resolved"
    assert payload["session_status"] == {"type": "idle"}
    # Idle status triggers one confirming re-fetch of the window.
    assert len(sessions.message_calls) == 3
    assert all(call["limit"] == 200 for call in sessions.message_calls)


def test_idle_refetch_prefers_freshest_reply() -> None:
    sessions = _Sessions(
        windows=[
            [_user("msg_async_1000_abc"), _assistant("m2", "msg_async_1000_abc", "partial")],
            [
                _user("msg_async_1000_abc"),
                _assistant("m2", "msg_async_1000_abc", "partial"),
                _assistant("m3", "msg_async_1000_abc", "final"),
            ],
        ],
        statuses=[{"ses_1": {"type": "idle"}}],
    )
    result = ReplyCorrelator(sessions, _Listing(), _Listing()).await_reply(HANDLE, timeout_seconds=5)

    assert isinstance(result, ReplyResolved)
    assert result.reply_message_id == "m3"
    assert result.text == "final"


@pytest.mark.parametrize(
    "status",
    [{"type": "busy", "message": "writing"}, {"type": "retry", "attempt": 2, "next": 1700000000000, "message": "rate"}],
)
def test_busy_or_retry_status_marks_reply_streaming(status: dict[str, Any]) -> None:
    sessions = _Sessions(
        windows=[[_user("msg_async_1000_abc"), _assistant("m2", "msg_async_1000_abc", "par")]],
        statuses=[{"ses_1": status}],
    )
    result = ReplyCorrelator(sessions, _Listing(), _Listing()).await_reply(HANDLE, timeout_seconds=5)

    assert isinstance(result, ReplyResolved)
    assert result.streaming is True
    assert result.to_dict()["status"] == "streaming"
    assert len(sessions.message_calls) == 1


def test_missing_status_resolves_as_settled() -> None:
    sessions = _Sessions(windows=[[_assistant("m2", "msg_async_1000_abc")]], statuses=[{}])
    result = ReplyCorrelator(sessions, _Listing(), _Listing()).await_reply(HANDLE, timeout_seconds=5)
    assert isinstance(result, ReplyResolved)
    assert result.streaming is False
    assert result.session_status is None


def test_blocked_on_first_poll() -> None:
    sessions = _Sessions(windows=[[_user("msg_async_1000_abc")]])
    questions = _Listing([_question("que_1")])

    result = ReplyCorrelator(sessions, questions, _Listing()).await_reply(HANDLE, timeout_seconds=30)

    assert isinstance(result, ReplyBlocked)
    assert result.async_request_id == HANDLE
    assert result.elapsed_ms < 5000
    assert len(sessions.message_calls) == 1


def test_reply_wins_over_question_for_a_later_turn() -> None:
    sessions = _Sessions(
        windows=[[_user("msg_async_1000_abc"), _assistant("m2", "msg_async_1000_abc")]],
        statuses=[{"ses_1": {"type": "busy"}}],
    )
    questions = _Listing([_question("que_1")])

    result = ReplyCorrelator(sessions, questions, _Listing()).await_reply(HANDLE, timeout_seconds=5)

    assert isinstance(result, ReplyResolved)
    assert questions.calls == 0


def test_timeout_reports_diagnostics() -> None:
    window = [_user("msg_async_1000_abc"), _assistant("m9", "msg_other", "working on something else")]
    sessions = _Sessions(windows=[window], statuses=[{"ses_1": {"type": "busy"}}])
    permissions = _Listing([{"id": "per_1", "sessionID": "ses_1"}, {"id": "per_2", "sessionID": "ses_2"}])

    result = ReplyCorrelator(sessions, _Listing(), permissions).await_reply(
        HANDLE, timeout_seconds=0.4, poll_interval_ms=300
    )

    assert isinstance(result, ReplyTimedOut)
    assert result.partial_reply is None
    assert result.session_status is not None and result.session_status.type == "busy"
    diagnostics = result.to_dict()["diagnostics"]
    assert diagnostics == {
        "assistant_messages_seen": 1,
        "matching_parent_count": 0,
        "latest_assistant_preview": "working on something else",
        "latest_assistant_parent_id": "msg_other",
        "pending_permissions": 1,
        "pending_questions": 0,
    }
    assert result.attempts >= 2


def test_timeout_diagnostics_degrade_when_a_fetch_fails() -> None:
    sessions = _Sessions(windows=[[_user("msg_async_1000_abc")]])
    permissions = _Listing(TransportError("connection reset"))

    result = ReplyCorrelator(sessions, _Listing(), permissions).await_reply(
        HANDLE, timeout_seconds=0.3, poll_interval_ms=300
    )

    assert isinstance(result, ReplyTimedOut)
    assert result.diagnostics is None
    assert "connection reset" in (result.diagnostics_error or "")
    assert result.to_dict()["status"] == "timeout"


def test_transient_poll_errors_are_retried() -> None:
    sessions = _Sessions(
        windows=[
            TransportError("connection refused"),
            _server_error(),
            [_assistant("m2", "msg_async_1000_abc")],
        ],
        statuses=[{"ses_1": {"type": "busy"}}],
    )
    result = ReplyCorrelator(sessions, _Listing(), _Listing()).await_reply(
        HANDLE, timeout_seconds=5, poll_interval_ms=300
    )
    assert isinstance(result, ReplyResolved)
    assert result.attempts == 3


def test_client_errors_abort_the_wait() -> None:
    missing = NotFoundError(
        "sessions.messages failed with status 404",
        details=RequestDetails(operation="sessions.messages", method="GET", path="/session/ses_1/message", status_code=404),
    )
    sessions = _Sessions(windows=[missing])
    with pytest.raises(NotFoundError):
        ReplyCorrelator(sessions, _Listing(), _Listing()).await_reply(HANDLE, timeout_seconds=5)
    assert len(sessions.message_calls) == 1


def test_wait_without_any_successful_poll_raises_last_error() -> None:
    sessions = _Sessions(windows=[TransportError("connection refused")])
    with pytest.raises(TransportError):
        ReplyCorrelator(sessions, _Listing(), _Listing()).await_reply(
            HANDLE, timeout_seconds=0.3, poll_interval_ms=300
        )


def test_malformed_handle_fails_before_any_request() -> None:
    sessions = _Sessions()
    with pytest.raises(InvalidHandleError):
        ReplyCorrelator(sessions, _Listing(), _Listing()).await_reply("garbage")
    assert sessions.message_calls == []


@pytest.mark.asyncio
async def test_async_submit_then_await_scenario() -> None:
    sessions = _AsyncSessions(statuses=[{"ses_1": {"type": "idle"}}])
    correlator = AsyncReplyCorrelator(sessions, _AsyncListing(), _AsyncListing())

    receipt = await correlator.submit(message="ping", session_id="ses_1")
    assert isinstance(receipt, SubmitReceipt)
    reply = _assistant("m2", receipt.message_id)
    sessions.windows = [[_user(receipt.message_id)], [_user(receipt.message_id), reply]]

    result = await correlator.await_reply(receipt.async_request_id, timeout_seconds=5, poll_interval_ms=300)

    assert isinstance(result, ReplyResolved)
    assert result.reply_message_id == "m2"
    assert result.streaming is False
    assert result.reply == reply


@pytest.mark.asyncio
async def test_async_blocked_and_timeout() -> None:
    blocked = await AsyncReplyCorrelator(
        _AsyncSessions(windows=[[]]), _AsyncListing([_question("que_1")]), _AsyncListing()
    ).await_reply(HANDLE, timeout_seconds=5)
    assert isinstance(blocked, ReplyBlocked)

    timed_out = await AsyncReplyCorrelator(_AsyncSessions(windows=[[]]), _AsyncListing(), _AsyncListing()).await_reply(
        HANDLE, timeout_seconds=0.3, poll_interval_ms=300
    )
    assert isinstance(timed_out, ReplyTimedOut)
    assert timed_out.diagnostics is not None
    assert timed_out.diagnostics.assistant_messages_seen == 0


@pytest.mark.asyncio
async def test_async_submit_refuses_blocked_session() -> None:
    sessions = _AsyncSessions()
    result = await AsyncReplyCorrelator(sessions, _AsyncListing([_question("que_1")]), _AsyncListing()).submit(
        message="ping", session_id="ses_1"
    )
    assert isinstance(result, ReplyBlocked)
    assert sessions.prompts == []
