"""Boundary models for opencode payloads.

Remote entities are parsed leniently: the agent adds fields over time and the
bridge only reads the handful it correlates on. Unparseable entries are skipped
rather than failing a whole poll.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

SessionStatusType = Literal["idle", "busy", "retry"]


class _RemoteModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class MessageInfo(_RemoteModel):
    id: str
    role: str
    session_id: str | None = Field(default=None, validation_alias=AliasChoices("sessionID", "sessionId"))
    parent_id: str | None = Field(default=None, validation_alias=AliasChoices("parentID", "parentId"))


class MessagePart(_RemoteModel):
    type: str
    text: str | None = None


class Message(_RemoteModel):
    info: MessageInfo
    parts: list[MessagePart] = Field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(part.text for part in self.parts if part.type == "text" and part.text)


class SessionStatus(_RemoteModel):
    type: SessionStatusType
    message: str | None = None
    attempt: int | None = None
    next: int | None = None

    @property
    def is_streaming(self) -> bool:
        return self.type in ("busy", "retry")


class QuestionItem(_RemoteModel):
    question: str = ""
    header: str = ""


class PendingQuestion(_RemoteModel):
    id: str
    session_id: str | None = Field(default=None, validation_alias=AliasChoices("sessionID", "sessionId"))
    questions: list[QuestionItem] = Field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        return {
            "request_id": self.id,
            "question_count": len(self.questions),
            "headers": [item.header for item in self.questions if item.header],
        }


class PendingPermission(_RemoteModel):
    id: str
    session_id: str | None = Field(default=None, validation_alias=AliasChoices("sessionID", "sessionId"))


def parse_message(raw: Any) -> Message | None:
    if not isinstance(raw, dict):
        return None
    try:
        return Message.model_validate(raw)
    except ValidationError:
        return None


def parse_messages(payload: Any) -> list[tuple[Message, dict[str, Any]]]:
    """Pair each parseable message with its raw mapping, preserving order."""
    if not isinstance(payload, list):
        return []
    parsed: list[tuple[Message, dict[str, Any]]] = []
    for raw in payload:
        message = parse_message(raw)
        if message is not None:
            parsed.append((message, raw))
    return parsed


def status_for_session(payload: Any, session_id: str) -> SessionStatus | None:
    if not isinstance(payload, dict):
        return None
    entry = payload.get(session_id)
    if not isinstance(entry, dict):
        return None
    try:
        return SessionStatus.model_validate(entry)
    except ValidationError:
        return None


def questions_for_session(payload: Any, session_id: str | None = None) -> list[PendingQuestion]:
    if not isinstance(payload, list):
        return []
    questions: list[PendingQuestion] = []
    for raw in payload:
        if not isinstance(raw, dict):
            continue
        try:
            question = PendingQuestion.model_validate(raw)
        except ValidationError:
            continue
        if session_id is not None and question.session_id != session_id:
            continue
        questions.append(question)
    return questions


def permissions_for_session(payload: Any, session_id: str) -> list[PendingPermission]:
    if not isinstance(payload, list):
        return []
    permissions: list[PendingPermission] = []
    for raw in payload:
        if not isinstance(raw, dict):
            continue
        try:
            permission = PendingPermission.model_validate(raw)
        except ValidationError:
            continue
        if permission.session_id == session_id:
            permissions.append(permission)
    return permissions
