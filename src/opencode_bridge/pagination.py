"""Bounded, field-projected, token-budgeted pages over a session's history."""

from __future__ import annotations

import json
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from .protocols import SessionsBackend
from .tokens import decode_cursor, encode_cursor

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200
DEFAULT_MAX_OUTPUT_TOKENS = 5000
MAX_OUTPUT_TOKENS = 20000
CHARS_PER_TOKEN = 4
WILDCARD = "*"

BUDGET_NOTICE = (
    "The next message does not fit within max_output_tokens even on its own. "
    "Request fewer fields or raise max_output_tokens; retrying with the same "
    "arguments returns this same empty page."
)

_MISSING = object()


def dump_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def estimate_tokens(value: Any) -> int:
    return math.ceil(len(dump_json(value)) / CHARS_PER_TOKEN)


def clamp(value: int | None, *, default: int, maximum: int, minimum: int = 1) -> int:
    if value is None or isinstance(value, bool):
        return default
    return max(minimum, min(int(value), maximum))


def normalize_fields(fields: Iterable[str] | str | None) -> list[str] | None:
    """Return cleaned field paths, or None when the full message is wanted."""
    if fields is None:
        return None
    values = [fields] if isinstance(fields, str) else list(fields)
    cleaned: list[str] = []
    for value in values:
        if not isinstance(value, str):
            raise ValueError("fields must be strings")
        path = ".".join(segment.strip() for segment in value.split(".") if segment.strip())
        if path == WILDCARD:
            return None
        if path and path not in cleaned:
            cleaned.append(path)
    return cleaned or None


def _field_tree(paths: Sequence[str]) -> dict[str, Any]:
    tree: dict[str, Any] = {}
    for path in paths:
        node = tree
        segments = path.split(".")
        for index, segment in enumerate(segments):
            if index == len(segments) - 1:
                # A shorter path already selects the whole subtree.
                node[segment] = None
                break
            child = node.get(segment, {})
            if child is None:
                break
            node[segment] = child
            node = child
    return tree


def _project(value: Any, tree: dict[str, Any] | None) -> Any:
    if tree is None:
        return value

    if isinstance(value, list):
        projected_items = []
        for item in value:
            projected = _project(item, tree)
            if projected is _MISSING or projected == {}:
                continue
            projected_items.append(projected)
        return projected_items if projected_items else _MISSING

    if not isinstance(value, dict):
        return _MISSING

    result: dict[str, Any] = {}
    for key, subtree in tree.items():
        if key not in value:
            continue
        projected = _project(value[key], subtree)
        if projected is _MISSING:
            continue
        if isinstance(projected, dict) and not projected and subtree is not None:
            continue
        result[key] = projected
    return result


def project_message(message: Any, fields: Sequence[str] | None) -> Any:
    if fields is None:
        return message
    projected = _project(message, _field_tree(fields))
    return {} if projected is _MISSING else projected


def _path_matches(value: Any, segments: Sequence[str]) -> bool:
    if not segments:
        return True
    if isinstance(value, list):
        return any(_path_matches(item, segments) for item in value)
    if isinstance(value, dict) and segments[0] in value:
        return _path_matches(value[segments[0]], segments[1:])
    return False


def missing_fields(messages: Sequence[Any], fields: Sequence[str] | None) -> list[str]:
    if fields is None:
        return []
    return [
        path
        for path in fields
        if not any(_path_matches(message, path.split(".")) for message in messages)
    ]


@dataclass(slots=True)
class PageResult:
    session_id: str
    items: list[Any]
    cursor: str | None
    next_cursor: str | None
    has_more: bool
    limit: int
    max_output_tokens: int
    estimated_output_tokens: int = 0
    truncated_by_budget: bool = False
    budget_unsatisfiable: bool = False
    fields: list[str] | None = None
    missing_fields: list[str] = field(default_factory=list)
    notice: str | None = None

    @property
    def returned_count(self) -> int:
        return len(self.items)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "session_id": self.session_id,
            "items": self.items,
            "pagination": {
                "limit": self.limit,
                "cursor": self.cursor,
                "next_cursor": self.next_cursor,
                "has_more": self.has_more,
                "returned_count": self.returned_count,
            },
            "budget": {
                "max_output_tokens": self.max_output_tokens,
                "estimated_output_tokens": self.estimated_output_tokens,
                "truncated_by_budget": self.truncated_by_budget,
                "budget_unsatisfiable": self.budget_unsatisfiable,
            },
            "projection": {
                "fields": self.fields if self.fields is not None else [WILDCARD],
                "missing_fields": self.missing_fields,
            },
        }
        if self.notice:
            payload["notice"] = self.notice
        return payload


def _fit_to_budget(projected: Sequence[Any], budget: int) -> int:
    """Count how many leading items fit in `budget`; never fewer than one."""
    accepted: list[Any] = []
    for item in projected:
        accepted.append(item)
        if estimate_tokens(accepted) > budget:
            if len(accepted) > 1:
                accepted.pop()
            break
    return len(accepted)


def build_page(
    window: Sequence[Any],
    *,
    session_id: str,
    offset: int,
    limit: int,
    max_output_tokens: int,
    fields: Sequence[str] | None,
    cursor: str | None = None,
) -> PageResult:
    """Assemble one page from a fetched window that starts at the oldest message.

    `window` must hold at least `offset + limit + 1` messages when more exist,
    which is how `has_more` is detected without a second request.
    """
    source = list(window[offset : offset + limit])
    has_more_from_source = len(window) > offset + limit
    projected = [project_message(message, fields) for message in source]

    kept = _fit_to_budget(projected, max_output_tokens) if projected else 0
    truncated = kept < len(projected)

    page = PageResult(
        session_id=session_id,
        items=projected[:kept],
        cursor=cursor,
        next_cursor=None,
        has_more=False,
        limit=limit,
        max_output_tokens=max_output_tokens,
        fields=list(fields) if fields is not None else None,
    )
    _settle(page, source, offset=offset, truncated=truncated, has_more_from_source=has_more_from_source)

    while page.estimated_output_tokens > max_output_tokens and page.items:
        page.items = page.items[:-1]
        _settle(page, source, offset=offset, truncated=True, has_more_from_source=has_more_from_source)

    if not page.items and (truncated or page.truncated_by_budget):
        page.next_cursor = cursor if cursor else encode_cursor(offset)
        page.has_more = True
        page.budget_unsatisfiable = True
        page.missing_fields = []
        page.notice = BUDGET_NOTICE
        page.estimated_output_tokens = estimate_tokens(page.to_dict())

    return page


def _settle(
    page: PageResult,
    source: Sequence[Any],
    *,
    offset: int,
    truncated: bool,
    has_more_from_source: bool,
) -> None:
    returned = len(page.items)
    page.truncated_by_budget = truncated
    page.has_more = truncated or has_more_from_source
    page.next_cursor = encode_cursor(offset + returned) if page.has_more and returned else None
    page.missing_fields = missing_fields(source[:returned], page.fields)
    page.estimated_output_tokens = estimate_tokens(page.to_dict())


@dataclass(slots=True)
class PageRequest:
    session_id: str
    offset: int
    limit: int
    max_output_tokens: int
    fields: list[str] | None
    cursor: str | None

    @property
    def fetch_limit(self) -> int:
        return self.offset + self.limit + 1

    @classmethod
    def create(
        cls,
        *,
        session_id: str,
        limit: int | None = None,
        cursor: str | None = None,
        max_output_tokens: int | None = None,
        fields: Iterable[str] | str | None = None,
    ) -> "PageRequest":
        if not isinstance(session_id, str) or not session_id.strip():
            raise ValueError("session_id is required")
        return cls(
            session_id=session_id,
            offset=decode_cursor(cursor),
            limit=clamp(limit, default=DEFAULT_PAGE_SIZE, maximum=MAX_PAGE_SIZE),
            max_output_tokens=clamp(max_output_tokens, default=DEFAULT_MAX_OUTPUT_TOKENS, maximum=MAX_OUTPUT_TOKENS),
            fields=normalize_fields(fields),
            cursor=cursor or None,
        )

    def build(self, window: Any) -> PageResult:
        return build_page(
            window if isinstance(window, list) else [],
            session_id=self.session_id,
            offset=self.offset,
            limit=self.limit,
            max_output_tokens=self.max_output_tokens,
            fields=self.fields,
            cursor=self.cursor,
        )


class MessagePager:
    """Synchronous message history pages."""

    def __init__(self, sessions_api: SessionsBackend) -> None:
        self._sessions = sessions_api

    def get_page(
        self,
        *,
        session_id: str,
        limit: int | None = None,
        cursor: str | None = None,
        max_output_tokens: int | None = None,
        fields: Iterable[str] | str | None = None,
    ) -> PageResult:
        request = PageRequest.create(
            session_id=session_id,
            limit=limit,
            cursor=cursor,
            max_output_tokens=max_output_tokens,
            fields=fields,
        )
        window = self._sessions.messages(session_id=request.session_id, limit=request.fetch_limit)
        return request.build(window)


class AsyncMessagePager:
    """Asynchronous message history pages."""

    def __init__(self, sessions_api: SessionsBackend) -> None:
        self._sessions = sessions_api

    async def get_page(
        self,
        *,
        session_id: str,
        limit: int | None = None,
        cursor: str | None = None,
        max_output_tokens: int | None = None,
        fields: Iterable[str] | str | None = None,
    ) -> PageResult:
        request = PageRequest.create(
            session_id=session_id,
            limit=limit,
            cursor=cursor,
            max_output_tokens=max_output_tokens,
            fields=fields,
        )
        window = await self._sessions.messages(session_id=request.session_id, limit=request.fetch_limit)
        return request.build(window)
