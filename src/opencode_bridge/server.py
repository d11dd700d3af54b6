"""MCP server exposing the opencode bridge tools over stdio or SSE."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from mcp.server.fastmcp import FastMCP

from .client import AsyncOpencodeClient
from .config import ClientConfig, ServerSettings
from .pagination import dump_json
from .tools import BridgeTools

logger = logging.getLogger(__name__)

SERVER_NAME = "opencode-bridge"


def build_server(
    client: AsyncOpencodeClient | None = None,
    *,
    settings: ServerSettings | None = None,
) -> FastMCP:
    settings = settings or ServerSettings()
    client = client or AsyncOpencodeClient(config=ClientConfig.from_env())
    tools = BridgeTools(client)

    @asynccontextmanager
    async def lifespan(_: FastMCP) -> AsyncIterator[None]:
        try:
            yield
        finally:
            await client.close()

    server = FastMCP(SERVER_NAME, lifespan=lifespan, port=settings.port)

    def render(payload: dict[str, Any]) -> str:
        return dump_json(payload)

    @server.tool()
    async def opencode_chat(message: str, session_id: str | None = None, directory: str | None = None) -> str:
        """Send a message to the opencode agent and wait for the full reply.

        Creates a new session when session_id is omitted.
        """
        return render(await tools.chat(message, session_id=session_id, directory=directory))

    @server.tool()
    async def opencode_chat_async(message: str, session_id: str | None = None, directory: str | None = None) -> str:
        """Submit a message without waiting and return an async_request_id.

        Pass the id to opencode_await_reply to collect the reply. Sessions with
        pending questions are reported as blocked instead of accepting the message.
        """
        return render(await tools.chat_async(message, session_id=session_id, directory=directory))

    @server.tool()
    async def opencode_await_reply(
        async_request_id: str,
        timeout_seconds: float = 30.0,
        poll_interval_ms: int = 500,
        poll_limit: int = 200,
    ) -> str:
        """Wait for the reply to a message submitted with opencode_chat_async.

        Returns a resolved or streaming reply, a blocked diagnosis listing the
        pending questions, or a timeout diagnosis. Streaming and timeout results
        can be awaited again with the same id. poll_interval_ms is at least 300
        and poll_limit at most 200.
        """
        return render(
            await tools.await_reply(
                async_request_id,
                timeout_seconds=timeout_seconds,
                poll_interval_ms=poll_interval_ms,
                poll_limit=poll_limit,
            )
        )

    @server.tool()
    async def opencode_get_messages(
        session_id: str,
        limit: int = 50,
        cursor: str | None = None,
        max_output_tokens: int = 5000,
        fields: list[str] | None = None,
    ) -> str:
        """Read one page of a session's messages, oldest first.

        limit is at most 200 and max_output_tokens at most 20000. fields takes
        dot paths such as "info.id" or "parts.text"; "*" returns whole messages.
        Pass pagination.next_cursor back as cursor to read the next page.
        """
        return render(
            await tools.get_messages(
                session_id,
                limit=limit,
                cursor=cursor,
                max_output_tokens=max_output_tokens,
                fields=fields,
            )
        )

    @server.tool()
    async def opencode_create_session(title: str | None = None, directory: str | None = None) -> str:
        """Create a new opencode session."""
        return render(await tools.create_session(title=title, directory=directory))

    @server.tool()
    async def opencode_list_sessions(directory: str | None = None, limit: int | None = None) -> str:
        """List opencode sessions, optionally filtered by directory."""
        return render(await tools.list_sessions(directory=directory, limit=limit))

    @server.tool()
    async def opencode_get_session(session_id: str) -> str:
        """Get details for one session."""
        return render(await tools.get_session(session_id))

    @server.tool()
    async def opencode_check_health() -> str:
        """Check that the opencode server is reachable and healthy."""
        return render(await tools.check_health())

    @server.tool()
    async def opencode_list_questions(session_id: str | None = None) -> str:
        """List questions the agent is waiting on, optionally for one session."""
        return render(await tools.list_questions(session_id=session_id))

    @server.tool()
    async def opencode_answer_question(request_id: str, answers: list[Any]) -> str:
        """Answer a pending question so the session can continue."""
        return render(await tools.answer_question(request_id, answers))

    @server.tool()
    async def opencode_reject_question(request_id: str) -> str:
        """Reject a pending question so the session can continue."""
        return render(await tools.reject_question(request_id))

    return server


def run(mode: str = "stdio", *, settings: ServerSettings | None = None) -> None:
    settings = settings or ServerSettings.from_env()
    config = ClientConfig.from_env()
    server = build_server(AsyncOpencodeClient(config=config), settings=settings)

    if mode == "sse":
        logger.info("%s listening on port %d (sse), agent at %s", SERVER_NAME, settings.port, config.base_url)
    else:
        logger.info("%s running on stdio, agent at %s", SERVER_NAME, config.base_url)
    server.run(transport=mode)
