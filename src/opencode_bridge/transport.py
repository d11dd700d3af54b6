"""HTTP transport for the opencode agent API."""

from __future__ import annotations

from dataclasses import dataclass
from json import JSONDecodeError
from typing import Any
from urllib.parse import quote, urlencode

import httpx

from .errors import ClientTimeoutError, RequestDetails, TransportError, classify_api_error


@dataclass(slots=True)
class RequestOptions:
    operation: str
    method: str
    path: str
    query: dict[str, Any] | None = None
    json_body: Any | None = None
    headers: dict[str, str] | None = None


def encode_query(params: dict[str, Any] | None) -> str:
    if not params:
        return ""

    encoded: dict[str, str] = {}
    for key, value in params.items():
        # opencode treats an empty directory the same as a missing one.
        if value is None or value == "":
            continue
        if isinstance(value, bool):
            encoded[key] = "true" if value else "false"
            continue
        encoded[key] = str(value)

    if not encoded:
        return ""
    return "?" + urlencode(encoded)


def path_segment(value: str) -> str:
    return quote(value, safe="")


def parse_response_body(response: httpx.Response) -> Any:
    if not response.content:
        return None

    content_type = response.headers.get("content-type", "")
    if "application/json" not in content_type:
        return response.text

    try:
        return response.json()
    except JSONDecodeError:
        return response.text


def validate_status(response: httpx.Response, options: RequestOptions) -> None:
    if 200 <= response.status_code < 300:
        return

    details = RequestDetails(
        operation=options.operation,
        method=options.method,
        path=options.path,
        status_code=response.status_code,
        response_body=parse_response_body(response),
    )
    raise classify_api_error(details)


def _build_path(options: RequestOptions) -> str:
    path = options.path or "/"
    if options.query:
        path += encode_query(options.query)
    return path


class SyncTransport:
    def __init__(self, client: httpx.Client) -> None:
        self._client = client

    def request(
        self,
        *,
        operation: str,
        method: str,
        path: str,
        query: dict[str, Any] | None = None,
        json_body: Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        options = RequestOptions(
            operation=operation,
            method=method,
            path=path,
            query=query,
            json_body=json_body,
            headers=headers,
        )

        try:
            response = self._client.request(
                options.method,
                _build_path(options),
                json=options.json_body,
                headers=options.headers,
            )
        except httpx.TimeoutException as error:
            raise ClientTimeoutError(f"{operation} timed out: {error}") from error
        except httpx.HTTPError as error:
            raise TransportError(f"{operation} failed: {error}") from error

        validate_status(response, options)
        return parse_response_body(response)


class AsyncTransport:
    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def request(
        self,
        *,
        operation: str,
        method: str,
        path: str,
        query: dict[str, Any] | None = None,
        json_body: Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        options = RequestOptions(
            operation=operation,
            method=method,
            path=path,
            query=query,
            json_body=json_body,
            headers=headers,
        )

        try:
            response = await self._client.request(
                options.method,
                _build_path(options),
                json=options.json_body,
                headers=options.headers,
            )
        except httpx.TimeoutException as error:
            raise ClientTimeoutError(f"{operation} timed out: {error}") from error
        except httpx.HTTPError as error:
            raise TransportError(f"{operation} failed: {error}") from error

        validate_status(response, options)
        return parse_response_body(response)
