"""Shared contract and helpers for LLM completion transports."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Protocol

import httpx

from ..errors import UpstreamError

logger = logging.getLogger(__name__)


class CompletionTransport(Protocol):
    """Blocking and streaming access to a remote text-completion model."""

    async def complete(self, prompt: str) -> str:
        """Return the full model answer for ``prompt``."""
        ...

    async def stream_complete(self, prompt: str, sink: asyncio.Queue[str]) -> None:
        """Push each text fragment of the answer into ``sink`` in order."""
        ...


@dataclass(slots=True)
class ServerSentEvent:
    """One event read from an upstream ``text/event-stream`` body."""

    event: str
    data: str

    def json(self) -> Any:
        try:
            return json.loads(self.data)
        except json.JSONDecodeError as exc:
            raise UpstreamError(f"Malformed stream payload: {self.data[:200]}") from exc


async def iter_sse_events(response: httpx.Response) -> AsyncIterator[ServerSentEvent]:
    """Yield events from a streaming response, skipping comments and keep-alives."""

    event_name = "message"
    data_lines: list[str] = []
    async for line in response.aiter_lines():
        if not line:
            if data_lines:
                yield ServerSentEvent(event=event_name, data="\n".join(data_lines))
            event_name = "message"
            data_lines = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event_name = value or "message"
        elif field == "data":
            data_lines.append(value)
    if data_lines:
        yield ServerSentEvent(event=event_name, data="\n".join(data_lines))


def raise_for_upstream_status(response: httpx.Response, engine: str) -> None:
    """Convert an HTTP error status into :class:`UpstreamError`."""

    if response.status_code < 400:
        return
    try:
        body = response.text
    except httpx.ResponseNotRead:
        body = ""
    logger.error(
        "%s request failed (%s): %s", engine, response.status_code, body[:500]
    )
    raise UpstreamError(
        f"{engine} returned HTTP {response.status_code}: {body[:200]}".rstrip(": "),
        status_code=response.status_code,
    )


def decode_json_body(response: httpx.Response, engine: str) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as exc:
        raise UpstreamError(f"{engine} returned a non-JSON body") from exc
    if not isinstance(data, dict):
        raise UpstreamError(f"{engine} returned an unexpected payload")
    return data
