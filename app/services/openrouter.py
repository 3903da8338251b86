"""Completion transport backed by the OpenRouter chat API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from ..config import Settings
from ..errors import EmptyResponseError, UpstreamError
from .completion import (
    decode_json_body,
    iter_sse_events,
    raise_for_upstream_status,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are Shelfmind, an assistant that knows a person's movie, music and game "
    "collection. When asked for structured data you answer with JSON only."
)

_STREAM_DONE = "[DONE]"


class OpenRouterClient:
    """Client responsible for talking to OpenRouter's /chat/completions endpoint."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    async def complete(self, prompt: str) -> str:
        """Send ``prompt`` and return the concatenated text of the first choice."""

        payload = self._build_payload(prompt, max_tokens=self._settings.completion_max_tokens)
        try:
            response = await self._client.post(
                "/chat/completions", json=payload, headers=self._headers()
            )
        except httpx.HTTPError as exc:
            raise UpstreamError(f"openrouter complete: {exc}") from exc
        raise_for_upstream_status(response, "OpenRouter")

        data = decode_json_body(response, "OpenRouter")
        self._raise_for_error_payload(data)
        choices = data.get("choices") or []
        if not choices:
            raise EmptyResponseError("empty response from openrouter")
        choice = choices[0] if isinstance(choices, list) else None
        if not isinstance(choice, dict):
            raise UpstreamError("malformed choice in openrouter response")
        message = choice.get("message") or {}
        if not isinstance(message, dict):
            raise UpstreamError("malformed message in openrouter response")
        content = message.get("content")
        segments = self._text_segments(content)
        if not segments:
            raise EmptyResponseError("empty response from openrouter")
        return "".join(segments)

    async def stream_complete(self, prompt: str, sink: asyncio.Queue[str]) -> None:
        """Stream ``prompt`` and hand each text delta to ``sink``."""

        payload = self._build_payload(prompt, max_tokens=self._settings.stream_max_tokens)
        payload["stream"] = True
        try:
            async with self._client.stream(
                "POST", "/chat/completions", json=payload, headers=self._headers()
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise_for_upstream_status(response, "OpenRouter")
                async for event in iter_sse_events(response):
                    if event.data.strip() == _STREAM_DONE:
                        break
                    chunk = event.json()
                    if not isinstance(chunk, dict):
                        continue
                    self._raise_for_error_payload(chunk)
                    for choice in chunk.get("choices") or []:
                        if not isinstance(choice, dict):
                            raise UpstreamError("stream error: malformed choice chunk")
                        delta = choice.get("delta") or {}
                        if not isinstance(delta, dict):
                            raise UpstreamError("stream error: malformed delta chunk")
                        text = delta.get("content")
                        if isinstance(text, str) and text:
                            await sink.put(text)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"stream error: {exc}") from exc

    def _build_payload(self, prompt: str, *, max_tokens: int) -> dict[str, Any]:
        return {
            "model": self._settings.openrouter_model,
            "max_tokens": max_tokens,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }

    def _headers(self) -> dict[str, str]:
        api_key = self._settings.openrouter_api_key
        if not api_key:
            raise UpstreamError("OpenRouter API key is required for AI features")
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "X-Title": self._settings.app_name,
        }

    @staticmethod
    def _text_segments(content: object) -> list[str]:
        """Return the textual parts of a message ``content`` field."""

        if isinstance(content, str):
            return [content] if content else []
        segments: list[str] = []
        if isinstance(content, list):
            for part in content:
                if not isinstance(part, dict) or part.get("type") != "text":
                    continue
                text = part.get("text")
                if isinstance(text, str):
                    segments.append(text)
        return segments

    @staticmethod
    def _raise_for_error_payload(data: dict[str, Any]) -> None:
        error = data.get("error")
        if not error:
            return
        if isinstance(error, dict):
            message = str(error.get("message") or error)
            code = error.get("code")
        else:
            message = str(error)
            code = None
        logger.warning("OpenRouter reported an error: %s", message)
        raise UpstreamError(
            f"openrouter error: {message}",
            status_code=code if isinstance(code, int) else None,
        )
