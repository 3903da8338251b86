"""Completion transport backed by the Anthropic Messages API.

This client mirrors the interface of OpenRouterClient so the intelligence
service can switch engines through configuration without branching call
sites.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from ..config import Settings
from ..errors import EmptyResponseError, UpstreamError
from .completion import (
    ServerSentEvent,
    decode_json_body,
    iter_sse_events,
    raise_for_upstream_status,
)

logger = logging.getLogger(__name__)


class AnthropicClient:
    """Client responsible for talking to Anthropic's /v1/messages endpoint."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    async def complete(self, prompt: str) -> str:
        payload = self._build_payload(prompt, max_tokens=self._settings.completion_max_tokens)
        try:
            response = await self._client.post(
                "/v1/messages", json=payload, headers=self._headers()
            )
        except httpx.HTTPError as exc:
            raise UpstreamError(f"anthropic complete: {exc}") from exc
        raise_for_upstream_status(response, "Anthropic")

        data = decode_json_body(response, "Anthropic")
        blocks = data.get("content") or []
        if not isinstance(blocks, list) or not blocks:
            raise EmptyResponseError("empty response from anthropic")

        texts = [
            block["text"]
            for block in blocks
            if isinstance(block, dict)
            and block.get("type") == "text"
            and isinstance(block.get("text"), str)
        ]
        if not texts:
            raise EmptyResponseError("anthropic response contained no text blocks")
        return "".join(texts)

    async def stream_complete(self, prompt: str, sink: asyncio.Queue[str]) -> None:
        payload = self._build_payload(prompt, max_tokens=self._settings.stream_max_tokens)
        payload["stream"] = True
        try:
            async with self._client.stream(
                "POST", "/v1/messages", json=payload, headers=self._headers()
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise_for_upstream_status(response, "Anthropic")
                async for event in iter_sse_events(response):
                    if event.event == "message_stop":
                        break
                    text = self._delta_text(event)
                    if text:
                        await sink.put(text)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"stream error: {exc}") from exc

    def _build_payload(self, prompt: str, *, max_tokens: int) -> dict[str, Any]:
        return {
            "model": self._settings.anthropic_model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }

    def _headers(self) -> dict[str, str]:
        api_key = self._settings.anthropic_api_key
        if not api_key:
            raise UpstreamError("Anthropic API key is required for AI features")
        return {
            "x-api-key": api_key,
            "anthropic-version": self._settings.anthropic_version,
            "Content-Type": "application/json",
        }

    @staticmethod
    def _delta_text(event: ServerSentEvent) -> str | None:
        if event.event not in {"content_block_delta", "error"}:
            return None
        data = event.json()
        if not isinstance(data, dict):
            return None
        if event.event == "error" or data.get("type") == "error":
            error = data.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else error
            logger.warning("Anthropic stream reported an error: %s", message)
            raise UpstreamError(f"stream error: {message or 'unknown error'}")
        delta = data.get("delta") or {}
        if not isinstance(delta, dict):
            raise UpstreamError("stream error: malformed content_block_delta")
        if delta.get("type") != "text_delta":
            return None
        text = delta.get("text")
        return text if isinstance(text, str) else None
