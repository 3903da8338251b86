"""Server-Sent Events delivery of streamed collection insights."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Sequence

from ..models import CollectionItem
from ..utils import json_string
from .intelligence import IntelligenceService

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 32

SSE_HEADERS: dict[str, str] = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(data: str, *, event: str | None = None) -> str:
    """Return one SSE frame; ``data`` must not contain newlines."""

    if event:
        return f"event: {event}\ndata: {data}\n\n"
    return f"data: {data}\n\n"


DONE_FRAME = format_sse("{}", event="done")


class InsightStreamGateway:
    """Relay insight tokens from the model to an event-stream client.

    A producer task runs :meth:`IntelligenceService.stream_insights` into a
    bounded queue while :meth:`events` waits on whichever comes first: the
    next token, the producer finishing, or the caller cancelling.
    """

    def __init__(
        self,
        service: IntelligenceService,
        *,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        timeout: float | None = None,
    ):
        self._service = service
        self._queue_size = max(1, queue_size)
        self._timeout = timeout

    async def events(
        self,
        items: Sequence[CollectionItem],
        *,
        cancelled: asyncio.Event | None = None,
    ) -> AsyncIterator[str]:
        """Yield SSE frames for the insights stream of ``items``.

        Tokens are emitted in production order. ``done`` follows only once the
        producer returned and every queued token was written; ``error`` carries
        the producer's failure message. When ``cancelled`` is set, or the
        deadline passes, the producer is cancelled and nothing more is
        written.
        """

        if cancelled is None:
            cancelled = asyncio.Event()
        loop = asyncio.get_running_loop()
        deadline = (
            loop.call_later(self._timeout, cancelled.set)
            if self._timeout is not None
            else None
        )

        queue: asyncio.Queue[str] = asyncio.Queue(maxsize=self._queue_size)
        producer = asyncio.create_task(self._service.stream_insights(items, queue))
        cancel_wait = asyncio.create_task(cancelled.wait())
        next_token: asyncio.Task[str] | None = None
        try:
            while not cancelled.is_set():
                if next_token is None:
                    next_token = asyncio.create_task(queue.get())
                done, _ = await asyncio.wait(
                    {next_token, producer, cancel_wait},
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if cancel_wait in done:
                    break
                if next_token in done:
                    token = next_token.result()
                    next_token = None
                    yield format_sse(json_string(token))
                    continue

                # Producer finished with nothing in hand; flush what it queued.
                next_token.cancel()
                await asyncio.wait({next_token})
                if not next_token.cancelled():
                    yield format_sse(json_string(next_token.result()))
                next_token = None
                while not queue.empty() and not cancelled.is_set():
                    yield format_sse(json_string(queue.get_nowait()))
                if cancelled.is_set() or producer.cancelled():
                    break

                error = producer.exception()
                if error is not None:
                    logger.warning("Insight stream failed: %s", error)
                    yield format_sse(
                        json_string(str(error) or type(error).__name__),
                        event="error",
                    )
                else:
                    yield DONE_FRAME
                return
            logger.info("Insight stream cancelled by the caller")
        finally:
            if deadline is not None:
                deadline.cancel()
            pending = [
                task
                for task in (producer, cancel_wait, next_token)
                if task is not None and not task.done()
            ]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            if producer.done() and not producer.cancelled():
                # Marks a failure as retrieved when the caller left early.
                producer.exception()
