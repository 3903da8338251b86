"""Entry point for the FastAPI-powered collection intelligence API."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager, suppress
from typing import Any, AsyncIterator

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings, settings
from .database import Database
from .errors import CollectionError, DecodeError, IntelligenceError, UpstreamError
from .models import CollectionItem
from .prompts import PromptLibrary
from .services.anthropic import AnthropicClient
from .services.cache import ResultCache
from .services.collection import CollectionProvider, CollectionRepository
from .services.completion import CompletionTransport
from .services.intelligence import IntelligenceService
from .services.openrouter import OpenRouterClient
from .services.streaming import SSE_HEADERS, InsightStreamGateway

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

USER_HEADER = "X-User-ID"
DISCONNECT_POLL_SECONDS = 0.5

app: FastAPI


class NLSearchRequest(BaseModel):
    query: str


class MoodRequest(BaseModel):
    mood: str


class DuplicateRequest(BaseModel):
    title: str
    media_type: str = ""
    creator: str = ""


def build_transport(
    config: Settings, http_client: httpx.AsyncClient
) -> CompletionTransport:
    """Return the completion transport for the configured engine."""

    if config.completion_engine == "anthropic":
        return AnthropicClient(config, http_client)
    return OpenRouterClient(config, http_client)


def build_prompt_library(config: Settings) -> PromptLibrary:
    if config.prompt_directory is not None:
        return PromptLibrary.from_directory(config.prompt_directory)
    return PromptLibrary()


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    base_url = (
        settings.anthropic_api_url
        if settings.completion_engine == "anthropic"
        else settings.openrouter_api_url
    )
    completion_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(base_url),
            timeout=httpx.Timeout(120.0, connect=10.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    if not settings.active_api_key:
        logger.warning(
            "No API key configured for %s; AI endpoints will fail until one is set",
            settings.completion_engine,
        )

    service = IntelligenceService(
        build_prompt_library(settings),
        build_transport(settings, completion_http_client),
        ResultCache(settings.cache_max_entries, policy=settings.cache_policy),
    )
    fastapi_app.state.intelligence_service = service
    fastapi_app.state.stream_gateway = InsightStreamGateway(
        service,
        queue_size=settings.stream_queue_size,
        timeout=settings.stream_timeout_seconds,
    )
    fastapi_app.state.collection_provider = CollectionRepository(
        database.session_factory
    )
    fastapi_app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="AI insights and recommendations for a personal media collection",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_intelligence_service(app: FastAPI) -> IntelligenceService:
    service = getattr(app.state, "intelligence_service", None)
    if not isinstance(service, IntelligenceService):
        raise RuntimeError("Intelligence service not initialised")
    return service


def get_stream_gateway(app: FastAPI) -> InsightStreamGateway:
    gateway = getattr(app.state, "stream_gateway", None)
    if not isinstance(gateway, InsightStreamGateway):
        raise RuntimeError("Insight stream gateway not initialised")
    return gateway


def get_collection_provider(app: FastAPI) -> CollectionProvider:
    provider = getattr(app.state, "collection_provider", None)
    if provider is None:
        raise RuntimeError("Collection provider not initialised")
    return provider


def register_routes(fastapi_app: FastAPI) -> None:
    async def _load_collection(user_id: str) -> list[CollectionItem]:
        provider = get_collection_provider(fastapi_app)
        try:
            return await provider.get_all_items_for_user(user_id)
        except (SQLAlchemyError, CollectionError) as exc:
            logger.exception("Failed to load collection for user %s", user_id)
            raise HTTPException(
                status_code=500, detail="Unable to load the collection"
            ) from exc

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/ai/recommendations")
    async def recommendations(request: Request) -> JSONResponse:
        user_id = _require_user_id(request)
        items = await _load_collection(user_id)
        service = get_intelligence_service(fastapi_app)
        try:
            recs = await service.recommend(user_id, items)
        except IntelligenceError as exc:
            raise _to_http_error(exc) from exc
        return JSONResponse([rec.model_dump(exclude_none=True) for rec in recs])

    @fastapi_app.get("/api/ai/insights")
    async def insights(request: Request) -> StreamingResponse:
        user_id = _require_user_id(request)
        items = await _load_collection(user_id)
        gateway = get_stream_gateway(fastapi_app)
        cancelled = asyncio.Event()

        async def _frames() -> AsyncIterator[str]:
            watcher = asyncio.create_task(_watch_disconnect(request, cancelled))
            try:
                async for frame in gateway.events(items, cancelled=cancelled):
                    yield frame
            finally:
                watcher.cancel()
                with suppress(asyncio.CancelledError):
                    await watcher

        return StreamingResponse(
            _frames(), media_type="text/event-stream", headers=SSE_HEADERS
        )

    @fastapi_app.post("/api/ai/nl-search")
    async def nl_search(request: Request) -> JSONResponse:
        _require_user_id(request)
        payload = await _parse_body(request, NLSearchRequest)
        service = get_intelligence_service(fastapi_app)
        try:
            result = await service.nl_search(payload.query)
        except IntelligenceError as exc:
            raise _to_http_error(exc) from exc
        return JSONResponse(result.model_dump())

    @fastapi_app.post("/api/ai/mood")
    async def mood_discovery(request: Request) -> JSONResponse:
        user_id = _require_user_id(request)
        payload = await _parse_body(request, MoodRequest)
        items = await _load_collection(user_id)
        service = get_intelligence_service(fastapi_app)
        try:
            result = await service.mood_discovery(payload.mood, items)
        except IntelligenceError as exc:
            raise _to_http_error(exc) from exc
        return JSONResponse(result.model_dump(exclude_none=True))

    @fastapi_app.post("/api/ai/duplicates")
    async def detect_duplicates(request: Request) -> JSONResponse:
        user_id = _require_user_id(request)
        payload = await _parse_body(request, DuplicateRequest)
        items = await _load_collection(user_id)
        service = get_intelligence_service(fastapi_app)
        try:
            result = await service.detect_duplicates(
                payload.title, payload.media_type, payload.creator, items
            )
        except IntelligenceError as exc:
            raise _to_http_error(exc) from exc
        return JSONResponse(result.model_dump(exclude_none=True))

    @fastapi_app.delete("/api/ai/cache")
    async def invalidate_cache(request: Request) -> dict[str, int]:
        user_id = _require_user_id(request)
        service = get_intelligence_service(fastapi_app)
        return {"removed": service.invalidate_user(user_id)}


def _require_user_id(request: Request) -> str:
    user_id = (request.headers.get(USER_HEADER) or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing user identity")
    return user_id


async def _parse_body(request: Request, model: type[BaseModel]) -> Any:
    try:
        payload = await request.json()
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail="invalid request body") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="invalid request body")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.errors(include_context=False)) from exc


def _to_http_error(exc: IntelligenceError) -> HTTPException:
    if isinstance(exc, (UpstreamError, DecodeError)):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


async def _watch_disconnect(request: Request, cancelled: asyncio.Event) -> None:
    """Set ``cancelled`` once the client goes away."""

    while not cancelled.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected from insight stream")
            cancelled.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
