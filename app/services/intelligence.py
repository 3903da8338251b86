"""AI-powered features built on top of a user's media collection."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence, TypeVar

from pydantic import TypeAdapter, ValidationError

from ..errors import DecodeError
from ..models import (
    CollectionItem,
    DuplicateResult,
    MoodResult,
    NLSearchResult,
    Recommendation,
)
from ..prompts import PromptLibrary
from ..utils import extract_json
from .cache import ResultCache, collection_key
from .completion import CompletionTransport

logger = logging.getLogger(__name__)

EMPTY_COLLECTION_SUMMARY = "Empty collection."
RECOMMENDATION_KEY_PREFIX = "rec:"

_T = TypeVar("_T")

_RECOMMENDATIONS = TypeAdapter(list[Recommendation])
_FILTERS = TypeAdapter(dict[str, Any])
_MOOD = TypeAdapter(MoodResult)
_DUPLICATE = TypeAdapter(DuplicateResult)


def summarize_collection(items: Sequence[CollectionItem]) -> str:
    """Render one prompt line per collection item."""

    if not items:
        return EMPTY_COLLECTION_SUMMARY
    lines = [
        f"- [{item.media_type}] {item.title} by {item.creator} "
        f"({', '.join(item.genre)}) - Status: {item.status}\n"
        for item in items
    ]
    return "".join(lines)


def _existing_item_listing(items: Sequence[CollectionItem]) -> str:
    return "".join(
        f"- {item.title} by {item.creator} ({item.media_type})\n" for item in items
    )


def _decode(adapter: TypeAdapter[_T], raw: str, operation: str) -> _T:
    """Extract and validate the JSON answer for ``operation``."""

    candidate = extract_json(raw)
    try:
        return adapter.validate_json(candidate)
    except ValidationError as exc:
        logger.warning(
            "Could not parse %s response: %s", operation, candidate[:200]
        )
        raise DecodeError(f"parse {operation}: {exc.errors()[0]['msg']}") from exc


class IntelligenceService:
    """Turns a collection plus an instruction into model-backed answers."""

    def __init__(
        self,
        prompts: PromptLibrary,
        transport: CompletionTransport,
        cache: ResultCache,
    ):
        self._prompts = prompts
        self._transport = transport
        self._cache = cache

    @property
    def cache(self) -> ResultCache:
        return self._cache

    async def recommend(
        self, user_id: object, items: Sequence[CollectionItem]
    ) -> list[Recommendation]:
        """Return recommendations, reusing cached ones for an unchanged collection."""

        cache_key = RECOMMENDATION_KEY_PREFIX + collection_key(user_id, list(items))
        cached, found = self._cache.get(cache_key)
        if found and isinstance(cached, list):
            logger.info("Recommendation cache hit for user %s", user_id)
            return cached

        logger.info("Generating recommendations for user %s", user_id)
        prompt = self._prompts.render(
            "recommendations", collection_summary=summarize_collection(items)
        )
        raw = await self._transport.complete(prompt)
        recommendations = _decode(_RECOMMENDATIONS, raw, "recommendations")
        self._cache.set(cache_key, recommendations)
        return recommendations

    async def stream_insights(
        self, items: Sequence[CollectionItem], sink: asyncio.Queue[str]
    ) -> None:
        """Stream free-form commentary about the collection into ``sink``."""

        prompt = self._prompts.render(
            "insights", collection_summary=summarize_collection(items)
        )
        await self._transport.stream_complete(prompt, sink)

    async def nl_search(self, query: str) -> NLSearchResult:
        """Turn a natural-language query into structured collection filters."""

        prompt = self._prompts.render("nl_search", query=query)
        raw = await self._transport.complete(prompt)
        filters = _decode(_FILTERS, raw, "nl_search")
        return NLSearchResult(query=query, filters=filters)

    async def mood_discovery(
        self, mood: str, items: Sequence[CollectionItem]
    ) -> MoodResult:
        prompt = self._prompts.render(
            "mood_discovery",
            mood=mood,
            collection_summary=summarize_collection(items),
        )
        raw = await self._transport.complete(prompt)
        result = _decode(_MOOD, raw, "mood result")
        result.mood = mood
        return result

    async def detect_duplicates(
        self,
        title: str,
        media_type: str,
        creator: str,
        existing: Sequence[CollectionItem],
    ) -> DuplicateResult:
        prompt = self._prompts.render(
            "duplicate_detection",
            new_title=title,
            media_type=media_type,
            creator=creator,
            existing_items=_existing_item_listing(existing),
        )
        raw = await self._transport.complete(prompt)
        return _decode(_DUPLICATE, raw, "duplicate result")

    def invalidate_user(self, user_id: object) -> int:
        """Forget every cached result derived from ``user_id``'s collection."""

        # Every key this service writes lives under the rec: namespace.
        removed = self._cache.invalidate_prefix(
            f"{RECOMMENDATION_KEY_PREFIX}{user_id}:"
        )
        if removed:
            logger.info("Dropped %s cached results for user %s", removed, user_id)
        return removed
