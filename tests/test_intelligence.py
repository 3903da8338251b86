"""Intelligence service behaviour against stubbed completion transports."""

from __future__ import annotations

import asyncio
import json

import pytest

from app.errors import DecodeError, UpstreamError
from app.models import CollectionItem, Recommendation
from app.prompts import PromptLibrary
from app.services.cache import ResultCache, collection_key
from app.services.intelligence import (
    EMPTY_COLLECTION_SUMMARY,
    IntelligenceService,
    summarize_collection,
)

TWO_RECOMMENDATIONS = [
    {
        "title": "Blade Runner 2049",
        "media_type": "movie",
        "creator": "Denis Villeneuve",
        "reason": "You own the original.",
        "genre": "Sci-Fi",
        "release_year": 2017,
    },
    {
        "title": "Hades",
        "media_type": "game",
        "creator": "Supergiant Games",
        "reason": "Fits your roguelike streak.",
        "genre": "Roguelike",
    },
]


class _StubTransport:
    """Records prompts and returns canned completions."""

    def __init__(self, response: str = "", *, tokens: list[str] | None = None):
        self.response = response
        self.tokens = tokens or []
        self.prompts: list[str] = []
        self.calls = 0

    async def complete(self, prompt: str) -> str:
        self.calls += 1
        self.prompts.append(prompt)
        return self.response

    async def stream_complete(self, prompt: str, sink: asyncio.Queue[str]) -> None:
        self.prompts.append(prompt)
        for token in self.tokens:
            await sink.put(token)


class _FailingTransport(_StubTransport):
    async def complete(self, prompt: str) -> str:
        self.calls += 1
        raise UpstreamError("anthropic complete: connection reset")


def _collection() -> list[CollectionItem]:
    return [
        CollectionItem(
            title="Blade Runner",
            media_type="movie",
            creator="Ridley Scott",
            genre=["Sci-Fi", "Noir"],
            status="completed",
        ),
        CollectionItem(
            title="Celeste",
            media_type="game",
            creator="Maddy Makes Games",
            genre=["Platformer"],
            status="currently_using",
        ),
    ]


def _service(transport: _StubTransport, cache: ResultCache | None = None) -> IntelligenceService:
    return IntelligenceService(PromptLibrary(), transport, cache or ResultCache())


def test_summarize_collection_renders_one_line_per_item() -> None:
    summary = summarize_collection(_collection())

    assert summary == (
        "- [movie] Blade Runner by Ridley Scott (Sci-Fi, Noir) - Status: completed\n"
        "- [game] Celeste by Maddy Makes Games (Platformer) - Status: currently_using\n"
    )


def test_summarize_collection_marks_empty_collection() -> None:
    assert summarize_collection([]) == EMPTY_COLLECTION_SUMMARY


def test_recommend_decodes_and_caches_results() -> None:
    transport = _StubTransport(
        "Here you go:\n" + json.dumps(TWO_RECOMMENDATIONS) + "\nHappy exploring!"
    )
    service = _service(transport)

    first = asyncio.run(service.recommend("user-1", _collection()))
    second = asyncio.run(service.recommend("user-1", _collection()))

    assert [rec.title for rec in first] == ["Blade Runner 2049", "Hades"]
    assert first[0].release_year == 2017
    assert first[1].release_year is None
    assert second == first
    assert transport.calls == 1
    assert "- [movie] Blade Runner by Ridley Scott" in transport.prompts[0]
    assert "{{COLLECTION_SUMMARY}}" not in transport.prompts[0]


def test_recommend_misses_cache_when_collection_changes() -> None:
    transport = _StubTransport(json.dumps(TWO_RECOMMENDATIONS))
    service = _service(transport)
    items = _collection()

    asyncio.run(service.recommend("user-1", items))
    asyncio.run(service.recommend("user-1", list(reversed(items))))
    asyncio.run(service.recommend("user-2", items))

    assert transport.calls == 3


def test_recommend_decode_failure_leaves_cache_empty() -> None:
    transport = _StubTransport("I cannot help with that.")
    cache = ResultCache()
    service = _service(transport, cache)

    with pytest.raises(DecodeError):
        asyncio.run(service.recommend("user-1", _collection()))

    key = "rec:" + collection_key("user-1", _collection())
    assert cache.get(key) == (None, False)
    assert len(cache) == 0


def test_recommend_rejects_object_where_array_expected() -> None:
    transport = _StubTransport('{"title": "Heat"}')

    with pytest.raises(DecodeError):
        asyncio.run(_service(transport).recommend("user-1", _collection()))


def test_upstream_errors_propagate_without_caching() -> None:
    transport = _FailingTransport()
    cache = ResultCache()

    with pytest.raises(UpstreamError):
        asyncio.run(_service(transport, cache).recommend("user-1", _collection()))

    assert len(cache) == 0


def test_nl_search_returns_query_and_filters() -> None:
    transport = _StubTransport('{"media_type": "music", "genre": "jazz"}')

    result = asyncio.run(_service(transport).nl_search("jazz records I own"))

    assert result.query == "jazz records I own"
    assert result.filters == {"media_type": "music", "genre": "jazz"}
    assert '"jazz records I own"' in transport.prompts[0]
    assert transport.calls == 1


def test_nl_search_is_not_cached() -> None:
    transport = _StubTransport("{}")
    service = _service(transport)

    asyncio.run(service.nl_search("anything"))
    asyncio.run(service.nl_search("anything"))

    assert transport.calls == 2


def test_nl_search_requires_object() -> None:
    transport = _StubTransport('["jazz"]')

    with pytest.raises(DecodeError):
        asyncio.run(_service(transport).nl_search("jazz"))


def test_mood_discovery_stamps_requested_mood() -> None:
    transport = _StubTransport(
        'Mood read! {"mood": "something else", "interpretation": "Wistful", '
        '"from_collection": [{"title": "Blade Runner"}], "new_suggestions": []}'
    )

    result = asyncio.run(
        _service(transport).mood_discovery("rainy sunday", _collection())
    )

    assert result.mood == "rainy sunday"
    assert result.interpretation == "Wistful"
    assert result.from_collection == [{"title": "Blade Runner"}]
    assert "rainy sunday" in transport.prompts[0]
    assert "Celeste by Maddy Makes Games" in transport.prompts[0]


def test_detect_duplicates_lists_existing_items() -> None:
    transport = _StubTransport(
        '{"is_duplicate": true, "reason": "Same film", "match_title": "Blade Runner"}'
    )

    result = asyncio.run(
        _service(transport).detect_duplicates(
            "Blade Runner: The Final Cut", "movie", "Ridley Scott", _collection()
        )
    )

    assert result.is_duplicate is True
    assert result.match_title == "Blade Runner"
    prompt = transport.prompts[0]
    assert "Blade Runner: The Final Cut" in prompt
    assert "- Blade Runner by Ridley Scott (movie)\n" in prompt
    assert "- Celeste by Maddy Makes Games (game)\n" in prompt
    assert "{{" not in prompt


def test_stream_insights_forwards_tokens() -> None:
    transport = _StubTransport(tokens=["Hello", " ", "world"])
    service = _service(transport)

    async def runner() -> list[str]:
        queue: asyncio.Queue[str] = asyncio.Queue()
        await service.stream_insights(_collection(), queue)
        return [queue.get_nowait() for _ in range(queue.qsize())]

    assert asyncio.run(runner()) == ["Hello", " ", "world"]
    assert "Blade Runner" in transport.prompts[0]


def test_invalidate_user_drops_recommendations() -> None:
    transport = _StubTransport(json.dumps(TWO_RECOMMENDATIONS))
    service = _service(transport)
    asyncio.run(service.recommend("user-1", _collection()))
    asyncio.run(service.recommend("user-2", _collection()))

    assert service.invalidate_user("user-1") == 1

    asyncio.run(service.recommend("user-1", _collection()))
    asyncio.run(service.recommend("user-2", _collection()))
    assert transport.calls == 3


def test_invalidate_user_named_like_namespace_keeps_other_users() -> None:
    transport = _StubTransport(json.dumps(TWO_RECOMMENDATIONS))
    service = _service(transport)
    asyncio.run(service.recommend("alice", _collection()))
    asyncio.run(service.recommend("bob", _collection()))

    assert service.invalidate_user("rec") == 0
    assert len(service.cache) == 2

    asyncio.run(service.recommend("alice", _collection()))
    assert transport.calls == 2


def test_cached_results_are_isolated_from_callers() -> None:
    transport = _StubTransport(json.dumps(TWO_RECOMMENDATIONS))
    service = _service(transport)

    first = asyncio.run(service.recommend("user-1", _collection()))
    first.append(Recommendation(title="Injected"))

    second = asyncio.run(service.recommend("user-1", _collection()))
    assert len(second) == 2
