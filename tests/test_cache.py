"""Result cache and fingerprint behaviour tests."""

from __future__ import annotations

import math
import threading

import pytest

from app.errors import SerializationError
from app.models import CollectionItem, Recommendation
from app.services.cache import ResultCache, collection_key


def _items(*titles: str) -> list[CollectionItem]:
    return [
        CollectionItem(title=title, media_type="movie", creator="Someone")
        for title in titles
    ]


def test_collection_key_is_stable_for_identical_payloads() -> None:
    first = collection_key("user-1", _items("Heat", "Alien"))
    second = collection_key("user-1", _items("Heat", "Alien"))

    assert first == second
    assert first.startswith("user-1:")
    assert len(first.split(":", 1)[1]) == 64


def test_collection_key_changes_with_payload_and_order() -> None:
    base = collection_key("user-1", _items("Heat", "Alien"))

    assert collection_key("user-1", _items("Heat", "Aliens")) != base
    assert collection_key("user-1", _items("Alien", "Heat")) != base
    assert collection_key("user-2", _items("Heat", "Alien")) != base


def test_collection_key_ignores_mapping_key_order() -> None:
    assert collection_key("u", {"a": 1, "b": 2}) == collection_key("u", {"b": 2, "a": 1})


@pytest.mark.parametrize("payload", [{"value": object()}, [math.nan], {"tags": {"a"}}])
def test_collection_key_rejects_unserialisable_payloads(payload: object) -> None:
    with pytest.raises(SerializationError):
        collection_key("user-1", payload)


def test_set_evicts_oldest_insert_regardless_of_reads() -> None:
    cache = ResultCache(3)
    for key in ("a", "b", "c"):
        cache.set(key, key.upper())

    assert cache.get("a") == ("A", True)
    cache.set("d", "D")

    assert len(cache) == 3
    assert cache.get("a") == (None, False)
    assert cache.keys() == ["b", "c", "d"]


def test_overwrite_keeps_eviction_position() -> None:
    cache = ResultCache(2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("a", 10)
    cache.set("c", 3)

    assert cache.get("a") == (None, False)
    assert cache.get("b") == (2, True)
    assert cache.get("c") == (3, True)


def test_capacity_never_exceeded() -> None:
    cache = ResultCache(5)
    for index in range(50):
        cache.set(f"k{index}", index)
        assert len(cache) <= 5

    assert cache.keys() == [f"k{index}" for index in range(45, 50)]


def test_non_positive_capacity_falls_back_to_default() -> None:
    assert ResultCache(0).max_entries == 100


def test_lru_policy_promotes_on_get() -> None:
    cache = ResultCache(2, policy="lru")
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")
    cache.set("c", 3)

    assert "a" in cache
    assert "b" not in cache


def test_unknown_policy_is_rejected() -> None:
    with pytest.raises(ValueError):
        ResultCache(2, policy="random")  # type: ignore[arg-type]


def test_invalidate_user_removes_only_scoped_keys_and_keeps_order() -> None:
    cache = ResultCache(10)
    for key in ("u1:a", "u2:a", "u1:b", "u10:a", "rec:u1:c", "u2:b"):
        cache.set(key, key)

    removed = cache.invalidate_user("u1")

    assert removed == 2
    assert cache.keys() == ["u2:a", "u10:a", "rec:u1:c", "u2:b"]


def test_invalidate_prefix_handles_namespaced_keys() -> None:
    cache = ResultCache(10)
    cache.set("rec:u1:a", 1)
    cache.set("rec:u2:a", 2)

    assert cache.invalidate_prefix("rec:u1:") == 1
    assert cache.keys() == ["rec:u2:a"]


def test_get_returns_copies() -> None:
    cache = ResultCache(2)
    recs = [Recommendation(title="Heat", media_type="movie")]
    cache.set("k", recs)
    recs.append(Recommendation(title="Alien", media_type="movie"))

    cached, found = cache.get("k")
    assert found
    cached[0].title = "Changed"

    assert [rec.title for rec in cache.get("k")[0]] == ["Heat"]


def test_concurrent_writers_keep_structures_consistent() -> None:
    cache = ResultCache(20)

    def writer(prefix: str) -> None:
        for index in range(200):
            cache.set(f"{prefix}:{index}", index)
            cache.get(f"{prefix}:{index - 1}")

    threads = [threading.Thread(target=writer, args=(f"u{n}",)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    keys = cache.keys()
    assert len(keys) == 20
    assert len(set(keys)) == 20
    assert all(cache.get(key)[1] for key in keys)
