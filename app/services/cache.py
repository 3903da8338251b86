"""In-memory result cache keyed by collection fingerprints."""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import threading
from collections import OrderedDict
from typing import Any, Literal

from pydantic import BaseModel

from ..errors import SerializationError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 100

EvictionPolicy = Literal["fifo", "lru"]


def _encode_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (set, frozenset)):
        raise TypeError("Sets have no canonical ordering")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def canonical_json(payload: Any) -> bytes:
    """Serialise ``payload`` deterministically.

    Mapping keys are sorted while sequence order is kept, so reordering a
    collection yields a different encoding.
    """

    try:
        encoded = json.dumps(
            payload,
            default=_encode_default,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"marshal collection: {exc}") from exc
    return encoded.encode("utf-8")


def collection_key(user_id: object, payload: Any) -> str:
    """Return the ``"{user}:{sha256}"`` cache key for a user's payload."""

    digest = hashlib.sha256(canonical_json(payload)).hexdigest()
    return f"{user_id}:{digest}"


class ResultCache:
    """Bounded, thread-safe mapping of cache keys to AI results.

    Eviction removes the entry at the front of the ordering. With the default
    ``fifo`` policy lookups never reorder entries, so the oldest insert goes
    first; with ``lru`` a hit moves the key to the back. Overwriting a key
    keeps its position under both policies.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        *,
        policy: EvictionPolicy = "fifo",
    ) -> None:
        if max_entries <= 0:
            max_entries = DEFAULT_MAX_ENTRIES
        if policy not in ("fifo", "lru"):
            raise ValueError(f"Unknown cache policy: {policy}")
        self._max_entries = max_entries
        self._policy = policy
        self._entries: OrderedDict[str, Any] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def max_entries(self) -> int:
        return self._max_entries

    @property
    def policy(self) -> EvictionPolicy:
        return self._policy

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def keys(self) -> list[str]:
        """Return the keys in eviction order, oldest first."""

        with self._lock:
            return list(self._entries)

    def get(self, key: str) -> tuple[Any, bool]:
        """Return ``(value, found)``; the value is a copy of the stored one."""

        with self._lock:
            if key not in self._entries:
                return None, False
            value = self._entries[key]
            if self._policy == "lru":
                self._entries.move_to_end(key)
        return copy.deepcopy(value), True

    def set(self, key: str, value: Any) -> None:
        """Insert or overwrite ``key``, evicting the front entry when full."""

        stored = copy.deepcopy(value)
        evicted: str | None = None
        with self._lock:
            if key not in self._entries and len(self._entries) >= self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
            self._entries[key] = stored
        if evicted is not None:
            logger.debug("Evicted cache entry %s", evicted)

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every key starting with ``prefix`` and return how many went."""

        with self._lock:
            survivors = OrderedDict(
                (key, value)
                for key, value in self._entries.items()
                if not key.startswith(prefix)
            )
            removed = len(self._entries) - len(survivors)
            self._entries = survivors
        return removed

    def invalidate_user(self, user_id: object) -> int:
        """Drop every entry scoped to ``user_id``."""

        return self.invalidate_prefix(f"{user_id}:")

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
