# app/services/response_cache.py
"""
In-process response cache for chat replies.

Entries expire TTL seconds after insertion and are read as absent once
expired, even before they are evicted. At capacity, inserting a new key
evicts the single oldest entry by insertion time. The cache is scoped to
one server process.
"""

import hashlib
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class CacheEntry:
    value: Any
    inserted_at: float


class ResponseCache:
    """Bounded TTL map with oldest-first eviction."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")

        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @staticmethod
    def make_key(*parts: Any) -> str:
        """Deterministic SHA-256 key over the given parts."""
        digest = hashlib.sha256()
        for part in parts:
            digest.update(str(part).encode("utf-8"))
            digest.update(b"\x1f")
        return digest.hexdigest()

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)

        if entry is None or self._expired(entry):
            self._misses += 1
            return None

        self._hits += 1
        return entry.value

    def put(self, key: str, value: Any) -> None:
        now = self._clock()

        if key in self._entries:
            # Refresh in place; the entry moves to the newest position
            del self._entries[key]
        elif len(self._entries) >= self.max_entries:
            self._evict_oldest()

        self._entries[key] = CacheEntry(value=value, inserted_at=now)

    def clear(self) -> int:
        cleared = len(self._entries)
        self._entries.clear()
        logger.info("Response cache cleared", entries=cleared)
        return cleared

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self._entries),
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def _expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.inserted_at >= self.ttl_seconds

    def _evict_oldest(self) -> None:
        # Dict order is insertion order and put() re-inserts refreshed keys
        oldest_key = next(iter(self._entries))
        del self._entries[oldest_key]
        self._evictions += 1
        logger.debug("Response cache evicted oldest entry", size=len(self._entries))


response_cache = ResponseCache(
    ttl_seconds=settings.CHAT_CACHE_TTL_SECONDS,
    max_entries=settings.CHAT_CACHE_MAX_ENTRIES,
)


def get_response_cache() -> ResponseCache:
    """FastAPI dependency returning the process-wide cache."""
    return response_cache
