"""
EMBEDDING CACHE - The Reflex
============================
Avoids repeated embedding calls for repeated queries.
Key: "{model}:{text}" so switching models never serves a stale vector.
Eviction is pure recency once CAPACITY entries are held; there is no TTL.
"""

import asyncio
from collections import OrderedDict
from typing import Awaitable, Callable, Dict, List, Optional

import structlog

log = structlog.get_logger("hive_memory.embedding_cache")

CAPACITY = 256
DEFAULT_MODEL_KEY = "default"


def cache_key(model: Optional[str], text: str) -> str:
    return f"{model or DEFAULT_MODEL_KEY}:{text}"


class EmbeddingCache:
    """Bounded LRU of query vectors, safe to share between tasks."""

    def __init__(self, capacity: int = CAPACITY):
        self.capacity = capacity
        self._entries: "OrderedDict[str, List[float]]" = OrderedDict()
        self._lock = asyncio.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    async def get(self, model: Optional[str], text: str) -> Optional[List[float]]:
        key = cache_key(model, text)
        async with self._lock:
            vector = self._entries.get(key)
            if vector is not None:
                self._entries.move_to_end(key)
            return vector

    async def put(self, model: Optional[str], text: str, vector: List[float]) -> None:
        key = cache_key(model, text)
        async with self._lock:
            self._entries[key] = vector
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                log.debug("embedding_cache_evicted", key=evicted[:64])

    async def get_or_compute(
        self,
        model: Optional[str],
        text: str,
        compute_fn: Callable[[], Awaitable[Optional[List[float]]]],
    ) -> Optional[List[float]]:
        """
        Return the cached vector or await `compute_fn` and cache its result.

        The lock is not held while computing, so two concurrent misses on the
        same key may both call the embedder; the later result wins. Errors
        and empty results are never cached.
        """
        vector = await self.get(model, text)
        if vector is not None:
            self.hits += 1
            return vector

        self.misses += 1
        vector = await compute_fn()
        if not vector:
            return None
        await self.put(model, text, vector)
        return vector

    def stats(self) -> Dict[str, int]:
        return {"size": len(self._entries), "capacity": self.capacity,
                "hits": self.hits, "misses": self.misses}

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0
