"""
SEARCH - Hybrid Retrieval (FTS5 + LanceDB + optional LLM rerank)
================================================================
Pipeline for search(user_id, query, limit):

  1. Lexical: sanitized phrase against memory summaries + user turns
  2. Enough lexical hits -> return them, no embedding call at all
  3. Cheap gate: >= 4 tokens and >= 18 chars, else no vector leg
  4. Vector: cached query embedding -> nearest neighbours for the user
     (exactly limit of them without a reranker; with one, 3x limit: this
     departs from a plain limit fetch on purpose, since two legs capped at
     limit can never exceed 2x limit and step 6 would never run)
  5. Merge lexical then vector, exact-string dedup, first seen wins
  6. More than 2x limit candidates and a reranker -> LLM picks the order
  7. Truncate to limit

Ranking is an optimization: a failing vector leg or reranker degrades to
what is already in hand rather than failing the call.
"""

import re
from typing import Iterable, List, Optional

import structlog

from .embedding_cache import EmbeddingCache
from .errors import SerializationError
from .message_log import MessageLog
from .providers import Embedder, StructuredGenerator, parse_structured
from .vector_index import VectorIndex

log = structlog.get_logger("hive_memory.search")

MIN_VECTOR_TOKENS = 4
MIN_VECTOR_CHARS = 18
RERANK_FACTOR = 2

RERANK_SYSTEM = "You are a reranking model. Return the best indices only."
RERANK_SCHEMA = {
    "type": "object",
    "properties": {
        "order": {"type": "array", "items": {"type": "integer"}},
    },
    "required": ["order"],
}

_NON_WORD = re.compile(r"[^\w\s]|_")


def sanitize_fts_query(query: str) -> Optional[str]:
    """
    Turn free text into a single FTS5 phrase.

    Anything that is not a letter, digit or whitespace becomes a space, runs
    of whitespace collapse, and the result is double-quoted. Returns None
    when nothing searchable is left.
    """
    cleaned = " ".join(_NON_WORD.sub(" ", query).split())
    if not cleaned:
        return None
    return '"' + cleaned.replace('"', "") + '"'


def should_use_vector(query: str) -> bool:
    """Skip the embedding call for trivial input like 'hi' or 'ok thanks'."""
    trimmed = query.strip()
    return len(trimmed.split()) >= MIN_VECTOR_TOKENS and len(trimmed) >= MIN_VECTOR_CHARS


def merge_unique(*lists: Iterable[str]) -> List[str]:
    merged: List[str] = []
    seen = set()
    for items in lists:
        for item in items:
            if item not in seen:
                seen.add(item)
                merged.append(item)
    return merged


def build_rerank_prompt(query: str, candidates: List[str]) -> str:
    lines = [f"Query: {query}", "", "Candidates:"]
    lines.extend(f"{idx}: {item}" for idx, item in enumerate(candidates))
    lines.append("")
    lines.append(
        "Return JSON {order:[...]} with the best indices in descending relevance. "
        "Use at most the requested limit."
    )
    return "\n".join(lines)


def apply_order(order: object, candidates: List[str], limit: int) -> List[str]:
    """Walk the reranker's index list; ignore junk, out-of-range and repeats."""
    if not isinstance(order, list):
        return []
    ranked: List[str] = []
    for idx in order:
        if isinstance(idx, bool) or not isinstance(idx, int):
            continue
        if 0 <= idx < len(candidates) and candidates[idx] not in ranked:
            ranked.append(candidates[idx])
        if len(ranked) >= limit:
            break
    return ranked


class SearchOrchestrator:
    """Lexical + semantic retrieval for a single user."""

    def __init__(
        self,
        message_log: MessageLog,
        vector_index: Optional[VectorIndex] = None,
        embedder: Optional[Embedder] = None,
        embedding_model: Optional[str] = None,
        reranker: Optional[StructuredGenerator] = None,
        cache: Optional[EmbeddingCache] = None,
    ):
        self.message_log = message_log
        self.vector_index = vector_index
        self.embedder = embedder
        self.embedding_model = embedding_model
        self.reranker = reranker
        self.cache = cache if cache is not None else EmbeddingCache()

    async def search(self, user_id: str, query: str, limit: int = 5) -> List[str]:
        limit = max(limit, 1)

        lexical = await self.search_lexical(user_id, query, limit)
        if len(lexical) >= limit:
            return lexical[:limit]

        vector: List[str] = []
        if should_use_vector(query):
            # Over-fetch when a reranker will choose among the candidates.
            vector_k = limit * (RERANK_FACTOR + 1) if self.reranker is not None else limit
            vector = await self.search_vector(user_id, query, vector_k)

        merged = merge_unique(lexical, vector)

        if self.reranker is not None and len(merged) > limit * RERANK_FACTOR:
            return await self.rerank(query, merged, limit)

        return merged[:limit]

    async def search_lexical(self, user_id: str, query: str, limit: int) -> List[str]:
        fts_query = sanitize_fts_query(query)
        if fts_query is None:
            return []
        return await self.message_log.search_lexical(user_id, fts_query, limit)

    async def _embed_query(self, query: str) -> Optional[List[float]]:
        vectors = await self.embedder.embed([query], self.embedding_model)
        return vectors[0] if vectors else None

    async def search_vector(self, user_id: str, query: str, limit: int) -> List[str]:
        """Semantic leg. Any failure here is logged and yields no results."""
        if self.vector_index is None or self.embedder is None:
            return []
        try:
            if await self.vector_index.open_if_exists() is None:
                return []
            vector = await self.cache.get_or_compute(
                self.embedding_model, query, lambda: self._embed_query(query)
            )
            if not vector:
                return []
            return await self.vector_index.search(vector, user_id, limit)
        except Exception as e:
            log.warning("vector_search_degraded", user_id=user_id, error=str(e))
            return []

    async def rerank(self, query: str, candidates: List[str], limit: int) -> List[str]:
        """LLM ordering of `candidates`; falls back to their current order."""
        if not candidates:
            return []
        try:
            output = await self.reranker.generate(
                build_rerank_prompt(query, candidates), RERANK_SYSTEM, RERANK_SCHEMA
            )
            ranked = apply_order(parse_structured(output).get("order"), candidates, limit)
        except SerializationError as e:
            log.warning("rerank_unparseable", error=str(e))
            ranked = []
        except Exception as e:
            log.warning("rerank_failed", error=str(e))
            ranked = []

        if not ranked:
            return candidates[:limit]
        return ranked
