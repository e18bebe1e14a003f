"""
MEMORY ENGINE - Per-User Conversational Memory
==============================================
The in-process entry point used by the agent runtime:

    engine = await MemoryEngine.open(config, embedder=..., summarizer=...)
    await engine.append("u1", "user", "I love hiking in the Alps")
    await engine.history("u1", 20)
    await engine.search("u1", "hiking", 5)

append() writes the message (and its vector, when an embedder is set) on
the caller's path. Summarization (after assistant turns) and retention
(after any turn, when configured) run as fire-and-forget tasks; their
failures are logged and never reach the caller.
"""

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Set

import structlog

from .captures import CaptureStore
from .config import MemoryConfig
from .db import ConnectionPool, open_pool
from .embedding_cache import EmbeddingCache
from .errors import SerializationError
from .knowledge_graph import KnowledgeGraph
from .message_log import MessageLog
from .models import Capture, Memory, Message, Role, VectorRecord
from .providers import Embedder, StructuredGenerator
from .retention import RetentionPolicy, RetentionReport
from .search import SearchOrchestrator
from .summarizer import SummarizationEngine
from .vector_index import VectorIndex

log = structlog.get_logger("hive_memory.engine")


class MemoryEngine:
    """Message log + hybrid search + background compaction for many users."""

    def __init__(
        self,
        config: MemoryConfig,
        pool: ConnectionPool,
        vector_index: Optional[VectorIndex] = None,
        embedder: Optional[Embedder] = None,
        reranker: Optional[StructuredGenerator] = None,
        summarizer: Optional[StructuredGenerator] = None,
    ):
        self.config = config
        self.pool = pool
        self.embedder = embedder if vector_index is not None else None
        self.vector_index = vector_index if embedder is not None else None
        self.embedding_model = config.embedding_model
        self.retention_days = config.retention_days

        self.messages = MessageLog(pool)
        self.graph = KnowledgeGraph(pool)
        self.captures = CaptureStore(pool)
        self.cache = EmbeddingCache()
        self.searcher = SearchOrchestrator(
            self.messages,
            vector_index=self.vector_index,
            embedder=self.embedder,
            embedding_model=self.embedding_model,
            reranker=reranker,
            cache=self.cache,
        )
        self.summarizer = SummarizationEngine(
            self.messages, self.graph, summarizer=summarizer,
            threshold=config.summary_threshold,
        )
        self.retention = RetentionPolicy(self.messages, self.graph, self.vector_index)
        self._background: Set[asyncio.Task] = set()

    @classmethod
    async def open(
        cls,
        config: Optional[MemoryConfig] = None,
        embedder: Optional[Embedder] = None,
        reranker: Optional[StructuredGenerator] = None,
        summarizer: Optional[StructuredGenerator] = None,
    ) -> "MemoryEngine":
        """Run migrations, open the pool and (with an embedder) the vector index."""
        config = config or MemoryConfig.from_env()
        pool = await open_pool(config.sqlite_path, size=config.pool_size)
        vector_index = None
        if embedder is not None and config.lancedb_path is not None:
            vector_index = VectorIndex(config.lancedb_path)
        engine = cls(
            config, pool,
            vector_index=vector_index,
            embedder=embedder,
            reranker=reranker,
            summarizer=summarizer,
        )
        log.info(
            "memory_engine_ready",
            sqlite_path=str(config.sqlite_path),
            vector=vector_index is not None,
            reranker=reranker is not None,
            summarizer=summarizer is not None,
            summary_threshold=config.summary_threshold,
            retention_days=config.retention_days,
        )
        return engine

    async def __aenter__(self) -> "MemoryEngine":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ================================================================
    # INBOUND
    # ================================================================

    async def append(self, user_id: str, role: str, content: str) -> Message:
        message = await self.messages.append(user_id, role, content)

        if self.embedder is not None:
            vectors = await self.embedder.embed([content], self.embedding_model)
            if vectors:
                await self.vector_index.insert(VectorRecord.from_message(message, vectors[0]))

        if message.role == Role.ASSISTANT.value:
            self._spawn(self._summarize_quietly(user_id), "summarize")
        if self.retention_days is not None:
            self._spawn(self._retain_quietly(user_id, self.retention_days), "retention")
        return message

    async def history(self, user_id: str, limit: int = 0) -> List[Message]:
        return await self.messages.history(user_id, limit)

    async def clear(self, user_id: str) -> None:
        await self.messages.clear(user_id)
        if self.vector_index is not None:
            await self.vector_index.delete_user(user_id)

    async def search(self, user_id: str, query: str, limit: int = 5) -> List[str]:
        return await self.searcher.search(user_id, query, limit)

    # Conveniences over the four core operations

    async def store(self, user_id: str, messages: Iterable[Dict[str, Any]]) -> None:
        """Append a batch of {"role", "content"} dicts in order."""
        for msg in messages:
            if not isinstance(msg, dict):
                raise SerializationError(f"message must be an object, got {type(msg).__name__}")
            role = msg.get("role") if isinstance(msg.get("role"), str) else Role.USER.value
            content = msg.get("content") if isinstance(msg.get("content"), str) else ""
            await self.append(user_id, role, content)

    async def retrieve(self, user_id: str) -> str:
        """Whole history as transcript lines."""
        return "\n".join(m.format() for m in await self.history(user_id, 0))

    async def delete(self, user_id: str) -> None:
        await self.clear(user_id)

    async def save_capture(
        self,
        user_id: str,
        capture_name: str,
        data: Any,
        agent_name: Optional[str] = None,
        schema: Optional[Any] = None,
    ) -> Capture:
        """Keep a named JSON payload (and optional schema) for the user."""
        return await self.captures.save(user_id, capture_name, data, agent_name=agent_name, schema=schema)

    # ================================================================
    # MAINTENANCE
    # ================================================================

    async def summarize_now(self, user_id: str) -> Optional[Memory]:
        """Run summarization inline; errors propagate."""
        return await self.summarizer.run(user_id)

    async def apply_retention(self, user_id: str, days: Optional[int] = None) -> Optional[RetentionReport]:
        days = days if days is not None else self.retention_days
        if days is None:
            return None
        return await self.retention.apply(user_id, days)

    def _spawn(self, coro, name: str) -> None:
        task = asyncio.get_running_loop().create_task(coro, name=f"hive_memory.{name}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _summarize_quietly(self, user_id: str) -> None:
        try:
            await self.summarizer.run(user_id)
        except Exception as e:
            log.error("background_summarize_failed", user_id=user_id, error=str(e))

    async def _retain_quietly(self, user_id: str, days: int) -> None:
        try:
            await self.retention.apply(user_id, days)
        except Exception as e:
            log.error("background_retention_failed", user_id=user_id, error=str(e))

    @property
    def pending_tasks(self) -> int:
        return len(self._background)

    async def wait_background(self) -> None:
        """Block until every background task spawned so far has finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        await self.wait_background()
        await self.pool.close()
        log.debug("memory_engine_closed", sqlite_path=str(self.config.sqlite_path))
