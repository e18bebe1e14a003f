"""
KNOWLEDGE GRAPH - Derived Structured Memory
===========================================
Memory (summary), Entity and Fact nodes, typed Edges between them and
MemoryLink provenance rows. Only the summarizer writes here.

Every insert commits on its own: a pipeline that dies halfway keeps what it
already wrote. Nothing cascades when a Memory is deleted.
"""

from typing import List, Optional

import structlog

from .db import ConnectionPool, storage_errors
from .models import (
    Memory, Entity, Fact, Edge, MemoryLink,
    NODE_MEMORY, NODE_ENTITY, NODE_FACT,
    EDGE_MENTIONED_IN, EDGE_CONTAINS,
)

log = structlog.get_logger("hive_memory.knowledge_graph")


class KnowledgeGraph:
    """Writes and reads of the per-user memory graph."""

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    async def _insert(self, operation: str, sql: str, params: tuple) -> int:
        async with storage_errors(operation):
            async with self.pool.acquire() as conn:
                cursor = await conn.execute(sql, params)
                row_id = cursor.lastrowid
                await cursor.close()
                await conn.commit()
        return row_id

    async def _select(self, operation: str, sql: str, params: tuple) -> list:
        async with storage_errors(operation):
            async with self.pool.acquire() as conn:
                async with conn.execute(sql, params) as cursor:
                    return await cursor.fetchall()

    # ================================================================
    # WRITES
    # ================================================================

    async def add_memory(self, memory: Memory) -> Memory:
        memory.id = await self._insert(
            "insert_memory",
            "INSERT INTO memories (user_id, summary, tags, salience, created_at)"
            " VALUES (?, ?, ?, ?, ?)",
            (memory.user_id, memory.summary, memory.tags, memory.salience, memory.created_at),
        )
        return memory

    async def add_entity(self, entity: Entity) -> Entity:
        entity.id = await self._insert(
            "insert_entity",
            "INSERT INTO entities (user_id, name, entity_type, canonical_id, created_at)"
            " VALUES (?, ?, ?, ?, ?)",
            (entity.user_id, entity.name, entity.entity_type, entity.canonical_id,
             entity.created_at),
        )
        return entity

    async def add_fact(self, fact: Fact) -> Fact:
        fact.id = await self._insert(
            "insert_fact",
            "INSERT INTO facts (user_id, subject, predicate, object, confidence, source, created_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?)",
            (fact.user_id, fact.subject, fact.predicate, fact.object, fact.confidence,
             fact.source, fact.created_at),
        )
        return fact

    async def add_edge(self, edge: Edge) -> Edge:
        edge.id = await self._insert(
            "insert_edge",
            "INSERT INTO edges (user_id, src_node_type, src_node_id, dst_node_type,"
            " dst_node_id, edge_type, weight, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (edge.user_id, edge.src_node_type, edge.src_node_id, edge.dst_node_type,
             edge.dst_node_id, edge.edge_type, edge.weight, edge.created_at),
        )
        return edge

    async def add_link(self, link: MemoryLink) -> MemoryLink:
        link.id = await self._insert(
            "insert_memory_link",
            "INSERT INTO memory_links (memory_id, node_type, node_id, created_at)"
            " VALUES (?, ?, ?, ?)",
            (link.memory_id, link.node_type, link.node_id, link.created_at),
        )
        return link

    async def link_entity(self, memory: Memory, entity: Entity) -> None:
        """MemoryLink + MENTIONED_IN edge from `memory` to a stored entity."""
        await self.add_link(MemoryLink(
            memory_id=memory.id, node_type=NODE_ENTITY, node_id=entity.id,
            created_at=memory.created_at,
        ))
        await self.add_edge(Edge(
            user_id=memory.user_id,
            src_node_type=NODE_MEMORY, src_node_id=memory.id,
            dst_node_type=NODE_ENTITY, dst_node_id=entity.id,
            edge_type=EDGE_MENTIONED_IN, created_at=memory.created_at,
        ))

    async def link_fact(self, memory: Memory, fact: Fact) -> None:
        """MemoryLink + CONTAINS edge from `memory` to a stored fact."""
        await self.add_link(MemoryLink(
            memory_id=memory.id, node_type=NODE_FACT, node_id=fact.id,
            created_at=memory.created_at,
        ))
        await self.add_edge(Edge(
            user_id=memory.user_id,
            src_node_type=NODE_MEMORY, src_node_id=memory.id,
            dst_node_type=NODE_FACT, dst_node_id=fact.id,
            edge_type=EDGE_CONTAINS, created_at=memory.created_at,
        ))

    async def delete_memories_before(self, user_id: str, cutoff: int) -> int:
        """Drop old memories only; their entities, facts, edges and links stay."""
        async with storage_errors("delete_old_memories"):
            async with self.pool.acquire() as conn:
                cursor = await conn.execute(
                    "DELETE FROM memories WHERE user_id = ? AND created_at < ?",
                    (user_id, cutoff),
                )
                deleted = cursor.rowcount
                await cursor.close()
                await conn.commit()
        return deleted

    # ================================================================
    # READS
    # ================================================================

    async def memories(self, user_id: str, limit: int = 0) -> List[Memory]:
        """Newest first."""
        rows = await self._select(
            "list_memories",
            "SELECT * FROM memories WHERE user_id = ? ORDER BY created_at DESC, id DESC LIMIT ?",
            (user_id, limit if limit > 0 else -1),
        )
        return [Memory.from_row(r) for r in rows]

    async def entities(self, user_id: str, name: Optional[str] = None) -> List[Entity]:
        if name is None:
            rows = await self._select(
                "list_entities",
                "SELECT * FROM entities WHERE user_id = ? ORDER BY id", (user_id,),
            )
        else:
            rows = await self._select(
                "list_entities",
                "SELECT * FROM entities WHERE user_id = ? AND name = ? ORDER BY id",
                (user_id, name),
            )
        return [Entity.from_row(r) for r in rows]

    async def facts(self, user_id: str) -> List[Fact]:
        rows = await self._select(
            "list_facts", "SELECT * FROM facts WHERE user_id = ? ORDER BY id", (user_id,),
        )
        return [Fact.from_row(r) for r in rows]

    async def edges(self, user_id: str, edge_type: Optional[str] = None) -> List[Edge]:
        sql = "SELECT * FROM edges WHERE user_id = ?"
        params: tuple = (user_id,)
        if edge_type is not None:
            sql += " AND edge_type = ?"
            params += (edge_type,)
        rows = await self._select("list_edges", sql + " ORDER BY id", params)
        return [Edge.from_row(r) for r in rows]

    async def links(self, memory_id: int) -> List[MemoryLink]:
        rows = await self._select(
            "list_memory_links",
            "SELECT * FROM memory_links WHERE memory_id = ? ORDER BY id", (memory_id,),
        )
        return [MemoryLink.from_row(r) for r in rows]
