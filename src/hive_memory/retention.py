"""
RETENTION - Age-Based Eviction
==============================
Deletes a user's messages and memories older than N days. Graph nodes that
a deleted Memory produced are left where they are.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from .knowledge_graph import KnowledgeGraph
from .message_log import MessageLog
from .models import now_ts
from .vector_index import VectorIndex

log = structlog.get_logger("hive_memory.retention")

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass
class RetentionReport:
    user_id: str
    cutoff: int
    messages_deleted: int = 0
    memories_deleted: int = 0


def cutoff_for(days: int, now: Optional[int] = None) -> int:
    return (now_ts() if now is None else now) - days * SECONDS_PER_DAY


class RetentionPolicy:
    def __init__(
        self,
        message_log: MessageLog,
        graph: KnowledgeGraph,
        vector_index: Optional[VectorIndex] = None,
    ):
        self.message_log = message_log
        self.graph = graph
        self.vector_index = vector_index

    async def apply(self, user_id: str, days: int) -> RetentionReport:
        report = RetentionReport(user_id=user_id, cutoff=cutoff_for(days))
        report.messages_deleted = await self.message_log.delete_before(user_id, report.cutoff)
        report.memories_deleted = await self.graph.delete_memories_before(user_id, report.cutoff)
        if self.vector_index is not None:
            await self.vector_index.delete_before(user_id, report.cutoff)
        if report.messages_deleted or report.memories_deleted:
            log.info(
                "retention_applied",
                user_id=user_id,
                days=days,
                messages=report.messages_deleted,
                memories=report.memories_deleted,
            )
        return report
