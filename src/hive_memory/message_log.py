"""
MESSAGE LOG - Durable Per-User Chat History
===========================================
Append-only log of chat turns backed by SQLite, with FTS5 shadow tables
kept in sync by triggers (see db.MIGRATIONS).
"""

from typing import List, Optional

import structlog

from .db import ConnectionPool, storage_errors
from .models import Message, Role, now_ts, format_timestamp

log = structlog.get_logger("hive_memory.message_log")

# Memories and user turns only; the agent's own phrasing is never matched back.
LEXICAL_SEARCH_SQL = """
SELECT mem.summary AS content, mem.created_at AS timestamp
FROM memories_fts f
JOIN memories mem ON mem.id = f.memory_id
WHERE f.user_id = ?1 AND f.summary MATCH ?2
UNION ALL
SELECT m.content AS content, m.timestamp AS timestamp
FROM messages_fts f
JOIN messages m ON m.id = f.message_id
WHERE f.user_id = ?1 AND f.content MATCH ?2 AND m.role = 'user'
ORDER BY timestamp DESC
LIMIT ?3
"""


class MessageLog:
    """Per-user ordered chat turns."""

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    async def append(
        self,
        user_id: str,
        role: str,
        content: str,
        timestamp: Optional[int] = None,
    ) -> Message:
        """Persist one turn. `timestamp` defaults to now (unix seconds)."""
        role = role.value if isinstance(role, Role) else role
        message = Message(
            user_id=user_id,
            role=role,
            content=content,
            timestamp=now_ts() if timestamp is None else int(timestamp),
        )
        async with storage_errors("append_message"):
            async with self.pool.acquire() as conn:
                cursor = await conn.execute(
                    "INSERT INTO messages (user_id, role, content, timestamp) VALUES (?, ?, ?, ?)",
                    (message.user_id, message.role, message.content, message.timestamp),
                )
                message.id = cursor.lastrowid
                await cursor.close()
                await conn.commit()
        log.debug("message_appended", user_id=user_id, role=role, message_id=message.id)
        return message

    async def history(self, user_id: str, limit: int = 0) -> List[Message]:
        """
        The most recent `limit` messages (0 = all), oldest first.

        Rows are read newest-first with a cap and then reversed, so the cap
        keeps the latest turns rather than the earliest ones.
        """
        sql = (
            "SELECT id, user_id, role, content, timestamp FROM messages"
            " WHERE user_id = ? ORDER BY timestamp DESC, id DESC LIMIT ?"
        )
        cap = limit if limit and limit > 0 else -1
        async with storage_errors("get_history"):
            async with self.pool.acquire() as conn:
                async with conn.execute(sql, (user_id, cap)) as cursor:
                    rows = await cursor.fetchall()
        messages = [Message.from_row(row) for row in rows]
        messages.reverse()
        return messages

    async def clear(self, user_id: str) -> int:
        """Delete every message of the user. Safe to repeat."""
        async with storage_errors("clear_history"):
            async with self.pool.acquire() as conn:
                cursor = await conn.execute("DELETE FROM messages WHERE user_id = ?", (user_id,))
                deleted = cursor.rowcount
                await cursor.close()
                await conn.commit()
        log.info("history_cleared", user_id=user_id, deleted=deleted)
        return deleted

    async def count(self, user_id: str) -> int:
        async with storage_errors("count_messages"):
            async with self.pool.acquire() as conn:
                async with conn.execute(
                    "SELECT COUNT(*) AS count FROM messages WHERE user_id = ?", (user_id,)
                ) as cursor:
                    row = await cursor.fetchone()
        return int(row["count"]) if row else 0

    async def delete_before(self, user_id: str, cutoff: int) -> int:
        async with storage_errors("delete_old_messages"):
            async with self.pool.acquire() as conn:
                cursor = await conn.execute(
                    "DELETE FROM messages WHERE user_id = ? AND timestamp < ?",
                    (user_id, cutoff),
                )
                deleted = cursor.rowcount
                await cursor.close()
                await conn.commit()
        return deleted

    async def search_lexical(self, user_id: str, fts_query: str, limit: int) -> List[str]:
        """
        Full-text match over memory summaries and user turns, newest first.
        `fts_query` must already be a sanitized FTS5 phrase.
        """
        async with storage_errors("search_fts"):
            async with self.pool.acquire() as conn:
                async with conn.execute(
                    LEXICAL_SEARCH_SQL, (user_id, fts_query, max(limit, 1))
                ) as cursor:
                    rows = await cursor.fetchall()
        return [f"[{format_timestamp(row['timestamp'])}] {row['content']}" for row in rows]
