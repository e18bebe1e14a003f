"""
CAPTURES - Structured Agent Output Per User
===========================================
Agents can hand the engine a named JSON payload (plus an optional JSON
schema describing it) to keep alongside the user's history. Captures are
not searched, summarized or evicted; they are plain records.
"""

import json
from typing import Any, List, Optional

import structlog

from .db import ConnectionPool, storage_errors
from .errors import SerializationError
from .models import Capture, now_ts

log = structlog.get_logger("hive_memory.captures")


def _to_json(value: Any, what: str) -> str:
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"capture {what} is not JSON serializable: {e}") from e


class CaptureStore:

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    async def save(
        self,
        user_id: str,
        capture_name: str,
        data: Any,
        agent_name: Optional[str] = None,
        schema: Optional[Any] = None,
    ) -> Capture:
        data_json = _to_json(data, "data")
        schema_json = _to_json(schema, "schema") if schema is not None else None
        capture = Capture(
            user_id=user_id,
            capture_name=capture_name,
            data=data,
            agent_name=agent_name,
            schema=schema,
            timestamp=now_ts(),
        )
        async with storage_errors("save_capture"):
            async with self.pool.acquire() as conn:
                cursor = await conn.execute(
                    "INSERT INTO captures (user_id, capture_name, agent_name, data, schema, timestamp)"
                    " VALUES (?, ?, ?, ?, ?, ?)",
                    (user_id, capture_name, agent_name, data_json, schema_json, capture.timestamp),
                )
                capture.id = cursor.lastrowid
                await cursor.close()
                await conn.commit()
        log.debug("capture_saved", user_id=user_id, capture_name=capture_name, agent_name=agent_name)
        return capture

    async def list(self, user_id: str, capture_name: Optional[str] = None) -> List[Capture]:
        """Captures of the user oldest first, optionally only one name."""
        sql = (
            "SELECT id, user_id, capture_name, agent_name, data, schema, timestamp"
            " FROM captures WHERE user_id = ?"
        )
        params: List[Any] = [user_id]
        if capture_name is not None:
            sql += " AND capture_name = ?"
            params.append(capture_name)
        sql += " ORDER BY timestamp, id"
        async with storage_errors("list_captures"):
            async with self.pool.acquire() as conn:
                async with conn.execute(sql, params) as cursor:
                    rows = await cursor.fetchall()
        try:
            return [Capture.from_row(row) for row in rows]
        except ValueError as e:
            raise SerializationError(f"stored capture is not valid JSON: {e}") from e
