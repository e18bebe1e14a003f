"""
VECTOR INDEX - Message Embeddings (LanceDB)
===========================================
Disk-backed ANN index with one row per embedded message.

The `message_vectors` table is created lazily on the first insert, with a
fixed-size vector column sized to that first vector. The table handle is
cached behind an asyncio.Lock so concurrent first inserts create it once.
Until something has been inserted, searches are a no-op.
"""

import asyncio
from pathlib import Path
from typing import Any, Dict, List, Optional

import lancedb
import pyarrow as pa
import structlog

from .db import ensure_parent_dir
from .errors import MemoryRuntimeError, SerializationError
from .models import VectorRecord, format_timestamp


log = structlog.get_logger("hive_memory.vector_index")

TABLE_NAME = "message_vectors"


def vector_schema(dim: int) -> pa.Schema:
    return pa.schema([
        pa.field("id", pa.int64(), nullable=False),
        pa.field("user_id", pa.string(), nullable=False),
        pa.field("role", pa.string(), nullable=False),
        pa.field("content", pa.string(), nullable=False),
        pa.field("timestamp", pa.int64(), nullable=False),
        pa.field("vector", pa.list_(pa.float32(), dim), nullable=True),
    ])


def quote_literal(value: str) -> str:
    """SQL string literal for LanceDB filter expressions."""
    return "'" + value.replace("'", "''") + "'"


def format_hit(row: Dict[str, Any]) -> str:
    return f"[{format_timestamp(int(row['timestamp']))}] {row['content']}"


class VectorIndex:
    """LanceDB-backed store of message vectors."""

    def __init__(self, uri: Path, table_name: str = TABLE_NAME):
        self.uri = Path(uri)
        self.table_name = table_name
        self._db = None
        self._table = None
        self._dim: Optional[int] = None
        self._lock = asyncio.Lock()

    @property
    def dim(self) -> Optional[int]:
        return self._dim

    async def _connect(self):
        if self._db is None:
            ensure_parent_dir(self.uri)
            self._db = await lancedb.connect_async(str(self.uri))
        return self._db

    async def _table_exists(self) -> bool:
        db = await self._connect()
        page_token = None
        while True:
            response = await db.list_tables(page_token=page_token)
            if self.table_name in response.tables:
                return True
            page_token = response.page_token
            if not page_token:
                return False

    async def _remember(self, table) -> None:
        schema = await table.schema()
        self._dim = schema.field("vector").type.list_size
        self._table = table

    async def get_or_create(self, dim: int):
        """Open the table, creating it with `dim`-wide vectors if missing."""
        async with self._lock:
            if self._table is not None:
                return self._table
            try:
                db = await self._connect()
                if await self._table_exists():
                    table = await db.open_table(self.table_name)
                else:
                    table = await db.create_table(self.table_name, schema=vector_schema(dim))
                    log.info("vector_table_created", table=self.table_name, dim=dim)
                await self._remember(table)
            except Exception as e:
                log.error("vector_table_open_failed", table=self.table_name, error=str(e))
                raise MemoryRuntimeError(f"open vector table: {e}") from e
            return self._table

    async def open_if_exists(self):
        """Cached table handle, or None when nothing was ever embedded."""
        async with self._lock:
            if self._table is not None:
                return self._table
            try:
                if not await self._table_exists():
                    return None
                table = await (await self._connect()).open_table(self.table_name)
                await self._remember(table)
            except Exception as e:
                log.error("vector_table_open_failed", table=self.table_name, error=str(e))
                raise MemoryRuntimeError(f"open vector table: {e}") from e
            return self._table

    async def insert(self, record: VectorRecord) -> None:
        """Append one row. Never retried; failures reach the caller."""
        if record.dim == 0:
            raise SerializationError("empty embedding vector")
        table = await self.get_or_create(record.dim)
        if record.dim != self._dim:
            raise SerializationError(
                f"vector width {record.dim} does not match table width {self._dim}"
            )
        try:
            data = pa.Table.from_pylist([record.to_dict()], schema=vector_schema(self._dim))
            await table.add(data)
        except Exception as e:
            log.error("vector_insert_failed", message_id=record.id, error=str(e))
            raise MemoryRuntimeError(f"vector insert: {e}") from e

    async def nearest(self, vector: List[float], user_id: str, k: int) -> List[Dict[str, Any]]:
        """Up to `k` nearest rows belonging to `user_id`."""
        table = await self.open_if_exists()
        if table is None:
            return []
        if self._dim is not None and len(vector) != self._dim:
            raise SerializationError(
                f"query width {len(vector)} does not match table width {self._dim}"
            )
        try:
            return await (
                table.query()
                .nearest_to([float(v) for v in vector])
                .where(f"user_id = {quote_literal(user_id)}")
                .limit(max(k, 1))
                .to_list()
            )
        except Exception as e:
            log.warning("vector_query_failed", user_id=user_id, error=str(e))
            raise MemoryRuntimeError(f"vector query: {e}") from e

    async def search(self, vector: List[float], user_id: str, k: int) -> List[str]:
        """nearest() rendered as '[YYYY-MM-DD HH:MM] content' strings."""
        return [format_hit(row) for row in await self.nearest(vector, user_id, k)]

    async def _delete(self, where: str) -> None:
        table = await self.open_if_exists()
        if table is None:
            return
        try:
            await table.delete(where)
        except Exception as e:
            raise MemoryRuntimeError(f"vector delete: {e}") from e

    async def delete_user(self, user_id: str) -> None:
        await self._delete(f"user_id = {quote_literal(user_id)}")

    async def delete_before(self, user_id: str, cutoff: int) -> None:
        await self._delete(f"user_id = {quote_literal(user_id)} AND timestamp < {int(cutoff)}")

    async def count(self, user_id: Optional[str] = None) -> int:
        table = await self.open_if_exists()
        if table is None:
            return 0
        where = f"user_id = {quote_literal(user_id)}" if user_id else None
        return await table.count_rows(where)
