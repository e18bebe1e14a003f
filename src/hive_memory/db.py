"""
DB - Relational Store (SQLite + FTS5)
=====================================
Schema migrations and a small bounded pool of aiosqlite connections.

Migrations are applied once at startup on a worker thread; after that every
statement goes through the pool. Each pooled connection runs SQLite on its
own aiosqlite thread, so the event loop never blocks on disk I/O.
"""

import asyncio
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Tuple

import aiosqlite
import structlog

from .errors import ConfigError, MemoryRuntimeError

log = structlog.get_logger("hive_memory.db")

BUSY_TIMEOUT_MS = 5000

# (version, name, sql). Append only; never edit an applied migration.
MIGRATIONS: List[Tuple[int, str, str]] = [
    (1, "create_memory", """
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    timestamp BIGINT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_user_time
    ON messages(user_id, timestamp);

CREATE VIRTUAL TABLE IF NOT EXISTS messages_fts USING fts5(
    content,
    user_id,
    message_id UNINDEXED
);

CREATE TRIGGER IF NOT EXISTS messages_ai AFTER INSERT ON messages BEGIN
    INSERT INTO messages_fts(rowid, content, user_id, message_id)
    VALUES (new.id, new.content, new.user_id, new.id);
END;

CREATE TRIGGER IF NOT EXISTS messages_ad AFTER DELETE ON messages BEGIN
    DELETE FROM messages_fts WHERE rowid = old.id;
END;

CREATE TRIGGER IF NOT EXISTS messages_au AFTER UPDATE ON messages BEGIN
    DELETE FROM messages_fts WHERE rowid = old.id;
    INSERT INTO messages_fts(rowid, content, user_id, message_id)
    VALUES (new.id, new.content, new.user_id, new.id);
END;

CREATE TABLE IF NOT EXISTS memories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    summary TEXT NOT NULL,
    tags TEXT,
    salience REAL,
    created_at BIGINT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_memories_user_time
    ON memories(user_id, created_at);

CREATE TABLE IF NOT EXISTS entities (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    canonical_id TEXT,
    created_at BIGINT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_entities_user_name
    ON entities(user_id, name);

CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    event_type TEXT NOT NULL,
    payload TEXT,
    occurred_at BIGINT,
    created_at BIGINT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_user_time
    ON events(user_id, created_at);

CREATE TABLE IF NOT EXISTS facts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    subject TEXT NOT NULL,
    predicate TEXT NOT NULL,
    object TEXT NOT NULL,
    confidence REAL,
    source TEXT,
    created_at BIGINT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_facts_user_subject
    ON facts(user_id, subject);

CREATE TABLE IF NOT EXISTS edges (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    src_node_type TEXT NOT NULL,
    src_node_id INTEGER NOT NULL,
    dst_node_type TEXT NOT NULL,
    dst_node_id INTEGER NOT NULL,
    edge_type TEXT NOT NULL,
    weight REAL,
    created_at BIGINT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_edges_user_src
    ON edges(user_id, src_node_type, src_node_id, edge_type);

CREATE TABLE IF NOT EXISTS memory_links (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    memory_id INTEGER NOT NULL,
    node_type TEXT NOT NULL,
    node_id INTEGER NOT NULL,
    created_at BIGINT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_memory_links_memory
    ON memory_links(memory_id, node_type);

CREATE VIRTUAL TABLE IF NOT EXISTS memories_fts USING fts5(
    summary,
    user_id,
    memory_id UNINDEXED
);

CREATE TRIGGER IF NOT EXISTS memories_ai AFTER INSERT ON memories BEGIN
    INSERT INTO memories_fts(rowid, summary, user_id, memory_id)
    VALUES (new.id, new.summary, new.user_id, new.id);
END;

CREATE TRIGGER IF NOT EXISTS memories_ad AFTER DELETE ON memories BEGIN
    DELETE FROM memories_fts WHERE rowid = old.id;
END;

CREATE TRIGGER IF NOT EXISTS memories_au AFTER UPDATE ON memories BEGIN
    DELETE FROM memories_fts WHERE rowid = old.id;
    INSERT INTO memories_fts(rowid, summary, user_id, memory_id)
    VALUES (new.id, new.summary, new.user_id, new.id);
END;
"""),
    (2, "create_captures", """
CREATE TABLE IF NOT EXISTS captures (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    capture_name TEXT NOT NULL,
    agent_name TEXT,
    data TEXT NOT NULL,
    schema TEXT,
    timestamp BIGINT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_captures_user_time
    ON captures(user_id, timestamp);
"""),
]


def ensure_parent_dir(path: Path) -> None:
    try:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigError(f"cannot create directory for {path}: {e}") from e


def _apply_migrations(db_path: str) -> List[int]:
    """Blocking: apply pending migrations, return the versions applied."""
    conn = sqlite3.connect(db_path)
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_migrations ("
            " version INTEGER PRIMARY KEY, name TEXT NOT NULL, applied_at BIGINT NOT NULL)"
        )
        done = {row[0] for row in conn.execute("SELECT version FROM schema_migrations")}
        applied = []
        for version, name, sql in MIGRATIONS:
            if version in done:
                continue
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_migrations (version, name, applied_at)"
                " VALUES (?, ?, strftime('%s','now'))",
                (version, name),
            )
            conn.commit()
            applied.append(version)
        return applied
    finally:
        conn.close()


async def run_migrations(db_path: Path) -> None:
    """Apply pending migrations on a worker thread."""
    ensure_parent_dir(db_path)
    try:
        applied = await asyncio.to_thread(_apply_migrations, str(db_path))
    except sqlite3.Error as e:
        raise MemoryRuntimeError(f"migration failed: {e}") from e
    if applied:
        log.info("migrations_applied", path=str(db_path), versions=applied)


@asynccontextmanager
async def storage_errors(operation: str) -> AsyncIterator[None]:
    """Translate low-level storage failures into MemoryRuntimeError."""
    try:
        yield
    except (sqlite3.Error, OSError) as e:
        log.error("storage_failed", operation=operation, error=str(e))
        raise MemoryRuntimeError(f"{operation}: {e}") from e


class ConnectionPool:
    """
    Bounded pool of aiosqlite connections.

    Connections are opened lazily up to `size`; callers beyond the cap wait
    on the queue until a connection is released.
    """

    def __init__(self, db_path: Path, size: int = 4):
        self.db_path = Path(db_path)
        self.size = size
        self._idle: "asyncio.Queue[aiosqlite.Connection]" = asyncio.Queue()
        self._all: List[aiosqlite.Connection] = []
        self._lock = asyncio.Lock()
        self._closed = False

    async def _connect(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(str(self.db_path))
        conn.row_factory = aiosqlite.Row
        await conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
        return conn

    async def _take(self) -> aiosqlite.Connection:
        if self._closed:
            raise MemoryRuntimeError("connection pool is closed")
        try:
            return self._idle.get_nowait()
        except asyncio.QueueEmpty:
            pass
        async with self._lock:
            if len(self._all) < self.size:
                conn = await self._connect()
                self._all.append(conn)
                return conn
        return await self._idle.get()

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[aiosqlite.Connection]:
        async with storage_errors("acquire"):
            conn = await self._take()
        try:
            yield conn
        except Exception:
            try:
                await conn.rollback()
            except sqlite3.Error:
                log.warning("rollback_failed", path=str(self.db_path))
            raise
        finally:
            self._idle.put_nowait(conn)

    async def close(self) -> None:
        self._closed = True
        for conn in self._all:
            try:
                await conn.close()
            except sqlite3.Error as e:
                log.warning("connection_close_failed", error=str(e))
        self._all.clear()
        while not self._idle.empty():
            self._idle.get_nowait()


async def open_pool(db_path: Path, size: int = 4) -> ConnectionPool:
    """Migrate the database and return a ready pool."""
    await run_migrations(db_path)
    return ConnectionPool(db_path, size=size)

