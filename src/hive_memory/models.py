"""
MODELS - The Shape of Memory
============================
Typed records for everything the memory engine persists.
Rows come back from SQLite as aiosqlite.Row and are lifted into these
dataclasses at the storage boundary; nothing above the storage layer
touches raw tuples.
"""

import json
import time
from datetime import datetime, timezone
from enum import Enum
from dataclasses import dataclass, field, asdict
from typing import Dict, Any, List, Optional

# Graph vocabulary
NODE_MEMORY = "memory"
NODE_ENTITY = "entity"
NODE_FACT = "fact"

EDGE_MENTIONED_IN = "MENTIONED_IN"  # memory -> entity
EDGE_CONTAINS = "CONTAINS"          # memory -> fact

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M"


class Role(str, Enum):
    """Who produced a chat turn."""
    USER = "user"
    ASSISTANT = "assistant"


def now_ts() -> int:
    """Current unix time in whole seconds."""
    return int(time.time())


def format_timestamp(ts: int) -> str:
    """Render unix seconds as 'YYYY-MM-DD HH:MM' (UTC); falls back to the raw number."""
    try:
        return datetime.fromtimestamp(ts, tz=timezone.utc).strftime(TIMESTAMP_FORMAT)
    except (OverflowError, OSError, ValueError):
        return str(ts)


def _row_get(row: Any, key: str, default: Any = None) -> Any:
    try:
        return row[key]
    except (KeyError, IndexError):
        return default


@dataclass
class Message:
    """
    A single chat turn in the MessageLog.
    Immutable once written; only retention or clear removes it.
    """
    user_id: str
    role: str
    content: str
    timestamp: int = field(default_factory=now_ts)
    id: Optional[int] = None

    def format(self) -> str:
        """Transcript line: '[YYYY-MM-DD HH:MM] role: content'."""
        return f"[{format_timestamp(self.timestamp)}] {self.role}: {self.content}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_row(row: Any) -> "Message":
        return Message(
            id=_row_get(row, "id"),
            user_id=row["user_id"],
            role=row["role"],
            content=row["content"],
            timestamp=int(row["timestamp"]),
        )


@dataclass
class VectorRecord:
    """One embedded message in the vector index (id mirrors Message.id)."""
    id: int
    user_id: str
    role: str
    content: str
    timestamp: int
    vector: List[float]

    @property
    def dim(self) -> int:
        return len(self.vector)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": int(self.id),
            "user_id": self.user_id,
            "role": self.role,
            "content": self.content,
            "timestamp": int(self.timestamp),
            "vector": [float(v) for v in self.vector],
        }

    @staticmethod
    def from_message(message: Message, vector: List[float]) -> "VectorRecord":
        return VectorRecord(
            id=message.id,
            user_id=message.user_id,
            role=message.role,
            content=message.content,
            timestamp=message.timestamp,
            vector=list(vector),
        )


@dataclass
class Memory:
    """A summary produced by the SummarizationEngine."""
    user_id: str
    summary: str
    tags: Optional[str] = None       # comma-joined
    salience: Optional[float] = None
    created_at: int = field(default_factory=now_ts)
    id: Optional[int] = None

    @property
    def tag_list(self) -> List[str]:
        if not self.tags:
            return []
        return [t for t in self.tags.split(",") if t]

    @staticmethod
    def from_row(row: Any) -> "Memory":
        return Memory(
            id=row["id"],
            user_id=row["user_id"],
            summary=row["summary"],
            tags=row["tags"],
            salience=row["salience"],
            created_at=int(row["created_at"]),
        )


@dataclass
class Entity:
    user_id: str
    name: str
    entity_type: str = "unknown"
    canonical_id: Optional[str] = None
    created_at: int = field(default_factory=now_ts)
    id: Optional[int] = None

    @staticmethod
    def from_row(row: Any) -> "Entity":
        return Entity(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            entity_type=row["entity_type"],
            canonical_id=row["canonical_id"],
            created_at=int(row["created_at"]),
        )


@dataclass
class Fact:
    user_id: str
    subject: str
    predicate: str
    object: str
    confidence: Optional[float] = None
    source: Optional[str] = None
    created_at: int = field(default_factory=now_ts)
    id: Optional[int] = None

    @staticmethod
    def from_row(row: Any) -> "Fact":
        return Fact(
            id=row["id"],
            user_id=row["user_id"],
            subject=row["subject"],
            predicate=row["predicate"],
            object=row["object"],
            confidence=row["confidence"],
            source=row["source"],
            created_at=int(row["created_at"]),
        )


@dataclass
class Edge:
    """Typed relation between two graph nodes."""
    user_id: str
    src_node_type: str
    src_node_id: int
    dst_node_type: str
    dst_node_id: int
    edge_type: str
    weight: Optional[float] = None
    created_at: int = field(default_factory=now_ts)
    id: Optional[int] = None

    @staticmethod
    def from_row(row: Any) -> "Edge":
        return Edge(
            id=row["id"],
            user_id=row["user_id"],
            src_node_type=row["src_node_type"],
            src_node_id=row["src_node_id"],
            dst_node_type=row["dst_node_type"],
            dst_node_id=row["dst_node_id"],
            edge_type=row["edge_type"],
            weight=row["weight"],
            created_at=int(row["created_at"]),
        )


@dataclass
class MemoryLink:
    """Provenance: which node a Memory produced."""
    memory_id: int
    node_type: str
    node_id: int
    created_at: int = field(default_factory=now_ts)
    id: Optional[int] = None

    @staticmethod
    def from_row(row: Any) -> "MemoryLink":
        return MemoryLink(
            id=row["id"],
            memory_id=row["memory_id"],
            node_type=row["node_type"],
            node_id=row["node_id"],
            created_at=int(row["created_at"]),
        )


@dataclass
class Capture:
    """
    A named blob of structured data an agent asked to keep for a user.
    `data` and `schema` are stored as JSON text and decoded on read.
    """
    user_id: str
    capture_name: str
    data: Any
    agent_name: Optional[str] = None
    schema: Optional[Any] = None
    timestamp: int = field(default_factory=now_ts)
    id: Optional[int] = None

    @staticmethod
    def from_row(row: Any) -> "Capture":
        schema = row["schema"]
        return Capture(
            id=row["id"],
            user_id=row["user_id"],
            capture_name=row["capture_name"],
            agent_name=row["agent_name"],
            data=json.loads(row["data"]),
            schema=json.loads(schema) if schema is not None else None,
            timestamp=int(row["timestamp"]),
        )
