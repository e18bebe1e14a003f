"""
HIVE MEMORY - Per-User Conversational Memory Engine
===================================================
Core components:

- message_log: durable chat history (SQLite + FTS5)
- vector_index: LanceDB message embeddings, created lazily
- embedding_cache: LRU of query vectors
- search: hybrid lexical + vector retrieval with optional LLM rerank
- summarizer / knowledge_graph: background compaction into memories,
  entities and facts
- retention: age-based eviction
- captures: named JSON payloads saved by agents
- engine: the MemoryEngine facade tying it all together

Usage:
    from hive_memory import MemoryEngine, MemoryConfig
    engine = await MemoryEngine.open(MemoryConfig(sqlite_path="data/mem.db"))
"""

__version__ = "0.1.0"

from .config import MemoryConfig, build_memory_provider
from .engine import MemoryEngine
from .errors import HiveMemoryError, ConfigError, MemoryRuntimeError, SerializationError
from .in_memory import InMemoryMemoryProvider
from .models import Message, Memory, Entity, Fact, Edge, MemoryLink, VectorRecord, Role, Capture

__all__ = [
    "MemoryEngine",
    "MemoryConfig",
    "build_memory_provider",
    "InMemoryMemoryProvider",
    "HiveMemoryError",
    "ConfigError",
    "MemoryRuntimeError",
    "SerializationError",
    "Message",
    "Memory",
    "Entity",
    "Fact",
    "Edge",
    "MemoryLink",
    "VectorRecord",
    "Role",
    "Capture",
    "__version__",
]
