"""
IN-MEMORY PROVIDER - Volatile Fallback
======================================
Same inbound surface as MemoryEngine without any persistence, search or
compaction. Used when memory is disabled in configuration.
"""

import asyncio
from typing import Any, Dict, Iterable, List, Optional

from .errors import SerializationError
from .models import Message, Role


class InMemoryMemoryProvider:
    def __init__(self):
        self._store: Dict[str, List[Message]] = {}
        self._lock = asyncio.Lock()
        self._next_id = 1

    async def append(self, user_id: str, role: str, content: str) -> Message:
        role = role.value if isinstance(role, Role) else role
        async with self._lock:
            message = Message(user_id=user_id, role=role, content=content, id=self._next_id)
            self._next_id += 1
            self._store.setdefault(user_id, []).append(message)
        return message

    async def history(self, user_id: str, limit: int = 0) -> List[Message]:
        async with self._lock:
            messages = list(self._store.get(user_id, []))
        if limit > 0 and len(messages) > limit:
            messages = messages[-limit:]
        return messages

    async def clear(self, user_id: str) -> None:
        async with self._lock:
            self._store.pop(user_id, None)

    async def search(self, user_id: str, query: str, limit: int = 5) -> List[str]:
        return []

    async def store(self, user_id: str, messages: Iterable[Dict[str, Any]]) -> None:
        for msg in messages:
            if not isinstance(msg, dict):
                raise SerializationError(f"message must be an object, got {type(msg).__name__}")
            role = msg.get("role") if isinstance(msg.get("role"), str) else Role.USER.value
            content = msg.get("content") if isinstance(msg.get("content"), str) else ""
            await self.append(user_id, role, content)

    async def retrieve(self, user_id: str) -> str:
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
    ) -> None:
        """Nothing is kept without a database."""
        return None

    async def wait_background(self) -> None:
        return None

    async def close(self) -> None:
        return None
