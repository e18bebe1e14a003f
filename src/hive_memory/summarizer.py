"""
SUMMARIZER - Compaction into the Knowledge Graph
================================================
Once a user has at least `threshold` messages, the latest `threshold` turns
are collapsed into one Memory plus extracted entities and facts.

Stages (per run, nothing persisted between runs):
  CountCheck -> Fetch -> Summarize -> PersistMemory -> PersistEntities
  -> PersistFacts -> Done

A summarizer outage never blocks compaction: the raw transcript becomes the
summary. Writes are not wrapped in one transaction; whatever succeeded before
a failure stays.
"""

from typing import Any, Dict, List, Optional

import structlog

from .config import DEFAULT_SUMMARY_THRESHOLD
from .knowledge_graph import KnowledgeGraph
from .message_log import MessageLog
from .models import Memory, Entity, Fact, Message, now_ts
from .providers import StructuredGenerator, parse_structured

log = structlog.get_logger("hive_memory.summarizer")

SUMMARY_SYSTEM = "You are a memory summarizer. Return JSON only."
SUMMARY_SCHEMA = {
    "type": "object",
    "properties": {
        "summary": {"type": "string"},
        "tags": {"type": "array", "items": {"type": "string"}},
        "entities": {"type": "array", "items": {
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "type": {"type": "string"},
            },
            "required": ["name", "type"],
        }},
        "facts": {"type": "array", "items": {
            "type": "object",
            "properties": {
                "subject": {"type": "string"},
                "predicate": {"type": "string"},
                "object": {"type": "string"},
                "confidence": {"type": "number"},
            },
            "required": ["subject", "predicate", "object"],
        }},
    },
    "required": ["summary"],
}


def render_transcript(messages: List[Message]) -> str:
    return "\n".join(m.format() for m in messages)


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _items(output: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    value = output.get(key)
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


class SummarizationEngine:
    """Turns recent conversation into Memory / Entity / Fact nodes."""

    def __init__(
        self,
        message_log: MessageLog,
        graph: KnowledgeGraph,
        summarizer: Optional[StructuredGenerator] = None,
        threshold: int = DEFAULT_SUMMARY_THRESHOLD,
    ):
        self.message_log = message_log
        self.graph = graph
        self.summarizer = summarizer
        self.threshold = threshold

    async def _summarize(self, transcript: str) -> Dict[str, Any]:
        prompt = (
            "Summarize the following conversation into a concise memory.\n\n" + transcript
        )
        try:
            output = await self.summarizer.generate(prompt, SUMMARY_SYSTEM, SUMMARY_SCHEMA)
            return parse_structured(output)
        except Exception as e:
            log.warning("summarizer_unavailable", error=str(e))
            return {"summary": transcript}

    async def run(self, user_id: str) -> Optional[Memory]:
        """
        One pass of the pipeline. Returns the new Memory, or None when the
        user is under threshold, no summarizer is configured, or the summary
        came back empty. Storage errors propagate to the caller.
        """
        if self.summarizer is None:
            return None

        # CountCheck
        count = await self.message_log.count(user_id)
        if count < self.threshold:
            return None

        # Fetch
        recent = await self.message_log.history(user_id, self.threshold)
        transcript = render_transcript(recent)

        # Summarize
        output = await self._summarize(transcript)
        summary = output.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            log.info("summary_empty", user_id=user_id)
            return None
        tags = output.get("tags")
        tags = ",".join(t for t in tags if isinstance(t, str)) if isinstance(tags, list) else None

        # PersistMemory
        now = now_ts()
        memory = await self.graph.add_memory(Memory(
            user_id=user_id, summary=summary, tags=tags, created_at=now,
        ))

        # PersistEntities
        entity_count = 0
        for item in _items(output, "entities"):
            name = _text(item.get("name"))
            if name is None:
                continue
            entity = await self.graph.add_entity(Entity(
                user_id=user_id,
                name=name,
                entity_type=_text(item.get("type")) or "unknown",
                created_at=now,
            ))
            await self.graph.link_entity(memory, entity)
            entity_count += 1

        # PersistFacts
        fact_count = 0
        for item in _items(output, "facts"):
            subject = _text(item.get("subject"))
            predicate = _text(item.get("predicate"))
            obj = _text(item.get("object"))
            if subject is None or predicate is None or obj is None:
                continue
            fact = await self.graph.add_fact(Fact(
                user_id=user_id,
                subject=subject,
                predicate=predicate,
                object=obj,
                confidence=_number(item.get("confidence")),
                created_at=now,
            ))
            await self.graph.link_fact(memory, fact)
            fact_count += 1

        log.info(
            "memory_created",
            user_id=user_id,
            memory_id=memory.id,
            entities=entity_count,
            facts=fact_count,
        )
        return memory
