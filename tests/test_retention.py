"""Retention tests: age-based eviction of messages, memories and vectors."""

import dataclasses

import pytest

from conftest import FakeEmbedder, fake_vector
from hive_memory import MemoryEngine
from hive_memory.models import Entity, Memory, VectorRecord, now_ts
from hive_memory.retention import SECONDS_PER_DAY, cutoff_for

TWO_DAYS_AGO = now_ts() - 2 * SECONDS_PER_DAY


class TestCutoff:

    def test_cutoff_for(self):
        assert cutoff_for(1, now=10 * SECONDS_PER_DAY) == 9 * SECONDS_PER_DAY


class TestRetention:
    """Rows older than N days disappear, newer ones stay."""

    @pytest.mark.asyncio
    async def test_append_triggers_retention(self, memory_config):
        """With retention configured, any append evicts stale turns."""
        config = dataclasses.replace(memory_config, retention_days=1)
        eng = await MemoryEngine.open(config)
        try:
            await eng.messages.append("u1", "user", "ancient", timestamp=TWO_DAYS_AGO)
            await eng.messages.append("u1", "user", "fresh")
            await eng.append("u1", "user", "trigger")
            await eng.wait_background()

            assert [m.content for m in await eng.history("u1")] == ["fresh", "trigger"]
        finally:
            await eng.close()

    @pytest.mark.asyncio
    async def test_no_retention_by_default(self, engine):
        await engine.messages.append("u1", "user", "ancient", timestamp=TWO_DAYS_AGO)
        await engine.append("u1", "user", "trigger")
        await engine.wait_background()
        assert len(await engine.history("u1")) == 2
        assert await engine.apply_retention("u1") is None

    @pytest.mark.asyncio
    async def test_report_counts(self, engine):
        """Old memories go too; graph nodes they produced are left alone."""
        await engine.messages.append("u1", "user", "ancient", timestamp=TWO_DAYS_AGO)
        await engine.graph.add_memory(Memory(user_id="u1", summary="old summary", created_at=TWO_DAYS_AGO))
        await engine.graph.add_memory(Memory(user_id="u1", summary="new summary"))
        await engine.graph.add_entity(Entity(user_id="u1", name="Alps", created_at=TWO_DAYS_AGO))

        report = await engine.apply_retention("u1", days=1)
        assert report.messages_deleted == 1
        assert report.memories_deleted == 1
        assert [m.summary for m in await engine.graph.memories("u1")] == ["new summary"]
        assert len(await engine.graph.entities("u1")) == 1
        assert await engine.search("u1", "old summary", 5) == []

    @pytest.mark.asyncio
    async def test_other_users_untouched(self, engine):
        await engine.messages.append("u2", "user", "ancient", timestamp=TWO_DAYS_AGO)
        await engine.apply_retention("u1", days=1)
        assert len(await engine.history("u2")) == 1

    @pytest.mark.asyncio
    async def test_old_vectors_evicted(self, memory_config):
        """Vector rows follow their messages out."""
        eng = await MemoryEngine.open(memory_config, embedder=FakeEmbedder())
        try:
            await eng.append("u1", "user", "fresh turn")
            await eng.vector_index.insert(VectorRecord(
                id=999, user_id="u1", role="user", content="ancient turn",
                timestamp=TWO_DAYS_AGO, vector=fake_vector("ancient turn"),
            ))
            assert await eng.vector_index.count("u1") == 2

            await eng.apply_retention("u1", days=1)
            assert await eng.vector_index.count("u1") == 1
        finally:
            await eng.close()
