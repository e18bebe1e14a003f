"""hive_memory test configuration."""
import json
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from hive_memory import MemoryConfig, MemoryEngine

DIM = 8


def fake_vector(text: str, dim: int = DIM) -> List[float]:
    """Deterministic bag-of-characters embedding, never all zeros."""
    vector = [0.001] * dim
    for ch in text.lower():
        vector[ord(ch) % dim] += 1.0
    norm = sum(v * v for v in vector) ** 0.5
    return [v / norm for v in vector]


class FakeEmbedder:
    """Embedder that counts calls and remembers what it was asked."""

    def __init__(self, dim: int = DIM):
        self.dim = dim
        self.calls = 0
        self.texts: List[str] = []
        self.models: List[Optional[str]] = []

    async def embed(self, texts: List[str], model: Optional[str] = None) -> List[List[float]]:
        self.calls += 1
        self.texts.extend(texts)
        self.models.append(model)
        return [fake_vector(t, self.dim) for t in texts]

    def reset(self) -> None:
        self.calls = 0
        self.texts.clear()
        self.models.clear()


class FailingEmbedder(FakeEmbedder):
    """Works for the first `ok_calls` calls, then raises."""

    def __init__(self, ok_calls: int = 0, dim: int = DIM):
        super().__init__(dim)
        self.ok_calls = ok_calls

    async def embed(self, texts, model=None):
        if self.calls >= self.ok_calls:
            self.calls += 1
            raise RuntimeError("embedding service down")
        return await super().embed(texts, model)


class FakeGenerator:
    """StructuredGenerator returning a canned payload (dict or raw text)."""

    def __init__(self, output: Any):
        self.output = output
        self.prompts: List[str] = []
        self.systems: List[str] = []

    async def generate(self, prompt: str, system: str, schema: Dict[str, Any]) -> Any:
        self.prompts.append(prompt)
        self.systems.append(system)
        return self.output

    @property
    def calls(self) -> int:
        return len(self.prompts)


class RaisingGenerator(FakeGenerator):
    """StructuredGenerator whose every call fails."""

    def __init__(self):
        super().__init__(None)

    async def generate(self, prompt, system, schema):
        self.prompts.append(prompt)
        self.systems.append(system)
        raise RuntimeError("model unavailable")


def candidates_from_prompt(prompt: str) -> List[str]:
    """Recover the indexed candidate list from a rerank prompt."""
    lines = prompt.split("Candidates:\n", 1)[1].split("\n\n", 1)[0].splitlines()
    return [line.split(": ", 1)[1] for line in lines]


def summary_payload(**overrides) -> str:
    payload = {
        "summary": "User loves hiking in the Alps",
        "tags": ["hobby", "travel"],
        "entities": [{"name": "Alps", "type": "place"}],
        "facts": [{
            "subject": "user", "predicate": "likes", "object": "hiking",
            "confidence": 0.9,
        }],
    }
    payload.update(overrides)
    return json.dumps(payload)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def memory_config(tmp_path):
    """Config pointing at a throwaway SQLite file and LanceDB directory."""
    return MemoryConfig(
        sqlite_path=tmp_path / "data" / "memory.db",
        lancedb_path=tmp_path / "data" / "lancedb",
        embedding_model="test-embedding",
    )


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest_asyncio.fixture
async def engine(memory_config):
    """Engine with storage only: no embedder, reranker or summarizer."""
    eng = await MemoryEngine.open(memory_config)
    yield eng
    await eng.close()


@pytest_asyncio.fixture
async def vector_engine(memory_config, embedder):
    """Engine with the fake embedder wired to a real LanceDB table."""
    eng = await MemoryEngine.open(memory_config, embedder=embedder)
    yield eng
    await eng.close()
