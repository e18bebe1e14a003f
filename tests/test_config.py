"""Configuration, provider wiring and error taxonomy tests."""

from types import SimpleNamespace

import pytest

import hive_memory.config as config_module
import hive_memory.providers as providers_module
from conftest import FakeGenerator
from hive_memory import InMemoryMemoryProvider, MemoryConfig, MemoryEngine, build_memory_provider
from hive_memory.config import DEFAULT_SUMMARY_THRESHOLD, get_api_key, get_config
from hive_memory.errors import ConfigError, MemoryRuntimeError, SerializationError
from hive_memory.providers import Embedder, GeminiProvider, StructuredGenerator, parse_structured

ENV_KEYS = [
    "ENABLED", "SQLITE_PATH", "LANCEDB_PATH", "EMBEDDING_MODEL", "SUMMARY_MODEL",
    "RERANK_MODEL", "SUMMARY_THRESHOLD", "RETENTION_DAYS", "POOL_SIZE", "ENABLE_MODELS",
]


@pytest.fixture
def clean_env(monkeypatch):
    """No HIVE_MEMORY_* or Gemini keys leak in from the host."""
    monkeypatch.setattr(config_module, "_env_loaded", True)
    for key in ENV_KEYS:
        monkeypatch.delenv(f"HIVE_MEMORY_{key}", raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    return monkeypatch


# ---------------------------------------------------------------------------
# Environment parsing
# ---------------------------------------------------------------------------

class TestFromEnv:

    def test_defaults(self, clean_env):
        config = MemoryConfig.from_env()
        assert config.enabled is True
        assert config.summary_threshold == DEFAULT_SUMMARY_THRESHOLD
        assert config.retention_days is None
        assert config.models_enabled is False
        assert config.vector_search_enabled is False

    def test_values_are_coerced(self, clean_env, tmp_path):
        clean_env.setenv("HIVE_MEMORY_SQLITE_PATH", str(tmp_path / "m.db"))
        clean_env.setenv("HIVE_MEMORY_LANCEDB_PATH", str(tmp_path / "vectors"))
        clean_env.setenv("HIVE_MEMORY_SUMMARY_THRESHOLD", "20")
        clean_env.setenv("HIVE_MEMORY_RETENTION_DAYS", "30")
        clean_env.setenv("HIVE_MEMORY_ENABLE_MODELS", "true")
        clean_env.setenv("HIVE_MEMORY_EMBEDDING_MODEL", "gemini-embedding-001")

        config = MemoryConfig.from_env()
        assert config.sqlite_path == tmp_path / "m.db"
        assert config.lancedb_path == tmp_path / "vectors"
        assert config.summary_threshold == 20
        assert config.retention_days == 30
        assert config.vector_search_enabled is True

    def test_disabled(self, clean_env):
        clean_env.setenv("HIVE_MEMORY_ENABLED", "false")
        assert MemoryConfig.from_env().enabled is False

    def test_empty_lancedb_path_disables_vectors(self, clean_env):
        clean_env.setenv("HIVE_MEMORY_LANCEDB_PATH", "")
        assert MemoryConfig.from_env().lancedb_path is None

    @pytest.mark.parametrize("name,value", [
        ("SUMMARY_THRESHOLD", "0"),
        ("SUMMARY_THRESHOLD", "lots"),
        ("RETENTION_DAYS", "-1"),
        ("POOL_SIZE", "0"),
    ])
    def test_invalid_numbers(self, clean_env, name, value):
        clean_env.setenv(f"HIVE_MEMORY_{name}", value)
        with pytest.raises(ConfigError):
            MemoryConfig.from_env()

    def test_sqlite_path_must_not_be_directory(self, tmp_path):
        with pytest.raises(ConfigError):
            MemoryConfig(sqlite_path=tmp_path)

    def test_get_config_is_raw(self, clean_env):
        """Values come back as the environment holds them; from_env coerces."""
        clean_env.setenv("HIVE_MEMORY_SUMMARY_THRESHOLD", "7")
        assert get_config("summary_threshold") == "7"
        assert get_config("missing_key", "fallback") == "fallback"

    def test_api_key_lookup_order(self, clean_env):
        assert get_api_key() is None
        clean_env.setenv("GOOGLE_API_KEY", "g-key")
        assert get_api_key() == "g-key"
        clean_env.setenv("GEMINI_API_KEY", "gem-key")
        assert get_api_key() == "gem-key"


# ---------------------------------------------------------------------------
# Provider wiring
# ---------------------------------------------------------------------------

class TestBuildProvider:

    @pytest.mark.asyncio
    async def test_disabled_gives_in_memory(self, tmp_path):
        provider = await build_memory_provider(MemoryConfig(enabled=False, sqlite_path=tmp_path / "m.db"))
        assert isinstance(provider, InMemoryMemoryProvider)

    @pytest.mark.asyncio
    async def test_enabled_without_models(self, memory_config):
        """Storage-only engine: no embedder, reranker or summarizer."""
        provider = await build_memory_provider(memory_config)
        try:
            assert isinstance(provider, MemoryEngine)
            assert provider.embedder is None
            assert provider.vector_index is None
        finally:
            await provider.close()

    @pytest.mark.asyncio
    async def test_missing_key_is_config_error(self, clean_env, tmp_path):
        config = MemoryConfig(
            sqlite_path=tmp_path / "m.db", models_enabled=True, summary_model="gemini-2.5-flash",
        )
        with pytest.raises(ConfigError):
            await build_memory_provider(config)

    @pytest.mark.asyncio
    async def test_llm_override_fills_every_role(self, tmp_path):
        llm = FakeGenerator({"order": []})

        async def embed(texts, model=None):
            return [[1.0, 0.0] for _ in texts]

        llm.embed = embed
        config = MemoryConfig(
            sqlite_path=tmp_path / "m.db", lancedb_path=tmp_path / "vectors",
            models_enabled=True, embedding_model="e", summary_model="s", rerank_model="r",
        )
        provider = await build_memory_provider(config, llm=llm)
        try:
            assert provider.embedder is llm
            assert provider.searcher.reranker is llm
            assert provider.summarizer.summarizer is llm
        finally:
            await provider.close()


# ---------------------------------------------------------------------------
# Structured output and Gemini adapter
# ---------------------------------------------------------------------------

class TestParseStructured:

    def test_dict_passthrough(self):
        assert parse_structured({"a": 1}) == {"a": 1}

    def test_json_text(self):
        assert parse_structured('{"order": [1, 0]}') == {"order": [1, 0]}

    @pytest.mark.parametrize("output", ["not json{", "[1, 2]", None, 42])
    def test_rejects(self, output):
        with pytest.raises(SerializationError):
            parse_structured(output)


class _FakeModels:
    def __init__(self, fail_times=0):
        self.fail_times = fail_times
        self.calls = []

    async def embed_content(self, model, contents):
        self.calls.append((model, contents))
        if len(self.calls) <= self.fail_times:
            raise RuntimeError("quota")
        return SimpleNamespace(embeddings=[SimpleNamespace(values=[0.5, 0.25]) for _ in contents])

    async def generate_content(self, model, contents, config):
        self.calls.append((model, contents))
        return SimpleNamespace(text='{"summary": "ok"}')


def _gemini(models):
    provider = GeminiProvider(api_key="test-key", model="gen-model")
    provider._client = SimpleNamespace(aio=SimpleNamespace(models=models))
    return provider


class TestGeminiProvider:

    @pytest.fixture(autouse=True)
    def _no_sleep(self, monkeypatch):
        async def instant(_seconds):
            return None
        monkeypatch.setattr(providers_module, "asyncio", SimpleNamespace(sleep=instant))

    def test_satisfies_protocols(self):
        provider = GeminiProvider(api_key="k")
        assert isinstance(provider, Embedder)
        assert isinstance(provider, StructuredGenerator)

    @pytest.mark.asyncio
    async def test_embed(self):
        models = _FakeModels()
        vectors = await _gemini(models).embed(["a", "b"], "embed-model")
        assert vectors == [[0.5, 0.25], [0.5, 0.25]]
        assert models.calls == [("embed-model", ["a", "b"])]

    @pytest.mark.asyncio
    async def test_embed_retries_once(self):
        models = _FakeModels(fail_times=1)
        assert await _gemini(models).embed(["a"]) == [[0.5, 0.25]]
        assert len(models.calls) == 2

    @pytest.mark.asyncio
    async def test_embed_gives_up_after_retry(self):
        models = _FakeModels(fail_times=2)
        with pytest.raises(MemoryRuntimeError):
            await _gemini(models).embed(["a"])

    @pytest.mark.asyncio
    async def test_generate_parses_json(self):
        models = _FakeModels()
        result = await _gemini(models).generate("prompt", "system", {"type": "object"})
        assert result == {"summary": "ok"}
        assert models.calls == [("gen-model", "prompt")]


class TestErrors:

    def test_messages_are_prefixed(self):
        assert str(ConfigError("bad path")) == "configuration error: bad path"
        assert str(MemoryRuntimeError("db locked")) == "runtime error: db locked"
        assert str(SerializationError("bad json")) == "serialization error: bad json"

    def test_common_base(self):
        from hive_memory.errors import HiveMemoryError
        for cls in (ConfigError, MemoryRuntimeError, SerializationError):
            assert issubclass(cls, HiveMemoryError)
