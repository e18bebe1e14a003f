"""
MEMORY CONFIG - Shared Configuration Management
===============================================
Single source of truth for environment variables and paths used by the
memory engine. Values come from the process environment, optionally
seeded from a .env file (HIVE_MEMORY_ENV_FILE, default ./.env).
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Any

from dotenv import load_dotenv
import structlog

from .errors import ConfigError

log = structlog.get_logger("hive_memory.config")

# === PATHS ===
DATA_ROOT = Path("./data")
DEFAULT_SQLITE_PATH = DATA_ROOT / "hive-memory.db"
DEFAULT_LANCEDB_PATH = DATA_ROOT / "lancedb"

# === DEFAULTS ===
DEFAULT_SUMMARY_THRESHOLD = 12
DEFAULT_POOL_SIZE = 4
ENV_PREFIX = "HIVE_MEMORY_"


def load_memory_env(env_file: Optional[Path] = None) -> dict:
    """
    Load environment variables from the memory engine .env file.

    Returns dict with loaded source for debugging.
    """
    loaded = {}

    env_path = env_file or Path(os.getenv("HIVE_MEMORY_ENV_FILE", ".env"))
    if env_path.exists():
        load_dotenv(env_path, override=False)
        loaded["env"] = str(env_path)

    log.debug("memory_env_loaded", sources=loaded)
    return loaded


# Checked in order; the first non-empty one wins.
GEMINI_KEY_VARS = ("GEMINI_API_KEY", "GOOGLE_API_KEY")


def get_api_key() -> Optional[str]:
    """Gemini credentials from the environment, or None."""
    for name in GEMINI_KEY_VARS:
        value = os.getenv(name)
        if value:
            return value
    return None


_env_loaded = False


def ensure_env():
    global _env_loaded
    if not _env_loaded:
        load_memory_env()
        _env_loaded = True


def get_config(name: str, default: Optional[Any] = None) -> Any:
    """Raw HIVE_MEMORY_<NAME> value; MemoryConfig does the type coercion."""
    return os.getenv(f"{ENV_PREFIX}{name.upper()}", default)


def _str_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _positive_int(name: str, value: Any, allow_none: bool = False) -> Optional[int]:
    if value is None:
        if allow_none:
            return None
        raise ConfigError(f"{name} is required")
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None
    if number < 1:
        raise ConfigError(f"{name} must be >= 1, got {number}")
    return number


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class MemoryConfig:
    """Everything the memory engine reads from its surroundings."""
    enabled: bool = True
    sqlite_path: Path = DEFAULT_SQLITE_PATH
    lancedb_path: Optional[Path] = DEFAULT_LANCEDB_PATH
    embedding_model: Optional[str] = None
    summary_model: Optional[str] = None
    rerank_model: Optional[str] = None
    summary_threshold: int = DEFAULT_SUMMARY_THRESHOLD
    retention_days: Optional[int] = None
    pool_size: int = DEFAULT_POOL_SIZE
    models_enabled: bool = False

    def __post_init__(self):
        self.sqlite_path = Path(self.sqlite_path)
        if self.lancedb_path is not None and str(self.lancedb_path).strip():
            self.lancedb_path = Path(self.lancedb_path)
        else:
            self.lancedb_path = None
        self.summary_threshold = _positive_int("summary_threshold", self.summary_threshold)
        self.retention_days = _positive_int("retention_days", self.retention_days, allow_none=True)
        self.pool_size = _positive_int("pool_size", self.pool_size)
        self.embedding_model = _str_or_none(self.embedding_model)
        self.summary_model = _str_or_none(self.summary_model)
        self.rerank_model = _str_or_none(self.rerank_model)
        if self.sqlite_path.exists() and self.sqlite_path.is_dir():
            raise ConfigError(f"sqlite_path points to a directory: {self.sqlite_path}")

    @classmethod
    def from_env(cls) -> "MemoryConfig":
        """Build a config from HIVE_MEMORY_* environment variables."""
        ensure_env()

        def env(name: str, default: Any = None) -> Any:
            return get_config(name, default)

        config = cls(
            enabled=_as_bool(env("ENABLED"), True),
            sqlite_path=Path(str(env("SQLITE_PATH", DEFAULT_SQLITE_PATH))),
            lancedb_path=env("LANCEDB_PATH", DEFAULT_LANCEDB_PATH),
            embedding_model=env("EMBEDDING_MODEL"),
            summary_model=env("SUMMARY_MODEL"),
            rerank_model=env("RERANK_MODEL"),
            summary_threshold=env("SUMMARY_THRESHOLD", DEFAULT_SUMMARY_THRESHOLD),
            retention_days=env("RETENTION_DAYS"),
            pool_size=env("POOL_SIZE", DEFAULT_POOL_SIZE),
            models_enabled=_as_bool(env("ENABLE_MODELS"), False),
        )
        log.debug(
            "memory_config_loaded",
            enabled=config.enabled,
            sqlite_path=str(config.sqlite_path),
            models_enabled=config.models_enabled,
        )
        return config

    @property
    def vector_search_enabled(self) -> bool:
        return bool(self.models_enabled and self.embedding_model and self.lancedb_path)


async def build_memory_provider(config: Optional[MemoryConfig] = None, llm=None):
    """
    Wire a memory provider from configuration.

    Disabled memory gets the volatile InMemoryMemoryProvider. Otherwise a
    MemoryEngine is opened; the embedder and vector index are attached only
    when models are enabled and an embedding model is named. Reranker and
    summarizer each need their own model name. `llm` overrides the default
    Gemini-backed capability provider (used for all three roles).
    """
    from .engine import MemoryEngine
    from .in_memory import InMemoryMemoryProvider

    config = config or MemoryConfig.from_env()
    if not config.enabled:
        log.info("memory_disabled", provider="in_memory")
        return InMemoryMemoryProvider()

    def make_provider(model: str, role: str):
        if llm is not None:
            return llm
        from .providers import GeminiProvider

        api_key = get_api_key()
        if not api_key:
            raise ConfigError(f"Missing Gemini API key for memory {role}")
        return GeminiProvider(api_key=api_key, model=model)

    embedder = None
    reranker = None
    summarizer = None
    if config.models_enabled:
        if config.vector_search_enabled:
            embedder = make_provider(config.embedding_model, "embedder")
        if config.rerank_model:
            reranker = make_provider(config.rerank_model, "reranker")
        if config.summary_model:
            summarizer = make_provider(config.summary_model, "summarizer")

    return await MemoryEngine.open(
        config,
        embedder=embedder,
        reranker=reranker,
        summarizer=summarizer,
    )
