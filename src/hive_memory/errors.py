"""
ERRORS - Memory Engine Failure Taxonomy
=======================================
Three families, matching how callers react to them:

- ConfigError: bad paths, bad environment values, missing credentials.
- MemoryRuntimeError: storage, vector index or LLM call failed.
- SerializationError: a structured payload could not be encoded/decoded.
"""


class HiveMemoryError(Exception):
    """Base class for every error raised by hive_memory."""


class ConfigError(HiveMemoryError):
    """Invalid or incomplete configuration."""

    def __str__(self) -> str:
        return f"configuration error: {super().__str__()}"


class MemoryRuntimeError(HiveMemoryError):
    """A storage, vector index or model call failed."""

    def __str__(self) -> str:
        return f"runtime error: {super().__str__()}"


class SerializationError(HiveMemoryError):
    """JSON or vector payload could not be encoded or decoded."""

    def __str__(self) -> str:
        return f"serialization error: {super().__str__()}"
