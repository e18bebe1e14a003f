"""
PROVIDERS - Pluggable LLM Capabilities
======================================
The engine consumes three optional capabilities:

- Embedder:             embed(texts, model) -> one vector per text
- Reranker, Summarizer: generate(prompt, system, json_schema) -> JSON object

Each is typed as a Protocol; anything with the right coroutine satisfies it.
GeminiProvider implements all of them with google-genai.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Protocol, Union, runtime_checkable

import structlog

from .errors import MemoryRuntimeError, SerializationError

log = structlog.get_logger("hive_memory.providers")

DEFAULT_EMBEDDING_MODEL = "gemini-embedding-001"
DEFAULT_GENERATION_MODEL = "gemini-2.5-flash"

StructuredOutput = Union[Dict[str, Any], str, None]


@runtime_checkable
class Embedder(Protocol):
    async def embed(self, texts: List[str], model: Optional[str] = None) -> List[List[float]]:
        ...


@runtime_checkable
class StructuredGenerator(Protocol):
    async def generate(
        self, prompt: str, system: str, json_schema: Dict[str, Any]
    ) -> StructuredOutput:
        ...


# Both roles share the same call shape.
Reranker = StructuredGenerator
Summarizer = StructuredGenerator


def parse_structured(output: StructuredOutput) -> Dict[str, Any]:
    """Coerce a structured-output reply into a dict or raise SerializationError."""
    if isinstance(output, dict):
        return output
    if isinstance(output, (str, bytes)):
        try:
            value = json.loads(output)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise SerializationError(f"structured output is not JSON: {e}") from e
        if isinstance(value, dict):
            return value
        raise SerializationError(f"structured output is {type(value).__name__}, not an object")
    raise SerializationError(f"unsupported structured output type {type(output).__name__}")


class GeminiProvider:
    """google-genai backed Embedder + StructuredGenerator."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_GENERATION_MODEL,
        embedding_model: str = DEFAULT_EMBEDDING_MODEL,
    ):
        self.api_key = api_key
        self.model = model
        self.embedding_model = embedding_model
        self._client = None

    def _get_genai(self):
        """Lazy load google.genai Client."""
        if self._client is None:
            from google import genai

            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def embed(self, texts: List[str], model: Optional[str] = None) -> List[List[float]]:
        client = self._get_genai()
        model = model or self.embedding_model
        try:
            response = await client.aio.models.embed_content(model=model, contents=texts)
        except Exception as e:
            log.warning("embed_content_failed", model=model, error=str(e))
            # Retry once
            try:
                await asyncio.sleep(1)
                response = await client.aio.models.embed_content(model=model, contents=texts)
            except Exception as e2:
                log.error("embedding_failed", model=model, error=str(e2))
                raise MemoryRuntimeError(f"embedding failed: {e2}") from e2
        return [list(e.values) for e in response.embeddings]

    async def generate(
        self, prompt: str, system: str, json_schema: Dict[str, Any]
    ) -> Dict[str, Any]:
        from google.genai import types

        client = self._get_genai()
        config = types.GenerateContentConfig(
            system_instruction=system,
            response_mime_type="application/json",
            response_json_schema=json_schema,
        )
        try:
            response = await client.aio.models.generate_content(
                model=self.model, contents=prompt, config=config,
            )
        except Exception as e:
            log.error("generate_content_failed", model=self.model, error=str(e))
            raise MemoryRuntimeError(f"generation failed: {e}") from e
        return parse_structured(response.text or "")
