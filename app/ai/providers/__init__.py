"""Provider implementations."""

from __future__ import annotations

from functools import lru_cache

from app.ai.backend import GenerationBackend
from app.ai.providers.openai_backend import OpenAIGenerationBackend
from app.config import Settings


@lru_cache(maxsize=1)
def get_generation_backend(settings: Settings) -> GenerationBackend:
  """Return the configured backend; a missing key yields a backend that always fails."""
  return OpenAIGenerationBackend.from_settings(settings)


__all__ = ["OpenAIGenerationBackend", "get_generation_backend"]
