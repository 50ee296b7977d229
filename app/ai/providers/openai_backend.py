"""OpenAI generation backend using the openai SDK."""

from __future__ import annotations

import json
import logging
from typing import Any, Final

from openai import APIStatusError, AsyncOpenAI, OpenAIError

from app.ai.backend import GenerationBackend, GenerationBackendError, GenerationResult
from app.ai.schemas import missing_required_keys
from app.config import Settings

_SCHEMA_NAME: Final[str] = "content_generation"

logger = logging.getLogger(__name__)


def _schema_name(schema: dict[str, Any]) -> str:
  mode = ((schema.get("properties") or {}).get("mode") or {}).get("const")
  return f"{_SCHEMA_NAME}_{mode}" if mode else _SCHEMA_NAME


class OpenAIGenerationBackend(GenerationBackend):
  """Chat completions with a strict ``json_schema`` response format."""

  def __init__(self, *, api_key: str | None, model: str, base_url: str | None = None, timeout_seconds: float = 60.0, client: AsyncOpenAI | None = None) -> None:
    self._api_key = api_key
    self._model = model
    self._client = client
    if self._client is None and api_key:
      self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=float(timeout_seconds), max_retries=0)

  @classmethod
  def from_settings(cls, settings: Settings) -> OpenAIGenerationBackend:
    return cls(api_key=settings.openai_api_key, model=settings.openai_model, base_url=settings.openai_base_url, timeout_seconds=settings.openai_timeout_seconds)

  @property
  def configured(self) -> bool:
    return self._client is not None

  @property
  def model(self) -> str:
    return self._model

  async def generate(self, prompt: str, schema: dict[str, Any]) -> GenerationResult:
    if self._client is None:
      raise GenerationBackendError("OPENAI_API_KEY_MISSING")

    try:
      response = await self._client.chat.completions.create(
        model=self._model,
        messages=[{"role": "user", "content": prompt}],
        response_format={"type": "json_schema", "json_schema": {"name": _schema_name(schema), "schema": schema, "strict": True}},
      )
    except APIStatusError as exc:
      raise GenerationBackendError(f"openai_http_{exc.status_code}") from exc
    except OpenAIError as exc:
      raise GenerationBackendError(str(exc) or type(exc).__name__) from exc

    content = response.choices[0].message.content if response.choices else None
    if not content:
      raise GenerationBackendError("OPENAI_NO_JSON_OUTPUT")
    try:
      parsed = json.loads(content)
    except json.JSONDecodeError as exc:
      raise GenerationBackendError("OPENAI_INVALID_JSON") from exc
    if not isinstance(parsed, dict):
      raise GenerationBackendError("OPENAI_NO_JSON_OUTPUT")

    missing = missing_required_keys(parsed, schema)
    if missing:
      logger.warning("OpenAI output is missing required keys: %s", ", ".join(missing))
      raise GenerationBackendError("OPENAI_SCHEMA_MISMATCH")

    usage = None
    if response.usage:
      usage = {"prompt_tokens": response.usage.prompt_tokens, "completion_tokens": response.usage.completion_tokens, "total_tokens": response.usage.total_tokens}
    return GenerationResult(content=parsed, usage=usage, model=getattr(response, "model", None) or self._model)
