"""Generation backend contract used by the worker."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from app.core.errors import ContentEngineError


class GenerationBackendError(ContentEngineError):
  """Any failure of the backend: missing credentials, transport, malformed output."""

  code = "backend_failure"


@dataclass(frozen=True)
class GenerationResult:
  """Structured content plus optional usage metadata."""

  content: dict[str, Any]
  usage: dict[str, int] | None = None
  model: str | None = None

  @property
  def total_tokens(self) -> int | None:
    if not self.usage:
      return None
    total = self.usage.get("total_tokens")
    return int(total) if total is not None else None


class GenerationBackend(Protocol):
  """Produces structured content for a prompt under a strict JSON schema.

  Implementations raise ``GenerationBackendError`` on failure and never retry;
  the worker decides what happens next.
  """

  @property
  def configured(self) -> bool:
    """True when the backend has the credentials it needs."""

  async def generate(self, prompt: str, schema: dict[str, Any]) -> GenerationResult:
    """Return content matching ``schema``."""
