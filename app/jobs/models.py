"""Domain models for asynchronous content generation jobs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Final, Literal

JobStatus = Literal["queued", "running", "done", "error", "canceled"]
GenerationMode = Literal["quick_boost", "full_content", "ecom_catalog"]

TERMINAL_STATUSES: Final[frozenset[str]] = frozenset({"done", "error", "canceled"})
# Worker-owned transitions may only leave these states.
ACTIVE_STATUSES: Final[tuple[str, ...]] = ("queued", "running")
RETRYABLE_STATUSES: Final[tuple[str, ...]] = ("queued", "done", "error", "canceled")

GENERATION_MODES: Final[tuple[str, ...]] = ("quick_boost", "full_content", "ecom_catalog")
PER_ITEM_COST: Final[dict[str, int]] = {"quick_boost": 8, "full_content": 12, "ecom_catalog": 12}

# Stage costs charged by the worker.
ANALYSE_COST: Final[int] = 1
DECISION_COST: Final[int] = 1
BACKEND_ITEM_COST: Final[int] = 5
FALLBACK_ITEM_COST: Final[int] = 1
APPLICATION_COST: Final[int] = 1

PROGRESS_RUNNING: Final[int] = 10
PROGRESS_DECIDED: Final[int] = 30
PROGRESS_FINISHED: Final[int] = 100

REVIEW_STATUS: Final[str] = "ready_to_review"
DEFAULT_CONTENT_SOURCE: Final[str] = "cms"


def normalize_mode(raw: str | None) -> str:
  """Map legacy and empty mode values onto a supported generation mode."""
  mode = str(raw or "").strip().lower()
  if mode == "":
    return "quick_boost"
  if mode == "full":
    return "full_content"
  return mode


def estimate_cost(mode: str, item_count: int) -> int:
  """Return the admission estimate for a job; never below one unit."""
  per_item = PER_ITEM_COST.get(normalize_mode(mode), PER_ITEM_COST["quick_boost"])
  return max(1, per_item * max(0, int(item_count)))


@dataclass(frozen=True)
class JobRecord:
  """Represents a tenant content generation job."""

  job_id: str
  tenant_id: str
  mode: str
  status: JobStatus
  request: dict[str, Any]
  aej_estimated: int
  progress: int = 0
  result_json: dict[str, Any] | None = None
  aej_final: int | None = None
  error_text: str | None = None
  idempotency_key: str | None = None
  created_at: datetime | None = None
  updated_at: datetime | None = None
  started_at: datetime | None = None
  finished_at: datetime | None = None

  @property
  def items(self) -> list[dict[str, Any]]:
    items = self.request.get("items") if isinstance(self.request, dict) else None
    return list(items) if isinstance(items, list) else []

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class JobEventRecord:
  """One entry of a job's best-effort timeline."""

  id: int
  job_id: str
  tenant_id: str | None
  event_type: str
  message: str | None
  meta: dict[str, Any] | None
  created_at: datetime | None
