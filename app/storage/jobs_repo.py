"""Storage interfaces for content generation jobs."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any, Protocol

from app.jobs.models import JobEventRecord, JobRecord, JobStatus


class JobsRepository(Protocol):
  """Repository contract for job persistence.

  Status-moving writes are guarded: they apply only while the job is in one of
  ``from_statuses`` and return ``None`` otherwise, so a stale writer can never
  overwrite a terminal state.
  """

  async def get_job(self, job_id: str) -> JobRecord | None:
    """Fetch a job by identifier."""

  async def transition_job(
    self,
    job_id: str,
    *,
    from_statuses: Iterable[str],
    status: JobStatus,
    progress: int | None = None,
    result_json: dict[str, Any] | None = None,
    error_text: str | None = None,
    started_at: datetime | None = None,
    finished_at: datetime | None = None,
  ) -> JobRecord | None:
    """Move a job to ``status`` when its current status is allowed."""

  async def reset_for_retry(self, job_id: str, *, from_statuses: Iterable[str]) -> JobRecord | None:
    """Return a job to ``queued`` and clear result, error, progress, finish time and final cost."""

  async def update_progress(self, job_id: str, progress: int) -> None:
    """Record progress for a running job."""

  async def set_final_cost(self, job_id: str, aej_final: int) -> None:
    """Persist the settled cost of a job."""

  async def list_jobs(self, *, limit: int = 50, offset: int = 0, status: str | None = None, tenant_id: str | None = None, mode: str | None = None) -> tuple[list[JobRecord], int]:
    """Return a page of jobs, newest first, and the filtered total."""

  async def count_jobs(self, *, status: str) -> int:
    """Count jobs in a status."""

  async def append_event(self, *, job_id: str, tenant_id: str | None, event_type: str, message: str | None = None, meta: dict[str, Any] | None = None) -> None:
    """Append a timeline event."""

  async def list_events(self, *, job_id: str, limit: int = 200) -> list[JobEventRecord]:
    """Return a job's events, oldest first."""
