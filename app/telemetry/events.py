"""Best-effort job timeline events."""

from __future__ import annotations

import logging
from typing import Any, Final

from app.storage.jobs_repo import JobsRepository

# Timeline key for events that do not belong to a job (flag toggles).
SYSTEM_JOB_ID: Final[str] = "system"

logger = logging.getLogger(__name__)


class EventLog:
  """Fire-and-forget writer for ``job_events``.

  ``record`` never raises: a failed write is logged at WARNING and reported as
  ``False`` so job outcomes do not depend on the timeline.
  """

  def __init__(self, jobs_repo: JobsRepository) -> None:
    self._jobs_repo = jobs_repo

  async def record(self, *, job_id: str, tenant_id: str | None, event_type: str, message: str | None = None, meta: dict[str, Any] | None = None) -> bool:
    try:
      await self._jobs_repo.append_event(job_id=job_id, tenant_id=tenant_id, event_type=event_type, message=message, meta=meta)
    except Exception as exc:  # noqa: BLE001 - avoid breaking job execution
      logger.warning("Failed to record %s event for job %s: %s", event_type, job_id, exc)
      return False
    return True
