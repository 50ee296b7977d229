"""Decision audit trail written by the worker."""

from __future__ import annotations

import logging
from typing import Any

from app.jobs.models import DEFAULT_CONTENT_SOURCE
from app.storage.decisions_repo import DecisionEntry, DecisionsRepository

logger = logging.getLogger(__name__)


def content_identity(item: dict[str, Any] | None) -> tuple[str, str, str]:
  """Return (content_source, content_type, content_id) from a validated item."""
  item = item or {}
  source = str(item.get("content_source") or DEFAULT_CONTENT_SOURCE)
  return source, str(item.get("entity_type") or ""), str(item.get("entity_id") or "")


class DecisionLog:
  """Writes one decision per (tenant, job, decision type); repeats are ignored."""

  def __init__(self, repo: DecisionsRepository) -> None:
    self._repo = repo

  async def record(self, *, tenant_id: str, job_id: str, item: dict[str, Any] | None, decision_type: str, reason: str) -> bool:
    source, content_type, content_id = content_identity(item)
    entry = DecisionEntry(tenant_id=tenant_id, job_id=job_id, content_source=source, content_type=content_type, content_id=content_id, decision_type=decision_type, decision_reason=reason)
    try:
      return await self._repo.insert_decision(entry)
    except Exception as exc:  # noqa: BLE001 - decisions are audit only
      logger.warning("Failed to record %s decision for job %s: %s", decision_type, job_id, exc)
      return False
