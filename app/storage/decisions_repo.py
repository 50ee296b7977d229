"""Decision log storage."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.dialects.postgresql import insert

from app.core.database import require_session_factory
from app.schema.jobs import DecisionRecord


@dataclass(frozen=True)
class DecisionEntry:
  """Audit record of a stage decision about one content item."""

  tenant_id: str
  job_id: str
  content_source: str
  content_type: str
  content_id: str
  decision_type: str
  decision_reason: str


class DecisionsRepository(Protocol):
  async def insert_decision(self, entry: DecisionEntry) -> bool:
    """Insert the entry; an existing (tenant, job, decision_type) row wins and False is returned."""


class PostgresDecisionsRepository(DecisionsRepository):
  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  async def insert_decision(self, entry: DecisionEntry) -> bool:
    async with self._session_factory() as session:
      stmt = (
        insert(DecisionRecord)
        .values(
          tenant_id=entry.tenant_id,
          job_id=entry.job_id,
          content_source=entry.content_source,
          content_type=entry.content_type,
          content_id=entry.content_id,
          decision_type=entry.decision_type,
          decision_reason=entry.decision_reason,
        )
        .on_conflict_do_nothing(index_elements=["tenant_id", "job_id", "decision_type"])
        .returning(DecisionRecord.id)
      )
      inserted = (await session.execute(stmt)).scalar_one_or_none()
      await session.commit()
      return inserted is not None
