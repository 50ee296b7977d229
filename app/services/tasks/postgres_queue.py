"""Durable at-least-once dispatch queue stored in Postgres."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError

from app.core.database import require_session_factory
from app.core.errors import DispatchError
from app.schema.runtime import DispatchQueueEntry
from app.services.tasks.interface import TaskEnqueuer

logger = logging.getLogger(__name__)


def compute_backoff_ms(attempts: int, base_ms: int) -> int:
  """Exponential backoff after the ``attempts``-th failed delivery."""
  return int(base_ms) * (2 ** max(0, int(attempts) - 1))


@dataclass(frozen=True)
class QueueDelivery:
  """A claimed queue entry; ``lease_token`` proves ownership for ack/nack."""

  job_id: str
  attempts: int
  max_attempts: int
  lease_token: str


class PostgresQueueEnqueuer(TaskEnqueuer):
  """Producer side: one entry per job id."""

  def __init__(self, *, max_attempts: int = 3) -> None:
    self._max_attempts = int(max_attempts)

  async def enqueue(self, job_id: str, payload: dict) -> None:
    _ = payload
    now = datetime.now(UTC)
    try:
      session_factory = require_session_factory()
      async with session_factory() as session:
        stmt = insert(DispatchQueueEntry).values(job_id=job_id, status="pending", attempts=0, max_attempts=self._max_attempts, available_at=now)
        stmt = stmt.on_conflict_do_update(
          index_elements=[DispatchQueueEntry.job_id],
          set_={"status": "pending", "attempts": 0, "max_attempts": self._max_attempts, "available_at": now, "lease_token": None, "locked_at": None, "last_error": None, "updated_at": now},
        )
        await session.execute(stmt)
        await session.commit()
    except (SQLAlchemyError, RuntimeError) as exc:
      raise DispatchError(str(exc) or "dispatch_queue_unavailable") from exc
    logger.info("Enqueued job %s", job_id)

  async def remove(self, job_id: str) -> bool:
    session_factory = require_session_factory()
    async with session_factory() as session:
      removed = (await session.execute(delete(DispatchQueueEntry).where(DispatchQueueEntry.job_id == job_id, DispatchQueueEntry.status == "pending").returning(DispatchQueueEntry.job_id))).scalar_one_or_none()
      await session.commit()
      return removed is not None


class PostgresDispatchQueue:
  """Consumer side: claim, ack and nack with lease tokens."""

  def __init__(self, *, backoff_ms: int = 2000, lease_seconds: int = 900) -> None:
    self._backoff_ms = int(backoff_ms)
    self._lease_seconds = int(lease_seconds)
    self._session_factory = require_session_factory()

  async def claim(self) -> QueueDelivery | None:
    now = datetime.now(UTC)
    lease_expired = now - timedelta(seconds=self._lease_seconds)
    async with self._session_factory() as session:
      async with session.begin():
        stmt = (
          select(DispatchQueueEntry)
          .where(
            or_(
              and_(DispatchQueueEntry.status == "pending", DispatchQueueEntry.available_at <= now),
              and_(DispatchQueueEntry.status == "inflight", DispatchQueueEntry.locked_at < lease_expired),
            )
          )
          .order_by(DispatchQueueEntry.available_at.asc())
          .limit(1)
          .with_for_update(skip_locked=True)
        )
        row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
          return None
        token = secrets.token_hex(16)
        row.status = "inflight"
        row.attempts = int(row.attempts) + 1
        row.lease_token = token
        row.locked_at = now
        row.updated_at = now
        return QueueDelivery(job_id=row.job_id, attempts=int(row.attempts), max_attempts=int(row.max_attempts), lease_token=token)

  async def ack(self, delivery: QueueDelivery) -> bool:
    async with self._session_factory() as session:
      stmt = delete(DispatchQueueEntry).where(DispatchQueueEntry.job_id == delivery.job_id, DispatchQueueEntry.lease_token == delivery.lease_token).returning(DispatchQueueEntry.job_id)
      removed = (await session.execute(stmt)).scalar_one_or_none()
      await session.commit()
      return removed is not None

  async def nack(self, delivery: QueueDelivery, error: str) -> str:
    """Reschedule with backoff or mark failed; returns the resulting status."""
    now = datetime.now(UTC)
    exhausted = delivery.attempts >= delivery.max_attempts
    values: dict = {"lease_token": None, "locked_at": None, "last_error": error[:2000], "updated_at": now}
    if exhausted:
      values["status"] = "failed"
    else:
      values["status"] = "pending"
      values["available_at"] = now + timedelta(milliseconds=compute_backoff_ms(delivery.attempts, self._backoff_ms))
    async with self._session_factory() as session:
      await session.execute(update(DispatchQueueEntry).where(DispatchQueueEntry.job_id == delivery.job_id, DispatchQueueEntry.lease_token == delivery.lease_token).values(**values))
      await session.commit()
    return str(values["status"])

  async def depth(self) -> int:
    async with self._session_factory() as session:
      total = await session.scalar(select(func.count()).select_from(DispatchQueueEntry).where(DispatchQueueEntry.status.in_(("pending", "inflight"))))
      return int(total or 0)
