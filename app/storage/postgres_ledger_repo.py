"""Postgres-backed repository for quota holds and the usage ledger."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import require_session_factory
from app.schema.ledger import HoldStatus, QuotaHold, UsageLedgerEntry
from app.storage.ledger_repo import HoldRecord, LedgerEntryRecord, LedgerRepository


async def stage_totals(session: AsyncSession, *, tenant_id: str, start: datetime, end: datetime) -> dict[str, int]:
  """Sum a tenant's ledger entries per stage inside a time window."""
  stmt = (
    select(UsageLedgerEntry.stage, func.coalesce(func.sum(UsageLedgerEntry.aej_used), 0))
    .where(UsageLedgerEntry.tenant_id == tenant_id, UsageLedgerEntry.created_at >= start, UsageLedgerEntry.created_at < end)
    .group_by(UsageLedgerEntry.stage)
  )
  rows = (await session.execute(stmt)).all()
  return {str(stage): int(total or 0) for stage, total in rows}


async def open_hold_total(session: AsyncSession, *, tenant_id: str) -> int:
  """Sum a tenant's holds that are still open."""
  stmt = select(func.coalesce(func.sum(QuotaHold.aej_estimated), 0)).where(QuotaHold.tenant_id == tenant_id, QuotaHold.status == HoldStatus.HELD.value)
  return int(await session.scalar(stmt) or 0)


class PostgresLedgerRepository(LedgerRepository):
  """Persist holds and ledger entries to Postgres."""

  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  async def record_usage(self, *, tenant_id: str, job_id: str, stage: str, aej_used: int, tokens_used: int | None = None, model_used: str | None = None) -> bool:
    async with self._session_factory() as session:
      stmt = (
        insert(UsageLedgerEntry)
        .values(tenant_id=tenant_id, job_id=job_id, stage=stage, aej_used=int(aej_used), tokens_used=tokens_used, model_used=model_used)
        .on_conflict_do_nothing(index_elements=["tenant_id", "job_id", "stage"])
        .returning(UsageLedgerEntry.id)
      )
      inserted = (await session.execute(stmt)).scalar_one_or_none()
      await session.commit()
      return inserted is not None

  async def sum_job_usage(self, job_id: str) -> int:
    async with self._session_factory() as session:
      total = await session.scalar(select(func.coalesce(func.sum(UsageLedgerEntry.aej_used), 0)).where(UsageLedgerEntry.job_id == job_id))
      return int(total or 0)

  async def get_hold(self, job_id: str) -> HoldRecord | None:
    async with self._session_factory() as session:
      row = await session.get(QuotaHold, job_id)
      if row is None:
        return None
      return self._hold_to_record(row)

  async def release_hold(self, job_id: str) -> bool:
    async with self._session_factory() as session:
      stmt = (
        update(QuotaHold)
        .where(QuotaHold.job_id == job_id, QuotaHold.status == HoldStatus.HELD.value)
        .values(status=HoldStatus.RELEASED.value, released_at=datetime.now(UTC))
        .returning(QuotaHold.job_id)
      )
      released = (await session.execute(stmt)).scalar_one_or_none()
      await session.commit()
      return released is not None

  async def reopen_hold(self, *, tenant_id: str, job_id: str, aej_estimated: int) -> None:
    async with self._session_factory() as session:
      stmt = insert(QuotaHold).values(job_id=job_id, tenant_id=tenant_id, aej_estimated=int(aej_estimated), status=HoldStatus.HELD.value)
      stmt = stmt.on_conflict_do_update(index_elements=[QuotaHold.job_id], set_={"status": HoldStatus.HELD.value, "aej_estimated": int(aej_estimated), "released_at": None})
      await session.execute(stmt)
      await session.commit()

  async def held_total(self, tenant_id: str) -> int:
    async with self._session_factory() as session:
      return await open_hold_total(session, tenant_id=tenant_id)

  async def usage_by_stage(self, tenant_id: str, *, start: datetime, end: datetime) -> dict[str, int]:
    async with self._session_factory() as session:
      return await stage_totals(session, tenant_id=tenant_id, start=start, end=end)

  async def list_holds(self, *, tenant_id: str | None = None, status: str | None = None, limit: int = 100) -> list[HoldRecord]:
    async with self._session_factory() as session:
      stmt = select(QuotaHold).order_by(QuotaHold.created_at.desc()).limit(limit)
      if tenant_id:
        stmt = stmt.where(QuotaHold.tenant_id == tenant_id)
      if status:
        stmt = stmt.where(QuotaHold.status == status)
      rows = (await session.execute(stmt)).scalars().all()
      return [self._hold_to_record(row) for row in rows]

  async def list_entries(self, *, tenant_id: str | None = None, job_id: str | None = None, limit: int = 200) -> list[LedgerEntryRecord]:
    async with self._session_factory() as session:
      stmt = select(UsageLedgerEntry).order_by(UsageLedgerEntry.created_at.desc(), UsageLedgerEntry.id.desc()).limit(limit)
      if tenant_id:
        stmt = stmt.where(UsageLedgerEntry.tenant_id == tenant_id)
      if job_id:
        stmt = stmt.where(UsageLedgerEntry.job_id == job_id)
      rows = (await session.execute(stmt)).scalars().all()
      return [
        LedgerEntryRecord(
          id=int(row.id),
          tenant_id=row.tenant_id,
          job_id=row.job_id,
          stage=row.stage,
          aej_used=int(row.aej_used),
          tokens_used=row.tokens_used,
          model_used=row.model_used,
          created_at=row.created_at,
        )
        for row in rows
      ]

  def _hold_to_record(self, row: QuotaHold) -> HoldRecord:
    return HoldRecord(job_id=row.job_id, tenant_id=row.tenant_id, aej_estimated=int(row.aej_estimated), status=row.status, created_at=row.created_at, released_at=row.released_at)
