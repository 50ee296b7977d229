"""Transactional unit used by admission: tenant lock, idempotency, quota reads and inserts."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import require_session_factory
from app.jobs.models import JobRecord
from app.schema.jobs import Job
from app.schema.ledger import HoldStatus, IdempotencyRecord, QuotaHold
from app.schema.tenants import Tenant
from app.storage.postgres_ledger_repo import open_hold_total, stage_totals
from app.storage.tenants_repo import TenantRecord, tenant_to_record


@dataclass(frozen=True)
class IdempotencyEntry:
  tenant_id: str
  idempotency_key: str
  job_id: str
  created_at: datetime | None = None


class DuplicateIdempotencyKey(RuntimeError):
  """Raised when another writer already recorded the same (tenant, key)."""


class UnknownTenantError(LookupError):
  """Raised when the tenant row to lock does not exist."""


class AdmissionUnit(Protocol):
  """Operations available while the tenant is locked.

  Everything written through the unit commits together when the ``locked``
  context exits cleanly and is rolled back when it raises.
  """

  tenant: TenantRecord

  async def find_idempotent_job(self, idempotency_key: str) -> str | None:
    """Return the job id recorded for the key, if any."""

  async def consumed_between(self, start: datetime, end: datetime) -> int:
    """Sum of the tenant's ledger entries in the window."""

  async def held_total(self) -> int:
    """Sum of the tenant's open holds."""

  async def create_job(self, job: JobRecord) -> None:
    """Insert job, hold and (when the job carries one) idempotency record."""


class AdmissionStore(Protocol):
  def locked(self, tenant_id: str) -> AsyncIterator[AdmissionUnit]:
    """Async context manager holding the tenant's admission lock."""

  async def find_idempotent_job(self, tenant_id: str, idempotency_key: str) -> str | None:
    """Lock-free lookup used after a lost idempotency race."""

  async def get_idempotency_record(self, tenant_id: str, idempotency_key: str) -> IdempotencyEntry | None:
    """Fetch the full idempotency record."""


class _PostgresAdmissionUnit:
  def __init__(self, session: AsyncSession, tenant: TenantRecord) -> None:
    self._session = session
    self.tenant = tenant

  async def find_idempotent_job(self, idempotency_key: str) -> str | None:
    stmt = select(IdempotencyRecord.job_id).where(IdempotencyRecord.tenant_id == self.tenant.id, IdempotencyRecord.idem_key == idempotency_key)
    return (await self._session.execute(stmt)).scalar_one_or_none()

  async def consumed_between(self, start: datetime, end: datetime) -> int:
    totals = await stage_totals(self._session, tenant_id=self.tenant.id, start=start, end=end)
    return sum(totals.values())

  async def held_total(self) -> int:
    return await open_hold_total(self._session, tenant_id=self.tenant.id)

  async def create_job(self, job: JobRecord) -> None:
    self._session.add(
      Job(
        job_id=job.job_id,
        tenant_id=job.tenant_id,
        mode=job.mode,
        status=job.status,
        progress=job.progress,
        request_json=job.request,
        aej_estimated=job.aej_estimated,
        idempotency_key=job.idempotency_key,
      )
    )
    # Flush the job first so the dependent rows satisfy their foreign keys.
    await self._session.flush()
    self._session.add(QuotaHold(job_id=job.job_id, tenant_id=job.tenant_id, aej_estimated=job.aej_estimated, status=HoldStatus.HELD.value))
    if job.idempotency_key:
      self._session.add(IdempotencyRecord(tenant_id=job.tenant_id, idem_key=job.idempotency_key, job_id=job.job_id))
    try:
      await self._session.flush()
    except IntegrityError as exc:
      raise DuplicateIdempotencyKey(job.idempotency_key or "") from exc


class PostgresAdmissionStore:
  """Serializes admissions per tenant with ``SELECT ... FOR UPDATE`` on the tenant row."""

  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  @asynccontextmanager
  async def locked(self, tenant_id: str) -> AsyncIterator[AdmissionUnit]:
    async with self._session_factory() as session:
      async with session.begin():
        row = (await session.execute(select(Tenant).where(Tenant.id == tenant_id).with_for_update())).scalar_one_or_none()
        if row is None:
          raise UnknownTenantError(tenant_id)
        yield _PostgresAdmissionUnit(session, tenant_to_record(row))

  async def find_idempotent_job(self, tenant_id: str, idempotency_key: str) -> str | None:
    async with self._session_factory() as session:
      stmt = select(IdempotencyRecord.job_id).where(IdempotencyRecord.tenant_id == tenant_id, IdempotencyRecord.idem_key == idempotency_key)
      return (await session.execute(stmt)).scalar_one_or_none()

  async def get_idempotency_record(self, tenant_id: str, idempotency_key: str) -> IdempotencyEntry | None:
    async with self._session_factory() as session:
      row = await session.get(IdempotencyRecord, (tenant_id, idempotency_key))
      if row is None:
        return None
      return IdempotencyEntry(tenant_id=row.tenant_id, idempotency_key=row.idem_key, job_id=row.job_id, created_at=row.created_at)
