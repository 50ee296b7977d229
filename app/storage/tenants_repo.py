"""Tenant directory storage."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import select, update

from app.core.database import require_session_factory
from app.schema.tenants import Tenant


@dataclass(frozen=True)
class TenantRecord:
  """Authenticated tenant as seen by services."""

  id: str
  name: str
  api_key: str
  api_secret: str
  plan_code: str | None = None
  monthly_quota_aej: int | None = None
  aej_balance: int = 0
  is_active: bool = True
  created_at: datetime | None = None


class TenantsRepository(Protocol):
  async def get_by_api_key(self, api_key: str) -> TenantRecord | None:
    """Resolve a tenant from its public api key."""

  async def get_tenant(self, tenant_id: str) -> TenantRecord | None:
    """Fetch a tenant by id."""

  async def list_tenants(self, *, limit: int = 500) -> list[TenantRecord]:
    """Return tenants, newest first."""

  async def create_tenant(self, record: TenantRecord) -> TenantRecord:
    """Persist a new tenant."""

  async def update_secret(self, tenant_id: str, api_secret: str) -> TenantRecord | None:
    """Replace a tenant's signing secret."""

  async def update_tenant(self, tenant_id: str, changes: Mapping[str, Any]) -> TenantRecord | None:
    """Apply column changes (plan, quota, balance, status) to a tenant."""


def tenant_to_record(row: Tenant) -> TenantRecord:
  return TenantRecord(
    id=row.id,
    name=row.name,
    api_key=row.api_key,
    api_secret=row.api_secret,
    plan_code=row.plan_code,
    monthly_quota_aej=int(row.monthly_quota_aej) if row.monthly_quota_aej is not None else None,
    aej_balance=int(row.aej_balance or 0),
    is_active=bool(row.is_active),
    created_at=row.created_at,
  )


class PostgresTenantsRepository(TenantsRepository):
  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  async def get_by_api_key(self, api_key: str) -> TenantRecord | None:
    async with self._session_factory() as session:
      row = (await session.execute(select(Tenant).where(Tenant.api_key == api_key).limit(1))).scalar_one_or_none()
      return tenant_to_record(row) if row is not None else None

  async def get_tenant(self, tenant_id: str) -> TenantRecord | None:
    async with self._session_factory() as session:
      row = await session.get(Tenant, tenant_id)
      return tenant_to_record(row) if row is not None else None

  async def list_tenants(self, *, limit: int = 500) -> list[TenantRecord]:
    async with self._session_factory() as session:
      rows = (await session.execute(select(Tenant).order_by(Tenant.created_at.desc()).limit(limit))).scalars().all()
      return [tenant_to_record(row) for row in rows]

  async def create_tenant(self, record: TenantRecord) -> TenantRecord:
    async with self._session_factory() as session:
      row = Tenant(
        id=record.id,
        name=record.name,
        api_key=record.api_key,
        api_secret=record.api_secret,
        plan_code=record.plan_code,
        monthly_quota_aej=record.monthly_quota_aej,
        aej_balance=int(record.aej_balance),
        is_active=record.is_active,
      )
      session.add(row)
      await session.commit()
      await session.refresh(row)
      return tenant_to_record(row)

  async def update_secret(self, tenant_id: str, api_secret: str) -> TenantRecord | None:
    async with self._session_factory() as session:
      row = (await session.execute(update(Tenant).where(Tenant.id == tenant_id).values(api_secret=api_secret).returning(Tenant))).scalar_one_or_none()
      await session.commit()
      return tenant_to_record(row) if row is not None else None

  async def update_tenant(self, tenant_id: str, changes: Mapping[str, Any]) -> TenantRecord | None:
    async with self._session_factory() as session:
      if not changes:
        row = await session.get(Tenant, tenant_id)
        return tenant_to_record(row) if row is not None else None
      row = (await session.execute(update(Tenant).where(Tenant.id == tenant_id).values(**changes).returning(Tenant))).scalar_one_or_none()
      await session.commit()
      return tenant_to_record(row) if row is not None else None
