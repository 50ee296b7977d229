"""Tenant directory administration."""

from __future__ import annotations

import logging
from typing import Any, Final

from app.storage.tenants_repo import TenantRecord, TenantsRepository
from app.utils.ids import generate_api_key, generate_api_secret, generate_tenant_id

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS: Final[frozenset[str]] = frozenset({"plan_code", "monthly_quota_aej", "aej_balance", "is_active"})


def tenant_to_payload(record: TenantRecord, *, include_secret: bool = False) -> dict[str, Any]:
  """Admin view of a tenant; the signing secret is only shown on issue."""
  payload: dict[str, Any] = {
    "id": record.id,
    "name": record.name,
    "api_key": record.api_key,
    "plan_code": record.plan_code,
    "monthly_quota_aej": record.monthly_quota_aej,
    "aej_balance": record.aej_balance,
    "is_active": record.is_active,
    "created_at": record.created_at.isoformat() if record.created_at else None,
  }
  if include_secret:
    payload["api_secret"] = record.api_secret
  return payload


async def create_tenant(repo: TenantsRepository, *, name: str, plan_code: str | None, monthly_quota_aej: int | None, aej_balance: int = 0, is_active: bool = True) -> TenantRecord:
  record = TenantRecord(
    id=generate_tenant_id(),
    name=name.strip(),
    api_key=generate_api_key(),
    api_secret=generate_api_secret(),
    plan_code=plan_code,
    monthly_quota_aej=monthly_quota_aej,
    aej_balance=aej_balance,
    is_active=is_active,
  )
  created = await repo.create_tenant(record)
  logger.info("Created tenant %s plan=%s", created.id, created.plan_code)
  return created


async def reset_secret(repo: TenantsRepository, tenant_id: str) -> TenantRecord | None:
  updated = await repo.update_secret(tenant_id, generate_api_secret())
  if updated is not None:
    logger.info("Rotated signing secret for tenant %s", tenant_id)
  return updated


async def update_tenant(repo: TenantsRepository, tenant_id: str, changes: dict[str, Any]) -> TenantRecord | None:
  """Change plan, quota, balance or status; quota changes apply from the tenant's next admission."""
  unknown = set(changes) - UPDATABLE_FIELDS
  if unknown:
    raise ValueError(f"not updatable: {', '.join(sorted(unknown))}")
  updated = await repo.update_tenant(tenant_id, changes)
  if updated is not None:
    logger.info("Updated tenant %s fields=%s", tenant_id, ",".join(sorted(changes)) or "none")
  return updated
