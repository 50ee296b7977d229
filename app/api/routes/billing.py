from typing import Any

from fastapi import APIRouter, Depends

from app.api.deps import get_ledger_repo
from app.config import Settings, get_settings
from app.core.security import get_current_tenant
from app.services.quota import billing_summary
from app.storage.ledger_repo import LedgerRepository
from app.storage.tenants_repo import TenantRecord

router = APIRouter()


@router.get("/billing/me")
async def get_billing(  # noqa: B008
  tenant: TenantRecord = Depends(get_current_tenant),  # noqa: B008
  ledger_repo: LedgerRepository = Depends(get_ledger_repo),  # noqa: B008
  settings: Settings = Depends(get_settings),  # noqa: B008
) -> dict[str, Any]:
  """Monthly usage, open holds and the per-family breakdown for the tenant."""
  return await billing_summary(tenant, ledger_repo, settings)


@router.get("/aej/balance")
async def get_balance(  # noqa: B008
  tenant: TenantRecord = Depends(get_current_tenant),  # noqa: B008
  ledger_repo: LedgerRepository = Depends(get_ledger_repo),  # noqa: B008
  settings: Settings = Depends(get_settings),  # noqa: B008
) -> dict[str, Any]:
  return await billing_summary(tenant, ledger_repo, settings, include_breakdown=False)
