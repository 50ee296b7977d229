import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.deps import get_admission_store, get_degraded_mode_poller, get_event_log_dep, get_job_service, get_ledger_repo
from app.api.models import CreateTenantRequest, DegradedToggle, UpdateTenantRequest
from app.config import Settings, get_settings
from app.core.security import get_tenants_repo, require_admin
from app.services.degraded_mode import FORCE_DEGRADED_FLAG, DegradedModePoller
from app.services.health import dependency_health
from app.services.jobs import JobService, entry_to_payload, hold_to_payload
from app.services.tenants import create_tenant, reset_secret, tenant_to_payload, update_tenant
from app.storage.admission_repo import AdmissionStore
from app.storage.ledger_repo import LedgerRepository
from app.storage.tenants_repo import TenantsRepository
from app.telemetry.events import SYSTEM_JOB_ID, EventLog

router = APIRouter(dependencies=[Depends(require_admin)])
logger = logging.getLogger("app.api.routes.admin")


@router.get("/health/deps")
async def health_deps(settings: Settings = Depends(get_settings)) -> dict[str, Any]:  # noqa: B008
  return await dependency_health(settings)


@router.get("/jobs")
async def list_jobs(  # noqa: B008
  status_filter: str | None = Query(default=None, alias="status"),
  tenant_id: str | None = Query(default=None),
  mode: str | None = Query(default=None),
  limit: int = Query(default=50, ge=1, le=200),
  offset: int = Query(default=0, ge=0),
  service: JobService = Depends(get_job_service),  # noqa: B008
) -> dict[str, Any]:
  """List jobs across tenants, newest first."""
  return await service.list_jobs(limit=limit, offset=offset, status=status_filter, tenant_id=tenant_id, mode=mode)


@router.get("/jobs/{job_id}")
async def get_job(job_id: str, service: JobService = Depends(get_job_service)) -> dict[str, Any]:  # noqa: B008
  return await service.job_detail(job_id)


@router.get("/jobs/{job_id}/events")
async def get_job_events(job_id: str, limit: int = Query(default=200, ge=1, le=500), service: JobService = Depends(get_job_service)) -> dict[str, Any]:  # noqa: B008
  return await service.job_events(job_id, limit=limit)


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(job_id: str, service: JobService = Depends(get_job_service)) -> dict[str, Any]:  # noqa: B008
  """Cancel a queued or running job; terminal jobs are left untouched."""
  return await service.cancel_job(job_id)


@router.post("/jobs/{job_id}/retry")
async def retry_job(job_id: str, service: JobService = Depends(get_job_service)) -> dict[str, Any]:  # noqa: B008
  """Reset a finished job to queued and dispatch it again."""
  return await service.retry_job(job_id)


@router.get("/holds")
async def list_holds(  # noqa: B008
  tenant_id: str | None = Query(default=None),
  status_filter: str | None = Query(default=None, alias="status"),
  limit: int = Query(default=100, ge=1, le=500),
  ledger_repo: LedgerRepository = Depends(get_ledger_repo),  # noqa: B008
) -> dict[str, Any]:
  holds = await ledger_repo.list_holds(tenant_id=tenant_id, status=status_filter, limit=limit)
  return {"ok": True, "holds": [hold_to_payload(hold) for hold in holds]}


@router.get("/ledger")
async def list_ledger(  # noqa: B008
  tenant_id: str | None = Query(default=None),
  job_id: str | None = Query(default=None),
  limit: int = Query(default=200, ge=1, le=1000),
  ledger_repo: LedgerRepository = Depends(get_ledger_repo),  # noqa: B008
) -> dict[str, Any]:
  entries = await ledger_repo.list_entries(tenant_id=tenant_id, job_id=job_id, limit=limit)
  return {"ok": True, "entries": [entry_to_payload(entry) for entry in entries]}


@router.get("/degraded")
async def get_degraded(poller: DegradedModePoller = Depends(get_degraded_mode_poller)) -> dict[str, Any]:  # noqa: B008
  snapshot = await poller.refresh()
  return {"ok": True, "force_degraded": snapshot.force_degraded}


@router.post("/degraded")
async def set_degraded(  # noqa: B008
  payload: DegradedToggle,
  poller: DegradedModePoller = Depends(get_degraded_mode_poller),  # noqa: B008
  event_log: EventLog = Depends(get_event_log_dep),  # noqa: B008
) -> dict[str, Any]:
  """Toggle forced degraded mode; workers pick it up on their next refresh."""
  snapshot = await poller.set_force_degraded(payload.enabled)
  await event_log.record(job_id=SYSTEM_JOB_ID, tenant_id=None, event_type="flag", message=f"{FORCE_DEGRADED_FLAG} set to {payload.enabled}", meta={"key": FORCE_DEGRADED_FLAG, "enabled": payload.enabled})
  logger.warning("Admin set %s=%s", FORCE_DEGRADED_FLAG, payload.enabled)
  return {"ok": True, "force_degraded": snapshot.force_degraded}


@router.get("/idempotency/{tenant_id}/{key}")
async def get_idempotency(tenant_id: str, key: str, store: AdmissionStore = Depends(get_admission_store)) -> dict[str, Any]:  # noqa: B008
  entry = await store.get_idempotency_record(tenant_id, key)
  if entry is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="idempotency_key_not_found")
  return {"ok": True, "tenant_id": entry.tenant_id, "key": entry.idempotency_key, "job_id": entry.job_id, "created_at": entry.created_at.isoformat() if entry.created_at else None}


@router.get("/tenants")
async def list_tenants(limit: int = Query(default=200, ge=1, le=500), repo: TenantsRepository = Depends(get_tenants_repo)) -> dict[str, Any]:  # noqa: B008
  tenants = await repo.list_tenants(limit=limit)
  return {"ok": True, "tenants": [tenant_to_payload(tenant) for tenant in tenants]}


@router.post("/tenants", status_code=status.HTTP_201_CREATED)
async def register_tenant(payload: CreateTenantRequest, repo: TenantsRepository = Depends(get_tenants_repo)) -> dict[str, Any]:  # noqa: B008
  """Create a tenant; the signing secret is returned only in this response."""
  tenant = await create_tenant(repo, name=payload.name, plan_code=payload.plan_code, monthly_quota_aej=payload.monthly_quota_aej, aej_balance=payload.aej_balance, is_active=payload.is_active)
  return {"ok": True, "tenant": tenant_to_payload(tenant, include_secret=True)}


@router.patch("/tenants/{tenant_id}")
async def change_tenant(tenant_id: str, payload: UpdateTenantRequest, repo: TenantsRepository = Depends(get_tenants_repo)) -> dict[str, Any]:  # noqa: B008
  """Change plan, monthly quota, balance or active status of a tenant."""
  changes = payload.changes()
  if not changes:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="no_fields")
  tenant = await update_tenant(repo, tenant_id, changes)
  if tenant is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="tenant_not_found")
  logger.warning("Admin updated tenant %s: %s", tenant_id, changes)
  return {"ok": True, "tenant": tenant_to_payload(tenant)}


@router.post("/tenants/{tenant_id}/reset-secret")
async def rotate_tenant_secret(tenant_id: str, repo: TenantsRepository = Depends(get_tenants_repo)) -> dict[str, Any]:  # noqa: B008
  tenant = await reset_secret(repo, tenant_id)
  if tenant is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="tenant_not_found")
  return {"ok": True, "tenant": tenant_to_payload(tenant, include_secret=True)}
