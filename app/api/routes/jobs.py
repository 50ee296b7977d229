import logging
from typing import Any

from fastapi import APIRouter, Depends, status

from app.api.deps import get_admission_controller, get_idempotency_key, get_job_service
from app.api.models import CreateJobRequest
from app.core.security import get_current_tenant
from app.services.admission import AdmissionController
from app.services.jobs import JobService
from app.storage.tenants_repo import TenantRecord

router = APIRouter()
logger = logging.getLogger("app.api.routes.jobs")


@router.post("", status_code=status.HTTP_200_OK)
@router.post("/create", status_code=status.HTTP_200_OK)
async def create_job(  # noqa: B008
  request: CreateJobRequest,
  tenant: TenantRecord = Depends(get_current_tenant),  # noqa: B008
  idempotency_key: str | None = Depends(get_idempotency_key),  # noqa: B008
  controller: AdmissionController = Depends(get_admission_controller),  # noqa: B008
) -> dict[str, Any]:
  """Admit a content generation job against the tenant's monthly quota."""
  result = await controller.admit(tenant, request.to_request(), idempotency_key)
  return result.to_payload()


@router.get("/{job_id}/status")
async def get_job_status(  # noqa: B008
  job_id: str,
  tenant: TenantRecord = Depends(get_current_tenant),  # noqa: B008
  service: JobService = Depends(get_job_service),  # noqa: B008
) -> dict[str, Any]:
  return await service.get_status(tenant, job_id)


@router.get("/{job_id}/result")
async def get_job_result(  # noqa: B008
  job_id: str,
  tenant: TenantRecord = Depends(get_current_tenant),  # noqa: B008
  service: JobService = Depends(get_job_service),  # noqa: B008
) -> dict[str, Any]:
  """Return the job's result document, or null while it is still in flight."""
  return await service.get_result(tenant, job_id)
