import logging
from datetime import UTC, datetime
from typing import Any

from app.config import Settings
from app.core.errors import DispatchError, JobNotFoundError, JobStateConflictError
from app.jobs.models import ACTIVE_STATUSES, RETRYABLE_STATUSES, JobEventRecord, JobRecord
from app.jobs.worker import JobProcessor
from app.services.tasks.interface import TaskEnqueuer
from app.storage.jobs_repo import JobsRepository
from app.storage.ledger_repo import HoldRecord, LedgerEntryRecord, LedgerRepository
from app.storage.tenants_repo import TenantRecord
from app.telemetry.events import EventLog

logger = logging.getLogger(__name__)


def _iso(value: datetime | None) -> str | None:
  if value is None:
    return None
  return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


_SECRET_MARKERS = ("secret", "token", "password", "api_key", "apikey", "authorization")


def mask_secrets(value: Any) -> Any:
  """Replace values under secret-looking keys; the stored request is untouched."""
  if isinstance(value, dict):
    return {key: "***" if any(marker in str(key).lower() for marker in _SECRET_MARKERS) else mask_secrets(item) for key, item in value.items()}
  if isinstance(value, list):
    return [mask_secrets(item) for item in value]
  return value


def job_to_payload(record: JobRecord) -> dict[str, Any]:
  """Full admin view of a job."""
  return {
    "job_id": record.job_id,
    "tenant_id": record.tenant_id,
    "mode": record.mode,
    "status": record.status,
    "progress": record.progress,
    "request": record.request,
    "result": record.result_json,
    "aej_estimated": record.aej_estimated,
    "aej_final": record.aej_final,
    "error": record.error_text,
    "idempotency_key": record.idempotency_key,
    "created_at": _iso(record.created_at),
    "updated_at": _iso(record.updated_at),
    "started_at": _iso(record.started_at),
    "finished_at": _iso(record.finished_at),
  }


def hold_to_payload(hold: HoldRecord) -> dict[str, Any]:
  return {"job_id": hold.job_id, "tenant_id": hold.tenant_id, "aej_estimated": hold.aej_estimated, "status": hold.status, "created_at": _iso(hold.created_at), "released_at": _iso(hold.released_at)}


def entry_to_payload(entry: LedgerEntryRecord) -> dict[str, Any]:
  return {
    "id": entry.id,
    "tenant_id": entry.tenant_id,
    "job_id": entry.job_id,
    "stage": entry.stage,
    "aej_used": entry.aej_used,
    "tokens_used": entry.tokens_used,
    "model_used": entry.model_used,
    "created_at": _iso(entry.created_at),
  }


def event_to_payload(event: JobEventRecord) -> dict[str, Any]:
  return {"id": event.id, "job_id": event.job_id, "event_type": event.event_type, "message": event.message, "meta": event.meta, "created_at": _iso(event.created_at)}


class JobService:
  """Client queries and the admin-side external transitions (cancel, retry)."""

  def __init__(self, *, jobs_repo: JobsRepository, ledger_repo: LedgerRepository, enqueuer: TaskEnqueuer, event_log: EventLog, settings: Settings) -> None:
    self._jobs_repo = jobs_repo
    self._ledger_repo = ledger_repo
    self._enqueuer = enqueuer
    self._event_log = event_log
    self._settings = settings

  async def _get_job(self, job_id: str) -> JobRecord:
    record = await self._jobs_repo.get_job(job_id)
    if record is None:
      raise JobNotFoundError(job_id)
    return record

  async def _get_owned_job(self, tenant: TenantRecord, job_id: str) -> JobRecord:
    record = await self._jobs_repo.get_job(job_id)
    # Another tenant's job is indistinguishable from a missing one.
    if record is None or record.tenant_id != tenant.id:
      raise JobNotFoundError(job_id)
    return record

  async def get_status(self, tenant: TenantRecord, job_id: str) -> dict[str, Any]:
    record = await self._get_owned_job(tenant, job_id)
    return {"ok": True, "job_id": record.job_id, "status": record.status, "progress": record.progress, "mode": record.mode, "updated_at": _iso(record.updated_at)}

  async def get_result(self, tenant: TenantRecord, job_id: str) -> dict[str, Any]:
    record = await self._get_owned_job(tenant, job_id)
    result = record.result_json
    source = result.get("source") if isinstance(result, dict) else None
    error = record.error_text or (result.get("error") if isinstance(result, dict) else None)
    return {"ok": True, "job_id": record.job_id, "status": record.status, "progress": record.progress, "result": result, "source": source, "error": error}

  async def list_jobs(self, *, limit: int, offset: int, status: str | None, tenant_id: str | None, mode: str | None) -> dict[str, Any]:
    records, total = await self._jobs_repo.list_jobs(limit=limit, offset=offset, status=status, tenant_id=tenant_id, mode=mode)
    return {"ok": True, "total": total, "limit": limit, "offset": offset, "jobs": [job_to_payload(record) for record in records]}

  async def job_detail(self, job_id: str) -> dict[str, Any]:
    record = await self._get_job(job_id)
    hold = await self._ledger_repo.get_hold(job_id)
    entries = await self._ledger_repo.list_entries(job_id=job_id, limit=50)
    job = job_to_payload(record)
    job["request"] = mask_secrets(job["request"])
    return {"ok": True, "job": job, "hold": hold_to_payload(hold) if hold else None, "ledger": [entry_to_payload(entry) for entry in entries]}

  async def job_events(self, job_id: str, *, limit: int) -> dict[str, Any]:
    await self._get_job(job_id)
    events = await self._jobs_repo.list_events(job_id=job_id, limit=limit)
    return {"ok": True, "job_id": job_id, "events": [event_to_payload(event) for event in events]}

  async def cancel_job(self, job_id: str) -> dict[str, Any]:
    """Cancel a queued or running job; terminal jobs are reported as already final."""
    record = await self._get_job(job_id)
    if record.is_terminal:
      return {"ok": True, "job_id": job_id, "status": record.status, "already_final": True}

    updated = await self._jobs_repo.transition_job(job_id, from_statuses=ACTIVE_STATUSES, status="canceled", finished_at=datetime.now(UTC))
    if updated is None:
      # Raced with the worker into a terminal state.
      current = await self._get_job(job_id)
      return {"ok": True, "job_id": job_id, "status": current.status, "already_final": True}

    removed = await self._enqueuer.remove(job_id)
    released = await self._ledger_repo.release_hold(job_id)
    await self._event_log.record(job_id=job_id, tenant_id=record.tenant_id, event_type="canceled", message="Job canceled by admin", meta={"previous_status": record.status, "queue_entry_removed": removed, "hold_released": released})
    logger.info("Canceled job %s (was %s)", job_id, record.status)
    return {"ok": True, "job_id": job_id, "status": updated.status, "already_final": False}

  async def retry_job(self, job_id: str) -> dict[str, Any]:
    """Reset a job to queued, re-open its hold and hand it to the queue again."""
    record = await self._get_job(job_id)
    if record.status not in RETRYABLE_STATUSES:
      raise JobStateConflictError(job_id, record.status, "Running jobs cannot be retried.")

    updated = await self._jobs_repo.reset_for_retry(job_id, from_statuses=RETRYABLE_STATUSES)
    if updated is None:
      current = await self._get_job(job_id)
      raise JobStateConflictError(job_id, current.status, "Job changed state and cannot be retried.")

    await self._ledger_repo.reopen_hold(tenant_id=updated.tenant_id, job_id=job_id, aej_estimated=updated.aej_estimated)
    dispatched = True
    try:
      await self._enqueuer.enqueue(job_id, {"job_id": job_id})
    except DispatchError as exc:
      dispatched = False
      logger.error("Failed to dispatch retried job %s", job_id, exc_info=True)
      await self._event_log.record(job_id=job_id, tenant_id=updated.tenant_id, event_type="dispatch_failed", message=str(exc))
    await self._event_log.record(job_id=job_id, tenant_id=updated.tenant_id, event_type="retry", message="Job retried by admin", meta={"previous_status": record.status})
    logger.info("Retried job %s (was %s)", job_id, record.status)
    return {"ok": True, "job_id": job_id, "status": updated.status, "retried": True, "dispatched": dispatched}


async def process_job_sync(job_id: str, processor: JobProcessor) -> JobRecord | None:
  """Run a job immediately, logging delivery failures instead of raising."""
  try:
    return await processor.process_job(job_id)
  except Exception as exc:
    logger.error("Synchronous job processing failed for job %s: %s", job_id, exc, exc_info=True)
    return None
