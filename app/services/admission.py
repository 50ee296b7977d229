"""Admission of new jobs: idempotency, estimate, quota check, reservation and handoff."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Final

from app.config import Settings
from app.core.errors import DispatchError, RequestValidationFailed
from app.jobs.models import GENERATION_MODES, JobRecord, estimate_cost, normalize_mode
from app.services.quota import QuotaExceededError, QuotaSnapshot, month_bounds, resolve_plan
from app.services.tasks.interface import TaskEnqueuer
from app.storage.admission_repo import AdmissionStore, DuplicateIdempotencyKey
from app.storage.jobs_repo import JobsRepository
from app.storage.tenants_repo import TenantRecord
from app.telemetry.events import EventLog
from app.utils.db_retry import execute_with_retry
from app.utils.ids import generate_job_id

MAX_IDEMPOTENCY_KEY_LENGTH: Final[int] = 200

logger = logging.getLogger(__name__)


def normalize_idempotency_key(raw: str | None) -> str | None:
  """Trim and bound a client-supplied token; blank means no token."""
  if raw is None:
    return None
  value = str(raw).strip()[:MAX_IDEMPOTENCY_KEY_LENGTH]
  return value or None


@dataclass(frozen=True)
class AdmissionResult:
  job_id: str
  status: str
  aej_estimated: int
  idempotent: bool

  def to_payload(self) -> dict[str, Any]:
    return {"ok": True, "job_id": self.job_id, "status": self.status, "aej_estimated": self.aej_estimated, "idempotent": self.idempotent}


@dataclass(frozen=True)
class _UnitOutcome:
  job_id: str | None = None
  created: JobRecord | None = None
  rejected: QuotaSnapshot | None = None


class AdmissionController:
  """Admits jobs for a tenant under the tenant's admission lock.

  The idempotency lookup, the quota read and the job + hold + idempotency
  inserts run in one unit while the tenant is locked, so concurrent admissions
  for the same tenant are serialized. Dispatch happens only after commit.
  """

  def __init__(self, *, store: AdmissionStore, jobs_repo: JobsRepository, enqueuer: TaskEnqueuer, event_log: EventLog, settings: Settings, id_factory: Callable[[], str] = generate_job_id) -> None:
    self._store = store
    self._jobs_repo = jobs_repo
    self._enqueuer = enqueuer
    self._event_log = event_log
    self._settings = settings
    self._id_factory = id_factory

  async def admit(self, tenant: TenantRecord, request: dict[str, Any], idempotency_key: str | None = None) -> AdmissionResult:
    mode = normalize_mode(request.get("mode"))
    items = list(request.get("items") or [])
    self._validate(mode, items)
    estimate = estimate_cost(mode, len(items))
    key = normalize_idempotency_key(idempotency_key)

    async def _unit() -> _UnitOutcome:
      try:
        async with self._store.locked(tenant.id) as unit:
          if key is not None:
            existing = await unit.find_idempotent_job(key)
            if existing is not None:
              return _UnitOutcome(job_id=existing)
          start, end = month_bounds()
          plan, quota = resolve_plan(unit.tenant, self._settings)
          consumed = await unit.consumed_between(start, end)
          held = await unit.held_total()
          snapshot = QuotaSnapshot(plan=plan, monthly_quota_aej=quota, aej_consumed=consumed, aej_held=held, aej_needed=estimate)
          if not snapshot.admits:
            return _UnitOutcome(rejected=snapshot)
          job = JobRecord(job_id=self._id_factory(), tenant_id=tenant.id, mode=mode, status="queued", request={**request, "mode": mode}, aej_estimated=estimate, progress=0, idempotency_key=key)
          await unit.create_job(job)
          return _UnitOutcome(job_id=job.job_id, created=job)
      except DuplicateIdempotencyKey:
        # Lost a race the lock did not cover; the committed writer wins.
        winner = await self._store.find_idempotent_job(tenant.id, key or "")
        if winner is None:
          raise
        return _UnitOutcome(job_id=winner)

    outcome = await execute_with_retry(operation_name="job_admission", func=_unit, max_attempts=3)

    if outcome.rejected is not None:
      logger.info("Quota exceeded for tenant %s: needed=%s remaining=%s", tenant.id, estimate, outcome.rejected.aej_remaining)
      raise QuotaExceededError(outcome.rejected)

    if outcome.created is None:
      return await self._idempotent_hit(tenant, str(outcome.job_id), key)

    job = outcome.created
    await self._event_log.record(job_id=job.job_id, tenant_id=tenant.id, event_type="created", message="Job created", meta={"mode": mode, "items": len(items), "aej_estimated": estimate})
    await self._hand_off(job)
    logger.info("Admitted job %s for tenant %s mode=%s items=%d estimate=%d", job.job_id, tenant.id, mode, len(items), estimate)
    return AdmissionResult(job_id=job.job_id, status=job.status, aej_estimated=estimate, idempotent=False)

  def _validate(self, mode: str, items: list[Any]) -> None:
    problems: list[str] = []
    if mode not in GENERATION_MODES:
      problems.append(f"mode: unsupported value '{mode}'")
    if not items:
      problems.append("items: at least one item is required")
    elif len(items) > self._settings.max_items_per_job:
      problems.append(f"items: at most {self._settings.max_items_per_job} items per job")
    if problems:
      raise RequestValidationFailed(problems)

  async def _idempotent_hit(self, tenant: TenantRecord, job_id: str, key: str | None) -> AdmissionResult:
    existing = await self._jobs_repo.get_job(job_id)
    await self._event_log.record(job_id=job_id, tenant_id=tenant.id, event_type="idempotent_hit", message="Idempotency key reused", meta={"idempotency_key": key})
    logger.info("Idempotent replay for tenant %s job %s", tenant.id, job_id)
    if existing is None:
      return AdmissionResult(job_id=job_id, status="queued", aej_estimated=0, idempotent=True)
    return AdmissionResult(job_id=job_id, status=existing.status, aej_estimated=existing.aej_estimated, idempotent=True)

  async def _hand_off(self, job: JobRecord) -> None:
    try:
      await self._enqueuer.enqueue(job.job_id, {"job_id": job.job_id})
    except DispatchError as exc:
      # The job stays queued and can be recovered by an admin retry.
      logger.error("Failed to dispatch job %s", job.job_id, exc_info=True)
      await self._event_log.record(job_id=job.job_id, tenant_id=job.tenant_id, event_type="dispatch_failed", message=str(exc))
