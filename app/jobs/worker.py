"""Background processor for queued content generation jobs."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from app.ai.backend import GenerationBackend
from app.ai.prompts import build_prompt
from app.ai.schemas import schema_for_mode
from app.core.errors import JobNotFoundError
from app.jobs.fallback import build_fallback
from app.jobs.models import (
  ACTIVE_STATUSES,
  ANALYSE_COST,
  APPLICATION_COST,
  BACKEND_ITEM_COST,
  DECISION_COST,
  DEFAULT_CONTENT_SOURCE,
  FALLBACK_ITEM_COST,
  PROGRESS_DECIDED,
  PROGRESS_FINISHED,
  PROGRESS_RUNNING,
  REVIEW_STATUS,
  JobRecord,
  normalize_mode,
)
from app.schema.ledger import LedgerStage
from app.services.degraded_mode import DegradedModePoller
from app.storage.jobs_repo import JobsRepository
from app.storage.ledger_repo import LedgerRepository
from app.telemetry.decisions import DecisionLog
from app.telemetry.events import EventLog

FORCE_DEGRADED_ERROR = "force_degraded"


def _now() -> datetime:
  return datetime.now(UTC)


def item_identity(item: dict[str, Any]) -> dict[str, Any]:
  """Explicit identity of an item as echoed in results."""
  return {
    "content_source": str(item.get("content_source") or DEFAULT_CONTENT_SOURCE),
    "entity_type": item.get("entity_type"),
    "entity_id": item.get("entity_id"),
    "lang": item.get("lang"),
  }


@dataclass(frozen=True)
class ItemOutcome:
  item: dict[str, Any]
  result: dict[str, Any]
  source: str
  error: str | None = None
  tokens_used: int | None = None
  model: str | None = None

  def to_payload(self) -> dict[str, Any]:
    return {"item": item_identity(self.item), "result": self.result, "source": self.source, "error": self.error, "status": REVIEW_STATUS}


class JobProcessor:
  """Drives one job from ``queued`` to a terminal state.

  Every stage write is idempotent (ledger and decision inserts ignore
  duplicates, status writes are guarded, hold release is conditional), so a
  redelivered job is settled at most once.
  """

  def __init__(self, *, jobs_repo: JobsRepository, ledger_repo: LedgerRepository, decision_log: DecisionLog, event_log: EventLog, backend: GenerationBackend, degraded_mode: DegradedModePoller) -> None:
    self._jobs_repo = jobs_repo
    self._ledger_repo = ledger_repo
    self._decision_log = decision_log
    self._event_log = event_log
    self._backend = backend
    self._degraded_mode = degraded_mode
    self._logger = logging.getLogger(__name__)

  async def process_job(self, job_id: str) -> JobRecord | None:
    """Execute a job; job failures are settled here and only harness failures propagate."""
    job = await self._jobs_repo.get_job(job_id)
    if job is None:
      raise JobNotFoundError(job_id)
    if job.is_terminal:
      # Duplicate delivery or cancel-before-pickup: nothing to run, hold must not linger.
      self._logger.info("Skipping job %s in terminal status %s", job.job_id, job.status)
      return await self._settle_terminal(job)
    try:
      return await self._execute(job)
    except Exception as exc:  # noqa: BLE001 - job failure becomes a terminal error state
      self._logger.error("Job %s failed", job.job_id, exc_info=True)
      return await self._fail(job, exc)

  async def _execute(self, job: JobRecord) -> JobRecord | None:
    running = await self._jobs_repo.transition_job(job.job_id, from_statuses=ACTIVE_STATUSES, status="running", progress=PROGRESS_RUNNING, started_at=_now())
    if running is None:
      return await self._settle_interrupted(job)
    await self._event_log.record(job_id=job.job_id, tenant_id=job.tenant_id, event_type="running", message="Job started")

    mode = normalize_mode(running.mode)
    items = running.items
    first_item = items[0] if items else None

    # Analyse
    await self._ledger_repo.record_usage(tenant_id=job.tenant_id, job_id=job.job_id, stage=LedgerStage.ANALYSE.value, aej_used=ANALYSE_COST)
    await self._decision_log.record(tenant_id=job.tenant_id, job_id=job.job_id, item=first_item, decision_type="analysed", reason="Analysis completed and generation mode selected.")

    # Decision
    await self._ledger_repo.record_usage(tenant_id=job.tenant_id, job_id=job.job_id, stage=LedgerStage.DECISION.value, aej_used=DECISION_COST)
    await self._jobs_repo.update_progress(job.job_id, PROGRESS_DECIDED)

    # Generation
    snapshot = await self._degraded_mode.current()
    outcomes: list[ItemOutcome] = []
    for index, item in enumerate(items):
      # A cancel observed between items stops further backend calls.
      if not await self._still_running(job.job_id):
        if outcomes:
          await self._record_generation(job, outcomes)
        return await self._settle_interrupted(job)
      outcomes.append(await self._generate_item(running, mode, item, forced=snapshot.force_degraded))
      await self._jobs_repo.update_progress(job.job_id, PROGRESS_DECIDED + int(60 * (index + 1) / len(items)))

    fallback_count = await self._record_generation(job, outcomes)

    # Application
    used_fallback = fallback_count > 0
    first_error = next((outcome.error for outcome in outcomes if outcome.error), None)
    result = {
      "ok": True,
      "source": "fallback" if used_fallback else "backend",
      "error": first_error,
      "review_status": REVIEW_STATUS,
      "results": [outcome.to_payload() for outcome in outcomes],
    }
    done = await self._jobs_repo.transition_job(job.job_id, from_statuses=("running",), status="done", progress=PROGRESS_FINISHED, result_json=result, finished_at=_now())
    if done is None:
      # Canceled while generating: the result is discarded.
      return await self._settle_interrupted(job)

    reason = "Fallback used: optimisation ready to apply." if used_fallback else "Backend optimisation generated and ready to apply."
    await self._decision_log.record(tenant_id=job.tenant_id, job_id=job.job_id, item=first_item, decision_type="modified", reason=reason)
    await self._ledger_repo.record_usage(tenant_id=job.tenant_id, job_id=job.job_id, stage=LedgerStage.APPLICATION.value, aej_used=APPLICATION_COST)

    aej_final = await self._ledger_repo.sum_job_usage(job.job_id)
    await self._jobs_repo.set_final_cost(job.job_id, aej_final)
    await self._ledger_repo.release_hold(job.job_id)
    await self._event_log.record(job_id=job.job_id, tenant_id=job.tenant_id, event_type="done", message="Job completed", meta={"source": result["source"], "aej_final": aej_final, "items": len(outcomes)})
    self._logger.info("Job %s done source=%s aej_final=%s", job.job_id, result["source"], aej_final)
    return dataclasses.replace(done, aej_final=aej_final)

  async def _record_generation(self, job: JobRecord, outcomes: list[ItemOutcome]) -> int:
    """Charge the generation stage for the items that ran; returns the fallback count."""
    backend_count = sum(1 for outcome in outcomes if outcome.source == "backend")
    fallback_count = len(outcomes) - backend_count
    tokens = [outcome.tokens_used for outcome in outcomes if outcome.tokens_used is not None]
    model = next((outcome.model for outcome in outcomes if outcome.model), None)
    await self._ledger_repo.record_usage(
      tenant_id=job.tenant_id,
      job_id=job.job_id,
      stage=LedgerStage.GENERATION.value,
      aej_used=BACKEND_ITEM_COST * backend_count + FALLBACK_ITEM_COST * fallback_count,
      tokens_used=sum(tokens) if tokens else None,
      model_used=model,
    )
    return fallback_count

  async def _generate_item(self, job: JobRecord, mode: str, item: dict[str, Any], *, forced: bool) -> ItemOutcome:
    error: str | None
    if forced:
      error = FORCE_DEGRADED_ERROR
    else:
      prompt = build_prompt(mode, item)
      schema = schema_for_mode(mode)
      await self._event_log.record(job_id=job.job_id, tenant_id=job.tenant_id, event_type="backend_call", meta={"entity_id": item.get("entity_id")})
      try:
        generated = await self._backend.generate(prompt, schema)
      except Exception as exc:  # noqa: BLE001 - any backend failure falls back
        error = str(exc) or type(exc).__name__
        self._logger.warning("Backend failed for job %s item %s: %s", job.job_id, item.get("entity_id"), error)
      else:
        await self._event_log.record(job_id=job.job_id, tenant_id=job.tenant_id, event_type="backend_ok", meta={"entity_id": item.get("entity_id"), "usage": generated.usage})
        return ItemOutcome(item=item, result=generated.content, source="backend", tokens_used=generated.total_tokens, model=generated.model)

    await self._event_log.record(job_id=job.job_id, tenant_id=job.tenant_id, event_type="fallback", message="Using deterministic fallback", meta={"entity_id": item.get("entity_id"), "error": error})
    return ItemOutcome(item=item, result=build_fallback(mode, item), source="fallback", error=error)

  async def _still_running(self, job_id: str) -> bool:
    current = await self._jobs_repo.get_job(job_id)
    return current is not None and current.status == "running"

  async def _settle_interrupted(self, job: JobRecord) -> JobRecord | None:
    """Settle a job that left the running path (canceled) without writing a result."""
    current = await self._jobs_repo.get_job(job.job_id)
    charged = await self._ledger_repo.sum_job_usage(job.job_id)
    if charged > 0:
      await self._jobs_repo.set_final_cost(job.job_id, charged)
    await self._ledger_repo.release_hold(job.job_id)
    self._logger.info("Job %s interrupted in status %s", job.job_id, current.status if current else "missing")
    if current is not None and charged > 0:
      return dataclasses.replace(current, aej_final=charged)
    return current

  async def _fail(self, job: JobRecord, exc: Exception) -> JobRecord | None:
    message = str(exc) or type(exc).__name__
    failed = await self._jobs_repo.transition_job(job.job_id, from_statuses=ACTIVE_STATUSES, status="error", progress=PROGRESS_FINISHED, error_text=message, finished_at=_now())
    if failed is not None:
      await self._event_log.record(job_id=job.job_id, tenant_id=job.tenant_id, event_type="error", message=message)
    # A lost transition means the job is already terminal (a post-done write failed, or a cancel won); its status stays.
    return await self._settle_terminal(job)

  async def _settle_terminal(self, job: JobRecord) -> JobRecord | None:
    """Persist a missing ``aej_final`` from the ledger and release the hold."""
    current = await self._jobs_repo.get_job(job.job_id)
    if current is not None and current.aej_final is None:
      charged = await self._ledger_repo.sum_job_usage(job.job_id)
      if charged > 0:
        await self._jobs_repo.set_final_cost(job.job_id, charged)
        current = dataclasses.replace(current, aej_final=charged)
    await self._ledger_repo.release_hold(job.job_id)
    return current
