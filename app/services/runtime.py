"""Process-wide wiring of services, worker and poller."""

from __future__ import annotations

from functools import lru_cache

from app.ai.providers import get_generation_backend
from app.config import Settings
from app.jobs.dispatch import WorkerPool
from app.jobs.worker import JobProcessor
from app.services.admission import AdmissionController
from app.services.degraded_mode import DegradedModePoller
from app.services.jobs import JobService
from app.services.tasks.factory import get_task_enqueuer
from app.services.tasks.postgres_queue import PostgresDispatchQueue
from app.storage.factory import _get_admission_store, _get_decisions_repo, _get_flags_repo, _get_jobs_repo, _get_ledger_repo
from app.telemetry.decisions import DecisionLog
from app.telemetry.events import EventLog


@lru_cache(maxsize=1)
def get_degraded_mode(settings: Settings) -> DegradedModePoller:
  return DegradedModePoller(_get_flags_repo(), refresh_seconds=settings.degraded_refresh_seconds)


def get_event_log() -> EventLog:
  return EventLog(_get_jobs_repo())


def build_job_processor(settings: Settings) -> JobProcessor:
  return JobProcessor(
    jobs_repo=_get_jobs_repo(),
    ledger_repo=_get_ledger_repo(),
    decision_log=DecisionLog(_get_decisions_repo()),
    event_log=get_event_log(),
    backend=get_generation_backend(settings),
    degraded_mode=get_degraded_mode(settings),
  )


def build_admission_controller(settings: Settings) -> AdmissionController:
  return AdmissionController(store=_get_admission_store(), jobs_repo=_get_jobs_repo(), enqueuer=get_task_enqueuer(settings), event_log=get_event_log(), settings=settings)


def build_job_service(settings: Settings) -> JobService:
  return JobService(jobs_repo=_get_jobs_repo(), ledger_repo=_get_ledger_repo(), enqueuer=get_task_enqueuer(settings), event_log=get_event_log(), settings=settings)


@lru_cache(maxsize=1)
def get_worker_pool(settings: Settings) -> WorkerPool:
  queue = PostgresDispatchQueue(backoff_ms=settings.queue_backoff_ms, lease_seconds=settings.queue_lease_seconds)
  return WorkerPool(queue=queue, runner=build_job_processor(settings), concurrency=settings.worker_concurrency, poll_seconds=settings.queue_poll_seconds)
