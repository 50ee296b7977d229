"""Test configuration and in-memory doubles for the content engine stores."""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Any

os.environ.setdefault("CONTENT_ALLOWED_ORIGINS", "http://testserver")
os.environ.setdefault("CONTENT_TASK_SECRET", "test-task-secret")
os.environ.setdefault("CONTENT_ADMIN_TOKEN", "test-admin-token")
os.environ.setdefault("CONTENT_WORKER_ENABLED", "false")
os.environ.setdefault("CONTENT_TASK_SERVICE_PROVIDER", "postgres")

import pytest  # noqa: E402

from app.ai.backend import GenerationResult  # noqa: E402
from app.config import Settings, get_settings  # noqa: E402
from app.core.errors import DispatchError  # noqa: E402
from app.jobs.models import JobEventRecord, JobRecord  # noqa: E402
from app.jobs.worker import JobProcessor  # noqa: E402
from app.schema.ledger import HoldStatus  # noqa: E402
from app.services.admission import AdmissionController  # noqa: E402
from app.services.degraded_mode import DegradedModePoller  # noqa: E402
from app.services.jobs import JobService  # noqa: E402
from app.services.tasks.postgres_queue import QueueDelivery, compute_backoff_ms  # noqa: E402
from app.storage.admission_repo import DuplicateIdempotencyKey, IdempotencyEntry, UnknownTenantError  # noqa: E402
from app.storage.decisions_repo import DecisionEntry  # noqa: E402
from app.storage.ledger_repo import HoldRecord, LedgerEntryRecord  # noqa: E402
from app.storage.tenants_repo import TenantRecord  # noqa: E402
from app.telemetry.decisions import DecisionLog  # noqa: E402
from app.telemetry.events import EventLog  # noqa: E402


def _now() -> datetime:
  return datetime.now(UTC)


class InMemoryJobsRepository:
  def __init__(self) -> None:
    self.jobs: dict[str, JobRecord] = {}
    self.events: list[JobEventRecord] = []
    self.fail_events = False

  async def get_job(self, job_id: str) -> JobRecord | None:
    return self.jobs.get(job_id)

  async def transition_job(self, job_id, *, from_statuses, status, progress=None, result_json=None, error_text=None, started_at=None, finished_at=None):
    current = self.jobs.get(job_id)
    if current is None or current.status not in tuple(from_statuses):
      return None
    changes: dict[str, Any] = {"status": status, "updated_at": _now()}
    for key, value in {"progress": progress, "result_json": result_json, "error_text": error_text, "started_at": started_at, "finished_at": finished_at}.items():
      if value is not None:
        changes[key] = value
    updated = replace(current, **changes)
    self.jobs[job_id] = updated
    return updated

  async def reset_for_retry(self, job_id, *, from_statuses):
    current = self.jobs.get(job_id)
    if current is None or current.status not in tuple(from_statuses):
      return None
    updated = replace(current, status="queued", progress=0, result_json=None, error_text=None, aej_final=None, started_at=None, finished_at=None, updated_at=_now())
    self.jobs[job_id] = updated
    return updated

  async def update_progress(self, job_id: str, progress: int) -> None:
    current = self.jobs.get(job_id)
    if current is not None and current.status == "running":
      self.jobs[job_id] = replace(current, progress=int(progress), updated_at=_now())

  async def set_final_cost(self, job_id: str, aej_final: int) -> None:
    current = self.jobs.get(job_id)
    if current is not None:
      self.jobs[job_id] = replace(current, aej_final=int(aej_final))

  async def list_jobs(self, *, limit=50, offset=0, status=None, tenant_id=None, mode=None):
    records = [job for job in self.jobs.values() if (status is None or job.status == status) and (tenant_id is None or job.tenant_id == tenant_id) and (mode is None or job.mode == mode)]
    records.sort(key=lambda job: job.created_at or _now(), reverse=True)
    return records[offset : offset + limit], len(records)

  async def count_jobs(self, *, status: str) -> int:
    return sum(1 for job in self.jobs.values() if job.status == status)

  async def append_event(self, *, job_id, tenant_id, event_type, message=None, meta=None) -> None:
    if self.fail_events:
      raise RuntimeError("event store unavailable")
    self.events.append(JobEventRecord(id=len(self.events) + 1, job_id=job_id, tenant_id=tenant_id, event_type=event_type, message=message, meta=meta, created_at=_now()))

  async def list_events(self, *, job_id: str, limit: int = 200) -> list[JobEventRecord]:
    return [event for event in self.events if event.job_id == job_id][:limit]

  def event_types(self, job_id: str) -> list[str]:
    return [event.event_type for event in self.events if event.job_id == job_id]


class InMemoryLedgerRepository:
  def __init__(self) -> None:
    self.entries: list[LedgerEntryRecord] = []
    self.holds: dict[str, HoldRecord] = {}

  async def record_usage(self, *, tenant_id, job_id, stage, aej_used, tokens_used=None, model_used=None) -> bool:
    if any(entry.tenant_id == tenant_id and entry.job_id == job_id and entry.stage == stage for entry in self.entries):
      return False
    self.entries.append(LedgerEntryRecord(id=len(self.entries) + 1, tenant_id=tenant_id, job_id=job_id, stage=stage, aej_used=int(aej_used), tokens_used=tokens_used, model_used=model_used, created_at=_now()))
    return True

  async def sum_job_usage(self, job_id: str) -> int:
    return sum(entry.aej_used for entry in self.entries if entry.job_id == job_id)

  async def get_hold(self, job_id: str) -> HoldRecord | None:
    return self.holds.get(job_id)

  async def release_hold(self, job_id: str) -> bool:
    hold = self.holds.get(job_id)
    if hold is None or hold.status != HoldStatus.HELD.value:
      return False
    self.holds[job_id] = replace(hold, status=HoldStatus.RELEASED.value, released_at=_now())
    return True

  async def reopen_hold(self, *, tenant_id, job_id, aej_estimated) -> None:
    hold = self.holds.get(job_id)
    if hold is None:
      self.holds[job_id] = HoldRecord(job_id=job_id, tenant_id=tenant_id, aej_estimated=int(aej_estimated), status=HoldStatus.HELD.value, created_at=_now())
      return
    self.holds[job_id] = replace(hold, status=HoldStatus.HELD.value, aej_estimated=int(aej_estimated), released_at=None)

  def open_total(self, tenant_id: str) -> int:
    return sum(hold.aej_estimated for hold in self.holds.values() if hold.tenant_id == tenant_id and hold.status == HoldStatus.HELD.value)

  def consumed(self, tenant_id: str, start: datetime, end: datetime) -> dict[str, int]:
    totals: dict[str, int] = {}
    for entry in self.entries:
      if entry.tenant_id == tenant_id and entry.created_at is not None and start <= entry.created_at < end:
        totals[entry.stage] = totals.get(entry.stage, 0) + entry.aej_used
    return totals

  async def held_total(self, tenant_id: str) -> int:
    return self.open_total(tenant_id)

  async def usage_by_stage(self, tenant_id: str, *, start: datetime, end: datetime) -> dict[str, int]:
    return self.consumed(tenant_id, start, end)

  async def list_holds(self, *, tenant_id=None, status=None, limit=100) -> list[HoldRecord]:
    return [hold for hold in self.holds.values() if (tenant_id is None or hold.tenant_id == tenant_id) and (status is None or hold.status == status)][:limit]

  async def list_entries(self, *, tenant_id=None, job_id=None, limit=200) -> list[LedgerEntryRecord]:
    return [entry for entry in reversed(self.entries) if (tenant_id is None or entry.tenant_id == tenant_id) and (job_id is None or entry.job_id == job_id)][:limit]


class InMemoryTenantsRepository:
  def __init__(self) -> None:
    self.tenants: dict[str, TenantRecord] = {}

  def add(self, record: TenantRecord) -> TenantRecord:
    self.tenants[record.id] = record
    return record

  async def get_by_api_key(self, api_key: str) -> TenantRecord | None:
    return next((tenant for tenant in self.tenants.values() if tenant.api_key == api_key), None)

  async def get_tenant(self, tenant_id: str) -> TenantRecord | None:
    return self.tenants.get(tenant_id)

  async def list_tenants(self, *, limit: int = 500) -> list[TenantRecord]:
    return list(self.tenants.values())[:limit]

  async def create_tenant(self, record: TenantRecord) -> TenantRecord:
    return self.add(replace(record, created_at=_now()))

  async def update_secret(self, tenant_id: str, api_secret: str) -> TenantRecord | None:
    current = self.tenants.get(tenant_id)
    if current is None:
      return None
    return self.add(replace(current, api_secret=api_secret))

  async def update_tenant(self, tenant_id: str, changes) -> TenantRecord | None:
    current = self.tenants.get(tenant_id)
    if current is None:
      return None
    return self.add(replace(current, **changes))


class _InMemoryAdmissionUnit:
  def __init__(self, store: InMemoryAdmissionStore, tenant: TenantRecord) -> None:
    self._store = store
    self.tenant = tenant
    self._pending: list[JobRecord] = []

  async def find_idempotent_job(self, idempotency_key: str) -> str | None:
    await asyncio.sleep(0)
    entry = self._store.idempotency.get((self.tenant.id, idempotency_key))
    return entry.job_id if entry else None

  async def consumed_between(self, start: datetime, end: datetime) -> int:
    await asyncio.sleep(0)
    return sum(self._store.ledger.consumed(self.tenant.id, start, end).values())

  async def held_total(self) -> int:
    await asyncio.sleep(0)
    return self._store.ledger.open_total(self.tenant.id)

  async def create_job(self, job: JobRecord) -> None:
    await asyncio.sleep(0)
    if job.idempotency_key and (job.tenant_id, job.idempotency_key) in self._store.idempotency:
      raise DuplicateIdempotencyKey(job.idempotency_key)
    self._pending.append(job)

  def commit(self) -> None:
    for job in self._pending:
      now = _now()
      self._store.jobs.jobs[job.job_id] = replace(job, created_at=now, updated_at=now)
      self._store.ledger.holds[job.job_id] = HoldRecord(job_id=job.job_id, tenant_id=job.tenant_id, aej_estimated=job.aej_estimated, status=HoldStatus.HELD.value, created_at=now)
      if job.idempotency_key:
        self._store.idempotency[(job.tenant_id, job.idempotency_key)] = IdempotencyEntry(tenant_id=job.tenant_id, idempotency_key=job.idempotency_key, job_id=job.job_id, created_at=now)


class InMemoryAdmissionStore:
  """Per-tenant asyncio lock standing in for the tenant row lock; writes apply on clean exit."""

  def __init__(self, *, tenants: InMemoryTenantsRepository, jobs: InMemoryJobsRepository, ledger: InMemoryLedgerRepository) -> None:
    self.tenants = tenants
    self.jobs = jobs
    self.ledger = ledger
    self.idempotency: dict[tuple[str, str], IdempotencyEntry] = {}
    self._locks: dict[str, asyncio.Lock] = {}

  @asynccontextmanager
  async def locked(self, tenant_id: str) -> AsyncIterator[_InMemoryAdmissionUnit]:
    lock = self._locks.setdefault(tenant_id, asyncio.Lock())
    async with lock:
      tenant = self.tenants.tenants.get(tenant_id)
      if tenant is None:
        raise UnknownTenantError(tenant_id)
      unit = _InMemoryAdmissionUnit(self, tenant)
      yield unit
      unit.commit()

  async def find_idempotent_job(self, tenant_id: str, idempotency_key: str) -> str | None:
    entry = self.idempotency.get((tenant_id, idempotency_key))
    return entry.job_id if entry else None

  async def get_idempotency_record(self, tenant_id: str, idempotency_key: str) -> IdempotencyEntry | None:
    return self.idempotency.get((tenant_id, idempotency_key))


class InMemoryFlagsRepository:
  def __init__(self) -> None:
    self.flags: dict[str, str] = {}
    self.fail = False
    self.reads = 0

  async def get_flag(self, key: str) -> str | None:
    self.reads += 1
    if self.fail:
      raise RuntimeError("flags unavailable")
    return self.flags.get(key)

  async def set_flag(self, key: str, value: str) -> None:
    self.flags[key] = value


class InMemoryDecisionsRepository:
  def __init__(self) -> None:
    self.decisions: dict[tuple[str, str, str], DecisionEntry] = {}

  async def insert_decision(self, entry: DecisionEntry) -> bool:
    key = (entry.tenant_id, entry.job_id, entry.decision_type)
    if key in self.decisions:
      return False
    self.decisions[key] = entry
    return True


class InMemoryQueue:
  """Producer and consumer sides of the dispatch queue."""

  def __init__(self, *, max_attempts: int = 3, backoff_ms: int = 1000) -> None:
    self.entries: dict[str, dict[str, Any]] = {}
    self.max_attempts = max_attempts
    self.backoff_ms = backoff_ms
    self.fail_enqueue = False
    self.enqueued: list[str] = []

  async def enqueue(self, job_id: str, payload: dict) -> None:
    if self.fail_enqueue:
      raise DispatchError("queue unavailable")
    self.enqueued.append(job_id)
    self.entries[job_id] = {"status": "pending", "attempts": 0, "max_attempts": self.max_attempts, "available_at": _now(), "lease_token": None, "last_error": None}

  async def remove(self, job_id: str) -> bool:
    entry = self.entries.get(job_id)
    if entry is None or entry["status"] != "pending":
      return False
    del self.entries[job_id]
    return True

  async def claim(self) -> QueueDelivery | None:
    now = _now()
    for job_id, entry in sorted(self.entries.items(), key=lambda pair: pair[1]["available_at"]):
      if entry["status"] == "pending" and entry["available_at"] <= now:
        entry.update(status="inflight", attempts=entry["attempts"] + 1, lease_token=f"lease-{job_id}-{entry['attempts'] + 1}")
        return QueueDelivery(job_id=job_id, attempts=entry["attempts"], max_attempts=entry["max_attempts"], lease_token=entry["lease_token"])
    return None

  async def ack(self, delivery: QueueDelivery) -> bool:
    entry = self.entries.get(delivery.job_id)
    if entry is None or entry["lease_token"] != delivery.lease_token:
      return False
    del self.entries[delivery.job_id]
    return True

  async def nack(self, delivery: QueueDelivery, error: str) -> str:
    entry = self.entries[delivery.job_id]
    entry.update(lease_token=None, last_error=error)
    if delivery.attempts >= delivery.max_attempts:
      entry["status"] = "failed"
    else:
      entry.update(status="pending", available_at=_now() + timedelta(milliseconds=compute_backoff_ms(delivery.attempts, self.backoff_ms)))
    return entry["status"]


class FakeBackend:
  """Backend double; set ``error`` to make every call fail."""

  def __init__(self) -> None:
    self.calls: list[tuple[str, dict[str, Any]]] = []
    self.error: Exception | None = None
    self.configured = True
    self.before_return: Any = None

  async def generate(self, prompt: str, schema: dict[str, Any]) -> GenerationResult:
    self.calls.append((prompt, schema))
    if self.before_return is not None:
      await self.before_return()
    if self.error is not None:
      raise self.error
    mode = schema["properties"]["mode"]["const"]
    return GenerationResult(content={"mode": mode, "title": "Generated title for review"}, usage={"prompt_tokens": 10, "completion_tokens": 20, "total_tokens": 30}, model="gpt-test")


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
def settings() -> Settings:
  get_settings.cache_clear()
  base = get_settings()
  return replace(base, default_plan_code="starter", default_monthly_quota=500, max_items_per_job=50, task_secret="test-task-secret", admin_token="test-admin-token")


@pytest.fixture
def tenants_repo() -> InMemoryTenantsRepository:
  return InMemoryTenantsRepository()


@pytest.fixture
def tenant(tenants_repo: InMemoryTenantsRepository) -> TenantRecord:
  return tenants_repo.add(TenantRecord(id="tn_alpha", name="Alpha", api_key="ck_alpha", api_secret="alpha-secret", plan_code="starter", monthly_quota_aej=20, aej_balance=0, is_active=True))


@pytest.fixture
def jobs_repo() -> InMemoryJobsRepository:
  return InMemoryJobsRepository()


@pytest.fixture
def ledger_repo() -> InMemoryLedgerRepository:
  return InMemoryLedgerRepository()


@pytest.fixture
def admission_store(tenants_repo, jobs_repo, ledger_repo) -> InMemoryAdmissionStore:
  return InMemoryAdmissionStore(tenants=tenants_repo, jobs=jobs_repo, ledger=ledger_repo)


@pytest.fixture
def flags_repo() -> InMemoryFlagsRepository:
  return InMemoryFlagsRepository()


@pytest.fixture
def decisions_repo() -> InMemoryDecisionsRepository:
  return InMemoryDecisionsRepository()


@pytest.fixture
def queue() -> InMemoryQueue:
  return InMemoryQueue()


@pytest.fixture
def backend() -> FakeBackend:
  return FakeBackend()


@pytest.fixture
def event_log(jobs_repo) -> EventLog:
  return EventLog(jobs_repo)


@pytest.fixture
def degraded_mode(flags_repo) -> DegradedModePoller:
  return DegradedModePoller(flags_repo, refresh_seconds=5.0)


@pytest.fixture
def controller(admission_store, jobs_repo, queue, event_log, settings) -> AdmissionController:
  counter = iter(range(1, 10_000))
  return AdmissionController(store=admission_store, jobs_repo=jobs_repo, enqueuer=queue, event_log=event_log, settings=settings, id_factory=lambda: f"job-{next(counter)}")


@pytest.fixture
def processor(jobs_repo, ledger_repo, decisions_repo, event_log, backend, degraded_mode) -> JobProcessor:
  return JobProcessor(jobs_repo=jobs_repo, ledger_repo=ledger_repo, decision_log=DecisionLog(decisions_repo), event_log=event_log, backend=backend, degraded_mode=degraded_mode)


@pytest.fixture
def job_service(jobs_repo, ledger_repo, queue, event_log, settings) -> JobService:
  return JobService(jobs_repo=jobs_repo, ledger_repo=ledger_repo, enqueuer=queue, event_log=event_log, settings=settings)
