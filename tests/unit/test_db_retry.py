from __future__ import annotations

from contextlib import asynccontextmanager

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError

from app.services.admission import AdmissionController
from app.utils.db_retry import backoff_delay_ms, classify_db_failure, execute_with_retry
from tests.factories import make_request


class _DriverError(Exception):
  def __init__(self, sqlstate: str) -> None:
    super().__init__(f"sqlstate {sqlstate}")
    self.sqlstate = sqlstate


def _db_error(sqlstate: str, cls=OperationalError):
  return cls("INSERT INTO jobs ...", {}, _DriverError(sqlstate))


class _DeadlockingStore:
  """Wraps the admission store and aborts the first ``failures`` units after their writes."""

  def __init__(self, inner, failures: int = 1) -> None:
    self._inner = inner
    self.failures = failures
    self.attempts = 0

  @asynccontextmanager
  async def locked(self, tenant_id: str):
    self.attempts += 1
    async with self._inner.locked(tenant_id) as unit:
      yield unit
      if self.failures:
        self.failures -= 1
        raise _db_error("40P01")

  async def find_idempotent_job(self, tenant_id: str, idempotency_key: str):
    return await self._inner.find_idempotent_job(tenant_id, idempotency_key)


def test_classifies_transient_postgres_failures():
  assert classify_db_failure(_db_error("40P01")).category == "deadlock_detected"
  assert classify_db_failure(_db_error("40001")).category == "serialization_failure"
  assert classify_db_failure(_db_error("08006")).retryable is True
  lost = OperationalError("SELECT 1", {}, _DriverError("XX000"), connection_invalidated=True)
  assert classify_db_failure(lost).category == "connection_lost"


def test_permanent_failures_are_not_retried():
  assert classify_db_failure(_db_error("23505", IntegrityError)).retryable is False
  assert classify_db_failure(_db_error("42P01", ProgrammingError)).retryable is False
  assert classify_db_failure(ValueError("bad")).retryable is False


def test_backoff_grows_and_caps():
  assert backoff_delay_ms(1, initial_ms=50, max_ms=1000, jitter=False) == 50
  assert backoff_delay_ms(3, initial_ms=50, max_ms=1000, jitter=False) == 200
  assert backoff_delay_ms(10, initial_ms=50, max_ms=1000, jitter=False) == 1000
  assert 37.5 <= backoff_delay_ms(1, initial_ms=50, max_ms=1000, jitter=True) <= 62.5


@pytest.mark.anyio
async def test_gives_up_after_max_attempts():
  calls = 0

  async def _always_deadlocks():
    nonlocal calls
    calls += 1
    raise _db_error("40P01")

  with pytest.raises(OperationalError):
    await execute_with_retry(operation_name="test", func=_always_deadlocks, max_attempts=3, initial_backoff_ms=0)
  assert calls == 3


@pytest.mark.anyio
async def test_non_retryable_failure_raises_on_first_attempt():
  calls = 0

  async def _conflict():
    nonlocal calls
    calls += 1
    raise _db_error("23505", IntegrityError)

  with pytest.raises(IntegrityError):
    await execute_with_retry(operation_name="test", func=_conflict, initial_backoff_ms=0)
  assert calls == 1


@pytest.mark.anyio
async def test_deadlocked_admission_is_retried_and_admitted_once(admission_store, jobs_repo, ledger_repo, queue, event_log, settings, tenant):
  store = _DeadlockingStore(admission_store)
  counter = iter(range(1, 100))
  controller = AdmissionController(store=store, jobs_repo=jobs_repo, enqueuer=queue, event_log=event_log, settings=settings, id_factory=lambda: f"job-{next(counter)}")

  result = await controller.admit(tenant, make_request("quick_boost", 1), idempotency_key="order-7")

  assert store.attempts == 2
  # The rolled back attempt left nothing behind.
  assert list(jobs_repo.jobs) == [result.job_id] == ["job-2"]
  assert list(ledger_repo.holds) == ["job-2"]
  assert queue.enqueued == ["job-2"]
  assert await admission_store.find_idempotent_job(tenant.id, "order-7") == "job-2"
