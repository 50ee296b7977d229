from __future__ import annotations

import asyncio

import pytest

from app.core.errors import RequestValidationFailed
from app.jobs.models import estimate_cost, normalize_mode
from app.services.admission import normalize_idempotency_key
from app.services.quota import QuotaExceededError
from app.storage.tenants_repo import TenantRecord
from tests.factories import make_request


def test_estimate_cost_per_mode():
  assert estimate_cost("quick_boost", 1) == 8
  assert estimate_cost("full_content", 2) == 24
  assert estimate_cost("ecom_catalog", 3) == 36
  # Never below one unit even for an empty list.
  assert estimate_cost("quick_boost", 0) == 1


def test_normalize_mode_aliases():
  assert normalize_mode(None) == "quick_boost"
  assert normalize_mode("  ") == "quick_boost"
  assert normalize_mode("full") == "full_content"
  assert normalize_mode("ECOM_CATALOG") == "ecom_catalog"


def test_normalize_idempotency_key_trims_and_bounds():
  assert normalize_idempotency_key(None) is None
  assert normalize_idempotency_key("   ") is None
  assert normalize_idempotency_key("  abc  ") == "abc"
  assert len(normalize_idempotency_key("x" * 500)) == 200


@pytest.mark.anyio
async def test_admit_creates_job_hold_and_queue_entry(controller, tenant, jobs_repo, ledger_repo, queue):
  result = await controller.admit(tenant, make_request("quick_boost", 1))

  assert result.idempotent is False
  assert result.status == "queued"
  assert result.aej_estimated == 8
  job = jobs_repo.jobs[result.job_id]
  assert job.status == "queued"
  assert job.progress == 0
  assert ledger_repo.holds[result.job_id].status == "held"
  assert ledger_repo.holds[result.job_id].aej_estimated == 8
  assert queue.enqueued == [result.job_id]
  assert jobs_repo.event_types(result.job_id) == ["created"]


@pytest.mark.anyio
async def test_quota_exceeded_reports_remaining(controller, tenant, jobs_repo, queue):
  first = await controller.admit(tenant, make_request("quick_boost", 1))
  assert first.aej_estimated == 8

  with pytest.raises(QuotaExceededError) as exc_info:
    await controller.admit(tenant, make_request("quick_boost", 2))

  payload = exc_info.value.to_payload()
  assert payload["error"] == "quota_exceeded"
  assert payload["aej_remaining"] == 12
  assert payload["aej_needed"] == 16
  assert payload["aej_held"] == 8
  assert payload["monthly_quota_aej"] == 20
  # The rejected request left nothing behind.
  assert len(jobs_repo.jobs) == 1
  assert queue.enqueued == [first.job_id]


@pytest.mark.anyio
async def test_exact_boundary_is_admitted(controller, tenants_repo):
  tenant = tenants_repo.add(TenantRecord(id="tn_edge", name="Edge", api_key="ck_edge", api_secret="s", monthly_quota_aej=16))
  result = await controller.admit(tenant, make_request("quick_boost", 2))
  assert result.aej_estimated == 16


@pytest.mark.anyio
async def test_tenant_without_quota_uses_default(controller, tenants_repo, settings):
  tenant = tenants_repo.add(TenantRecord(id="tn_default", name="Default", api_key="ck_default", api_secret="s", plan_code=None, monthly_quota_aej=None))
  result = await controller.admit(tenant, make_request("full_content", 10))
  assert result.aej_estimated == 120
  assert settings.default_monthly_quota == 500


@pytest.mark.anyio
async def test_concurrent_admissions_never_exceed_quota(controller, tenant, ledger_repo):
  outcomes = await asyncio.gather(*(controller.admit(tenant, make_request("quick_boost", 1)) for _ in range(5)), return_exceptions=True)

  admitted = [outcome for outcome in outcomes if not isinstance(outcome, BaseException)]
  rejected = [outcome for outcome in outcomes if isinstance(outcome, QuotaExceededError)]
  assert len(admitted) == 2
  assert len(rejected) == 3
  assert ledger_repo.open_total(tenant.id) == 16


@pytest.mark.anyio
async def test_concurrent_same_token_yields_one_job(controller, tenant, jobs_repo, queue):
  outcomes = await asyncio.gather(*(controller.admit(tenant, make_request("quick_boost", 1), "order-42") for _ in range(5)))

  job_ids = {outcome.job_id for outcome in outcomes}
  assert len(job_ids) == 1
  assert len(jobs_repo.jobs) == 1
  assert sum(1 for outcome in outcomes if not outcome.idempotent) == 1
  assert queue.enqueued == list(job_ids)


@pytest.mark.anyio
async def test_replay_does_not_check_quota(controller, tenant, jobs_repo):
  first = await controller.admit(tenant, make_request("quick_boost", 2), "batch-1")
  replay = await controller.admit(tenant, make_request("quick_boost", 2), "batch-1")

  assert replay.job_id == first.job_id
  assert replay.idempotent is True
  assert replay.aej_estimated == first.aej_estimated
  assert "idempotent_hit" in jobs_repo.event_types(first.job_id)


@pytest.mark.anyio
async def test_same_token_for_other_tenant_is_independent(controller, tenant, tenants_repo):
  other = tenants_repo.add(TenantRecord(id="tn_beta", name="Beta", api_key="ck_beta", api_secret="s", monthly_quota_aej=100))
  first = await controller.admit(tenant, make_request(), "shared")
  second = await controller.admit(other, make_request(), "shared")
  assert first.job_id != second.job_id
  assert second.idempotent is False


@pytest.mark.anyio
async def test_dispatch_failure_keeps_job_queued(controller, tenant, jobs_repo, ledger_repo, queue):
  queue.fail_enqueue = True

  result = await controller.admit(tenant, make_request())

  assert jobs_repo.jobs[result.job_id].status == "queued"
  assert ledger_repo.holds[result.job_id].status == "held"
  assert jobs_repo.event_types(result.job_id) == ["created", "dispatch_failed"]


@pytest.mark.anyio
async def test_stored_request_carries_normalized_mode(controller, tenant, jobs_repo):
  result = await controller.admit(tenant, {"mode": "full", "items": make_request(count=1)["items"]})
  job = jobs_repo.jobs[result.job_id]
  assert job.mode == "full_content"
  assert job.request["mode"] == "full_content"
  assert result.aej_estimated == 12


@pytest.mark.anyio
async def test_invalid_requests_are_rejected_before_persistence(controller, tenant, jobs_repo, ledger_repo, queue, settings):
  too_many = make_request(count=settings.max_items_per_job + 1)

  for request in ({"mode": "poetry", "items": make_request()["items"]}, {"mode": "quick_boost", "items": []}, too_many):
    with pytest.raises(RequestValidationFailed) as excinfo:
      await controller.admit(tenant, request, "token-1")
    assert excinfo.value.to_payload()["error"] == "schema_invalid"

  assert jobs_repo.jobs == {}
  assert ledger_repo.holds == {}
  assert queue.enqueued == []
