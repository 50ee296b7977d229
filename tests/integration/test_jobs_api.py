from __future__ import annotations

import pytest

from app.storage.tenants_repo import TenantRecord
from tests.factories import make_request


def test_health(client):
  response = client.get("/health")
  assert response.status_code == 200
  assert response.json() == {"status": "ok", "version": "0.1.0"}
  assert response.headers["x-request-id"]


def test_create_job_admits_and_enqueues(signed, queue, ledger_repo):
  response = signed.post("/v1/jobs", make_request(count=2))

  assert response.status_code == 200
  body = response.json()
  assert body == {"ok": True, "job_id": "job-1", "status": "queued", "aej_estimated": 16, "idempotent": False}
  assert queue.enqueued == ["job-1"]
  assert ledger_repo.open_total("tn_alpha") == 16


def test_create_alias_path(signed):
  response = signed.post("/v1/jobs/create", make_request())
  assert response.status_code == 200
  assert response.json()["aej_estimated"] == 8


def test_quota_exceeded_is_402_with_details(signed):
  assert signed.post("/v1/jobs", make_request()).status_code == 200
  assert signed.post("/v1/jobs", make_request()).status_code == 200

  response = signed.post("/v1/jobs", make_request())

  assert response.status_code == 402
  detail = response.json()["detail"]
  assert detail["error"] == "quota_exceeded"
  assert detail["aej_held"] == 16
  assert detail["aej_needed"] == 8
  assert detail["aej_remaining"] == 4


def test_idempotency_header_replays_job(signed, jobs_repo):
  first = signed.post("/v1/jobs", make_request(), **{"Idempotency-Key": "order-42"})
  second = signed.post("/v1/jobs", make_request(), **{"X-Idempotency-Key": "order-42"})

  assert first.json()["job_id"] == second.json()["job_id"]
  assert second.json()["idempotent"] is True
  assert len(jobs_repo.jobs) == 1


def test_schema_errors_are_422(signed):
  bad_type = make_request()
  bad_type["items"][0]["entity_type"] = "category"
  extra_field = {**make_request(), "priority": "high"}

  for payload in (bad_type, extra_field, {"mode": "quick_boost", "items": []}):
    response = signed.post("/v1/jobs", payload)
    assert response.status_code == 422
    assert response.json()["detail"]["error"] == "schema_invalid"


@pytest.mark.parametrize("field", ["entity_id", "source_title", "source_excerpt"])
def test_blank_or_missing_item_fields_are_422(signed, queue, field):
  blank = make_request()
  blank["items"][0][field] = "   "
  missing = make_request()
  del missing["items"][0][field]

  for payload in (blank, missing):
    response = signed.post("/v1/jobs", payload)
    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["error"] == "schema_invalid"
    assert any(problem["loc"][-1] == field for problem in detail["details"])
  assert queue.enqueued == []


def test_unknown_mode_is_rejected(signed):
  response = signed.post("/v1/jobs", make_request(mode="poetry"))
  assert response.status_code == 422


def test_missing_auth_is_401(client):
  response = client.post("/v1/jobs", json=make_request())
  assert response.status_code == 401
  assert response.json()["detail"] == "missing_auth"


def test_unknown_key_is_401(client, signed):
  signed.api_key = "ck_unknown"
  response = signed.post("/v1/jobs", make_request())
  assert response.status_code == 401
  assert response.json()["detail"] == "invalid_key"


def test_tampered_body_is_401(client, signed):
  body = b'{"mode":"quick_boost","items":[]}'
  headers = signed.headers(b'{"mode":"full_content","items":[]}')

  response = client.post("/v1/jobs", content=body, headers=headers)

  assert response.status_code == 401
  assert response.json()["detail"] == "bad_signature"


def test_inactive_tenant_is_403(signed, tenants_repo, tenant):
  from dataclasses import replace

  tenants_repo.add(replace(tenant, is_active=False))

  response = signed.post("/v1/jobs", make_request())

  assert response.status_code == 403
  assert response.json()["detail"] == "tenant_inactive"


def test_status_and_result_while_queued(signed):
  job_id = signed.post("/v1/jobs", make_request()).json()["job_id"]

  status = signed.get(f"/v1/jobs/{job_id}/status")
  result = signed.get(f"/v1/jobs/{job_id}/result")

  assert status.status_code == 200
  assert status.json()["status"] == "queued"
  assert status.json()["progress"] == 0
  assert result.json()["result"] is None


def test_other_tenants_job_is_404(signed, client, tenants_repo):
  job_id = signed.post("/v1/jobs", make_request()).json()["job_id"]
  tenants_repo.add(TenantRecord(id="tn_beta", name="Beta", api_key="ck_beta", api_secret="beta-secret", plan_code="starter", monthly_quota_aej=100, aej_balance=0, is_active=True))
  signed.api_key, signed.api_secret = "ck_beta", "beta-secret"

  response = signed.get(f"/v1/jobs/{job_id}/status")

  assert response.status_code == 404
  assert response.json()["detail"] == {"ok": False, "error": "job_not_found"}


def test_billing_views(signed):
  signed.post("/v1/jobs", make_request())

  billing = signed.get("/v1/billing/me").json()
  balance = signed.get("/v1/aej/balance").json()

  assert billing["aej_held"] == 8
  assert billing["aej_remaining"] == 12
  assert "breakdown" in billing
  assert balance["aej_remaining"] == 12
  assert "breakdown" not in balance
