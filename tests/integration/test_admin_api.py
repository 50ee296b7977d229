from __future__ import annotations

from dataclasses import replace

from app.config import get_settings
from app.main import app
from app.telemetry.events import SYSTEM_JOB_ID
from tests.factories import make_request


def test_admin_requires_token(client):
  assert client.get("/admin/jobs").status_code == 403
  assert client.get("/admin/jobs", headers={"x-c360-admin-token": "wrong"}).status_code == 403


def test_admin_not_configured(client, settings):
  app.dependency_overrides[get_settings] = lambda: replace(settings, admin_token=None, admin_tenant_id=None)

  response = client.get("/admin/jobs", headers={"x-c360-admin-token": "test-admin-token"})

  assert response.status_code == 403
  assert response.json()["detail"] == "Admin access is not configured."


def test_admin_tenant_signature_grants_access(client, signed, settings, tenant):
  app.dependency_overrides[get_settings] = lambda: replace(settings, admin_token=None, admin_tenant_id=tenant.id)

  assert signed.get("/admin/jobs").status_code == 200


def test_list_and_detail_jobs(client, signed, admin_headers):
  job_id = signed.post("/v1/jobs", make_request()).json()["job_id"]

  listing = client.get("/admin/jobs", params={"status": "queued", "tenant_id": "tn_alpha"}, headers=admin_headers).json()
  detail = client.get(f"/admin/jobs/{job_id}", headers=admin_headers).json()
  events = client.get(f"/admin/jobs/{job_id}/events", headers=admin_headers).json()

  assert listing["total"] == 1
  assert listing["jobs"][0]["job_id"] == job_id
  assert detail["hold"]["status"] == "held"
  assert detail["ledger"] == []
  assert [event["event_type"] for event in events["events"]] == ["created"]


def test_unknown_job_is_404(client, admin_headers):
  response = client.get("/admin/jobs/nope", headers=admin_headers)
  assert response.status_code == 404


def test_cancel_queued_job_releases_hold(client, signed, admin_headers, ledger_repo, queue):
  job_id = signed.post("/v1/jobs", make_request()).json()["job_id"]

  response = client.post(f"/admin/jobs/{job_id}/cancel", headers=admin_headers)

  assert response.json() == {"ok": True, "job_id": job_id, "status": "canceled", "already_final": False}
  assert ledger_repo.holds[job_id].status == "released"
  assert job_id not in queue.entries

  again = client.post(f"/admin/jobs/{job_id}/cancel", headers=admin_headers)
  assert again.json()["already_final"] is True


def test_retry_running_job_is_409(client, signed, admin_headers, jobs_repo):
  job_id = signed.post("/v1/jobs", make_request()).json()["job_id"]
  jobs_repo.jobs[job_id] = replace(jobs_repo.jobs[job_id], status="running")

  response = client.post(f"/admin/jobs/{job_id}/retry", headers=admin_headers)

  assert response.status_code == 409
  assert response.json()["detail"]["status"] == "running"


def test_retry_canceled_job_requeues(client, signed, admin_headers, queue):
  job_id = signed.post("/v1/jobs", make_request()).json()["job_id"]
  client.post(f"/admin/jobs/{job_id}/cancel", headers=admin_headers)

  response = client.post(f"/admin/jobs/{job_id}/retry", headers=admin_headers)

  assert response.json()["status"] == "queued"
  assert response.json()["dispatched"] is True
  assert queue.enqueued == [job_id, job_id]


def test_holds_and_ledger_views(client, signed, admin_headers):
  job_id = signed.post("/v1/jobs", make_request()).json()["job_id"]

  holds = client.get("/admin/holds", params={"status": "held"}, headers=admin_headers).json()
  ledger = client.get("/admin/ledger", params={"job_id": job_id}, headers=admin_headers).json()

  assert [hold["job_id"] for hold in holds["holds"]] == [job_id]
  assert ledger["entries"] == []


def test_degraded_toggle(client, admin_headers, flags_repo, jobs_repo):
  assert client.get("/admin/degraded", headers=admin_headers).json()["force_degraded"] is False

  response = client.post("/admin/degraded", json={"enabled": True}, headers=admin_headers)

  assert response.json() == {"ok": True, "force_degraded": True}
  assert flags_repo.flags["force_degraded"] == "1"
  assert jobs_repo.event_types(SYSTEM_JOB_ID) == ["flag"]
  assert client.get("/admin/degraded", headers=admin_headers).json()["force_degraded"] is True


def test_degraded_toggle_requires_boolean(client, admin_headers):
  response = client.post("/admin/degraded", json={"enabled": "yes"}, headers=admin_headers)
  assert response.status_code == 422


def test_idempotency_lookup(client, signed, admin_headers):
  job_id = signed.post("/v1/jobs", make_request(), **{"Idempotency-Key": "order-7"}).json()["job_id"]

  found = client.get("/admin/idempotency/tn_alpha/order-7", headers=admin_headers)
  missing = client.get("/admin/idempotency/tn_alpha/order-8", headers=admin_headers)

  assert found.json()["job_id"] == job_id
  assert missing.status_code == 404
  assert missing.json()["detail"] == "idempotency_key_not_found"


def test_create_tenant_then_sign_as_it(client, admin_headers, signed):
  response = client.post("/admin/tenants", json={"name": "Gamma", "plan_code": "pro", "monthly_quota_aej": 100}, headers=admin_headers)

  assert response.status_code == 201
  tenant = response.json()["tenant"]
  assert tenant["api_key"].startswith("ck_")
  assert tenant["id"].startswith("tn_")

  signed.api_key, signed.api_secret = tenant["api_key"], tenant["api_secret"]
  assert signed.post("/v1/jobs", make_request()).status_code == 200

  listing = client.get("/admin/tenants", headers=admin_headers).json()
  assert all("api_secret" not in item for item in listing["tenants"])


def test_reset_secret(client, admin_headers, signed):
  response = client.post("/admin/tenants/tn_alpha/reset-secret", headers=admin_headers)

  assert response.status_code == 200
  assert response.json()["tenant"]["api_secret"] != "alpha-secret"
  assert signed.post("/v1/jobs", make_request()).status_code == 401
  assert client.post("/admin/tenants/tn_missing/reset-secret", headers=admin_headers).status_code == 404


def test_raised_quota_applies_to_next_admission(client, admin_headers, signed):
  assert signed.post("/v1/jobs", make_request()).status_code == 200
  assert signed.post("/v1/jobs", make_request()).status_code == 200
  assert signed.post("/v1/jobs", make_request()).status_code == 402

  response = client.patch("/admin/tenants/tn_alpha", json={"monthly_quota_aej": 40, "plan_code": "growth"}, headers=admin_headers)

  assert response.status_code == 200
  tenant = response.json()["tenant"]
  assert tenant["monthly_quota_aej"] == 40
  assert tenant["plan_code"] == "growth"
  assert "api_secret" not in tenant
  assert signed.post("/v1/jobs", make_request()).status_code == 200


def test_deactivated_tenant_is_refused(client, admin_headers, signed, tenants_repo):
  response = client.patch("/admin/tenants/tn_alpha", json={"is_active": False}, headers=admin_headers)

  assert response.status_code == 200
  assert tenants_repo.tenants["tn_alpha"].monthly_quota_aej == 20
  rejected = signed.post("/v1/jobs", make_request())
  assert rejected.status_code == 403
  assert rejected.json()["detail"] == "tenant_inactive"


def test_update_tenant_validation(client, admin_headers):
  assert client.patch("/admin/tenants/tn_missing", json={"is_active": True}, headers=admin_headers).status_code == 404
  assert client.patch("/admin/tenants/tn_alpha", json={}, headers=admin_headers).json()["detail"] == "no_fields"
  assert client.patch("/admin/tenants/tn_alpha", json={"monthly_quota_aej": -1}, headers=admin_headers).status_code == 422
  assert client.patch("/admin/tenants/tn_alpha", json={"is_active": None}, headers=admin_headers).status_code == 422
  assert client.patch("/admin/tenants/tn_alpha", json={"api_secret": "x"}, headers=admin_headers).status_code == 422
