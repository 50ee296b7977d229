"""Route fixtures: the app wired to the in-memory stores."""

from __future__ import annotations

import json
from collections.abc import Iterator
from typing import Any

import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_admission_controller, get_admission_store, get_degraded_mode_poller, get_event_log_dep, get_job_processor, get_job_service, get_ledger_repo
from app.config import get_settings
from app.core.security import compute_signature, get_tenants_repo
from app.main import app


class SignedClient:
  """TestClient wrapper that signs bodies the way tenants do."""

  def __init__(self, client: TestClient, *, api_key: str, api_secret: str) -> None:
    self.client = client
    self.api_key = api_key
    self.api_secret = api_secret

  def headers(self, body: bytes, **extra: str) -> dict[str, str]:
    return {"x-c360-key": self.api_key, "x-c360-sign": compute_signature(self.api_secret, body), "content-type": "application/json", **extra}

  def post(self, path: str, payload: Any, **extra: str):
    body = json.dumps(payload).encode("utf-8")
    return self.client.post(path, content=body, headers=self.headers(body, **extra))

  def get(self, path: str, **extra: str):
    return self.client.get(path, headers=self.headers(b"", **extra))


@pytest.fixture
def client(settings, tenants_repo, controller, job_service, ledger_repo, processor, degraded_mode, event_log, admission_store) -> Iterator[TestClient]:
  app.dependency_overrides[get_settings] = lambda: settings
  app.dependency_overrides[get_tenants_repo] = lambda: tenants_repo
  app.dependency_overrides[get_admission_controller] = lambda: controller
  app.dependency_overrides[get_job_service] = lambda: job_service
  app.dependency_overrides[get_ledger_repo] = lambda: ledger_repo
  app.dependency_overrides[get_job_processor] = lambda: processor
  app.dependency_overrides[get_degraded_mode_poller] = lambda: degraded_mode
  app.dependency_overrides[get_event_log_dep] = lambda: event_log
  app.dependency_overrides[get_admission_store] = lambda: admission_store
  # No context manager: the lifespan (workers, migrations) stays off.
  yield TestClient(app)
  app.dependency_overrides.clear()


@pytest.fixture
def signed(client, tenant) -> SignedClient:
  return SignedClient(client, api_key=tenant.api_key, api_secret=tenant.api_secret)


@pytest.fixture
def admin_headers() -> dict[str, str]:
  return {"x-c360-admin-token": "test-admin-token"}
