"""Shared FastAPI dependencies for services and request metadata."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header

from app.config import Settings, get_settings
from app.jobs.worker import JobProcessor
from app.services.admission import AdmissionController, normalize_idempotency_key
from app.services.degraded_mode import DegradedModePoller
from app.services.jobs import JobService
from app.services.runtime import build_admission_controller, build_job_processor, build_job_service, get_degraded_mode, get_event_log
from app.storage.admission_repo import AdmissionStore
from app.storage.factory import _get_admission_store, _get_ledger_repo
from app.storage.ledger_repo import LedgerRepository
from app.telemetry.events import EventLog


def get_idempotency_key(idempotency_key: Annotated[str | None, Header()] = None, x_idempotency_key: Annotated[str | None, Header()] = None) -> str | None:
  """Read the client token from ``Idempotency-Key`` or ``X-Idempotency-Key``."""
  return normalize_idempotency_key(idempotency_key) or normalize_idempotency_key(x_idempotency_key)


def get_admission_controller(settings: Annotated[Settings, Depends(get_settings)]) -> AdmissionController:
  return build_admission_controller(settings)


def get_job_service(settings: Annotated[Settings, Depends(get_settings)]) -> JobService:
  return build_job_service(settings)


def get_job_processor(settings: Annotated[Settings, Depends(get_settings)]) -> JobProcessor:
  return build_job_processor(settings)


def get_degraded_mode_poller(settings: Annotated[Settings, Depends(get_settings)]) -> DegradedModePoller:
  return get_degraded_mode(settings)


def get_ledger_repo() -> LedgerRepository:
  return _get_ledger_repo()


def get_admission_store() -> AdmissionStore:
  return _get_admission_store()


def get_event_log_dep() -> EventLog:
  return get_event_log()
