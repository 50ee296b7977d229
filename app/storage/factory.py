"""Repository factories shared by routes, services and the worker."""

from __future__ import annotations

from functools import lru_cache

from app.storage.admission_repo import AdmissionStore, PostgresAdmissionStore
from app.storage.decisions_repo import DecisionsRepository, PostgresDecisionsRepository
from app.storage.flags_repo import FlagsRepository, PostgresFlagsRepository
from app.storage.jobs_repo import JobsRepository
from app.storage.ledger_repo import LedgerRepository
from app.storage.postgres_jobs_repo import PostgresJobsRepository
from app.storage.postgres_ledger_repo import PostgresLedgerRepository
from app.storage.tenants_repo import PostgresTenantsRepository, TenantsRepository


@lru_cache(maxsize=1)
def _get_jobs_repo() -> JobsRepository:
  return PostgresJobsRepository()


@lru_cache(maxsize=1)
def _get_ledger_repo() -> LedgerRepository:
  return PostgresLedgerRepository()


@lru_cache(maxsize=1)
def _get_tenants_repo() -> TenantsRepository:
  return PostgresTenantsRepository()


@lru_cache(maxsize=1)
def _get_admission_store() -> AdmissionStore:
  return PostgresAdmissionStore()


@lru_cache(maxsize=1)
def _get_decisions_repo() -> DecisionsRepository:
  return PostgresDecisionsRepository()


@lru_cache(maxsize=1)
def _get_flags_repo() -> FlagsRepository:
  return PostgresFlagsRepository()
