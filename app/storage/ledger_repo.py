"""Storage interfaces for quota holds and the usage ledger."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True)
class HoldRecord:
  """Provisional reservation of estimated cost for one job."""

  job_id: str
  tenant_id: str
  aej_estimated: int
  status: str
  created_at: datetime | None = None
  released_at: datetime | None = None


@dataclass(frozen=True)
class LedgerEntryRecord:
  """Usage fact for one stage of one job."""

  id: int
  tenant_id: str
  job_id: str
  stage: str
  aej_used: int
  tokens_used: int | None = None
  model_used: str | None = None
  created_at: datetime | None = None


class LedgerRepository(Protocol):
  """Repository contract for holds and ledger entries."""

  async def record_usage(self, *, tenant_id: str, job_id: str, stage: str, aej_used: int, tokens_used: int | None = None, model_used: str | None = None) -> bool:
    """Insert a ledger entry; a duplicate (tenant, job, stage) is ignored and returns False."""

  async def sum_job_usage(self, job_id: str) -> int:
    """Return the total units recorded for a job."""

  async def get_hold(self, job_id: str) -> HoldRecord | None:
    """Fetch the hold of a job."""

  async def release_hold(self, job_id: str) -> bool:
    """Release an open hold; returns False when nothing was held."""

  async def reopen_hold(self, *, tenant_id: str, job_id: str, aej_estimated: int) -> None:
    """Re-open (or create) the hold of a job being retried."""

  async def held_total(self, tenant_id: str) -> int:
    """Sum of the tenant's open holds."""

  async def usage_by_stage(self, tenant_id: str, *, start: datetime, end: datetime) -> dict[str, int]:
    """Sum the tenant's ledger entries per stage for ``start <= created_at < end``."""

  async def list_holds(self, *, tenant_id: str | None = None, status: str | None = None, limit: int = 100) -> list[HoldRecord]:
    """Return holds, newest first."""

  async def list_entries(self, *, tenant_id: str | None = None, job_id: str | None = None, limit: int = 200) -> list[LedgerEntryRecord]:
    """Return ledger entries, newest first."""
