"""Monthly quota arithmetic and billing summaries."""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Any

from app.config import Settings
from app.core.errors import ContentEngineError
from app.schema.ledger import LedgerStage
from app.storage.ledger_repo import LedgerRepository
from app.storage.tenants_repo import TenantRecord


@dataclass(frozen=True)
class QuotaSnapshot:
  """Quota state of a tenant for the current UTC month."""

  plan: str
  monthly_quota_aej: int
  aej_consumed: int
  aej_held: int
  aej_needed: int = 0

  @property
  def aej_remaining(self) -> int:
    return max(0, self.monthly_quota_aej - self.aej_consumed - self.aej_held)

  @property
  def admits(self) -> bool:
    return self.aej_consumed + self.aej_held + self.aej_needed <= self.monthly_quota_aej


class QuotaExceededError(ContentEngineError):
  """Raised when admitting a job would push consumed + held past the monthly quota."""

  code = "quota_exceeded"

  def __init__(self, snapshot: QuotaSnapshot) -> None:
    super().__init__(f"quota exceeded ({snapshot.aej_remaining} remaining, {snapshot.aej_needed} needed)")
    self.snapshot = snapshot

  def to_payload(self) -> dict[str, Any]:
    snapshot = self.snapshot
    return {
      "error": self.code,
      "plan": snapshot.plan,
      "monthly_quota_aej": snapshot.monthly_quota_aej,
      "aej_consumed": snapshot.aej_consumed,
      "aej_held": snapshot.aej_held,
      "aej_needed": snapshot.aej_needed,
      "aej_remaining": snapshot.aej_remaining,
    }


def _utc_now() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


def month_bounds(now: datetime.datetime | None = None) -> tuple[datetime.datetime, datetime.datetime]:
  """Return [start, end) of the UTC calendar month containing ``now``."""
  now = now or _utc_now()
  if now.tzinfo is None:
    raise ValueError("now must be timezone-aware (UTC).")
  now = now.astimezone(datetime.UTC)
  start = datetime.datetime(now.year, now.month, 1, tzinfo=datetime.UTC)
  if now.month == 12:
    end = datetime.datetime(now.year + 1, 1, 1, tzinfo=datetime.UTC)
  else:
    end = datetime.datetime(now.year, now.month + 1, 1, tzinfo=datetime.UTC)
  return start, end


def resolve_plan(tenant: TenantRecord, settings: Settings) -> tuple[str, int]:
  """Return (plan_code, monthly_quota) with configured defaults for unset values."""
  plan = tenant.plan_code or settings.default_plan_code
  quota = tenant.monthly_quota_aej if tenant.monthly_quota_aej is not None else settings.default_monthly_quota
  return plan, int(quota)


async def billing_summary(tenant: TenantRecord, ledger_repo: LedgerRepository, settings: Settings, *, include_breakdown: bool = True, now: datetime.datetime | None = None) -> dict[str, Any]:
  """Summarize the tenant's month: quota, consumed, held, remaining and a per-family breakdown."""
  start, end = month_bounds(now)
  plan, quota = resolve_plan(tenant, settings)
  by_stage = await ledger_repo.usage_by_stage(tenant.id, start=start, end=end)
  held = await ledger_repo.held_total(tenant.id)
  snapshot = QuotaSnapshot(plan=plan, monthly_quota_aej=quota, aej_consumed=sum(by_stage.values()), aej_held=held)
  summary: dict[str, Any] = {
    "ok": True,
    "month": start.strftime("%Y-%m"),
    "plan": snapshot.plan,
    "monthly_quota_aej": snapshot.monthly_quota_aej,
    "aej_consumed": snapshot.aej_consumed,
    "aej_held": snapshot.aej_held,
    "aej_remaining": snapshot.aej_remaining,
  }
  if include_breakdown:
    summary["breakdown"] = {
      "analysis": by_stage.get(LedgerStage.ANALYSE.value, 0) + by_stage.get(LedgerStage.DECISION.value, 0),
      "writing": by_stage.get(LedgerStage.GENERATION.value, 0) + by_stage.get(LedgerStage.APPLICATION.value, 0),
      "followup": by_stage.get(LedgerStage.FOLLOWUP.value, 0),
    }
    summary["aej_balance"] = tenant.aej_balance
  return summary
