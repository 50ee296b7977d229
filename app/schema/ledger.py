"""SQLAlchemy models for quota holds, the usage ledger and idempotency keys."""

from __future__ import annotations

import datetime
import enum

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, func, text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class HoldStatus(str, enum.Enum):
  HELD = "held"
  RELEASED = "released"


class LedgerStage(str, enum.Enum):
  """Pipeline stages that accrue cost units."""

  ANALYSE = "analyse"
  DECISION = "decision"
  GENERATION = "generation"
  APPLICATION = "application"
  FOLLOWUP = "followup"


class QuotaHold(Base):
  """Provisional reservation created at admission and released at settlement."""

  __tablename__ = "quota_holds"
  __table_args__ = (Index("ix_quota_holds_tenant_open", "tenant_id", postgresql_where=text("status = 'held'")),)

  job_id: Mapped[str] = mapped_column(ForeignKey("jobs.job_id", ondelete="CASCADE"), primary_key=True)
  tenant_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  aej_estimated: Mapped[int] = mapped_column(Integer, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False, default=HoldStatus.HELD.value, server_default=HoldStatus.HELD.value)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  released_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class UsageLedgerEntry(Base):
  """Append-only usage fact; one row per (tenant, job, stage)."""

  __tablename__ = "usage_ledger"
  __table_args__ = (
    UniqueConstraint("tenant_id", "job_id", "stage", name="ux_usage_ledger_tenant_job_stage"),
    Index("ix_usage_ledger_tenant_created", "tenant_id", "created_at"),
  )

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  tenant_id: Mapped[str] = mapped_column(String, nullable=False)
  job_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  stage: Mapped[str] = mapped_column(String, nullable=False)
  aej_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  tokens_used: Mapped[int | None] = mapped_column(Integer, nullable=True)
  model_used: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class IdempotencyRecord(Base):
  __tablename__ = "idempotency_keys"

  tenant_id: Mapped[str] = mapped_column(String, primary_key=True)
  idem_key: Mapped[str] = mapped_column(String, primary_key=True)
  job_id: Mapped[str] = mapped_column(ForeignKey("jobs.job_id", ondelete="CASCADE"), nullable=False, index=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
