from __future__ import annotations

import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class Job(Base):
  __tablename__ = "jobs"
  __table_args__ = (Index("ix_jobs_tenant_created", "tenant_id", "created_at"),)

  job_id: Mapped[str] = mapped_column(String, primary_key=True)
  tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
  mode: Mapped[str] = mapped_column(String, nullable=False, index=True)
  status: Mapped[str] = mapped_column(String, nullable=False, index=True)
  progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  request_json: Mapped[dict] = mapped_column(JSONB, nullable=False)
  result_json: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  aej_estimated: Mapped[int] = mapped_column(Integer, nullable=False)
  aej_final: Mapped[int | None] = mapped_column(Integer, nullable=True)
  error_text: Mapped[str | None] = mapped_column(Text, nullable=True)
  idempotency_key: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
  started_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  finished_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class JobEvent(Base):
  """Best-effort lifecycle timeline; rows may be missing when writes fail."""

  __tablename__ = "job_events"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  # No FK: system-level events (flag toggles) use a sentinel job id.
  job_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  tenant_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  event_type: Mapped[str] = mapped_column(String, nullable=False, index=True)
  message: Mapped[str | None] = mapped_column(Text, nullable=True)
  meta_json: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class DecisionRecord(Base):
  __tablename__ = "decision_log"
  __table_args__ = (UniqueConstraint("tenant_id", "job_id", "decision_type", name="ux_decision_log_tenant_job_type"),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  tenant_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  job_id: Mapped[str] = mapped_column(ForeignKey("jobs.job_id", ondelete="CASCADE"), nullable=False, index=True)
  content_source: Mapped[str] = mapped_column(String, nullable=False)
  content_type: Mapped[str] = mapped_column(String, nullable=False)
  content_id: Mapped[str] = mapped_column(String, nullable=False)
  decision_type: Mapped[str] = mapped_column(String, nullable=False)
  decision_reason: Mapped[str] = mapped_column(Text, nullable=False)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
