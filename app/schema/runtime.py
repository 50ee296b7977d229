"""Operational tables: admin flags and the durable dispatch queue."""

from __future__ import annotations

import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class AdminFlag(Base):
  __tablename__ = "admin_flags"

  key: Mapped[str] = mapped_column(String, primary_key=True)
  value: Mapped[str] = mapped_column(String, nullable=False)
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class DispatchQueueEntry(Base):
  """One deliverable entry per job id; re-enqueueing replaces the pending row."""

  __tablename__ = "dispatch_queue"
  __table_args__ = (Index("ix_dispatch_queue_claim", "status", "available_at", postgresql_where=text("status IN ('pending', 'inflight')")),)

  job_id: Mapped[str] = mapped_column(String, primary_key=True)
  status: Mapped[str] = mapped_column(String, nullable=False, default="pending", server_default="pending")
  attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3, server_default="3")
  available_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  lease_token: Mapped[str | None] = mapped_column(String, nullable=True)
  locked_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
