from __future__ import annotations

import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class Tenant(Base):
  """Billed client with its own credentials and monthly quota."""

  __tablename__ = "tenants"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  api_key: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
  api_secret: Mapped[str] = mapped_column(String, nullable=False)
  plan_code: Mapped[str | None] = mapped_column(String, nullable=True)
  monthly_quota_aej: Mapped[int | None] = mapped_column(Integer, nullable=True)
  # Display-only running total; never used for admission decisions.
  aej_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
  is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
